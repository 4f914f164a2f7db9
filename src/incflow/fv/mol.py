"""Method-of-lines kernels: slope-limited states without time extrapolation."""

import numpy as np

from .godunov import SMALL_VEL, EdgeBC, apply_edge_bc, upwind_state
from .reconstruction import mc_slope, shift

NGROW = 2


def _face_lr(q, direction):
    slope = mc_slope(q, direction)
    left = shift(q + 0.5 * slope, -1, direction)
    right = q - 0.5 * slope
    return left, right


def predict_velocity(vel, bcs, ng=NGROW):
    """Normal face velocities from the padded cell velocity of a tile."""
    umac = []
    for d in range(3):
        comp = slice(d, d + 1)
        umns, upls = _face_lr(vel[..., comp], d)
        bc = bcs[d]
        if bc is not None:
            bc = EdgeBC([bc.lo_kinds[d]], [bc.hi_kinds[d]], bc.at_lo, bc.at_hi)
        apply_edge_bc(umns, upls, vel[..., comp], d, ng, bc)
        avg = 0.5 * (umns + upls)
        u = np.where(avg >= 0.0, umns, upls)
        u = np.where((umns < 0.0) & (upls > 0.0), 0.0, u)
        u = np.where(np.abs(avg) < SMALL_VEL, 0.0, u)
        umac.append(u)
    return umac


def compute_edge_states(q, umac, bcs, ng=NGROW):
    """Upwinded face states of a padded tile, one array per direction."""
    edges = []
    for d in range(3):
        left, right = _face_lr(q, d)
        apply_edge_bc(left, right, q, d, ng, bcs[d])
        edges.append(upwind_state(umac[d], left, right))
    return edges
