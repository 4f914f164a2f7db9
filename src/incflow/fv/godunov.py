"""Unsplit Godunov kernels operating on one padded tile.

Face quantities are stored "cell-shaped": index ``f`` along direction ``d``
holds the value on the low face of cell ``f``. This keeps every stage a
pure array expression built from ``np.roll``; entries within the stencil
width of the tile edge are junk and are discarded by the caller.
"""

import logging
from contextlib import contextmanager
from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from ..core.bc import BCKind
from ..datastructures import GodunovScheme
from .reconstruction import shift, trace

log = logging.getLogger(__name__)

# Ghost cells around a tile: reconstruction stencil plus one transverse hop
NGROW = 4
SMALL_VEL = 1.0e-8


class EdgeBC(NamedTuple):
    """Boundary information for one direction of one tile."""

    lo_kinds: Sequence[BCKind]
    hi_kinds: Sequence[BCKind]
    at_lo: bool
    at_hi: bool


class TileScratch:
    """Named stage arrays of one tile, kept reachable until the tile is done.

    Clearing drops only the references held here; callers that still hold
    a stage array keep it alive.
    """

    def __init__(self):
        self.arrays = {}

    def __setitem__(self, name, arr):
        self.arrays[name] = arr

    def __getitem__(self, name):
        return self.arrays[name]

    @property
    def nbytes(self) -> int:
        return sum(a.nbytes for a in self.arrays.values())

    def release(self):
        self.arrays.clear()


@contextmanager
def tile_scratch(sync=None):
    """Stage registry cleared on exit, after ``sync`` has run."""
    scratch = TileScratch()
    try:
        yield scratch
    finally:
        if sync is not None:
            sync()
        scratch.release()


def cell_average(face, direction):
    """Cell-centred average of a cell-shaped face array."""
    return 0.5 * (face + shift(face, 1, direction))


def riemann_velocity(left, right):
    """Single-valued normal velocity from two traced states.

    Zero when the states straddle a sonic point or nearly cancel,
    otherwise the upwind state.
    """
    ltm = ((left <= 0.0) & (right >= 0.0)) | (np.abs(left + right) < SMALL_VEL)
    st = np.where(left + right >= 0.0, left, right)
    return np.where(ltm, 0.0, st)


def upwind_state(vel, left, right):
    """Upwind state, or the average at a stagnation face."""
    return np.where(
        vel > SMALL_VEL, left, np.where(vel < -SMALL_VEL, right, 0.5 * (left + right))
    )


def face_states(lo, hi, direction):
    """Left and right states on the low face of every cell."""
    return shift(hi, -1, direction), lo


def apply_edge_bc(left, right, q, direction, ng, bc: Optional[EdgeBC]):
    """Impose physical boundary values on the domain faces of a tile (in place).

    Dirichlet faces take the ghost value, odd faces zero and extrapolating
    faces the interior state; both sides of the face get the same value.
    """
    if bc is None:
        return
    n = q.shape[direction] - 2 * ng
    for at_face, kinds, face, ghost, interior_side in (
        (bc.at_lo, bc.lo_kinds, ng, ng - 1, right),
        (bc.at_hi, bc.hi_kinds, ng + n, ng + n, left),
    ):
        if not at_face:
            continue
        idx = [slice(None)] * 3
        idx[direction] = face
        gidx = [slice(None)] * 3
        gidx[direction] = ghost
        for comp in range(left.shape[-1]):
            kind = kinds[comp] if comp < len(kinds) else kinds[-1]
            fi = tuple(idx) + (comp,)
            if kind is BCKind.DIRICHLET:
                value = q[tuple(gidx) + (comp,)]
            elif kind is BCKind.ODD:
                value = 0.0
            elif kind is BCKind.NEUMANN:
                value = interior_side[fi].copy()
            else:
                continue
            left[fi] = value
            right[fi] = value


def transverse_correction(q, hat, vel, dtdx, direction, conservative):
    """Change of a cell's state from transport across its ``direction`` faces.

    ``conservative`` is a boolean per component: True uses the flux
    difference minus ``q`` times the velocity difference, False the
    advective ``avg(v)*dq`` form.
    """
    vel_hi = shift(vel, 1, direction)
    hat_hi = shift(hat, 1, direction)
    advective = -0.5 * dtdx * 0.5 * (vel + vel_hi) * (hat_hi - hat)
    if not np.any(conservative):
        return advective
    flux_form = -0.5 * dtdx * (vel_hi * hat_hi - vel * hat) + 0.5 * dtdx * q * (vel_hi - vel)
    return np.where(conservative, flux_form, advective)


def _traces(q, cfl_cells, scheme, scratch):
    out = []
    for d in range(3):
        lo, hi = trace(q, cfl_cells[d], d, scheme)
        scratch[f"lo{d}"] = lo
        scratch[f"hi{d}"] = hi
        out.append((lo, hi))
    return out


def predict_velocity(
    vel,
    src,
    dtdx,
    dt,
    scheme: GodunovScheme,
    bcs: List[Optional[EdgeBC]],
    ng: int = NGROW,
    sync=None,
):
    """Time-centred normal face velocities of a padded velocity tile.

    Parameters
    ----------
    vel, src : np.ndarray
        Padded cell velocity and velocity source, shape ``(nx, ny, nz, 3)``.
    dtdx : sequence of float
        ``dt/dx`` per direction.
    bcs : list of EdgeBC
        Per-direction boundary information of the tile.

    Returns
    -------
    list of np.ndarray
        Cell-shaped face velocity per direction, shape ``(nx, ny, nz, 1)``.
    """
    with tile_scratch(sync) as scratch:
        cfl = [vel[..., d : d + 1] * dtdx[d] for d in range(3)]
        traces = _traces(vel, cfl, scheme, scratch)

        # Transverse advection velocities and upwinded transverse states
        uad = []
        hats = []
        for d in range(3):
            left, right = face_states(*traces[d], d)
            apply_edge_bc(left, right, vel, d, ng, bcs[d])
            u_ad = riemann_velocity(left[..., d : d + 1], right[..., d : d + 1])
            hat = upwind_state(u_ad, left, right)
            scratch[f"uad{d}"] = u_ad
            scratch[f"hat{d}"] = hat
            uad.append(u_ad)
            hats.append(hat)

        umac = []
        for d in range(3):
            lo, hi = traces[d]
            comp = slice(d, d + 1)
            corr = 0.5 * dt * src[..., comp]
            for t in range(3):
                if t == d:
                    continue
                corr = corr + transverse_correction(
                    vel[..., comp], hats[t][..., comp], uad[t], dtdx[t], t, False
                )
            left, right = face_states(lo[..., comp] + corr, hi[..., comp] + corr, d)
            apply_edge_bc(left, right, vel[..., comp], d, ng, _component_bc(bcs[d], d))
            umac.append(riemann_velocity(left, right))
        return umac


def _component_bc(bc, comp):
    if bc is None:
        return None
    return EdgeBC([bc.lo_kinds[comp]], [bc.hi_kinds[comp]], bc.at_lo, bc.at_hi)


def compute_edge_states(
    q,
    src,
    umac,
    dtdx,
    dt,
    scheme: GodunovScheme,
    iconserv,
    bcs: List[Optional[EdgeBC]],
    ng: int = NGROW,
    sync=None,
):
    """Upwinded time-centred face states of a padded tile.

    Parameters
    ----------
    q, src : np.ndarray
        Padded transported quantity and its source, ``(nx, ny, nz, ncomp)``.
    umac : list of np.ndarray
        Cell-shaped advecting face velocities, ``(nx, ny, nz, 1)`` each.
    iconserv : sequence of int
        Per component, 1 for conservative and 0 for advective transverse terms.

    Returns
    -------
    list of np.ndarray
        Cell-shaped face states per direction, ``(nx, ny, nz, ncomp)``.
    """
    conservative = np.asarray(iconserv, dtype=bool).reshape(1, 1, 1, -1)
    with tile_scratch(sync) as scratch:
        cfl = [cell_average(umac[d], d) * dtdx[d] for d in range(3)]
        traces = _traces(q, cfl, scheme, scratch)

        hats = []
        for d in range(3):
            left, right = face_states(*traces[d], d)
            apply_edge_bc(left, right, q, d, ng, bcs[d])
            hat = upwind_state(umac[d], left, right)
            scratch[f"hat{d}"] = hat
            hats.append(hat)

        edges = []
        for d in range(3):
            lo, hi = traces[d]
            corr = 0.5 * dt * src
            for t in range(3):
                if t != d:
                    corr = corr + transverse_correction(q, hats[t], umac[t], dtdx[t], t, conservative)
            left, right = face_states(lo + corr, hi + corr, d)
            apply_edge_bc(left, right, q, d, ng, bcs[d])
            edges.append(upwind_state(umac[d], left, right))
        return edges

