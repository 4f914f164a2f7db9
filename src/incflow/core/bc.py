"""Boundary-condition types and their per-component interpretation."""

from enum import Enum
from typing import NamedTuple


class Side(Enum):
    LOW = 0
    HIGH = 1


class Orientation(NamedTuple):
    dir: int
    side: Side


ORIENTATIONS = tuple(Orientation(d, s) for d in range(3) for s in (Side.LOW, Side.HIGH))


class BC(Enum):
    """Physical boundary types on a domain face."""

    PERIODIC = "periodic"
    NO_SLIP_WALL = "no_slip_wall"
    SLIP_WALL = "slip_wall"
    WALL_MODEL = "wall_model"
    MASS_INFLOW = "mass_inflow"
    PRESSURE_INFLOW = "pressure_inflow"
    PRESSURE_OUTFLOW = "pressure_outflow"
    ZERO_GRADIENT = "zero_gradient"
    FIXED_GRADIENT = "fixed_gradient"


class BCKind(Enum):
    """Math kind of a boundary for one component.

    DIRICHLET: value prescribed on the face
    NEUMANN: normal gradient prescribed on the face
    ODD: value zero on the face (reflect odd)
    PERIODIC: wraps around
    """

    DIRICHLET = 0
    NEUMANN = 1
    ODD = 2
    PERIODIC = 3


def component_kind(bc: BC, direction: int, comp: int, ncomp: int) -> BCKind:
    """Kind of boundary seen by component ``comp`` on a face normal to ``direction``."""
    if bc is BC.PERIODIC:
        return BCKind.PERIODIC
    if bc in (BC.NO_SLIP_WALL, BC.MASS_INFLOW):
        return BCKind.DIRICHLET
    if bc in (BC.SLIP_WALL, BC.WALL_MODEL):
        if ncomp == 3 and comp == direction:
            return BCKind.ODD
        return BCKind.NEUMANN
    return BCKind.NEUMANN


def projection_kind(bc: BC) -> BCKind:
    """Boundary kind of the MAC projection potential for a velocity BC."""
    if bc is BC.PERIODIC:
        return BCKind.PERIODIC
    if bc in (BC.PRESSURE_INFLOW, BC.PRESSURE_OUTFLOW):
        return BCKind.DIRICHLET
    return BCKind.NEUMANN
