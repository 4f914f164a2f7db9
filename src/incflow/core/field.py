"""Multi-level, multi-state field containers."""

from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from .bc import BC, BCKind, Orientation, ORIENTATIONS, Side, component_kind


class FieldState(Enum):
    NEW = "new"
    OLD = "old"
    NPH = "nph"


class FieldLoc(Enum):
    CELL = -1
    XFACE = 0
    YFACE = 1
    ZFACE = 2

    @classmethod
    def face(cls, direction: int) -> "FieldLoc":
        return (cls.XFACE, cls.YFACE, cls.ZFACE)[direction]


class MeshSpace(Enum):
    """Whether a field's values are in the uniform (computational) or stretched (physical) space."""

    UNIFORM = "uniform"
    STRETCHED = "stretched"


def location_shape(box_shape, location: FieldLoc):
    shape = list(box_shape)
    if location is not FieldLoc.CELL:
        shape[location.value] += 1
    return tuple(shape)


class Field:
    """One time state of a named quantity on every level.

    States of the same quantity are separate ``Field`` objects that share
    name, component count and boundary-condition tables; ``state()`` moves
    between them. Data for level ``lev`` is ``field(lev)``, an array of shape
    ``(nx, ny, nz, ncomp)`` (one extra point along the normal for face fields).
    """

    def __init__(self, repo, name, ncomp, location, fstate, bc_type, bc_values, dtype=float):
        self.repo = repo
        self.name = name
        self.ncomp = ncomp
        self.location = location
        self.field_state = fstate
        self.bc_type: Dict[Orientation, BC] = bc_type
        self.bc_values: Dict[Orientation, np.ndarray] = bc_values
        self.space = MeshSpace.STRETCHED
        self._states: Dict[FieldState, "Field"] = {fstate: self}
        self._data: List[np.ndarray] = [
            np.zeros(location_shape(level.box.shape, location) + (ncomp,), dtype=dtype)
            for level in repo.mesh
        ]

    def __call__(self, lev: int) -> np.ndarray:
        return self._data[lev]

    def __repr__(self):
        return f"Field({self.name!r}, ncomp={self.ncomp}, state={self.field_state.value})"

    @property
    def num_states(self) -> int:
        return len(self._states)

    def state(self, fstate: FieldState) -> "Field":
        try:
            return self._states[fstate]
        except KeyError:
            raise KeyError(f"Field {self.name!r} has no {fstate.value} state") from None

    def vec_ptrs(self) -> List[np.ndarray]:
        return list(self._data)

    def set_val(self, value):
        for arr in self._data:
            arr[...] = value

    def copy_from(self, other: "Field"):
        for dst, src in zip(self._data, other._data):
            dst[...] = src
        self.space = other.space

    def set_bc(self, orientation: Orientation, bc: BC, value=None):
        """Set the boundary type (and value or gradient) on one domain face."""
        self.bc_type[orientation] = bc
        values = np.zeros(self.ncomp)
        if value is not None:
            values[:] = value
        self.bc_values[orientation] = values

    def bc_kind(self, orientation: Orientation, comp: int) -> BCKind:
        return component_kind(self.bc_type[orientation], orientation.dir, comp, self.ncomp)

    def bc_kinds(self, direction: int):
        """Per-component (low, high) kinds on the faces normal to ``direction``."""
        lo = Orientation(direction, Side.LOW)
        hi = Orientation(direction, Side.HIGH)
        return (
            [self.bc_kind(lo, n) for n in range(self.ncomp)],
            [self.bc_kind(hi, n) for n in range(self.ncomp)],
        )

    # -----------------------------------------------------------------
    # Mesh-mapping space
    # -----------------------------------------------------------------
    # Fields are created and kept in stretched space. Operators apply the
    # uniform-space factors (detJ, 1/h) inline, so the calls in the RHS and
    # advection paths only act on a field a caller moved to uniform space.

    def in_uniform_space(self) -> bool:
        return self.space is MeshSpace.UNIFORM

    def to_stretched_space(self):
        """Map values from uniform to stretched space; no-op if already stretched."""
        if self.space is MeshSpace.STRETCHED:
            return
        mapping = self.repo.mesh_mapping
        for lev, arr in enumerate(self._data):
            arr[...] = mapping.to_stretched(arr, lev, self.location)
        self.space = MeshSpace.STRETCHED

    def to_uniform_space(self):
        """Map values from stretched to uniform space; no-op if already uniform."""
        if self.space is MeshSpace.UNIFORM:
            return
        mapping = self.repo.mesh_mapping
        for lev, arr in enumerate(self._data):
            arr[...] = mapping.to_uniform(arr, lev, self.location)
        self.space = MeshSpace.UNIFORM


def make_field_states(repo, name, ncomp, location, nstates, bc_type=None, bc_values=None, dtype=float):
    """Create ``nstates`` linked states (NEW, OLD, NPH) of one quantity."""
    if bc_type is None:
        bc_type = {}
    if bc_values is None:
        bc_values = {}
    geom = repo.mesh.Geom(0)
    for ori in ORIENTATIONS:
        if geom.is_periodic[ori.dir]:
            bc_type[ori] = BC.PERIODIC
        else:
            bc_type.setdefault(ori, BC.ZERO_GRADIENT)
        bc_values.setdefault(ori, np.zeros(ncomp))

    order = [FieldState.NEW, FieldState.OLD, FieldState.NPH][:nstates]
    states = {
        fs: Field(repo, name, ncomp, location, fs, bc_type, bc_values, dtype=dtype)
        for fs in order
    }
    for fld in states.values():
        fld._states = states
    return states[FieldState.NEW]


class IntField:
    """Integer cell field, e.g. the overset ``mask_cell``."""

    def __init__(self, repo, name, ncomp=1, fill: Optional[int] = 1):
        self.repo = repo
        self.name = name
        self.ncomp = ncomp
        self._data = [
            np.full(level.box.shape + (ncomp,), fill, dtype=np.int32) for level in repo.mesh
        ]

    def __call__(self, lev: int) -> np.ndarray:
        return self._data[lev]

    def set_val(self, value: int):
        for arr in self._data:
            arr[...] = value
