"""Field registry and ghost-cell filling."""

import logging
from contextlib import contextmanager
from typing import Dict

import numpy as np

from ..errors import ConfigurationError
from .bc import BC, BCKind, Orientation, Side
from .field import Field, FieldLoc, FieldState, IntField, make_field_states

log = logging.getLogger(__name__)


class FieldRepo:
    """Registry of named fields living on a :class:`MeshHierarchy`.

    Parameters
    ----------
    mesh : MeshHierarchy
        Levels the fields are allocated on.
    mesh_mapping : MeshMapping, optional
        Collaborator supplying Jacobians when mesh mapping is active.
    """

    def __init__(self, mesh, mesh_mapping=None):
        self.mesh = mesh
        self.mesh_mapping = mesh_mapping
        self._fields: Dict[str, Field] = {}
        self._int_fields: Dict[str, IntField] = {}
        self.declare_int_field("mask_cell", fill=1)

    def num_active_levels(self) -> int:
        return self.mesh.num_active_levels()

    # -----------------------------------------------------------------
    # Declaration / lookup
    # -----------------------------------------------------------------

    def declare_field(self, name, ncomp=1, location=FieldLoc.CELL, nstates=1) -> Field:
        if name in self._fields:
            fld = self._fields[name]
            if fld.ncomp != ncomp or fld.location is not location:
                raise ConfigurationError(f"Field {name!r} redeclared with a different layout")
            return fld
        fld = make_field_states(self, name, ncomp, location, nstates)
        self._fields[name] = fld
        log.debug(f"Declared field {name} (ncomp={ncomp}, {location.name}, {nstates} states)")
        return fld

    def get_field(self, name, state: FieldState = FieldState.NEW) -> Field:
        try:
            return self._fields[name].state(state)
        except KeyError:
            raise KeyError(f"Field {name!r} is not registered") from None

    def field_exists(self, name) -> bool:
        return name in self._fields

    def declare_int_field(self, name, ncomp=1, fill=0) -> IntField:
        if name not in self._int_fields:
            self._int_fields[name] = IntField(self, name, ncomp, fill)
        return self._int_fields[name]

    def get_int_field(self, name) -> IntField:
        return self._int_fields[name]

    def mesh_detJ(self, lev: int, loc: FieldLoc = FieldLoc.CELL) -> np.ndarray:
        if self.mesh_mapping is None:
            raise ConfigurationError("Mesh mapping requested but no mapping collaborator is set")
        return self.mesh_mapping.detJ(lev, loc)

    def mesh_metric(self, lev: int, direction: int, loc: FieldLoc = FieldLoc.CELL) -> np.ndarray:
        if self.mesh_mapping is None:
            raise ConfigurationError("Mesh mapping requested but no mapping collaborator is set")
        return self.mesh_mapping.metric(lev, direction, loc)

    @contextmanager
    def scratch_field(self, ncomp=1, location=FieldLoc.CELL):
        """Temporary single-state field released when the block exits."""
        fld = make_field_states(self, "scratch", ncomp, location, 1)
        try:
            yield fld
        finally:
            fld._data = []

    # -----------------------------------------------------------------
    # Ghost cells
    # -----------------------------------------------------------------

    def fill_patch(self, field: Field, lev: int, ngrow: int) -> np.ndarray:
        """Return level data padded by ``ngrow`` ghost cells on every side.

        Ghost cells come from periodic images, from piecewise-constant
        injection of the next coarser level across coarse-fine interfaces,
        and from the field's boundary conditions at physical faces.
        """
        if field.location is not FieldLoc.CELL:
            return self._fill_face_patch(field, lev, ngrow)

        level = self.mesh[lev]
        geom = level.geom
        gbox = level.box.grow(ngrow)
        if lev == 0:
            index = []
            for d in range(3):
                idx = np.arange(gbox.lo[d], gbox.hi[d])
                n = geom.domain.shape[d]
                index.append(idx % n if geom.is_periodic[d] else np.clip(idx, 0, n - 1))
            out = field(0)[np.ix_(*index)].copy()
        else:
            out = self._inject_from_coarse(field, lev, gbox, face_dir=None)
            out[tuple(slice(ngrow, ngrow + n) for n in level.box.shape)] = field(lev)
            self._wrap_same_level(out, level, ngrow, face_dir=None)

        if ngrow > 0:
            self._apply_physical_bcs(field, out, level, ngrow)
        return out

    def interp_from_coarse(self, field: Field, lev: int) -> np.ndarray:
        """Level ``lev`` data of ``field`` interpolated from level ``lev-1``."""
        face_dir = None if field.location is FieldLoc.CELL else field.location.value
        return self._inject_from_coarse(field, lev, self.mesh[lev].box, face_dir)

    def _coarse_ngrow(self, lev, cbox):
        parent = self.mesh[lev - 1].box
        need = 0
        for d in range(3):
            need = max(need, parent.lo[d] - cbox.lo[d], cbox.hi[d] - parent.hi[d])
        return need + 1

    def _inject_from_coarse(self, field, lev, gbox, face_dir):
        r = self.mesh.ref_ratio
        cbox = gbox.coarsen(r)
        cng = self._coarse_ngrow(lev, cbox)
        cpad = self.fill_patch(field, lev - 1, cng)
        corigin = [l - cng for l in self.mesh[lev - 1].box.lo]

        if face_dir is None:
            index = [np.arange(gbox.lo[d], gbox.hi[d]) // r - corigin[d] for d in range(3)]
            return cpad[np.ix_(*index)].copy()

        index = []
        for d in range(3):
            if d == face_dir:
                f = np.arange(gbox.lo[d], gbox.hi[d] + 1)
                index.append(f // r - corigin[d])
            else:
                index.append(np.arange(gbox.lo[d], gbox.hi[d]) // r - corigin[d])
        lo_val = cpad[np.ix_(*index)]
        index[face_dir] = index[face_dir] + 1
        hi_val = cpad[np.ix_(*index)]
        f = np.arange(gbox.lo[face_dir], gbox.hi[face_dir] + 1)
        w = ((f % r) / r).reshape([-1 if d == face_dir else 1 for d in range(3)] + [1])
        return (1.0 - w) * lo_val + w * hi_val

    def _wrap_same_level(self, out, level, ng, face_dir):
        """Periodic images from the level itself where it spans a periodic direction."""
        if ng == 0:
            return
        geom = level.geom
        for d in range(3):
            if not geom.is_periodic[d] or level.box.shape[d] != geom.domain.shape[d]:
                continue
            n = level.box.shape[d]
            lo_ghost = [slice(None)] * 3
            lo_src = [slice(None)] * 3
            hi_ghost = [slice(None)] * 3
            hi_src = [slice(None)] * 3
            lo_ghost[d] = slice(0, ng)
            lo_src[d] = slice(n, n + ng)
            if d == face_dir:
                hi_ghost[d] = slice(ng + n + 1, None)
                hi_src[d] = slice(ng + 1, 2 * ng + 1)
            else:
                hi_ghost[d] = slice(ng + n, None)
                hi_src[d] = slice(ng, 2 * ng)
            out[tuple(lo_ghost)] = out[tuple(lo_src)]
            out[tuple(hi_ghost)] = out[tuple(hi_src)]

    def _apply_physical_bcs(self, field, out, level, ng):
        geom = level.geom
        dx = geom.cell_size
        for d in range(3):
            if geom.is_periodic[d]:
                continue
            n = level.box.shape[d]
            for side in (Side.LOW, Side.HIGH):
                touches = (
                    level.touches_domain_lo(d) if side is Side.LOW else level.touches_domain_hi(d)
                )
                if not touches:
                    continue
                slab = level.box.bdry_lo(d, ng) if side is Side.LOW else level.box.bdry_hi(d, ng)
                ori = Orientation(d, side)
                bc = field.bc_type[ori]
                values = field.bc_values[ori]
                for comp in range(field.ncomp):
                    kind = field.bc_kind(ori, comp)
                    grad = values[comp] if bc is BC.FIXED_GRADIENT else 0.0
                    for k in range(1, slab.shape[d] + 1):
                        if side is Side.LOW:
                            ghost, inner, mirror, sgn = ng - k, ng, ng + k - 1, -1.0
                        else:
                            ghost, inner, mirror, sgn = ng + n - 1 + k, ng + n - 1, ng + n - k, 1.0
                        g_idx = _axis_index(d, ghost) + (comp,)
                        if kind is BCKind.DIRICHLET:
                            out[g_idx] = values[comp]
                        elif kind is BCKind.ODD:
                            out[g_idx] = -out[_axis_index(d, mirror) + (comp,)]
                        else:
                            out[g_idx] = out[_axis_index(d, inner) + (comp,)] + sgn * k * dx[d] * grad

    def _fill_face_patch(self, field, lev, ng):
        level = self.mesh[lev]
        geom = level.geom
        fdir = field.location.value
        gbox = level.box.grow(ng)
        if lev == 0:
            index = []
            for d in range(3):
                n = geom.domain.shape[d]
                if d == fdir:
                    idx = np.arange(gbox.lo[d], gbox.hi[d] + 1)
                    index.append(idx % n if geom.is_periodic[d] else np.clip(idx, 0, n))
                else:
                    idx = np.arange(gbox.lo[d], gbox.hi[d])
                    index.append(idx % n if geom.is_periodic[d] else np.clip(idx, 0, n - 1))
            return field(0)[np.ix_(*index)].copy()

        out = self._inject_from_coarse(field, lev, gbox, face_dir=fdir)
        valid = tuple(
            slice(ng, ng + n + (1 if d == fdir else 0)) for d, n in enumerate(level.box.shape)
        )
        out[valid] = field(lev)
        self._wrap_same_level(out, level, ng, face_dir=fdir)
        for d in range(3):
            if geom.is_periodic[d] or ng == 0:
                continue
            n = level.box.shape[d] + (1 if d == fdir else 0)
            if level.touches_domain_lo(d):
                out[_axis_slice(d, 0, ng)] = out[_axis_slice(d, ng, ng + 1)]
            if level.touches_domain_hi(d):
                out[_axis_slice(d, ng + n, None)] = out[_axis_slice(d, ng + n - 1, ng + n)]
        return out


def _axis_index(direction, i):
    idx = [slice(None)] * 3
    idx[direction] = i
    return tuple(idx)


def _axis_slice(direction, start, stop):
    idx = [slice(None)] * 3
    idx[direction] = slice(start, stop)
    return tuple(idx)
