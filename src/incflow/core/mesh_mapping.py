"""Mesh-mapping collaborators.

A mapping relates the uniform computational mesh to a stretched physical
mesh through per-direction metric factors ``h_d = dx_d/dxi_d`` and the
Jacobian determinant ``detJ = h_x*h_y*h_z``.
"""

from abc import ABC, abstractmethod

import numpy as np

from .field import FieldLoc, location_shape


class MeshMapping(ABC):
    """Abstract diagonal mesh mapping."""

    def __init__(self, mesh):
        self.mesh = mesh

    @abstractmethod
    def metric(self, lev: int, direction: int, loc: FieldLoc = FieldLoc.CELL) -> np.ndarray:
        """Metric factor ``h_direction`` at the given location, shape of the location."""

    def detJ(self, lev: int, loc: FieldLoc = FieldLoc.CELL) -> np.ndarray:
        return self.metric(lev, 0, loc) * self.metric(lev, 1, loc) * self.metric(lev, 2, loc)

    def _component_factors(self, arr, lev, loc):
        ncomp = arr.shape[-1]
        if loc is FieldLoc.CELL and ncomp == 3:
            return np.stack([self.metric(lev, d, loc) for d in range(3)], axis=-1)
        if loc is not FieldLoc.CELL and ncomp == 1:
            return self.metric(lev, loc.value, loc)[..., None]
        return None

    def to_uniform(self, arr: np.ndarray, lev: int, loc: FieldLoc) -> np.ndarray:
        """Return velocity-like data expressed in computational units."""
        fac = self._component_factors(arr, lev, loc)
        return arr.copy() if fac is None else arr / fac

    def to_stretched(self, arr: np.ndarray, lev: int, loc: FieldLoc) -> np.ndarray:
        """Inverse of :meth:`to_uniform`."""
        fac = self._component_factors(arr, lev, loc)
        return arr.copy() if fac is None else arr * fac


class ConstantMap(MeshMapping):
    """Uniform scaling of each axis by a constant factor."""

    def __init__(self, mesh, scale=(1.0, 1.0, 1.0)):
        super().__init__(mesh)
        self.scale = tuple(float(s) for s in scale)

    def metric(self, lev, direction, loc=FieldLoc.CELL):
        shape = location_shape(self.mesh[lev].box.shape, loc)
        return np.full(shape, self.scale[direction])
