"""Mesh hierarchy, boundary conditions, fields and the field registry."""

from .bc import BC, BCKind, ORIENTATIONS, Orientation, Side, component_kind, projection_kind
from .field import Field, FieldLoc, FieldState, IntField, MeshSpace, location_shape
from .mesh import Box, Geometry, Level, MeshHierarchy, for_each_tile
from .mesh_mapping import ConstantMap, MeshMapping
from .repo import FieldRepo

__all__ = [
    # Mesh
    "Box",
    "Geometry",
    "Level",
    "MeshHierarchy",
    "for_each_tile",
    # Boundary conditions
    "BC",
    "BCKind",
    "ORIENTATIONS",
    "Orientation",
    "Side",
    "component_kind",
    "projection_kind",
    # Fields
    "Field",
    "FieldLoc",
    "FieldState",
    "IntField",
    "MeshSpace",
    "location_shape",
    "FieldRepo",
    # Mesh mapping
    "MeshMapping",
    "ConstantMap",
]
