"""Pytest configuration and fixtures for the PDE operator tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def periodic_mesh():
    """Single periodic 8^3 level on the unit cube."""
    from incflow.core import MeshHierarchy

    return MeshHierarchy(n_cell=(8, 8, 8))


@pytest.fixture
def periodic_repo(periodic_mesh):
    from incflow.core import FieldRepo

    return FieldRepo(periodic_mesh)


@pytest.fixture
def two_level_mesh():
    """Periodic 8^3 base level with a refined block covering its centre."""
    from incflow.core import Box, MeshHierarchy

    return MeshHierarchy(n_cell=(8, 8, 8), fine_boxes=[Box((4, 4, 4), (12, 12, 12))])


@pytest.fixture
def channel_repo():
    """16x4x4 level, walls in x and periodic in y and z."""
    from incflow.core import FieldRepo, MeshHierarchy

    mesh = MeshHierarchy(n_cell=(16, 4, 4), is_periodic=(False, True, True))
    return FieldRepo(mesh)


def set_density(fields, value=1.0):
    """Fill both density states of a PDE bundle."""
    from incflow.core import FieldState

    fields.density.set_val(value)
    fields.density.state(FieldState.OLD).set_val(value)


def face_centers(level, direction):
    """Face coordinates along ``direction`` of one level (``n+1`` points)."""
    geom = level.geom
    dx = geom.cell_size[direction]
    idx = np.arange(level.box.lo[direction], level.box.hi[direction] + 1)
    return geom.prob_lo[direction] + idx * dx


def composite_integral(fld, mesh):
    """Volume integral over a two-level hierarchy, counting covered coarse cells once."""
    coarse = fld(0).copy()
    covered = mesh[1].box.coarsen(mesh.ref_ratio).slices(mesh[0].box.lo)
    coarse[covered] = 0.0
    total = coarse.sum(axis=(0, 1, 2)) * mesh.Geom(0).cell_volume
    total += fld(1).sum(axis=(0, 1, 2)) * mesh.Geom(1).cell_volume
    return total
