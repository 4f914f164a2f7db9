"""Tests for coarse-fine averaging, divergence and Laplacian assembly."""

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from incflow.core import Box, FieldLoc, FieldRepo
from incflow.fv.assembly import assemble_laplacian
from incflow.fv.assembly.laplacian import (
    BC_DIRICHLET_FACE,
    BC_DIRICHLET_GHOST,
    BC_NEUMANN,
    BC_PERIODIC,
)
from incflow.fv.averaging import (
    average_down,
    average_down_cells,
    average_down_face,
    divergence,
    face_average,
    face_difference,
)


class TestAverageDown:
    """Fine-to-coarse synchronisation."""

    def test_cells_take_mean_of_children(self):
        rng = np.random.default_rng(0)
        fine = rng.random((4, 4, 4, 1))
        coarse = np.zeros((4, 4, 4, 1))
        average_down_cells(fine, coarse, Box((2, 2, 2), (6, 6, 6)), (0, 0, 0), 2)

        assert coarse[1, 1, 1, 0] == pytest.approx(fine[:2, :2, :2].mean())
        assert coarse[2, 2, 2, 0] == pytest.approx(fine[2:, 2:, 2:].mean())
        assert coarse[0, 0, 0, 0] == 0.0

    def test_face_flux_sums_match(self):
        """Area-weighted fine flux through a coarse face equals the coarse flux."""
        rng = np.random.default_rng(1)
        fine = rng.random((5, 4, 4, 1))
        coarse = np.zeros((5, 4, 4, 1))
        average_down_face(fine, coarse, 0, Box((2, 2, 2), (6, 6, 6)), (0, 0, 0), 2)

        # coarse face area is 4 fine face areas
        for plane, fine_plane in ((1, 0), (2, 2), (3, 4)):
            assert 4.0 * coarse[plane, 1:3, 1:3].sum() == pytest.approx(fine[fine_plane].sum())
        # faces not covered by the fine box are untouched
        assert np.all(coarse[0] == 0.0)
        assert np.all(coarse[4] == 0.0)

    def test_average_down_field(self, two_level_mesh):
        repo = FieldRepo(two_level_mesh)
        fld = repo.declare_field("s", 1)
        fld(1)[...] = 2.0
        average_down(fld, two_level_mesh)

        assert np.all(fld(0)[2:6, 2:6, 2:6] == 2.0)
        assert fld(0).sum() == pytest.approx(2.0 * 4**3)

    def test_average_down_face_field(self, two_level_mesh):
        repo = FieldRepo(two_level_mesh)
        fld = repo.declare_field("w_mac", 1, location=FieldLoc.ZFACE)
        fld(1)[...] = 3.0
        average_down(fld, two_level_mesh)

        assert np.all(fld(0)[2:6, 2:6, 2:7] == 3.0)
        assert np.all(fld(0)[:, :, 0] == 0.0)


class TestFaceOperators:
    """Face averages, differences and the cell divergence."""

    def test_face_average_and_difference(self):
        x = np.arange(6.0)
        padded = np.broadcast_to(x.reshape(6, 1, 1, 1), (6, 3, 3, 1)).copy()
        avg = face_average(padded, 0, 1)
        diff = face_difference(padded, 0, 1)

        assert avg.shape == (5, 1, 1, 1)
        np.testing.assert_allclose(avg[:, 0, 0, 0], x[:-1] + 0.5)
        np.testing.assert_allclose(diff, 1.0)

    def test_divergence_of_linear_field(self):
        n = 4
        dx = 0.25
        xf = np.arange(n + 1) * dx
        faces = [
            np.broadcast_to(xf.reshape(-1, 1, 1), (n + 1, n, n)),
            np.zeros((n, n + 1, n)),
            np.broadcast_to((2.0 * xf).reshape(1, 1, -1), (n, n, n + 1)),
        ]
        div = divergence(faces, (1 / dx,) * 3)
        np.testing.assert_allclose(div, 3.0)


class TestLaplacianAssembly:
    """Sparse ``-L`` assembly with boundary codes and masks."""

    def _matrix(self, shape, bc_lo, bc_hi, mask=None, dx=1.0):
        nx, ny, nz = shape
        bx = np.ones((nx + 1, ny, nz))
        by = np.ones((nx, ny + 1, nz))
        bz = np.ones((nx, ny, nz + 1))
        if mask is None:
            mask = np.ones(shape, dtype=np.int32)
        idxi2 = np.full(3, 1.0 / dx**2)
        row, col, data = assemble_laplacian(
            bx, by, bz,
            np.array(bc_lo, dtype=np.int64), np.array(bc_hi, dtype=np.int64),
            mask, idxi2,
        )
        n = mask.size
        return csr_matrix((data, (row, col)), shape=(n, n))

    def test_periodic_nullspace(self):
        A = self._matrix((4, 3, 2), [BC_PERIODIC] * 3, [BC_PERIODIC] * 3)
        np.testing.assert_allclose(A @ np.ones(24), 0.0, atol=1e-12)
        assert abs(A - A.T).max() < 1e-12

    def test_neumann_nullspace(self):
        A = self._matrix((4, 3, 2), [BC_NEUMANN] * 3, [BC_NEUMANN] * 3)
        np.testing.assert_allclose(A @ np.ones(24), 0.0, atol=1e-12)

    def test_dirichlet_face_diagonal(self):
        A = self._matrix((4, 1, 1), [BC_DIRICHLET_FACE, BC_NEUMANN, BC_NEUMANN],
                         [BC_DIRICHLET_GHOST, BC_NEUMANN, BC_NEUMANN], dx=0.5)
        r = A @ np.ones(4)
        # face value 2b/dx^2 on the low side, ghost value b/dx^2 on the high side
        np.testing.assert_allclose(r, [8.0, 0.0, 0.0, 4.0])

    def test_masked_cells_get_identity_rows(self):
        mask = np.ones((4, 1, 1), dtype=np.int32)
        mask[1] = 0
        A = self._matrix((4, 1, 1), [BC_NEUMANN] * 3, [BC_NEUMANN] * 3, mask=mask)
        dense = A.toarray()
        np.testing.assert_allclose(dense[1], [0.0, 1.0, 0.0, 0.0])
        # coupling into the masked cell is dropped, diagonal kept
        assert dense[0, 1] == 0.0
        assert dense[0, 0] == 1.0
        assert dense[2, 1] == 0.0
        assert dense[2, 2] == 2.0

    def test_one_diagonal_triplet_per_cell(self):
        shape = (4, 3, 2)
        nx, ny, nz = shape
        mask = np.ones(shape, dtype=np.int32)
        row, col, data = assemble_laplacian(
            np.ones((nx + 1, ny, nz)), np.ones((nx, ny + 1, nz)), np.ones((nx, ny, nz + 1)),
            np.full(3, BC_PERIODIC, dtype=np.int64), np.full(3, BC_PERIODIC, dtype=np.int64),
            mask, np.ones(3),
        )
        assert len(row) == 7 * mask.size
        diagonal = row == col
        assert diagonal.sum() == mask.size
        np.testing.assert_allclose(data[diagonal], 6.0)
