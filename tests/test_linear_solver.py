"""Tests for the scipy linear solver wrapper."""

import numpy as np
import pytest
from scipy.sparse import csr_matrix, identity

from incflow.datastructures import LinearSolverOptions
from incflow.errors import ConfigurationError
from incflow.fv.linear_solvers import scipy_solver


class TestScipySolver:
    """Convergence and failure reporting."""

    @pytest.mark.parametrize("method", ["cg", "bicgstab", "gmres", "spsolve"])
    def test_diagonal_system(self, method):
        A = csr_matrix(np.diag([1.0, 2.0, 4.0]))
        result = scipy_solver(A, np.array([1.0, 1.0, 1.0]), options=LinearSolverOptions(method=method))
        assert result.converged
        np.testing.assert_allclose(result.x, [1.0, 0.5, 0.25], atol=1e-9)

    def test_breakdown_is_reported(self):
        # r0 . (A r0) = 0 stops BiCGSTAB on its first iteration
        A = csr_matrix(np.array([[0.0, 1.0], [1.0, 0.0]]))
        options = LinearSolverOptions(method="bicgstab", preconditioner=None)
        result = scipy_solver(A, np.array([1.0, 0.0]), options=options)
        assert not result.converged
        assert np.all(np.isfinite(result.x))

    def test_round_off_rhs_returns_initial_guess(self):
        A = 64.0 * identity(8, format="csr")
        b = np.full(8, 1e-19)
        result = scipy_solver(A, b, x0=np.zeros(8))
        assert result.converged
        assert result.iterations == 0
        np.testing.assert_array_equal(result.x, 0.0)

    def test_exact_initial_guess(self):
        A = csr_matrix(np.diag([2.0, 3.0]))
        x0 = np.array([0.5, 2.0])
        result = scipy_solver(A, A @ x0, x0=x0)
        assert result.converged
        assert result.iterations == 0
        np.testing.assert_allclose(result.x, x0)

    def test_nullspace_removed(self):
        # periodic 1-D Laplacian is singular; solution fixed to zero mean
        n = 6
        A = 2.0 * np.eye(n) - np.roll(np.eye(n), 1, axis=0) - np.roll(np.eye(n), -1, axis=0)
        b = np.sin(2 * np.pi * np.arange(n) / n) + 3.0
        options = LinearSolverOptions(method="cg", remove_nullspace=True)
        result = scipy_solver(csr_matrix(A), b, options=options)
        assert result.converged
        assert abs(result.x.mean()) < 1e-12

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError):
            scipy_solver(identity(2, format="csr"), np.zeros(2), options=LinearSolverOptions(method="lu"))
