"""Scipy-based Krylov linear solvers."""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, gmres, spsolve

from ...datastructures import LinearSolverOptions
from ...errors import ConfigurationError

log = logging.getLogger(__name__)

_KRYLOV = {"cg": cg, "bicgstab": bicgstab, "gmres": gmres}


@dataclass
class LinearSolveResult:
    """Outcome of one implicit solve."""

    x: np.ndarray
    converged: bool
    iterations: int
    residual: float


def _jacobi(A_csr):
    diag = A_csr.diagonal().copy()
    diag[diag == 0.0] = 1.0
    inv = 1.0 / diag
    return LinearOperator(A_csr.shape, matvec=lambda v: inv * v)


def scipy_solver(
    A_csr: csr_matrix,
    b_np: np.ndarray,
    x0: np.ndarray = None,
    options: LinearSolverOptions = None,
) -> LinearSolveResult:
    """Solve A x = b with a scipy sparse solver.

    Parameters
    ----------
    A_csr : csr_matrix
        Sparse matrix in CSR format.
    b_np : np.ndarray
        Right-hand side vector.
    x0 : np.ndarray, optional
        Initial guess.
    options : LinearSolverOptions, optional
        Method (cg, bicgstab, gmres or spsolve), tolerance, iteration cap,
        preconditioner and nullspace handling.

    Returns
    -------
    LinearSolveResult
        Solution and convergence information. Non-convergence is reported,
        never raised.
    """
    options = options or LinearSolverOptions()
    method = options.method.lower()
    if method != "spsolve" and method not in _KRYLOV:
        raise ConfigurationError(f"Unknown linear solver method {options.method!r}")

    # Handle nullspace if requested (singular Poisson problems)
    b = b_np.copy()
    if options.remove_nullspace:
        b = b - np.mean(b)

    bnorm = np.linalg.norm(b)
    x_init = np.zeros_like(b) if x0 is None else np.asarray(x0, dtype=float)
    threshold = max(options.tolerance * bnorm, options.abs_tolerance)
    r0 = np.linalg.norm(b - A_csr @ x_init)
    if r0 <= threshold:
        residual = float(r0 / (bnorm if bnorm > 0 else 1.0))
        return LinearSolveResult(x=x_init.copy(), converged=True, iterations=0, residual=residual)

    if method == "spsolve":
        x = np.asarray(spsolve(A_csr.tocsc(), b))
        iterations = 1
        info = 0
    else:
        krylov = _KRYLOV[method]
        M = _jacobi(A_csr) if options.preconditioner == "jacobi" else None
        counter = {"n": 0}

        def callback(_):
            counter["n"] += 1

        kwargs = dict(
            rtol=options.tolerance, atol=options.abs_tolerance, maxiter=options.max_iterations, M=M
        )
        if method == "gmres":
            kwargs["callback_type"] = "pr_norm"
        x, info = krylov(A_csr, b, x0=x_init, callback=callback, **kwargs)
        iterations = counter["n"]
        if info < 0:
            log.warning(f"{method} broke down after {iterations} iterations (info={info})")
            if not np.all(np.isfinite(x)):
                x = x_init.copy()

    # Remove nullspace component from solution if requested
    if options.remove_nullspace:
        x = x - np.mean(x)

    residual = float(np.linalg.norm(b - A_csr @ x) / (bnorm if bnorm > 0 else 1.0))
    converged = info == 0
    if info > 0:
        log.debug(f"{method} stopped after {iterations} iterations, residual {residual:.3e}")
    return LinearSolveResult(x=x, converged=converged, iterations=iterations, residual=residual)
