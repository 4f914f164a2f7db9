"""Linear solvers for the implicit projection and diffusion systems."""

from .scipy_solver import LinearSolveResult, scipy_solver

__all__ = ["LinearSolveResult", "scipy_solver"]
