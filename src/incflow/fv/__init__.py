"""Finite-volume kernels: reconstruction, Godunov and MOL fluxes, averaging,
operator assembly and linear solvers."""
