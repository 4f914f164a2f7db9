"""Incompressible-flow PDE advance on block-structured AMR meshes.

This package advances momentum and transported scalars by one time step:
right-hand-side assembly, Godunov or method-of-lines advection, MAC
projection of face velocities and explicit or implicit diffusion.

Operator Hierarchy:
-------------------
IncflowSolver (driver - predictor/corrector time stepping)
└── PDESystem (one transported quantity)
    ├── AdvectionOp
    │   ├── GodunovAdvection (unsplit, transverse corrections)
    │   └── MOLAdvection (method of lines)
    ├── DiffSolverIface
    │   ├── ScalarDiffusionOp
    │   └── TensorDiffusionOp
    ├── ComputeRHSOp
    └── MacProjOp (shared, momentum only)
"""

from .datastructures import (
    DiffusionType,
    GodunovScheme,
    LinearSolverOptions,
    LinOpKind,
    Metrics,
    Parameters,
    Scheme,
    TimeSeries,
)
from .errors import ConfigurationError, GeometryError
from .solver import IncflowSolver

__all__ = [
    # Driver
    "IncflowSolver",
    # Configurations
    "Parameters",
    "LinearSolverOptions",
    "DiffusionType",
    "Scheme",
    "GodunovScheme",
    "LinOpKind",
    # Results
    "Metrics",
    "TimeSeries",
    # Errors
    "ConfigurationError",
    "GeometryError",
]
