"""PDE operand bundles and the operators acting on them."""

from .advection import AdvectionOp, GodunovAdvection, MOLAdvection
from .diffusion import DiffSolverIface, DiffusionSolveResult, ScalarDiffusionOp, TensorDiffusionOp
from .macproj import MacProjOp, ProjectionResult
from .pde import ICNS, Density, PassiveScalar, PDEFields, PDETraits, Temperature
from .pde_system import PDESystem
from .rhs import ComputeRHSOp
from .source_terms import BodyForce, ConstantSource

__all__ = [
    # Operand bundles
    "PDETraits",
    "PDEFields",
    "ICNS",
    "Temperature",
    "PassiveScalar",
    "Density",
    "PDESystem",
    # Operators
    "ComputeRHSOp",
    "AdvectionOp",
    "GodunovAdvection",
    "MOLAdvection",
    "MacProjOp",
    "ProjectionResult",
    "DiffSolverIface",
    "DiffusionSolveResult",
    "ScalarDiffusionOp",
    "TensorDiffusionOp",
    # Sources
    "BodyForce",
    "ConstantSource",
]
