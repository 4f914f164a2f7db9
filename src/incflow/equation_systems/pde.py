"""PDE traits and the per-quantity operand bundle."""

from dataclasses import dataclass
from typing import Tuple

from ..core.field import Field, FieldLoc, FieldState
from ..datastructures import LinOpKind


@dataclass(frozen=True)
class PDETraits:
    """Static properties of one transported quantity.

    ``iconserv`` holds one flag per component: 1 differences the flux
    directly, 0 factors the advecting velocity out first.
    """

    name: str
    ncomp: int
    multiply_rho: bool
    lin_op_kind: LinOpKind
    iconserv: Tuple[int, ...]
    has_diffusion: bool = True


ICNS = PDETraits("velocity", 3, True, LinOpKind.TENSOR, (0, 0, 0))
Temperature = PDETraits("temperature", 1, True, LinOpKind.SCALAR, (1,))
PassiveScalar = PDETraits("passive_scalar", 1, True, LinOpKind.SCALAR, (1,))
Density = PDETraits("density", 1, False, LinOpKind.SCALAR, (1,), has_diffusion=False)


class PDEFields:
    """Non-owning bundle of the fields one PDE reads and writes.

    The transported field carries NEW and OLD states; the source term one
    state; the convective and diffusion terms NEW and OLD (Godunov only
    uses NEW, MOL both). Density and ``mueff`` are scalar.
    """

    def __init__(self, repo, traits: PDETraits):
        self.repo = repo
        self.traits = traits
        name = traits.name
        ncomp = traits.ncomp
        self.field: Field = repo.declare_field(name, ncomp, nstates=2)
        self.src_term: Field = repo.declare_field(f"{name}_src_term", ncomp)
        self.diff_term: Field = repo.declare_field(f"{name}_diff_term", ncomp, nstates=2)
        self.conv_term: Field = repo.declare_field(f"conv_{name}", ncomp, nstates=2)
        self.mueff: Field = repo.declare_field(f"{name}_mueff", 1)
        self.density: Field = repo.declare_field("density", 1, nstates=2)
        self.umac = [
            repo.declare_field(f"{c}_mac", 1, location=FieldLoc.face(d))
            for d, c in enumerate("uvw")
        ]

    def old(self) -> Field:
        return self.field.state(FieldState.OLD)
