"""One transported quantity together with its operators."""

import logging

from ..core.field import FieldState
from ..datastructures import DiffusionType, LinOpKind, Parameters, Scheme
from ..fv.averaging import average_down
from .advection import GodunovAdvection, MOLAdvection
from .diffusion import ScalarDiffusionOp, TensorDiffusionOp
from .pde import PDEFields, PDETraits
from .rhs import ComputeRHSOp

log = logging.getLogger(__name__)


class PDESystem:
    """Operand bundle plus the advection, diffusion and RHS operators of one PDE.

    The advection and diffusion strategies are chosen once here and used
    through their common interfaces for the rest of the run.

    Parameters
    ----------
    repo : FieldRepo
        Field registry.
    traits : PDETraits
        Static description of the quantity.
    params : Parameters
        Run configuration.
    turbulence : TurbulenceModel
        Supplies the effective diffusivity.
    macproj : MacProjOp, optional
        Projection used by ``preadvect``; only the momentum PDE needs it.
    sources : sequence of callables
        Source terms ``source(fields, lev, fstate)`` accumulated each step.
    """

    def __init__(self, repo, traits: PDETraits, params: Parameters, turbulence, macproj=None, sources=()):
        self.repo = repo
        self.traits = traits
        self.params = params
        self.fields = PDEFields(repo, traits)
        self.turbulence = turbulence
        self.sources = list(sources)
        self.scheme = params.advection_scheme
        self.difftype = params.diffusion_type

        adv_kwargs = dict(
            macproj=macproj,
            mesh_mapping=params.mesh_mapping,
            tile_size=params.tile_size,
            n_workers=params.n_workers,
        )
        if self.scheme is Scheme.GODUNOV:
            self.advection = GodunovAdvection(
                self.fields, godunov_scheme=params.godunov_scheme(), **adv_kwargs
            )
        else:
            self.advection = MOLAdvection(self.fields, **adv_kwargs)

        self.diffusion = None
        if traits.has_diffusion:
            op = TensorDiffusionOp if traits.lin_op_kind is LinOpKind.TENSOR else ScalarDiffusionOp
            self.diffusion = op(
                self.fields,
                scheme=self.scheme,
                options=params.diffusion_options(),
                mesh_mapping=params.mesh_mapping,
            )
        self.rhs = ComputeRHSOp(self.fields, self.scheme)

    @property
    def name(self) -> str:
        return self.traits.name

    def compute_source_term(self, fstate=FieldState.NEW):
        src = self.fields.src_term
        src.set_val(0.0)
        for lev in range(self.repo.num_active_levels()):
            for source in self.sources:
                source(self.fields, lev, fstate)

    def compute_mueff(self, fstate=FieldState.NEW):
        if self.diffusion is not None:
            self.turbulence.update_diffusivity(self.fields)

    def pre_advection_actions(self, fstate, dt):
        """Predict and project face velocities; returns the projection result."""
        return self.advection.preadvect(fstate, dt)

    def compute_advection_term(self, fstate, dt):
        self.advection(fstate, dt)

    def compute_diffusion_term(self, fstate):
        if self.diffusion is not None:
            self.diffusion.compute_diff_term(fstate)

    def compute_predictor_rhs(self, dt):
        self.rhs.predictor_rhs(self.difftype, dt, self.params.mesh_mapping)

    def compute_corrector_rhs(self, dt):
        self.rhs.corrector_rhs(self.difftype, dt, self.params.mesh_mapping)

    def solve(self, dt):
        """Implicit diffusion solve, or ``None`` when diffusion is explicit or absent."""
        if self.diffusion is None or self.difftype is DiffusionType.EXPLICIT:
            return None
        return self.diffusion.linsys_solve(dt, self.difftype)

    def post_solve_actions(self):
        average_down(self.fields.field, self.repo.mesh)

    def advance_states(self):
        """Copy NEW into OLD before a new time step."""
        self.fields.field.state(FieldState.OLD).copy_from(self.fields.field)
