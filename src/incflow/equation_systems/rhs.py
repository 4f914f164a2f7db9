"""Assembly of the new field state from old state, source, convection and diffusion."""

import logging

from ..core.field import FieldState
from ..datastructures import DiffusionType, Scheme

log = logging.getLogger(__name__)

PREDICTOR_FACTOR = {
    DiffusionType.EXPLICIT: 1.0,
    DiffusionType.CRANK_NICOLSON: 0.5,
    DiffusionType.IMPLICIT: 0.0,
}

CORRECTOR_FACTORS = {
    DiffusionType.EXPLICIT: (0.5, 0.5),
    DiffusionType.CRANK_NICOLSON: (0.5, 0.0),
    DiffusionType.IMPLICIT: (0.0, 0.0),
}


class ComputeRHSOp:
    """Writes the NEW state of a PDE's transported field.

    Parameters
    ----------
    fields : PDEFields
        Operand bundle of the PDE.
    scheme : Scheme
        Godunov reads the NEW convective and diffusion terms in the
        predictor, MOL the OLD ones.
    """

    def __init__(self, fields, scheme: Scheme):
        self.fields = fields
        self.scheme = Scheme.parse(scheme)

    def _prepare(self, mesh_mapping):
        dof_new = self.fields.field
        dof_old = dof_new.state(FieldState.OLD)
        if mesh_mapping:
            # factors below carry the uniform-space mapping
            dof_new.to_stretched_space()
            dof_old.to_stretched_space()
        return dof_new, dof_old

    def _level_factors(self, lev, mesh_mapping):
        repo = self.fields.repo
        detJ = repo.mesh_detJ(lev)[..., None] if mesh_mapping else 1.0
        mask = repo.get_int_field("mask_cell")(lev).astype(float)
        return detJ, mask

    def _finish(self, lev, accum, old, detJ, difftype):
        """Apply the density and Jacobian normalisation to the accumulated sum."""
        fields = self.fields
        if fields.traits.multiply_rho:
            rho_old = fields.density.state(FieldState.OLD)(lev)
            rho_new = fields.density.state(FieldState.NEW)(lev)
            out = (rho_old * detJ * old + accum) / rho_new
        else:
            out = detJ * old + accum
        if difftype is DiffusionType.EXPLICIT:
            out = out / detJ
        return out

    def predictor_rhs(self, difftype, dt, mesh_mapping=False):
        """``fld_new = detJ*fld_old + mask*dt*(conv + detJ*src + factor*diff)``."""
        difftype = DiffusionType.parse(difftype)
        factor = PREDICTOR_FACTOR[difftype]
        fstate = FieldState.NEW if self.scheme is Scheme.GODUNOV else FieldState.OLD

        fields = self.fields
        dof_new, dof_old = self._prepare(mesh_mapping)
        conv = fields.conv_term.state(fstate)
        diff = fields.diff_term.state(fstate)
        for lev in range(fields.repo.num_active_levels()):
            detJ, mask = self._level_factors(lev, mesh_mapping)
            accum = mask * dt * (conv(lev) + detJ * fields.src_term(lev) + factor * diff(lev))
            dof_new(lev)[...] = self._finish(lev, accum, dof_old(lev), detJ, difftype)

    def corrector_rhs(self, difftype, dt, mesh_mapping=False):
        """Blend OLD and NEW convective and diffusion terms into ``fld_new``."""
        difftype = DiffusionType.parse(difftype)
        ofac, nfac = CORRECTOR_FACTORS[difftype]

        fields = self.fields
        dof_new, dof_old = self._prepare(mesh_mapping)
        conv_old = fields.conv_term.state(FieldState.OLD)
        conv_new = fields.conv_term.state(FieldState.NEW)
        diff_old = fields.diff_term.state(FieldState.OLD)
        diff_new = fields.diff_term.state(FieldState.NEW)
        for lev in range(fields.repo.num_active_levels()):
            detJ, mask = self._level_factors(lev, mesh_mapping)
            accum = mask * dt * (
                0.5 * (conv_old(lev) + conv_new(lev))
                + ofac * diff_old(lev)
                + nfac * diff_new(lev)
                + detJ * fields.src_term(lev)
            )
            dof_new(lev)[...] = self._finish(lev, accum, dof_old(lev), detJ, difftype)
