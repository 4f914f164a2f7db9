"""Explicit and implicit treatment of the diffusion term."""

import logging
from abc import ABC
from dataclasses import dataclass, field
from typing import List

import numpy as np
from scipy.sparse import csr_matrix, diags

from ..core.bc import BCKind, Orientation, Side
from ..core.field import FieldLoc, FieldState
from ..datastructures import DiffusionType, LinearSolverOptions, LinOpKind, Scheme
from ..errors import ConfigurationError
from ..fv.assembly.laplacian import (
    BC_DIRICHLET_FACE,
    BC_DIRICHLET_GHOST,
    BC_NEUMANN,
    BC_PERIODIC,
    assemble_laplacian,
)
from ..fv.averaging import average_down, average_down_faces, divergence, face_average, face_difference
from ..fv.linear_solvers import scipy_solver
from ..fv.reconstruction import shift

log = logging.getLogger(__name__)


@dataclass
class DiffusionSolveResult:
    """Outcome of one implicit diffusion solve, all levels and components."""

    converged: bool = True
    iterations: List[int] = field(default_factory=list)
    residuals: List[float] = field(default_factory=list)


class DiffSolverIface(ABC):
    """Diffusion operator shared by the scalar and tensor variants.

    Parameters
    ----------
    fields : PDEFields
        Operand bundle; ``mueff`` supplies the coefficient.
    scheme : Scheme
        Godunov stores the explicit term in the NEW state, MOL in the
        requested state.
    options : LinearSolverOptions
        Implicit solver settings.
    mesh_mapping : bool
        Scale coefficients to uniform space by ``detJ_face/h_d**2``.
    """

    lin_op_kind = None
    ncomp = None

    def __init__(self, fields, scheme=Scheme.GODUNOV, options=None, mesh_mapping=False):
        traits = fields.traits
        if traits.lin_op_kind is not self.lin_op_kind or traits.ncomp != self.ncomp:
            raise ConfigurationError(
                f"{type(self).__name__} requires a {self.ncomp}-component PDE with "
                f"{self.lin_op_kind.name} operator, got {traits.name!r} "
                f"({traits.ncomp} components, {traits.lin_op_kind.name})"
            )
        self.fields = fields
        self.repo = fields.repo
        self.scheme = Scheme.parse(scheme)
        self.options = options or LinearSolverOptions()
        self.mesh_mapping = mesh_mapping

    # -----------------------------------------------------------------
    # Coefficients and boundary treatment
    # -----------------------------------------------------------------

    def _face_coefficients(self, lev):
        mu = self.repo.fill_patch(self.fields.mueff, lev, 1)
        coef = [face_average(mu, d, 1)[..., 0] for d in range(3)]
        if self.mesh_mapping:
            for d in range(3):
                loc = FieldLoc.face(d)
                h = self.repo.mesh_metric(lev, d, loc)
                coef[d] = coef[d] * self.repo.mesh_detJ(lev, loc) / (h * h)
        return coef

    def _bc_codes(self, lev, comp):
        level = self.repo.mesh[lev]
        geom = level.geom
        fld = self.fields.field
        bc_lo = np.zeros(3, dtype=np.int64)
        bc_hi = np.zeros(3, dtype=np.int64)
        for d in range(3):
            spans = level.box.shape[d] == geom.domain.shape[d]
            for side, codes, touches in (
                (Side.LOW, bc_lo, level.touches_domain_lo(d)),
                (Side.HIGH, bc_hi, level.touches_domain_hi(d)),
            ):
                if geom.is_periodic[d]:
                    codes[d] = BC_PERIODIC if spans else BC_DIRICHLET_GHOST
                elif not touches:
                    codes[d] = BC_DIRICHLET_GHOST
                elif fld.bc_kind(Orientation(d, side), comp) in (BCKind.DIRICHLET, BCKind.ODD):
                    codes[d] = BC_DIRICHLET_FACE
                else:
                    codes[d] = BC_NEUMANN
        return bc_lo, bc_hi

    def _normal_gradients(self, q_pad, lev):
        """Face-normal gradients of a 1-ghost padded array, boundary aware."""
        level = self.repo.mesh[lev]
        dxi = level.geom.cell_size
        grads = []
        for d in range(3):
            grad = face_difference(q_pad, d, 1) / dxi[d]
            if not level.geom.is_periodic[d]:
                n = level.box.shape[d]
                for side, touches in (
                    (Side.LOW, level.touches_domain_lo(d)),
                    (Side.HIGH, level.touches_domain_hi(d)),
                ):
                    if not touches:
                        continue
                    for comp in range(q_pad.shape[-1]):
                        kind = self.fields.field.bc_kind(Orientation(d, side), comp)
                        if kind not in (BCKind.DIRICHLET, BCKind.ODD):
                            continue
                        cell = [slice(1, -1)] * 3
                        ghost = [slice(1, -1)] * 3
                        face = [slice(None)] * 3
                        if side is Side.LOW:
                            cell[d], ghost[d], face[d] = 1, 0, 0
                        else:
                            cell[d], ghost[d], face[d] = n, n + 1, n
                        qi = q_pad[tuple(cell) + (comp,)]
                        g = q_pad[tuple(ghost) + (comp,)] if kind is BCKind.DIRICHLET else 0.0
                        sgn = 1.0 if side is Side.LOW else -1.0
                        grad[tuple(face) + (comp,)] = sgn * (qi - g) / (0.5 * dxi[d])
            grads.append(grad)
        return grads

    def _cross_fluxes(self, q_pad, lev, grads):
        """Transpose part ``mu * d(u_d)/dx_i`` on the faces normal to ``d``, if any."""
        return None

    def _level_fluxes(self, q, lev):
        q_pad = self.repo.fill_patch(q, lev, 1)
        coef = self._face_coefficients(lev)
        grads = self._normal_gradients(q_pad, lev)
        fluxes = [coef[d][..., None] * grads[d] for d in range(3)]
        cross = self._cross_fluxes(q_pad, lev, grads)
        if cross is not None:
            fluxes = [fluxes[d] + cross[d] for d in range(3)]
        return fluxes

    def _level_apply(self, q, lev):
        inv_dxi = self.repo.mesh.Geom(lev).inv_cell_size
        return divergence(self._level_fluxes(q, lev), inv_dxi)

    # -----------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------

    def compute_diff_term(self, fstate: FieldState = FieldState.OLD):
        """Apply the operator explicitly to the field in ``fstate``.

        Fine fluxes are averaged onto coincident coarse faces before the
        coarse divergence is taken.
        """
        repo = self.repo
        mesh = repo.mesh
        q = self.fields.field.state(fstate)
        target_state = FieldState.NEW if self.scheme is Scheme.GODUNOV else fstate
        dterm = self.fields.diff_term.state(target_state)

        nlev = repo.num_active_levels()
        fluxes = [self._level_fluxes(q, lev) for lev in range(nlev)]
        for lev in range(nlev - 1, 0, -1):
            average_down_faces(
                fluxes[lev], fluxes[lev - 1], mesh[lev].box, mesh[lev - 1].box.lo, mesh.ref_ratio
            )
        for lev in range(nlev):
            dterm(lev)[...] = divergence(fluxes[lev], mesh.Geom(lev).inv_cell_size)

    def linsys_solve(self, dt, difftype=DiffusionType.IMPLICIT) -> DiffusionSolveResult:
        """Solve ``(a - dt_d L) x = b`` for the NEW state, level by level.

        ``a`` is ``rho_new*detJ`` for density-weighted PDEs (``detJ``
        otherwise) and ``b`` the NEW state assembled by the RHS step, times
        ``rho_new`` when density weighted. Crank-Nicolson uses
        ``dt_d = dt/2``. Fine results are averaged down afterwards.
        """
        difftype = DiffusionType.parse(difftype)
        dt_diff = 0.5 * dt if difftype is DiffusionType.CRANK_NICOLSON else dt
        repo = self.repo
        fields = self.fields
        fld = fields.field
        result = DiffusionSolveResult()

        for lev in range(repo.num_active_levels()):
            geom = repo.mesh.Geom(lev)
            shape = repo.mesh[lev].box.shape
            mask = repo.get_int_field("mask_cell")(lev)[..., 0].astype(np.int32)
            acoef = np.ones(shape)
            if self.mesh_mapping:
                acoef = acoef * repo.mesh_detJ(lev)
            rhs = fld(lev).copy()
            if fields.traits.multiply_rho:
                rho = fields.density.state(FieldState.NEW)(lev)[..., 0]
                acoef = acoef * rho
                rhs = rhs * rho[..., None]

            x0 = fld(lev).copy()
            explicit = self._level_apply(fld, lev)
            coef = self._face_coefficients(lev)
            idxi2 = np.array([1.0 / (h * h) for h in geom.cell_size])
            for comp in range(fld.ncomp):
                bc_lo, bc_hi = self._bc_codes(lev, comp)
                row, col, data = assemble_laplacian(
                    coef[0], coef[1], coef[2], bc_lo, bc_hi, mask, idxi2
                )
                n = mask.size
                A_L = csr_matrix((data, (row, col)), shape=(n, n))
                M = diags(acoef.ravel()) + dt_diff * A_L

                xc = x0[..., comp].ravel()
                # affine part of the explicit operator: boundary values and lagged terms
                c = explicit[..., comp].ravel() + A_L @ xc
                b = rhs[..., comp].ravel() + dt_diff * c
                masked = mask.ravel() == 0
                b[masked] = (acoef.ravel()[masked] + dt_diff) * xc[masked]

                sol = scipy_solver(M.tocsr(), b, x0=xc, options=self.options)
                fld(lev)[..., comp] = sol.x.reshape(shape)
                result.iterations.append(sol.iterations)
                result.residuals.append(sol.residual)
                if not sol.converged:
                    result.converged = False
                    log.warning(
                        f"Diffusion solve for {fld.name}[{comp}] on level {lev} "
                        f"did not converge: residual {sol.residual:.3e}"
                    )

        average_down(fld, repo.mesh)
        return result


class ScalarDiffusionOp(DiffSolverIface):
    """Isotropic ``div(mu grad q)`` for one-component PDEs."""

    lin_op_kind = LinOpKind.SCALAR
    ncomp = 1


class TensorDiffusionOp(DiffSolverIface):
    """Viscous stress ``div(mu (grad u + grad u^T))`` for the velocity.

    The transpose part couples components; in the implicit solve it is
    evaluated from the current state and carried on the right-hand side.
    """

    lin_op_kind = LinOpKind.TENSOR
    ncomp = 3

    def _cross_fluxes(self, q_pad, lev, grads):
        coef = self._face_coefficients_unscaled(lev)
        dxi = self.repo.mesh.Geom(lev).cell_size
        fluxes = []
        for d in range(3):
            flux = np.zeros_like(grads[d])
            for i in range(3):
                if i == d:
                    deriv = grads[d][..., d]
                    scale = self._mapping_scale(lev, d, d)
                else:
                    comp = q_pad[..., d]
                    centred = (shift(comp, 1, i) - shift(comp, -1, i)) / (2.0 * dxi[i])
                    deriv = face_average(centred[..., None], d, 1)[..., 0]
                    scale = self._mapping_scale(lev, d, i)
                flux[..., i] = coef[d] * scale * deriv
            fluxes.append(flux)
        return fluxes

    def _face_coefficients_unscaled(self, lev):
        mu = self.repo.fill_patch(self.fields.mueff, lev, 1)
        return [face_average(mu, d, 1)[..., 0] for d in range(3)]

    def _mapping_scale(self, lev, d, i):
        if not self.mesh_mapping:
            return 1.0
        loc = FieldLoc.face(d)
        return self.repo.mesh_detJ(lev, loc) / (
            self.repo.mesh_metric(lev, d, loc) * self.repo.mesh_metric(lev, i, loc)
        )
