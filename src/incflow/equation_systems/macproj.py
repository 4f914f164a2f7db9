"""Approximate (MAC) projection of face velocities."""

import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np
from scipy.sparse import csr_matrix

from ..core.bc import BCKind, Orientation, Side, projection_kind
from ..core.field import FieldLoc, FieldState
from ..datastructures import LinearSolverOptions
from ..fv.assembly.laplacian import (
    BC_DIRICHLET_FACE,
    BC_NEUMANN,
    BC_PERIODIC,
    assemble_laplacian,
)
from ..fv.averaging import average_down_face_fields, divergence, face_average
from ..fv.linear_solvers import scipy_solver

log = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """Outcome of one projection, all levels."""

    converged: bool = True
    iterations: List[int] = field(default_factory=list)
    residuals: List[float] = field(default_factory=list)
    max_divergence: float = 0.0


class MacProjOp:
    """Makes ``u_mac, v_mac, w_mac`` discretely divergence free.

    Solves ``-div(beta grad phi) = -div(u*)`` level by level, coarse to
    fine, with ``beta = 1/rho`` on faces, and corrects
    ``u = u* - beta grad phi``. Fine levels take their coarse-fine
    interface velocities from the projected coarse level and are averaged
    back down afterwards.

    Parameters
    ----------
    repo : FieldRepo
        Registry holding ``velocity``, ``density``, the MAC velocities and
        ``mask_cell``.
    has_overset : bool
        Remove cells with ``mask_cell == 0`` from the system.
    variable_density : bool
        Use the face-averaged density; otherwise ``rho_0``.
    mesh_mapping : bool
        Pose the solve in uniform computational space.
    options : LinearSolverOptions
        Solver method and tolerances.
    rho_0 : float
        Reference density.
    """

    def __init__(
        self,
        repo,
        has_overset=False,
        variable_density=False,
        mesh_mapping=False,
        options: LinearSolverOptions = None,
        rho_0=1.0,
    ):
        self.repo = repo
        self.has_overset = has_overset
        self.variable_density = variable_density
        self.mesh_mapping = mesh_mapping
        self.options = options or LinearSolverOptions(method="cg")
        self.rho_0 = rho_0
        self._need_init = True
        self._operators = {}

    @property
    def need_init(self) -> bool:
        return self._need_init

    def _umac(self):
        return [self.repo.get_field(f"{c}_mac") for c in "uvw"]

    def _bc_codes(self, lev):
        """Boundary codes of the level box faces for the potential."""
        level = self.repo.mesh[lev]
        geom = level.geom
        velocity = self.repo.get_field("velocity")
        bc_lo = np.zeros(3, dtype=np.int64)
        bc_hi = np.zeros(3, dtype=np.int64)
        for d in range(3):
            spans = level.box.shape[d] == geom.domain.shape[d]
            for side, codes, touches in (
                (Side.LOW, bc_lo, level.touches_domain_lo(d)),
                (Side.HIGH, bc_hi, level.touches_domain_hi(d)),
            ):
                if geom.is_periodic[d]:
                    codes[d] = BC_PERIODIC if spans else BC_NEUMANN
                elif not touches:
                    codes[d] = BC_NEUMANN
                elif projection_kind(velocity.bc_type[Orientation(d, side)]) is BCKind.DIRICHLET:
                    codes[d] = BC_DIRICHLET_FACE
                else:
                    codes[d] = BC_NEUMANN
        return bc_lo, bc_hi

    def _mask(self, lev):
        shape = self.repo.mesh[lev].box.shape
        if self.has_overset:
            return self.repo.get_int_field("mask_cell")(lev)[..., 0].astype(np.int32)
        return np.ones(shape, dtype=np.int32)

    def _coefficients(self, lev, fstate):
        """Face coefficients ``beta`` (times ``J/h**2`` under mesh mapping)."""
        repo = self.repo
        if self.variable_density:
            density = repo.get_field("density").state(fstate)
            rho = repo.fill_patch(density, lev, 1)
            beta = [1.0 / face_average(rho, d, 1)[..., 0] for d in range(3)]
        else:
            shape = repo.mesh[lev].box.shape
            beta = []
            for d in range(3):
                fshape = list(shape)
                fshape[d] += 1
                beta.append(np.full(fshape, 1.0 / self.rho_0))
        if self.mesh_mapping:
            for d in range(3):
                loc = FieldLoc.face(d)
                h = repo.mesh_metric(lev, d, loc)
                beta[d] = beta[d] * repo.mesh_detJ(lev, loc) / (h * h)
        return beta

    def _contravariant(self, lev, u):
        if not self.mesh_mapping:
            return [ud.copy() for ud in u]
        out = []
        for d in range(3):
            loc = FieldLoc.face(d)
            out.append(u[d] * self.repo.mesh_detJ(lev, loc) / self.repo.mesh_metric(lev, d, loc))
        return out

    def _set_interface_velocities(self, lev, umac):
        """Copy coarse velocities onto the coarse-fine interface faces of ``lev``."""
        level = self.repo.mesh[lev]
        geom = level.geom
        for d in range(3):
            if geom.is_periodic[d] and level.box.shape[d] == geom.domain.shape[d]:
                continue
            coarse = self.repo.interp_from_coarse(umac[d], lev)
            arr = umac[d](lev)
            for face, touches in ((0, level.touches_domain_lo(d)), (-1, level.touches_domain_hi(d))):
                if touches and not geom.is_periodic[d]:
                    continue
                idx = [slice(None)] * 3
                idx[d] = face
                arr[tuple(idx)] = coarse[tuple(idx)]

    def _sync_periodic_faces(self, lev, umac):
        """Make the duplicated low and high faces of a spanned periodic direction agree."""
        level = self.repo.mesh[lev]
        geom = level.geom
        for d in range(3):
            if geom.is_periodic[d] and level.box.shape[d] == geom.domain.shape[d]:
                arr = umac[d](lev)
                lo = [slice(None)] * 3
                hi = [slice(None)] * 3
                lo[d] = 0
                hi[d] = -1
                arr[tuple(hi)] = arr[tuple(lo)]

    def _operator(self, lev, beta, bc_lo, bc_hi, mask, dxi):
        rebuild = self._need_init or self.variable_density or self.mesh_mapping
        if rebuild or lev not in self._operators:
            idxi2 = np.array([1.0 / (h * h) for h in dxi])
            row, col, data = assemble_laplacian(
                beta[0], beta[1], beta[2], bc_lo, bc_hi, mask, idxi2
            )
            n = mask.size
            self._operators[lev] = csr_matrix((data, (row, col)), shape=(n, n))
        return self._operators[lev]

    @staticmethod
    def _gradient(phi, direction, dxi, code_lo, code_hi):
        n = phi.shape[direction]
        fshape = list(phi.shape)
        fshape[direction] += 1
        grad = np.zeros(fshape)
        inner = [slice(None)] * 3
        inner[direction] = slice(1, n)
        grad[tuple(inner)] = np.diff(phi, axis=direction) / dxi

        first = np.take(phi, [0], axis=direction)
        last = np.take(phi, [n - 1], axis=direction)
        lo = [slice(None)] * 3
        hi = [slice(None)] * 3
        lo[direction] = slice(0, 1)
        hi[direction] = slice(n, n + 1)
        if code_lo == BC_PERIODIC:
            grad[tuple(lo)] = (first - last) / dxi
            grad[tuple(hi)] = (first - last) / dxi
        if code_lo == BC_DIRICHLET_FACE:
            grad[tuple(lo)] = first / (0.5 * dxi)
        if code_hi == BC_DIRICHLET_FACE:
            grad[tuple(hi)] = -last / (0.5 * dxi)
        return grad

    def __call__(self, fstate: FieldState = FieldState.NEW, dt: float = 0.0) -> ProjectionResult:
        repo = self.repo
        umac = self._umac()
        result = ProjectionResult()

        for lev in range(repo.num_active_levels()):
            if lev > 0:
                self._set_interface_velocities(lev, umac)
            self._sync_periodic_faces(lev, umac)
            geom = repo.mesh.Geom(lev)
            dxi = geom.cell_size
            inv_dxi = geom.inv_cell_size

            u = [umac[d](lev)[..., 0] for d in range(3)]
            beta = self._coefficients(lev, fstate)
            bc_lo, bc_hi = self._bc_codes(lev)
            mask = self._mask(lev)
            A = self._operator(lev, beta, bc_lo, bc_hi, mask, dxi)

            U = self._contravariant(lev, u)
            rhs = -divergence(U, inv_dxi)
            rhs[mask == 0] = 0.0

            singular = (
                not np.any(bc_lo == BC_DIRICHLET_FACE)
                and not np.any(bc_hi == BC_DIRICHLET_FACE)
                and bool(np.all(mask == 1))
            )
            options = LinearSolverOptions(
                method=self.options.method,
                tolerance=self.options.tolerance,
                max_iterations=self.options.max_iterations,
                preconditioner=self.options.preconditioner,
                remove_nullspace=singular,
            )
            sol = scipy_solver(A, rhs.ravel(), options=options)
            phi = sol.x.reshape(mask.shape)
            phi[mask == 0] = 0.0

            for d in range(3):
                grad = self._gradient(phi, d, dxi[d], bc_lo[d], bc_hi[d])
                U[d] = U[d] - beta[d] * grad
                if self.mesh_mapping:
                    loc = FieldLoc.face(d)
                    u[d][...] = U[d] * repo.mesh_metric(lev, d, loc) / repo.mesh_detJ(lev, loc)
                else:
                    u[d][...] = U[d]

            div = divergence(U, inv_dxi)
            div_active = np.abs(div[mask == 1])
            max_div = float(div_active.max()) if div_active.size else 0.0
            result.max_divergence = max(result.max_divergence, max_div)
            result.iterations.append(sol.iterations)
            result.residuals.append(sol.residual)
            if not sol.converged:
                result.converged = False
                log.warning(
                    f"MAC projection on level {lev} did not converge: residual {sol.residual:.3e}"
                )
            log.debug(f"MAC projection level {lev}: {sol.iterations} iterations, max div {max_div:.3e}")

        average_down_face_fields(umac, repo.mesh)
        self._need_init = False
        return result
