"""Advection strategies: unsplit Godunov and method of lines.

Both build face velocities (``preadvect``), hand them to the MAC projection
and then evaluate the convective term (``__call__``). Work inside a level
is split into tiles; each tile reads a padded copy of the level data and
writes only its own faces.
"""

import logging
from abc import ABC, abstractmethod

import numpy as np

from ..core.field import FieldLoc, FieldState
from ..core.mesh import for_each_tile
from ..datastructures import GodunovScheme, Scheme
from ..fv import godunov, mol
from ..fv.averaging import average_down_faces, divergence
from ..fv.godunov import EdgeBC

log = logging.getLogger(__name__)

# |u| below which an advective edge is not recovered from an averaged flux
TINY_FLUX_VEL = 1.0e-14


class AdvectionOp(ABC):
    """Common tiling, boundary and mesh-mapping plumbing.

    Parameters
    ----------
    fields : PDEFields
        Operand bundle of the advected quantity.
    macproj : MacProjOp, optional
        Projection applied by ``preadvect`` (momentum only).
    mesh_mapping : bool
        Advect in uniform computational space.
    tile_size : tuple of int
        Maximum tile extent.
    n_workers : int
        Threads used for the tiles of one level.
    sync : callable, optional
        Hook run before a tile's stage registry is cleared.
    """

    scheme: Scheme = None
    ngrow: int = 0

    def __init__(
        self, fields, macproj=None, mesh_mapping=False, tile_size=(32, 32, 32), n_workers=1, sync=None
    ):
        self.fields = fields
        self.repo = fields.repo
        self.macproj = macproj
        self.mesh_mapping = mesh_mapping
        self.tile_size = tuple(tile_size)
        self.n_workers = n_workers
        self.sync = sync

    @abstractmethod
    def preadvect(self, fstate: FieldState, dt: float):
        """Predict and project the face velocities."""

    @abstractmethod
    def __call__(self, fstate: FieldState, dt: float):
        """Compute the convective term."""

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _umac(self):
        return self.fields.umac

    def _tile_bcs(self, fld, level, tile):
        bcs = []
        for d in range(3):
            if level.geom.is_periodic[d]:
                bcs.append(None)
                continue
            lo_kinds, hi_kinds = fld.bc_kinds(d)
            bcs.append(
                EdgeBC(
                    lo_kinds,
                    hi_kinds,
                    level.touches_domain_lo(d, tile),
                    level.touches_domain_hi(d, tile),
                )
            )
        return bcs

    def _tile_slices(self, level, tile):
        origin = [l - self.ngrow for l in level.box.lo]
        return tile.grow(self.ngrow).slices(origin)

    def _face_slices(self, level, tile, direction):
        """(destination in the level face array, source in the cell-shaped tile array)."""
        ng = self.ngrow
        dst = []
        src = []
        for d in range(3):
            lo = tile.lo[d] - level.box.lo[d]
            n = tile.shape[d] + (1 if d == direction else 0)
            dst.append(slice(lo, lo + n))
            src.append(slice(ng, ng + n))
        return tuple(dst), tuple(src)

    def _padded_metric(self, lev, direction, loc, ng):
        h = self.repo.mesh_metric(lev, direction, loc)
        return np.pad(h, ng, mode="edge")

    def _padded_detJ(self, lev, loc, ng):
        return np.pad(self.repo.mesh_detJ(lev, loc), ng, mode="edge")

    def _cell_shaped(self, face_pad, direction):
        idx = [slice(None)] * 3
        idx[direction] = slice(0, face_pad.shape[direction] - 1)
        return face_pad[tuple(idx)]

    def _advecting_velocities(self, lev):
        """Cell-shaped padded face velocities and their flux factors ``u*J/h``."""
        ng = self.ngrow
        vels = []
        factors = []
        for d, umac in enumerate(self._umac()):
            u = self.repo.fill_patch(umac, lev, ng)
            if self.mesh_mapping:
                loc = FieldLoc.face(d)
                h = self._padded_metric(lev, d, loc, ng)[..., None]
                u = u / h
                fac = u * self._padded_detJ(lev, loc, ng)[..., None]
            else:
                fac = u
            vels.append(self._cell_shaped(u, d))
            factors.append(self._cell_shaped(fac, d))
        return vels, factors

    def _flux_arrays(self, lev, ncomp):
        shape = self.repo.mesh[lev].box.shape
        out = []
        for d in range(3):
            fshape = list(shape)
            fshape[d] += 1
            out.append(np.zeros(tuple(fshape) + (ncomp,)))
        return out

    def _conv_target(self, fstate):
        return self.fields.conv_term.state(fstate)


class GodunovAdvection(AdvectionOp):
    """Unsplit Godunov predictor with transverse corrections.

    Fine fluxes are averaged onto coincident coarse faces, finest level
    first, before any coarse divergence is taken.
    """

    scheme = Scheme.GODUNOV
    ngrow = godunov.NGROW

    def __init__(self, fields, godunov_scheme=GodunovScheme.PPM, **kwargs):
        super().__init__(fields, **kwargs)
        self.godunov_scheme = GodunovScheme.parse(godunov_scheme)
        self.iconserv = fields.traits.iconserv

    def preadvect(self, fstate, dt):
        repo = self.repo
        vel = self.fields.field.state(fstate)
        src = self.fields.src_term
        umac = self._umac()
        if self.mesh_mapping:
            vel.to_stretched_space()

        for lev in range(repo.num_active_levels()):
            level = repo.mesh[lev]
            ng = self.ngrow
            dtdx = [dt * r for r in level.geom.inv_cell_size]
            vel_pad = repo.fill_patch(vel, lev, ng)
            src_pad = repo.fill_patch(src, lev, ng)
            if self.mesh_mapping:
                h = np.stack(
                    [self._padded_metric(lev, d, FieldLoc.CELL, ng) for d in range(3)], axis=-1
                )
                vel_pad = vel_pad / h
                src_pad = src_pad / h
                h_faces = [self._padded_metric(lev, d, FieldLoc.face(d), ng) for d in range(3)]

            def work(tile):
                sl = self._tile_slices(level, tile)
                faces = godunov.predict_velocity(
                    vel_pad[sl],
                    src_pad[sl],
                    dtdx,
                    dt,
                    self.godunov_scheme,
                    self._tile_bcs(vel, level, tile),
                    ng,
                    self.sync,
                )
                for d in range(3):
                    dst, src_sl = self._face_slices(level, tile, d)
                    values = faces[d][src_sl]
                    if self.mesh_mapping:
                        values = values * self._cell_shaped(h_faces[d], d)[sl][src_sl][..., None]
                    umac[d](lev)[dst] = values

            for_each_tile(work, repo.mesh.tiles(lev, self.tile_size), self.n_workers)

        if self.macproj is None:
            return None
        return self.macproj(fstate, dt)

    def __call__(self, fstate, dt):
        repo = self.repo
        mesh = repo.mesh
        q = self.fields.field.state(fstate)
        src = self.fields.src_term
        ncomp = q.ncomp
        nlev = repo.num_active_levels()

        fluxes = []
        edges = []
        vel_factors = []
        for lev in range(nlev):
            level = mesh[lev]
            ng = self.ngrow
            dtdx = [dt * r for r in level.geom.inv_cell_size]
            q_pad = repo.fill_patch(q, lev, ng)
            src_pad = repo.fill_patch(src, lev, ng)
            vels, factors = self._advecting_velocities(lev)
            lev_flux = self._flux_arrays(lev, ncomp)
            lev_edge = self._flux_arrays(lev, ncomp)
            lev_fac = self._flux_arrays(lev, 1)

            def work(tile):
                sl = self._tile_slices(level, tile)
                edge = godunov.compute_edge_states(
                    q_pad[sl],
                    src_pad[sl],
                    [v[sl] for v in vels],
                    dtdx,
                    dt,
                    self.godunov_scheme,
                    self.iconserv,
                    self._tile_bcs(q, level, tile),
                    ng,
                    self.sync,
                )
                for d in range(3):
                    dst, src_sl = self._face_slices(level, tile, d)
                    fac = factors[d][sl][src_sl]
                    lev_edge[d][dst] = edge[d][src_sl]
                    lev_flux[d][dst] = fac * edge[d][src_sl]
                    lev_fac[d][dst] = fac

            for_each_tile(work, mesh.tiles(lev, self.tile_size), self.n_workers)
            fluxes.append(lev_flux)
            edges.append(lev_edge)
            vel_factors.append(lev_fac)

        for lev in range(nlev - 1, 0, -1):
            average_down_faces(
                fluxes[lev], fluxes[lev - 1], mesh[lev].box, mesh[lev - 1].box.lo, mesh.ref_ratio
            )

        conv = self._conv_target(FieldState.NEW)
        conservative = np.asarray(self.iconserv, dtype=bool)
        for lev in range(nlev):
            inv_dx = mesh.Geom(lev).inv_cell_size
            out = conv(lev)
            if np.any(conservative):
                out[..., conservative] = -divergence(fluxes[lev], inv_dx)[..., conservative]
            if not np.all(conservative):
                adv = ~conservative
                update = np.zeros(out.shape[:3] + (int(adv.sum()),))
                for d in range(3):
                    fac = vel_factors[lev][d]
                    e = np.where(
                        np.abs(fac) > TINY_FLUX_VEL,
                        fluxes[lev][d] / np.where(np.abs(fac) > TINY_FLUX_VEL, fac, 1.0),
                        edges[lev][d],
                    )[..., adv]
                    sl_lo = [slice(None)] * 3
                    sl_hi = [slice(None)] * 3
                    sl_lo[d] = slice(0, -1)
                    sl_hi[d] = slice(1, None)
                    avg_fac = 0.5 * (fac[tuple(sl_lo)] + fac[tuple(sl_hi)])
                    update -= avg_fac * (e[tuple(sl_hi)] - e[tuple(sl_lo)]) * inv_dx[d]
                out[..., adv] = update


class MOLAdvection(AdvectionOp):
    """Method-of-lines advection: slope-limited upwind states, no time tracing."""

    scheme = Scheme.MOL
    ngrow = mol.NGROW

    def preadvect(self, fstate, dt):
        repo = self.repo
        vel = self.fields.field.state(fstate)
        umac = self._umac()
        if self.mesh_mapping:
            vel.to_stretched_space()

        for lev in range(repo.num_active_levels()):
            level = repo.mesh[lev]
            ng = self.ngrow
            vel_pad = repo.fill_patch(vel, lev, ng)

            def work(tile):
                sl = self._tile_slices(level, tile)
                faces = mol.predict_velocity(vel_pad[sl], self._tile_bcs(vel, level, tile), ng)
                for d in range(3):
                    dst, src_sl = self._face_slices(level, tile, d)
                    umac[d](lev)[dst] = faces[d][src_sl]

            for_each_tile(work, repo.mesh.tiles(lev, self.tile_size), self.n_workers)

        if self.macproj is None:
            return None
        return self.macproj(fstate, dt)

    def __call__(self, fstate, dt):
        repo = self.repo
        q = self.fields.field.state(fstate)
        conv = self._conv_target(fstate)

        for lev in range(repo.num_active_levels()):
            level = repo.mesh[lev]
            q_pad = repo.fill_patch(q, lev, self.ngrow)
            vels, factors = self._advecting_velocities(lev)
            fluxes = self._flux_arrays(lev, q.ncomp)

            def work(tile):
                sl = self._tile_slices(level, tile)
                edge = mol.compute_edge_states(
                    q_pad[sl], [v[sl] for v in vels], self._tile_bcs(q, level, tile), self.ngrow
                )
                for d in range(3):
                    dst, src_sl = self._face_slices(level, tile, d)
                    fluxes[d][dst] = factors[d][sl][src_sl] * edge[d][src_sl]

            for_each_tile(work, repo.mesh.tiles(lev, self.tile_size), self.n_workers)
            conv(lev)[...] = -divergence(fluxes, level.geom.inv_cell_size)
