"""Tests for the Godunov and MOL advection operators."""

import numpy as np
import pytest

from incflow.core import FieldRepo, FieldState
from incflow.datastructures import GodunovScheme
from incflow.equation_systems import (
    ICNS,
    GodunovAdvection,
    MacProjOp,
    MOLAdvection,
    PassiveScalar,
    PDEFields,
)

from conftest import composite_integral, set_density


def random_scalar(repo, seed=0):
    fields = PDEFields(repo, PassiveScalar)
    set_density(fields)
    rng = np.random.default_rng(seed)
    fields.old()(0)[...] = rng.random(fields.old()(0).shape)
    return fields


def set_uniform_umac(fields, velocity):
    for d, umac in enumerate(fields.umac):
        umac.set_val(velocity[d])


class TestGodunovAdvection:
    """Unsplit Godunov convective term."""

    @pytest.mark.parametrize("scheme", list(GodunovScheme))
    def test_periodic_conservation(self, periodic_repo, scheme):
        fields = random_scalar(periodic_repo)
        set_uniform_umac(fields, (1.0, -0.5, 0.25))
        adv = GodunovAdvection(fields, godunov_scheme=scheme)
        adv(FieldState.OLD, 0.02)

        conv = fields.conv_term.state(FieldState.NEW)(0)
        assert abs(conv.sum()) < 1e-10

    def test_uniform_field_has_no_convection(self, periodic_repo):
        fields = PDEFields(periodic_repo, PassiveScalar)
        fields.old().set_val(4.0)
        set_uniform_umac(fields, (1.0, 1.0, 1.0))
        GodunovAdvection(fields)(FieldState.OLD, 0.05)
        np.testing.assert_allclose(fields.conv_term(0), 0.0, atol=1e-12)

    def test_profile_constant_along_flow(self, periodic_repo):
        """A linear profile in y advected along x is transported unchanged."""
        fields = PDEFields(periodic_repo, PassiveScalar)
        y = periodic_repo.mesh[0].meshgrid()[1]
        fields.old()(0)[...] = y[..., None]
        set_uniform_umac(fields, (1.0, 0.0, 0.0))
        GodunovAdvection(fields, godunov_scheme=GodunovScheme.PLM)(FieldState.OLD, 0.01)
        np.testing.assert_allclose(fields.conv_term(0), 0.0, atol=1e-12)

    def test_tiling_does_not_change_result(self, periodic_repo):
        fields = random_scalar(periodic_repo, seed=3)
        set_uniform_umac(fields, (0.7, 0.3, -0.2))
        GodunovAdvection(fields, tile_size=(8, 8, 8))(FieldState.OLD, 0.02)
        whole = fields.conv_term(0).copy()

        GodunovAdvection(fields, tile_size=(4, 2, 8), n_workers=2)(FieldState.OLD, 0.02)
        np.testing.assert_allclose(fields.conv_term(0), whole, atol=1e-13)

    def test_sync_hook_runs_per_tile(self, periodic_repo):
        fields = random_scalar(periodic_repo)
        set_uniform_umac(fields, (1.0, 0.0, 0.0))
        calls = []
        GodunovAdvection(fields, tile_size=(4, 8, 8), sync=lambda: calls.append(1))(
            FieldState.OLD, 0.01
        )
        assert len(calls) == 2

    def test_advective_form_for_velocity(self, periodic_repo):
        """Uniform velocity in a uniform MAC field is not self-advected."""
        fields = PDEFields(periodic_repo, ICNS)
        set_density(fields)
        fields.old().set_val(0.0)
        fields.old()(0)[..., 0] = 1.0
        set_uniform_umac(fields, (1.0, 0.0, 0.0))
        GodunovAdvection(fields)(FieldState.OLD, 0.05)
        np.testing.assert_allclose(fields.conv_term(0), 0.0, atol=1e-12)

    def test_preadvect_projects_face_velocity(self, periodic_repo):
        fields = PDEFields(periodic_repo, ICNS)
        set_density(fields)
        x, y, z = periodic_repo.mesh[0].meshgrid()
        vel = fields.old()(0)
        vel[..., 0] = np.sin(2 * np.pi * x)
        vel[..., 1] = np.cos(2 * np.pi * z)
        macproj = MacProjOp(periodic_repo)
        adv = GodunovAdvection(fields, macproj=macproj)

        result = adv.preadvect(FieldState.OLD, 0.01)

        assert result.converged
        assert result.max_divergence < 1e-6
        assert not macproj.need_init


class TestMOLAdvection:
    """Method-of-lines convective term."""

    def test_periodic_conservation(self, periodic_repo):
        fields = random_scalar(periodic_repo, seed=7)
        set_uniform_umac(fields, (-1.0, 0.5, 0.0))
        MOLAdvection(fields)(FieldState.OLD, 0.02)

        conv = fields.conv_term.state(FieldState.OLD)(0)
        assert abs(conv.sum()) < 1e-10

    def test_writes_requested_state(self, periodic_repo):
        fields = random_scalar(periodic_repo)
        fields.field.copy_from(fields.old())
        set_uniform_umac(fields, (1.0, 0.0, 0.0))
        adv = MOLAdvection(fields)
        adv(FieldState.OLD, 0.02)
        adv(FieldState.NEW, 0.02)

        np.testing.assert_allclose(
            fields.conv_term.state(FieldState.NEW)(0), fields.conv_term.state(FieldState.OLD)(0)
        )

    def test_preadvect_sets_face_velocity(self, periodic_repo):
        fields = PDEFields(periodic_repo, ICNS)
        level = periodic_repo.mesh[0]
        y = level.meshgrid()[1]
        fields.old()(0)[..., 0] = np.sin(2 * np.pi * y)

        assert MOLAdvection(fields).preadvect(FieldState.OLD, 0.01) is None

        u_mac = fields.umac[0](0)
        assert u_mac.shape == (9, 8, 8, 1)
        np.testing.assert_allclose(u_mac[:, :, 0, 0], np.broadcast_to(np.sin(2 * np.pi * y[0, :, 0]), (9, 8)))


class TestCoarseFineConservation:
    """Fine fluxes replace coarse fluxes on the coarse-fine interface."""

    @pytest.mark.parametrize("scheme", [GodunovScheme.PLM, GodunovScheme.PPM])
    def test_godunov_composite_integral_vanishes(self, two_level_mesh, scheme):
        repo = FieldRepo(two_level_mesh)
        fields = PDEFields(repo, PassiveScalar)
        set_density(fields)
        rng = np.random.default_rng(21)
        for lev in range(2):
            fields.old()(lev)[...] = rng.random(fields.old()(lev).shape)
        set_uniform_umac(fields, (1.0, -0.5, 0.25))

        GodunovAdvection(fields, godunov_scheme=scheme)(FieldState.OLD, 0.01)

        conv = fields.conv_term.state(FieldState.NEW)
        scale = composite_integral(lambda lev: np.abs(conv(lev)), two_level_mesh)[0]
        assert scale > 0.0
        assert abs(composite_integral(conv, two_level_mesh)[0]) < 1e-11 * scale

