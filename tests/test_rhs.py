"""Tests for predictor/corrector right-hand-side assembly."""

import numpy as np
import pytest

from incflow.core import ConstantMap, FieldRepo, FieldState, MeshHierarchy
from incflow.datastructures import DiffusionType, Scheme
from incflow.equation_systems import (
    BodyForce,
    ComputeRHSOp,
    ConstantSource,
    Density,
    ICNS,
    PassiveScalar,
    PDEFields,
)
from incflow.errors import ConfigurationError

from conftest import set_density


def scalar_fields(repo, fld_old=1.0, conv=0.0, src=0.0, diff=0.0):
    fields = PDEFields(repo, PassiveScalar)
    set_density(fields, 1.0)
    fields.old().set_val(fld_old)
    for state in (FieldState.OLD, FieldState.NEW):
        fields.conv_term.state(state).set_val(conv)
        fields.diff_term.state(state).set_val(diff)
    fields.src_term.set_val(src)
    return fields


class TestPredictor:
    """Predictor formula for each diffusion type."""

    @pytest.mark.parametrize("scheme", [Scheme.GODUNOV, Scheme.MOL])
    def test_crank_nicolson(self, periodic_repo, scheme):
        fields = scalar_fields(periodic_repo, diff=-2.0)
        ComputeRHSOp(fields, scheme).predictor_rhs(DiffusionType.CRANK_NICOLSON, 0.01)
        np.testing.assert_allclose(fields.field(0), 0.99)

    def test_explicit_sums_all_terms(self, periodic_repo):
        fields = scalar_fields(periodic_repo, fld_old=1.0, conv=2.0, src=3.0, diff=4.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs("explicit", 0.1)
        np.testing.assert_allclose(fields.field(0), 1.0 + 0.1 * (2.0 + 3.0 + 4.0))

    def test_implicit_ignores_diffusion_term(self, periodic_repo):
        fields = scalar_fields(periodic_repo, conv=1.0, diff=100.0)
        ComputeRHSOp(fields, Scheme.MOL).predictor_rhs(DiffusionType.IMPLICIT, 0.5)
        np.testing.assert_allclose(fields.field(0), 1.5)

    def test_density_weighting(self, periodic_repo):
        fields = scalar_fields(periodic_repo, fld_old=3.0, conv=1.0)
        fields.density.state(FieldState.OLD).set_val(2.0)
        fields.density.set_val(4.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.IMPLICIT, 0.2)
        np.testing.assert_allclose(fields.field(0), (2.0 * 3.0 + 0.2 * 1.0) / 4.0)

    def test_unweighted_pde_ignores_density(self, periodic_repo):
        fields = PDEFields(periodic_repo, Density)
        fields.old().set_val(2.0)
        fields.conv_term.set_val(-1.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.CRANK_NICOLSON, 0.5)
        np.testing.assert_allclose(fields.field(0), 1.5)

    def test_masked_cells_keep_old_value(self, periodic_repo):
        fields = scalar_fields(periodic_repo, fld_old=1.0, conv=1.0)
        periodic_repo.get_int_field("mask_cell")(0)[0, 0, 0] = 0
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.EXPLICIT, 1.0)
        assert fields.field(0)[0, 0, 0, 0] == 1.0
        assert fields.field(0)[1, 0, 0, 0] == 2.0

    def test_godunov_reads_new_terms(self, periodic_repo):
        fields = scalar_fields(periodic_repo)
        fields.conv_term.state(FieldState.NEW).set_val(1.0)
        fields.conv_term.state(FieldState.OLD).set_val(5.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.IMPLICIT, 1.0)
        np.testing.assert_allclose(fields.field(0), 2.0)

        ComputeRHSOp(fields, Scheme.MOL).predictor_rhs(DiffusionType.IMPLICIT, 1.0)
        np.testing.assert_allclose(fields.field(0), 6.0)

    def test_unknown_diffusion_type(self, periodic_repo):
        fields = scalar_fields(periodic_repo)
        with pytest.raises(ConfigurationError):
            ComputeRHSOp(fields, Scheme.MOL).predictor_rhs("semi_implicit", 0.1)


class TestCorrector:
    """Corrector blends OLD and NEW terms."""

    def test_crank_nicolson_matches_predictor(self, periodic_repo):
        fields = scalar_fields(periodic_repo, diff=-2.0)
        ComputeRHSOp(fields, Scheme.MOL).corrector_rhs(DiffusionType.CRANK_NICOLSON, 0.01)
        np.testing.assert_allclose(fields.field(0), 0.99)

    def test_explicit_averages_terms(self, periodic_repo):
        fields = scalar_fields(periodic_repo)
        fields.conv_term.state(FieldState.OLD).set_val(1.0)
        fields.conv_term.state(FieldState.NEW).set_val(3.0)
        fields.diff_term.state(FieldState.OLD).set_val(2.0)
        fields.diff_term.state(FieldState.NEW).set_val(4.0)
        ComputeRHSOp(fields, Scheme.MOL).corrector_rhs(DiffusionType.EXPLICIT, 1.0)
        np.testing.assert_allclose(fields.field(0), 1.0 + 0.5 * (1.0 + 3.0) + 0.5 * (2.0 + 4.0))


class TestMeshMapping:
    """Jacobian weighting in stretched space."""

    def test_explicit_divides_by_detJ(self):
        mesh = MeshHierarchy(n_cell=(4, 4, 4))
        repo = FieldRepo(mesh, ConstantMap(mesh, (2.0, 1.0, 1.0)))
        fields = scalar_fields(repo, fld_old=1.0, conv=2.0, src=1.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.EXPLICIT, 1.0, mesh_mapping=True)
        # (J*old + dt*(conv + J*src)) / J with J = 2
        np.testing.assert_allclose(fields.field(0), (2.0 + 2.0 + 2.0) / 2.0)

    def test_implicit_keeps_detJ_weight(self):
        mesh = MeshHierarchy(n_cell=(4, 4, 4))
        repo = FieldRepo(mesh, ConstantMap(mesh, (2.0, 1.0, 1.0)))
        fields = scalar_fields(repo, fld_old=1.0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.IMPLICIT, 1.0, mesh_mapping=True)
        np.testing.assert_allclose(fields.field(0), 2.0)

    def test_uniform_space_field_is_restored(self):
        mesh = MeshHierarchy(n_cell=(4, 4, 4))
        repo = FieldRepo(mesh, ConstantMap(mesh, (2.0, 1.0, 1.0)))
        fields = scalar_fields(repo, fld_old=1.0)
        fields.old().to_uniform_space()
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.IMPLICIT, 1.0, mesh_mapping=True)
        assert not fields.old().in_uniform_space()
        np.testing.assert_allclose(fields.field(0), 2.0)


class TestSources:
    """Source terms feed the right-hand side through ``src_term``."""

    def test_constant_source(self, periodic_repo):
        fields = scalar_fields(periodic_repo, fld_old=1.0)
        fields.src_term.set_val(0.0)
        ConstantSource(4.0)(fields, 0)
        ComputeRHSOp(fields, Scheme.GODUNOV).predictor_rhs(DiffusionType.IMPLICIT, 0.25)
        np.testing.assert_allclose(fields.field(0), 2.0)

    def test_body_force_is_density_weighted(self, periodic_repo):
        fields = PDEFields(periodic_repo, ICNS)
        set_density(fields, 2.0)
        fields.src_term.set_val(0.0)
        BodyForce((3.0, 0.0, -1.0))(fields, 0)
        np.testing.assert_allclose(fields.src_term(0)[..., 0], 6.0)
        np.testing.assert_allclose(fields.src_term(0)[..., 1], 0.0)
        np.testing.assert_allclose(fields.src_term(0)[..., 2], -2.0)

    def test_body_force_component_mismatch(self, periodic_repo):
        fields = scalar_fields(periodic_repo)
        with pytest.raises(ConfigurationError):
            BodyForce((3.0, 0.0, 0.0))(fields, 0)
