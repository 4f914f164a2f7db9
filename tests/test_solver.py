"""Smoke tests for the time-integration driver."""

import numpy as np
import pytest

from incflow import IncflowSolver, Parameters
from incflow.core import BC, Orientation, Side


def shear_velocity(x, y, z):
    return np.stack([np.sin(2 * np.pi * y), np.zeros_like(x), np.zeros_like(x)], axis=-1)


def make_solver(**kwargs):
    params = Parameters(n_cell=(8, 8, 8), dt=0.01, n_steps=2, **kwargs)
    return params, IncflowSolver(params)


class TestShearLayerDecay:
    """A periodic shear layer only decays under viscosity."""

    @pytest.mark.parametrize(
        "scheme, difftype",
        [
            ("godunov", "crank_nicolson"),
            ("godunov", "explicit"),
            ("mol", "crank_nicolson"),
            ("mol", "implicit"),
        ],
    )
    def test_two_steps(self, scheme, difftype):
        params, solver = make_solver(advection_scheme=scheme, diffusion_type=difftype)
        solver.initialize(velocity=shear_velocity)
        u0 = solver.icns.fields.field(0)[..., 0].copy()

        solver.solve()

        assert solver.metrics.steps == 2
        assert solver.metrics.converged
        assert solver.time == pytest.approx(0.02)
        assert len(solver.time_series.time) == 2
        assert solver.metrics.max_mac_divergence < 1e-6

        vel = solver.icns.fields.field(0)
        ratio = np.abs(vel[..., 0]).max() / np.abs(u0).max()
        assert 0.99 < ratio < 1.0
        np.testing.assert_allclose(vel[..., 1:], 0.0, atol=1e-8)


class TestScalars:
    """Transported scalars alongside the momentum equation."""

    def test_passive_scalar_is_conserved(self):
        solver = IncflowSolver(n_cell=(8, 8, 8), dt=0.01, scalars=["passive_scalar"])
        solver.initialize(
            velocity=shear_velocity,
            passive_scalar=lambda x, y, z: 1.0 + 0.5 * np.sin(2 * np.pi * x),
        )
        start = solver.field_integral("passive_scalar").sum()

        solver.solve(n_steps=3)

        history = solver.time_series.field_integrals["passive_scalar"]
        np.testing.assert_allclose(history, start, rtol=1e-8)

    def test_unknown_scalar(self):
        with pytest.raises(KeyError):
            IncflowSolver(n_cell=(4, 4, 4), scalars=["salinity"])

    def test_variable_density(self):
        params, solver = make_solver(variable_density=True)
        assert list(solver.systems)[0] == "density"
        solver.initialize(velocity=shear_velocity)

        solver.solve()

        assert solver.metrics.converged
        np.testing.assert_allclose(solver.repo.get_field("density")(0), 1.0, atol=1e-8)


class TestDriverSurface:
    """Boundary setup and result export."""

    def test_set_bc_rejects_periodic_direction(self):
        _, solver = make_solver()
        with pytest.raises(ValueError):
            solver.set_bc(Orientation(0, Side.LOW), BC.NO_SLIP_WALL)

    def test_walls_in_channel(self):
        params = Parameters(n_cell=(8, 8, 8), is_periodic=(True, False, True), dt=0.01)
        solver = IncflowSolver(params)
        for side in Side:
            solver.set_bc(Orientation(1, side), BC.NO_SLIP_WALL)
        solver.initialize(velocity=lambda x, y, z: np.stack(
            [np.sin(np.pi * y), np.zeros_like(x), np.zeros_like(x)], axis=-1
        ))

        solver.solve(n_steps=2)

        assert solver.metrics.converged
        assert solver.metrics.max_mac_divergence < 1e-6

    def test_fields_dataframe(self):
        _, solver = make_solver()
        solver.initialize(velocity=shear_velocity)
        df = solver.fields_dataframe()
        assert list(df.columns) == ["x", "y", "z", "u", "v", "w"]
        assert len(df) == 512


class TestMlflowLogging:
    """Run lifecycle through the driver's MLflow hooks."""

    def test_run_records_params_metrics_and_tables(self, tmp_path, monkeypatch):
        import mlflow

        uri = (tmp_path / "mlruns").as_uri()
        monkeypatch.setenv("MLFLOW_TRACKING_URI", uri)
        mlflow.set_tracking_uri(uri)

        _, solver = make_solver()
        solver.initialize(velocity=shear_velocity)
        run = solver.mlflow_start("shear", experiment_name="incflow-tests")
        solver.solve(n_steps=1)
        solver.mlflow_end()

        assert mlflow.active_run() is None
        finished = mlflow.get_run(run.info.run_id)
        assert finished.info.status == "FINISHED"
        assert finished.data.params["advection_scheme"] == "godunov"
        assert finished.data.metrics["steps"] == 1.0
        artifacts = {a.path for a in mlflow.MlflowClient().list_artifacts(run.info.run_id)}
        assert {"time_series.csv", "fields_level0.csv"} <= artifacts
