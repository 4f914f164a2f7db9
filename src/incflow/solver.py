"""Time-integration driver for the incompressible PDE systems."""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

import mlflow
import numpy as np
import pandas as pd

from .core.bc import BC, Orientation
from .core.field import FieldState
from .core.mesh import MeshHierarchy
from .core.repo import FieldRepo
from .datastructures import DiffusionType, Metrics, Parameters, Scheme, TimeSeries
from .equation_systems.macproj import MacProjOp
from .equation_systems.pde import ICNS, Density, PassiveScalar, PDETraits, Temperature
from .equation_systems.pde_system import PDESystem
from .equation_systems.source_terms import BodyForce
from .turbulence import Laminar

log = logging.getLogger(__name__)

SCALAR_TRAITS = {"temperature": Temperature, "passive_scalar": PassiveScalar}


class IncflowSolver:
    """Fractional-step predictor/corrector advance of momentum and scalars.

    Handles:
    - Mesh, field registry and PDE system setup
    - Predictor pass (and corrector pass for MOL) per time step
    - Metrics and time-series bookkeeping
    - MLflow logging

    Parameters
    ----------
    params : Parameters, optional
        Run configuration; built from ``kwargs`` when omitted.
    fine_boxes : sequence of Box
        One box per refined level.
    mesh_mapping : callable, optional
        ``mesh -> MeshMapping`` factory, required when ``params.mesh_mapping``.
    scalars : sequence of str
        Additional transported scalars (``temperature``, ``passive_scalar``).
    gravity : sequence of float
        Body acceleration applied to the momentum equation.
    """

    def __init__(
        self,
        params: Parameters = None,
        fine_boxes=(),
        mesh_mapping: Optional[Callable] = None,
        scalars: Sequence[str] = (),
        gravity=(0.0, 0.0, 0.0),
        **kwargs,
    ):
        if params is None:
            params = Parameters(**kwargs)
        self.params = params
        self.metrics = Metrics()
        self.time_series = TimeSeries()
        self.time = 0.0

        self.mesh = MeshHierarchy(
            params.n_cell, params.prob_lo, params.prob_hi, params.is_periodic, fine_boxes
        )
        mapping = mesh_mapping(self.mesh) if (params.mesh_mapping and mesh_mapping) else None
        self.repo = FieldRepo(self.mesh, mapping)
        self.turbulence = Laminar(params.viscosity)

        self.macproj = MacProjOp(
            self.repo,
            has_overset=params.has_overset,
            variable_density=params.variable_density,
            mesh_mapping=params.mesh_mapping,
            options=params.mac_options(),
            rho_0=params.density,
        )

        self.systems: Dict[str, PDESystem] = {}
        if params.variable_density:
            self._add_system(Density)
        self._add_system(ICNS, macproj=self.macproj, sources=[BodyForce(gravity)])
        for name in scalars:
            try:
                traits = SCALAR_TRAITS[name]
            except KeyError:
                raise KeyError(f"Unknown transported scalar {name!r}") from None
            self._add_system(traits)

        density = self.repo.get_field("density")
        density.set_val(params.density)
        density.state(FieldState.OLD).set_val(params.density)

    def _add_system(self, traits: PDETraits, macproj=None, sources=()):
        self.systems[traits.name] = PDESystem(
            self.repo, traits, self.params, self.turbulence, macproj=macproj, sources=sources
        )

    @property
    def icns(self) -> PDESystem:
        return self.systems["velocity"]

    # ========================================================================
    # Initial conditions
    # ========================================================================

    def initialize(self, **initial_conditions):
        """Set NEW states from ``name=func(x, y, z)`` callables.

        ``func`` returns an array of shape ``(nx, ny, nz)`` or
        ``(nx, ny, nz, ncomp)``.
        """
        for name, func in initial_conditions.items():
            fld = self.repo.get_field(name)
            for level in self.mesh:
                values = np.asarray(func(*level.meshgrid()), dtype=float)
                if values.ndim == 3:
                    values = values[..., None]
                fld(level.lev)[...] = values
        for system in self.systems.values():
            system.post_solve_actions()

    def set_bc(self, orientation: Orientation, bc, values: Dict[str, object] = None):
        """Set a physical boundary on one domain face for every transported field.

        ``values`` maps field names to the prescribed value (or gradient for
        ``FIXED_GRADIENT``); fields not listed get zero.
        """
        bc = BC(bc) if isinstance(bc, str) else bc
        if self.mesh.Geom(0).is_periodic[orientation.dir]:
            raise ValueError(f"Cannot set {bc.value} on periodic direction {orientation.dir}")
        values = values or {}
        names = list(self.systems) + ["u_mac", "v_mac", "w_mac"]
        if "density" not in names:
            names.append("density")
        for name in names:
            self.repo.get_field(name).set_bc(orientation, bc, values.get(name))

    # ========================================================================
    # Time stepping
    # ========================================================================

    def _advance_states(self):
        density = self.repo.get_field("density")
        if "density" not in self.systems:
            density.state(FieldState.OLD).copy_from(density)
        for system in self.systems.values():
            system.advance_states()

    def _pass(self, fstate: FieldState, dt: float, corrector: bool):
        """One predictor or corrector pass over every PDE system."""
        failures = {"mac": 0, "diffusion": 0}
        for system in self.systems.values():
            system.compute_mueff(fstate)
            system.compute_source_term(fstate)

        proj = self.icns.pre_advection_actions(fstate, dt)
        if proj is not None and not proj.converged:
            failures["mac"] += 1

        for system in self.systems.values():
            system.compute_advection_term(fstate, dt)
            explicit_term = (
                system.difftype is DiffusionType.EXPLICIT
                if corrector
                else system.difftype is not DiffusionType.IMPLICIT
            )
            if explicit_term:
                system.compute_diffusion_term(fstate)
            if corrector:
                system.compute_corrector_rhs(dt)
            else:
                system.compute_predictor_rhs(dt)
            result = system.solve(dt)
            if result is not None and not result.converged:
                failures["diffusion"] += 1
            system.post_solve_actions()
        return proj, failures

    def step(self, dt: float = None):
        """Advance every PDE by one time step; returns the projection result."""
        dt = self.params.dt if dt is None else dt
        self._advance_states()
        proj, failures = self._pass(FieldState.OLD, dt, corrector=False)
        if self.params.advection_scheme is Scheme.MOL:
            proj, more = self._pass(FieldState.NEW, dt, corrector=True)
            for key, count in more.items():
                failures[key] += count

        self.metrics.mac_solver_failures += failures["mac"]
        self.metrics.diffusion_solver_failures += failures["diffusion"]
        if failures["mac"] or failures["diffusion"]:
            log.warning(
                f"t={self.time:.4e}: {failures['mac']} MAC and {failures['diffusion']} "
                "diffusion solves did not converge"
            )
        self.time += dt
        return proj

    def field_integral(self, name: str) -> np.ndarray:
        """Volume integral of a field over the domain (level 0 after averaging)."""
        fld = self.repo.get_field(name)
        return fld(0).sum(axis=(0, 1, 2)) * self.mesh.Geom(0).cell_volume

    def solve(self, n_steps: int = None):
        """Run ``n_steps`` time steps and store metrics and history."""
        n_steps = self.params.n_steps if n_steps is None else n_steps
        time_start = time.time()
        mlflow_time = 0.0

        for i in range(n_steps):
            proj = self.step()
            max_div = proj.max_divergence if proj is not None else 0.0
            self.time_series.time.append(self.time)
            self.time_series.max_mac_divergence.append(max_div)
            for name in self.systems:
                integral = self.field_integral(name)
                self.time_series.field_integrals.setdefault(name, []).append(float(integral.sum()))
            self.metrics.max_mac_divergence = max(self.metrics.max_mac_divergence, max_div)

            if i % 10 == 0 or i == n_steps - 1:
                log.info(f"Step {i}: t={self.time:.4e}, max MAC divergence={max_div:.3e}")
                # Live MLflow logging (timed separately)
                if mlflow.active_run():
                    t_log_start = time.time()
                    mlflow.log_metrics({"max_mac_divergence": max_div, "time": self.time}, step=i)
                    mlflow_time += time.time() - t_log_start

        wall_time = time.time() - time_start - mlflow_time
        self.metrics.steps += n_steps
        self.metrics.time = self.time
        self.metrics.wall_time_seconds += wall_time
        self.metrics.converged = (
            self.metrics.mac_solver_failures == 0 and self.metrics.diffusion_solver_failures == 0
        )
        log.info(f"Solver finished in {wall_time:.2f} seconds (excl. {mlflow_time:.2f}s logging).")

    # ========================================================================
    # Results
    # ========================================================================

    def fields_dataframe(self, lev: int = 0) -> pd.DataFrame:
        """Cell centres and every transported field on one level."""
        level = self.mesh[lev]
        x, y, z = level.meshgrid()
        data = {"x": x.ravel(), "y": y.ravel(), "z": z.ravel()}
        for name in self.systems:
            arr = self.repo.get_field(name)(lev)
            if arr.shape[-1] == 1:
                data[name] = arr[..., 0].ravel()
            else:
                for n, comp in zip(range(arr.shape[-1]), "uvw"):
                    data[comp] = arr[..., n].ravel()
        return pd.DataFrame(data)

    # ========================================================================
    # MLflow Integration
    # ========================================================================

    def mlflow_start(self, run_name: str, experiment_name: str = None, tags: dict = None, nested=False):
        """Start MLflow run and log parameters.

        The experiment is created when ``experiment_name`` is given; otherwise
        the currently active experiment is used.
        """
        if experiment_name is not None:
            if mlflow.get_experiment_by_name(experiment_name) is None:
                mlflow.create_experiment(name=experiment_name)
            mlflow.set_experiment(experiment_name)
        run = mlflow.start_run(run_name=run_name, tags=tags, nested=nested)

        mlflow.log_params(self.params.to_dict())

        # Log HPC job info if running on LSF cluster
        job_id = os.environ.get("LSB_JOBID")
        if job_id:
            mlflow.set_tag("lsf.job_id", job_id)
        return run

    def mlflow_end(self):
        """Log final metrics and result tables, then end the MLflow run."""
        metrics = self.metrics.to_dataframe().iloc[0].to_dict()
        mlflow.log_metrics({k: float(v) for k, v in metrics.items()})

        with tempfile.TemporaryDirectory() as tmpdir:
            history_path = Path(tmpdir) / "time_series.csv"
            self.time_series.to_dataframe().to_csv(history_path, index=False)
            mlflow.log_artifact(str(history_path))
            fields_path = Path(tmpdir) / "fields_level0.csv"
            self.fields_dataframe(0).to_csv(fields_path, index=False)
            mlflow.log_artifact(str(fields_path))

        mlflow.end_run()
