"""
Incflow - Unified entry point for running a PDE advance.

Usage:
    python main.py
    python main.py solver.n_steps=50 solver.advection_scheme=mol
    python main.py -m solver.godunov_type=plm,ppm,weno_z
"""

import logging
import os
import sys
from pathlib import Path

import hydra
import mlflow
from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()
sys.path.insert(0, str(Path(__file__).parent / "src"))

from incflow import IncflowSolver, Parameters  # noqa: E402
from incflow.core import Box, ConstantMap  # noqa: E402

log = logging.getLogger(__name__)


def get_experiment_name(cfg: DictConfig) -> str:
    """Build full experiment name with optional prefix."""
    name = cfg.experiment_name
    prefix = cfg.mlflow.get("project_prefix", "")
    if prefix and not name.startswith("/"):
        return f"{prefix}/{name}"
    return name


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    experiment_name = get_experiment_name(cfg)
    try:
        mlflow.set_experiment(experiment_name)
    except Exception as exc:
        experiment_name = f"{experiment_name}-restored"
        log.warning(f"MLflow set_experiment failed ({exc}); using '{experiment_name}'")
        mlflow.set_experiment(experiment_name)

    return experiment_name


def build_solver(cfg: DictConfig) -> IncflowSolver:
    """Create the driver from the ``solver`` and ``mesh`` config groups."""
    params = Parameters.from_config(cfg.solver)
    fine_boxes = [Box(tuple(b.lo), tuple(b.hi)) for b in cfg.mesh.get("fine_boxes", [])]
    scale = cfg.mesh.get("mapping_scale", None)
    mapping = (lambda mesh: ConstantMap(mesh, tuple(scale))) if scale is not None else None
    return IncflowSolver(
        params,
        fine_boxes=fine_boxes,
        mesh_mapping=mapping,
        scalars=list(cfg.get("scalars", [])),
        gravity=tuple(cfg.get("gravity", (0.0, 0.0, 0.0))),
    )


def run_solver(cfg: DictConfig) -> str:
    """Run solver and log to MLflow. Returns run_id."""
    solver = build_solver(cfg)
    params = solver.params
    run_name = f"{params.advection_scheme.value}_{params.diffusion_type.value}_N{params.n_cell[0]}"

    # Parent run tagging for sweeps
    parent_run_id = os.environ.get("MLFLOW_PARENT_RUN_ID")
    tags = {"scheme": params.advection_scheme.value}
    if parent_run_id:
        tags.update({"mlflow.parentRunId": parent_run_id, "parent_run_id": parent_run_id, "sweep": "child"})

    run = solver.mlflow_start(run_name, tags=tags, nested=bool(parent_run_id))
    try:
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")
        log.info(f"Solving: {run_name}, {params.n_steps} steps of dt={params.dt}")
        solver.solve()
    except Exception:
        mlflow.end_run(status="FAILED")
        raise
    solver.mlflow_end()

    log.info(
        f"Done: {solver.metrics.steps} steps, converged={solver.metrics.converged}, "
        f"time={solver.metrics.wall_time_seconds:.2f}s"
    )
    return run.info.run_id


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Main entry point."""
    log.info(f"Scheme: {cfg.solver.advection_scheme}, n_cell={list(cfg.solver.n_cell)}")
    log.info(f"MLflow experiment: {setup_mlflow(cfg)}")
    run_solver(cfg)


if __name__ == "__main__":
    main()
