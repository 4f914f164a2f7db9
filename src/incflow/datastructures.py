"""Data structures for run configuration and results.

This module defines the configuration and result data structures
shared by the PDE operators and the time-integration driver.

Structure:
- Enums: DiffusionType, Scheme, GodunovScheme, LinOpKind
- Parameters: Input configuration (logged to MLflow at start)
- LinearSolverOptions: Tolerances handed to the implicit solver
- Metrics: Output results (logged to MLflow at end)
- TimeSeries: Per-step history
"""

import logging
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional, List, Tuple

import pandas as pd

from .errors import ConfigurationError

log = logging.getLogger(__name__)


# ========================================================
# Enumerations
# ========================================================


class _ParsableEnum(Enum):
    """Enum that accepts its own members or case-insensitive names/values."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.name.lower(), str(member.value).lower()):
                    return member
        raise ConfigurationError(f"Invalid {cls.__name__}: {value!r}")


class DiffusionType(_ParsableEnum):
    """Time integration of the diffusion term."""

    EXPLICIT = "explicit"
    CRANK_NICOLSON = "crank_nicolson"
    IMPLICIT = "implicit"


class Scheme(_ParsableEnum):
    """Advection strategy, fixed at construction."""

    GODUNOV = "godunov"
    MOL = "mol"


class GodunovScheme(_ParsableEnum):
    """Reconstruction used by the Godunov predictor."""

    PLM = "plm"
    PPM = "ppm"
    PPM_NOLIM = "ppm_nolim"
    WENO_JS = "weno_js"
    WENO_Z = "weno_z"

    @classmethod
    def from_name(cls, godunov_type: str) -> "GodunovScheme":
        """Map an input-file name to a scheme, defaulting to PPM."""
        name = str(godunov_type).strip().lower()
        if name == "weno":
            return cls.WENO_JS
        try:
            return cls.parse(name)
        except ConfigurationError:
            log.warning(
                "For godunov_type select between plm, ppm, ppm_nolim, weno_js "
                "and weno_z: %r defaults to ppm",
                godunov_type,
            )
            return cls.PPM


class LinOpKind(_ParsableEnum):
    """Shape of the diffusion coefficient a PDE declares."""

    SCALAR = "scalar"
    TENSOR = "tensor"


# ========================================================
# Parameters (Input Configuration)
# ========================================================


@dataclass
class LinearSolverOptions:
    """Options forwarded to the implicit linear solver."""

    method: str = "bicgstab"
    tolerance: float = 1e-10
    max_iterations: int = 1000
    preconditioner: Optional[str] = "jacobi"
    remove_nullspace: bool = False
    abs_tolerance: float = 1e-14


@dataclass
class Parameters:
    """Run parameters - input configuration for the PDE advance."""

    n_cell: Tuple[int, int, int] = (16, 16, 16)
    prob_lo: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    prob_hi: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    is_periodic: Tuple[bool, bool, bool] = (True, True, True)
    dt: float = 0.01
    n_steps: int = 10
    diffusion_type: DiffusionType = DiffusionType.CRANK_NICOLSON
    advection_scheme: Scheme = Scheme.GODUNOV
    godunov_type: str = "ppm"
    density: float = 1.0
    viscosity: float = 1e-3
    variable_density: bool = False
    mesh_mapping: bool = False
    has_overset: bool = False
    tile_size: Tuple[int, int, int] = (32, 32, 32)
    n_workers: int = 1
    mac_tolerance: float = 1e-10
    mac_max_iterations: int = 500
    diffusion_tolerance: float = 1e-10
    diffusion_max_iterations: int = 500

    def __post_init__(self):
        self.n_cell = tuple(int(n) for n in self.n_cell)
        self.prob_lo = tuple(float(x) for x in self.prob_lo)
        self.prob_hi = tuple(float(x) for x in self.prob_hi)
        self.is_periodic = tuple(bool(p) for p in self.is_periodic)
        self.tile_size = tuple(int(t) for t in self.tile_size)
        self.diffusion_type = DiffusionType.parse(self.diffusion_type)
        self.advection_scheme = Scheme.parse(self.advection_scheme)

    @classmethod
    def from_config(cls, cfg) -> "Parameters":
        """Build parameters from a Hydra/OmegaConf config node.

        The deprecated Godunov switches ``use_ppm`` and ``use_limiter`` are
        rejected; ``godunov_type`` replaced them.
        """
        from omegaconf import OmegaConf

        values = OmegaConf.to_container(cfg, resolve=True)
        for deprecated in ("use_ppm", "use_limiter"):
            if deprecated in values:
                raise ConfigurationError(
                    "Godunov: use_ppm and use_limiter are deprecated. "
                    "Please update input file"
                )
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in values.items() if k in known})

    def godunov_scheme(self) -> GodunovScheme:
        return GodunovScheme.from_name(self.godunov_type)

    def mac_options(self) -> LinearSolverOptions:
        return LinearSolverOptions(
            method="cg",
            tolerance=self.mac_tolerance,
            max_iterations=self.mac_max_iterations,
        )

    def diffusion_options(self) -> LinearSolverOptions:
        return LinearSolverOptions(
            method="bicgstab",
            tolerance=self.diffusion_tolerance,
            max_iterations=self.diffusion_max_iterations,
        )

    def to_dict(self) -> dict:
        """Flat dictionary with enums as plain strings (for MLflow params)."""
        out = asdict(self)
        out["diffusion_type"] = self.diffusion_type.value
        out["advection_scheme"] = self.advection_scheme.value
        return out

    def to_dataframe(self):
        return pd.DataFrame([self.to_dict()])


# ========================================================
# Metrics (Output Results)
# ========================================================


@dataclass
class Metrics:
    """Driver metrics - output results computed during/after the run."""

    steps: int = 0
    time: float = 0.0
    wall_time_seconds: float = 0.0
    max_mac_divergence: float = 0.0
    mac_solver_failures: int = 0
    diffusion_solver_failures: int = 0
    converged: bool = True

    def to_dataframe(self):
        return pd.DataFrame([asdict(self)])


# ========================================================
# Time Series (Step History)
# ========================================================


@dataclass
class TimeSeries:
    """Per-step history (one value per time step)."""

    time: List[float] = field(default_factory=list)
    max_mac_divergence: List[float] = field(default_factory=list)
    field_integrals: dict = field(default_factory=dict)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per step."""
        data = {
            "time": self.time,
            "max_mac_divergence": self.max_mac_divergence,
        }
        for name, values in self.field_integrals.items():
            data[f"integral_{name}"] = values
        return pd.DataFrame(data)
