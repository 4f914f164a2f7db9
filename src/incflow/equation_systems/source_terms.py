"""Source terms accumulated into a PDE's ``src_term`` field."""

import numpy as np

from ..core.field import FieldState
from ..errors import ConfigurationError


class BodyForce:
    """Constant body acceleration (e.g. gravity) on the momentum equation.

    Adds ``rho*g`` for density-weighted PDEs and ``g`` otherwise.
    """

    def __init__(self, acceleration=(0.0, 0.0, 0.0)):
        self.acceleration = np.asarray(acceleration, dtype=float)

    def __call__(self, fields, lev, fstate=FieldState.NEW):
        if fields.traits.ncomp != self.acceleration.size:
            raise ConfigurationError(
                f"BodyForce with {self.acceleration.size} components cannot act on "
                f"{fields.traits.name!r} ({fields.traits.ncomp} components)"
            )
        src = fields.src_term(lev)
        if fields.traits.multiply_rho:
            rho = fields.density.state(fstate)(lev)
            src += rho * self.acceleration
        else:
            src += self.acceleration


class ConstantSource:
    """Uniform volumetric source for any PDE."""

    def __init__(self, value):
        self.value = np.atleast_1d(np.asarray(value, dtype=float))

    def __call__(self, fields, lev, fstate=FieldState.NEW):
        fields.src_term(lev)[...] += self.value
