"""Turbulence closures supplying effective diffusivities.

Only the laminar model is provided: effective viscosity is the molecular
viscosity, temperature diffuses with ``mu/Pr`` and other scalars with
``mu/Sc``.
"""

import logging
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class TurbulenceModel(ABC):
    """Writes effective diffusivity fields once per predictor/corrector."""

    @abstractmethod
    def update_mueff(self, mueff):
        """Effective viscosity of the momentum equation."""

    @abstractmethod
    def update_alphaeff(self, alphaeff):
        """Effective thermal diffusivity."""

    @abstractmethod
    def update_scalar_diff(self, deff, name: str):
        """Effective diffusivity of a transported scalar."""

    def update_diffusivity(self, pde_fields):
        """Dispatch on the PDE's quantity name."""
        name = pde_fields.traits.name
        if name == "velocity":
            self.update_mueff(pde_fields.mueff)
        elif name == "temperature":
            self.update_alphaeff(pde_fields.mueff)
        else:
            self.update_scalar_diff(pde_fields.mueff, name)


class Laminar(TurbulenceModel):
    """Constant molecular transport properties.

    Parameters
    ----------
    viscosity : float
        Dynamic viscosity ``mu``.
    prandtl : float
        Laminar Prandtl number.
    schmidt : float
        Laminar Schmidt number of passive scalars.
    """

    def __init__(self, viscosity, prandtl=1.0, schmidt=1.0):
        self.viscosity = float(viscosity)
        self.prandtl = float(prandtl)
        self.schmidt = float(schmidt)

    def update_mueff(self, mueff):
        mueff.set_val(self.viscosity)

    def update_alphaeff(self, alphaeff):
        alphaeff.set_val(self.viscosity / self.prandtl)

    def update_scalar_diff(self, deff, name):
        deff.set_val(self.viscosity / self.schmidt)
