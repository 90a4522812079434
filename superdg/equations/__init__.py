from .base import AbstractEquations
from .compressible_euler import (
    CompressibleEulerEquations,
    boundary_condition_slip_wall,
    flux_chandrashekar,
    flux_hllc,
    flux_kennedy_gruber,
    flux_ranocha,
    flux_shima_etal,
)
from .linear_advection import LinearScalarAdvectionEquation, flux_godunov
from .shallow_water import (
    ShallowWaterEquations,
    flux_fjordholm_etal,
    flux_nonconservative_wintermeyer_etal,
    flux_wintermeyer_etal,
)

__all__ = [
    "AbstractEquations",
    "CompressibleEulerEquations",
    "LinearScalarAdvectionEquation",
    "ShallowWaterEquations",
    "boundary_condition_slip_wall",
    "flux_chandrashekar",
    "flux_fjordholm_etal",
    "flux_godunov",
    "flux_hllc",
    "flux_kennedy_gruber",
    "flux_nonconservative_wintermeyer_etal",
    "flux_ranocha",
    "flux_shima_etal",
    "flux_wintermeyer_etal",
]
