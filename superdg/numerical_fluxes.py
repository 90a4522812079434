from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np

from .tools.array_management import ArrayLike

if TYPE_CHECKING:
    from .equations.base import AbstractEquations


@runtime_checkable
class TwoPointFlux(Protocol):
    def __call__(
        self,
        u_ll: ArrayLike,
        u_rr: ArrayLike,
        normal_direction: ArrayLike,
        equations: AbstractEquations,
    ) -> ArrayLike: ...


# a conservative two-point flux or a (conservative, nonconservative) pair
FluxSpec = Union[TwoPointFlux, Tuple[TwoPointFlux, TwoPointFlux]]


def split_flux(flux: FluxSpec) -> Tuple[TwoPointFlux, Optional[TwoPointFlux]]:
    """
    Split a flux specification into its conservative and nonconservative parts.
    """
    if isinstance(flux, tuple):
        if len(flux) != 2:
            raise ValueError("Flux tuples must be (conservative, nonconservative).")
        return flux[0], flux[1]
    return flux, None


def flux_name(flux: Optional[Callable]) -> Optional[str]:
    """
    Human readable name of a flux function or flux object.
    """
    if flux is None:
        return None
    if isinstance(flux, tuple):
        return "(" + ", ".join(str(flux_name(f)) for f in flux) + ")"
    if hasattr(flux, "key"):
        return flux.key()
    return getattr(flux, "__name__", type(flux).__name__)


def ln_mean(x: ArrayLike, y: ArrayLike) -> ArrayLike:
    """
    Logarithmic mean (y - x) / (ln(y) - ln(x)) of positive arguments, evaluated with a
    Taylor expansion when x and y are close.

    Args:
        x, y: Arrays of positive values.

    Returns:
        Array of logarithmic means.
    """
    f2 = (x * (x - 2 * y) + y * y) / (x * (x + 2 * y) + y * y)
    with np.errstate(divide="ignore", invalid="ignore"):
        direct = (y - x) / np.log(y / x)
    series = (x + y) * 52.5 / (105 + f2 * (35 + f2 * (21 + f2 * 15)))
    return np.where(f2 < 1e-4, series, direct)


def inv_ln_mean(x: ArrayLike, y: ArrayLike) -> ArrayLike:
    """
    Inverse of the logarithmic mean, (ln(y) - ln(x)) / (y - x).
    """
    f2 = (x * (x - 2 * y) + y * y) / (x * (x + 2 * y) + y * y)
    with np.errstate(divide="ignore", invalid="ignore"):
        direct = np.log(y / x) / (y - x)
    series = (105 + f2 * (35 + f2 * (21 + f2 * 15))) / (52.5 * (x + y))
    return np.where(f2 < 1e-4, series, direct)


def flux_central(
    u_ll: ArrayLike,
    u_rr: ArrayLike,
    normal_direction: ArrayLike,
    equations: AbstractEquations,
) -> ArrayLike:
    """
    Arithmetic mean of the physical fluxes.
    """
    return 0.5 * (
        equations.flux(u_ll, normal_direction) + equations.flux(u_rr, normal_direction)
    )


class DissipationLocalLaxFriedrichs:
    """
    Local Lax-Friedrichs (Rusanov) dissipation -lambda/2 (u_rr - u_ll) with a wave speed
    estimate `max_abs_speed(u_ll, u_rr, normal_direction)` scaled by |normal|.
    """

    def __init__(self, max_abs_speed: str = "max_abs_speed_naive"):
        if max_abs_speed not in ("max_abs_speed_naive", "max_abs_speed"):
            raise ValueError(f"Unknown wave speed estimate '{max_abs_speed}'.")
        self.max_abs_speed = max_abs_speed

    def wave_speed(self, u_ll, u_rr, normal_direction, equations) -> ArrayLike:
        return getattr(equations, self.max_abs_speed)(u_ll, u_rr, normal_direction)

    def __call__(self, u_ll, u_rr, normal_direction, equations) -> ArrayLike:
        lam = self.wave_speed(u_ll, u_rr, normal_direction, equations)
        diss = -0.5 * lam * (u_rr - u_ll)
        return equations.mask_auxiliary(diss)

    def key(self) -> str:
        return f"dissipation_lax_friedrichs({self.max_abs_speed})"


class FluxPlusDissipation:
    """
    Sum of a (typically entropy-conservative) flux and a dissipation operator.
    """

    def __init__(self, numerical_flux: TwoPointFlux, dissipation: Callable):
        self.numerical_flux = numerical_flux
        self.dissipation = dissipation

    def __call__(self, u_ll, u_rr, normal_direction, equations) -> ArrayLike:
        return self.numerical_flux(
            u_ll, u_rr, normal_direction, equations
        ) + self.dissipation(u_ll, u_rr, normal_direction, equations)

    def key(self) -> str:
        return f"{flux_name(self.numerical_flux)}+{flux_name(self.dissipation)}"


class FluxLaxFriedrichs(FluxPlusDissipation):
    """
    Local Lax-Friedrichs flux: central flux plus local Lax-Friedrichs dissipation.

    Args:
        max_abs_speed: Name of the wave speed estimate of the equations,
            "max_abs_speed_naive" or "max_abs_speed".
    """

    def __init__(self, max_abs_speed: str = "max_abs_speed_naive"):
        super().__init__(flux_central, DissipationLocalLaxFriedrichs(max_abs_speed))

    def key(self) -> str:
        return f"flux_lax_friedrichs({self.dissipation.max_abs_speed})"


class FluxHLL:
    """
    Harten-Lax-van Leer flux with wave speed estimates
    `min_max_speed(u_ll, u_rr, normal_direction)`.

    Args:
        min_max_speed: Name of the estimate of the equations, "min_max_speed_naive"
            or "min_max_speed_davis".
    """

    def __init__(self, min_max_speed: str = "min_max_speed_naive"):
        if min_max_speed not in ("min_max_speed_naive", "min_max_speed_davis"):
            raise ValueError(f"Unknown wave speed estimate '{min_max_speed}'.")
        self.min_max_speed = min_max_speed

    def __call__(self, u_ll, u_rr, normal_direction, equations) -> ArrayLike:
        lam_min, lam_max = getattr(equations, self.min_max_speed)(
            u_ll, u_rr, normal_direction
        )
        f_ll = equations.flux(u_ll, normal_direction)
        f_rr = equations.flux(u_rr, normal_direction)
        denom = np.where(lam_max - lam_min == 0, 1.0, lam_max - lam_min)
        f_star = (
            lam_max * f_ll - lam_min * f_rr + lam_min * lam_max * (u_rr - u_ll)
        ) / denom
        f_star = np.where(lam_min >= 0, f_ll, np.where(lam_max <= 0, f_rr, f_star))
        return equations.mask_auxiliary(f_star)

    def key(self) -> str:
        return f"flux_hll({self.min_max_speed})"


flux_lax_friedrichs = FluxLaxFriedrichs()
flux_hll = FluxHLL()
