from dataclasses import dataclass
from types import ModuleType
from typing import Optional, Union

import numpy as np

from .basis import LobattoLegendreBasis, multiply_dimensionwise
from .equations.base import AbstractEquations
from .errors import NonFiniteStateError
from .mesh import ElementGeometry, _MeshConnectivity
from .numerical_fluxes import FluxSpec, flux_name
from .tools.array_management import ArrayLike, ArrayManager
from .volume_integral import dg_volume, fv_volume

# alpha below this is treated as pure DG, above 1 - this as pure FV
ALPHA_SKIP = 1e-12


def _indicator_variable(
    equations: AbstractEquations, variable: str, u: ArrayLike
) -> ArrayLike:
    with np.errstate(all="ignore"):
        q = equations.derived_quantity(variable, u)
    finite = np.isfinite(q)
    if not np.all(finite):
        elements = sorted(set(int(i) for i in np.argwhere(~finite)[:, 0]))
        raise NonFiniteStateError(
            f"Non-finite indicator variable '{variable}' in element(s) "
            f"{elements[:10]}{' ...' if len(elements) > 10 else ''}.",
            elements=elements,
        )
    return q


def smooth_alpha(alpha: ArrayLike, mesh: _MeshConnectivity) -> ArrayLike:
    """
    alpha = max(alpha, 0.5 * alpha_neighbor) over every face neighbor, conforming
    interfaces and mortars alike.
    """
    out = alpha.copy()
    for left, right in mesh.interfaces:
        np.maximum.at(out, left, 0.5 * alpha[right])
        np.maximum.at(out, right, 0.5 * alpha[left])
    for m in mesh.mortars:
        for k in range(m.small.shape[1] if len(m) else 0):
            np.maximum.at(out, m.large, 0.5 * alpha[m.small[:, k]])
            np.maximum.at(out, m.small[:, k], 0.5 * alpha[m.large])
    return out


@dataclass(frozen=True, slots=True)
class IndicatorHennemannGassner:
    """
    Modal shock indicator of Hennemann and Gassner. The energy fraction of the
    highest Legendre modes of the indicator variable is mapped to a blending factor
    in [0, alpha_max] by a sigmoid centered at the threshold
    0.5 * 10^(-1.8 (p + 1)^0.25).

    Args:
        alpha_max: Upper cap of the blending factor.
        alpha_min: Factors below alpha_min are set to 0 and factors above
            1 - alpha_min to 1.
        alpha_smooth: Whether to smooth alpha across element faces.
        variable: Conservative variable or derived quantity of the equations.
    """

    alpha_max: float = 0.5
    alpha_min: float = 0.001
    alpha_smooth: bool = True
    variable: str = "density_pressure"

    def __post_init__(self):
        if not 0 <= self.alpha_min < 1:
            raise ValueError("alpha_min must be in [0, 1).")
        if not 0 <= self.alpha_max <= 1:
            raise ValueError("alpha_max must be in [0, 1].")

    def key(self) -> str:
        return f"hennemann_gassner({self.variable},{self.alpha_max})"

    def to_dict(self) -> dict:
        return dict(
            type="IndicatorHennemannGassner",
            alpha_max=self.alpha_max,
            alpha_min=self.alpha_min,
            alpha_smooth=self.alpha_smooth,
            variable=self.variable,
        )

    def energy(self, q: ArrayLike, basis: LobattoLegendreBasis) -> ArrayLike:
        """
        Largest of the energy fractions of the highest and the second highest
        Legendre modes of q with shape (nel, n, ..., n).
        """
        ndims = q.ndim - 1
        p = basis.polydeg
        axes = tuple(range(1, ndims + 1))
        # energy fractions are invariant under scaling of q
        scale = np.max(np.abs(q), axis=axes, keepdims=True)
        q = q / np.where(scale > 0, scale, 1.0)
        modal = multiply_dimensionwise(np, basis.inverse_vandermonde_legendre, q, axes)
        energy = modal**2
        total = np.sum(energy, axis=axes)
        clip1 = np.sum(energy[(slice(None),) + (slice(0, p),) * ndims], axis=axes)
        clip2 = np.sum(energy[(slice(None),) + (slice(0, p - 1),) * ndims], axis=axes)
        with np.errstate(divide="ignore", invalid="ignore"):
            frac1 = np.where(total > 0, (total - clip1) / total, 0.0)
            frac2 = np.where(clip1 > 0, (clip1 - clip2) / clip1, 0.0)
        return np.maximum(frac1, frac2)

    def __call__(
        self,
        u: ArrayLike,
        mesh: _MeshConnectivity,
        basis: LobattoLegendreBasis,
        equations: AbstractEquations,
    ) -> ArrayLike:
        """
        Blending factor of every element. Has shape (nel,).

        Raises:
            NonFiniteStateError: If the indicator variable or the blending factor
                is not finite.
        """
        if basis.polydeg < 2:
            raise ValueError("IndicatorHennemannGassner requires polydeg >= 2.")
        q = _indicator_variable(equations, self.variable, u)
        E = self.energy(q, basis)

        threshold = 0.5 * 10 ** (-1.8 * basis.n_nodes**0.25)
        sharpness = np.log((1 - 0.0001) / 0.0001)
        with np.errstate(over="ignore"):
            alpha = 1.0 / (1.0 + np.exp(-sharpness / threshold * (E - threshold)))

        alpha = np.where(alpha < self.alpha_min, 0.0, alpha)
        alpha = np.where(alpha > 1 - self.alpha_min, 1.0, alpha)
        alpha = np.minimum(alpha, self.alpha_max)
        finite = np.isfinite(alpha)
        if not np.all(finite):
            elements = [int(i) for i in np.flatnonzero(~finite)]
            raise NonFiniteStateError(
                "Non-finite blending factor in element(s) "
                f"{elements[:10]}{' ...' if len(elements) > 10 else ''}.",
                elements=elements,
            )
        if self.alpha_smooth:
            alpha = smooth_alpha(alpha, mesh)
        return alpha


@dataclass(frozen=True, slots=True)
class IndicatorLohner:
    """
    Lohner's second-derivative indicator on the three-point stencils of each line of
    nodes, |q_- - 2 q + q_+| / (|q_+ - q| + |q - q_-| + f_wave (|q_-| + 2|q| + |q_+|)),
    maximized over the element. Values lie in [0, 1].
    """

    f_wave: float = 0.2
    variable: str = "density"

    def key(self) -> str:
        return f"lohner({self.variable},{self.f_wave})"

    def to_dict(self) -> dict:
        return dict(type="IndicatorLohner", f_wave=self.f_wave, variable=self.variable)

    def __call__(self, u, mesh, basis, equations) -> ArrayLike:
        if basis.polydeg < 2:
            raise ValueError("IndicatorLohner requires polydeg >= 2.")
        q = _indicator_variable(equations, self.variable, u)
        n = basis.n_nodes
        out = np.zeros(q.shape[0])
        for d in range(q.ndim - 1):
            axis = 1 + d
            qm = np.take(q, np.arange(0, n - 2), axis=axis)
            q0 = np.take(q, np.arange(1, n - 1), axis=axis)
            qp = np.take(q, np.arange(2, n), axis=axis)
            num = np.abs(qm - 2 * q0 + qp)
            den = (
                np.abs(qp - q0)
                + np.abs(q0 - qm)
                + self.f_wave * (np.abs(qm) + 2 * np.abs(q0) + np.abs(qp))
            )
            with np.errstate(divide="ignore", invalid="ignore"):
                ratio = np.where(den > 0, num / den, 0.0)
            out = np.maximum(out, ratio.reshape(q.shape[0], -1).max(axis=1))
        return out


@dataclass(frozen=True, slots=True)
class IndicatorMax:
    """
    Maximum of a variable in each element.
    """

    variable: str = "density"

    def key(self) -> str:
        return f"max({self.variable})"

    def to_dict(self) -> dict:
        return dict(type="IndicatorMax", variable=self.variable)

    def __call__(self, u, mesh, basis, equations) -> ArrayLike:
        q = _indicator_variable(equations, self.variable, u)
        return q.reshape(q.shape[0], -1).max(axis=1)


BlendingIndicator = Union[IndicatorHennemannGassner, IndicatorLohner]


@dataclass(frozen=True, slots=True)
class VolumeIntegralShockCapturingHG:
    """
    Per-element convex blend (1 - alpha) DG + alpha FV of a flux differencing volume
    integral and a subcell finite volume integral.

    Args:
        indicator: IndicatorHennemannGassner or IndicatorLohner providing alpha.
        volume_flux_dg: Two-point flux (or pair) of the high-order scheme.
        volume_flux_fv: Two-point flux (or pair) of the subcell scheme.
    """

    indicator: BlendingIndicator
    volume_flux_dg: FluxSpec
    volume_flux_fv: FluxSpec

    def __post_init__(self):
        if not isinstance(self.indicator, (IndicatorHennemannGassner, IndicatorLohner)):
            raise ValueError(
                f"{type(self.indicator).__name__} does not produce blending factors."
            )

    def key(self) -> str:
        return (
            f"shock_capturing({self.indicator.key()},"
            f"{flux_name(self.volume_flux_dg)},{flux_name(self.volume_flux_fv)})"
        )

    def to_dict(self) -> dict:
        return dict(
            type="VolumeIntegralShockCapturingHG",
            indicator=self.indicator.to_dict(),
            volume_flux_dg=flux_name(self.volume_flux_dg),
            volume_flux_fv=flux_name(self.volume_flux_fv),
        )

    def blend(
        self,
        xp: ModuleType,
        out: ArrayLike,
        u: ArrayLike,
        geometry: ElementGeometry,
        basis: LobattoLegendreBasis,
        equations: AbstractEquations,
        alpha: ArrayLike,
        scratch: Optional[ArrayManager] = None,
    ):
        """
        Blended volume residual of a chunk of elements with blending factors `alpha`
        of shape (nel_chunk,). `scratch` is an arena prepared by
        prepare_volume_scratch for the chunk; it is only used by the parts that
        cover every element of the chunk.
        """
        out[...] = 0.0
        expand = (slice(None),) + (xp.newaxis,) * (u.ndim - 2)
        dg = xp.flatnonzero(alpha <= 1 - ALPHA_SKIP)
        fv = xp.flatnonzero(alpha >= ALPHA_SKIP)
        parts = (
            (dg, 1 - alpha, dg_volume, self.volume_flux_dg),
            (fv, alpha, fv_volume, self.volume_flux_fv),
        )
        for elements, weights, kernel, flux in parts:
            if len(elements) == 0:
                continue
            if len(elements) == u.shape[1] and scratch is not None:
                part = kernel(
                    xp, u, geometry, basis, equations, flux, scratch["volume_blend"], scratch
                )
                part *= weights[expand]
                out += part
            else:
                out[:, elements] += weights[elements][expand] * kernel(
                    xp, u[:, elements], geometry.select(elements), basis, equations, flux
                )
