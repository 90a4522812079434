from typing import Any, Dict, Tuple

import numpy as np

from ..tools.array_management import ArrayLike, VariableIndexMap
from .base import AbstractEquations, dot, normal_norm


def _shallow_water_variable_map(ndims: int) -> VariableIndexMap:
    var_idx_map = {"h": 0}
    for d in range(ndims):
        var_idx_map[f"h_v{d + 1}"] = d + 1
    var_idx_map["b"] = ndims + 1
    return VariableIndexMap(
        var_idx_map, {"h_v": [f"h_v{d + 1}" for d in range(ndims)]}
    )


class ShallowWaterEquations(AbstractEquations):
    """
    Shallow water equations with a bottom topography b in 1 or 2 dimensions. The
    variables are (h, h_v1, ..., h_vD, b); b is carried as an auxiliary variable
    that is never evolved. The topography source term g h grad(b) is nonconservative
    and is discretized with `flux_nonconservative_wintermeyer_etal`.

    Args:
        ndims: Number of spatial dimensions (1 or 2).
        gravity: Gravitational constant.
        H0: Reference total water height of the lake at rest.
    """

    have_nonconservative_terms = True
    n_auxiliary = 1

    def __init__(self, ndims: int, gravity: float = 9.81, H0: float = 0.0):
        if ndims not in (1, 2):
            raise ValueError(f"Shallow water equations need ndims 1 or 2, got {ndims}.")
        super().__init__(ndims, _shallow_water_variable_map(ndims))
        self.gravity = float(gravity)
        self.H0 = float(H0)

    @property
    def varnames_prim(self):
        return ["H"] + [f"v{d + 1}" for d in range(self.ndims)] + ["b"]

    def to_dict(self) -> Dict[str, Any]:
        return dict(super().to_dict(), gravity=self.gravity, H0=self.H0)

    def _unpack(self, u: ArrayLike) -> Tuple[ArrayLike, ArrayLike, ArrayLike]:
        h = u[0]
        return h, u[1 : self.ndims + 1] / h, u[-1]

    def cons2prim(self, u: ArrayLike) -> ArrayLike:
        h, v, b = self._unpack(u)
        return np.concatenate([(h + b)[np.newaxis], v, b[np.newaxis]])

    def prim2cons(self, w: ArrayLike) -> ArrayLike:
        b = w[-1]
        h = w[0] - b
        return np.concatenate(
            [h[np.newaxis], h * w[1 : self.ndims + 1], b[np.newaxis]]
        )

    def cons2entropy(self, u: ArrayLike) -> ArrayLike:
        """
        Entropy variables (g (h + b) - |v|^2 / 2, v). The bottom topography b is
        passed through as the last entry.
        """
        h, v, b = self._unpack(u)
        w1 = self.gravity * (h + b) - 0.5 * dot(v, v)
        return np.concatenate([w1[np.newaxis], v, b[np.newaxis]])

    def entropy2cons(self, w: ArrayLike) -> ArrayLike:
        v, b = w[1 : self.ndims + 1], w[-1]
        h = (w[0] + 0.5 * dot(v, v)) / self.gravity - b
        return np.concatenate([h[np.newaxis], h * v, b[np.newaxis]])

    def entropy(self, u: ArrayLike) -> ArrayLike:
        """
        Total energy 0.5 h |v|^2 + 0.5 g h^2 + g h b.
        """
        h, v, b = self._unpack(u)
        return 0.5 * h * dot(v, v) + 0.5 * self.gravity * h**2 + self.gravity * h * b

    def water_height(self, u: ArrayLike) -> ArrayLike:
        return u[0]

    def total_water_height(self, u: ArrayLike) -> ArrayLike:
        return u[0] + u[-1]

    def is_admissible(self, u: ArrayLike) -> ArrayLike:
        return super().is_admissible(u) & (u[0] > 0)

    def check_admissible(self, u: ArrayLike, where: str = "state"):
        super().check_admissible(u, where)
        if np.any(u[0] <= 0):
            self._raise_inadmissible(u[0] <= 0, "water height", where)

    def flux(self, u: ArrayLike, normal_direction: ArrayLike) -> ArrayLike:
        h, v, b = self._unpack(u)
        h_v_normal = h * dot(v, normal_direction)
        return np.concatenate(
            [
                h_v_normal[np.newaxis],
                h_v_normal * v + 0.5 * self.gravity * h**2 * normal_direction,
                np.zeros_like(b)[np.newaxis],
            ]
        )

    def max_abs_speed_naive(self, u_ll, u_rr, normal_direction) -> ArrayLike:
        h_ll, v_ll, _ = self._unpack(u_ll)
        h_rr, v_rr, _ = self._unpack(u_rr)
        v_n = np.maximum(
            np.abs(dot(v_ll, normal_direction)), np.abs(dot(v_rr, normal_direction))
        )
        c = np.sqrt(self.gravity * np.maximum(h_ll, h_rr))
        return v_n + c * normal_norm(normal_direction)

    def max_abs_speeds(self, u: ArrayLike) -> ArrayLike:
        h, v, _ = self._unpack(u)
        return np.abs(v) + np.sqrt(self.gravity * h)


def flux_wintermeyer_etal(u_ll, u_rr, normal_direction, equations: ShallowWaterEquations):
    """
    Entropy-conservative flux of Wintermeyer et al. (2017), paired with
    `flux_nonconservative_wintermeyer_etal` for well-balancedness.
    """
    h_ll, v_ll, b_ll = equations._unpack(u_ll)
    h_rr, v_rr, _ = equations._unpack(u_rr)
    h_v_avg = 0.5 * (u_ll[1 : equations.ndims + 1] + u_rr[1 : equations.ndims + 1])
    v_avg = 0.5 * (v_ll + v_rr)
    p_avg = 0.5 * equations.gravity * h_ll * h_rr

    f1 = dot(h_v_avg, normal_direction)
    f_mom = f1 * v_avg + p_avg * normal_direction
    return np.concatenate([f1[np.newaxis], f_mom, np.zeros_like(b_ll)[np.newaxis]])


def flux_fjordholm_etal(u_ll, u_rr, normal_direction, equations: ShallowWaterEquations):
    """
    Entropy-conservative flux of Fjordholm, Mishra and Tadmor (2011).
    """
    h_ll, v_ll, b_ll = equations._unpack(u_ll)
    h_rr, v_rr, _ = equations._unpack(u_rr)
    h_avg = 0.5 * (h_ll + h_rr)
    h2_avg = 0.5 * (h_ll**2 + h_rr**2)
    v_avg = 0.5 * (v_ll + v_rr)
    p_avg = 0.5 * equations.gravity * h2_avg

    f1 = h_avg * dot(v_avg, normal_direction)
    f_mom = f1 * v_avg + p_avg * normal_direction
    return np.concatenate([f1[np.newaxis], f_mom, np.zeros_like(b_ll)[np.newaxis]])


def flux_nonconservative_wintermeyer_etal(
    u_ll, u_rr, normal_direction, equations: ShallowWaterEquations
):
    """
    Nonconservative "local times jump" term g h_ll (b_rr - b_ll) n of the
    topography source. Not symmetric in its arguments.
    """
    h_ll, _, b_ll = equations._unpack(u_ll)
    b_rr = u_rr[-1]
    zero = np.zeros_like(h_ll)
    return np.concatenate(
        [
            zero[np.newaxis],
            equations.gravity * h_ll * (b_rr - b_ll) * normal_direction,
            zero[np.newaxis],
        ]
    )
