from typing import Any, Dict, Tuple

import numpy as np

from ..numerical_fluxes import inv_ln_mean, ln_mean
from ..tools.array_management import ArrayLike, VariableIndexMap
from ..tools.stability import avoid0
from .base import AbstractEquations, dot, normal_norm


def _euler_variable_map(ndims: int) -> VariableIndexMap:
    var_idx_map = {"rho": 0}
    for d in range(ndims):
        var_idx_map[f"rho_v{d + 1}"] = d + 1
    var_idx_map["rho_e"] = ndims + 1
    return VariableIndexMap(
        var_idx_map, {"rho_v": [f"rho_v{d + 1}" for d in range(ndims)]}
    )


class CompressibleEulerEquations(AbstractEquations):
    """
    Compressible Euler equations of an ideal gas in 1, 2 or 3 dimensions with
    conservative variables (rho, rho_v1, ..., rho_vD, rho_e).

    Args:
        ndims: Number of spatial dimensions.
        gamma: Ratio of specific heats.
    """

    def __init__(self, ndims: int, gamma: float = 1.4):
        super().__init__(ndims, _euler_variable_map(ndims))
        if gamma <= 1:
            raise ValueError(f"gamma must be > 1, got {gamma}.")
        self.gamma = float(gamma)
        self.inv_gamma_minus_one = 1.0 / (self.gamma - 1.0)

    @property
    def varnames_prim(self):
        return ["rho"] + [f"v{d + 1}" for d in range(self.ndims)] + ["p"]

    def key(self) -> str:
        return f"{super().key()}_gamma{self.gamma}"

    def to_dict(self) -> Dict[str, Any]:
        return dict(super().to_dict(), gamma=self.gamma)

    # conversions
    def _unpack(self, u: ArrayLike) -> Tuple[ArrayLike, ArrayLike, ArrayLike]:
        rho = u[0]
        v = u[1 : self.ndims + 1] / rho
        p = (self.gamma - 1) * (u[-1] - 0.5 * dot(u[1 : self.ndims + 1], v))
        return rho, v, p

    def cons2prim(self, u: ArrayLike) -> ArrayLike:
        rho, v, p = self._unpack(u)
        return np.concatenate([rho[np.newaxis], v, p[np.newaxis]])

    def prim2cons(self, w: ArrayLike) -> ArrayLike:
        rho = w[0]
        v = w[1 : self.ndims + 1]
        p = w[-1]
        rho_e = p * self.inv_gamma_minus_one + 0.5 * rho * dot(v, v)
        return np.concatenate([rho[np.newaxis], rho * v, rho_e[np.newaxis]])

    def cons2entropy(self, u: ArrayLike) -> ArrayLike:
        rho, v, p = self._unpack(u)
        s = np.log(p) - self.gamma * np.log(rho)
        rho_p = rho / p
        w1 = (self.gamma - s) * self.inv_gamma_minus_one - 0.5 * rho_p * dot(v, v)
        return np.concatenate([w1[np.newaxis], rho_p * v, -rho_p[np.newaxis]])

    def entropy2cons(self, w: ArrayLike) -> ArrayLike:
        # Hughes, Franca, Mallet (1986) with the entropy -rho * s
        V = w * (self.gamma - 1)
        V1, V_mom, V_last = V[0], V[1 : self.ndims + 1], V[-1]
        V_square = dot(V_mom, V_mom)
        s = self.gamma - V1 + V_square / (2 * V_last)
        rho_iota = ((self.gamma - 1) / (-V_last) ** self.gamma) ** (
            self.inv_gamma_minus_one
        ) * np.exp(-s * self.inv_gamma_minus_one)
        rho = -rho_iota * V_last
        rho_e = rho_iota * (1 - V_square / (2 * V_last))
        return np.concatenate(
            [rho[np.newaxis], rho_iota * V_mom, rho_e[np.newaxis]]
        )

    # derived quantities
    def density(self, u: ArrayLike) -> ArrayLike:
        return u[0]

    def pressure(self, u: ArrayLike) -> ArrayLike:
        return self._unpack(u)[2]

    def density_pressure(self, u: ArrayLike) -> ArrayLike:
        return u[0] * self.pressure(u)

    def sound_speed(self, u: ArrayLike) -> ArrayLike:
        rho, _, p = self._unpack(u)
        return np.sqrt(self.gamma * p / rho)

    def energy_kinetic(self, u: ArrayLike) -> ArrayLike:
        m = u[1 : self.ndims + 1]
        return 0.5 * dot(m, m) / u[0]

    def energy_internal(self, u: ArrayLike) -> ArrayLike:
        return u[-1] - self.energy_kinetic(u)

    def entropy_thermodynamic(self, u: ArrayLike) -> ArrayLike:
        rho, _, p = self._unpack(u)
        return np.log(p) - self.gamma * np.log(rho)

    def entropy_math(self, u: ArrayLike) -> ArrayLike:
        """
        Convex mathematical entropy -rho s / (gamma - 1).
        """
        return -u[0] * self.entropy_thermodynamic(u) * self.inv_gamma_minus_one

    def entropy(self, u: ArrayLike) -> ArrayLike:
        return self.entropy_math(u)

    def entropy_spec(self, u: ArrayLike) -> ArrayLike:
        """
        Specific entropy rho_e_internal * rho^(-gamma) (Guermond et al.), whose
        superlevel sets are convex in the conservative variables.
        """
        return self.energy_internal(u) * u[0] ** (-self.gamma)

    def gradient_pressure(self, u: ArrayLike) -> ArrayLike:
        v = u[1 : self.ndims + 1] / u[0]
        gm1 = self.gamma - 1
        return np.concatenate(
            [
                (0.5 * gm1 * dot(v, v))[np.newaxis],
                -gm1 * v,
                np.full_like(u[:1], gm1),
            ]
        )

    def gradient_density(self, u: ArrayLike) -> ArrayLike:
        grad = np.zeros_like(u)
        grad[0] = 1.0
        return grad

    def gradient_entropy_math(self, u: ArrayLike) -> ArrayLike:
        return self.cons2entropy(u)

    def gradient_entropy_spec(self, u: ArrayLike) -> ArrayLike:
        rho = u[0]
        m = u[1 : self.ndims + 1]
        rho_pow = rho ** (-self.gamma)
        rho_e_internal = u[-1] - 0.5 * dot(m, m) / rho
        d_rho = rho_pow * 0.5 * dot(m, m) / rho**2 - self.gamma * rho_pow / rho * (
            rho_e_internal
        )
        return np.concatenate(
            [d_rho[np.newaxis], -rho_pow * m / rho, rho_pow[np.newaxis]]
        )

    def is_admissible(self, u: ArrayLike) -> ArrayLike:
        with np.errstate(all="ignore"):
            rho, _, p = self._unpack(u)
            return super().is_admissible(u) & (rho > 0) & (p > 0)

    def check_admissible(self, u: ArrayLike, where: str = "state"):
        super().check_admissible(u, where)
        rho, _, p = self._unpack(u)
        if np.any(rho <= 0):
            self._raise_inadmissible(rho <= 0, "density", where)
        if np.any(p <= 0):
            self._raise_inadmissible(p <= 0, "pressure", where)

    # fluxes
    def flux(self, u: ArrayLike, normal_direction: ArrayLike) -> ArrayLike:
        rho, v, p = self._unpack(u)
        v_normal = dot(v, normal_direction)
        rho_v_normal = rho * v_normal
        return np.concatenate(
            [
                rho_v_normal[np.newaxis],
                rho_v_normal * v + p * normal_direction,
                ((u[-1] + p) * v_normal)[np.newaxis],
            ]
        )

    def max_abs_speed_naive(self, u_ll, u_rr, normal_direction) -> ArrayLike:
        rho_ll, v_ll, p_ll = self._unpack(u_ll)
        rho_rr, v_rr, p_rr = self._unpack(u_rr)
        v_ll_n = np.abs(dot(v_ll, normal_direction))
        v_rr_n = np.abs(dot(v_rr, normal_direction))
        c_ll = np.sqrt(self.gamma * p_ll / rho_ll)
        c_rr = np.sqrt(self.gamma * p_rr / rho_rr)
        return np.maximum(v_ll_n, v_rr_n) + np.maximum(c_ll, c_rr) * normal_norm(
            normal_direction
        )

    def max_abs_speed(self, u_ll, u_rr, normal_direction) -> ArrayLike:
        rho_ll, v_ll, p_ll = self._unpack(u_ll)
        rho_rr, v_rr, p_rr = self._unpack(u_rr)
        norm = normal_norm(normal_direction)
        c_ll = np.sqrt(self.gamma * p_ll / rho_ll)
        c_rr = np.sqrt(self.gamma * p_rr / rho_rr)
        return np.maximum(
            np.abs(dot(v_ll, normal_direction)) + c_ll * norm,
            np.abs(dot(v_rr, normal_direction)) + c_rr * norm,
        )

    def min_max_speed_naive(self, u_ll, u_rr, normal_direction):
        rho_ll, v_ll, p_ll = self._unpack(u_ll)
        rho_rr, v_rr, p_rr = self._unpack(u_rr)
        norm = normal_norm(normal_direction)
        lam_min = dot(v_ll, normal_direction) - np.sqrt(self.gamma * p_ll / rho_ll) * norm
        lam_max = dot(v_rr, normal_direction) + np.sqrt(self.gamma * p_rr / rho_rr) * norm
        return lam_min, lam_max

    def min_max_speed_davis(self, u_ll, u_rr, normal_direction):
        rho_ll, v_ll, p_ll = self._unpack(u_ll)
        rho_rr, v_rr, p_rr = self._unpack(u_rr)
        norm = normal_norm(normal_direction)
        v_ll_n = dot(v_ll, normal_direction)
        v_rr_n = dot(v_rr, normal_direction)
        c_ll = np.sqrt(self.gamma * p_ll / rho_ll) * norm
        c_rr = np.sqrt(self.gamma * p_rr / rho_rr) * norm
        lam_min = np.minimum(v_ll_n - c_ll, v_rr_n - c_rr)
        lam_max = np.maximum(v_ll_n + c_ll, v_rr_n + c_rr)
        return lam_min, lam_max

    def max_abs_speeds(self, u: ArrayLike) -> ArrayLike:
        """
        Per-direction maximum signal speeds |v_d| + c with shape (ndims, ...).
        """
        rho, v, p = self._unpack(u)
        return np.abs(v) + np.sqrt(self.gamma * p / rho)


def _pair(equations: CompressibleEulerEquations, u_ll: ArrayLike, u_rr: ArrayLike):
    return equations._unpack(u_ll), equations._unpack(u_rr)


def flux_ranocha(u_ll, u_rr, normal_direction, equations: CompressibleEulerEquations):
    """
    Entropy-conserving and kinetic-energy-preserving two-point flux of Ranocha
    (2018), which also preserves pressure equilibria.
    """
    (rho_ll, v_ll, p_ll), (rho_rr, v_rr, p_rr) = _pair(equations, u_ll, u_rr)
    v_dot_n_ll = dot(v_ll, normal_direction)
    v_dot_n_rr = dot(v_rr, normal_direction)

    rho_mean = ln_mean(rho_ll, rho_rr)
    inv_rho_p_mean = p_ll * p_rr * inv_ln_mean(rho_ll * p_rr, rho_rr * p_ll)
    v_avg = 0.5 * (v_ll + v_rr)
    p_avg = 0.5 * (p_ll + p_rr)
    velocity_square_avg = 0.5 * dot(v_ll, v_rr)

    f1 = rho_mean * 0.5 * (v_dot_n_ll + v_dot_n_rr)
    f_mom = f1 * v_avg + p_avg * normal_direction
    f_e = f1 * (
        velocity_square_avg + inv_rho_p_mean * equations.inv_gamma_minus_one
    ) + 0.5 * (p_ll * v_dot_n_rr + p_rr * v_dot_n_ll)
    return np.concatenate([f1[np.newaxis], f_mom, f_e[np.newaxis]])


def flux_chandrashekar(
    u_ll, u_rr, normal_direction, equations: CompressibleEulerEquations
):
    """
    Entropy-conserving and kinetic-energy-preserving two-point flux of
    Chandrashekar (2013).
    """
    (rho_ll, v_ll, p_ll), (rho_rr, v_rr, p_rr) = _pair(equations, u_ll, u_rr)
    beta_ll = 0.5 * rho_ll / p_ll
    beta_rr = 0.5 * rho_rr / p_rr
    specific_kin_ll = 0.5 * dot(v_ll, v_ll)
    specific_kin_rr = 0.5 * dot(v_rr, v_rr)

    rho_avg = 0.5 * (rho_ll + rho_rr)
    rho_mean = ln_mean(rho_ll, rho_rr)
    beta_mean = ln_mean(beta_ll, beta_rr)
    beta_avg = 0.5 * (beta_ll + beta_rr)
    v_avg = 0.5 * (v_ll + v_rr)
    p_mean = 0.5 * rho_avg / beta_avg
    velocity_square_avg = specific_kin_ll + specific_kin_rr

    f1 = rho_mean * dot(v_avg, normal_direction)
    f_mom = f1 * v_avg + p_mean * normal_direction
    f_e = f1 * 0.5 * (
        equations.inv_gamma_minus_one / beta_mean - velocity_square_avg
    ) + dot(f_mom, v_avg)
    return np.concatenate([f1[np.newaxis], f_mom, f_e[np.newaxis]])


def flux_shima_etal(u_ll, u_rr, normal_direction, equations: CompressibleEulerEquations):
    """
    Kinetic-energy- and pressure-equilibrium-preserving flux of Shima et al. (2021).
    """
    (rho_ll, v_ll, p_ll), (rho_rr, v_rr, p_rr) = _pair(equations, u_ll, u_rr)
    v_dot_n_ll = dot(v_ll, normal_direction)
    v_dot_n_rr = dot(v_rr, normal_direction)

    rho_avg = 0.5 * (rho_ll + rho_rr)
    v_dot_n_avg = 0.5 * (v_dot_n_ll + v_dot_n_rr)
    v_avg = 0.5 * (v_ll + v_rr)
    p_avg = 0.5 * (p_ll + p_rr)
    kin_avg = 0.5 * dot(v_ll, v_rr)
    pv_dot_n_avg = 0.5 * (p_ll * v_dot_n_rr + p_rr * v_dot_n_ll)

    f1 = rho_avg * v_dot_n_avg
    f_mom = f1 * v_avg + p_avg * normal_direction
    f_e = p_avg * v_dot_n_avg * equations.inv_gamma_minus_one + f1 * kin_avg + pv_dot_n_avg
    return np.concatenate([f1[np.newaxis], f_mom, f_e[np.newaxis]])


def flux_kennedy_gruber(
    u_ll, u_rr, normal_direction, equations: CompressibleEulerEquations
):
    """
    Kinetic-energy-preserving two-point flux of Kennedy and Gruber (2008).
    """
    (rho_ll, v_ll, p_ll), (rho_rr, v_rr, p_rr) = _pair(equations, u_ll, u_rr)
    rho_avg = 0.5 * (rho_ll + rho_rr)
    v_avg = 0.5 * (v_ll + v_rr)
    p_avg = 0.5 * (p_ll + p_rr)
    e_avg = 0.5 * (u_ll[-1] / rho_ll + u_rr[-1] / rho_rr)
    v_dot_n_avg = dot(v_avg, normal_direction)

    f1 = rho_avg * v_dot_n_avg
    f_mom = f1 * v_avg + p_avg * normal_direction
    f_e = (rho_avg * e_avg + p_avg) * v_dot_n_avg
    return np.concatenate([f1[np.newaxis], f_mom, f_e[np.newaxis]])


def flux_hllc(u_ll, u_rr, normal_direction, equations: CompressibleEulerEquations):
    """
    HLLC approximate Riemann solver (Toro) with Roe-averaged wave speed estimates,
    for arbitrary normal directions.
    """
    (rho_ll, v_ll, p_ll), (rho_rr, v_rr, p_rr) = _pair(equations, u_ll, u_rr)
    gamma = equations.gamma
    v_dot_n_ll = dot(v_ll, normal_direction)
    v_dot_n_rr = dot(v_rr, normal_direction)
    norm = normal_norm(normal_direction)
    norm_sq = norm * norm
    inv_norm_sq = 1.0 / norm_sq

    c_ll = np.sqrt(gamma * p_ll / rho_ll) * norm
    c_rr = np.sqrt(gamma * p_rr / rho_rr) * norm

    f_ll = equations.flux(u_ll, normal_direction)
    f_rr = equations.flux(u_rr, normal_direction)

    # Roe averages
    sqrt_rho_ll = np.sqrt(rho_ll)
    sqrt_rho_rr = np.sqrt(rho_rr)
    sum_sqrt_rho = sqrt_rho_ll + sqrt_rho_rr
    v_roe = (sqrt_rho_ll * v_ll + sqrt_rho_rr * v_rr) / sum_sqrt_rho
    vel_roe = dot(v_roe, normal_direction)
    vel_roe_mag = dot(v_roe, v_roe)
    H_ll = (u_ll[-1] + p_ll) / rho_ll
    H_rr = (u_rr[-1] + p_rr) / rho_rr
    H_roe = (sqrt_rho_ll * H_ll + sqrt_rho_rr * H_rr) / sum_sqrt_rho
    c_roe = np.sqrt((gamma - 1) * (H_roe - 0.5 * vel_roe_mag)) * norm

    Ssl = np.minimum(v_dot_n_ll - c_ll, vel_roe - c_roe)
    Ssr = np.maximum(v_dot_n_rr + c_rr, vel_roe + c_roe)
    sMu_L = Ssl - v_dot_n_ll
    sMu_R = Ssr - v_dot_n_rr

    SStar = (
        rho_ll * v_dot_n_ll * sMu_L
        - rho_rr * v_dot_n_rr * sMu_R
        + (p_rr - p_ll) * norm_sq
    ) / avoid0(np, rho_ll * sMu_L - rho_rr * sMu_R)

    def star_flux(u, f, rho, v, p, v_dot_n, S, sMu):
        dens_star = rho * sMu / avoid0(np, S - SStar)
        ener_star = u[-1] / rho + (SStar - v_dot_n) * (
            SStar * inv_norm_sq + p / (rho * sMu)
        )
        u_star = np.concatenate(
            [
                dens_star[np.newaxis],
                dens_star * (v + (SStar - v_dot_n) * normal_direction * inv_norm_sq),
                (dens_star * ener_star)[np.newaxis],
            ]
        )
        return f + S * (u_star - u)

    with np.errstate(divide="ignore", invalid="ignore"):
        f_star_ll = star_flux(u_ll, f_ll, rho_ll, v_ll, p_ll, v_dot_n_ll, Ssl, sMu_L)
        f_star_rr = star_flux(u_rr, f_rr, rho_rr, v_rr, p_rr, v_dot_n_rr, Ssr, sMu_R)
    f_star = np.where(SStar >= 0, f_star_ll, f_star_rr)
    return np.where(Ssl >= 0, f_ll, np.where(Ssr <= 0, f_rr, f_star))


def boundary_condition_slip_wall(
    u_inner, outward_normal, x, t, surface_flux, equations: CompressibleEulerEquations
):
    """
    Slip wall boundary flux from the solution of the 1D Riemann problem in the
    normal direction (Toro, sections 6.3.3 and 4.6.2). The surface flux is unused.
    """
    norm = normal_norm(outward_normal)
    normal = outward_normal / norm
    rho, v, p = equations._unpack(u_inner)
    gamma = equations.gamma
    v_normal = dot(v, normal)

    c = np.sqrt(gamma * p / rho)
    with np.errstate(invalid="ignore"):
        # rarefaction
        p_rarefaction = p * (1 + 0.5 * (gamma - 1) * v_normal / c) ** (
            2 * gamma * equations.inv_gamma_minus_one
        )
        # shock
        A = 2 / ((gamma + 1) * rho)
        B = p * (gamma - 1) / (gamma + 1)
        p_shock = p + 0.5 * v_normal / A * (
            v_normal + np.sqrt(v_normal**2 + 4 * A * (p + B))
        )
    p_star = np.where(v_normal <= 0, p_rarefaction, p_shock)

    zero = np.zeros_like(rho)
    return np.concatenate(
        [zero[np.newaxis], p_star * normal * norm, zero[np.newaxis]]
    )


def _slip_wall_outer_state(
    u_inner, outward_normal, x, t, equations: CompressibleEulerEquations
):
    # mirror state with the normal momentum reflected
    normal = outward_normal / normal_norm(outward_normal)
    momentum = u_inner[1 : equations.ndims + 1]
    u_outer = u_inner.copy()
    u_outer[1 : equations.ndims + 1] = momentum - 2 * dot(momentum, normal) * normal
    return u_outer


boundary_condition_slip_wall.outer_state = _slip_wall_outer_state
