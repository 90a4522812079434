"""
Initial conditions f(x, t, equations) -> u and matching source terms
s(u, x, t, equations) -> du/dt contributions. `x` has shape (ndims, ...) and the
returned arrays have shape (nvars, ...).
"""

from functools import partial
from typing import Callable

import numpy as np

from .equations.base import AbstractEquations
from .equations.compressible_euler import CompressibleEulerEquations
from .equations.linear_advection import LinearScalarAdvectionEquation
from .equations.shallow_water import ShallowWaterEquations
from .tools.array_management import ArrayLike


def _euler_state(
    equations: CompressibleEulerEquations,
    rho: ArrayLike,
    v: ArrayLike,
    p: ArrayLike,
) -> ArrayLike:
    shape = np.broadcast_shapes(np.shape(rho), np.shape(p), np.shape(v)[1:])
    w = np.empty((equations.nvariables,) + shape)
    w[0] = rho
    w[1 : equations.ndims + 1] = v
    w[-1] = p
    return equations.prim2cons(w)


def constant(
    x: ArrayLike, t: float, equations: AbstractEquations, state=None
) -> ArrayLike:
    """
    Uniform conservative state, by default the free stream of the equations
    (rho = 1, v = (0.1, -0.2, 0.3), p = 1 for Euler, 1 otherwise).
    """
    if state is None:
        if isinstance(equations, CompressibleEulerEquations):
            v = np.array([0.1, -0.2, 0.3][: equations.ndims])
            state = equations.prim2cons(np.array([1.0, *v, 1.0]))
        else:
            state = np.ones(equations.nvariables)
    state = np.asarray(state, dtype=float)
    return np.broadcast_to(
        state.reshape((-1,) + (1,) * (x.ndim - 1)), (len(state),) + x.shape[1:]
    ).copy()


def free_stream(state) -> Callable:
    """
    Constant initial condition with the given conservative state.
    """
    func = partial(constant, state=state)
    func.__name__ = "free_stream"
    return func


# Euler convergence test
CONVERGENCE_C = 2.0
CONVERGENCE_A = 0.1
CONVERGENCE_OMEGA = np.pi


def euler_convergence(
    x: ArrayLike, t: float, equations: CompressibleEulerEquations
) -> ArrayLike:
    """
    Smooth periodic solution on [-1, 1]^D with rho = rho v_i = 2 + 0.1 sin(pi (sum x -
    t)) and rho e = rho^2, driven by `source_terms_euler_convergence`.
    """
    ini = CONVERGENCE_C + CONVERGENCE_A * np.sin(
        CONVERGENCE_OMEGA * (np.sum(x, axis=0) - t)
    )
    u = np.empty((equations.nvariables,) + ini.shape)
    u[:-1] = ini
    u[-1] = ini**2
    return u


def source_terms_euler_convergence(
    u: ArrayLike, x: ArrayLike, t: float, equations: CompressibleEulerEquations
) -> ArrayLike:
    D = equations.ndims
    phase = CONVERGENCE_OMEGA * (np.sum(x, axis=0) - t)
    rho = CONVERGENCE_C + CONVERGENCE_A * np.sin(phase)
    drho = CONVERGENCE_OMEGA * CONVERGENCE_A * np.cos(phase)
    dp = (equations.gamma - 1) * (2 * rho - 0.5 * D) * drho

    s = np.empty((equations.nvariables,) + rho.shape)
    s[0] = (D - 1) * drho
    s[1 : D + 1] = (D - 1) * drho + dp
    s[-1] = (2 * D - 2) * rho * drho + D * dp
    return s


def weak_blast_wave(
    x: ArrayLike, t: float, equations: CompressibleEulerEquations
) -> ArrayLike:
    """
    Weak blast wave centered at the origin: a high pressure region of radius 0.5 with
    an outward velocity in the ambient state.
    """
    r = np.sqrt(np.sum(x**2, axis=0))
    inside = r <= 0.5
    with np.errstate(divide="ignore", invalid="ignore"):
        direction = np.where(r > 0, x / r, 0.0)
    rho = np.where(inside, 1.0, 1.1691)
    v = np.where(inside, 0.0, 0.1882) * direction
    p = np.where(inside, 1.0, 1.245)
    return _euler_state(equations, rho, v, p)


def sod_shock_tube(
    x: ArrayLike, t: float, equations: CompressibleEulerEquations, x0: float = 0.5
) -> ArrayLike:
    """
    Sod shock tube along the first axis with the discontinuity at x0.
    """
    left = x[0] < x0
    rho = np.where(left, 1.0, 0.125)
    p = np.where(left, 1.0, 0.1)
    v = np.zeros_like(x)
    return _euler_state(equations, rho, v, p)


def sedov_blast_wave(
    x: ArrayLike,
    t: float,
    equations: CompressibleEulerEquations,
    r0: float = 0.21875,
    E: float = 1.0,
    p_ambient: float = 1e-5,
) -> ArrayLike:
    """
    Sedov blast wave: energy E deposited uniformly in a ball of radius r0 at the
    origin of a gas at rest with density 1.
    """
    D = equations.ndims
    volume = {1: 2 * r0, 2: np.pi * r0**2, 3: 4 / 3 * np.pi * r0**3}[D]
    p_inner = (equations.gamma - 1) * E / volume
    r = np.sqrt(np.sum(x**2, axis=0))
    rho = np.ones_like(r)
    p = np.where(r <= r0, p_inner, p_ambient)
    return _euler_state(equations, rho, np.zeros_like(x), p)


def density_wave(
    x: ArrayLike, t: float, equations: CompressibleEulerEquations
) -> ArrayLike:
    """
    Density wave advected with v = 0.1 in every direction at constant pressure 20 on
    the periodic domain [-1, 1]^D.
    """
    D = equations.ndims
    v = 0.1 * np.ones_like(x)
    rho = 1 + 0.98 * np.sin(2 * np.pi * (np.sum(x, axis=0) - 0.1 * D * t) / 2)
    return _euler_state(equations, rho, v, 20.0 * np.ones_like(rho))


def _advected_coordinates(
    x: ArrayLike, t: float, equations: LinearScalarAdvectionEquation
) -> ArrayLike:
    a = np.asarray(equations.advection_velocity).reshape((-1,) + (1,) * (x.ndim - 1))
    return x - a * t


def advection_sine_wave(
    x: ArrayLike, t: float, equations: LinearScalarAdvectionEquation
) -> ArrayLike:
    """
    1 + 0.5 sin(pi sum(x - a t)), periodic on [-1, 1]^D.
    """
    xi = _advected_coordinates(x, t, equations)
    return (1.0 + 0.5 * np.sin(np.pi * np.sum(xi, axis=0)))[np.newaxis]


def advection_gaussian(
    x: ArrayLike, t: float, equations: LinearScalarAdvectionEquation
) -> ArrayLike:
    """
    Gaussian pulse exp(-20 |x - a t|^2) (not periodized).
    """
    xi = _advected_coordinates(x, t, equations)
    return np.exp(-20.0 * np.sum(xi**2, axis=0))[np.newaxis]


def _swe_state(
    equations: ShallowWaterEquations, H: ArrayLike, v: ArrayLike, b: ArrayLike
) -> ArrayLike:
    w = np.empty((equations.nvariables,) + np.shape(H))
    w[0] = H
    w[1 : equations.ndims + 1] = v
    w[-1] = b
    return equations.prim2cons(w)


def lake_at_rest_bottom(x: ArrayLike) -> ArrayLike:
    return 0.5 * np.exp(-10.0 * np.sum((x - 0.5) ** 2, axis=0))


def lake_at_rest(
    x: ArrayLike, t: float, equations: ShallowWaterEquations, H: float = 2.0
) -> ArrayLike:
    """
    Water at rest with constant total height H over a smooth bump centered at 0.5.
    """
    b = lake_at_rest_bottom(x)
    return _swe_state(equations, H * np.ones_like(b), np.zeros_like(x), b)


SWE_C = 7.0
SWE_OMEGA_X = 2 * np.pi * np.sqrt(2.0)
SWE_OMEGA_T = 2 * np.pi
SWE_VELOCITY = 0.5


def shallow_water_convergence(
    x: ArrayLike, t: float, equations: ShallowWaterEquations
) -> ArrayLike:
    """
    Smooth 1D solution on the periodic domain [0, sqrt(2)] with
    H = 7 + cos(2 sqrt(2) pi x) cos(2 pi t), v = 0.5 and b = 2 + 0.5 sin(sqrt(2) pi x),
    driven by `source_terms_shallow_water_convergence`.
    """
    if equations.ndims != 1:
        raise ValueError("shallow_water_convergence is defined in 1D only.")
    H = SWE_C + np.cos(SWE_OMEGA_X * x[0]) * np.cos(SWE_OMEGA_T * t)
    b = 2.0 + 0.5 * np.sin(np.sqrt(2.0) * np.pi * x[0])
    return _swe_state(equations, H, SWE_VELOCITY * np.ones_like(x), b)


def source_terms_shallow_water_convergence(
    u: ArrayLike, x: ArrayLike, t: float, equations: ShallowWaterEquations
) -> ArrayLike:
    g, v = equations.gravity, SWE_VELOCITY
    H = SWE_C + np.cos(SWE_OMEGA_X * x[0]) * np.cos(SWE_OMEGA_T * t)
    H_t = -SWE_OMEGA_T * np.cos(SWE_OMEGA_X * x[0]) * np.sin(SWE_OMEGA_T * t)
    H_x = -SWE_OMEGA_X * np.sin(SWE_OMEGA_X * x[0]) * np.cos(SWE_OMEGA_T * t)
    b = 2.0 + 0.5 * np.sin(np.sqrt(2.0) * np.pi * x[0])
    b_x = 0.5 * np.sqrt(2.0) * np.pi * np.cos(np.sqrt(2.0) * np.pi * x[0])
    h, h_x = H - b, H_x - b_x

    s = np.zeros((equations.nvariables,) + H.shape)
    s[0] = H_t + v * h_x
    s[1] = v * H_t + v**2 * h_x + g * h * H_x
    return s
