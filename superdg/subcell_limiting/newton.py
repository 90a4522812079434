from typing import Callable, Literal, Tuple

import numpy as np

from ..tools.array_management import ArrayLike


def limit_nonlinear_newton(
    quantity: Callable[[ArrayLike], ArrayLike],
    gradient: Callable[[ArrayLike], ArrayLike],
    is_valid: Callable[[ArrayLike], ArrayLike],
    u_low_order: ArrayLike,
    increment: ArrayLike,
    bound: ArrayLike,
    kind: Literal["min", "max"],
    max_iterations: int = 10,
    tolerances: Tuple[float, float] = (1e-12, 1e-14),
) -> ArrayLike:
    """
    Largest theta in [0, 1] such that q(u_low_order + theta * increment) satisfies a
    one-sided bound, found by a safeguarded Newton iteration on a shrinking bracket
    [lo, hi] (lo feasible, hi infeasible). Newton steps leaving the bracket and
    steps from inadmissible states fall back to bisection. The returned value is
    always the feasible end of the bracket, so an exhausted iteration cap only costs
    accuracy.

    Args:
        quantity: Function mapping states with shape (nvars, ...) to q with shape
            (...).
        gradient: Function mapping states to dq/du with shape (nvars, ...).
        is_valid: Function mapping states to a boolean admissibility mask.
        u_low_order: Feasible states. Has shape (nvars, ...).
        increment: Antidiffusive increments. Has shape (nvars, ...).
        bound: Bound of q. Has shape (...).
        kind: "min" for q >= bound or "max" for q <= bound.
        max_iterations: Iteration cap.
        tolerances: (convergence, feasibility) tolerances relative to
            max(1, |bound|). States violating the bound by less than the
            feasibility tolerance count as feasible.

    Returns:
        theta: Array with shape (...).
    """
    sign = 1.0 if kind == "min" else -1.0
    tol_conv, tol_feas = tolerances
    scale = np.maximum(1.0, np.abs(bound))

    def goal(theta: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
        u = u_low_order + theta[np.newaxis] * increment
        with np.errstate(all="ignore"):
            valid = is_valid(u)
            value = sign * (quantity(u) - bound)
        value = np.where(valid & np.isfinite(value), value, -np.inf)
        return value, valid

    theta = np.ones(bound.shape)
    value, valid = goal(theta)
    feasible = valid & (value >= -tol_feas * scale)

    lo = np.where(feasible, 1.0, 0.0)
    hi = np.ones(bound.shape)
    active = ~feasible

    for _ in range(max_iterations):
        if not np.any(active):
            break
        u = u_low_order + theta[np.newaxis] * increment
        with np.errstate(all="ignore"):
            dgoal = sign * np.sum(gradient(u) * increment, axis=0)
            step = theta - value / dgoal
        bisect = (
            ~valid
            | ~np.isfinite(step)
            | (step <= lo)
            | (step >= hi)
        )
        theta_new = np.where(bisect, 0.5 * (lo + hi), step)
        theta_new = np.where(active, theta_new, theta)

        value, valid = goal(theta_new)
        feasible = valid & (value >= -tol_feas * scale)
        lo = np.where(active & feasible, theta_new, lo)
        hi = np.where(active & ~feasible, theta_new, hi)
        theta = theta_new

        converged = (feasible & (value <= tol_conv * scale)) | (hi - lo <= tol_conv)
        active &= ~converged

    return lo
