from typing import Callable, Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .semidiscretization import InitialCondition, Semidiscretization, rhs
from .tools.array_management import ArrayLike
from .tools.norms import linf_norm, weighted_l2_norm


def _quadrature_weights(semi: Semidiscretization) -> ArrayLike:
    # J w at every node, shape (nel, n, ..., n)
    return semi.geometry.jacobian * semi.basis.weights_nd(semi.ndims)[np.newaxis]


def integrate(u: ArrayLike, semi: Semidiscretization) -> ArrayLike:
    """
    Integral of each variable over the domain with the LGL quadrature.

    Returns:
        Array with shape (nvars,).
    """
    return np.sum(u * _quadrature_weights(semi)[np.newaxis], axis=tuple(range(1, u.ndim)))


def calc_error_norms(
    u: ArrayLike,
    semi: Semidiscretization,
    t: float,
    func: Optional[InitialCondition] = None,
) -> Dict[str, ArrayLike]:
    """
    L2 and Linf errors of each variable at the LGL nodes against the exact solution
    `func` (default: the initial condition). The L2 error is normalized by the
    domain volume.

    Returns:
        Dictionary with "l2" and "linf" arrays of shape (nvars,).
    """
    err = u - semi.compute_coefficients(func, t)
    wJ = _quadrature_weights(semi)
    return dict(
        l2=np.array([weighted_l2_norm(e, wJ) for e in err]),
        linf=np.array([linf_norm(e) for e in err]),
    )


def entropy_timederivative(u: ArrayLike, semi: Semidiscretization, t: float) -> float:
    """
    Time derivative of the total entropy, integral of w(u) . du/dt with the entropy
    variables w.
    """
    du = np.empty_like(u)
    rhs(du, u, semi, t)
    w = semi.equations.cons2entropy(u)
    return float(np.sum(np.sum(w * du, axis=0) * _quadrature_weights(semi)))


def convergence_test(
    make_solver: Callable[[int], "object"],
    cells: Sequence[int],
    T: float,
    integrator: str = "ssprk3",
    func: Optional[InitialCondition] = None,
) -> pd.DataFrame:
    """
    Run the same problem on a sequence of meshes and tabulate the errors and the
    experimental orders of convergence (EOC) of each variable.

    Args:
        make_solver: Function mapping a number of cells per dimension to a DGSolver.
        cells: Increasing numbers of cells per dimension.
        T: Final time.
        integrator: Name of the integrator method of the solver.
        func: Exact solution. Defaults to the initial condition.

    Returns:
        DataFrame with columns "cells", "l2_<var>", "linf_<var>" and "eoc_l2_<var>".
    """
    rows = []
    for n_cells in cells:
        solver = make_solver(n_cells)
        getattr(solver, integrator)(T, verbose=False, no_snapshots=True)
        errors = calc_error_norms(solver.u, solver.semi, solver.t, func)
        row = dict(cells=n_cells)
        for i, name in enumerate(solver.semi.equations.varnames_cons):
            row[f"l2_{name}"] = float(errors["l2"][i])
            row[f"linf_{name}"] = float(errors["linf"][i])
        rows.append(row)

    df = pd.DataFrame(rows)
    for name in solver.semi.equations.varnames_cons:
        with np.errstate(divide="ignore", invalid="ignore"):
            df[f"eoc_l2_{name}"] = np.log(
                df[f"l2_{name}"].shift(1) / df[f"l2_{name}"]
            ) / np.log(df["cells"] / df["cells"].shift(1))
    return df
