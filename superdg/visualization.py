from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.axes import Axes
from matplotlib.collections import QuadMesh

if TYPE_CHECKING:
    from superdg.dg_solver import DGSolver

from .tools.loader import OutputLoader

PlotSource = Union["DGSolver", OutputLoader]


def _get_nearest_time(source: PlotSource, t: Optional[float]) -> float:
    """
    Snapshot time nearest to `t`, or the latest snapshot time if `t` is None.
    """
    t_array = np.sort(np.array(source.snapshots.times()))
    if t_array.size == 0:
        raise ValueError("No snapshots available.")
    if t is None:
        return float(t_array[-1])
    idx = int(np.argmin(np.abs(t_array - t)))
    if t not in t_array:
        warnings.warn(
            f"Time {t} not exactly matched in snapshots; using nearest: {t_array[idx]:.6g}"
        )
    return float(t_array[idx])


def _node_coordinates(source: PlotSource) -> np.ndarray:
    if isinstance(source, OutputLoader):
        return source.mesh["node_coordinates"]
    return source.semi.geometry.node_coordinates


def _variable_names(source: PlotSource):
    if isinstance(source, OutputLoader):
        return source.variables.names
    return source.semi.equations.varnames_cons


def _extract_variable_data(
    source: PlotSource, t: float, variable: str, primitive: bool = False
) -> np.ndarray:
    """
    Nodal values of a conservative variable (or of the primitive variable at the
    same position if `primitive`), or the per-element "alpha" or per-node
    "limiting_coefficient" arrays of a snapshot.
    """
    data = source.snapshots(t)
    if variable in ("alpha", "limiting_coefficient"):
        if variable not in data:
            raise KeyError(f"Snapshot at t={t} has no '{variable}' data.")
        return data[variable]
    names = _variable_names(source)
    if variable not in names:
        raise KeyError(f"Unknown variable '{variable}'. Available: {names}.")
    return data["w" if primitive else "u"][names.index(variable)]


def plot_1d(
    source: PlotSource,
    ax: Axes,
    variable: str = "rho",
    t: Optional[float] = None,
    primitive: bool = False,
    **kwargs,
) -> list:
    """
    Plot a variable of a 1D solution element by element.

    Args:
        source: DGSolver or OutputLoader.
        ax: Matplotlib Axes.
        variable: Variable name, "alpha" or "limiting_coefficient".
        t: Snapshot time; nearest available if not exact, latest if None.
        primitive: Plot the primitive variable at the position of `variable`.
        **kwargs: Keyword arguments of `ax.plot`.

    Returns:
        List of Line2D objects.
    """
    x = _node_coordinates(source)
    if x.shape[0] != 1:
        raise ValueError(f"plot_1d requires a 1D solution, got {x.shape[0]}D.")
    nearest_t = _get_nearest_time(source, t)
    q = _extract_variable_data(source, nearest_t, variable, primitive)

    kwargs.setdefault("color", "k")
    label = kwargs.pop("label", None)
    lines = []
    for e in range(x.shape[1]):
        xe = x[0, e]
        qe = np.full_like(xe, q[e]) if q.ndim == 1 else q[e]
        lines += ax.plot(xe, qe, label=label if e == 0 else None, **kwargs)
    return lines


def plot_2d(
    source: PlotSource,
    ax: Axes,
    variable: str = "rho",
    t: Optional[float] = None,
    primitive: bool = False,
    limits: Optional[Tuple[float, float]] = None,
    colorbar: bool = False,
    **kwargs,
) -> QuadMesh:
    """
    Plot a variable of a 2D solution as one Gouraud-shaded patch per element.

    Args:
        source: DGSolver or OutputLoader.
        ax: Matplotlib Axes.
        variable: Variable name, "alpha" or "limiting_coefficient".
        t: Snapshot time; nearest available if not exact, latest if None.
        primitive: Plot the primitive variable at the position of `variable`.
        limits: Color limits; defaults to the data range.
        colorbar: Whether to add a colorbar.
        **kwargs: Keyword arguments of `ax.pcolormesh`.

    Returns:
        QuadMesh of the last element.
    """
    x = _node_coordinates(source)
    if x.shape[0] != 2:
        raise ValueError(f"plot_2d requires a 2D solution, got {x.shape[0]}D.")
    nearest_t = _get_nearest_time(source, t)
    q = _extract_variable_data(source, nearest_t, variable, primitive)
    if q.ndim == 1:
        q = np.broadcast_to(q[:, None, None], x.shape[1:])
    vmin, vmax = limits if limits is not None else (float(q.min()), float(q.max()))

    kwargs.setdefault("cmap", "viridis")
    mesh = None
    for e in range(x.shape[1]):
        mesh = ax.pcolormesh(
            x[0, e], x[1, e], q[e], shading="gouraud", vmin=vmin, vmax=vmax, **kwargs
        )
    ax.set_aspect("equal")
    if colorbar:
        plt.colorbar(mesh, ax=ax, label=variable)
    return mesh
