from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from .equations.base import AbstractEquations
from .numerical_fluxes import TwoPointFlux
from .tools.array_management import ArrayLike


@runtime_checkable
class BoundaryFlux(Protocol):
    def __call__(
        self,
        u_inner: ArrayLike,
        outward_normal: ArrayLike,
        x: ArrayLike,
        t: float,
        surface_flux: TwoPointFlux,
        equations: AbstractEquations,
    ) -> ArrayLike: ...


# maps boundary tags (e.g. "x_neg") to boundary fluxes
BoundaryConditions = Dict[str, BoundaryFlux]


@dataclass(frozen=True)
class BoundaryConditionDirichlet:
    """
    Weakly imposed Dirichlet data: the surface flux between the inner state and the
    state `boundary_value_function(x, t, equations)`.

    Args:
        boundary_value_function: Function mapping node coordinates with shape
            (ndims, ...) and a time to conservative states with shape (nvars, ...).
    """

    boundary_value_function: Callable[[ArrayLike, float, AbstractEquations], ArrayLike]

    def outer_state(
        self,
        u_inner: ArrayLike,
        outward_normal: ArrayLike,
        x: ArrayLike,
        t: float,
        equations: AbstractEquations,
    ) -> ArrayLike:
        u_outer = self.boundary_value_function(x, t, equations)
        if u_outer.shape != u_inner.shape:
            raise ValueError(
                f"Boundary state has shape {u_outer.shape}, expected {u_inner.shape}."
            )
        return u_outer

    def __call__(self, u_inner, outward_normal, x, t, surface_flux, equations):
        u_outer = self.outer_state(u_inner, outward_normal, x, t, equations)
        return surface_flux(u_inner, u_outer, outward_normal, equations)

    def to_dict(self) -> dict:
        return dict(
            type="BoundaryConditionDirichlet",
            function=getattr(self.boundary_value_function, "__name__", None),
        )


def boundary_condition_do_nothing(
    u_inner, outward_normal, x, t, surface_flux, equations: AbstractEquations
):
    """
    Outflow boundary: the physical flux of the inner state.
    """
    return equations.flux(u_inner, outward_normal)


def boundary_outer_state(
    bc: BoundaryFlux,
    u_inner: ArrayLike,
    outward_normal: ArrayLike,
    x: ArrayLike,
    t: float,
    equations: AbstractEquations,
) -> ArrayLike:
    """
    State outside the domain as seen by a boundary condition: its `outer_state`
    where it defines one, otherwise the inner state.
    """
    if hasattr(bc, "outer_state"):
        return bc.outer_state(u_inner, outward_normal, x, t, equations)
    return u_inner


def boundary_condition_name(bc: Optional[BoundaryFlux]) -> Optional[str]:
    if bc is None:
        return None
    if hasattr(bc, "to_dict"):
        return bc.to_dict()["type"]
    return getattr(bc, "__name__", type(bc).__name__)
