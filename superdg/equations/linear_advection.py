from typing import Any, Dict, Sequence

import numpy as np

from ..tools.array_management import ArrayLike, VariableIndexMap
from .base import AbstractEquations


class LinearScalarAdvectionEquation(AbstractEquations):
    """
    Linear scalar advection u_t + div(a u) = 0 with a constant advection velocity.

    Args:
        advection_velocity: Sequence of ndims velocity components.
    """

    def __init__(self, advection_velocity: Sequence[float]):
        velocity = np.asarray(advection_velocity, dtype=np.float64).reshape(-1)
        super().__init__(len(velocity), VariableIndexMap({"scalar": 0}))
        self.advection_velocity = velocity
        self.advection_velocity.setflags(write=False)

    def to_dict(self) -> Dict[str, Any]:
        return dict(
            super().to_dict(), advection_velocity=self.advection_velocity.tolist()
        )

    def _velocity_dot(self, normal_direction: ArrayLike) -> ArrayLike:
        a = self.advection_velocity.reshape((-1,) + (1,) * (normal_direction.ndim - 1))
        return np.sum(a * normal_direction, axis=0)

    def flux(self, u: ArrayLike, normal_direction: ArrayLike) -> ArrayLike:
        return self._velocity_dot(normal_direction) * u

    def max_abs_speed_naive(self, u_ll, u_rr, normal_direction) -> ArrayLike:
        return np.abs(self._velocity_dot(normal_direction)) * np.ones_like(u_ll[0])

    def max_abs_speeds(self, u: ArrayLike) -> ArrayLike:
        a = self.advection_velocity.reshape((-1,) + (1,) * (u.ndim - 1))
        return np.abs(a) * np.ones_like(u[:1])

    def cons2prim(self, u: ArrayLike) -> ArrayLike:
        return u

    def prim2cons(self, w: ArrayLike) -> ArrayLike:
        return w

    def cons2entropy(self, u: ArrayLike) -> ArrayLike:
        return u

    def entropy2cons(self, w: ArrayLike) -> ArrayLike:
        return w

    def entropy(self, u: ArrayLike) -> ArrayLike:
        return 0.5 * u[0] ** 2

    def gradient_entropy(self, u: ArrayLike) -> ArrayLike:
        return u


def flux_godunov(u_ll, u_rr, normal_direction, equations: LinearScalarAdvectionEquation):
    """
    Upwind flux of linear scalar advection.
    """
    a_normal = equations._velocity_dot(normal_direction)
    return np.where(a_normal >= 0, a_normal * u_ll, a_normal * u_rr)
