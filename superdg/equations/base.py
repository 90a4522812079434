from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Tuple

import numpy as np

from ..errors import NonFiniteStateError
from ..tools.array_management import ArrayLike, VariableIndexMap
from ..tools.stability import check_finite


def normal_norm(normal_direction: ArrayLike) -> ArrayLike:
    """
    Euclidean norm of a normal direction with shape (ndims, ...).
    """
    return np.sqrt(np.sum(normal_direction**2, axis=0))


def dot(a: ArrayLike, b: ArrayLike) -> ArrayLike:
    """
    Dot product along the leading (component) axis.
    """
    return np.sum(a * b, axis=0)


class AbstractEquations(ABC):
    """
    Capability set of a system of conservation laws. Concrete systems are immutable
    descriptors shared by reference; all methods act on batches of states with shape
    (nvars, ...) and normal directions with shape (ndims, ...).

    Attributes:
        ndims: Number of spatial dimensions.
        variables: VariableIndexMap of the conservative variables.
        have_nonconservative_terms: Whether the system has nonconservative terms
            that must be discretized with a nonconservative two-point flux.
        n_auxiliary: Number of trailing variables that are parameters of the model
            rather than evolved quantities (e.g. the bottom topography).
    """

    have_nonconservative_terms: bool = False
    n_auxiliary: int = 0

    def __init__(self, ndims: int, variables: VariableIndexMap):
        if ndims not in (1, 2, 3):
            raise ValueError(f"ndims must be 1, 2 or 3, got {ndims}.")
        self.ndims = ndims
        self.variables = variables

    @property
    def nvariables(self) -> int:
        return self.variables.nvars

    @property
    def varnames_cons(self) -> List[str]:
        return self.variables.names

    @property
    def varnames_prim(self) -> List[str]:
        return self.varnames_cons

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ndims}D)"

    @abstractmethod
    def flux(self, u: ArrayLike, normal_direction: ArrayLike) -> ArrayLike:
        """
        Physical flux in the (unnormalized) `normal_direction`.
        """
        ...

    @abstractmethod
    def max_abs_speed_naive(
        self, u_ll: ArrayLike, u_rr: ArrayLike, normal_direction: ArrayLike
    ) -> ArrayLike:
        """
        Estimate of the maximum wave speed, scaled by |normal_direction|.
        """
        ...

    def max_abs_speed(
        self, u_ll: ArrayLike, u_rr: ArrayLike, normal_direction: ArrayLike
    ) -> ArrayLike:
        return self.max_abs_speed_naive(u_ll, u_rr, normal_direction)

    def min_max_speed_naive(
        self, u_ll: ArrayLike, u_rr: ArrayLike, normal_direction: ArrayLike
    ) -> Tuple[ArrayLike, ArrayLike]:
        lam = self.max_abs_speed_naive(u_ll, u_rr, normal_direction)
        return -lam, lam

    def min_max_speed_davis(
        self, u_ll: ArrayLike, u_rr: ArrayLike, normal_direction: ArrayLike
    ) -> Tuple[ArrayLike, ArrayLike]:
        return self.min_max_speed_naive(u_ll, u_rr, normal_direction)

    def max_abs_speed_normal(
        self, u: ArrayLike, normal_direction: ArrayLike
    ) -> ArrayLike:
        """
        Maximum signal speed of a single state in `normal_direction`, used for the
        CFL condition and the low-order graph viscosity.
        """
        return self.max_abs_speed_naive(u, u, normal_direction)

    @abstractmethod
    def cons2prim(self, u: ArrayLike) -> ArrayLike: ...

    @abstractmethod
    def prim2cons(self, w: ArrayLike) -> ArrayLike: ...

    @abstractmethod
    def cons2entropy(self, u: ArrayLike) -> ArrayLike: ...

    def entropy2cons(self, w: ArrayLike) -> ArrayLike:
        raise NotImplementedError(f"{type(self).__name__} has no entropy2cons.")

    @abstractmethod
    def entropy(self, u: ArrayLike) -> ArrayLike:
        """
        Mathematical entropy (a convex function of the conservative variables).
        """
        ...

    def mask_auxiliary(self, array: ArrayLike) -> ArrayLike:
        """
        Zero the auxiliary variables of a flux-like array in place and return it.
        """
        if self.n_auxiliary:
            array[-self.n_auxiliary :] = 0.0
        return array

    def derived_quantity(self, name: str, u: ArrayLike) -> ArrayLike:
        """
        Evaluate a conservative variable or a named derived quantity.

        Args:
            name: Conservative variable name or name of a method of the equations
                mapping u to a scalar field (e.g. "pressure").
            u: Array of conservative variables with shape (nvars, ...).

        Returns:
            Array with shape u.shape[1:].
        """
        if name in self.variables.var_idx_map:
            return u[self.variables(name)]
        func = getattr(self, name, None)
        if func is None or not callable(func):
            raise KeyError(f"{type(self).__name__} has no quantity '{name}'.")
        return func(u)

    def gradient(self, name: str) -> Callable[[ArrayLike], ArrayLike]:
        """
        Return the gradient of a derived quantity with respect to the conservative
        variables, u -> dq/du with shape (nvars, ...).
        """
        func = getattr(self, f"gradient_{name}", None)
        if func is None:
            raise KeyError(
                f"{type(self).__name__} provides no gradient for quantity '{name}'."
            )
        return func

    def is_admissible(self, u: ArrayLike) -> ArrayLike:
        """
        Boolean mask with shape u.shape[1:] of finite states inside the physical
        domain of the system.
        """
        return np.all(np.isfinite(u), axis=0)

    def check_admissible(self, u: ArrayLike, where: str = "state"):
        """
        Raise a NonFiniteStateError if `u` with shape (nvars, n_elements, ...) is not
        finite or is outside the physical domain of the system.
        """
        check_finite(np, u, where, self.varnames_cons)

    def _raise_inadmissible(self, bad: ArrayLike, name: str, where: str):
        elements = sorted(set(int(i) for i in np.argwhere(bad)[:, 0]))
        raise NonFiniteStateError(
            f"Non-positive {name} detected in {where}: element(s) "
            f"{elements[:10]}{' ...' if len(elements) > 10 else ''}.",
            elements=elements,
        )

    def key(self) -> str:
        return f"{type(self).__name__}{self.ndims}D"

    def to_dict(self) -> Dict[str, Any]:
        return dict(type=type(self).__name__, ndims=self.ndims)
