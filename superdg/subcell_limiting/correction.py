from typing import List, Tuple

import numpy as np

from ..basis import LobattoLegendreBasis
from ..equations.base import AbstractEquations
from ..errors import InfeasibleLimiterError
from ..mesh import ElementGeometry
from ..tools.array_management import ArrayLike
from .limiter import (
    BoundRecord,
    SubcellLimiterIDP,
    SubcellLimiterIDPContainer,
    along,
    collect_bounds,
)
from .newton import limit_nonlinear_newton


def _face_sides(n: int, d: int) -> Tuple[tuple, tuple]:
    # node indices left and right of the interior subcell interfaces of direction d
    return along(1 + d, slice(0, n - 1)), along(1 + d, slice(1, n))


class SubcellLimiterIDPCorrection:
    """
    Stage callback of the IDP limiter. After each forward Euler stage of the low-order
    scheme it adds the antidiffusive fluxes stored by VolumeIntegralSubcellLimiting,
    scaled per subcell interface by the largest theta in [0, 1] for which every bound
    holds at both adjacent nodes.

    Args:
        limiter: SubcellLimiterIDP configuration.
        equations: Equations of the system.
        basis: LobattoLegendreBasis.
    """

    def __init__(
        self,
        limiter: SubcellLimiterIDP,
        equations: AbstractEquations,
        basis: LobattoLegendreBasis,
    ):
        self.limiter = limiter
        self.equations = equations
        self.basis = basis

    def increments(
        self,
        dt: float,
        geometry: ElementGeometry,
        container: SubcellLimiterIDPContainer,
    ) -> List[Tuple[ArrayLike, ArrayLike]]:
        """
        Unlimited antidiffusive increments of the nodes left and right of every
        interior subcell interface, -dt A / (J_l w_l) and +dt A / (J_r w_r).
        """
        n = self.basis.n_nodes
        w = self.basis.weights
        out = []
        for d in range(geometry.ndims):
            lower, upper = _face_sides(n, d)
            shape = [1] * (geometry.ndims + 1)
            shape[1 + d] = n - 1
            A = container.antidiffusive_flux(d)
            J_left = geometry.jacobian[lower] * w[:-1].reshape(shape)
            J_right = geometry.jacobian[upper] * w[1:].reshape(shape)
            out.append((-dt * A / J_left[np.newaxis], dt * A / J_right[np.newaxis]))
        return out

    def check_feasibility(self, u: ArrayLike, bounds: List[BoundRecord]):
        """
        Check that the low-order state satisfies all bounds. Violations within the
        infeasibility tolerance are removed by relaxing the bound to the low-order
        value.

        Raises:
            InfeasibleLimiterError: If a violation exceeds the tolerance.
        """
        tol = self.limiter.infeasibility_tolerance
        for rec in bounds:
            with np.errstate(all="ignore"):
                q = self.equations.derived_quantity(rec.quantity, u)
                sign = 1.0 if rec.kind == "min" else -1.0
                violation = sign * (rec.values - q)
                deviation = violation / np.maximum(1.0, np.abs(rec.values))
            bad = ~(deviation <= tol)
            if not rec.linear:
                bad |= ~self.equations.is_admissible(u)
            if np.any(bad):
                elements = sorted(set(int(i) for i in np.argwhere(bad)[:, 0]))
                raise InfeasibleLimiterError(
                    f"Low-order state violates bound '{rec.name}' by "
                    f"{float(np.nanmax(np.where(bad, deviation, -np.inf))):.3e} "
                    f"in element(s) {elements[:10]}"
                    f"{' ...' if len(elements) > 10 else ''}."
                )
            if rec.kind == "min":
                rec.values = np.minimum(rec.values, q)
            else:
                rec.values = np.maximum(rec.values, q)

    def _theta_linear(
        self,
        rec: BoundRecord,
        u: ArrayLike,
        increments: List[Tuple[ArrayLike, ArrayLike]],
    ) -> List[ArrayLike]:
        # Zalesak-type limiting of the sum of increments entering each node
        n = self.basis.n_nodes
        iv = self.equations.variables(rec.quantity)
        sign = 1.0 if rec.kind == "max" else -1.0
        P = np.zeros_like(rec.values)
        for d, (c_left, c_right) in enumerate(increments):
            lower, upper = _face_sides(n, d)
            P[lower] += np.maximum(0.0, sign * c_left[iv])
            P[upper] += np.maximum(0.0, sign * c_right[iv])
        Q = np.maximum(0.0, sign * (rec.values - u[iv]))
        with np.errstate(divide="ignore", invalid="ignore"):
            theta_node = np.where(P > 0, np.minimum(1.0, Q / P), 1.0)

        out = []
        for d, (c_left, c_right) in enumerate(increments):
            lower, upper = _face_sides(n, d)
            theta_left = np.where(sign * c_left[iv] > 0, theta_node[lower], 1.0)
            theta_right = np.where(sign * c_right[iv] > 0, theta_node[upper], 1.0)
            out.append(np.minimum(theta_left, theta_right))
        return out

    def _theta_nonlinear(
        self,
        rec: BoundRecord,
        u: ArrayLike,
        increments: List[Tuple[ArrayLike, ArrayLike]],
        gamma: float,
    ) -> List[ArrayLike]:
        n = self.basis.n_nodes
        eq = self.equations
        quantity = lambda v: eq.derived_quantity(rec.quantity, v)  # noqa: E731
        gradient = eq.gradient(rec.quantity)
        out = []
        for d, (c_left, c_right) in enumerate(increments):
            lower, upper = _face_sides(n, d)
            thetas = []
            for side, c in ((lower, c_left), (upper, c_right)):
                thetas.append(
                    limit_nonlinear_newton(
                        quantity,
                        gradient,
                        eq.is_admissible,
                        u[(slice(None),) + side],
                        gamma * c,
                        rec.values[side],
                        rec.kind,
                        max_iterations=self.limiter.max_iterations_newton,
                        tolerances=self.limiter.newton_tolerances,
                    )
                )
            out.append(np.minimum(*thetas))
        return out

    def __call__(
        self,
        u: ArrayLike,
        dt: float,
        geometry: ElementGeometry,
        container: SubcellLimiterIDPContainer,
    ) -> ArrayLike:
        """
        Limit and apply the antidiffusive increments to the low-order state `u` in
        place. The final bounds are stored in container.bounds and the limiting
        coefficients in container.alpha(d) and container.limiting_coefficient.

        Returns:
            The corrected `u`.
        """
        n = self.basis.n_nodes
        ndims = geometry.ndims
        bounds = collect_bounds(u, self.equations, self.limiter, container)
        self.check_feasibility(u, bounds)
        container.bounds = bounds

        increments = self.increments(dt, geometry, container)
        theta = [np.ones(c_left.shape[1:]) for c_left, _ in increments]
        gamma = self.limiter.gamma_newton(ndims)
        for rec in bounds:
            if rec.linear:
                theta_rec = self._theta_linear(rec, u, increments)
            else:
                theta_rec = self._theta_nonlinear(rec, u, increments, gamma)
            theta = [np.minimum(a, b) for a, b in zip(theta, theta_rec)]

        coefficient = container.arrays["limiting_coefficient"]
        coefficient[...] = 0.0
        for d, (c_left, c_right) in enumerate(increments):
            lower, upper = _face_sides(n, d)
            container.alpha(d)[...] = 1.0 - theta[d]
            u[(slice(None),) + lower] += theta[d][np.newaxis] * c_left
            u[(slice(None),) + upper] += theta[d][np.newaxis] * c_right
            coefficient[lower] = np.maximum(coefficient[lower], 1.0 - theta[d])
            coefficient[upper] = np.maximum(coefficient[upper], 1.0 - theta[d])
        return u

    def bound_names(self) -> List[str]:
        """
        Names of all bounds enforced by the limiter, in the order of the report.
        """
        lim = self.limiter
        names = [f"{v}_{k}" for v in lim.local_twosided_variables_cons for k in ("min", "max")]
        names += [f"{v}_min" for v in lim.positivity_variables_cons]
        names += [f"{v}_positivity" for v in lim.positivity_variables_nonlinear]
        names += [f"{v}_{k}" for v, k in lim.local_onesided_variables_nonlinear]
        return list(dict.fromkeys(names))
