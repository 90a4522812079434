from dataclasses import dataclass, replace
from types import ModuleType
from typing import Dict, List, Literal, Optional, Tuple

import numpy as np

from ..basis import LobattoLegendreBasis
from ..boundary_conditions import BoundaryConditions, boundary_outer_state
from ..equations.base import AbstractEquations
from ..errors import MeshInconsistencyError
from ..mesh import BoundaryFaces, ElementGeometry, _MeshConnectivity
from ..numerical_fluxes import FluxSpec, flux_name, split_flux
from ..surface_integral import face_trace
from ..tools.array_management import ArrayLike, ArrayManager
from ..volume_integral import (
    flux_differencing_direction,
    fv_subcell_fluxes,
    subcell_flux_divergence,
    subcell_normals,
    subcell_pairs,
)

OneSidedBound = Tuple[str, Literal["min", "max"]]


def along(axis: int, s) -> tuple:
    """
    Index selecting `s` along `axis` and everything along the leading axes.
    """
    return (slice(None),) * axis + (s,)


@dataclass(frozen=True, slots=True)
class SubcellLimiterIDP:
    """
    Configuration of the subcell invariant domain preserving (IDP) limiter.

    Args:
        local_twosided_variables_cons: Conservative variables kept within the local
            minimum and maximum of the previous state and the low-order bar states.
        positivity_variables_cons: Conservative variables kept above
            positivity_correction_factor times their low-order value.
        positivity_variables_nonlinear: Derived quantities (e.g. "pressure") kept
            above positivity_correction_factor times their low-order value.
        local_onesided_variables_nonlinear: Derived quantities with a local one-sided
            bound, e.g. ("entropy_spec", "min") or ("entropy_math", "max").
        positivity_correction_factor: Fraction of the low-order value used as the
            positivity bound.
        max_iterations_newton: Iteration cap of the Newton-bisection solve.
        newton_tolerances: (convergence, feasibility) tolerances of the Newton
            solve, relative to max(1, |bound|).
        gamma_constant_newton: Scaling of the antidiffusive increments in the
            Newton solve; 2 * ndims makes the node update a convex combination.
            Defaults to 2 * ndims of the equations.
        infeasibility_tolerance: Largest violation of a bound by the low-order
            state itself (relative to max(1, |bound|)) that is clamped instead of
            raising InfeasibleLimiterError.
    """

    local_twosided_variables_cons: Tuple[str, ...] = ()
    positivity_variables_cons: Tuple[str, ...] = ()
    positivity_variables_nonlinear: Tuple[str, ...] = ()
    local_onesided_variables_nonlinear: Tuple[OneSidedBound, ...] = ()
    positivity_correction_factor: float = 0.1
    max_iterations_newton: int = 10
    newton_tolerances: Tuple[float, float] = (1e-12, 1e-14)
    gamma_constant_newton: Optional[float] = None
    infeasibility_tolerance: float = 1e-10

    def __post_init__(self):
        for name in (
            "local_twosided_variables_cons",
            "positivity_variables_cons",
            "positivity_variables_nonlinear",
            "local_onesided_variables_nonlinear",
        ):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(
            self,
            "local_onesided_variables_nonlinear",
            tuple(tuple(v) for v in self.local_onesided_variables_nonlinear),
        )
        object.__setattr__(self, "newton_tolerances", tuple(self.newton_tolerances))
        if not (
            self.local_twosided_variables_cons
            or self.positivity_variables_cons
            or self.positivity_variables_nonlinear
            or self.local_onesided_variables_nonlinear
        ):
            raise ValueError("SubcellLimiterIDP needs at least one limited quantity.")
        if not 0 < self.positivity_correction_factor < 1:
            raise ValueError("positivity_correction_factor must be in (0, 1).")
        if self.max_iterations_newton < 1:
            raise ValueError("max_iterations_newton must be a positive integer.")
        if len(self.newton_tolerances) != 2 or min(self.newton_tolerances) <= 0:
            raise ValueError("newton_tolerances must be two positive numbers.")
        for name, kind in self.local_onesided_variables_nonlinear:
            if kind not in ("min", "max"):
                raise ValueError(f"Bound kind of '{name}' must be 'min' or 'max'.")

    def validate(self, equations: AbstractEquations):
        """
        Check that all limited quantities are defined by `equations`.

        Raises:
            ValueError: For unknown variables or missing gradients.
        """
        if equations.have_nonconservative_terms:
            raise ValueError(
                "The subcell IDP limiter supports only systems without "
                "nonconservative terms."
            )
        for v in self.local_twosided_variables_cons + self.positivity_variables_cons:
            if v not in equations.variables.var_idx_map:
                raise ValueError(f"'{v}' is not a conservative variable of {equations}.")
        nonlinear = list(self.positivity_variables_nonlinear) + [
            name for name, _ in self.local_onesided_variables_nonlinear
        ]
        for name in nonlinear:
            if not callable(getattr(equations, name, None)):
                raise ValueError(f"{equations} has no quantity '{name}'.")
            try:
                equations.gradient(name)
            except KeyError as e:
                raise ValueError(str(e)) from e

    def gamma_newton(self, ndims: int) -> float:
        if self.gamma_constant_newton is None:
            return 2.0 * ndims
        return float(self.gamma_constant_newton)

    def key(self) -> str:
        parts = (
            [f"{v}_twosided" for v in self.local_twosided_variables_cons]
            + [f"{v}_positivity" for v in self.positivity_variables_cons]
            + [f"{v}_positivity" for v in self.positivity_variables_nonlinear]
            + [f"{v}_{kind}" for v, kind in self.local_onesided_variables_nonlinear]
        )
        return "idp(" + ",".join(parts) + ")"

    def to_dict(self) -> dict:
        return dict(
            type="SubcellLimiterIDP",
            local_twosided_variables_cons=list(self.local_twosided_variables_cons),
            positivity_variables_cons=list(self.positivity_variables_cons),
            positivity_variables_nonlinear=list(self.positivity_variables_nonlinear),
            local_onesided_variables_nonlinear=[
                list(v) for v in self.local_onesided_variables_nonlinear
            ],
            positivity_correction_factor=self.positivity_correction_factor,
            max_iterations_newton=self.max_iterations_newton,
            newton_tolerances=list(self.newton_tolerances),
            gamma_constant_newton=self.gamma_constant_newton,
        )


@dataclass
class BoundRecord:
    """
    Bound of one limited quantity at every node.

    Attributes:
        name: Name of the bound, e.g. "rho_min" or "pressure_min".
        quantity: Conservative variable or derived quantity name.
        kind: "min" or "max".
        linear: Whether the quantity is a conservative variable.
        values: Bound values. Has shape (nel, n, ..., n).
    """

    name: str
    quantity: str
    kind: Literal["min", "max"]
    linear: bool
    values: ArrayLike


class SubcellLimiterIDPContainer:
    """
    Stage data of the IDP limiter computed during the residual evaluation and
    consumed by the correction: antidiffusive fluxes and bar states at the interior
    subcell interfaces, local bounds of the stage-start state, and the limiting
    coefficients alpha = 1 - theta of the last correction (0 = high order,
    1 = low order).
    """

    def __init__(self, nvars: int, n_elements: int, ndims: int, n_nodes: int):
        self.ndims = ndims
        self.n_nodes = n_nodes
        self.arrays = ArrayManager()
        for d in range(ndims):
            shape = tuple(n_nodes - 1 if k == d else n_nodes for k in range(ndims))
            self.arrays.allocate(f"antidiffusive_flux_{d}", (nvars, n_elements) + shape)
            self.arrays.allocate(f"bar_states_{d}", (nvars, n_elements) + shape)
            self.arrays.allocate(f"alpha_{d}", (n_elements,) + shape, fill=0.0)
        self.arrays.allocate(
            "limiting_coefficient", (n_elements,) + (n_nodes,) * ndims, fill=0.0
        )
        self.local_bounds: Dict[str, BoundRecord] = {}
        self.bounds: List[BoundRecord] = []

    def antidiffusive_flux(self, d: int) -> ArrayLike:
        return self.arrays[f"antidiffusive_flux_{d}"]

    def bar_states(self, d: int) -> ArrayLike:
        return self.arrays[f"bar_states_{d}"]

    def alpha(self, d: int) -> ArrayLike:
        return self.arrays[f"alpha_{d}"]


def bar_states(
    u_ll: ArrayLike,
    u_rr: ArrayLike,
    normal_direction: ArrayLike,
    equations: AbstractEquations,
) -> ArrayLike:
    """
    Low-order bar states 0.5 (u_ll + u_rr) - (f(u_rr) - f(u_ll)) / (2 lambda) with the
    local Lax-Friedrichs wave speed lambda.
    """
    lam = equations.max_abs_speed_naive(u_ll, u_rr, normal_direction)
    flux_jump = equations.flux(u_rr, normal_direction) - equations.flux(
        u_ll, normal_direction
    )
    with np.errstate(divide="ignore", invalid="ignore"):
        correction = np.where(lam > 0, flux_jump / (2 * lam), 0.0)
    return 0.5 * (u_ll + u_rr) - correction


@dataclass(frozen=True, slots=True)
class VolumeIntegralSubcellLimiting:
    """
    Volume integral of the IDP subcell limiter. The residual contains only the
    low-order subcell finite volume operator; the antidiffusive fluxes towards the
    high-order flux differencing scheme are stored and added back, limited, by
    SubcellLimiterIDPCorrection after each stage.

    Args:
        limiter: SubcellLimiterIDP configuration.
        volume_flux_dg: Two-point flux of the high-order scheme.
        volume_flux_fv: Two-point flux of the low-order scheme (local
            Lax-Friedrichs for the bar-state bounds to hold).
    """

    limiter: SubcellLimiterIDP
    volume_flux_dg: FluxSpec
    volume_flux_fv: FluxSpec

    def key(self) -> str:
        return (
            f"subcell_limiting({self.limiter.key()},"
            f"{flux_name(self.volume_flux_dg)},{flux_name(self.volume_flux_fv)})"
        )

    def to_dict(self) -> dict:
        return dict(
            type="VolumeIntegralSubcellLimiting",
            limiter=self.limiter.to_dict(),
            volume_flux_dg=flux_name(self.volume_flux_dg),
            volume_flux_fv=flux_name(self.volume_flux_fv),
        )

    def __call__(
        self,
        xp: ModuleType,
        out: ArrayLike,
        u: ArrayLike,
        geometry: ElementGeometry,
        basis: LobattoLegendreBasis,
        equations: AbstractEquations,
        container: SubcellLimiterIDPContainer,
        elements: slice,
        scratch: Optional[ArrayManager] = None,
    ):
        """
        Low-order volume residual of a chunk of elements; stores the antidiffusive
        fluxes fhat - fstar and the subcell bar states of the chunk. `scratch` is an
        arena prepared by prepare_volume_scratch for the chunk.
        """
        if split_flux(self.volume_flux_dg)[1] is not None:
            raise ValueError("Subcell limiting does not support nonconservative fluxes.")
        out[...] = 0.0
        n = basis.n_nodes
        for d in range(geometry.ndims):
            axis = 2 + d
            if scratch is None:
                pair_normal, direction, v_dg = None, None, None
                subcell_normal = subcell_normals(xp, geometry.contravariant, d, basis)
            else:
                pair_normal = scratch[f"pair_normal_{d}"]
                subcell_normal = scratch[f"subcell_normal_{d}"]
                direction, v_dg = scratch["volume_direction"], scratch["volume_work"]

            f_star, _ = fv_subcell_fluxes(
                xp,
                u,
                geometry.contravariant,
                d,
                basis,
                equations,
                self.volume_flux_fv,
                normal=subcell_normal,
            )
            out += subcell_flux_divergence(xp, f_star, f_star, d, basis, out=direction)

            # high-order subcell fluxes from the flux differencing residual
            v_dg = flux_differencing_direction(
                xp,
                u,
                geometry.contravariant,
                d,
                basis,
                equations,
                self.volume_flux_dg,
                normal=pair_normal,
                out=v_dg,
            )
            shape = [1] * v_dg.ndim
            shape[axis] = n
            v_dg *= basis.weights.reshape(shape)
            f_hat = xp.cumsum(v_dg, axis=axis, out=v_dg)
            xp.subtract(
                f_hat[along(axis, slice(0, n - 1))],
                f_star,
                out=container.antidiffusive_flux(d)[:, elements],
            )

            u_ll, u_rr = subcell_pairs(xp, u, d)
            container.bar_states(d)[:, elements] = bar_states(
                u_ll, u_rr, subcell_normal, equations
            )


def _stencil_extrema(
    q: ArrayLike,
    q_bar_subcell: List[ArrayLike],
    q_face_neighbor: List[Tuple[ArrayLike, ArrayLike]],
    q_bar_interface: List[ArrayLike],
    q_boundary: List[Tuple[BoundaryFaces, ArrayLike, ArrayLike]],
    mesh: _MeshConnectivity,
    kind: Literal["min", "max"],
) -> ArrayLike:
    """
    Local minimum or maximum of q at each node over the node, its face neighbors
    (across element interfaces included), the outer states of boundary faces and the
    bar states of the adjacent subcell, interface and boundary faces.
    """
    op = np.minimum if kind == "min" else np.maximum
    ext = q.copy()
    n = q.shape[1]
    for d in range(q.ndim - 1):
        axis = 1 + d
        lower = along(axis, slice(0, n - 1))
        upper = along(axis, slice(1, n))
        ext[upper] = op(ext[upper], q[lower])
        ext[lower] = op(ext[lower], q[upper])
        ext[lower] = op(ext[lower], q_bar_subcell[d])
        ext[upper] = op(ext[upper], q_bar_subcell[d])

        left, right = mesh.interfaces[d]
        if len(left) == 0:
            continue
        q_left_trace, q_right_trace = q_face_neighbor[d]
        idx_left = (left,) + tuple(n - 1 if k == d else slice(None) for k in range(q.ndim - 1))
        idx_right = (right,) + tuple(0 if k == d else slice(None) for k in range(q.ndim - 1))
        ext[idx_left] = op(op(ext[idx_left], q_right_trace), q_bar_interface[d])
        ext[idx_right] = op(op(ext[idx_right], q_left_trace), q_bar_interface[d])

    for b, q_outer, q_bar in q_boundary:
        node = n - 1 if b.side == 1 else 0
        idx = (b.elements,) + tuple(
            node if k == b.direction else slice(None) for k in range(q.ndim - 1)
        )
        ext[idx] = op(op(ext[idx], q_outer), q_bar)
    return ext


def calc_local_bounds(
    xp: ModuleType,
    u: ArrayLike,
    geometry: ElementGeometry,
    mesh: _MeshConnectivity,
    equations: AbstractEquations,
    limiter: SubcellLimiterIDP,
    container: SubcellLimiterIDPContainer,
    boundary_conditions: Optional[BoundaryConditions] = None,
    t: float = 0.0,
):
    """
    Local bounds of the stage-start state `u` for all two-sided conservative and
    one-sided nonlinear quantities, stored in container.local_bounds. Runs after the
    bar states of all elements are known.

    At boundary nodes the stencil also holds the outer state of the boundary
    condition and the bar state between inner and outer state.
    """
    n = u.shape[2]
    ndims = geometry.ndims
    traces = []
    interface_bars = []
    for d, (left, right) in enumerate(mesh.interfaces):
        if len(left) == 0:
            traces.append((None, None))
            interface_bars.append(None)
            continue
        u_ll = xp.take(u[:, left], n - 1, axis=2 + d)
        u_rr = xp.take(u[:, right], 0, axis=2 + d)
        normal = xp.take(geometry.contravariant[d][:, left], n - 1, axis=2 + d)
        traces.append((u_ll, u_rr))
        interface_bars.append(bar_states(u_ll, u_rr, normal, equations))

    boundary_states = []
    for b in mesh.boundaries:
        if len(b.elements) == 0:
            continue
        if boundary_conditions is None or b.tag not in boundary_conditions:
            raise MeshInconsistencyError(f"No boundary condition for boundary {b.tag!r}.")
        d, side = b.direction, b.side
        u_inner = face_trace(xp, u, b.elements, d, side)
        Ja = face_trace(xp, geometry.contravariant[d], b.elements, d, side)
        x = face_trace(xp, geometry.node_coordinates, b.elements, d, side)
        outward_normal = Ja if side == 1 else -Ja
        u_outer = boundary_outer_state(
            boundary_conditions[b.tag], u_inner, outward_normal, x, t, equations
        )
        boundary_states.append(
            (b, u_outer, bar_states(u_inner, u_outer, outward_normal, equations))
        )

    def evaluate(name: str):
        q = equations.derived_quantity(name, u)
        q_sub = [
            equations.derived_quantity(name, container.bar_states(d))
            for d in range(ndims)
        ]
        q_nb = [
            (None, None)
            if u_ll is None
            else (
                equations.derived_quantity(name, u_ll),
                equations.derived_quantity(name, u_rr),
            )
            for u_ll, u_rr in traces
        ]
        q_ib = [
            None if bar is None else equations.derived_quantity(name, bar)
            for bar in interface_bars
        ]
        q_bd = [
            (
                b,
                equations.derived_quantity(name, u_outer),
                equations.derived_quantity(name, bar),
            )
            for b, u_outer, bar in boundary_states
        ]
        return q, q_sub, q_nb, q_ib, q_bd

    container.local_bounds = {}
    for v in limiter.local_twosided_variables_cons:
        stencil = evaluate(v)
        for kind in ("min", "max"):
            container.local_bounds[f"{v}_{kind}"] = BoundRecord(
                f"{v}_{kind}",
                v,
                kind,
                True,
                _stencil_extrema(*stencil, mesh, kind),
            )
    for name, kind in limiter.local_onesided_variables_nonlinear:
        stencil = evaluate(name)
        container.local_bounds[f"{name}_{kind}"] = BoundRecord(
            f"{name}_{kind}",
            name,
            kind,
            False,
            _stencil_extrema(*stencil, mesh, kind),
        )


def collect_bounds(
    u_low_order: ArrayLike,
    equations: AbstractEquations,
    limiter: SubcellLimiterIDP,
    container: SubcellLimiterIDPContainer,
) -> List[BoundRecord]:
    """
    All bounds of the current stage: local bounds of the stage-start state and
    positivity bounds of the low-order state. Positivity bounds of conservative
    variables that also have a local two-sided bound are merged into its minimum.
    """
    factor = limiter.positivity_correction_factor
    records = {
        name: replace(rec, values=rec.values.copy())
        for name, rec in container.local_bounds.items()
    }
    for v in limiter.positivity_variables_cons:
        positivity = factor * equations.derived_quantity(v, u_low_order)
        key = f"{v}_min"
        if key in records:
            rec = records[key]
            records[key] = BoundRecord(
                key, v, "min", True, np.maximum(rec.values, positivity)
            )
        else:
            records[key] = BoundRecord(key, v, "min", True, positivity)
    for name in limiter.positivity_variables_nonlinear:
        key = f"{name}_positivity"
        records[key] = BoundRecord(
            key,
            name,
            "min",
            False,
            factor * equations.derived_quantity(name, u_low_order),
        )
    return list(records.values())
