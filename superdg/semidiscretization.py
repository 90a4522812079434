from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from .basis import LobattoLegendreBasis
from .boundary_conditions import BoundaryConditions, BoundaryFlux, boundary_condition_name
from .equations.base import AbstractEquations
from .errors import MeshInconsistencyError, NonFiniteStateError
from .indicators import VolumeIntegralShockCapturingHG
from .mesh import _MeshConnectivity
from .mortar import MortarL2
from .numerical_fluxes import FluxSpec, flux_lax_friedrichs, flux_name, split_flux
from .subcell_limiting import (
    SubcellLimiterIDPContainer,
    SubcellLimiterIDPCorrection,
    VolumeIntegralSubcellLimiting,
    calc_local_bounds,
)
from .surface_integral import (
    allocate_face_fluxes,
    apply_jacobian,
    calc_boundary_fluxes,
    calc_interface_fluxes,
    calc_mortar_fluxes,
    calc_surface_integral,
)
from .tools.array_management import ArrayLike, ArrayManager
from .tools.workers import WorkerArenas
from .volume_integral import (
    VolumeIntegralFluxDifferencing,
    VolumeIntegralPureLGLFiniteVolume,
    VolumeIntegralWeakForm,
    prepare_volume_scratch,
)

VolumeIntegral = Union[
    VolumeIntegralWeakForm,
    VolumeIntegralFluxDifferencing,
    VolumeIntegralPureLGLFiniteVolume,
    VolumeIntegralShockCapturingHG,
    VolumeIntegralSubcellLimiting,
]
InitialCondition = Callable[[ArrayLike, float, AbstractEquations], ArrayLike]
SourceTerms = Callable[[ArrayLike, ArrayLike, float, AbstractEquations], ArrayLike]


@lru_cache(maxsize=None)
def lobatto_legendre_basis(polydeg: int) -> LobattoLegendreBasis:
    return LobattoLegendreBasis(polydeg)


@dataclass(frozen=True, slots=True)
class DGSEM:
    """
    Discontinuous Galerkin spectral element method on the LGL nodes.

    Args:
        polydeg: Polynomial degree of the solution in each element.
        surface_flux: Two-point flux (or (conservative, nonconservative) pair) at
            element faces.
        volume_integral: Volume integral configuration.
    """

    polydeg: int
    surface_flux: FluxSpec = flux_lax_friedrichs
    volume_integral: VolumeIntegral = field(default_factory=VolumeIntegralWeakForm)

    def __post_init__(self):
        if not isinstance(self.polydeg, int) or self.polydeg < 1:
            raise ValueError(f"polydeg must be a positive integer, got {self.polydeg}.")

    @property
    def basis(self) -> LobattoLegendreBasis:
        return lobatto_legendre_basis(self.polydeg)

    def key(self) -> str:
        return f"dgsem(p{self.polydeg},{flux_name(self.surface_flux)},{self.volume_integral.key()})"

    def to_dict(self) -> dict:
        return dict(
            type="DGSEM",
            polydeg=self.polydeg,
            surface_flux=flux_name(self.surface_flux),
            volume_integral=self.volume_integral.to_dict(),
        )


class Semidiscretization:
    """
    Spatial discretization of a system of conservation laws on a mesh. Holds the
    geometry, the connectivity, per-worker scratch arenas and the indicator and
    limiter containers, and evaluates the right-hand side du/dt = rhs(u, t).

    Args:
        mesh: StructuredMesh or TreeMesh.
        equations: Equations of the system.
        initial_condition: Function (x, t, equations) -> u evaluated at the nodes.
        solver: DGSEM configuration.
        boundary_conditions: Boundary flux per boundary tag, or a single boundary
            flux for all tags. Required for every boundary of the mesh.
        source_terms: Optional function (u, x, t, equations) -> s added to the
            right-hand side.
        n_workers: Number of workers of the element-parallel stages.

    Raises:
        MeshInconsistencyError: For inconsistent connectivity, non-positive Jacobians
            or missing boundary conditions.
        ValueError: For incompatible configurations.
    """

    def __init__(
        self,
        mesh: _MeshConnectivity,
        equations: AbstractEquations,
        initial_condition: InitialCondition,
        solver: DGSEM,
        boundary_conditions: Optional[
            Union[BoundaryFlux, BoundaryConditions]
        ] = None,
        source_terms: Optional[SourceTerms] = None,
        n_workers: int = 1,
    ):
        if mesh.ndims != equations.ndims:
            raise ValueError(
                f"Mesh is {mesh.ndims}D but the equations are {equations.ndims}D."
            )
        self.mesh = mesh
        self.equations = equations
        self.initial_condition = initial_condition
        self.solver = solver
        self.basis = solver.basis
        self.source_terms = source_terms
        self.n_workers = n_workers

        self.boundary_conditions = self._digest_boundary_conditions(boundary_conditions)
        self._validate_configuration()

        mesh.validate(self.basis)
        self.geometry = mesh.geometry(self.basis)
        self.mortar = None if mesh.is_conforming else MortarL2(self.basis)

        # scratch and caches
        nvars, nel, n = equations.nvariables, mesh.n_elements, self.basis.n_nodes
        self.arenas = WorkerArenas(nel, n_workers)
        for chunk, arena in zip(self.arenas.chunks, self.arenas.arenas):
            prepare_volume_scratch(np, arena, self.geometry.select(chunk), self.basis, nvars)
        self.face_fluxes = allocate_face_fluxes(np, nvars, nel, mesh.ndims, n)
        self.cache = ArrayManager()
        self.cache.allocate("alpha", (nel,), fill=0.0)

        vi = solver.volume_integral
        self.container: Optional[SubcellLimiterIDPContainer] = None
        self.idp_correction: Optional[SubcellLimiterIDPCorrection] = None
        if isinstance(vi, VolumeIntegralSubcellLimiting):
            self.container = SubcellLimiterIDPContainer(nvars, nel, mesh.ndims, n)
            self.idp_correction = SubcellLimiterIDPCorrection(
                vi.limiter, equations, self.basis
            )

    def _digest_boundary_conditions(self, boundary_conditions) -> BoundaryConditions:
        tags = self.mesh.boundary_tags
        if boundary_conditions is None:
            bcs: BoundaryConditions = {}
        elif isinstance(boundary_conditions, dict):
            bcs = dict(boundary_conditions)
        else:
            bcs = {tag: boundary_conditions for tag in tags}
        missing = [tag for tag in tags if tag not in bcs]
        if missing:
            raise MeshInconsistencyError(
                f"No boundary condition for boundaries {missing} of the mesh."
            )
        unknown = [tag for tag in bcs if tag not in tags]
        if unknown:
            raise ValueError(f"Boundary conditions given for unknown boundaries {unknown}.")
        return bcs

    def _validate_configuration(self):
        vi = self.solver.volume_integral
        eq = self.equations
        if eq.have_nonconservative_terms:
            if isinstance(vi, VolumeIntegralWeakForm):
                raise ValueError(
                    "The weak form volume integral does not support nonconservative "
                    "terms; use flux differencing with a (conservative, "
                    "nonconservative) flux pair."
                )
            if split_flux(self.solver.surface_flux)[1] is None:
                raise ValueError(
                    f"{eq} has nonconservative terms; the surface flux must be a "
                    "(conservative, nonconservative) pair."
                )
        if isinstance(vi, VolumeIntegralSubcellLimiting):
            vi.limiter.validate(eq)
            if not self.mesh.is_conforming:
                raise ValueError("The subcell IDP limiter requires a conforming mesh.")

    def __repr__(self) -> str:
        return (
            f"Semidiscretization({type(self.mesh).__name__}, {self.equations}, "
            f"{self.solver.key()}, n_elements={self.mesh.n_elements})"
        )

    @property
    def ndims(self) -> int:
        return self.mesh.ndims

    @property
    def alpha(self) -> ArrayLike:
        """
        Blending factors of the last shock-capturing residual evaluation.
        """
        return self.cache["alpha"]

    def compute_coefficients(self, func: Optional[InitialCondition] = None, t: float = 0.0) -> ArrayLike:
        """
        Interpolate `func` (default: the initial condition) at the nodes.

        Returns:
            Array with shape (nvars, nel, n, ..., n).
        """
        func = self.initial_condition if func is None else func
        u = np.asarray(func(self.geometry.node_coordinates, t, self.equations), dtype=float)
        expected = (self.equations.nvariables,) + self.geometry.jacobian.shape
        if u.shape != expected:
            raise ValueError(f"Initial condition has shape {u.shape}, expected {expected}.")
        return u

    def allocate_coefficients(self) -> ArrayLike:
        return np.zeros((self.equations.nvariables,) + self.geometry.jacobian.shape)

    def max_dt(self, u: ArrayLike, cfl: float) -> float:
        """
        Largest stable time-step size 2 / (n max(sum_d lambda_d / J)) * cfl with
        lambda_d the maximum signal speed in direction Ja^d.

        Raises:
            NonFiniteStateError: If the state is not admissible.
        """
        self.equations.check_admissible(u, "max_dt")
        lam = sum(
            self.equations.max_abs_speed_normal(u, self.geometry.contravariant[d])
            for d in range(self.ndims)
        )
        lam_max = float(np.max(lam * self.geometry.inverse_jacobian))
        if not np.isfinite(lam_max):
            raise NonFiniteStateError("Non-finite wave speed in max_dt.")
        if lam_max == 0:
            return np.inf
        return cfl * 2 / (self.basis.n_nodes * lam_max)

    def rhs(self, du: ArrayLike, u: ArrayLike, t: float):
        rhs(du, u, self, t)

    def close(self):
        """
        Shut down the worker pool. The semidiscretization cannot evaluate the
        right-hand side afterwards.
        """
        self.arenas.close()

    def __enter__(self):
        return self

    def __exit__(self, *excinfo):
        self.close()

    def to_dict(self) -> Dict[str, Any]:
        return dict(
            mesh=self.mesh.to_dict(),
            equations=self.equations.to_dict(),
            solver=self.solver.to_dict(),
            initial_condition=getattr(self.initial_condition, "__name__", None),
            boundary_conditions={
                tag: boundary_condition_name(bc)
                for tag, bc in self.boundary_conditions.items()
            },
            source_terms=getattr(self.source_terms, "__name__", None),
            n_workers=self.n_workers,
        )


def rhs(du: ArrayLike, u: ArrayLike, semi: Semidiscretization, t: float):
    """
    Evaluate the semi-discrete right-hand side in place:
    du = -1/J (volume terms + surface terms) + sources.

    Args:
        du: Output array with the shape of `u`.
        u: Array of conservative variables. Has shape (nvars, nel, n, ..., n).
        semi: Semidiscretization.
        t: Time.
    """
    xp = np
    eq, basis, geometry, mesh = semi.equations, semi.basis, semi.geometry, semi.mesh
    vi = semi.solver.volume_integral

    if isinstance(vi, VolumeIntegralShockCapturingHG):
        semi.cache["alpha"] = vi.indicator(u, mesh, basis, eq)

    def volume(worker_id: int, chunk: slice, arena: ArrayManager):
        out = du[:, chunk]
        u_chunk = u[:, chunk]
        geo_chunk = geometry.select(chunk)
        if isinstance(vi, VolumeIntegralShockCapturingHG):
            alpha = semi.cache["alpha"][chunk]
            vi.blend(xp, out, u_chunk, geo_chunk, basis, eq, alpha, scratch=arena)
        elif isinstance(vi, VolumeIntegralSubcellLimiting):
            vi(xp, out, u_chunk, geo_chunk, basis, eq, semi.container, chunk, scratch=arena)
        else:
            vi(xp, out, u_chunk, geo_chunk, basis, eq, scratch=arena)

    semi.arenas.run(volume)

    # face fluxes need the traces of all elements
    surface_flux = semi.solver.surface_flux
    calc_interface_fluxes(xp, semi.face_fluxes, u, geometry, mesh, eq, surface_flux)
    calc_boundary_fluxes(
        xp, semi.face_fluxes, u, geometry, mesh, eq, surface_flux,
        semi.boundary_conditions, t,
    )
    calc_mortar_fluxes(
        xp, semi.face_fluxes, u, geometry, mesh, eq, surface_flux, semi.mortar
    )
    if semi.container is not None:
        calc_local_bounds(
            xp, u, geometry, mesh, eq, vi.limiter, semi.container,
            semi.boundary_conditions, t,
        )

    def surface(worker_id: int, chunk: slice, arena: ArrayManager):
        du_chunk = du[:, chunk]
        calc_surface_integral(xp, du_chunk, semi.face_fluxes, basis, chunk)
        apply_jacobian(xp, du_chunk, geometry.inverse_jacobian[chunk])

    semi.arenas.run(surface)

    if semi.source_terms is not None:
        du += semi.source_terms(u, geometry.node_coordinates, t, eq)
    eq.mask_auxiliary(du)
