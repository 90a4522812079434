from types import ModuleType
from typing import List, Optional

from .basis import LobattoLegendreBasis
from .boundary_conditions import BoundaryConditions
from .equations.base import AbstractEquations
from .mesh import ElementGeometry, _MeshConnectivity
from .mortar import MortarL2
from .numerical_fluxes import FluxSpec, split_flux
from .tools.array_management import ArrayLike


def allocate_face_fluxes(
    xp: ModuleType, nvars: int, n_elements: int, ndims: int, n_nodes: int
) -> List[ArrayLike]:
    """
    Allocate the numerical fluxes on the element faces: one array per direction
    with shape (nvars, n_elements, 2, n, ..., n) and ndims - 1 face node axes,
    index 0 of the third axis for the minus face and 1 for the plus face. Fluxes
    point in the +xi direction.
    """
    return [
        xp.full((nvars, n_elements, 2) + (n_nodes,) * (ndims - 1), xp.nan)
        for _ in range(ndims)
    ]


def face_trace(xp: ModuleType, array: ArrayLike, elements, d: int, side: int) -> ArrayLike:
    """
    Values of a nodal array with shape (nvars, nel, n, ..., n) on the minus (0) or
    plus (1) face normal to direction d of the given elements.
    """
    n = array.shape[2 + d]
    return xp.take(array[:, elements], 0 if side == 0 else n - 1, axis=2 + d)


def calc_interface_fluxes(
    xp: ModuleType,
    face_fluxes: List[ArrayLike],
    u: ArrayLike,
    geometry: ElementGeometry,
    mesh: _MeshConnectivity,
    equations: AbstractEquations,
    surface_flux: FluxSpec,
):
    """
    Numerical fluxes on the conforming interfaces. With nonconservative terms, each
    side receives f* + 0.5 f_nc(u_self, u_other, n).
    """
    flux_cons, flux_noncons = split_flux(surface_flux)
    for d, (left, right) in enumerate(mesh.interfaces):
        if len(left) == 0:
            continue
        u_ll = face_trace(xp, u, left, d, 1)
        u_rr = face_trace(xp, u, right, d, 0)
        normal = face_trace(xp, geometry.contravariant[d], left, d, 1)
        f = flux_cons(u_ll, u_rr, normal, equations)
        if flux_noncons is None:
            face_fluxes[d][:, left, 1] = f
            face_fluxes[d][:, right, 0] = f
        else:
            face_fluxes[d][:, left, 1] = f + 0.5 * flux_noncons(
                u_ll, u_rr, normal, equations
            )
            face_fluxes[d][:, right, 0] = f + 0.5 * flux_noncons(
                u_rr, u_ll, normal, equations
            )


def calc_boundary_fluxes(
    xp: ModuleType,
    face_fluxes: List[ArrayLike],
    u: ArrayLike,
    geometry: ElementGeometry,
    mesh: _MeshConnectivity,
    equations: AbstractEquations,
    surface_flux: FluxSpec,
    boundary_conditions: BoundaryConditions,
    t: float,
):
    """
    Numerical fluxes on the domain boundary from the boundary flux callbacks, which
    receive the outward normal direction and return the outward flux.
    """
    flux_cons, flux_noncons = split_flux(surface_flux)
    for b in mesh.boundaries:
        if len(b.elements) == 0:
            continue
        d, side = b.direction, b.side
        bc = boundary_conditions[b.tag]
        u_inner = face_trace(xp, u, b.elements, d, side)
        Ja = face_trace(xp, geometry.contravariant[d], b.elements, d, side)
        x = face_trace(xp, geometry.node_coordinates, b.elements, d, side)
        outward_normal = Ja if side == 1 else -Ja
        f_out = bc(u_inner, outward_normal, x, t, flux_cons, equations)
        f = f_out if side == 1 else -f_out
        if flux_noncons is not None and hasattr(bc, "outer_state"):
            u_outer = bc.outer_state(u_inner, outward_normal, x, t, equations)
            f = f + 0.5 * flux_noncons(u_inner, u_outer, Ja, equations)
        face_fluxes[d][:, b.elements, side] = f


def calc_mortar_fluxes(
    xp: ModuleType,
    face_fluxes: List[ArrayLike],
    u: ArrayLike,
    geometry: ElementGeometry,
    mesh: _MeshConnectivity,
    equations: AbstractEquations,
    surface_flux: FluxSpec,
    mortar: Optional[MortarL2],
):
    """
    Numerical fluxes on non-conforming faces. Large-face traces are interpolated to
    the small faces, fluxes are evaluated with the small-face normals and the
    large side receives their L2 projection scaled by 2^(ndims - 1).
    """
    if mesh.is_conforming:
        return
    flux_cons, flux_noncons = split_flux(surface_flux)
    tangential_axes = tuple(range(2, 1 + geometry.ndims))
    for m in mesh.mortars:
        d = m.direction
        for large_side in (0, 1):
            mask = m.large_side == large_side
            if not xp.any(mask):
                continue
            large = m.large[mask]
            small = m.small[mask]
            u_large = face_trace(xp, u, large, d, 1 - large_side)
            u_mortars = mortar.prolong(xp, u_large, tangential_axes)
            fluxes_large = []
            for k, u_mortar in enumerate(u_mortars):
                elements = small[:, k]
                u_small = face_trace(xp, u, elements, d, large_side)
                normal = face_trace(xp, geometry.contravariant[d], elements, d, large_side)
                if large_side == 0:
                    f = flux_cons(u_mortar, u_small, normal, equations)
                else:
                    f = flux_cons(u_small, u_mortar, normal, equations)
                if flux_noncons is None:
                    face_fluxes[d][:, elements, large_side] = f
                    fluxes_large.append(f)
                else:
                    face_fluxes[d][:, elements, large_side] = f + 0.5 * flux_noncons(
                        u_small, u_mortar, normal, equations
                    )
                    fluxes_large.append(
                        f + 0.5 * flux_noncons(u_mortar, u_small, normal, equations)
                    )
            face_fluxes[d][:, large, 1 - large_side] = mortar.project_back(
                xp, fluxes_large, tangential_axes
            )


def calc_surface_integral(
    xp: ModuleType,
    out: ArrayLike,
    face_fluxes: List[ArrayLike],
    basis: LobattoLegendreBasis,
    elements: slice = slice(None),
):
    """
    Add the surface term to the volume term of the given elements: -F*_0 / w_0 at the
    minus face nodes and +F*_N / w_N at the plus face nodes of each direction. The
    local boundary fluxes are part of the volume operator.
    """
    for d, f in enumerate(face_fluxes):
        axis = 2 + d
        idx_minus = (slice(None),) * axis + (0,)
        idx_plus = (slice(None),) * axis + (basis.n_nodes - 1,)
        out[idx_minus] -= f[:, elements, 0] * basis.inverse_weights[0]
        out[idx_plus] += f[:, elements, 1] * basis.inverse_weights[-1]


def apply_jacobian(xp: ModuleType, du: ArrayLike, inverse_jacobian: ArrayLike):
    """
    du *= -1 / J, in place.
    """
    du *= -inverse_jacobian[xp.newaxis]
