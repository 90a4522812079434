from dataclasses import dataclass
from types import ModuleType
from typing import List, Optional, Tuple

from .basis import LobattoLegendreBasis, apply_along_axis
from .equations.base import AbstractEquations
from .mesh import ElementGeometry
from .numerical_fluxes import FluxSpec, flux_name, split_flux
from .tools.array_management import ArrayLike, ArrayManager


def pairwise_states(
    xp: ModuleType, u: ArrayLike, axis: int
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Broadcast views of all ordered node pairs along one axis.

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        u: Array with n nodes along `axis`.
        axis: Node axis.

    Returns:
        u_a, u_b: Arrays with the node axis replaced by two axes (a, b) of length n,
            u_a[..., a, b, ...] = u[..., a, ...] and u_b[..., a, b, ...] =
            u[..., b, ...].
    """
    n = u.shape[axis]
    shape = u.shape[:axis] + (n, n) + u.shape[axis + 1 :]
    u_a = xp.broadcast_to(xp.expand_dims(u, axis + 1), shape)
    u_b = xp.broadcast_to(xp.expand_dims(u, axis), shape)
    return u_a, u_b


def _contract_pairs(
    xp: ModuleType,
    matrix: ArrayLike,
    F: ArrayLike,
    axis: int,
    out: Optional[ArrayLike] = None,
) -> ArrayLike:
    # sum_b matrix[a, b] * F[..., a, b, ...]
    labels = [chr(ord("c") + k) for k in range(F.ndim)]
    labels[axis], labels[axis + 1] = "a", "b"
    f_labels = "".join(labels)
    return xp.einsum(f"ab,{f_labels}->{f_labels.replace('b', '')}", matrix, F, out=out)


def pairwise_normals(xp: ModuleType, contravariant: ArrayLike, d: int) -> ArrayLike:
    """
    Averaged metric terms (Ja_a + Ja_b) / 2 of all node pairs along direction d.
    Has shape (ndims, nel, ..., n, n, ...).
    """
    Ja_a, Ja_b = pairwise_states(xp, contravariant[d], 2 + d)
    return 0.5 * (Ja_a + Ja_b)


def flux_differencing_direction(
    xp: ModuleType,
    u: ArrayLike,
    contravariant: ArrayLike,
    d: int,
    basis: LobattoLegendreBasis,
    equations: AbstractEquations,
    volume_flux: FluxSpec,
    normal: Optional[ArrayLike] = None,
    out: Optional[ArrayLike] = None,
    work: Optional[ArrayLike] = None,
) -> ArrayLike:
    """
    Flux differencing contribution of reference direction `d`,
    sum_b D_split[a, b] f(u_a, u_b, (Ja_a + Ja_b) / 2), plus the nonconservative
    contribution 0.5 sum_b D_split[a, b] f_nc(u_a, u_b, (Ja_a + Ja_b) / 2).

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        u: Array of conservative variables. Has shape (nvars, nel, n, ..., n).
        contravariant: Array with shape (ndims, ndims, nel, n, ..., n).
        d: Reference direction.
        basis: LobattoLegendreBasis.
        equations: Equations of the system.
        volume_flux: Two-point flux or (conservative, nonconservative) pair.
        normal: Precomputed pairwise_normals(xp, contravariant, d).
        out: Output array with the shape of `u`.
        work: Scratch array with the shape of `u` for the nonconservative part.

    Returns:
        Array with the shape of `u` (`out` if given).
    """
    flux_cons, flux_noncons = split_flux(volume_flux)
    axis = 2 + d
    u_a, u_b = pairwise_states(xp, u, axis)
    if normal is None:
        normal = pairwise_normals(xp, contravariant, d)
    out = _contract_pairs(
        xp, basis.derivative_split, flux_cons(u_a, u_b, normal, equations), axis, out
    )
    if flux_noncons is not None:
        out += _contract_pairs(
            xp,
            0.5 * basis.derivative_split,
            flux_noncons(u_a, u_b, normal, equations),
            axis,
            work,
        )
    return out


def subcell_normals(
    xp: ModuleType, contravariant: ArrayLike, d: int, basis: LobattoLegendreBasis
) -> ArrayLike:
    """
    Normal directions of the interior subcell interfaces i + 1/2 (i = 0..N-1) of the
    LGL subcell grid, Ja_0 + sum_{k <= i} w_k (D Ja)_k, which reproduce the metric
    identities on the subcells.

    Returns:
        Array with shape (ndims, nel, ..., N, ...) with N = n - 1 along the node
        axis of direction `d`.
    """
    axis = 2 + d
    Ja = contravariant[d]
    n = basis.n_nodes
    shape = [1] * Ja.ndim
    shape[axis] = n
    dJa = apply_along_axis(xp, basis.derivative_matrix, Ja, axis) * xp.asarray(
        basis.weights
    ).reshape(shape)
    cumulative = xp.cumsum(dJa, axis=axis)
    Ja_0 = xp.take(Ja, xp.arange(1), axis=axis)
    return Ja_0 + xp.take(cumulative, xp.arange(n - 1), axis=axis)


def subcell_pairs(
    xp: ModuleType, u: ArrayLike, d: int
) -> Tuple[ArrayLike, ArrayLike]:
    """
    States on the left and right of the interior subcell interfaces in direction d.
    """
    axis = 2 + d
    n = u.shape[axis]
    lead = (slice(None),) * axis
    return u[lead + (slice(0, n - 1),)], u[lead + (slice(1, n),)]


def fv_subcell_fluxes(
    xp: ModuleType,
    u: ArrayLike,
    contravariant: ArrayLike,
    d: int,
    basis: LobattoLegendreBasis,
    equations: AbstractEquations,
    fv_flux: FluxSpec,
    normal: Optional[ArrayLike] = None,
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Low-order fluxes at the interior subcell interfaces in direction d, as seen from
    the left node (f + 0.5 f_nc(u_left, u_right)) and from the right node
    (f + 0.5 f_nc(u_right, u_left)). `normal` may hold the precomputed
    subcell_normals of direction d.

    Returns:
        f_for_left, f_for_right: Arrays with n - 1 entries along the node axis of d.
    """
    flux_cons, flux_noncons = split_flux(fv_flux)
    u_ll, u_rr = subcell_pairs(xp, u, d)
    if normal is None:
        normal = subcell_normals(xp, contravariant, d, basis)
    f = flux_cons(u_ll, u_rr, normal, equations)
    if flux_noncons is None:
        return f, f
    return (
        f + 0.5 * flux_noncons(u_ll, u_rr, normal, equations),
        f + 0.5 * flux_noncons(u_rr, u_ll, normal, equations),
    )


def subcell_flux_divergence(
    xp: ModuleType,
    f_for_left: ArrayLike,
    f_for_right: ArrayLike,
    d: int,
    basis: LobattoLegendreBasis,
    out: Optional[ArrayLike] = None,
) -> ArrayLike:
    """
    (F_{i+1/2} - F_{i-1/2}) / w_i with zero fluxes at the element faces, which are
    accounted for by the surface integral. Written to `out` if given.
    """
    axis = 2 + d
    n = basis.n_nodes
    if out is None:
        shape = list(f_for_left.shape)
        shape[axis] = n
        out = xp.empty(shape)
    lead = (slice(None),) * axis
    out[...] = 0.0
    out[lead + (slice(0, n - 1),)] += f_for_left
    out[lead + (slice(1, n),)] -= f_for_right
    w_shape = [1] * out.ndim
    w_shape[axis] = n
    out *= xp.asarray(basis.inverse_weights).reshape(w_shape)
    return out


def prepare_volume_scratch(
    xp: ModuleType,
    arena: ArrayManager,
    geometry: ElementGeometry,
    basis: LobattoLegendreBasis,
    nvars: int,
):
    """
    Allocate the scratch of the volume kernels for one chunk of elements: output
    buffers with the shape of the chunk's solution and the pairwise and subcell
    normal directions, which only depend on the geometry.

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        arena: ArrayManager of the chunk.
        geometry: ElementGeometry of the chunk.
        basis: LobattoLegendreBasis.
        nvars: Number of variables.
    """
    shape = (nvars,) + geometry.jacobian.shape
    for name in ("volume_direction", "volume_work", "volume_blend"):
        arena.allocate(name, shape)
    for d in range(geometry.ndims):
        arena.add(f"pair_normal_{d}", pairwise_normals(xp, geometry.contravariant, d))
        arena.add(
            f"subcell_normal_{d}", subcell_normals(xp, geometry.contravariant, d, basis)
        )


def _get(scratch: Optional[ArrayManager], name: str) -> Optional[ArrayLike]:
    return None if scratch is None else scratch[name]


@dataclass(frozen=True, slots=True)
class VolumeIntegralWeakForm:
    """
    Standard weak-form volume integral -W^{-1} D^T W applied to the contravariant
    fluxes. Only for systems without nonconservative terms.
    """

    def key(self) -> str:
        return "weak_form"

    def to_dict(self) -> dict:
        return dict(type="VolumeIntegralWeakForm")

    def __call__(
        self,
        xp: ModuleType,
        out: ArrayLike,
        u: ArrayLike,
        geometry: ElementGeometry,
        basis: LobattoLegendreBasis,
        equations: AbstractEquations,
        scratch: Optional[ArrayManager] = None,
    ):
        out[...] = 0.0
        for d in range(geometry.ndims):
            f = equations.flux(u, geometry.contravariant[d])
            out += apply_along_axis(
                xp, basis.derivative_weak, f, 2 + d, _get(scratch, "volume_direction")
            )


@dataclass(frozen=True, slots=True)
class VolumeIntegralFluxDifferencing:
    """
    Split-form volume integral with a two-point volume flux evaluated at every pair
    of nodes on each line of nodes.

    Args:
        volume_flux: Symmetric two-point flux, or a (conservative, nonconservative)
            pair for systems with nonconservative terms.
    """

    volume_flux: FluxSpec

    def key(self) -> str:
        return f"flux_differencing({flux_name(self.volume_flux)})"

    def to_dict(self) -> dict:
        return dict(
            type="VolumeIntegralFluxDifferencing",
            volume_flux=flux_name(self.volume_flux),
        )

    def __call__(self, xp, out, u, geometry, basis, equations, scratch=None):
        dg_volume(xp, u, geometry, basis, equations, self.volume_flux, out, scratch)


@dataclass(frozen=True, slots=True)
class VolumeIntegralPureLGLFiniteVolume:
    """
    First-order finite volume method on the subcell grid formed by the LGL nodes.

    Args:
        volume_flux_fv: Two-point flux (or pair) used at the subcell interfaces.
    """

    volume_flux_fv: FluxSpec

    def key(self) -> str:
        return f"pure_lgl_fv({flux_name(self.volume_flux_fv)})"

    def to_dict(self) -> dict:
        return dict(
            type="VolumeIntegralPureLGLFiniteVolume",
            volume_flux_fv=flux_name(self.volume_flux_fv),
        )

    def __call__(self, xp, out, u, geometry, basis, equations, scratch=None):
        fv_volume(xp, u, geometry, basis, equations, self.volume_flux_fv, out, scratch)


def fv_volume(
    xp: ModuleType,
    u: ArrayLike,
    geometry: ElementGeometry,
    basis: LobattoLegendreBasis,
    equations: AbstractEquations,
    fv_flux: FluxSpec,
    out: Optional[ArrayLike] = None,
    scratch: Optional[ArrayManager] = None,
) -> ArrayLike:
    """
    Low-order subcell finite volume contribution of all directions, written to `out`
    if given. `scratch` is an arena prepared by prepare_volume_scratch for exactly
    the elements of `u`.
    """
    if out is None:
        out = xp.zeros(u.shape)
    else:
        out[...] = 0.0
    for d in range(geometry.ndims):
        f_l, f_r = fv_subcell_fluxes(
            xp,
            u,
            geometry.contravariant,
            d,
            basis,
            equations,
            fv_flux,
            normal=_get(scratch, f"subcell_normal_{d}"),
        )
        out += subcell_flux_divergence(
            xp, f_l, f_r, d, basis, out=_get(scratch, "volume_direction")
        )
    return out


def dg_volume(
    xp: ModuleType,
    u: ArrayLike,
    geometry: ElementGeometry,
    basis: LobattoLegendreBasis,
    equations: AbstractEquations,
    volume_flux: FluxSpec,
    out: Optional[ArrayLike] = None,
    scratch: Optional[ArrayManager] = None,
) -> ArrayLike:
    """
    High-order flux differencing contribution of all directions, written to `out`
    if given. `scratch` is an arena prepared by prepare_volume_scratch for exactly
    the elements of `u`.
    """
    if out is None:
        out = xp.zeros(u.shape)
    else:
        out[...] = 0.0
    for d in range(geometry.ndims):
        out += flux_differencing_direction(
            xp,
            u,
            geometry.contravariant,
            d,
            basis,
            equations,
            volume_flux,
            normal=_get(scratch, f"pair_normal_{d}"),
            out=_get(scratch, "volume_direction"),
            work=_get(scratch, "volume_work"),
        )
    return out
