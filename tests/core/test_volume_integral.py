import numpy as np
import pytest

from superdg.basis import LobattoLegendreBasis
from superdg.equations import CompressibleEulerEquations, LinearScalarAdvectionEquation
from superdg.equations.compressible_euler import flux_ranocha
from superdg.mesh import StructuredMesh
from superdg.numerical_fluxes import flux_central, flux_lax_friedrichs
from superdg.tools.array_management import ArrayManager
from superdg.volume_integral import (
    VolumeIntegralFluxDifferencing,
    VolumeIntegralPureLGLFiniteVolume,
    VolumeIntegralWeakForm,
    dg_volume,
    fv_volume,
    pairwise_states,
    prepare_volume_scratch,
    subcell_normals,
)


def warped_2d(s):
    bump = 0.1 * np.sin(np.pi * s[0]) * np.sin(np.pi * s[1])
    return np.stack([s[0] + bump, s[1] - bump])


def smooth_euler_state(x, equations):
    rho = 1.0 + 0.3 * np.sin(np.pi * x[0]) * np.cos(np.pi * x[1])
    v = np.stack([0.2 + 0.1 * np.cos(np.pi * x[1]), -0.1 * np.sin(np.pi * x[0])])
    p = 1.0 + 0.2 * np.cos(np.pi * (x[0] + x[1]))
    return equations.prim2cons(np.concatenate([rho[None], v, p[None]]))


@pytest.fixture
def cartesian():
    basis = LobattoLegendreBasis(4)
    mesh = StructuredMesh((3, 2), coordinates_min=(0.0, -1.0), coordinates_max=(1.0, 1.0))
    return basis, mesh.geometry(basis)


@pytest.fixture
def curvilinear():
    basis = LobattoLegendreBasis(3)
    mesh = StructuredMesh((3, 3), mapping=warped_2d)
    return basis, mesh.geometry(basis)


def test_pairwise_states():
    u = np.arange(6.0).reshape(2, 3)
    u_a, u_b = pairwise_states(np, u, axis=1)
    assert u_a.shape == u_b.shape == (2, 3, 3)
    np.testing.assert_array_equal(u_a[:, 1, 2], u[:, 1])
    np.testing.assert_array_equal(u_b[:, 1, 2], u[:, 2])


@pytest.mark.parametrize(
    "equations",
    [CompressibleEulerEquations(2), LinearScalarAdvectionEquation((1.0, 0.5))],
)
def test_central_flux_differencing_equals_weak_form(cartesian, equations):
    basis, geometry = cartesian
    x = geometry.node_coordinates
    if isinstance(equations, CompressibleEulerEquations):
        u = smooth_euler_state(x, equations)
    else:
        u = np.sin(np.pi * x[0])[np.newaxis] * np.cos(x[1])
    weak = np.empty_like(u)
    split = np.empty_like(u)
    VolumeIntegralWeakForm()(np, weak, u, geometry, basis, equations)
    VolumeIntegralFluxDifferencing(flux_central)(np, split, u, geometry, basis, equations)
    np.testing.assert_allclose(split, weak, atol=1e-12)


def test_flux_differencing_is_locally_conservative(curvilinear):
    basis, geometry = curvilinear
    eq = CompressibleEulerEquations(2)
    u = smooth_euler_state(geometry.node_coordinates, eq)
    out = dg_volume(np, u, geometry, basis, eq, flux_ranocha)
    w = basis.weights_nd(2)
    np.testing.assert_allclose(np.sum(out * w, axis=(2, 3)), 0.0, atol=1e-12)


def test_fv_volume_telescopes(curvilinear):
    basis, geometry = curvilinear
    eq = CompressibleEulerEquations(2)
    u = smooth_euler_state(geometry.node_coordinates, eq)
    out = fv_volume(np, u, geometry, basis, eq, flux_lax_friedrichs)
    w = basis.weights_nd(2)
    np.testing.assert_allclose(np.sum(out * w, axis=(2, 3)), 0.0, atol=1e-12)


def test_subcell_normals_cartesian(cartesian):
    basis, geometry = cartesian
    for d in range(2):
        normals = subcell_normals(np, geometry.contravariant, d, basis)
        expected = np.take(geometry.contravariant[d], np.arange(basis.polydeg), axis=2 + d)
        np.testing.assert_allclose(normals, expected, atol=1e-13)


def test_subcell_normals_reach_the_element_face(curvilinear):
    basis, geometry = curvilinear
    n = basis.n_nodes
    D = basis.derivative_matrix
    for d in range(2):
        axis = 2 + d
        Ja = geometry.contravariant[d]
        normals = subcell_normals(np, geometry.contravariant, d, basis)
        dJa_last = np.take(
            np.moveaxis(np.tensordot(D, Ja, axes=([1], [axis])), 0, axis), n - 1, axis=axis
        )
        last = np.take(normals, n - 2, axis=axis) + basis.weights[-1] * dJa_last
        np.testing.assert_allclose(last, np.take(Ja, n - 1, axis=axis), atol=1e-12)


def test_pure_fv_of_constant_state_vanishes(curvilinear):
    basis, geometry = curvilinear
    eq = CompressibleEulerEquations(2)
    u = np.broadcast_to(
        eq.prim2cons(np.array([1.0, 0.3, -0.2, 1.0]))[:, None, None, None],
        (4,) + geometry.jacobian.shape,
    ).copy()
    out = np.empty_like(u)
    VolumeIntegralPureLGLFiniteVolume(flux_lax_friedrichs)(np, out, u, geometry, basis, eq)
    interior = (slice(None), slice(None), slice(1, -1), slice(1, -1))
    f = [eq.flux(u, geometry.contravariant[d]) for d in range(2)]
    D = basis.derivative_matrix
    metric_div = sum(
        np.moveaxis(np.tensordot(D, f[d], axes=([1], [2 + d])), 0, 2 + d) for d in range(2)
    )
    np.testing.assert_allclose(out[interior], metric_div[interior], atol=1e-12)
    np.testing.assert_allclose(metric_div, 0.0, atol=1e-12)


def test_volume_integral_keys():
    assert VolumeIntegralWeakForm().key() == "weak_form"
    assert VolumeIntegralFluxDifferencing(flux_ranocha).key() == (
        "flux_differencing(flux_ranocha)"
    )
    assert VolumeIntegralPureLGLFiniteVolume(flux_lax_friedrichs).to_dict() == dict(
        type="VolumeIntegralPureLGLFiniteVolume",
        volume_flux_fv="flux_lax_friedrichs(max_abs_speed_naive)",
    )


def scratch_for(geometry, basis, equations):
    arena = ArrayManager()
    prepare_volume_scratch(np, arena, geometry, basis, equations.nvariables)
    return arena


@pytest.mark.parametrize(
    "kernel, flux", [(dg_volume, flux_ranocha), (fv_volume, flux_lax_friedrichs)]
)
def test_preallocated_scratch_gives_the_same_residual(curvilinear, kernel, flux):
    basis, geometry = curvilinear
    eq = CompressibleEulerEquations(2)
    u = smooth_euler_state(geometry.node_coordinates, eq)
    scratch = scratch_for(geometry, basis, eq)
    out = np.empty_like(u)
    assert kernel(np, u, geometry, basis, eq, flux, out, scratch) is out
    np.testing.assert_allclose(out, kernel(np, u, geometry, basis, eq, flux), atol=1e-13)

    # the buffers are reused by the next evaluation
    buffer = scratch["volume_direction"]
    kernel(np, 2 * u, geometry, basis, eq, flux, out, scratch)
    assert scratch["volume_direction"] is buffer
    np.testing.assert_allclose(out, kernel(np, 2 * u, geometry, basis, eq, flux), atol=1e-12)


def test_weak_form_with_preallocated_scratch(cartesian):
    basis, geometry = cartesian
    eq = CompressibleEulerEquations(2)
    u = smooth_euler_state(geometry.node_coordinates, eq)
    expected, out = np.empty_like(u), np.empty_like(u)
    VolumeIntegralWeakForm()(np, expected, u, geometry, basis, eq)
    VolumeIntegralWeakForm()(
        np, out, u, geometry, basis, eq, scratch=scratch_for(geometry, basis, eq)
    )
    np.testing.assert_allclose(out, expected, atol=1e-13)


def test_scratch_holds_the_pairwise_and_subcell_normals(curvilinear):
    basis, geometry = curvilinear
    eq = CompressibleEulerEquations(2)
    scratch = scratch_for(geometry, basis, eq)
    for d in range(2):
        Ja_a, Ja_b = pairwise_states(np, geometry.contravariant[d], 2 + d)
        np.testing.assert_allclose(scratch[f"pair_normal_{d}"], 0.5 * (Ja_a + Ja_b))
        np.testing.assert_array_equal(
            scratch[f"subcell_normal_{d}"],
            subcell_normals(np, geometry.contravariant, d, basis),
        )
    assert scratch["volume_work"].shape == (4,) + geometry.jacobian.shape
