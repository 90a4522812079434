import numpy as np
import pytest

from superdg.basis import LobattoLegendreBasis
from superdg.mortar import MortarL2


@pytest.mark.parametrize("polydeg", [1, 3, 4])
def test_forward_is_exact_for_polynomials(polydeg):
    basis = LobattoLegendreBasis(polydeg)
    mortar = MortarL2(basis)
    x = basis.nodes

    def f(s):
        return 0.5 - s + s**polydeg

    lower, upper = mortar.prolong(np, f(x)[None, :], tangential_axes=(1,))
    np.testing.assert_allclose(lower[0], f(0.5 * (x - 1)), atol=1e-13)
    np.testing.assert_allclose(upper[0], f(0.5 * (x + 1)), atol=1e-13)


def test_small_positions():
    assert MortarL2.small_positions(1) == [()]
    assert MortarL2.small_positions(2) == [(0,), (1,)]
    assert MortarL2.small_positions(3) == [(0, 0), (0, 1), (1, 0), (1, 1)]


@pytest.mark.parametrize("ndims", [2, 3])
def test_constant_fluxes_are_summed(ndims):
    mortar = MortarL2(LobattoLegendreBasis(3))
    axes = tuple(range(1, ndims))
    fluxes = [np.full((2,) + (4,) * (ndims - 1), 1.5)] * 2 ** (ndims - 1)
    out = mortar.project_back(np, fluxes, axes)
    np.testing.assert_allclose(out, 2 ** (ndims - 1) * 1.5, atol=1e-13)


@pytest.mark.parametrize("ndims", [2, 3])
@pytest.mark.parametrize("polydeg", [2, 3])
def test_projection_conserves_weighted_flux(ndims, polydeg):
    basis = LobattoLegendreBasis(polydeg)
    mortar = MortarL2(basis)
    rng = np.random.default_rng(ndims + polydeg)
    axes = tuple(range(1, ndims))
    w = basis.weights_nd(ndims - 1)
    shape = (3,) + (basis.n_nodes,) * (ndims - 1)
    fluxes = [rng.random(shape) for _ in range(2 ** (ndims - 1))]

    large = mortar.project_back(np, fluxes, axes)

    def total(f):
        return np.sum(f * w, axis=axes)

    # the small faces cover half of the large face per tangential direction
    expected = sum(total(f) for f in fluxes)
    np.testing.assert_allclose(total(large), expected, rtol=1e-13)


def test_prolong_then_project_is_identity_for_polynomials():
    basis = LobattoLegendreBasis(3)
    mortar = MortarL2(basis)
    u = (1 + basis.nodes**2)[None, :]
    small = mortar.prolong(np, u, (1,))
    back = mortar.project_back(np, [0.5 * s for s in small], (1,))
    np.testing.assert_allclose(back, u, atol=1e-13)
