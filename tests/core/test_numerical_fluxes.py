import numpy as np
import pytest

from superdg.equations import CompressibleEulerEquations, ShallowWaterEquations
from superdg.equations.compressible_euler import flux_ranocha
from superdg.equations.shallow_water import (
    flux_nonconservative_wintermeyer_etal,
    flux_wintermeyer_etal,
)
from superdg.numerical_fluxes import (
    FluxHLL,
    FluxLaxFriedrichs,
    FluxPlusDissipation,
    DissipationLocalLaxFriedrichs,
    flux_central,
    flux_hll,
    flux_lax_friedrichs,
    flux_name,
    inv_ln_mean,
    ln_mean,
    split_flux,
)


@pytest.fixture
def euler_states():
    eq = CompressibleEulerEquations(2)
    w_ll = np.array([[1.0, 0.5], [0.1, -0.3], [0.2, 0.0], [1.0, 0.4]])
    w_rr = np.array([[0.8, 0.6], [-0.1, 0.2], [0.0, 0.1], [0.7, 0.5]])
    n = np.array([[1.0, 0.3], [0.0, 0.8]])
    return eq, eq.prim2cons(w_ll), eq.prim2cons(w_rr), n


def test_ln_mean():
    x = np.array([1.0, 2.0, 1.0, 3.0])
    y = np.array([2.0, 1.0, 1.0 + 1e-9, 3.0])
    expected = np.array(
        [1 / np.log(2), 1 / np.log(2), 1.0 + 0.5e-9, 3.0]
    )
    np.testing.assert_allclose(ln_mean(x, y), expected, rtol=1e-12)
    np.testing.assert_allclose(inv_ln_mean(x, y), 1 / expected, rtol=1e-12)


@pytest.mark.parametrize(
    "flux",
    [
        flux_central,
        flux_lax_friedrichs,
        FluxLaxFriedrichs("max_abs_speed"),
        flux_hll,
        FluxHLL("min_max_speed_davis"),
    ],
)
def test_consistency(flux, euler_states):
    eq, u, _, n = euler_states
    np.testing.assert_allclose(flux(u, u, n, eq), eq.flux(u, n), rtol=1e-13)


def test_lax_friedrichs_dissipation(euler_states):
    eq, u_ll, u_rr, n = euler_states
    lam = eq.max_abs_speed_naive(u_ll, u_rr, n)
    expected = flux_central(u_ll, u_rr, n, eq) - 0.5 * lam * (u_rr - u_ll)
    np.testing.assert_allclose(flux_lax_friedrichs(u_ll, u_rr, n, eq), expected)


def test_flux_plus_dissipation(euler_states):
    eq, u_ll, u_rr, n = euler_states
    flux = FluxPlusDissipation(flux_ranocha, DissipationLocalLaxFriedrichs())
    expected = flux_ranocha(u_ll, u_rr, n, eq) + DissipationLocalLaxFriedrichs()(
        u_ll, u_rr, n, eq
    )
    np.testing.assert_allclose(flux(u_ll, u_rr, n, eq), expected)
    assert flux_name(flux) == (
        "flux_ranocha+dissipation_lax_friedrichs(max_abs_speed_naive)"
    )


def test_dissipation_leaves_auxiliary_variables_untouched():
    eq = ShallowWaterEquations(1)
    u_ll = np.array([[2.0], [0.0], [0.0]])
    u_rr = np.array([[1.0], [0.0], [1.0]])
    n = np.ones((1, 1))
    assert flux_lax_friedrichs(u_ll, u_rr, n, eq)[-1, 0] == 0
    assert flux_hll(u_ll, u_rr, n, eq)[-1, 0] == 0


def test_unknown_wave_speed_estimates():
    with pytest.raises(ValueError):
        FluxLaxFriedrichs("max_abs_speed_davis")
    with pytest.raises(ValueError):
        FluxHLL("min_max_speed_einfeldt")


def test_split_flux():
    assert split_flux(flux_central) == (flux_central, None)
    pair = (flux_wintermeyer_etal, flux_nonconservative_wintermeyer_etal)
    assert split_flux(pair) == pair
    with pytest.raises(ValueError):
        split_flux((flux_central,))


def test_flux_name():
    assert flux_name(None) is None
    assert flux_name(flux_central) == "flux_central"
    assert flux_name(flux_lax_friedrichs) == "flux_lax_friedrichs(max_abs_speed_naive)"
    assert flux_name(
        (flux_wintermeyer_etal, flux_nonconservative_wintermeyer_etal)
    ) == "(flux_wintermeyer_etal, flux_nonconservative_wintermeyer_etal)"
