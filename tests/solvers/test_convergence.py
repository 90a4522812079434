import numpy as np
import pytest

from superdg.analysis import calc_error_norms, convergence_test
from superdg.dg_solver import DGSolver
from superdg.equations import (
    CompressibleEulerEquations,
    LinearScalarAdvectionEquation,
    ShallowWaterEquations,
)
from superdg.equations.compressible_euler import flux_ranocha
from superdg.equations.linear_advection import flux_godunov
from superdg.equations.shallow_water import (
    flux_nonconservative_wintermeyer_etal,
    flux_wintermeyer_etal,
)
from superdg.initial_conditions import (
    advection_sine_wave,
    euler_convergence,
    shallow_water_convergence,
    source_terms_euler_convergence,
    source_terms_shallow_water_convergence,
)
from superdg.mesh import StructuredMesh
from superdg.numerical_fluxes import (
    DissipationLocalLaxFriedrichs,
    FluxPlusDissipation,
    flux_lax_friedrichs,
)
from superdg.semidiscretization import DGSEM, Semidiscretization
from superdg.volume_integral import VolumeIntegralFluxDifferencing, VolumeIntegralWeakForm


def warped_2d(s):
    bump = 0.05 * np.sin(np.pi * s[0]) * np.sin(np.pi * s[1])
    return np.stack([s[0] + bump, s[1] - bump])


@pytest.mark.parametrize(
    "volume_integral",
    [VolumeIntegralWeakForm(), VolumeIntegralFluxDifferencing(flux_ranocha)],
)
def test_euler_convergence_1d(volume_integral):
    def make_solver(cells):
        semi = Semidiscretization(
            StructuredMesh((cells,), coordinates_min=(-1.0,), coordinates_max=(1.0,)),
            CompressibleEulerEquations(1),
            euler_convergence,
            DGSEM(2, flux_lax_friedrichs, volume_integral),
            source_terms=source_terms_euler_convergence,
        )
        return DGSolver(semi, cfl=0.5)

    df = convergence_test(make_solver, [8, 16, 32], T=0.5)
    assert list(df["cells"]) == [8, 16, 32]
    assert np.isnan(df["eoc_l2_rho"].iloc[0])
    assert df["eoc_l2_rho"].iloc[-1] > 2.5
    assert df["eoc_l2_rho_e"].iloc[-1] > 2.5
    assert df["l2_rho"].iloc[-1] < 1e-4


def test_advection_convergence_on_curved_mesh():
    def make_solver(cells):
        semi = Semidiscretization(
            StructuredMesh((cells, cells), mapping=warped_2d),
            LinearScalarAdvectionEquation((1.0, 0.5)),
            advection_sine_wave,
            DGSEM(3, flux_godunov),
        )
        return DGSolver(semi, cfl=0.5)

    df = convergence_test(make_solver, [4, 8], T=0.2, integrator="rk4")
    assert df["eoc_l2_scalar"].iloc[-1] > 3.0


def test_shallow_water_convergence_1d():
    surface_flux = (
        FluxPlusDissipation(flux_wintermeyer_etal, DissipationLocalLaxFriedrichs()),
        flux_nonconservative_wintermeyer_etal,
    )
    volume_flux = (flux_wintermeyer_etal, flux_nonconservative_wintermeyer_etal)

    def make_solver(cells):
        semi = Semidiscretization(
            StructuredMesh(
                (cells,), coordinates_min=(0.0,), coordinates_max=(np.sqrt(2.0),)
            ),
            ShallowWaterEquations(1),
            shallow_water_convergence,
            DGSEM(3, surface_flux, VolumeIntegralFluxDifferencing(volume_flux)),
            source_terms=source_terms_shallow_water_convergence,
        )
        return DGSolver(semi, cfl=0.5)

    df = convergence_test(make_solver, [4, 8, 16], T=0.05)
    assert df["eoc_l2_h"].iloc[-1] > 3.5
    # the bottom topography is never evolved
    assert df["l2_b"].max() < 1e-14


def test_error_norms_vanish_at_initial_time():
    semi = Semidiscretization(
        StructuredMesh((4,), coordinates_min=(-1.0,), coordinates_max=(1.0,)),
        CompressibleEulerEquations(1),
        euler_convergence,
        DGSEM(3),
    )
    errors = calc_error_norms(semi.compute_coefficients(), semi, 0.0)
    np.testing.assert_array_equal(errors["l2"], 0.0)
    np.testing.assert_array_equal(errors["linf"], 0.0)

    shifted = calc_error_norms(semi.compute_coefficients(t=0.1), semi, 0.0)
    assert np.all(shifted["linf"] > 0)
    assert np.all(shifted["l2"] <= shifted["linf"])
