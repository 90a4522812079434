from functools import partial

import numpy as np
import pytest

from superdg.analysis import integrate
from superdg.boundary_conditions import BoundaryConditionDirichlet
from superdg.dg_solver import DGSolver
from superdg.equations import CompressibleEulerEquations
from superdg.equations.compressible_euler import flux_ranocha
from superdg.indicators import (
    IndicatorHennemannGassner,
    IndicatorLohner,
    VolumeIntegralShockCapturingHG,
)
from superdg.initial_conditions import sedov_blast_wave, sod_shock_tube
from superdg.mesh import StructuredMesh, TreeMesh
from superdg.numerical_fluxes import flux_hll, flux_lax_friedrichs
from superdg.semidiscretization import DGSEM, Semidiscretization


def sod_solver(indicator, cells=32):
    volume_integral = VolumeIntegralShockCapturingHG(
        indicator, flux_ranocha, flux_lax_friedrichs
    )
    semi = Semidiscretization(
        StructuredMesh(
            (cells,), coordinates_min=(0.0,), coordinates_max=(1.0,), periodicity=False
        ),
        CompressibleEulerEquations(1),
        sod_shock_tube,
        DGSEM(3, flux_hll, volume_integral),
        boundary_conditions=BoundaryConditionDirichlet(sod_shock_tube),
    )
    return DGSolver(semi, cfl=0.5, check_admissibility=True)


@pytest.mark.parametrize(
    "indicator",
    [IndicatorHennemannGassner(alpha_max=1.0), IndicatorLohner(variable="density")],
)
def test_sod_shock_tube(indicator):
    solver = sod_solver(indicator)
    semi = solver.semi
    mass0 = integrate(solver.u, semi)[0]
    solver.run(T=0.2, verbose=False)

    assert solver.t == pytest.approx(0.2)
    assert np.all(semi.equations.is_admissible(solver.u))

    # the waves have not reached the boundaries
    assert integrate(solver.u, semi)[0] == pytest.approx(mass0, rel=1e-12)

    alpha = semi.alpha
    x = semi.geometry.node_coordinates[0].mean(axis=1)
    assert alpha[0] == 0.0
    assert alpha[-1] == 0.0
    near_shock = (x > 0.75) & (x < 0.95)
    assert np.max(alpha[near_shock]) > 0

    rho = solver.u[0]
    assert np.min(rho) > 0.125 - 0.1
    assert np.max(rho) < 1.0 + 0.1


def test_sod_shock_tube_snapshots_record_blending_factors():
    solver = sod_solver(IndicatorHennemannGassner(alpha_max=0.5))
    solver.run(T=[0.05, 0.1], verbose=False)
    assert solver.snapshots.time_values == pytest.approx([0.0, 0.05, 0.1])
    alpha = solver.snapshots[-1]["alpha"]
    assert alpha.shape == (32,)
    assert 0 < np.max(alpha) <= 0.5 + 1e-14


def test_sedov_blast_wave_on_tree_mesh():
    semi = Semidiscretization(
        TreeMesh(
            (-1.0, -1.0),
            (1.0, 1.0),
            initial_refinement_level=3,
            refinement_patches=[
                dict(coordinates_min=(-0.3, -0.3), coordinates_max=(0.3, 0.3))
            ],
        ),
        CompressibleEulerEquations(2),
        partial(sedov_blast_wave, p_ambient=0.1),
        DGSEM(
            3,
            flux_hll,
            VolumeIntegralShockCapturingHG(
                IndicatorHennemannGassner(alpha_max=1.0, variable="density_pressure"),
                flux_ranocha,
                flux_lax_friedrichs,
            ),
        ),
    )
    solver = DGSolver(semi, cfl=0.5, check_admissibility=True)
    totals0 = integrate(solver.u, semi)
    solver.run(n=10, verbose=False, no_snapshots=True)
    assert solver.n_steps == 10
    assert np.all(semi.equations.is_admissible(solver.u))
    np.testing.assert_allclose(integrate(solver.u, semi), totals0, rtol=1e-11, atol=1e-12)
    assert np.max(semi.alpha) > 0
