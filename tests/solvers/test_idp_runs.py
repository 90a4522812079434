import numpy as np
import pandas as pd
import pytest

from superdg.analysis import integrate
from superdg.boundary_conditions import BoundaryConditionDirichlet
from superdg.dg_solver import DGSolver
from superdg.equations import CompressibleEulerEquations
from superdg.equations.compressible_euler import boundary_condition_slip_wall, flux_ranocha
from superdg.initial_conditions import (
    constant,
    density_wave,
    sod_shock_tube,
    weak_blast_wave,
)
from superdg.mesh import StructuredMesh
from superdg.numerical_fluxes import flux_lax_friedrichs
from superdg.semidiscretization import DGSEM, Semidiscretization
from superdg.subcell_limiting import (
    BoundsCheckCallback,
    SubcellLimiterIDP,
    VolumeIntegralSubcellLimiting,
)

SOD_LIMITER = SubcellLimiterIDP(
    local_twosided_variables_cons=("rho",),
    positivity_variables_nonlinear=("pressure",),
    local_onesided_variables_nonlinear=(("entropy_spec", "min"),),
)


def sod_semi(limiter=SOD_LIMITER, cells=16):
    return Semidiscretization(
        StructuredMesh(
            (cells,), coordinates_min=(0.0,), coordinates_max=(1.0,), periodicity=False
        ),
        CompressibleEulerEquations(1),
        sod_shock_tube,
        DGSEM(
            3,
            flux_lax_friedrichs,
            VolumeIntegralSubcellLimiting(limiter, flux_ranocha, flux_lax_friedrichs),
        ),
        boundary_conditions=BoundaryConditionDirichlet(sod_shock_tube),
    )


def test_sod_shock_tube_stays_within_bounds():
    semi = sod_semi()
    bounds_check = BoundsCheckCallback(fatal=True)
    solver = DGSolver(semi, cfl=0.1, bounds_check=bounds_check, check_admissibility=True)
    solver.run(T=0.1, verbose=False, no_snapshots=True)

    assert solver.t == pytest.approx(0.1)
    eq = semi.equations
    rho, p = solver.u[0], eq.pressure(solver.u)
    assert np.min(rho) > 0.125 - 1e-12
    assert np.max(rho) < 1.0 + 1e-12
    assert np.min(p) > 0

    coefficient = semi.container.arrays["limiting_coefficient"]
    assert np.all((coefficient >= 0) & (coefficient <= 1))
    assert np.max(coefficient) > 0
    # the limiter is inactive away from the waves
    assert np.all(coefficient[0] == 0)
    assert np.all(coefficient[-1] == 0)

    summary = bounds_check.summary()
    assert set(summary["bound"]) == {rec.name for rec in semi.container.bounds}
    assert (summary["max_deviation"] <= 1e-13).all()
    assert len(bounds_check.to_dataframe()) == 3 * solver.n_steps


def test_density_bounds_on_2d_blast_wave():
    limiter = SubcellLimiterIDP(
        local_twosided_variables_cons=("rho",),
        positivity_variables_nonlinear=("pressure",),
    )
    semi = Semidiscretization(
        StructuredMesh((4, 4), coordinates_min=(-2.0, -2.0), coordinates_max=(2.0, 2.0)),
        CompressibleEulerEquations(2),
        weak_blast_wave,
        DGSEM(
            3,
            flux_lax_friedrichs,
            VolumeIntegralSubcellLimiting(limiter, flux_ranocha, flux_lax_friedrichs),
        ),
    )
    bounds_check = BoundsCheckCallback(fatal=True)
    solver = DGSolver(semi, cfl=0.1, bounds_check=bounds_check)
    solver.run(n=5, verbose=False, no_snapshots=True)
    assert solver.n_steps == 5
    assert solver.minisnapshots["max_alpha"][-1] > 0


def test_deviations_are_written(tmp_path):
    bounds_check = BoundsCheckCallback(
        output_directory=str(tmp_path), save_errors=True
    )
    solver = DGSolver(sod_semi(), cfl=0.1, bounds_check=bounds_check)
    solver.run(n=3, verbose=False, no_snapshots=True)
    df = pd.read_csv(tmp_path / "deviations.csv")
    assert len(df) == 9
    assert list(df["step"]) == [0, 0, 0, 1, 1, 1, 2, 2, 2]
    assert {"rho_min", "rho_max"} <= set(df.columns)


def test_limiter_requires_ssp_integrator():
    solver = DGSolver(sod_semi(), cfl=0.1)
    with pytest.raises(ValueError, match="SSP integrator"):
        solver.run(n=1, integrator="rk4", verbose=False)


def test_bounds_check_requires_limiter():
    semi = Semidiscretization(
        StructuredMesh((4,), coordinates_min=(0.0,), coordinates_max=(1.0,)),
        CompressibleEulerEquations(1),
        sod_shock_tube,
        DGSEM(3),
    )
    with pytest.raises(ValueError, match="subcell IDP limiter"):
        DGSolver(semi, bounds_check=BoundsCheckCallback())


def test_snapshots_record_limiting_coefficient():
    solver = DGSolver(sod_semi(), cfl=0.1)
    solver.run(n=2, verbose=False)
    data = solver.snapshots[-1]
    assert "limiting_coefficient" in data
    assert data["limiting_coefficient"].shape == (16, 4)


def moving_gas(x, t, equations):
    state = equations.prim2cons(np.array([1.0, 0.5, 1.0]))
    return constant(x, t, equations, state=state)


def idp_solver(mesh, equations, initial_condition, boundary_conditions, limiter):
    semi = Semidiscretization(
        mesh,
        equations,
        initial_condition,
        DGSEM(
            3,
            flux_lax_friedrichs,
            VolumeIntegralSubcellLimiting(limiter, flux_ranocha, flux_lax_friedrichs),
        ),
        boundary_conditions=boundary_conditions,
    )
    bounds_check = BoundsCheckCallback(fatal=True)
    return DGSolver(semi, cfl=0.1, bounds_check=bounds_check), bounds_check


def test_gas_moving_between_slip_walls():
    limiter = SubcellLimiterIDP(
        local_twosided_variables_cons=("rho",),
        positivity_variables_nonlinear=("pressure",),
    )
    mesh = StructuredMesh(
        (8,), coordinates_min=(0.0,), coordinates_max=(1.0,), periodicity=False
    )
    solver, bounds_check = idp_solver(
        mesh,
        CompressibleEulerEquations(1),
        moving_gas,
        boundary_condition_slip_wall,
        limiter,
    )
    mass = integrate(solver.u, solver.semi)[0]
    solver.run(n=10, verbose=False, no_snapshots=True)

    assert solver.n_steps == 10
    assert integrate(solver.u, solver.semi)[0] == pytest.approx(mass, rel=1e-13)
    # compression at the right wall, expansion at the left wall
    assert solver.u[0, -1, -1] > 1.0
    assert solver.u[0, 0, 0] < 1.0
    assert max(bounds_check.max_deviation.values()) <= 1e-13


def test_blast_wave_in_a_closed_box():
    limiter = SubcellLimiterIDP(
        local_twosided_variables_cons=("rho",),
        positivity_variables_nonlinear=("pressure",),
    )
    mesh = StructuredMesh(
        (4, 4),
        coordinates_min=(-2.0, -2.0),
        coordinates_max=(2.0, 2.0),
        periodicity=False,
    )
    solver, _ = idp_solver(
        mesh,
        CompressibleEulerEquations(2),
        weak_blast_wave,
        boundary_condition_slip_wall,
        limiter,
    )
    solver.run(n=5, verbose=False, no_snapshots=True)
    assert solver.n_steps == 5


def test_time_dependent_dirichlet_data():
    limiter = SubcellLimiterIDP(local_twosided_variables_cons=("rho",))
    mesh = StructuredMesh(
        (8,), coordinates_min=(-1.0,), coordinates_max=(1.0,), periodicity=False
    )
    solver, bounds_check = idp_solver(
        mesh,
        CompressibleEulerEquations(1),
        density_wave,
        BoundaryConditionDirichlet(density_wave),
        limiter,
    )
    solver.run(n=10, verbose=False, no_snapshots=True)
    assert solver.n_steps == 10
    assert set(bounds_check.max_deviation) == {"rho_min", "rho_max"}
