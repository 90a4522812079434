import numpy as np
import pytest

from superdg.analysis import integrate
from superdg.dg_solver import DGSolver
from superdg.equations import CompressibleEulerEquations
from superdg.equations.compressible_euler import flux_chandrashekar, flux_hllc, flux_ranocha
from superdg.indicators import IndicatorHennemannGassner, VolumeIntegralShockCapturingHG
from superdg.initial_conditions import sod_shock_tube, weak_blast_wave
from superdg.mesh import StructuredMesh, TreeMesh
from superdg.numerical_fluxes import flux_hll, flux_lax_friedrichs
from superdg.semidiscretization import DGSEM, Semidiscretization, rhs
from superdg.subcell_limiting import SubcellLimiterIDP, VolumeIntegralSubcellLimiting
from superdg.volume_integral import VolumeIntegralFluxDifferencing, VolumeIntegralWeakForm


def warped_2d(s):
    bump = 0.1 * np.sin(np.pi * s[0]) * np.sin(np.pi * s[1])
    return np.stack([2 * (s[0] + bump), 2 * (s[1] - bump)])


def tree_mesh():
    return TreeMesh(
        (-2.0, -2.0),
        (2.0, 2.0),
        initial_refinement_level=2,
        refinement_patches=[dict(coordinates_min=(-1.0, -1.0), coordinates_max=(1.0, 1.0))],
    )


MESHES = {
    "curved": lambda: StructuredMesh((4, 4), mapping=warped_2d),
    "tree": tree_mesh,
}

SOLVERS = {
    "weak_form": DGSEM(3, flux_lax_friedrichs, VolumeIntegralWeakForm()),
    "ranocha": DGSEM(3, flux_hllc, VolumeIntegralFluxDifferencing(flux_ranocha)),
    "chandrashekar": DGSEM(3, flux_hll, VolumeIntegralFluxDifferencing(flux_chandrashekar)),
    "shock_capturing": DGSEM(
        3,
        flux_lax_friedrichs,
        VolumeIntegralShockCapturingHG(
            IndicatorHennemannGassner(alpha_max=0.5), flux_ranocha, flux_lax_friedrichs
        ),
    ),
}


@pytest.mark.parametrize("mesh_name", list(MESHES))
@pytest.mark.parametrize("solver_name", list(SOLVERS))
def test_residual_has_zero_integral(mesh_name, solver_name):
    semi = Semidiscretization(
        MESHES[mesh_name](),
        CompressibleEulerEquations(2),
        weak_blast_wave,
        SOLVERS[solver_name],
    )
    u = semi.compute_coefficients()
    du = np.empty_like(u)
    rhs(du, u, semi, 0.0)
    assert np.max(np.abs(du)) > 1e-3
    np.testing.assert_allclose(integrate(du, semi), 0.0, atol=1e-11)


def test_shock_capturing_run_conserves_integrals():
    semi = Semidiscretization(
        tree_mesh(), CompressibleEulerEquations(2), weak_blast_wave, SOLVERS["shock_capturing"]
    )
    solver = DGSolver(semi, cfl=0.5)
    totals0 = integrate(solver.u, semi)
    solver.run(n=5, verbose=False, no_snapshots=True)
    np.testing.assert_allclose(integrate(solver.u, semi), totals0, rtol=1e-12, atol=1e-13)
    assert solver.minisnapshots["max_alpha"][-1] > 0


def test_subcell_limiting_run_conserves_integrals():
    equations = CompressibleEulerEquations(1)
    limiter = SubcellLimiterIDP(
        local_twosided_variables_cons=("rho",),
        positivity_variables_nonlinear=("pressure",),
    )
    semi = Semidiscretization(
        StructuredMesh((16,), coordinates_min=(0.0,), coordinates_max=(1.0,)),
        equations,
        sod_shock_tube,
        DGSEM(
            3,
            flux_lax_friedrichs,
            VolumeIntegralSubcellLimiting(limiter, flux_ranocha, flux_lax_friedrichs),
        ),
    )
    solver = DGSolver(semi, cfl=0.1)
    totals0 = integrate(solver.u, semi)
    solver.run(n=10, verbose=False, no_snapshots=True)
    np.testing.assert_allclose(integrate(solver.u, semi), totals0, rtol=1e-12, atol=1e-13)
