import numpy as np
import pytest

from superdg.dg_solver import DGSolver
from superdg.equations import ShallowWaterEquations
from superdg.equations.shallow_water import (
    flux_fjordholm_etal,
    flux_nonconservative_wintermeyer_etal,
    flux_wintermeyer_etal,
)
from superdg.indicators import IndicatorHennemannGassner, VolumeIntegralShockCapturingHG
from superdg.initial_conditions import lake_at_rest
from superdg.mesh import StructuredMesh, TreeMesh
from superdg.numerical_fluxes import (
    DissipationLocalLaxFriedrichs,
    FluxPlusDissipation,
    flux_lax_friedrichs,
)
from superdg.semidiscretization import DGSEM, Semidiscretization, rhs
from superdg.volume_integral import VolumeIntegralFluxDifferencing, VolumeIntegralWeakForm

VOLUME_FLUX = (flux_wintermeyer_etal, flux_nonconservative_wintermeyer_etal)
SURFACE_FLUX = (
    FluxPlusDissipation(flux_fjordholm_etal, DissipationLocalLaxFriedrichs()),
    flux_nonconservative_wintermeyer_etal,
)


def warped_2d(s):
    bump = 0.05 * np.sin(np.pi * s[0]) * np.sin(np.pi * s[1])
    return np.stack([0.5 * (s[0] + 1) + bump, 0.5 * (s[1] + 1) - bump])


MESHES = {
    "1d": lambda: StructuredMesh((8,), coordinates_min=(0.0,), coordinates_max=(1.0,)),
    "2d": lambda: StructuredMesh((4, 4), coordinates_min=(0.0, 0.0), coordinates_max=(1.0, 1.0)),
    "curved": lambda: StructuredMesh((4, 4), mapping=warped_2d),
}

VOLUME_INTEGRALS = {
    "flux_differencing": VolumeIntegralFluxDifferencing(VOLUME_FLUX),
    "shock_capturing": VolumeIntegralShockCapturingHG(
        IndicatorHennemannGassner(alpha_max=1.0, variable="water_height"),
        VOLUME_FLUX,
        VOLUME_FLUX,
    ),
}


def lake_semi(mesh, volume_integral):
    return Semidiscretization(
        mesh,
        ShallowWaterEquations(mesh.ndims, H0=2.0),
        lake_at_rest,
        DGSEM(3, SURFACE_FLUX, volume_integral),
    )


@pytest.mark.parametrize("mesh_name", list(MESHES))
@pytest.mark.parametrize("vi_name", list(VOLUME_INTEGRALS))
def test_lake_at_rest_residual_vanishes(mesh_name, vi_name):
    semi = lake_semi(MESHES[mesh_name](), VOLUME_INTEGRALS[vi_name])
    u = semi.compute_coefficients()
    du = np.empty_like(u)
    rhs(du, u, semi, 0.0)
    assert np.max(np.abs(du)) < 1e-12


def test_lake_at_rest_on_tree_mesh():
    mesh = TreeMesh(
        (0.0, 0.0),
        (1.0, 1.0),
        initial_refinement_level=2,
        refinement_patches=[dict(coordinates_min=(0.25, 0.25), coordinates_max=(0.75, 0.75))],
    )
    semi = lake_semi(mesh, VOLUME_INTEGRALS["flux_differencing"])
    u = semi.compute_coefficients()
    du = np.empty_like(u)
    rhs(du, u, semi, 0.0)
    assert np.max(np.abs(du)) < 1e-12


def test_lake_stays_at_rest():
    semi = lake_semi(MESHES["2d"](), VOLUME_INTEGRALS["shock_capturing"])
    solver = DGSolver(semi, cfl=0.5)
    u0 = solver.u.copy()
    solver.run(n=10, verbose=False, no_snapshots=True)
    H = semi.equations.total_water_height(solver.u)
    np.testing.assert_allclose(H, 2.0, atol=1e-12)
    np.testing.assert_allclose(solver.u[1:3], 0.0, atol=1e-12)
    np.testing.assert_allclose(solver.u[-1], u0[-1], rtol=1e-14)


def test_weak_form_is_rejected():
    with pytest.raises(ValueError, match="weak form"):
        lake_semi(MESHES["1d"](), VolumeIntegralWeakForm())


def test_surface_flux_must_be_a_pair():
    with pytest.raises(ValueError, match="nonconservative"):
        Semidiscretization(
            MESHES["1d"](),
            ShallowWaterEquations(1),
            lake_at_rest,
            DGSEM(3, flux_lax_friedrichs, VOLUME_INTEGRALS["flux_differencing"]),
        )
