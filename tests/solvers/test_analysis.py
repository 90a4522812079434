import numpy as np
import pandas as pd
import pytest

from superdg.analysis import entropy_timederivative, integrate
from superdg.dg_solver import DGSolver
from superdg.equations import CompressibleEulerEquations
from superdg.equations.compressible_euler import flux_ranocha
from superdg.initial_conditions import density_wave, weak_blast_wave
from superdg.mesh import StructuredMesh
from superdg.numerical_fluxes import flux_lax_friedrichs
from superdg.semidiscretization import DGSEM, Semidiscretization
from superdg.volume_integral import VolumeIntegralFluxDifferencing


def warped_2d(s):
    bump = 0.1 * np.sin(np.pi * s[0]) * np.sin(np.pi * s[1])
    return np.stack([2 * (s[0] + bump), 2 * (s[1] - bump)])


def blast_semi(surface_flux, mesh=None):
    return Semidiscretization(
        StructuredMesh((4, 4), mapping=warped_2d) if mesh is None else mesh,
        CompressibleEulerEquations(2),
        weak_blast_wave,
        DGSEM(3, surface_flux, VolumeIntegralFluxDifferencing(flux_ranocha)),
    )


def test_entropy_conservative_discretization():
    semi = blast_semi(flux_ranocha)
    u = semi.compute_coefficients()
    assert abs(entropy_timederivative(u, semi, 0.0)) < 1e-10


def test_entropy_stable_discretization():
    semi = blast_semi(flux_lax_friedrichs)
    u = semi.compute_coefficients()
    assert entropy_timederivative(u, semi, 0.0) < -1e-6


def test_integrate_constant_and_linear_functions():
    semi = Semidiscretization(
        StructuredMesh((3, 2), coordinates_min=(0.0, 0.0), coordinates_max=(3.0, 2.0)),
        CompressibleEulerEquations(2),
        density_wave,
        DGSEM(2),
    )
    x = semi.geometry.node_coordinates
    u = np.stack([np.ones_like(x[0]), x[0], x[1], x[0] * x[1]])
    np.testing.assert_allclose(integrate(u, semi), [6.0, 9.0, 6.0, 9.0], rtol=1e-13)


def test_integrate_on_curved_mesh():
    semi = blast_semi(flux_lax_friedrichs)
    x = semi.geometry.node_coordinates
    u = np.stack([np.ones_like(x[0]), x[0], x[1], np.zeros_like(x[0])])
    np.testing.assert_allclose(integrate(u, semi), [16.0, 0.0, 0.0, 0.0], atol=1e-3)


def test_minisnapshots_track_integrals():
    solver = DGSolver(blast_semi(flux_lax_friedrichs), cfl=0.5)
    solver.run(n=3, verbose=False, no_snapshots=True)
    df = pd.DataFrame(solver.minisnapshots)
    assert list(df["n_steps"]) == [0, 1, 2, 3]
    for name in ("rho", "rho_v1", "rho_v2", "rho_e"):
        np.testing.assert_allclose(
            df[f"integral_{name}"], df[f"integral_{name}"].iloc[0], rtol=1e-12, atol=1e-12
        )
    assert (df["max_alpha"] == 0).all()
    assert df["t"].is_monotonic_increasing
    np.testing.assert_allclose(np.diff(df["t"]), df["dt"].iloc[1:])


def test_time_step_scales_with_mesh_size():
    dts = []
    for cells in (4, 8):
        semi = Semidiscretization(
            StructuredMesh((cells,), coordinates_min=(-1.0,), coordinates_max=(1.0,)),
            CompressibleEulerEquations(1),
            density_wave,
            DGSEM(3),
        )
        dts.append(semi.max_dt(semi.compute_coefficients(), cfl=0.5))
    assert dts[1] == pytest.approx(dts[0] / 2, rel=0.05)
