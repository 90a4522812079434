import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pytest  # noqa: E402

from superdg.dg_solver import DGSolver  # noqa: E402
from superdg.equations import CompressibleEulerEquations  # noqa: E402
from superdg.initial_conditions import density_wave, sod_shock_tube  # noqa: E402
from superdg.mesh import StructuredMesh  # noqa: E402
from superdg.semidiscretization import DGSEM, Semidiscretization  # noqa: E402
from superdg.tools.loader import OutputLoader  # noqa: E402
from superdg.visualization import plot_1d, plot_2d  # noqa: E402


@pytest.fixture
def sod():
    semi = Semidiscretization(
        StructuredMesh((8,), coordinates_min=(0.0,), coordinates_max=(1.0,)),
        CompressibleEulerEquations(1),
        sod_shock_tube,
        DGSEM(2),
    )
    solver = DGSolver(semi, cfl=0.3)
    solver.run(n=2, verbose=False)
    return solver


def test_plot_1d(sod):
    fig, ax = plt.subplots()
    lines = sod.plot_1d(ax, "rho", label="rho")
    assert len(lines) == 8
    assert lines[0].get_label() == "rho"
    assert len(sod.plot_1d(ax, "rho", t=0.0, primitive=True)) == 8
    assert len(sod.plot_1d(ax, "alpha")) == 8
    with pytest.raises(KeyError, match="Unknown variable"):
        sod.plot_1d(ax, "pressure")
    with pytest.warns(UserWarning, match="not exactly matched"):
        sod.plot_1d(ax, "rho", t=1e-9)
    with pytest.raises(ValueError, match="2D"):
        sod.plot_2d(ax, "rho")
    plt.close(fig)


def test_plot_2d_from_output(tmp_path):
    semi = Semidiscretization(
        StructuredMesh((2, 2), coordinates_min=(-1.0, -1.0), coordinates_max=(1.0, 1.0)),
        CompressibleEulerEquations(2),
        density_wave,
        DGSEM(2),
    )
    DGSolver(semi).run(n=1, path=str(tmp_path / "out"), verbose=False)
    loader = OutputLoader(tmp_path / "out", verbose=False)

    fig, ax = plt.subplots()
    assert plot_2d(loader, ax, "rho", colorbar=True) is not None
    assert plot_2d(loader, ax, "alpha", t=0.0) is not None
    with pytest.raises(ValueError, match="1D"):
        plot_1d(loader, ax, "rho")
    plt.close(fig)
