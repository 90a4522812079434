from . import initial_conditions
from .analysis import calc_error_norms, convergence_test, entropy_timederivative, integrate
from .basis import LobattoLegendreBasis
from .boundary_conditions import BoundaryConditionDirichlet, boundary_condition_do_nothing
from .dg_solver import DGSolver
from .errors import (
    BoundsViolationError,
    InfeasibleLimiterError,
    MeshInconsistencyError,
    NonFiniteStateError,
    SimulationInterrupted,
    SuperDGError,
)
from .indicators import (
    IndicatorHennemannGassner,
    IndicatorLohner,
    IndicatorMax,
    VolumeIntegralShockCapturingHG,
)
from .mesh import StructuredMesh, TreeMesh
from .mortar import MortarL2
from .numerical_fluxes import (
    FluxHLL,
    FluxLaxFriedrichs,
    flux_central,
    flux_hll,
    flux_lax_friedrichs,
)
from .semidiscretization import DGSEM, Semidiscretization, rhs
from .subcell_limiting import (
    BoundsCheckCallback,
    SubcellLimiterIDP,
    VolumeIntegralSubcellLimiting,
)
from .tools.loader import OutputLoader
from .visualization import plot_1d, plot_2d
from .volume_integral import (
    VolumeIntegralFluxDifferencing,
    VolumeIntegralPureLGLFiniteVolume,
    VolumeIntegralWeakForm,
)

__all__ = [
    "BoundaryConditionDirichlet",
    "BoundsCheckCallback",
    "BoundsViolationError",
    "DGSEM",
    "DGSolver",
    "FluxHLL",
    "FluxLaxFriedrichs",
    "IndicatorHennemannGassner",
    "IndicatorLohner",
    "IndicatorMax",
    "InfeasibleLimiterError",
    "LobattoLegendreBasis",
    "MeshInconsistencyError",
    "MortarL2",
    "NonFiniteStateError",
    "OutputLoader",
    "Semidiscretization",
    "SimulationInterrupted",
    "StructuredMesh",
    "SubcellLimiterIDP",
    "SuperDGError",
    "TreeMesh",
    "VolumeIntegralFluxDifferencing",
    "VolumeIntegralPureLGLFiniteVolume",
    "VolumeIntegralShockCapturingHG",
    "VolumeIntegralSubcellLimiting",
    "VolumeIntegralWeakForm",
    "boundary_condition_do_nothing",
    "calc_error_norms",
    "convergence_test",
    "entropy_timederivative",
    "flux_central",
    "flux_hll",
    "flux_lax_friedrichs",
    "initial_conditions",
    "integrate",
    "plot_1d",
    "plot_2d",
    "rhs",
]
