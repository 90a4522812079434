from .bounds_check import BoundsCheckCallback, bound_deviation
from .correction import SubcellLimiterIDPCorrection
from .limiter import (
    BoundRecord,
    SubcellLimiterIDP,
    SubcellLimiterIDPContainer,
    VolumeIntegralSubcellLimiting,
    calc_local_bounds,
    collect_bounds,
)
from .newton import limit_nonlinear_newton

__all__ = [
    "BoundRecord",
    "BoundsCheckCallback",
    "SubcellLimiterIDP",
    "SubcellLimiterIDPContainer",
    "SubcellLimiterIDPCorrection",
    "VolumeIntegralSubcellLimiting",
    "bound_deviation",
    "calc_local_bounds",
    "collect_bounds",
    "limit_nonlinear_newton",
]
