import os
import warnings
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..equations.base import AbstractEquations
from ..errors import BoundsViolationError
from ..tools.array_management import ArrayLike
from .limiter import BoundRecord, SubcellLimiterIDPContainer


def bound_deviation(q: ArrayLike, rec: BoundRecord) -> ArrayLike:
    """
    Relative violation max(0, bound - q) / max(1, |bound|) of a minimum bound, or
    max(0, q - bound) / max(1, |bound|) of a maximum bound.
    """
    sign = 1.0 if rec.kind == "min" else -1.0
    with np.errstate(invalid="ignore"):
        violation = np.maximum(0.0, sign * (rec.values - q))
    violation = np.where(np.isfinite(violation), violation, np.inf)
    return violation / np.maximum(1.0, np.abs(rec.values))


class BoundsCheckCallback:
    """
    Stage callback measuring how far the corrected solution deviates from the bounds
    enforced by the IDP limiter. The largest deviation of every bound over the run is
    kept; deviations above the tolerance issue a warning or, if fatal, raise a
    BoundsViolationError.

    Args:
        output_directory: Directory of the deviations.csv file written when
            save_errors is True.
        save_errors: Whether to write the per-step maximum deviations.
        interval: Check every `interval` steps.
        fatal: Raise instead of warning on violations.
        tolerance: Largest acceptable relative deviation.
    """

    def __init__(
        self,
        output_directory: Optional[str] = None,
        save_errors: bool = False,
        interval: int = 1,
        fatal: bool = False,
        tolerance: float = 1e-13,
    ):
        if interval < 1:
            raise ValueError(f"interval must be a positive integer, got {interval}.")
        if save_errors and output_directory is None:
            raise ValueError("save_errors requires an output_directory.")
        self.output_directory = output_directory
        self.save_errors = save_errors
        self.interval = interval
        self.fatal = fatal
        self.tolerance = tolerance
        self.max_deviation: Dict[str, float] = {}
        self.history: List[Dict[str, Any]] = []

    def __call__(
        self,
        u: ArrayLike,
        equations: AbstractEquations,
        container: SubcellLimiterIDPContainer,
        step: int,
        t: float,
    ):
        if step % self.interval != 0:
            return
        row: Dict[str, Any] = dict(step=step, t=t)
        report = []
        for rec in container.bounds:
            with np.errstate(all="ignore"):
                q = equations.derived_quantity(rec.quantity, u)
            deviation = bound_deviation(q, rec)
            worst = float(np.max(deviation)) if deviation.size else 0.0
            row[rec.name] = worst
            self.max_deviation[rec.name] = max(self.max_deviation.get(rec.name, 0.0), worst)
            if worst > self.tolerance:
                idx = np.unravel_index(int(np.argmax(deviation)), deviation.shape)
                report.append(
                    dict(
                        variable=rec.name,
                        element=int(idx[0]),
                        node=tuple(int(i) for i in idx[1:]),
                        deviation=worst,
                    )
                )
        self.history.append(row)

        if report:
            msg = (
                f"IDP bounds violated at step {step} (t={t:.6g}): "
                + ", ".join(f"{r['variable']}={r['deviation']:.3e}" for r in report)
            )
            if self.fatal:
                raise BoundsViolationError(msg, report=report)
            warnings.warn(msg)

    def to_dataframe(self) -> pd.DataFrame:
        """
        Per-check maximum deviations, one row per checked step.
        """
        return pd.DataFrame(self.history)

    def summary(self) -> pd.DataFrame:
        """
        Largest deviation of each bound over the whole run.
        """
        return pd.DataFrame(
            dict(
                bound=list(self.max_deviation),
                max_deviation=list(self.max_deviation.values()),
            )
        )

    def finalize(self):
        """
        Write deviations.csv if requested.
        """
        if self.save_errors:
            os.makedirs(self.output_directory, exist_ok=True)
            self.to_dataframe().to_csv(
                os.path.join(self.output_directory, "deviations.csv"), index=False
            )

    def print_summary(self):
        print("Maximum deviation from the IDP bounds:")
        for name, value in self.max_deviation.items():
            print(f"  {name}: {value:.3e}")
