import pickle
from typing import Any, Dict, List, Literal, Optional, Union

import numpy as np
import pandas as pd

from .analysis import integrate
from .explicit_ODE_solver import ExplicitODESolver
from .semidiscretization import Semidiscretization, rhs
from .subcell_limiting import BoundsCheckCallback
from .tools.array_management import ArrayLike
from .tools.timer import MethodTimer
from .tools.yaml_helper import yaml_dump
from .visualization import plot_1d, plot_2d

Integrator = Literal["euler", "ssprk2", "ssprk3", "rk4"]


class DGSolver(ExplicitODESolver):
    """
    Time integration of a Semidiscretization with a CFL-based time step.

    Args:
        semi: Semidiscretization.
        cfl: CFL number.
        bounds_check: Optional BoundsCheckCallback, evaluated after the IDP
            correction of every stage. Requires the subcell limiter.
        check_admissibility: Whether to check each stage state for NaN/Inf and
            inadmissible states.
    """

    def __init__(
        self,
        semi: Semidiscretization,
        cfl: float = 0.5,
        bounds_check: Optional[BoundsCheckCallback] = None,
        check_admissibility: bool = False,
    ):
        if cfl <= 0:
            raise ValueError(f"cfl must be positive, got {cfl}.")
        if bounds_check is not None and semi.container is None:
            raise ValueError("The bounds check requires the subcell IDP limiter.")
        self.semi = semi
        self.cfl = cfl
        self.bounds_check = bounds_check
        self.check_admissibility = check_admissibility

        super().__init__(semi.compute_coefficients())
        self.arrays.add("_du_", np.full_like(self.arrays["u"], np.nan))
        self._init_timer()

        if bounds_check is not None:
            self.add_stage_callback(self._check_bounds)

    def _init_timer(self):
        new_timer_cats = ["compute_dt", "rhs", "idp_correction", "stage_callbacks"]
        for cat in new_timer_cats:
            self.timer.add_cat(cat)
        self.sorted_timer_cats = (
            ["wall", "take_step"] + new_timer_cats + ["snapshot", "minisnapshot"]
        )

    @property
    def u(self) -> ArrayLike:
        return self.arrays["u"]

    def check_integrator(self, integrator: str):
        super().check_integrator(integrator)
        if self.semi.idp_correction is not None and integrator not in self.ssp_integrators:
            raise ValueError(
                f"The subcell IDP limiter requires an SSP integrator, got '{integrator}'."
            )

    @MethodTimer(cat="compute_dt")
    def compute_dt(self, t: float, u: ArrayLike) -> float:
        return self.semi.max_dt(u, self.cfl)

    @MethodTimer(cat="rhs")
    def f(self, t: float, u: ArrayLike) -> ArrayLike:
        du = self.arrays["_du_"]
        rhs(du, u, self.semi, t)
        return du

    def stage_hook(self, t: float, u: ArrayLike, dt: float):
        semi = self.semi
        if semi.idp_correction is not None:
            with self.timer.time("idp_correction"):
                semi.idp_correction(u, dt, semi.geometry, semi.container)
        if self.check_admissibility:
            semi.equations.check_admissible(u, f"stage {self.n_substeps + 1}")
        with self.timer.time("stage_callbacks"):
            super().stage_hook(t, u, dt)

    def _check_bounds(self, solver: ExplicitODESolver, t: float, u: ArrayLike):
        self.bounds_check(u, self.semi.equations, self.semi.container, self.n_steps, t)

    def build_opening_message(self) -> str:
        return f"{self.semi}"

    def build_update_message(self) -> str:
        return f"Step #{self.n_steps} @ t={self.t:<.2e} | dt={self.dt:<.2e}"

    def build_closing_message(self) -> str:
        msg = self.build_update_message()
        return msg + (" | (interrupted)" if self.interrupted else " | (done)")

    def prepare_snapshot_data(self) -> Dict[str, np.ndarray]:
        """
        Returns the arrays to be saved in the snapshot at time `self.t`.
        """
        data = {
            "u": self.arrays.get_numpy_copy("u"),
            "w": self.semi.equations.cons2prim(self.arrays["u"]),
        }
        if self.semi.container is not None:
            data["limiting_coefficient"] = self.semi.container.arrays.get_numpy_copy(
                "limiting_coefficient"
            )
        else:
            data["alpha"] = self.semi.cache.get_numpy_copy("alpha")
        return data

    def prepare_minisnapshot_data(self) -> Dict[str, Any]:
        """
        Returns the data to be saved in a minisnapshot, including the integrals of the
        conservative variables and the largest blending factor.
        """
        data = super().prepare_minisnapshot_data()
        semi = self.semi
        totals = integrate(self.arrays["u"], semi)
        for name, value in zip(semi.equations.varnames_cons, totals):
            data[f"integral_{name}"] = float(value)
        if semi.container is not None:
            coefficient = semi.container.arrays["limiting_coefficient"]
        else:
            coefficient = semi.cache["alpha"]
        data["max_alpha"] = float(np.max(coefficient)) if coefficient.size else 0.0
        return data

    def run(
        self,
        T: Optional[Union[float, List[float]]] = None,
        n: Optional[int] = None,
        integrator: Integrator = "ssprk3",
        log_every_step: bool = False,
        allow_overshoot: bool = False,
        verbose: bool = True,
        log_freq: int = 100,
        no_snapshots: bool = False,
        path: Optional[str] = None,
        overwrite: bool = False,
    ):
        """
        Integrate the semidiscretization in time.

        Args:
            T: Target simulation time(s). If None, `n` must be specified instead.
            n: Number of steps to take. If None, `T` must be specified instead.
            integrator: "euler", "ssprk2", "ssprk3" or "rk4".
            log_every_step: Whether to take a snapshot at every step.
            allow_overshoot: If True, the solver may overshoot target times
                instead of shortening the last step to hit them exactly.
            verbose: Whether to print progress information.
            log_freq: Step interval between log updates (if verbose).
            no_snapshots: Whether to skip taking snapshots.
            path: Directory to write snapshots. If None, nothing is written.
            overwrite: Whether to overwrite `path` if it already exists.
        """
        if integrator not in self.ssp_integrators + ("rk4",):
            raise ValueError(f"Unknown integrator '{integrator}'.")
        getattr(self, integrator)(
            T=T,
            n=n,
            log_every_step=log_every_step,
            allow_overshoot=allow_overshoot,
            verbose=verbose,
            log_freq=log_freq,
            no_snapshots=no_snapshots,
            path=path,
            overwrite=overwrite,
        )
        if self.bounds_check is not None:
            self.bounds_check.finalize()
            if verbose:
                self.bounds_check.print_summary()
        if self.path is not None:
            self.write_timings()

    def plot_1d(self, *args, **kwargs):
        return plot_1d(self, *args, **kwargs)

    def plot_2d(self, *args, **kwargs):
        return plot_2d(self, *args, **kwargs)

    def get_timings_df(self) -> pd.DataFrame:
        """
        Get the timing statistics for the solver as a DataFrame.
        """
        timer = self.timer
        df = pd.DataFrame(
            [
                {
                    "Routine": cat,
                    "# of calls": timer.n_calls[cat],
                    "Total time (s)": timer.cum_time[cat],
                }
                for cat in self.sorted_timer_cats
            ]
        )
        wall = timer.cum_time["wall"]
        df["% time"] = df["Total time (s)"] / wall if wall > 0 else np.nan
        return df

    def print_timings(self):
        print(self.get_timings_df().to_string(index=False))

    def write_timings(self):
        """
        Write the timing table to 'timings.csv' in the output directory.
        """
        if self.path is None:
            raise FileNotFoundError("Path not specified.")
        self.get_timings_df().to_csv(self.path / "timings.csv", index=False)

    def write_metadata(self):
        """
        Write commit details, config and mesh before the solver runs.
        """
        super().write_metadata()
        self.write_config()
        self.write_mesh()

    def write_config(self):
        """
        Write `self.to_dict()` to 'config.yaml'.
        """
        if self.path is None:
            return
        with open(self.path / "config.yaml", "w") as f:
            f.write(yaml_dump(self.to_dict()))

    def write_mesh(self):
        """
        Write the mesh description and node geometry to 'mesh.pkl'.
        """
        if self.path is None:
            return
        geometry = self.semi.geometry
        with open(self.path / "mesh.pkl", "wb") as f:
            pickle.dump(
                dict(
                    mesh=self.semi.mesh.to_dict(),
                    node_coordinates=geometry.node_coordinates,
                    jacobian=geometry.jacobian,
                ),
                f,
            )

    def to_dict(self) -> dict:
        """
        Return a dict of solver parameters independent of results.
        """
        return dict(
            semidiscretization=self.semi.to_dict(),
            cfl=self.cfl,
            integrator=self.integrator,
            bounds_check=(
                None
                if self.bounds_check is None
                else dict(
                    interval=self.bounds_check.interval,
                    fatal=self.bounds_check.fatal,
                    tolerance=self.bounds_check.tolerance,
                )
            ),
            variables=self.semi.equations.variables.to_dict(),
        )
