import os
import pickle
import shutil
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union, cast

import numpy as np

from .errors import SimulationInterrupted
from .tools.array_management import ArrayLike, ArrayManager
from .tools.snapshots import Snapshots
from .tools.timer import Timer

StageCallback = Callable[["ExplicitODESolver", float, ArrayLike], None]


def clamp_dt(t: float, dt: float, target_time: Optional[float] = None) -> float:
    """
    Clamp the time-step size to avoid overshooting the target time.

    Args:
        t: Current time.
        dt: Proposed time-step size.
        target_time: Optional target time to avoid overshooting.

    Returns:
        Clamped time-step size if target_time is provided, otherwise returns dt.
    """
    return dt if target_time is None else min(target_time - t, dt)


def status_print(msg: str, closing: bool = False, width: int = 100):
    """
    Print a status message with a fixed width.

    Args:
        msg: Message to print.
        closing: Whether this is the closing message to print. If False, it will print the
            message without a trailing newline.
        width: Width of the printed message.
    """
    print(f"\r{msg:<{width}}", end="\n" if closing else "")


class ExplicitODESolver(ABC):
    """
    Base class for explicit ODE solvers for the form u' = f(t, u).

    The strong stability preserving steppers are written in Shu-Osher form: every
    stage is a forward Euler update followed by `stage_hook` and a convex
    combination with earlier stages.

    Attributes:
        t: Current time.
        dt: Last time-step size.
        n_steps: Number of steps taken.
        arrays: ArrayManager object.
        timer: Timer object.
        snapshots: Snapshots object.
        minisnapshots: Dictionary of per-step data lists.
        stage_callbacks: Read-only callbacks `callback(solver, t, u_stage)` called
            after each stage.
        commit_details: Git commit details.
        integrator: Name of the integrator.
        stepper: Stepper function.
        interrupted: Whether the last integration stopped on an interruption
            request.

    Notes:
        - The `f` method must be implemented by the subclass.
        - The `snapshot` method can be overridden to save additional data or perform
            other operations at each snapshot.
        - The `called_at_end_of_step` method can be overridden to perform additional
          routines at the end of each step.
    """

    ssp_integrators = ("euler", "ssprk2", "ssprk3")

    def __init__(self, u0: np.ndarray, array_manager: Optional[ArrayManager] = None):
        """
        Initializes the ODE solver.

        Args:
            u0: Initial state as an array.
            array_manager: Optional ArrayManager instance to manage arrays.
        """
        # initialize time values
        self.t = 0.0
        self.dt = 0.0

        # initialize logs
        self.reset_global_logs()
        self.reset_substepwise_logs()

        # initialize array manager
        self.arrays = ArrayManager() if array_manager is None else array_manager
        self.arrays.add("u", u0)
        for name in ("k0", "k1", "k2", "k3", "unew", "ustage"):
            self.arrays.add(name, np.full_like(u0, np.nan))

        # initialize timer
        self.timer = Timer(cats=["wall", "take_step", "snapshot", "minisnapshot"])

        # initialize snapshots
        self.snapshots: Snapshots = Snapshots()
        self.minisnapshots: Dict[str, list] = {}
        for key in self.prepare_minisnapshot_data().keys():
            self.minisnapshots[key] = []

        # initialize IO
        self.path: Optional[Path] = None

        # initialize commit details
        self.commit_details = self._get_commit_details()

        # stage callbacks and interruption
        self.stage_callbacks: List[StageCallback] = []
        self._interrupt_requested = threading.Event()
        self.interrupted = False

        # assign stepper signature
        self.integrator: Optional[str] = None
        self.stepper: Callable[[float, ArrayLike, float], None]

    @abstractmethod
    def compute_dt(self, t: float, u: ArrayLike) -> float:
        """
        Compute the time-step size.

        Args:
            t: Current time.
            u: Current state as an array.

        Returns:
            dt: Time-step size.
        """
        pass

    @abstractmethod
    def f(self, t: float, u: ArrayLike) -> ArrayLike:
        """
        Right-hand side of the ODE.

        Args:
            t: Current time.
            u: Current state as an array.

        Returns:
            dudt: Right-hand side of the ODE at (t, u) as an array.
        """
        pass

    @abstractmethod
    def build_opening_message(self) -> str:
        pass

    @abstractmethod
    def build_update_message(self) -> str:
        pass

    @abstractmethod
    def build_closing_message(self) -> str:
        pass

    @abstractmethod
    def prepare_snapshot_data(self) -> Any:
        """
        Returns the data to be saved in the snapshot at time `self.t`.
        """
        pass

    def add_stage_callback(self, callback: StageCallback):
        self.stage_callbacks.append(callback)

    def stage_hook(self, t: float, u: ArrayLike, dt: float):
        """
        Called after the forward Euler update of every stage with the stage state
        `u`, which may be modified in place. The default calls the stage callbacks.

        Args:
            t: Time at the end of the forward Euler update.
            u: Stage state as an array.
            dt: Time-step size of the forward Euler update.
        """
        for callback in self.stage_callbacks:
            callback(self, t, u)

    def request_interrupt(self):
        """
        Ask the integration to stop at the next stage boundary. Safe to call from
        another thread or a callback. The interrupted step is discarded.
        """
        self._interrupt_requested.set()

    def _check_interrupt(self):
        if self._interrupt_requested.is_set():
            raise SimulationInterrupted(
                f"Integration interrupted at t={self.t} (step {self.n_steps + 1})."
            )

    def _forward_euler_stage(
        self, t: float, u: ArrayLike, dt: float, k: ArrayLike, out: ArrayLike
    ):
        self._check_interrupt()
        k[...] = self.f(t, u)
        out[...] = u + dt * k
        self._check_interrupt()
        self.stage_hook(t + dt, out, dt)
        self.increment_substepwise_logs()

    def take_step(self, target_time: Optional[float] = None):
        """
        Take a single step in the integration. On an interruption request the step
        is discarded and `self.interrupted` is set; any other error propagates with
        `u` and `t` left at the last accepted step.

        Args:
            target_time (Optional[float]): Time to avoid overshooting.
        """
        self.called_at_beginning_of_step()

        t, u = self.t, self.arrays["u"]
        try:
            dt = clamp_dt(t, self.compute_dt(t, u), target_time)
            self.reset_substepwise_logs()
            self.stepper(t, u, dt)  # revises self.arrays["unew"]
        except SimulationInterrupted:
            self.timer.stop("take_step")
            self.interrupted = True
            return
        except BaseException:
            self.timer.stop("take_step")
            raise

        # update attributes
        self.arrays["u"][...] = self.arrays["unew"]
        self.t += dt
        self.dt = dt

        self.called_at_end_of_step()

    def called_at_beginning_of_step(self):
        """
        Helper function called at the beginning of each step starting with a timer
        start.
        """
        self.timer.start("take_step")

    def called_at_end_of_step(self):
        """
        Helper function called at the end of each step ending with a timer stop.
        """
        self.timer.stop("take_step")
        self.increment_global_logs()

    def integrate(
        self,
        T: Optional[Union[float, List[float]]] = None,
        n: Optional[int] = None,
        log_every_step: bool = False,
        allow_overshoot: bool = False,
        verbose: bool = True,
        log_freq: int = 100,
        no_snapshots: bool = False,
        path: Optional[str] = None,
        overwrite: bool = False,
    ):
        """
        Integrate the ODE.

        Args:
            T: Times to simulate until. If list, snapshots are taken at each time
                in the list. If float, a single time is used. If None, `n` must be
                defined.
            n: Number of steps to take. If None, `T` must be defined.
            log_every_step: Whether to a snapshot at every step.
            allow_overshoot: Whether to allow overshooting of 'T' if it is a float.
            verbose: Whether to print verbose output during integration.
            log_freq: Step frequency of logging updates to the progress bar.
            no_snapshots: Whether to skip taking snapshots.
            path: Path to which integration output is written if not None.
            overwrite: Whether to overwrite the output directory if it exists.
        """
        self._interrupt_requested.clear()
        self.interrupted = False
        self.timer.start("wall")
        try:
            # prepare output directory
            self.prepare_output_directory(path, overwrite)

            # perform integration
            if n is not None and T is None:
                self._integrate_for_fixed_number_of_steps(
                    n,
                    log_every_step=log_every_step,
                    verbose=verbose,
                    log_freq=log_freq,
                    no_snapshots=no_snapshots,
                )
            elif T is not None and n is None:
                self._integrate_until_target_time_is_reached(
                    cast(Union[float, List[float]], T),
                    log_every_step=log_every_step,
                    allow_overshoot=allow_overshoot,
                    verbose=verbose,
                    log_freq=log_freq,
                    no_snapshots=no_snapshots,
                )
            else:
                raise ValueError("Either 'n' or 'T' must be defined, but not both.")
        finally:
            self.timer.stop("wall")

    def _integrate_for_fixed_number_of_steps(
        self,
        n: int,
        log_every_step: bool = False,
        verbose: bool = True,
        log_freq: int = 100,
        no_snapshots: bool = False,
    ):
        """
        Integrate the ODE for a fixed number of steps.
        """
        if verbose:
            status_print(self.build_opening_message())

        # take initial snapshots
        if self.t not in self.minisnapshots["t"]:
            if not no_snapshots:
                self.take_snapshot()
            self.take_minisnapshot()

        # simulation loop
        n_target = self.n_steps + n
        while self.n_steps < n_target:
            self.take_step()
            if self.interrupted:
                break
            self.take_minisnapshot()

            # take snapshot
            if not no_snapshots and (log_every_step or self.n_steps == n_target):
                self.take_snapshot()

            # update printed message
            if verbose:
                if self.n_steps % log_freq == 0 or self.n_steps >= n_target:
                    status_print(self.build_update_message())

        self.postprocess_snapshots()

        if verbose:
            status_print(self.build_closing_message(), closing=True)

    def _integrate_until_target_time_is_reached(
        self,
        T: Union[float, List[float]],
        log_every_step: bool = False,
        allow_overshoot: bool = False,
        verbose: bool = True,
        log_freq: int = 100,
        no_snapshots: bool = False,
    ):
        """
        Integrate the ODE until a target time is reached.
        """
        # format list of target times
        target_times: List[float]
        if isinstance(T, (int, float)):
            target_times = [float(T)]
        elif isinstance(T, list):
            target_times = sorted([float(t) for t in T])
        else:
            raise ValueError(f"Invalid type for T: {type(T)}")
        if min(target_times) <= self.t:
            raise ValueError(f"Target times must be greater than t={self.t}.")
        T_max = max(target_times)
        target_time = None if allow_overshoot else target_times.pop(0)

        if verbose:
            status_print(self.build_opening_message())

        # initial snapshot
        if self.t not in self.minisnapshots["t"]:
            if not no_snapshots:
                self.take_snapshot()
            self.take_minisnapshot()

        # simulation loop
        while self.t < T_max:
            self.take_step(target_time=target_time)
            if self.interrupted:
                break
            self.take_minisnapshot()

            # snapshot decision and target time update
            if not no_snapshots:
                if self.t > T_max:  # trigger closing snapshot
                    self.take_snapshot()
                elif (not allow_overshoot and self.t == target_time) or log_every_step:
                    self.take_snapshot()

            if not allow_overshoot and self.t == target_time and self.t < T_max:
                target_time = target_times.pop(0)

            # update progress bar
            if verbose:
                if self.n_steps % log_freq == 0 or self.t >= T_max:
                    status_print(self.build_update_message())

        self.postprocess_snapshots()

        if verbose:
            status_print(self.build_closing_message(), closing=True)

    def prepare_minisnapshot_data(self) -> Dict[str, Any]:
        """
        Returns the data to be saved in a minisnapshot.
        """
        return {
            "t": self.t,
            "dt": self.dt,
            "n_steps": self.n_steps,
            "n_substeps": self.n_substeps,
            "step_time": self.timer.goldfish_lap_time["take_step"],
        }

    def prepare_output_directory(
        self, path: Optional[str] = None, overwrite: bool = False
    ):
        """
        Create output directory if it doesn't exist and throw an error or overwrite it
        if it does.

        Args:
            path: Output path as a string.
            overwrite: Whether to completely delete the path if it exists.
        """
        if path is None:
            return None

        out_path = Path(path)

        if out_path.exists() and overwrite:
            shutil.rmtree(out_path)
        elif out_path.exists() and not overwrite:
            raise FileExistsError(f"Output directory '{out_path}' already exists.")

        os.makedirs(out_path)
        os.makedirs(out_path / "snapshots")
        self.path = out_path

        # write some metadata before anything runs
        self.write_metadata()

    def write_metadata(self):
        """
        Write commit details before the solver runs.
        """
        if self.path is None:
            return
        with open(self.path / "commit_details.txt", "w") as f:
            for key, value in self.commit_details.items():
                f.write(f"{key}: {value}\n")

    def take_snapshot(self):
        """
        Log and time snapshot data at time `self.t` and write it to `self.path` if not None.
        """
        if self.t in self.snapshots:
            return
        with self.timer.time("snapshot"):
            data = self.prepare_snapshot_data()
            self.snapshots.log(self.t, data)

            if self.path is not None:
                self.snapshots.write(self.path / "snapshots", self.t)

    def take_minisnapshot(self):
        """
        Log and time minisnapshot data.
        """
        with self.timer.time("minisnapshot"):
            data = self.prepare_minisnapshot_data()
            for key, value in data.items():
                self.minisnapshots.setdefault(key, []).append(value)

    def postprocess_snapshots(self):
        """
        Write the minisnapshots to the snapshot path if not None.
        """
        if self.path is None:
            return
        with open(self.path / "snapshots" / "minisnapshots.pkl", "wb") as f:
            pickle.dump(self.minisnapshots, f)

    def reset_global_logs(self):
        self.n_steps = 0

    def increment_global_logs(self):
        self.n_steps += 1

    def reset_substepwise_logs(self):
        self.n_substeps = 0

    def increment_substepwise_logs(self):
        self.n_substeps += 1

    def check_integrator(self, integrator: str):
        """
        Validate the integrator before the first step. Override to restrict the
        integrators a solver supports.
        """
        if integrator not in self.ssp_integrators + ("rk4",):
            raise ValueError(f"Unknown integrator '{integrator}'.")

    def _run(self, integrator: str, stepper, *args, **kwargs):
        self.check_integrator(integrator)
        self.integrator = integrator
        self.stepper = stepper
        self.integrate(*args, **kwargs)

    def euler(self, *args, **kwargs) -> None:
        self._run("euler", self._euler_step, *args, **kwargs)

    def _euler_step(self, t: float, u: ArrayLike, dt: float):
        self.substep_dt = dt
        self._forward_euler_stage(t, u, dt, self.arrays["k0"], self.arrays["unew"])

    def ssprk2(self, *args, **kwargs) -> None:
        self._run("ssprk2", self._ssprk2_step, *args, **kwargs)

    def _ssprk2_step(self, t: float, u: ArrayLike, dt: float):
        unew = self.arrays["unew"]
        ustage = self.arrays["ustage"]
        self.substep_dt = dt

        # stage 1
        self._forward_euler_stage(t, u, dt, self.arrays["k0"], unew)

        # stage 2
        self._forward_euler_stage(t + dt, unew, dt, self.arrays["k1"], ustage)
        unew[...] = 0.5 * u + 0.5 * ustage

    def ssprk3(self, *args, **kwargs) -> None:
        self._run("ssprk3", self._ssprk3_step, *args, **kwargs)

    def _ssprk3_step(self, t: float, u: ArrayLike, dt: float):
        unew = self.arrays["unew"]
        ustage = self.arrays["ustage"]
        self.substep_dt = dt

        # stage 1
        self._forward_euler_stage(t, u, dt, self.arrays["k0"], unew)

        # stage 2
        self._forward_euler_stage(t + dt, unew, dt, self.arrays["k1"], ustage)
        unew[...] = 0.75 * u + 0.25 * ustage

        # stage 3
        self._forward_euler_stage(t + 0.5 * dt, unew, dt, self.arrays["k2"], ustage)
        unew[...] = (1 / 3) * u + (2 / 3) * ustage

    def rk4(self, *args, **kwargs):
        self._run("rk4", self._rk4_step, *args, **kwargs)

    def _rk4_step(self, t: float, u: ArrayLike, dt: float):
        unew = self.arrays["unew"]
        k0 = self.arrays["k0"]
        k1 = self.arrays["k1"]
        k2 = self.arrays["k2"]
        k3 = self.arrays["k3"]
        self.substep_dt = dt

        self._check_interrupt()
        k0[...] = self.f(t, u)
        self.increment_substepwise_logs()

        self._check_interrupt()
        k1[...] = self.f(t + 0.5 * dt, u + 0.5 * dt * k0)
        self.increment_substepwise_logs()

        self._check_interrupt()
        k2[...] = self.f(t + 0.5 * dt, u + 0.5 * dt * k1)
        self.increment_substepwise_logs()

        self._check_interrupt()
        k3[...] = self.f(t + dt, u + dt * k2)
        unew[...] = u + (1 / 6) * dt * (k0 + 2 * k1 + 2 * k2 + k3)
        self.increment_substepwise_logs()
        self._check_interrupt()
        for callback in self.stage_callbacks:
            callback(self, t + dt, unew)

    def _get_commit_details(self) -> dict:
        """
        Returns a dict summary of the commit details of the repository.
        """
        repo_path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        try:
            result = subprocess.run(
                ["git", "-C", repo_path, "log", "-1", "--pretty=format:%H|%an|%ai|%D"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            return {"error": f"An error occurred: {getattr(e, 'stderr', e)}"}
        commit_info = result.stdout.strip().split("|")
        if len(commit_info) < 3:
            return {"error": "No commit information available."}
        return {
            "commit_hash": commit_info[0],
            "author_name": commit_info[1],
            "commit_date": commit_info[2],
            "branch_name": (
                commit_info[3].split(",")[0].strip().split()[-1]
                if len(commit_info) > 3 and commit_info[3].strip()
                else None
            ),
        }
