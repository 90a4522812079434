import time
from contextlib import contextmanager
from functools import wraps
from typing import Dict, Iterable, Iterator, Set

import numpy as np
import pandas as pd


class Timer:
    """
    Timer with named categories for timing code execution.
    """

    def __init__(self, cats: Iterable[str] = ("main",)):
        """
        Initializes the timer.

        Args:
            cats: Iterable of category names to initialize.
        """
        self.cats: Set[str] = set()
        self.goldfish_lap_time: Dict[str, float] = {}
        self.cum_time: Dict[str, float] = {}
        self.n_calls: Dict[str, int] = {}

        self._running: Dict[str, bool] = {}
        self._start_time: Dict[str, float] = {}

        for cat in cats:
            self._add_cat(cat)

    def _add_cat(self, cat: str):
        self.cats.add(cat)
        self.goldfish_lap_time[cat] = np.nan
        self.cum_time[cat] = 0.0
        self.n_calls[cat] = 0
        self._running[cat] = False
        self._start_time[cat] = np.nan

    def add_cat(self, cat: str):
        """
        Add a new timer category.

        Args:
            cat: Category name.
        """
        if cat in self.cats:
            raise ValueError(f"Category '{cat}' already exists.")
        self._add_cat(cat)

    def _check_cat_existence(self, cat: str):
        if cat not in self.cats:
            raise ValueError(f"Category '{cat}' not found in timer categories.")

    def start(self, cat: str, reset: bool = False):
        """
        Start timer of a category.

        Args:
            cat: Category name.
            reset: If True, reset the cumulative time and call count first.
        """
        self._check_cat_existence(cat)
        if self._running[cat]:
            raise RuntimeError(
                f"Cannot start '{cat}' timer since it is already in progress."
            )
        if reset:
            self.n_calls[cat] = 0
            self.cum_time[cat] = 0.0
        self._running[cat] = True
        self._start_time[cat] = time.perf_counter()
        self.n_calls[cat] += 1

    def stop(self, cat: str):
        """
        Stop timer of a category.

        Args:
            cat: Category name.
        """
        self._check_cat_existence(cat)
        if not self._running[cat]:
            raise RuntimeError(f"Cannot stop '{cat}' timer since it is not in progress.")
        lap_time = time.perf_counter() - self._start_time[cat]
        self.goldfish_lap_time[cat] = lap_time
        self.cum_time[cat] += lap_time
        self._running[cat] = False
        self._start_time[cat] = np.nan

    def stop_all(self):
        """
        Stop all running timers.
        """
        for cat in self.cats:
            if self._running[cat]:
                self.stop(cat)

    @contextmanager
    def time(self, cat: str) -> Iterator[None]:
        """
        Context manager timing the enclosed block under `cat`. The timer is stopped
        even if the block raises.
        """
        self.start(cat)
        try:
            yield
        finally:
            self.stop(cat)

    def to_dict(self, decimals: int = 2) -> dict:
        """
        Return the cumulative times for all categories as a dictionary.

        Args:
            decimals: Number of decimal places to round to.
        """
        return {cat: float(np.round(t, decimals)) for cat, t in self.cum_time.items()}

    def to_dataframe(self) -> pd.DataFrame:
        """
        Return a table of calls and cumulative times, one row per category.
        """
        rows = [
            dict(category=cat, n_calls=self.n_calls[cat], cum_time=self.cum_time[cat])
            for cat in sorted(self.cats)
        ]
        return pd.DataFrame(rows).set_index("category")

    def print_report(self, precision: int = 2):
        """
        Print a report of the timer categories with ncalls and cumtime.

        Args:
            precision: Number of decimal places to print for cumulative time.
        """
        sorted_cats = sorted(self.cats)
        cat_width = max(len(cat) for cat in sorted_cats) + 5

        report_str = f"{'Category':<{cat_width}} {'Calls':>10} {'Cumulative Time':>20}\n"
        report_str += "-" * (cat_width + 34) + "\n"
        for cat in sorted_cats:
            report_str += (
                f"{cat:<{cat_width}} {self.n_calls[cat]:>10} "
                f"{self.cum_time[cat]:>20.{precision}f}\n"
            )
        print(report_str)

    def __contains__(self, cat: str) -> bool:
        return cat in self.cats


class MethodTimer:
    """
    Decorator for timing methods of a class holding a Timer instance as `timer`.
    """

    def __init__(self, cat: str):
        self.cat = cat

    def __call__(self, method):
        @wraps(method)
        def wrapped(instance, *args, **kwargs):
            with instance.timer.time(self.cat):
                return method(instance, *args, **kwargs)

        return wrapped
