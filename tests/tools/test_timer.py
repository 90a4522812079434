import time

import pytest

from superdg.tools.timer import MethodTimer, Timer


def test_start_stop_accumulates():
    timer = Timer(cats=["a"])
    for _ in range(3):
        timer.start("a")
        time.sleep(0.001)
        timer.stop("a")
    assert timer.n_calls["a"] == 3
    assert timer.cum_time["a"] > 0
    assert timer.goldfish_lap_time["a"] <= timer.cum_time["a"]


def test_double_start_raises():
    timer = Timer(cats=["a"])
    timer.start("a")
    with pytest.raises(RuntimeError, match="already in progress"):
        timer.start("a")


def test_stop_without_start_raises():
    timer = Timer(cats=["a"])
    with pytest.raises(RuntimeError, match="not in progress"):
        timer.stop("a")


def test_unknown_category():
    timer = Timer()
    with pytest.raises(ValueError, match="not found"):
        timer.start("missing")


def test_add_existing_category():
    timer = Timer(cats=["a"])
    with pytest.raises(ValueError, match="already exists"):
        timer.add_cat("a")


def test_context_manager_stops_on_error():
    timer = Timer(cats=["a"])
    with pytest.raises(ZeroDivisionError):
        with timer.time("a"):
            1 / 0
    # a stopped timer can be started again
    timer.start("a")
    timer.stop("a")
    assert timer.n_calls["a"] == 2


def test_to_dataframe():
    timer = Timer(cats=["b", "a"])
    with timer.time("a"):
        pass
    df = timer.to_dataframe()
    assert list(df.index) == ["a", "b"]
    assert df.loc["a", "n_calls"] == 1
    assert df.loc["b", "n_calls"] == 0


def test_method_timer():
    class Worker:
        def __init__(self):
            self.timer = Timer(cats=["work"])

        @MethodTimer(cat="work")
        def work(self, x):
            return 2 * x

    worker = Worker()
    assert worker.work(3) == 6
    assert worker.work(4) == 8
    assert worker.timer.n_calls["work"] == 2
