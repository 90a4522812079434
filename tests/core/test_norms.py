import numpy as np
import pytest

from superdg.tools.norms import l1_norm, l2_norm, linf_norm, weighted_l2_norm


def test_l1_norm():
    arr = np.array([-1, 2, -3, 4])
    assert l1_norm(arr) == pytest.approx(2.5)


def test_l2_norm():
    arr = np.array([3, 4])
    assert l2_norm(arr) == pytest.approx(5.0 / np.sqrt(2))


def test_linf_norm():
    arr = np.array([-1, -9, 5])
    assert linf_norm(arr) == 9


def test_weighted_l2_norm():
    arr = np.array([[1.0, 2.0], [3.0, 4.0]])
    assert weighted_l2_norm(arr, np.ones(2)) == pytest.approx(l2_norm(arr))
    assert weighted_l2_norm(arr, np.array([1.0, 0.0])) == pytest.approx(
        np.sqrt((1 + 9) / 2)
    )
