import numpy as np

from .array_management import ArrayLike


def l1_norm(array: ArrayLike) -> float:
    """
    Compute the mean absolute value of an array.
    """
    return float(np.mean(np.abs(array)))


def l2_norm(array: ArrayLike) -> float:
    """
    Compute the root-mean-square of an array.
    """
    return float(np.sqrt(np.mean(np.square(array))))


def linf_norm(array: ArrayLike) -> float:
    """
    Compute the maximum absolute value of an array.
    """
    return float(np.max(np.abs(array)))


def weighted_l2_norm(array: ArrayLike, weights: ArrayLike) -> float:
    """
    Compute sqrt(sum(w * a^2) / sum(w)) where `weights` broadcasts against `array`.
    """
    w = np.broadcast_to(weights, array.shape)
    return float(np.sqrt(np.sum(w * np.square(array)) / np.sum(w)))
