from types import ModuleType
from typing import Optional, Sequence

from ..errors import NonFiniteStateError
from .array_management import ArrayLike


def avoid0(xp: ModuleType, x: ArrayLike, eps: float = 1e-15) -> ArrayLike:
    """
    Robust small-denominator guard: clamp magnitude to at least eps, preserving sign.

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        x: Array to be clamped.
        eps: Small value to avoid division by zero.
    """
    return xp.where(x >= 0, xp.maximum(x, eps), xp.minimum(x, -eps))


def check_finite(
    xp: ModuleType,
    u: ArrayLike,
    where: str,
    varnames: Optional[Sequence[str]] = None,
):
    """
    Raise a NonFiniteStateError if `u` contains NaN or Inf.

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        u: Array with shape (nvars, n_elements, ...).
        where: Name of the computation in which the check is performed.
        varnames: Optional variable names used in the error message.

    Raises:
        NonFiniteStateError: If any entry is not finite.
    """
    finite = xp.isfinite(u)
    if bool(xp.all(finite)):
        return
    bad = xp.argwhere(~finite)
    first = tuple(int(i) for i in bad[0])
    var = varnames[first[0]] if varnames is not None else first[0]
    elements = sorted(set(int(i) for i in bad[:, 1]))
    raise NonFiniteStateError(
        f"Non-finite state detected in {where}: variable {var}, "
        f"element(s) {elements[:10]}{' ...' if len(elements) > 10 else ''}.",
        elements=elements,
    )


def check_positive(
    xp: ModuleType, q: ArrayLike, name: str, where: str
):
    """
    Raise a NonFiniteStateError if the derived quantity `q` with shape
    (n_elements, ...) is not strictly positive and finite.
    """
    bad = ~(q > 0)
    if not bool(xp.any(bad)):
        return
    elements = sorted(set(int(i) for i in xp.argwhere(bad)[:, 0]))
    raise NonFiniteStateError(
        f"Inadmissible {name} detected in {where}: element(s) "
        f"{elements[:10]}{' ...' if len(elements) > 10 else ''}.",
        elements=elements,
    )
