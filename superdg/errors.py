from typing import Any, Dict, List, Optional, Sequence


class SuperDGError(Exception):
    """
    Base class for errors raised by superdg.
    """


class NonFiniteStateError(SuperDGError, FloatingPointError):
    """
    A NaN/Inf or an inadmissible primitive state (e.g. negative density) was found in
    the solution. Fatal: it indicates an upstream instability such as a too large
    time step or insufficient limiting.

    Attributes:
        elements: Indices of the offending elements.
    """

    def __init__(self, msg: str, elements: Optional[Sequence[int]] = None):
        super().__init__(msg)
        self.elements: List[int] = list(elements) if elements is not None else []


class BoundsViolationError(SuperDGError, RuntimeError):
    """
    The corrected solution violates an IDP bound by more than the tolerance.

    Attributes:
        report: List of records with keys "variable", "element", "node" and
            "deviation" describing the worst violations.
    """

    def __init__(self, msg: str, report: Optional[List[Dict[str, Any]]] = None):
        super().__init__(msg)
        self.report: List[Dict[str, Any]] = report if report is not None else []


class InfeasibleLimiterError(SuperDGError, RuntimeError):
    """
    No limiting factor in [0, 1] satisfies an IDP bound, not even the low-order
    solution itself.
    """


class MeshInconsistencyError(SuperDGError, ValueError):
    """
    The mesh connectivity is inconsistent with the discretization. Detected at setup,
    before the first residual evaluation.
    """


class SimulationInterrupted(SuperDGError):
    """
    Raised internally when an interruption request is noticed at a stage boundary.
    """
