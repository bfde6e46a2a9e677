"""
Error taxonomy for the execution simulator.

Every error is local to a single request and carries the HTTP status the
API answers with. Nothing here is retried: the computation is deterministic.
"""


class SimulationError(Exception):
    """Base class for all simulation failures."""
    status_code = 400


class ParseError(SimulationError):
    """Input could not be decoded as delimited text or JSON."""
    status_code = 400


class EmptyTapeError(SimulationError):
    """No valid tape rows survived normalization."""
    status_code = 422


class InvalidInputError(SimulationError):
    """Request parameters were rejected before any computation."""
    status_code = 422


class InvalidSliceCountError(InvalidInputError):
    """TWAP/VWAP requested with fewer than one slice."""


class ComputeTimeoutError(SimulationError):
    """
    Input exceeded a configured size bound or the wall-clock budget.

    Size violations answer 413, deadline expiry answers 504.
    """
    status_code = 504

    def __init__(self, message: str, size_exceeded: bool = False):
        super().__init__(message)
        self.size_exceeded = size_exceeded
        if size_exceeded:
            self.status_code = 413
