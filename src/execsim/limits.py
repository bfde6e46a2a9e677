"""
Request bounds: row and slice caps plus a wall-clock deadline.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import os
import time

from .errors import ComputeTimeoutError


@dataclass
class SimulationLimits:
    """Configuration for request bounds."""
    max_rows: int = 100000
    max_slices: int = 1000
    timeout_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "SimulationLimits":
        """Build limits from EXECSIM_* environment variables."""
        return cls(
            max_rows=int(os.getenv("EXECSIM_MAX_ROWS", "100000")),
            max_slices=int(os.getenv("EXECSIM_MAX_SLICES", "1000")),
            timeout_seconds=float(os.getenv("EXECSIM_TIMEOUT_SECONDS", "5.0")),
        )


class Deadline:
    """
    Wall-clock budget for one simulation.

    The clock is only consulted to decide failure, never to shape output.
    """

    def __init__(
        self,
        budget_seconds: Optional[float],
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            budget_seconds: Allowed duration, None or <= 0 for unbounded
            clock: Monotonic time source
        """
        self.budget_seconds = budget_seconds
        self._clock = clock
        if budget_seconds is not None and budget_seconds > 0:
            self.expires_at: Optional[float] = clock() + budget_seconds
        else:
            self.expires_at = None

    def check(self, stage: str):
        """Raise ComputeTimeoutError if the budget is spent."""
        if self.expires_at is not None and self._clock() > self.expires_at:
            raise ComputeTimeoutError(
                f"Simulation exceeded {self.budget_seconds}s budget during {stage}"
            )
