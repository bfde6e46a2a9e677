"""
Simulation engine.

Validates a request, normalizes its tape and runs the pipeline:
benchmark, slicing, fills, summary, slippage curve.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, List, Optional
import time

from structlog import get_logger

from .errors import ComputeTimeoutError, InvalidInputError, InvalidSliceCountError
from .limits import Deadline, SimulationLimits
from .planner import ExecutionMethod, Slice, plan_slices
from .simulator import FillEngine, SimulatedFill
from .slippage import (
    SlippagePoint,
    SlippageSummary,
    TradeSide,
    benchmark_price,
    build_slippage_curve,
    summarize,
)
from .tape import NormalizedTape, TapePoint, coerce_decimal, in_range, normalize_tape

logger = get_logger(__name__)

DEFAULT_SLICE_COUNT = 10


@dataclass
class SimulationRequest:
    """A validated simulation request."""
    method: ExecutionMethod
    side: TradeSide
    quantity: Decimal
    slice_count: int
    tape: List[TapePoint] = field(default_factory=list)


@dataclass
class SimulationResult:
    """Everything one simulation produces."""
    request: SimulationRequest
    slices: List[Slice]
    fills: List[SimulatedFill]
    summary: SlippageSummary
    curve: List[SlippagePoint]


def parse_quantity(value: Any) -> Decimal:
    """Order quantity as a positive Decimal within the magnitude limit."""
    quantity = coerce_decimal(value)
    if quantity is None or not quantity.is_finite() or quantity <= 0:
        raise InvalidInputError(f"quantity must be > 0, got {value!r}")
    if not in_range(quantity):
        raise InvalidInputError(f"quantity out of range: {value!r}")
    return quantity


def parse_slice_count(value: Any, max_slices: Optional[int] = None) -> int:
    """
    Slice count as an int. Integral floats and numeric strings are accepted.

    Bounds are checked on the Decimal, before it becomes an int, so an
    exponent like "1e20000000" is rejected without being expanded.

    Raises:
        InvalidInputError: Not an integer
        InvalidSliceCountError: Fewer than 1 slice
        ComputeTimeoutError: More than max_slices (413)
    """
    if value is None:
        count = Decimal(DEFAULT_SLICE_COUNT)
    elif isinstance(value, bool):
        raise InvalidInputError(f"slices must be an integer, got {value!r}")
    else:
        count = coerce_decimal(value)
    if count is None or not count.is_finite() or count != count.to_integral_value():
        raise InvalidInputError(f"slices must be an integer, got {value!r}")
    if count < 1:
        raise InvalidSliceCountError(f"at least 1 slice is needed, got {value!r}")
    if max_slices is not None and count > max_slices:
        raise ComputeTimeoutError(
            f"{value!r} slices requested, limit is {max_slices}",
            size_exceeded=True,
        )
    if not in_range(count):
        raise InvalidInputError(f"slices out of range: {value!r}")
    return int(count)


class SimulationEngine:
    """
    Runs execution simulations.

    Holds only configuration; every call builds its own state, so one
    engine can serve concurrent requests.
    """

    def __init__(
        self,
        limits: Optional[SimulationLimits] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            limits: Row, slice and time bounds
            clock: Monotonic time source for deadlines
        """
        self.limits = limits or SimulationLimits()
        self._clock = clock

    def new_deadline(self) -> Deadline:
        return Deadline(self.limits.timeout_seconds, clock=self._clock)

    def build_request(
        self,
        method: Any = "TWAP",
        side: Any = "buy",
        quantity: Any = None,
        slices: Any = DEFAULT_SLICE_COUNT,
        order_book: Any = None,
    ) -> SimulationRequest:
        """
        Validate parameters and normalize the tape.

        Parameters are checked before the tape is touched.

        Raises:
            InvalidInputError, InvalidSliceCountError, ParseError,
            EmptyTapeError, ComputeTimeoutError
        """
        exec_method = ExecutionMethod.parse(method)
        trade_side = TradeSide.parse(side)
        qty = parse_quantity(quantity)

        if exec_method is ExecutionMethod.MARKET:
            slice_count = 1
        else:
            slice_count = parse_slice_count(slices, self.limits.max_slices)

        tape = self.normalize(order_book)

        return SimulationRequest(
            method=exec_method,
            side=trade_side,
            quantity=qty,
            slice_count=slice_count,
            tape=tape.points,
        )

    def normalize(self, order_book: Any) -> NormalizedTape:
        """Normalize raw tape input under the configured row limit."""
        return normalize_tape(order_book, max_rows=self.limits.max_rows)

    def run(self, request: SimulationRequest, deadline: Optional[Deadline] = None) -> SimulationResult:
        """
        Run the pipeline for a validated request.

        Returns:
            SimulationResult. No partial result is returned on failure.
        """
        deadline = deadline or self.new_deadline()

        benchmark = benchmark_price(request.tape)
        deadline.check("benchmark")

        slices = plan_slices(request.method, request.tape, request.quantity, request.slice_count)
        deadline.check("planning")

        fills = FillEngine(deadline).execute(slices, request.tape, request.method)
        summary = summarize(fills, request.quantity, request.side, benchmark)
        curve = build_slippage_curve(fills, request.side, benchmark, deadline)

        logger.info(
            "simulation_complete",
            method=request.method.value,
            side=request.side.value,
            quantity=str(request.quantity),
            tape_rows=len(request.tape),
            fills=summary.fill_count,
            avg_price=str(summary.avg_price),
            benchmark_price=str(summary.benchmark_price),
            slippage_bps=str(summary.slippage_bps),
        )

        return SimulationResult(
            request=request,
            slices=slices,
            fills=fills,
            summary=summary,
            curve=curve,
        )

    def simulate(
        self,
        method: Any = "TWAP",
        side: Any = "buy",
        quantity: Any = None,
        slices: Any = DEFAULT_SLICE_COUNT,
        order_book: Any = None,
    ) -> SimulationResult:
        """Validate, normalize and run in one call, all under one deadline."""
        deadline = self.new_deadline()
        request = self.build_request(method, side, quantity, slices, order_book)
        deadline.check("normalization")
        return self.run(request, deadline)
