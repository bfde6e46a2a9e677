"""
Order slicing for simulated execution.

Partitions a parent order into child slices anchored on the tape:
- TWAP: equal slices spread evenly over the tape's time span
- VWAP: slices sized by the volume traded in equal-span time buckets
- MARKET: one slice at the first observation
"""

from bisect import bisect_left
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from structlog import get_logger

from .errors import EmptyTapeError, InvalidInputError, InvalidSliceCountError
from .tape import TapePoint

logger = get_logger(__name__)

ONE_MICROSECOND = timedelta(microseconds=1)


class ExecutionMethod(Enum):
    TWAP = "TWAP"
    VWAP = "VWAP"
    MARKET = "MARKET"

    @classmethod
    def parse(cls, value) -> "ExecutionMethod":
        """Case-insensitive lookup. Raises InvalidInputError for unknown methods."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidInputError(f"Unknown execution method: {value!r}") from None


@dataclass
class Slice:
    """
    A planned child order.

    Attributes:
        index: Position in the schedule
        anchor_time: Time the slice is scheduled for
        target_quantity: Quantity to execute
        anchor_index: Tape index the slice is anchored to
        bucket: Half-open (start, stop) tape index range for VWAP slices
    """
    index: int
    anchor_time: datetime
    target_quantity: Decimal
    anchor_index: int
    bucket: Optional[Tuple[int, int]] = None

    @property
    def is_empty_bucket(self) -> bool:
        return self.bucket is not None and self.bucket[0] >= self.bucket[1]


def _micros(delta: timedelta) -> int:
    return delta // ONE_MICROSECOND


def nearest_index(times: Sequence[datetime], target: datetime) -> int:
    """
    Index of the tape point closest in time to target.

    Ties go to the earlier point; among equal timestamps the first wins.
    """
    pos = bisect_left(times, target)
    if pos == 0:
        return 0
    if pos == len(times):
        return bisect_left(times, times[-1])

    before = times[pos - 1]
    after = times[pos]
    chosen = before if (target - before) <= (after - target) else after
    return bisect_left(times, chosen)


def _settle_residual(quantities: List[Decimal], quantity: Decimal) -> List[Decimal]:
    """Push the rounding residual onto the last non-zero slice so the sum is exact."""
    residual = quantity - sum(quantities)
    if residual:
        for i in range(len(quantities) - 1, -1, -1):
            if quantities[i] > 0:
                quantities[i] += residual
                break
    return quantities


def plan_twap(tape: Sequence[TapePoint], quantity: Decimal, slice_count: int) -> List[Slice]:
    """
    Equal slices anchored at evenly spaced time positions.

    Slice i targets position i / (slice_count - 1) of the span, so the first
    slice trades at the open and the last at the close.
    """
    times = [p.timestamp for p in tape]
    first = times[0]
    span = times[-1] - first

    quantities = _settle_residual([quantity / slice_count] * slice_count, quantity)

    slices = []
    for i in range(slice_count):
        if slice_count == 1:
            target = first
        else:
            target = first + span * i / (slice_count - 1)
        anchor = nearest_index(times, target)
        slices.append(Slice(
            index=i,
            anchor_time=tape[anchor].timestamp,
            target_quantity=quantities[i],
            anchor_index=anchor,
        ))
    return slices


def bucket_ranges(tape: Sequence[TapePoint], bucket_count: int) -> List[Tuple[int, int]]:
    """
    Split the tape into bucket_count contiguous, equal-span time buckets.

    A point at offset d from the first timestamp lands in bucket
    floor(d * bucket_count / span), with the final timestamp folded into
    the last bucket. Integer microsecond arithmetic keeps this exact.
    """
    first = tape[0].timestamp
    span_us = _micros(tape[-1].timestamp - first)

    assignments = []
    for point in tape:
        if span_us == 0:
            assignments.append(0)
        else:
            offset_us = _micros(point.timestamp - first)
            assignments.append(min(bucket_count - 1, offset_us * bucket_count // span_us))

    return [
        (bisect_left(assignments, b), bisect_left(assignments, b + 1))
        for b in range(bucket_count)
    ]


def plan_vwap(tape: Sequence[TapePoint], quantity: Decimal, slice_count: int) -> List[Slice]:
    """
    Slices proportional to the volume traded in each time bucket.

    Empty buckets get zero quantity; the non-empty buckets carry the whole
    order because weights are normalized over the total volume.
    """
    first = tape[0].timestamp
    span_us = _micros(tape[-1].timestamp - first)
    ranges = bucket_ranges(tape, slice_count)

    volumes = [sum((p.volume for p in tape[start:stop]), Decimal("0")) for start, stop in ranges]
    total_volume = sum(volumes, Decimal("0"))
    if total_volume <= 0:
        raise InvalidInputError("Tape has zero total volume")

    quantities = _settle_residual([quantity * v / total_volume for v in volumes], quantity)

    slices = []
    for i, (start, stop) in enumerate(ranges):
        # Empty buckets anchor on the last trade before them
        anchor = start if start < stop else max(start - 1, 0)
        slices.append(Slice(
            index=i,
            anchor_time=first + timedelta(microseconds=span_us * i // slice_count),
            target_quantity=quantities[i],
            anchor_index=anchor,
            bucket=(start, stop),
        ))
    return slices


def plan_market(tape: Sequence[TapePoint], quantity: Decimal, slice_count: int) -> List[Slice]:
    """Whole order at the first observation; slice_count is ignored."""
    return [Slice(index=0, anchor_time=tape[0].timestamp, target_quantity=quantity, anchor_index=0)]


PLANNERS: Dict[ExecutionMethod, Callable[[Sequence[TapePoint], Decimal, int], List[Slice]]] = {
    ExecutionMethod.TWAP: plan_twap,
    ExecutionMethod.VWAP: plan_vwap,
    ExecutionMethod.MARKET: plan_market,
}


def plan_slices(
    method: ExecutionMethod,
    tape: Sequence[TapePoint],
    quantity: Decimal,
    slice_count: int = 1,
) -> List[Slice]:
    """
    Plan the child slices for an order.

    Args:
        method: Execution method
        tape: Normalized tape, sorted by timestamp
        quantity: Total order quantity
        slice_count: Number of slices (TWAP/VWAP only)

    Returns:
        Slices in execution order

    Raises:
        InvalidSliceCountError: If slice_count < 1 for TWAP/VWAP
    """
    if not tape:
        raise EmptyTapeError("Cannot plan slices on an empty tape")
    if quantity <= 0:
        raise InvalidInputError(f"Quantity must be > 0, got {quantity}")
    if method is not ExecutionMethod.MARKET and slice_count < 1:
        raise InvalidSliceCountError(f"{method.value} needs at least 1 slice, got {slice_count}")

    slices = PLANNERS[method](tape, quantity, slice_count)

    logger.debug(
        "slices_planned",
        method=method.value,
        slices=len(slices),
        quantity=str(quantity),
    )
    return slices
