"""
Simulated execution of planned slices against the tape.

Each slice is priced on the tape and folded into a running cost total.
The fold is strictly sequential: a fill's cumulative cost is only
meaningful relative to the fill before it.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from structlog import get_logger

from .limits import Deadline
from .planner import ExecutionMethod, Slice
from .tape import TapePoint

logger = get_logger(__name__)


@dataclass
class SimulatedFill:
    """
    One executed slice.

    Costs are unsigned cash-flow magnitudes for either side; the side-aware
    comparison against the benchmark happens in the slippage module.
    """
    index: int
    time: datetime
    quantity: Decimal
    price: Decimal
    cost: Decimal
    cumulative_cost: Decimal


def bucket_vwap(points: Sequence[TapePoint]) -> Decimal:
    """Volume-weighted average price of a run of tape points."""
    if len(points) == 1:
        return points[0].price
    total_volume = sum((p.volume for p in points), Decimal("0"))
    total_value = sum((p.notional for p in points), Decimal("0"))
    return total_value / total_volume


class FillEngine:
    """
    Resolves planned slices into fills.

    TWAP and MARKET slices trade at the anchor point's price. VWAP slices
    trade at the volume-weighted price of their bucket; an empty bucket
    carries zero quantity and takes the anchor price.
    """

    def __init__(self, deadline: Optional[Deadline] = None):
        """
        Args:
            deadline: Budget checked before every slice
        """
        self.deadline = deadline

    def price_slice(
        self,
        slice_: Slice,
        tape: Sequence[TapePoint],
        method: ExecutionMethod,
    ) -> Decimal:
        """Execution price for a single slice."""
        if method is ExecutionMethod.VWAP and slice_.bucket is not None and not slice_.is_empty_bucket:
            start, stop = slice_.bucket
            return bucket_vwap(tape[start:stop])
        return tape[slice_.anchor_index].price

    def execute(
        self,
        slices: Sequence[Slice],
        tape: Sequence[TapePoint],
        method: ExecutionMethod,
    ) -> List[SimulatedFill]:
        """
        Execute slices in order.

        Args:
            slices: Planned slices
            tape: Normalized tape the slices were planned on
            method: Execution method the slices came from

        Returns:
            One fill per slice, cumulative cost threaded through
        """
        fills: List[SimulatedFill] = []
        cumulative_cost = Decimal("0")

        for slice_ in slices:
            if self.deadline:
                self.deadline.check("fill")

            price = self.price_slice(slice_, tape, method)
            cost = slice_.target_quantity * price
            cumulative_cost += cost

            if method is ExecutionMethod.VWAP:
                fill_time = slice_.anchor_time
            else:
                fill_time = tape[slice_.anchor_index].timestamp

            fills.append(SimulatedFill(
                index=slice_.index,
                time=fill_time,
                quantity=slice_.target_quantity,
                price=price,
                cost=cost,
                cumulative_cost=cumulative_cost,
            ))

        logger.debug(
            "slices_filled",
            method=method.value,
            fills=len(fills),
            total_cost=str(cumulative_cost),
        )
        return fills
