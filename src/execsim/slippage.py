"""
Benchmark, slippage summary and cumulative slippage curve.

Sign convention: a positive slippage always means the trade cost the
trader more than the benchmark implied. For a BUY that is paying above the
benchmark, for a SELL receiving below it.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from structlog import get_logger

from .errors import EmptyTapeError, InvalidInputError
from .limits import Deadline
from .simulator import SimulatedFill
from .tape import TapePoint

logger = get_logger(__name__)

BPS_FACTOR = Decimal("10000")
CURVE_EPSILON = Decimal("1e-12")


class TradeSide(Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        """+1 for BUY, -1 for SELL."""
        return 1 if self is TradeSide.BUY else -1

    @classmethod
    def parse(cls, value) -> "TradeSide":
        """Case-insensitive lookup. Raises InvalidInputError for unknown sides."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInputError(f"Unknown side: {value!r}") from None


def benchmark_price(tape: Sequence[TapePoint]) -> Decimal:
    """
    Volume-weighted average price of the whole tape.

    This is the fixed yardstick every execution method is judged against.
    """
    if not tape:
        raise EmptyTapeError("Cannot compute a benchmark on an empty tape")

    total_volume = sum((p.volume for p in tape), Decimal("0"))
    if total_volume <= 0:
        raise InvalidInputError("Tape has zero total volume")

    return sum((p.notional for p in tape), Decimal("0")) / total_volume


@dataclass
class SlippageSummary:
    """
    Aggregate execution quality.

    Attributes:
        avg_price: Total cost over order quantity
        benchmark_price: Tape VWAP
        slippage_bps: Signed slippage in basis points
        total_quantity: Sum of executed quantities
        total_cost: Cumulative cost of the last fill
        benchmark_cost: Quantity valued at the benchmark
        slippage_usd: Signed slippage in cash terms
        fill_count: Number of fills
    """
    avg_price: Decimal
    benchmark_price: Decimal
    slippage_bps: Decimal
    total_quantity: Decimal
    total_cost: Decimal
    benchmark_cost: Decimal
    slippage_usd: Decimal
    fill_count: int


def summarize(
    fills: Sequence[SimulatedFill],
    quantity: Decimal,
    side: TradeSide,
    benchmark: Decimal,
) -> SlippageSummary:
    """
    Reduce fills into summary statistics.

    Args:
        fills: Fills in execution order
        quantity: Parent order quantity
        side: BUY or SELL
        benchmark: Benchmark price

    Returns:
        SlippageSummary
    """
    if not fills:
        raise InvalidInputError("No fills to summarize")
    if quantity <= 0:
        raise InvalidInputError(f"Quantity must be > 0, got {quantity}")

    total_cost = fills[-1].cumulative_cost
    avg_price = total_cost / quantity

    if side == TradeSide.BUY:
        slippage_abs = avg_price - benchmark
    else:
        slippage_abs = benchmark - avg_price  # Selling below the benchmark is adverse

    slippage_bps = (slippage_abs / benchmark) * BPS_FACTOR if benchmark > 0 else Decimal("0")

    benchmark_cost = quantity * benchmark

    return SlippageSummary(
        avg_price=avg_price,
        benchmark_price=benchmark,
        slippage_bps=slippage_bps,
        total_quantity=sum((f.quantity for f in fills), Decimal("0")),
        total_cost=total_cost,
        benchmark_cost=benchmark_cost,
        slippage_usd=side.sign * (total_cost - benchmark_cost),
        fill_count=len(fills),
    )


@dataclass
class SlippagePoint:
    """Cumulative slippage after a fill."""
    time: datetime
    cumulative_slippage_usd: Decimal
    cumulative_slippage_pct: Decimal


def build_slippage_curve(
    fills: Sequence[SimulatedFill],
    side: TradeSide,
    benchmark: Decimal,
    deadline: Optional[Deadline] = None,
) -> List[SlippagePoint]:
    """
    Cumulative slippage series, one point per fill.

    The benchmark cost is accrued alongside quantity so every point compares
    what was paid so far with what the same quantity would have cost at the
    benchmark.
    """
    curve: List[SlippagePoint] = []
    cum_qty = Decimal("0")
    cum_cost = Decimal("0")
    cum_bench_cost = Decimal("0")

    for fill in fills:
        if deadline:
            deadline.check("slippage_curve")

        cum_qty += fill.quantity
        cum_cost += fill.cost
        cum_bench_cost += fill.quantity * benchmark

        slippage_usd = side.sign * (cum_cost - cum_bench_cost)
        notional = max(CURVE_EPSILON, cum_qty * benchmark)

        curve.append(SlippagePoint(
            time=fill.time,
            cumulative_slippage_usd=slippage_usd,
            cumulative_slippage_pct=slippage_usd / notional,
        ))

    return curve
