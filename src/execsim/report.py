"""
Simulation report rendering.

Produces the API response body, a per-slice CSV export, and lossless
CSV/JSON serializations of normalized tapes.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import csv
import io
import json

from structlog import get_logger

from .engine import SimulationResult
from .tape import TapePoint, format_timestamp

logger = get_logger(__name__)

SLICE_COLUMNS = ["t", "qty", "price", "cost", "cumCost"]


@dataclass
class SimulationReport:
    """
    Formatted simulation output.

    Numbers are rendered as floats, times as ISO 8601 UTC strings.
    """
    result: SimulationResult

    def to_summary_dict(self) -> Dict[str, Any]:
        s = self.result.summary
        return {
            "avgPrice": float(s.avg_price),
            "benchmarkPrice": float(s.benchmark_price),
            "slippageBps": float(s.slippage_bps),
            "totalQty": float(s.total_quantity),
            "totalCost": float(s.total_cost),
            "benchmarkCost": float(s.benchmark_cost),
            "slippageUsd": float(s.slippage_usd),
            "fills": s.fill_count,
        }

    def to_slices_list(self) -> List[Dict[str, Any]]:
        return [
            {
                "t": format_timestamp(f.time),
                "qty": float(f.quantity),
                "price": float(f.price),
                "cost": float(f.cost),
                "cumCost": float(f.cumulative_cost),
            }
            for f in self.result.fills
        ]

    def to_curve_list(self) -> List[Dict[str, Any]]:
        return [
            {
                "t": format_timestamp(p.time),
                "cumSlippageUsd": float(p.cumulative_slippage_usd),
                "cumSlippagePct": float(p.cumulative_slippage_pct),
            }
            for p in self.result.curve
        ]

    def to_response_dict(self) -> Dict[str, Any]:
        """Full API response body."""
        request = self.result.request
        return {
            "method": request.method.value,
            "side": request.side.value,
            "quantity": float(request.quantity),
            "summary": self.to_summary_dict(),
            "perSlice": self.to_slices_list(),
            "slippageCurve": self.to_curve_list(),
        }


class ReportGenerator:
    """
    Generates reports in various formats.
    """

    def generate(self, result: SimulationResult) -> SimulationReport:
        return SimulationReport(result=result)

    def render_csv(self, report: SimulationReport) -> str:
        """Per-slice fills as CSV text."""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=SLICE_COLUMNS, lineterminator="\n")
        writer.writeheader()
        rows = report.to_slices_list()
        writer.writerows(rows)
        logger.debug("report_rendered_csv", rows=len(rows))
        return buffer.getvalue()


def tape_records(points: Sequence[TapePoint]) -> List[Dict[str, Any]]:
    """Tape points as order book rows with float prices and volumes."""
    return [
        {"t": format_timestamp(p.timestamp), "price": float(p.price), "volume": float(p.volume)}
        for p in points
    ]


def tape_to_csv(points: Sequence[TapePoint], delimiter: str = ",") -> str:
    """Serialize a tape as delimited text with a t,price,volume header."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(["t", "price", "volume"])
    for point in points:
        row = point.to_dict()
        writer.writerow([row["t"], row["price"], row["volume"]])
    return buffer.getvalue()


def tape_to_json(points: Sequence[TapePoint], wrapper: Optional[str] = None) -> str:
    """
    Serialize a tape as JSON.

    Args:
        points: Tape points
        wrapper: Wrap the array under this key ("data" or "rows")
    """
    rows = [p.to_dict() for p in points]
    payload: Any = {wrapper: rows} if wrapper else rows
    return json.dumps(payload)
