"""
Execution Simulation & Slippage Analytics Engine

This module provides:
1. Tape normalization from CSV/TSV/JSON order book data
2. TWAP, VWAP and market-order slicing with simulated fills
3. Benchmark-relative slippage summaries and cumulative slippage curves
"""

from .errors import (
    SimulationError,
    ParseError,
    EmptyTapeError,
    InvalidInputError,
    InvalidSliceCountError,
    ComputeTimeoutError,
)
from .tape import TapePoint, ColumnMapping, NormalizedTape, normalize_tape, normalize_rows
from .planner import ExecutionMethod, Slice, plan_slices
from .simulator import FillEngine, SimulatedFill
from .slippage import TradeSide, SlippageSummary, SlippagePoint, benchmark_price, summarize, build_slippage_curve
from .limits import SimulationLimits, Deadline
from .engine import SimulationEngine, SimulationRequest, SimulationResult
from .report import SimulationReport, ReportGenerator, tape_to_csv, tape_to_json

__version__ = "1.0.0"
__all__ = [
    "SimulationError",
    "ParseError",
    "EmptyTapeError",
    "InvalidInputError",
    "InvalidSliceCountError",
    "ComputeTimeoutError",
    "TapePoint",
    "ColumnMapping",
    "NormalizedTape",
    "normalize_tape",
    "normalize_rows",
    "ExecutionMethod",
    "Slice",
    "plan_slices",
    "FillEngine",
    "SimulatedFill",
    "TradeSide",
    "SlippageSummary",
    "SlippagePoint",
    "benchmark_price",
    "summarize",
    "build_slippage_curve",
    "SimulationLimits",
    "Deadline",
    "SimulationEngine",
    "SimulationRequest",
    "SimulationResult",
    "SimulationReport",
    "ReportGenerator",
    "tape_to_csv",
    "tape_to_json",
]
