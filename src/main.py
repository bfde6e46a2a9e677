"""
Execution Simulation API

FastAPI application for simulating order execution against historical
tapes and reporting slippage against the tape VWAP.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
import structlog
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from execsim.engine import SimulationEngine
from execsim.errors import SimulationError
from execsim.limits import SimulationLimits
from execsim.planner import ExecutionMethod
from execsim.report import ReportGenerator, tape_records

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

# Prometheus metrics
SIMULATIONS = Counter("execution_simulations_total", "Total execution simulations", ["method", "status"])
SIMULATION_DURATION = Histogram("execution_simulation_duration_seconds", "Execution simulation duration")
TAPE_NORMALIZATIONS = Counter("tape_normalizations_total", "Total tape normalization requests", ["status"])
TAPE_ROWS = Histogram(
    "tape_rows_normalized",
    "Rows surviving tape normalization",
    buckets=(10, 100, 1000, 10000, 100000, float("inf")),
)

limits = SimulationLimits.from_env()
engine = SimulationEngine(limits)
reports = ReportGenerator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "execution_sim_service_starting",
        max_rows=limits.max_rows,
        max_slices=limits.max_slices,
        timeout_seconds=limits.timeout_seconds,
    )
    yield
    logger.info("execution_sim_service_stopping")


app = FastAPI(
    title="Execution Simulation API",
    description="TWAP/VWAP/market execution simulation and slippage analytics",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request Models

class SimulateRequest(BaseModel):
    """Request for an execution simulation."""
    model_config = ConfigDict(populate_by_name=True)

    method: str = "TWAP"
    side: str = "buy"
    quantity: Optional[Union[float, str]] = None
    slices: Optional[Union[int, float, str]] = 10
    order_book: Optional[Union[List[Any], Dict[str, Any], str]] = Field(
        default=None,
        alias="orderBook",
        description=(
            "Rows of {t, price, volume}, an object wrapping them under "
            "data/rows, or raw CSV/JSON text"
        ),
    )


def _error_detail(error: SimulationError) -> dict:
    return {"error": type(error).__name__, "message": str(error)}


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "execution-sim"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/execution/simulate")
@app.post("/api/v1/execution/simulate")
def simulate_execution(request: SimulateRequest, format: str = "json"):
    """
    Simulate executing an order against a historical tape.

    Returns per-slice fills, the slippage summary versus the tape VWAP,
    and the cumulative slippage curve.

    Args:
        format: Response format (json, csv)
    """
    if format not in ("json", "csv"):
        raise HTTPException(status_code=400, detail=f"Unknown format: {format}")

    method_label = str(request.method).strip().upper()
    if method_label not in ExecutionMethod.__members__:
        method_label = "UNKNOWN"

    start_time = time.perf_counter()

    try:
        result = engine.simulate(
            method=request.method,
            side=request.side,
            quantity=request.quantity,
            slices=request.slices,
            order_book=request.order_book,
        )
    except SimulationError as e:
        SIMULATIONS.labels(method=method_label, status=type(e).__name__).inc()
        logger.warning(
            "execution_simulation_rejected",
            method=method_label,
            error=type(e).__name__,
            message=str(e),
        )
        raise HTTPException(status_code=e.status_code, detail=_error_detail(e))
    except Exception as e:
        SIMULATIONS.labels(method=method_label, status="error").inc()
        logger.error("execution_simulation_failed", method=method_label, error=str(e))
        raise HTTPException(status_code=500, detail="Simulation failed")

    SIMULATION_DURATION.observe(time.perf_counter() - start_time)
    SIMULATIONS.labels(method=method_label, status="success").inc()

    report = reports.generate(result)

    if format == "csv":
        return Response(reports.render_csv(report), media_type="text/csv")
    return report.to_response_dict()


@app.post("/execution/tape/normalize")
@app.post("/api/v1/execution/tape/normalize")
async def normalize_order_book(request: Request):
    """
    Normalize an uploaded order book (CSV, TSV or JSON body).

    The returned orderBook can be posted back to the simulate endpoint.
    """
    body = await request.body()

    try:
        tape = await run_in_threadpool(engine.normalize, body)
    except SimulationError as e:
        TAPE_NORMALIZATIONS.labels(status=type(e).__name__).inc()
        logger.warning("tape_normalization_rejected", error=type(e).__name__, message=str(e))
        raise HTTPException(status_code=e.status_code, detail=_error_detail(e))

    TAPE_NORMALIZATIONS.labels(status="success").inc()
    TAPE_ROWS.observe(len(tape))

    return {
        "rows": len(tape),
        "dropped": tape.dropped,
        "repaired": tape.repaired,
        "columns": tape.columns.to_dict(),
        "orderBook": tape_records(tape.points),
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8003"))
    uvicorn.run(app, host="0.0.0.0", port=port)
