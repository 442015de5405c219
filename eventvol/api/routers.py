"""Internal API routers — volatility, impact, straddle and backtest endpoints.

No business logic, no DB access. Delegates to the analysis service and the
backtest repo; every computation runs on the service's worker pool.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from eventvol.errors import (
    EventVolError,
    InsufficientDataError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from eventvol.risk.straddle_params import StraddleMode

logger = logging.getLogger("eventvol.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_service = None        # Set via configure_routers()
_backtest_repo = None  # Set via configure_routers()

_STATUS_BY_ERROR: list[tuple[type, int]] = [
    (NotFoundError, 404),
    (ValidationError, 422),
    (InsufficientDataError, 422),
    (StorageError, 503),
]


def configure_routers(service, backtest_repo=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        service: An ``AnalysisService`` instance (or duck-type for tests).
        backtest_repo: A ``BacktestRepo`` for persisting run summaries.
    """
    global _service, _backtest_repo  # noqa: PLW0603
    _service = service
    _backtest_repo = backtest_repo


def _error(exc: EventVolError) -> JSONResponse:
    for exc_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, exc_type):
            return JSONResponse(status_code=status, content={"error": str(exc)})
    return JSONResponse(status_code=500, content={"error": str(exc)})


def _unavailable() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Analysis service not configured"})


async def _call(fn, *args, **kwargs):
    """Run a service operation off the event loop, mapping domain errors."""
    try:
        result = await _service.run_blocking(fn, *args, **kwargs)
    except EventVolError as exc:
        logger.info("Request failed: %s", exc)
        return _error(exc)
    return result.to_dict()


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/volatility")
async def get_volatility(
    symbol: str,
    event_time: datetime,
    window_minutes: Optional[int] = Query(default=None, ge=1, le=720),
    baseline_days: Optional[int] = Query(default=None, ge=1, le=365),
):
    """Event-window vs. same-hour baseline volatility around *event_time*."""
    if _service is None:
        return _unavailable()
    return await _call(
        _service.volatility_metrics, symbol, event_time, window_minutes, baseline_days,
    )


@router.get("/impact-profile")
async def get_impact_profile(
    symbol: str,
    event_type: str,
    calendar_id: Optional[int] = Query(default=None),
):
    """Averaged minute-by-minute profile of an event type."""
    if _service is None:
        return _unavailable()
    return await _call(_service.impact_profile, symbol, event_type, calendar_id)


@router.get("/straddle-parameters")
async def get_straddle_parameters(
    symbol: str,
    event_type: str,
    mode: str = Query(default="simultaneous"),
    calendar_id: Optional[int] = Query(default=None),
):
    """Offset, stop loss, trailing stop and timeout for an event type."""
    if _service is None:
        return _unavailable()
    try:
        parsed = StraddleMode.parse(mode)
    except ValidationError as exc:
        return _error(exc)
    return await _call(
        _service.straddle_parameters, symbol, event_type, parsed, calendar_id,
    )


@router.get("/decay-profile")
async def get_decay_profile(
    symbol: str,
    event_type: str,
    calendar_id: Optional[int] = Query(default=None),
):
    """Peak timing and decay speed of the post-event volatility."""
    if _service is None:
        return _unavailable()
    return await _call(_service.decay_profile, symbol, event_type, calendar_id)


@router.post("/backtest")
async def post_backtest(body: dict):
    """Replay the straddle over every occurrence of an event type.

    Body: ``{"symbol", "event_type", "mode"?, "parameters"?,
    "take_profit_pips"?, "calendar_id"?}``.  The run summary is stored
    when a backtest repo is configured.
    """
    if _service is None:
        return _unavailable()
    symbol = body.get("symbol")
    event_type = body.get("event_type")
    if not symbol or not event_type:
        return JSONResponse(
            status_code=422, content={"error": "symbol and event_type are required"},
        )
    try:
        mode = StraddleMode.parse(body.get("mode", "simultaneous"))
    except ValidationError as exc:
        return _error(exc)

    try:
        result = await _service.run_blocking(
            _service.backtest,
            symbol,
            event_type,
            mode,
            body.get("parameters"),
            body.get("take_profit_pips"),
            body.get("calendar_id"),
        )
        run_id = None
        if _backtest_repo is not None:
            run_id = await _service.run_blocking(
                _backtest_repo.insert_run,
                result.symbol, result.event_type, mode.value, result.stats,
            )
    except EventVolError as exc:
        logger.info("Backtest failed: %s", exc)
        return _error(exc)
    return {"run_id": run_id, **result.to_dict()}


@router.post("/heatmap")
async def post_heatmap(body: dict):
    """Event type × symbol volatility grid.

    Body: ``{"symbols": [...], "calendar_id"?, "impacts"?}``.
    """
    if _service is None:
        return _unavailable()
    symbols = body.get("symbols") or []
    impacts = body.get("impacts") or ["HIGH", "MEDIUM"]
    return await _call(_service.heatmap, symbols, body.get("calendar_id"), impacts)


@router.get("/event-types")
async def get_event_types(
    calendar_id: Optional[int] = Query(default=None),
    impact: Optional[list[str]] = Query(default=None),
):
    """Distinct event types with occurrence counts."""
    if _service is None:
        return {"event_types": []}
    try:
        types = await _service.run_blocking(_service.event_types, calendar_id, impact)
    except EventVolError as exc:
        return _error(exc)
    return {"event_types": types}


@router.get("/backtest/runs")
async def get_backtest_runs(limit: int = Query(default=10, ge=1, le=100)):
    """Recent persisted backtest summaries."""
    if _backtest_repo is None:
        return {"runs": []}
    try:
        runs = _backtest_repo.get_runs(limit=limit)
    except EventVolError as exc:
        return _error(exc)
    return {"runs": runs}
