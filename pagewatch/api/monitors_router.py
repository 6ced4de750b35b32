"""Monitor check API router - on-demand checks, selector suggestions and scheduler status."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from ..core.exceptions import MonitorNotFoundError, SuggestionError
from ..core.types import UsageKind


router = APIRouter()


def _engine(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not ready")
    return engine


@router.post("/monitors/{monitor_id}/check")
async def check_monitor_now(monitor_id: int, request: Request):
    """Run the check pipeline for one monitor immediately."""
    try:
        result = await _engine(request).check_now(monitor_id)
    except MonitorNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return result.to_dict()


@router.get("/monitors/{monitor_id}/suggestions")
async def suggest_monitor_selectors(
    monitor_id: int,
    request: Request,
    expected_text: Optional[str] = Query(default=None, max_length=500),
):
    """Suggest alternative selectors for a monitor's page."""
    try:
        report = await _engine(request).suggest_selectors(monitor_id, expected_text)
    except MonitorNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SuggestionError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return report.to_dict()


@router.get("/scheduler/status")
async def get_scheduler_status(request: Request):
    return _engine(request).scheduler.get_status()


@router.get("/usage")
async def get_usage(
    request: Request,
    kind: Optional[UsageKind] = None,
    days: int = Query(default=30, ge=1, le=365),
):
    """Aggregated render/email usage for the last `days` days."""
    engine = _engine(request)
    since = engine.quota.clock() - timedelta(days=days)
    summary = await engine.quota.usage_since(since, kind)
    return {
        "since": since.isoformat(),
        "kind": kind.value if kind else None,
        "total": summary.total,
        "successes": summary.successes,
        "failures": summary.failures,
        "top_consumers": [
            {"user_id": user_id, "count": count} for user_id, count in summary.top_consumers(10)
        ],
    }
