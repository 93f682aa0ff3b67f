# oncall/routes/history.py
"""
Historical lookup routes - frozen assignments, schedule versions and cleanup.
"""

import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from oncall.core.config import VERSION_HISTORY_LIMIT
from oncall.core.errors import SourceUnavailable
from oncall.core.services import Services, get_services
from oncall.core.time_utils import utc_now

router = APIRouter(prefix="/api/history", tags=["history"])


def _parse_date(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid date: {value}") from e


@router.get("/assignment/{date}/{layer}")
async def get_historical_assignment(date: str, layer: str, services: Services = Depends(get_services)):
    """
    Who was on call for `layer` on `date`. The first answer for a date is
    recorded and returned unchanged from then on.
    """
    day = _parse_date(date)
    record = await services.history.assignment_for_async(day, layer)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No schedule knows layer {layer} on {day}")
    return {"success": True, "data": record, "timestamp": utc_now().isoformat()}


@router.get("/schedule/{date}")
async def get_historical_schedule(date: str, services: Services = Depends(get_services)):
    day = _parse_date(date)
    try:
        data = await services.history.schedule_for_async(day)
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return {"success": True, "data": data, "timestamp": utc_now().isoformat()}


@router.get("/versions")
async def get_version_history(
    limit: int = Query(VERSION_HISTORY_LIMIT, ge=1, le=100),
    services: Services = Depends(get_services),
):
    versions = await services.history.version_history_async(limit)
    return {"success": True, "data": versions, "timestamp": utc_now().isoformat()}


@router.post("/create-version")
async def create_version(
    payload: dict[str, Any] | None = Body(None),
    services: Services = Depends(get_services),
):
    payload = payload or {}
    try:
        version = await services.history.create_version_async(
            payload.get("description") or "Manual version creation",
            payload.get("createdBy") or payload.get("created_by") or "user",
        )
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return {
        "success": True,
        "message": "Schedule version created successfully",
        "data": version.model_dump(exclude={"schedule_data"}),
        "timestamp": utc_now().isoformat(),
    }


@router.post("/cleanup")
async def cleanup_history(
    payload: dict[str, Any] | None = Body(None),
    services: Services = Depends(get_services),
):
    """Drop records older than the retention window (default from settings)."""
    payload = payload or {}
    months = payload.get("retentionMonths", payload.get("retention_months"))
    if months is None:
        months = services.settings.retention_months
    try:
        months = int(months)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail="retention_months must be an integer") from e
    if months < 1:
        raise HTTPException(status_code=422, detail="retention_months must be at least 1")

    result = await services.history.cleanup_async(months)
    return {
        "success": True,
        "message": f"Cleaned up records older than {months} months",
        "data": result,
        "timestamp": utc_now().isoformat(),
    }
