# oncall/routes/status.py
"""
Scheduler control routes - status, start/stop, reload and test notifications.
"""

import asyncio
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from oncall.core.errors import DispatchFailure, SourceUnavailable
from oncall.core.logging_config import get_logger
from oncall.core.services import Services, get_services
from oncall.core.time_utils import parse_instant, utc_now

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["scheduler"])


def _envelope(data: Any = None, message: str | None = None, success: bool = True) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success, "timestamp": utc_now().isoformat()}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


@router.get("/status")
async def get_status(services: Services = Depends(get_services)):
    return _envelope(services.scheduler.status())


@router.get("/debug/current")
async def debug_current(now: str | None = None, services: Services = Depends(get_services)):
    """
    Who is on call at `now` (default: the current time), when the shift
    ends and who comes next. Sends nothing.
    """
    try:
        instant = parse_instant(now) if now else utc_now()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid timestamp: {now}") from e

    if services.source.current is None:
        raise HTTPException(status_code=503, detail="Schedule data not loaded")

    current = services.scheduler.current_assignment(instant)
    if current is None:
        return _envelope({"active": None, "message": "No active layer at this time"})
    return _envelope(current)


@router.post("/start")
async def start_scheduler(services: Services = Depends(get_services)):
    try:
        await services.scheduler.start()
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Failed to start shift scheduler: {e}") from e
    return _envelope(services.scheduler.status(), "Shift scheduler started successfully")


@router.post("/stop")
async def stop_scheduler(services: Services = Depends(get_services)):
    await services.scheduler.stop()
    return _envelope(services.scheduler.status(), "Shift scheduler stopped successfully")


@router.post("/schedule/reload")
async def reload_schedule(services: Services = Depends(get_services)):
    """Reload the schedule file, cut a version if it changed and re-arm timers."""
    try:
        document = services.source.reload()
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    version = await asyncio.to_thread(services.history.check_for_schedule_changes)
    if services.scheduler.is_running:
        services.scheduler.tick()
    return _envelope(
        {
            "layers": [layer.key for layer in document.layers()],
            "rejected": list(document.rejected),
            "version": version.version_name if version else None,
        },
        "Schedule reloaded",
    )


@router.post("/test-slack")
async def test_slack(services: Services = Depends(get_services)):
    result = await services.dispatcher.test_connection()
    return _envelope(
        message="Slack connection successful" if result else "Slack connection failed",
        success=result,
    )


@router.post("/send-test-notification")
async def send_test_notification(services: Services = Depends(get_services)):
    """Send the notification for the shift that is active right now."""
    scheduler = services.scheduler
    if services.source.current is None:
        raise HTTPException(status_code=503, detail="Schedule data not loaded")

    now = scheduler.clock()
    layer = scheduler.active_layer_at(now)
    if layer is None:
        raise HTTPException(status_code=404, detail="No active shift found")

    transition = scheduler.build_transition(layer, scheduler.current_shift_start(layer, now))
    try:
        await services.dispatcher.dispatch(transition)
    except DispatchFailure as e:
        logger.error(f"Test notification failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to send notification: {e}") from e

    return _envelope(
        {"layer_key": layer.key, "shift_name": layer.name, "current_time": now.isoformat()},
        "Current on-call notification sent successfully",
    )


@router.post("/sync-overrides")
async def sync_overrides(
    payload: dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    """
    Replace the override file with `payload["overrides"]` and store each
    month as a monthly override set in the ledger.
    """
    overrides = payload.get("overrides") or {}
    if not isinstance(overrides, dict):
        raise HTTPException(status_code=422, detail="overrides must be an object")

    store = services.overrides.save(overrides)
    stored = await services.history.store_overrides_async(store)
    return _envelope({"entries": len(store), "months": sorted(stored)}, "Overrides synced successfully")
