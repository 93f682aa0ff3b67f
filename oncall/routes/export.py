# oncall/routes/export.py
"""
Monthly export routes - JSON grid and iCalendar feed.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from oncall.core.export import MonthExport, build_month_export, generate_ical
from oncall.core.services import Services, get_services

router = APIRouter(prefix="/api/export", tags=["export"])


def _require_month(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise HTTPException(status_code=422, detail=f"Invalid month: {month}")
    if not 1970 <= year <= 9999:
        raise HTTPException(status_code=422, detail=f"Invalid year: {year}")


def _document(services: Services):
    document = services.source.current
    if document is None:
        raise HTTPException(status_code=503, detail="Schedule data not loaded")
    return document


@router.get("/{year}/{month}.ics")
async def export_month_ical(year: int, month: int, services: Services = Depends(get_services)):
    _require_month(year, month)
    content = generate_ical(_document(services), services.overrides.current, year, month)
    filename = f"oncall_{year:04d}_{month:02d}.ics"
    return Response(
        content=content,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{year}/{month}", response_model=MonthExport)
async def export_month(year: int, month: int, services: Services = Depends(get_services)):
    _require_month(year, month)
    return build_month_export(_document(services), services.overrides.current, year, month)
