"""Månadsexport av jourschemat: tabell per dag och iCal-fil."""

import calendar
import datetime

from icalendar import Calendar, Event
from pydantic import BaseModel

from oncall.core.errors import ConfigurationError
from oncall.core.models import Layer, LayerKind, ScheduleDocument
from oncall.core.rotation import OverrideStore, assign, instant_for_date, shift_end, shift_start_on
from oncall.core.time_utils import is_weekend_day


class LayerSummary(BaseModel):
    key: str
    name: str
    window: str
    rotation_period_days: int
    members: list[str]


class ExportRow(BaseModel):
    date: datetime.date
    day: str
    assignments: dict[str, str | None]


class MonthExport(BaseModel):
    month: str
    headers: list[str]
    rows: list[ExportRow]
    layers: list[LayerSummary]


def _month_days(year: int, month: int) -> list[datetime.date]:
    last_day = calendar.monthrange(year, month)[1]
    return [datetime.date(year, month, day) for day in range(1, last_day + 1)]


def _applies_on(layer: Layer, day: datetime.date) -> bool:
    """Vardagslager gäller måndag-fredag, helglager lördag-söndag, dagliga alla dagar."""
    if layer.kind is LayerKind.DAILY:
        return True
    return is_weekend_day(day) == (layer.kind is LayerKind.WEEKEND)


def _ordered_layers(document: ScheduleDocument) -> list[Layer]:
    # Samma kolumnordning som schemafilen: vardag först, sedan helg
    return [*document.weekday, *document.weekend]


def build_month_export(
    document: ScheduleDocument,
    overrides: OverrideStore,
    year: int,
    month: int,
) -> MonthExport:
    """
    Bygger en tabell med vem som har jour per dag och lager.

    Lager som inte gäller en viss dag (vardagslager på helgen och tvärtom)
    lämnas tomma (None).
    """
    layers = _ordered_layers(document)
    rows = []
    for day in _month_days(year, month):
        assignments: dict[str, str | None] = {}
        for layer in layers:
            if not _applies_on(layer, day):
                assignments[layer.key] = None
                continue
            try:
                assignments[layer.key] = assign(layer, instant_for_date(layer, day), overrides).person
            except ConfigurationError:
                assignments[layer.key] = None
        rows.append(ExportRow(date=day, day=day.strftime("%a"), assignments=assignments))

    return MonthExport(
        month=f"{year:04d}-{month:02d}",
        headers=["Date", "Day", *(layer.name for layer in layers)],
        rows=rows,
        layers=[
            LayerSummary(
                key=layer.key,
                name=layer.name,
                window=f"{layer.start_clock:%H:%M} - {layer.end_clock:%H:%M}",
                rotation_period_days=layer.rotation_period_days,
                members=list(layer.members),
            )
            for layer in layers
        ],
    )


def _occurrence_days(layer: Layer, days: list[datetime.date]) -> list[datetime.date]:
    if layer.kind is LayerKind.WEEKEND:
        anchor = layer.start_time.weekday()
        return [day for day in days if day.weekday() == anchor]
    return [day for day in days if _applies_on(layer, day)]


def generate_ical(
    document: ScheduleDocument,
    overrides: OverrideStore,
    year: int,
    month: int,
) -> str:
    """
    Genererar en iCal-fil med ett VEVENT per lagerförekomst i månaden.

    Returns:
        iCal-formaterad sträng
    """
    cal = Calendar()
    cal.add("prodid", "-//On-call Schedule//oncall-scheduler//")
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    cal.add("x-wr-calname", f"On-call {year:04d}-{month:02d}")

    days = _month_days(year, month)
    for layer in _ordered_layers(document):
        for day in _occurrence_days(layer, days):
            start = shift_start_on(layer, day)
            try:
                assignment = assign(layer, start, overrides)
            except ConfigurationError:
                continue
            cal.add_component(_create_shift_event(layer, start, assignment.person, assignment.is_override))

    return cal.to_ical().decode("utf-8")


def _create_shift_event(layer: Layer, start: datetime.datetime, person: str, is_override: bool) -> Event:
    event = Event()
    event.add("summary", f"{layer.name}: {person}")
    event.add("uid", f"{start.date().isoformat()}_{layer.key}@oncall-scheduler")
    event.add("dtstart", start)
    event.add("dtend", shift_end(layer, start))

    description = [f"Layer: {layer.key}", f"On call: {person}"]
    if is_override:
        description.append("Manual override")
    event.add("description", "\n".join(description))
    event.add("dtstamp", datetime.datetime.now(datetime.timezone.utc))
    return event
