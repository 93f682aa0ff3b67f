"""Rotationsberäkning: vem har jouren för ett lager vid en given tidpunkt."""

import datetime
import logging

from oncall.core.errors import ConfigurationError
from oncall.core.models import Assignment, Layer, LayerKind
from oncall.core.rotation.overrides import OverrideStore
from oncall.core.time_utils import at_clock, clock_minutes, ensure_aware

logger = logging.getLogger(__name__)


def date_key(layer: Layer, instant: datetime.datetime) -> datetime.date:
    """Kalenderdatum för `instant` i lagrets egen UTC-offset."""
    return ensure_aware(instant).astimezone(layer.tz).date()


def instant_for_date(layer: Layer, day: datetime.date) -> datetime.datetime:
    """Lagrets starttid på det lokala datumet `day`."""
    return at_clock(day, layer.start_clock, layer.tz)


def rotation_cycle(days_since_start: int, rotation_period_days: int) -> int:
    """
    Antal hela rotationsperioder som har passerat.

    Dagar före lagrets start (days_since_start <= 0) ger cykel 0, precis som
    första dagen. Det betyder att "före start" och "första dagen" inte går att
    skilja åt här.
    """
    if days_since_start <= 0:
        return 0
    return (days_since_start - 1) // rotation_period_days


def assign(layer: Layer, instant: datetime.datetime, overrides: OverrideStore | None = None) -> Assignment:
    """
    Bestämmer vem som har jouren för ett lager vid en tidpunkt.

    Args:
        layer: Lagret som ska utvärderas
        instant: Tidpunkt (tidszonsmedveten; naiv tolkas som UTC)
        overrides: Manuella överstyrningar

    Returns:
        Assignment med person, is_override och eventuell anledning

    Raises:
        ConfigurationError: om lagret saknar medlemmar
    """
    if not layer.members:
        raise ConfigurationError("layer has no members", layer.key)

    day = date_key(layer, instant)

    if overrides is not None:
        override = overrides.lookup(day, layer.key)
        if override is not None:
            logger.debug("Override for %s %s: %s", day, layer.key, override.person)
            return Assignment(person=override.person, is_override=True, reason=override.reason)

    if layer.rotation_period_days == 0:
        return Assignment(person=layer.members[0])

    days_since_start = layer.kind.days_since_start(layer.start_date, day)
    cycle = rotation_cycle(days_since_start, layer.rotation_period_days)
    index = cycle % len(layer.members)

    logger.debug(
        "Rotation %s on %s: days=%d cycle=%d index=%d person=%s",
        layer.key,
        day,
        days_since_start,
        cycle,
        index,
        layer.members[index],
    )
    return Assignment(person=layer.members[index])


def _weekend_window_start(layer: Layer, local: datetime.datetime) -> datetime.datetime:
    """Senaste start (ankarveckodag + starttid) som ligger på eller före `local`."""
    anchor_weekday = layer.start_time.weekday()
    days_back = (local.weekday() - anchor_weekday) % 7
    start = at_clock(local.date() - datetime.timedelta(days=days_back), layer.start_clock, layer.tz)
    if start > local:
        start -= datetime.timedelta(days=7)
    return start


def is_within_window(layer: Layer, instant: datetime.datetime) -> bool:
    """
    Är lagret aktivt vid `instant`?

    Helglager: det avgränsade intervallet från ankarveckodagen (normalt lördag)
    vid starttid och `layer.duration` framåt, t.ex. lör 09:30 till mån 09:30.

    Vardagslager: klockfönstret [start, slut) i lagrets offset. Fönster över
    midnatt (slut < start) är aktiva när tiden är >= start ELLER < slut.
    """
    local = ensure_aware(instant).astimezone(layer.tz)

    if layer.kind is LayerKind.WEEKEND:
        duration = layer.duration
        if duration <= datetime.timedelta(0) or duration > datetime.timedelta(days=7):
            raise ConfigurationError(f"weekend window duration {duration} is out of range", layer.key)
        start = _weekend_window_start(layer, local)
        return start <= local < start + duration

    current = clock_minutes(local)
    start = clock_minutes(layer.start_clock)
    end = clock_minutes(layer.end_clock)
    if layer.crosses_midnight:
        return current >= start or current < end
    return start <= current < end
