"""Nästa verkliga starttid för ett lager, samt sluttid för en förekomst."""

import datetime
import logging
from collections.abc import Callable

from oncall.core.config import EARLY_MORNING_CUTOFF_HOUR, OCCURRENCE_SEARCH_DAYS
from oncall.core.models import Layer, LayerKind
from oncall.core.time_utils import at_clock, ensure_aware, is_weekend_day

logger = logging.getLogger(__name__)

SATURDAY = 5


def shift_start_on(layer: Layer, day: datetime.date) -> datetime.datetime:
    """Starttid för lagret på det lokala datumet `day`."""
    return at_clock(day, layer.start_clock, layer.tz)


def shift_end(layer: Layer, occurrence: datetime.datetime) -> datetime.datetime:
    """
    Sluttid för förekomsten som startar vid `occurrence`.

    Helglager varar `layer.duration` (t.ex. 48h). Övriga lager slutar vid
    sluttiden samma lokala dag, eller nästa dag om passet går över midnatt.
    """
    if layer.kind is LayerKind.WEEKEND:
        return occurrence + layer.duration
    local = ensure_aware(occurrence).astimezone(layer.tz)
    end = at_clock(local.date(), layer.end_clock, layer.tz)
    if end <= local:
        end += datetime.timedelta(days=1)
    return end


def _next_weekend_occurrence(layer: Layer, local: datetime.datetime) -> datetime.datetime:
    anchor_weekday = layer.start_time.weekday()
    same_weekend = local.weekday() == (anchor_weekday + 1) % 7
    if same_weekend and is_weekend_day(local.date()):
        # Söndag före starttid: helgen fortsätter med dagens pass
        today = shift_start_on(layer, local.date())
        if today > local:
            return today
    days_until = (anchor_weekday - local.weekday()) % 7
    candidate = shift_start_on(layer, local.date() + datetime.timedelta(days=days_until))
    if candidate <= local:
        # Helgen har redan börjat (eller passerat): nästa helg
        candidate += datetime.timedelta(days=7)
    return candidate


def next_occurrence(
    layer: Layer,
    from_instant: datetime.datetime,
    is_weekend: Callable[[datetime.date], bool] = is_weekend_day,
) -> datetime.datetime | None:
    """
    Nästa starttid för lagret efter `from_instant`.

    Vardagslager: dagens starttid om den ligger i framtiden och dagen inte är
    helg, annars första vardag inom OCCURRENCE_SEARCH_DAYS dagar. Pass som
    börjar före EARLY_MORNING_CUTOFF_HOUR får även starta en lördag (fredag
    natt mot lördag morgon).

    Helglager: ankarveckodagen (lördag) vid starttid.

    Args:
        layer: Lagret
        from_instant: Referenstidpunkt
        is_weekend: Avgör om ett datum räknas som helg

    Returns:
        Tidpunkt i lagrets offset, eller None om ingen förekomst hittas inom
        sökgränsen (konfigurationsfel)
    """
    local = ensure_aware(from_instant).astimezone(layer.tz)

    if layer.kind is LayerKind.WEEKEND:
        return _next_weekend_occurrence(layer, local)

    today = shift_start_on(layer, local.date())

    if layer.kind is LayerKind.DAILY:
        return today if today > local else today + datetime.timedelta(days=1)

    if today > local and not is_weekend(today.date()):
        return today

    is_early_morning = layer.start_clock.hour < EARLY_MORNING_CUTOFF_HOUR

    for days_to_add in range(1, OCCURRENCE_SEARCH_DAYS + 1):
        candidate = today + datetime.timedelta(days=days_to_add)

        if is_early_morning and candidate.weekday() == SATURDAY:
            return candidate

        if not is_weekend(candidate.date()):
            return candidate

    logger.error(
        "No occurrence for layer %s within %d days of %s",
        layer.key,
        OCCURRENCE_SEARCH_DAYS,
        local.isoformat(),
        extra={"extra_fields": {"layer_key": layer.key}},
    )
    return None
