"""
Manual override lookup.

Overrides are stored in the structured format::

    {"2025-09-25": {"layer1": "melannie", "layer2": {"person": "dinesh", "reason": "swap"}}}

Older override files used keys built from JavaScript's Date.toDateString()
plus the layer key, e.g. ``"Thu Sep 25 2025-layer1"``. Those entries are
rewritten into the structured format when loaded, so lookups only ever go
through one path.
"""

import datetime
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from oncall.core.models import Override
from oncall.core.time_utils import parse_legacy_date_string

logger = logging.getLogger(__name__)

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LEGACY_DATE_LENGTH = len("Thu Sep 25 2025")

_FIELD_ALIASES = {
    "startTime": "start_time",
    "endTime": "end_time",
    "originalPerson": "original_person",
    "timestamp": "created_at",
    "createdAt": "created_at",
}


def _normalize_entry(value: Any) -> dict[str, Any] | None:
    if isinstance(value, str):
        return {"person": value} if value.strip() else None
    if not isinstance(value, Mapping):
        return None
    entry = {}
    for field, field_value in value.items():
        if field_value is None:
            continue
        entry[_FIELD_ALIASES.get(field, field)] = field_value
    return entry if entry.get("person") else None


def parse_legacy_key(key: str) -> tuple[datetime.date, str] | None:
    """Split ``"Thu Sep 25 2025-layer1"`` into (date, layer key)."""
    if len(key) <= _LEGACY_DATE_LENGTH + 1 or key[_LEGACY_DATE_LENGTH] != "-":
        return None
    day = parse_legacy_date_string(key[:_LEGACY_DATE_LENGTH])
    if day is None:
        return None
    return day, key[_LEGACY_DATE_LENGTH + 1 :]


def migrate_legacy_overrides(raw: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """
    Rewrite an override mapping into the structured format.

    Structured entries win when both formats name the same date and layer.
    Unrecognised keys and entries without a person are dropped with a warning.
    """
    structured: dict[str, dict[str, Any]] = {}
    legacy: list[tuple[datetime.date, str, Any]] = []

    for key, value in raw.items():
        if _DATE_KEY_RE.match(key):
            if not isinstance(value, Mapping):
                logger.warning("Ignoring override date %s: expected a layer mapping", key)
                continue
            for layer_key, entry in value.items():
                normalized = _normalize_entry(entry)
                if normalized is None:
                    logger.warning("Ignoring override %s/%s without a person", key, layer_key)
                    continue
                structured.setdefault(key, {})[str(layer_key)] = normalized
            continue

        parsed = parse_legacy_key(key)
        if parsed is None:
            logger.warning("Ignoring unrecognised override key %r", key)
            continue
        legacy.append((parsed[0], parsed[1], value))

    for day, layer_key, value in legacy:
        bucket = structured.setdefault(day.isoformat(), {})
        if layer_key in bucket:
            continue
        normalized = _normalize_entry(value)
        if normalized is None:
            logger.warning("Ignoring legacy override %s/%s without a person", day, layer_key)
            continue
        bucket[layer_key] = normalized

    if legacy:
        logger.info("Migrated %d legacy override entries to the structured format", len(legacy))
    return {day: layers for day, layers in structured.items() if layers}


class OverrideStore:
    """Immutable (date, layer) -> Override lookup."""

    def __init__(self, entries: Mapping[str, Mapping[str, Override]] | None = None):
        self._entries: dict[str, dict[str, Override]] = {
            day: dict(layers) for day, layers in (entries or {}).items()
        }

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "OverrideStore":
        entries: dict[str, dict[str, Override]] = {}
        for day, layers in migrate_legacy_overrides(raw or {}).items():
            for layer_key, entry in layers.items():
                try:
                    entries.setdefault(day, {})[layer_key] = Override.model_validate(entry)
                except ValidationError as e:
                    logger.warning("Ignoring invalid override %s/%s: %s", day, layer_key, e)
        return cls(entries)

    def lookup(self, day: datetime.date | str, layer_key: str) -> Override | None:
        key = day if isinstance(day, str) else day.isoformat()
        return self._entries.get(key, {}).get(layer_key)

    def months(self) -> list[str]:
        return sorted({day[:7] for day in self._entries})

    def for_month(self, month: str) -> dict[str, dict[str, Any]]:
        return {day: layers for day, layers in self.to_raw().items() if day.startswith(month)}

    def to_raw(self) -> dict[str, dict[str, Any]]:
        return {
            day: {
                layer_key: override.model_dump(mode="json", exclude_none=True)
                for layer_key, override in layers.items()
            }
            for day, layers in sorted(self._entries.items())
        }

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return sum(len(layers) for layers in self._entries.values())
