"""
Rotation module - rotationsberäkning, förekomster och överstyrningar.

Exporterar alla publika funktioner.
"""

from .calculator import (
    assign,
    date_key,
    instant_for_date,
    is_within_window,
    rotation_cycle,
)
from .occurrence import next_occurrence, shift_end, shift_start_on
from .overrides import OverrideStore, migrate_legacy_overrides, parse_legacy_key

__all__ = [
    # calculator
    "assign",
    "date_key",
    "instant_for_date",
    "is_within_window",
    "rotation_cycle",
    # occurrence
    "next_occurrence",
    "shift_end",
    "shift_start_on",
    # overrides
    "OverrideStore",
    "migrate_legacy_overrides",
    "parse_legacy_key",
]
