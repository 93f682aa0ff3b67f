"""
Versioned schedule service.

Connects the live schedule to the ledger: detects schedule changes and cuts
new versions, and answers "who was on call on date D for layer L" in a way
that freezes the first answer forever.
"""

import asyncio
import datetime
import logging
from typing import Any

from oncall.core.config import MONTH_FORMAT_ISO, VERSION_HISTORY_LIMIT
from oncall.core.errors import ConfigurationError, SourceUnavailable
from oncall.core.ledger import Ledger, StoredVersion
from oncall.core.models import Assignment, HistoricalRecord, Layer, ScheduleDocument, VersionInfo
from oncall.core.rotation import OverrideStore, assign, date_key, instant_for_date
from oncall.core.storage import OverrideSource, ScheduleSource

logger = logging.getLogger(__name__)

META_LAST_HASH = "last_schedule_hash"
META_LAST_CHECK = "last_version_check"


class VersionedScheduleService:
    """Historical lookups and version management on top of a Ledger."""

    def __init__(self, ledger: Ledger, source: ScheduleSource, overrides: OverrideSource | None = None):
        self.ledger = ledger
        self.source = source
        self.overrides = overrides
        self.current_version: StoredVersion | None = None

    # === Versions ===

    def check_for_schedule_changes(self, today: datetime.date | None = None) -> StoredVersion | None:
        """
        Create a version when the live document differs from the one effective today.

        The very first version is effective from the earliest layer start date
        so that past dates resolve against it too.
        """
        document = self.source.current
        if document is None:
            logger.warning("No schedule loaded, skipping version check")
            return None

        today = today or datetime.date.today()
        latest = self.ledger.version_for(today)
        current_hash = document.content_hash()

        if latest is None:
            effective = document.earliest_start_date() or today
            logger.info("Creating initial schedule version", extra={"extra_fields": {"effective_date": str(effective)}})
            version_id = self.ledger.create_version(document, effective, "Initial schedule version", "system")
        elif latest.content_hash != current_hash:
            logger.info("Schedule changes detected, creating new version")
            version_id = self.ledger.create_version(document, today, "Schedule updated", "system")
        else:
            logger.info("Using existing schedule version: %s", latest.version_name)
            version_id = latest.id

        self.ledger.set_metadata(META_LAST_HASH, current_hash)
        self.ledger.set_metadata(META_LAST_CHECK, datetime.datetime.utcnow().isoformat())
        self.current_version = self.ledger.get_version(version_id)
        return self.current_version

    def create_version(self, description: str = "Manual version creation", created_by: str = "user") -> StoredVersion:
        """Reload the schedule and append a version effective today."""
        document = self.source.reload()
        version_id = self.ledger.create_version(document, datetime.date.today(), description, created_by)
        self.current_version = self.ledger.get_version(version_id)
        return self.current_version

    def schedule_for(self, day: datetime.date) -> tuple[ScheduleDocument | None, StoredVersion | None]:
        """Frozen document for `day`, or the live one when no version covers it."""
        version = self.ledger.version_for(day)
        if version is not None:
            return version.document(), version
        return self.source.current, self.current_version

    def version_history(self, limit: int = VERSION_HISTORY_LIMIT) -> list[VersionInfo]:
        return self.ledger.version_history(limit)

    def cleanup(self, retention_months: int) -> dict[str, int]:
        return self.ledger.cleanup(retention_months)

    # === Overrides ===

    def store_overrides(self, store: OverrideStore) -> dict[str, int]:
        """Persist the override store as one monthly set per month."""
        stored = {}
        for month in store.months():
            stored[month] = self.ledger.store_monthly_overrides(month, store.for_month(month))
        return stored

    def sync_overrides(self) -> dict[str, int]:
        """Store the live override file as monthly sets."""
        if self.overrides is None:
            return {}
        return self.store_overrides(self.overrides.current)

    def overrides_for(self, day: datetime.date) -> tuple[OverrideStore, int | None]:
        """
        Overrides for the month of `day`: the stored monthly set, or the live
        file's entries for that month, stored on first use so records can
        point at them.
        """
        month = day.strftime(MONTH_FORMAT_ISO)
        month_set = self.ledger.overrides_for(month)
        if month_set is None:
            live = self.overrides.current.for_month(month) if self.overrides is not None else {}
            if not live:
                return OverrideStore(), None
            return OverrideStore.from_raw(live), self.ledger.store_monthly_overrides(month, live)
        return OverrideStore.from_raw(month_set.override_data), month_set.id

    # === Assignments ===

    def assignment_for(self, day: datetime.date, layer_key: str) -> HistoricalRecord | None:
        """
        Who was on call for `layer_key` on `day`.

        An existing historical record always wins. Otherwise the assignment is
        computed against the version effective for `day` and the overrides
        stored for its month, then written as a new record before returning,
        so the first answer for a date is the permanent one.

        Returns:
            None when no schedule knows the layer
        """
        historical = self.ledger.assignment_for(day, layer_key)
        if historical is not None:
            return historical

        document, version = self.schedule_for(day)
        layer = document.layer(layer_key) if document is not None else None
        if layer is None:
            return None

        overrides, override_set_id = self.overrides_for(day)
        try:
            assignment = assign(layer, instant_for_date(layer, day), overrides)
        except ConfigurationError:
            logger.exception("Cannot compute assignment for %s %s", day, layer_key)
            return None

        override_id = override_set_id if assignment.is_override else None
        if version is not None:
            written = self.ledger.record_assignment(day, layer_key, assignment.person, version.id, override_id)
            if not written:
                # Another writer recorded first; its record is the truth
                stored = self.ledger.assignment_for(day, layer_key)
                if stored is not None:
                    return stored

        return HistoricalRecord(
            date=day,
            layer_key=layer_key,
            person=assignment.person,
            version_id=version.id if version else None,
            override_id=override_id,
            is_historical=False,
            is_override=assignment.is_override,
        )

    def record_fired(self, layer: Layer, occurrence: datetime.datetime, assignment: Assignment) -> bool:
        """Freeze the assignment resolved for a fired notification."""
        day = date_key(layer, occurrence)
        version = self.ledger.version_for(day) or self.current_version
        if version is None:
            logger.warning("No schedule version for %s, not recording %s", day, layer.key)
            return False
        override_id = None
        if assignment.is_override:
            month = day.strftime(MONTH_FORMAT_ISO)
            live = self.overrides.current.for_month(month) if self.overrides is not None else {}
            if live:
                # The fired override came from the live file; keep the stored set in step
                override_id = self.ledger.store_monthly_overrides(month, live)
            else:
                month_set = self.ledger.overrides_for(month)
                override_id = month_set.id if month_set else None
        return self.ledger.record_assignment(day, layer.key, assignment.person, version.id, override_id)

    # === Async surface for routes ===

    async def assignment_for_async(self, day: datetime.date, layer_key: str) -> HistoricalRecord | None:
        return await asyncio.to_thread(self.assignment_for, day, layer_key)

    async def schedule_for_async(self, day: datetime.date) -> dict[str, Any]:
        document, version = await asyncio.to_thread(self.schedule_for, day)
        if document is None:
            raise SourceUnavailable("No schedule available")
        return {
            "schedule": document.to_raw(),
            "version": version.model_dump(exclude={"schedule_data"}) if version else None,
        }

    async def version_history_async(self, limit: int = VERSION_HISTORY_LIMIT) -> list[VersionInfo]:
        return await asyncio.to_thread(self.version_history, limit)

    async def create_version_async(self, description: str, created_by: str) -> StoredVersion:
        return await asyncio.to_thread(self.create_version, description, created_by)

    async def cleanup_async(self, retention_months: int) -> dict[str, int]:
        return await asyncio.to_thread(self.cleanup, retention_months)

    async def store_overrides_async(self, store: OverrideStore) -> dict[str, int]:
        return await asyncio.to_thread(self.store_overrides, store)

    async def sync_overrides_async(self) -> dict[str, int]:
        return await asyncio.to_thread(self.sync_overrides)
