# oncall/core/ledger.py
"""
Versioned historical store.

Holds three kinds of records:
- schedule versions: append-only snapshots of the schedule document, each
  effective from a calendar date;
- historical assignments: one frozen (date, layer) -> person fact, written
  once and never overwritten;
- monthly override sets: override data grouped by "YYYY-MM", kept apart from
  versions so override history survives version churn.
"""

import datetime
import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oncall.core.config import MONTH_FORMAT_ISO, VERSION_HISTORY_LIMIT
from oncall.core.errors import LedgerWriteConflict
from oncall.core.models import HistoricalRecord, ScheduleDocument, VersionInfo
from oncall.core.time_utils import add_months
from oncall.database import database as db_module
from oncall.database.database import HistoricalAssignment, MonthlyOverride, ScheduleVersion, SystemMetadata

logger = logging.getLogger(__name__)


class StoredVersion(VersionInfo):
    schedule_data: dict[str, Any]
    content_hash: str

    def document(self) -> ScheduleDocument:
        return ScheduleDocument.from_raw(self.schedule_data)


class MonthlyOverrideSet(BaseModel):
    id: int
    month: str
    override_data: dict[str, Any]
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


def _version_from_row(row: ScheduleVersion) -> StoredVersion:
    return StoredVersion(
        id=row.id,
        version_name=row.version_name,
        effective_date=row.effective_date,
        created_at=row.created_at,
        created_by=row.created_by,
        description=row.description,
        is_active=bool(row.is_active),
        schedule_data=row.schedule_data,
        content_hash=row.content_hash,
    )


class Ledger:
    """
    Append-only ledger backed by SQLAlchemy.

    Every call opens and closes its own session, so the ledger can be used
    from worker threads while the scheduler keeps running.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory

    def _session(self) -> Session:
        # Look SessionLocal up at call time (supports monkeypatch in tests)
        factory = self._session_factory or db_module.SessionLocal
        return factory()

    # === Schedule versions ===

    def create_version(
        self,
        document: ScheduleDocument,
        effective_date: datetime.date,
        description: str | None = None,
        created_by: str = "system",
    ) -> int:
        """Append a new version. Existing versions are never updated."""
        db = self._session()
        try:
            row = ScheduleVersion(
                version_name=f"v{int(time.time() * 1000)}",
                effective_date=effective_date,
                schedule_data=document.to_raw(),
                content_hash=document.content_hash(),
                created_by=created_by,
                description=description,
                is_active=1,
            )
            db.add(row)
            db.commit()
            logger.info(
                "Created schedule version %s (ID: %d)",
                row.version_name,
                row.id,
                extra={"extra_fields": {"effective_date": effective_date.isoformat(), "created_by": created_by}},
            )
            return row.id
        finally:
            db.close()

    def version_for(self, day: datetime.date) -> StoredVersion | None:
        """Latest active version with effective_date <= day (ties: newest first)."""
        db = self._session()
        try:
            row = (
                db.query(ScheduleVersion)
                .filter(ScheduleVersion.effective_date <= day)
                .filter(ScheduleVersion.is_active == 1)
                .order_by(ScheduleVersion.effective_date.desc(), ScheduleVersion.id.desc())
                .first()
            )
            return _version_from_row(row) if row else None
        finally:
            db.close()

    def get_version(self, version_id: int) -> StoredVersion | None:
        db = self._session()
        try:
            row = db.get(ScheduleVersion, version_id)
            return _version_from_row(row) if row else None
        finally:
            db.close()

    def version_history(self, limit: int = VERSION_HISTORY_LIMIT) -> list[VersionInfo]:
        db = self._session()
        try:
            rows = (
                db.query(ScheduleVersion)
                .order_by(ScheduleVersion.created_at.desc(), ScheduleVersion.id.desc())
                .limit(limit)
                .all()
            )
            return [VersionInfo(**_version_from_row(row).model_dump(exclude={"schedule_data", "content_hash"})) for row in rows]
        finally:
            db.close()

    # === Historical assignments ===

    def _insert_assignment(
        self,
        db: Session,
        day: datetime.date,
        layer_key: str,
        person: str,
        version_id: int,
        override_id: int | None,
    ) -> None:
        exists = (
            db.query(HistoricalAssignment.id)
            .filter(HistoricalAssignment.date == day, HistoricalAssignment.layer_key == layer_key)
            .first()
        )
        if exists:
            raise LedgerWriteConflict(f"Assignment for {day} {layer_key} already recorded")

        db.add(
            HistoricalAssignment(
                date=day,
                layer_key=layer_key,
                person=person,
                version_id=version_id,
                override_id=override_id,
            )
        )
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise LedgerWriteConflict(f"Assignment for {day} {layer_key} already recorded") from e

    def record_assignment(
        self,
        day: datetime.date,
        layer_key: str,
        person: str,
        version_id: int,
        override_id: int | None = None,
    ) -> bool:
        """
        Insert-if-absent. A repeat call for the same (date, layer) is a silent
        no-op that keeps the first recorded person.

        Returns:
            True if a new record was written
        """
        db = self._session()
        try:
            try:
                self._insert_assignment(db, day, layer_key, person, version_id, override_id)
            except LedgerWriteConflict:
                logger.debug("Historical assignment %s %s already recorded, keeping it", day, layer_key)
                return False
            logger.info("Stored historical assignment: %s %s -> %s", day, layer_key, person)
            return True
        finally:
            db.close()

    def assignment_for(self, day: datetime.date, layer_key: str) -> HistoricalRecord | None:
        db = self._session()
        try:
            row = (
                db.query(HistoricalAssignment)
                .filter(HistoricalAssignment.date == day, HistoricalAssignment.layer_key == layer_key)
                .first()
            )
            if row is None:
                return None
            return HistoricalRecord(
                date=row.date,
                layer_key=row.layer_key,
                person=row.person,
                version_id=row.version_id,
                override_id=row.override_id,
                is_historical=True,
                is_override=row.override_id is not None,
            )
        finally:
            db.close()

    # === Monthly overrides ===

    def store_monthly_overrides(self, month: str, data: dict[str, Any]) -> int:
        """Create or replace the override set for a month, keeping created_at."""
        db = self._session()
        try:
            row = db.query(MonthlyOverride).filter(MonthlyOverride.month == month).first()
            if row is None:
                row = MonthlyOverride(month=month, override_data=data)
                db.add(row)
            else:
                row.override_data = data
                row.updated_at = datetime.datetime.utcnow()
            db.commit()
            logger.info("Stored overrides for %s", month)
            return row.id
        finally:
            db.close()

    def overrides_for(self, month: str) -> MonthlyOverrideSet | None:
        db = self._session()
        try:
            row = db.query(MonthlyOverride).filter(MonthlyOverride.month == month).first()
            if row is None:
                return None
            return MonthlyOverrideSet(
                id=row.id,
                month=row.month,
                override_data=row.override_data or {},
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
        finally:
            db.close()

    # === Maintenance ===

    def cleanup(self, retention_months: int, today: datetime.date | None = None) -> dict[str, int]:
        """
        Delete assignments and monthly overrides older than the cutoff and mark
        older versions inactive. The version still governing the cutoff date
        stays active so dates after the cutoff keep resolving.
        """
        today = today or datetime.date.today()
        cutoff = add_months(today, -retention_months)
        cutoff_month = cutoff.strftime(MONTH_FORMAT_ISO)
        governing = self.version_for(cutoff)

        db = self._session()
        try:
            assignments = (
                db.query(HistoricalAssignment)
                .filter(HistoricalAssignment.date < cutoff)
                .delete(synchronize_session=False)
            )
            overrides = (
                db.query(MonthlyOverride)
                .filter(MonthlyOverride.month < cutoff_month)
                .delete(synchronize_session=False)
            )
            query = db.query(ScheduleVersion).filter(
                ScheduleVersion.effective_date < cutoff, ScheduleVersion.is_active == 1
            )
            if governing is not None:
                query = query.filter(ScheduleVersion.id != governing.id)
            versions = query.update({ScheduleVersion.is_active: 0}, synchronize_session=False)
            db.commit()
        finally:
            db.close()

        logger.info(
            "Cleanup completed",
            extra={
                "extra_fields": {
                    "cutoff": cutoff.isoformat(),
                    "assignments_deleted": assignments,
                    "overrides_deleted": overrides,
                    "versions_deactivated": versions,
                }
            },
        )
        return {
            "assignments_deleted": assignments,
            "overrides_deleted": overrides,
            "versions_deactivated": versions,
        }

    def get_metadata(self, key: str) -> str | None:
        db = self._session()
        try:
            row = db.get(SystemMetadata, key)
            return row.value if row else None
        finally:
            db.close()

    def set_metadata(self, key: str, value: str) -> None:
        db = self._session()
        try:
            row = db.get(SystemMetadata, key)
            if row is None:
                db.add(SystemMetadata(key=key, value=value))
            else:
                row.value = value
            db.commit()
        finally:
            db.close()

    def create_tables(self) -> None:
        """Create the ledger tables on the database behind the session factory."""
        db = self._session()
        try:
            db_module.create_tables(db.get_bind())
        finally:
            db.close()

    def ping(self) -> None:
        db = self._session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
