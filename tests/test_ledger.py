"""
Tests for the versioned ledger: append-only versions, write-once
assignments, monthly override sets and retention cleanup.
"""

import datetime
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from oncall.core.models import ScheduleDocument
from tests.sample_data import SAMPLE_SCHEDULE


def document() -> ScheduleDocument:
    return ScheduleDocument.from_raw(SAMPLE_SCHEDULE)


class TestVersions:
    def test_create_version_appends(self, ledger):
        first = ledger.create_version(document(), datetime.date(2025, 9, 1), "first")
        second = ledger.create_version(document(), datetime.date(2025, 10, 1), "second")

        assert second > first
        assert len(ledger.version_history(10)) == 2

    def test_version_for_picks_latest_effective(self, ledger):
        first = ledger.create_version(document(), datetime.date(2025, 9, 1))
        second = ledger.create_version(document(), datetime.date(2025, 10, 1))

        assert ledger.version_for(datetime.date(2025, 8, 31)) is None
        assert ledger.version_for(datetime.date(2025, 9, 15)).id == first
        assert ledger.version_for(datetime.date(2025, 10, 1)).id == second

    def test_same_effective_date_prefers_newest(self, ledger):
        ledger.create_version(document(), datetime.date(2025, 9, 1))
        newest = ledger.create_version(document(), datetime.date(2025, 9, 1))

        assert ledger.version_for(datetime.date(2025, 9, 1)).id == newest

    def test_stored_version_round_trips_document(self, ledger):
        version_id = ledger.create_version(document(), datetime.date(2025, 9, 1))
        stored = ledger.get_version(version_id)

        assert stored.content_hash == document().content_hash()
        assert stored.document().layer("layer1").members == ("dinesh", "melannie", "prashanth", "alrida")


class TestAssignments:
    def test_record_is_write_once(self, ledger):
        version_id = ledger.create_version(document(), datetime.date(2025, 9, 1))
        day = datetime.date(2025, 9, 29)

        assert ledger.record_assignment(day, "layer1", "melannie", version_id) is True
        assert ledger.record_assignment(day, "layer1", "someone-else", version_id) is False

        record = ledger.assignment_for(day, "layer1")
        assert record.person == "melannie", "First recorded person must never be overwritten"
        assert record.is_historical is True

    def test_unknown_assignment_is_none(self, ledger):
        assert ledger.assignment_for(datetime.date(2025, 9, 29), "layer1") is None


class TestMonthlyOverrides:
    def test_upsert_keeps_one_row_per_month(self, ledger):
        first_id = ledger.store_monthly_overrides("2025-09", {"2025-09-29": {"layer1": {"person": "a"}}})
        second_id = ledger.store_monthly_overrides("2025-09", {"2025-09-29": {"layer1": {"person": "b"}}})

        assert first_id == second_id
        assert ledger.overrides_for("2025-09").override_data["2025-09-29"]["layer1"]["person"] == "b"


class TestCleanup:
    def test_cleanup_respects_retention_and_governing_version(self, ledger):
        old = ledger.create_version(document(), datetime.date(2025, 1, 1))
        governing = ledger.create_version(document(), datetime.date(2025, 3, 1))
        recent = ledger.create_version(document(), datetime.date(2025, 6, 1))
        ledger.record_assignment(datetime.date(2025, 2, 3), "layer1", "dinesh", old)
        ledger.record_assignment(datetime.date(2025, 6, 2), "layer1", "melannie", recent)
        ledger.store_monthly_overrides("2025-03", {})
        ledger.store_monthly_overrides("2025-04", {})

        result = ledger.cleanup(6, today=datetime.date(2025, 10, 15))

        assert result == {"assignments_deleted": 1, "overrides_deleted": 1, "versions_deactivated": 1}
        assert ledger.assignment_for(datetime.date(2025, 2, 3), "layer1") is None
        assert ledger.assignment_for(datetime.date(2025, 6, 2), "layer1") is not None
        assert ledger.overrides_for("2025-04") is not None
        # Dates just after the cutoff still resolve against the governing version
        assert ledger.version_for(datetime.date(2025, 4, 20)).id == governing
        assert ledger.get_version(old).is_active is False


class TestMetadata:
    def test_set_and_get(self, ledger):
        assert ledger.get_metadata("last_schedule_hash") is None
        ledger.set_metadata("last_schedule_hash", "abc")
        ledger.set_metadata("last_schedule_hash", "def")

        assert ledger.get_metadata("last_schedule_hash") == "def"
