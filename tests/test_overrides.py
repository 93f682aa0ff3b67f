"""
Unit tests for override loading and the legacy key migration.
"""

import datetime
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from migrate_overrides import migrate
from oncall.core.rotation import OverrideStore, migrate_legacy_overrides, parse_legacy_key
from oncall.core.storage import OverrideSource, load_overrides


class TestLegacyKeys:
    def test_parse_legacy_key(self):
        assert parse_legacy_key("Thu Sep 25 2025-layer1") == (datetime.date(2025, 9, 25), "layer1")

    def test_layer_key_with_dash_is_kept_whole(self):
        assert parse_legacy_key("Sat Sep 27 2025-full-weekend") == (datetime.date(2025, 9, 27), "full-weekend")

    def test_structured_key_is_not_legacy(self):
        assert parse_legacy_key("2025-09-25") is None
        assert parse_legacy_key("not a date-layer1") is None


class TestMigration:
    def test_legacy_entries_are_rewritten(self):
        raw = {
            "Thu Sep 25 2025-layer1": {
                "person": "melannie",
                "reason": "sick",
                "originalPerson": "dinesh",
                "timestamp": "2025-09-20T10:00:00Z",
            }
        }
        migrated = migrate_legacy_overrides(raw)

        assert migrated["2025-09-25"]["layer1"]["person"] == "melannie"
        assert migrated["2025-09-25"]["layer1"]["original_person"] == "dinesh"
        assert "created_at" in migrated["2025-09-25"]["layer1"]

    def test_structured_entry_wins_over_legacy(self):
        raw = {
            "Thu Sep 25 2025-layer1": {"person": "legacy"},
            "2025-09-25": {"layer1": "structured"},
        }
        store = OverrideStore.from_raw(raw)

        assert store.lookup(datetime.date(2025, 9, 25), "layer1").person == "structured"
        assert len(store) == 1

    def test_unrecognised_entries_are_dropped(self):
        raw = {"garbage": "x", "2025-09-25": {"layer1": {"reason": "no person"}}, "2025-09-26": {"layer2": "ok"}}
        store = OverrideStore.from_raw(raw)

        assert len(store) == 1
        assert store.lookup("2025-09-26", "layer2").person == "ok"

    def test_months_split(self):
        store = OverrideStore.from_raw({"2025-09-30": {"layer1": "a"}, "2025-10-01": {"layer1": "b"}})

        assert store.months() == ["2025-09", "2025-10"]
        assert list(store.for_month("2025-10")) == ["2025-10-01"]


class TestOverrideFiles:
    def test_missing_file_means_no_overrides(self, tmp_path):
        assert load_overrides(tmp_path / "missing.json").is_empty

    def test_broken_file_keeps_last_good_store(self, tmp_path):
        path = tmp_path / "overrides.json"
        path.write_text(json.dumps({"2025-09-25": {"layer1": "melannie"}}), encoding="utf-8")
        source = OverrideSource(path)
        source.reload()

        path.write_text("{not json", encoding="utf-8")
        store = source.reload()

        assert store.lookup("2025-09-25", "layer1").person == "melannie"

    def test_save_writes_structured_format(self, tmp_path):
        path = tmp_path / "overrides.json"
        source = OverrideSource(path)
        source.save({"Thu Sep 25 2025-layer1": {"person": "melannie"}})

        written = json.loads(path.read_text(encoding="utf-8"))
        assert written == {"2025-09-25": {"layer1": {"person": "melannie", "reason": "Manual override"}}}

    def test_migration_script_rewrites_file_and_stores_months(self, tmp_path, ledger):
        path = tmp_path / "overrides.json"
        path.write_text(
            json.dumps({"Thu Sep 25 2025-layer1": {"person": "melannie"}, "2025-10-01": {"layer2": "dinesh"}}),
            encoding="utf-8",
        )
        store = migrate(path, ledger)

        assert len(store) == 2
        assert (tmp_path / "overrides.json.bak").exists()
        assert "2025-09-25" in json.loads(path.read_text(encoding="utf-8"))
        assert ledger.overrides_for("2025-09").override_data["2025-09-25"]["layer1"]["person"] == "melannie"
        assert ledger.overrides_for("2025-10") is not None
