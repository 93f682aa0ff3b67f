#!/usr/bin/env python3
"""
Migration script to rewrite a legacy overrides file into the structured format.

This script:
1. Reads the overrides file (default: data/overrides.json)
2. Rewrites "Thu Sep 25 2025-layer1" style keys into {"2025-09-25": {"layer1": ...}}
3. Writes the file back (a .bak copy of the original is kept)
4. Stores each month as a monthly override set in the history database
5. Can be run multiple times safely (idempotent)

Usage:
    python migrate_overrides.py [path/to/overrides.json]
"""

import shutil
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from oncall.core.config import AppSettings
from oncall.core.history import VersionedScheduleService
from oncall.core.ledger import Ledger
from oncall.core.rotation import OverrideStore, parse_legacy_key
from oncall.core.storage import ScheduleSource, load_json, write_json_atomic


def migrate(overrides_path: Path, ledger: Ledger | None = None) -> OverrideStore:
    """Run the override migration."""
    print(f"🔄 Starting override migration for {overrides_path}...")

    if not overrides_path.exists():
        print("✅ No overrides file found. No migration needed.")
        return OverrideStore()

    raw = load_json(overrides_path)
    legacy_keys = [key for key in raw if parse_legacy_key(key) is not None]
    store = OverrideStore.from_raw(raw)

    if legacy_keys:
        print(f"📝 Rewriting {len(legacy_keys)} legacy entries...")
        backup = overrides_path.with_suffix(overrides_path.suffix + ".bak")
        shutil.copy2(overrides_path, backup)
        print(f"   Original kept as {backup}")
        write_json_atomic(overrides_path, store.to_raw())
        print(f"✅ Wrote {len(store)} overrides in the structured format")
    else:
        print("✅ Overrides file already uses the structured format.")

    ledger = ledger or Ledger()
    ledger.create_tables()
    history = VersionedScheduleService(ledger, ScheduleSource())
    stored = history.store_overrides(store)
    for month in sorted(stored):
        print(f"   Stored monthly override set {month}")

    print("🎉 Migration completed successfully!")
    return store


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(AppSettings.from_env().overrides_path)
    try:
        migrate(path)
    except Exception as e:
        print(f"❌ Migration failed: {e}")
        raise
