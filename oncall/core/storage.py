# oncall/core/storage.py
"""
Data loading and persistence layer for configuration files.

The schedule document and the team roster are YAML, overrides are JSON.
Sources hold an immutable reference that is swapped as a whole on reload,
so readers always see either the old or the new value.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from oncall.core.errors import SourceUnavailable
from oncall.core.models import ScheduleDocument, TeamMember
from oncall.core.rotation.overrides import OverrideStore

logger = logging.getLogger(__name__)


def _read_text(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.exception("Failed to read file %s", file_path)
        raise SourceUnavailable(f"Could not read file {file_path}: {e}") from e


def _load_yaml(file_path: Path) -> Any:
    raw = _read_text(file_path)
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.exception("Invalid YAML in file %s", file_path)
        raise SourceUnavailable(f"Invalid YAML in file {file_path}: {e}") from e


def load_json(file_path: Path) -> Any:
    raw = _read_text(file_path)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.exception("Invalid JSON in file %s", file_path)
        raise SourceUnavailable(f"Invalid JSON in file {file_path}: {e}") from e


def load_schedule_document(file_path: str | Path) -> ScheduleDocument:
    """
    Load the schedule document from a YAML file.

    Raises:
        SourceUnavailable: If the file cannot be read, parsed, or holds no usable layer
    """
    path = Path(file_path)
    data = _load_yaml(path)
    try:
        document = ScheduleDocument.from_raw(data)
    except ValueError as e:
        logger.exception("Failed to parse schedule from %s", path)
        raise SourceUnavailable(f"Could not parse schedule from {path}: {e}") from e
    if document.is_empty:
        raise SourceUnavailable(f"Schedule {path} has no usable layers")
    return document


def load_overrides(file_path: str | Path) -> OverrideStore:
    """
    Load overrides from a JSON file. A missing file means no overrides.

    Raises:
        SourceUnavailable: If the file exists but cannot be parsed
    """
    path = Path(file_path)
    if not path.exists():
        logger.info("No overrides file at %s", path)
        return OverrideStore()
    data = load_json(path)
    if not isinstance(data, dict):
        raise SourceUnavailable(f"Expected override mapping in {path}")
    return OverrideStore.from_raw(data)


def write_json_atomic(file_path: str | Path, data: Any) -> None:
    """Write JSON next to the target and rename it into place."""
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def load_team_members(file_path: str | Path) -> list[TeamMember]:
    """
    Load the team roster (``teams: [{members: [...]}, ...]``).

    Returns an empty roster when the file is missing or broken; mentions then
    fall back to plain names.
    """
    path = Path(file_path)
    if not path.exists():
        logger.info("No team roster at %s", path)
        return []
    try:
        data = _load_yaml(path)
    except SourceUnavailable:
        return []

    members: list[TeamMember] = []
    for team in (data or {}).get("teams") or []:
        for item in (team or {}).get("members") or []:
            try:
                members.append(TeamMember(**item))
            except (TypeError, ValidationError) as e:
                logger.warning("Skipping team member %r in %s: %s", item, path, e)
    return members


class ScheduleSource:
    """Owns the live schedule document and swaps it atomically on reload."""

    def __init__(self, path: str | Path | None = None, document: ScheduleDocument | None = None):
        self.path = Path(path) if path is not None else None
        self._document = document
        self._lock = threading.Lock()

    @property
    def current(self) -> ScheduleDocument | None:
        return self._document

    def reload(self) -> ScheduleDocument:
        """
        Reload from disk, keeping the last good document on failure.

        Raises:
            SourceUnavailable: If loading fails and there is no earlier document
        """
        if self.path is None:
            if self._document is None:
                raise SourceUnavailable("No schedule path configured")
            return self._document
        with self._lock:
            try:
                document = load_schedule_document(self.path)
            except SourceUnavailable as e:
                if self._document is None:
                    raise
                logger.warning("Schedule reload failed, keeping last good document: %s", e)
                return self._document
            self._document = document
        logger.info(
            "Schedule loaded",
            extra={
                "extra_fields": {
                    "path": str(self.path),
                    "layers": [layer.key for layer in document.layers()],
                    "rejected": list(document.rejected),
                }
            },
        )
        return document

    def replace(self, document: ScheduleDocument) -> None:
        self._document = document


class OverrideSource:
    """Owns the live override store; keeps the last good store on failure."""

    def __init__(self, path: str | Path | None = None, store: OverrideStore | None = None):
        self.path = Path(path) if path is not None else None
        self._store = store or OverrideStore()
        self._lock = threading.Lock()

    @property
    def current(self) -> OverrideStore:
        return self._store

    def reload(self) -> OverrideStore:
        if self.path is None:
            return self._store
        with self._lock:
            try:
                self._store = load_overrides(self.path)
            except SourceUnavailable as e:
                logger.warning("Override reload failed, keeping last good overrides: %s", e)
        return self._store

    def save(self, raw: dict[str, Any]) -> OverrideStore:
        """Normalise, persist and swap in a new override mapping."""
        store = OverrideStore.from_raw(raw)
        with self._lock:
            if self.path is not None:
                write_json_atomic(self.path, store.to_raw())
            self._store = store
        logger.info("Overrides replaced (%d entries)", len(store))
        return store
