import datetime
import enum
import hashlib
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from oncall.core.errors import ConfigurationError
from oncall.core.time_utils import clock_minutes, parse_instant

logger = logging.getLogger(__name__)

LAYER_GROUPS: tuple[str, ...] = ("weekday", "weekend")


def _count_days(start: datetime.date, end_exclusive: datetime.date, weekend: bool) -> int:
    """Count weekend (or Mon-Fri) days in [start, end_exclusive)."""
    total = (end_exclusive - start).days
    if total <= 0:
        return 0
    full_weeks, remainder = divmod(total, 7)
    count = full_weeks * (2 if weekend else 5)
    day = start + datetime.timedelta(days=full_weeks * 7)
    for _ in range(remainder):
        if (day.weekday() >= 5) == weekend:
            count += 1
        day += datetime.timedelta(days=1)
    return count


class LayerKind(str, enum.Enum):
    """
    Layer kind with its day-counting strategy.

    WEEKDAY counts Mon-Fri days from the start date up to and including the
    current date. WEEKEND counts Sat/Sun days strictly before the current
    date. DAILY uses the plain calendar-day difference.
    """

    WEEKDAY = "weekday"
    WEEKEND = "weekend"
    DAILY = "daily"

    def days_since_start(self, start: datetime.date, current: datetime.date) -> int:
        if self is LayerKind.WEEKDAY:
            return _count_days(start, current + datetime.timedelta(days=1), weekend=False)
        if self is LayerKind.WEEKEND:
            return _count_days(start, current, weekend=True)
        return (current - start).days


class Layer(BaseModel):
    """One on-call rotation stream, as configured in the schedule document."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    kind: LayerKind = Field(alias="type")
    display_name: str | None = None
    start_time: datetime.datetime
    end_time: datetime.datetime
    hours: float | None = None
    rotation_period_days: int = Field(0, alias="days_rotate", ge=0)
    members: tuple[str, ...] = Field(alias="users")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_instant(cls, value: Any) -> datetime.datetime:
        return parse_instant(value)

    @field_validator("members", mode="before")
    @classmethod
    def _require_members(cls, value: Any) -> tuple[str, ...]:
        if not value:
            raise ValueError("layer has no members")
        if isinstance(value, str):
            value = [value]
        return tuple(str(member) for member in value)

    @property
    def name(self) -> str:
        return self.display_name or self.key

    @property
    def tz(self) -> datetime.timezone:
        return datetime.timezone(self.start_time.utcoffset())

    @property
    def start_date(self) -> datetime.date:
        return self.start_time.date()

    @property
    def start_clock(self) -> datetime.time:
        return self.start_time.time()

    @property
    def end_clock(self) -> datetime.time:
        return self.end_time.astimezone(self.tz).time()

    @property
    def crosses_midnight(self) -> bool:
        return clock_minutes(self.end_clock) < clock_minutes(self.start_clock)

    @property
    def duration(self) -> datetime.timedelta:
        return self.end_time - self.start_time

    def to_raw(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "display_name": self.display_name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "hours": self.hours,
            "days_rotate": self.rotation_period_days,
            "users": list(self.members),
        }


class ScheduleDocument(BaseModel):
    """Immutable snapshot of every layer in the schedule, in declaration order."""

    model_config = ConfigDict(frozen=True)

    weekday: tuple[Layer, ...] = ()
    weekend: tuple[Layer, ...] = ()
    rejected: tuple[str, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any) -> "ScheduleDocument":
        """
        Build a document from the parsed schedule file.

        Layers that fail validation are logged as configuration errors and
        left out; the remaining layers are still usable.

        Raises:
            ValueError: if the top level is not a mapping
        """
        if not isinstance(raw, dict):
            raise ValueError("Schedule document must be a mapping with 'weekday' and 'weekend' groups")

        groups: dict[str, list[Layer]] = {group: [] for group in LAYER_GROUPS}
        rejected: list[str] = []
        for group in LAYER_GROUPS:
            entries = raw.get(group) or {}
            if not isinstance(entries, dict):
                logger.error("Schedule group %r is not a mapping, ignoring it", group)
                continue
            for key, config in entries.items():
                try:
                    groups[group].append(_build_layer(str(key), group, config))
                except ConfigurationError as e:
                    logger.error(
                        "Skipping layer %s: %s",
                        key,
                        e,
                        extra={"extra_fields": {"layer_key": str(key), "group": group}},
                    )
                    rejected.append(str(key))

        return cls(weekday=tuple(groups["weekday"]), weekend=tuple(groups["weekend"]), rejected=tuple(rejected))

    def to_raw(self) -> dict[str, dict[str, Any]]:
        return {
            "weekday": {layer.key: layer.to_raw() for layer in self.weekday},
            "weekend": {layer.key: layer.to_raw() for layer in self.weekend},
        }

    def layers(self) -> tuple[Layer, ...]:
        """Weekend layers first, then weekday layers."""
        return self.weekend + self.weekday

    def layer(self, key: str) -> Layer | None:
        for layer in self.weekday + self.weekend:
            if layer.key == key:
                return layer
        return None

    def earliest_start_date(self) -> datetime.date | None:
        dates = [layer.start_date for layer in self.layers()]
        return min(dates) if dates else None

    def content_hash(self) -> str:
        payload = json.dumps(self.to_raw(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @property
    def is_empty(self) -> bool:
        return not self.weekday and not self.weekend


def _build_layer(key: str, group: str, config: Any) -> Layer:
    if not isinstance(config, dict):
        raise ConfigurationError(f"layer config must be a mapping, got {type(config).__name__}", key)
    data = dict(config)
    data["key"] = key
    data.setdefault("type", group)
    try:
        return Layer.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid layer configuration: {e}", key) from e


class Override(BaseModel):
    """Manual assignment correction for one date and layer."""

    person: str
    reason: str = "Manual override"
    start_time: str | None = None
    end_time: str | None = None
    original_person: str | None = None
    created_at: datetime.datetime | None = None


class Assignment(BaseModel):
    person: str
    is_override: bool = False
    reason: str | None = None


class UpcomingAssignment(BaseModel):
    layer_key: str
    layer_name: str
    person: str
    start: datetime.datetime
    is_override: bool = False


class ShiftTransition(BaseModel):
    """Everything a notification sink needs to announce one shift start."""

    layer_key: str
    layer_name: str
    current_assignee: str
    is_override: bool = False
    shift_start: datetime.datetime
    shift_end: datetime.datetime
    upcoming_assignments: list[UpcomingAssignment] = Field(default_factory=list)
    post_boundary_spillover: list[UpcomingAssignment] | None = None


class HistoricalRecord(BaseModel):
    date: datetime.date
    layer_key: str
    person: str
    version_id: int | None = None
    override_id: int | None = None
    is_historical: bool = False
    is_override: bool = False


class VersionInfo(BaseModel):
    id: int
    version_name: str
    effective_date: datetime.date
    created_at: datetime.datetime | None = None
    created_by: str | None = None
    description: str | None = None
    is_active: bool = True


class TeamMember(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    timezone: str | None = None
    slack_id: str | None = None
