"""
Shift scheduler.

Re-evaluates the schedule once per tick, arms one asyncio timer per upcoming
(layer, occurrence) pair and, when a timer fires, resolves the assignee and
hands a ShiftTransition to the notification dispatcher.

All timer bookkeeping happens on the event loop thread with no awaits in
between, so the check-then-arm sequence in tick() cannot interleave with
another tick. Dispatch and ledger writes run in separate tasks/threads and
never hold up a tick.
"""

import asyncio
import datetime
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from oncall.core.config import (
    LOOKAHEAD_HOURS,
    SEQUENCE_LOOKAHEAD_DAYS,
    TICK_INTERVAL_SECONDS,
    UPCOMING_ASSIGNMENTS_COUNT,
)
from oncall.core.errors import ConfigurationError, DispatchFailure
from oncall.core.models import (
    Assignment,
    Layer,
    LayerKind,
    ScheduleDocument,
    ShiftTransition,
    UpcomingAssignment,
)
from oncall.core.notifications import NotificationDispatcher
from oncall.core.rotation import OverrideStore, assign, is_within_window, next_occurrence, shift_end, shift_start_on
from oncall.core.storage import OverrideSource, ScheduleSource
from oncall.core.time_utils import ensure_aware, is_weekend_day, utc_now

logger = logging.getLogger(__name__)

TimerKey = tuple[str, datetime.datetime]


class TimerState(str, enum.Enum):
    PENDING = "pending"
    ARMED = "armed"
    FIRED = "fired"


@dataclass
class ArmedTimer:
    layer: Layer
    occurrence: datetime.datetime
    fire_at: datetime.datetime
    handle: asyncio.TimerHandle | None = None
    state: TimerState = TimerState.PENDING


class ShiftScheduler:
    """Single scheduling authority for shift notifications."""

    def __init__(
        self,
        source: ScheduleSource,
        dispatcher: NotificationDispatcher,
        overrides: OverrideSource | None = None,
        history: Any = None,
        notify_lead: datetime.timedelta = datetime.timedelta(0),
        lookahead: datetime.timedelta = datetime.timedelta(hours=LOOKAHEAD_HOURS),
        tick_interval: float = TICK_INTERVAL_SECONDS,
        upcoming_count: int = UPCOMING_ASSIGNMENTS_COUNT,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        self.source = source
        self.dispatcher = dispatcher
        self.overrides = overrides or OverrideSource()
        self.history = history
        self.notify_lead = notify_lead
        self.lookahead = lookahead
        self.tick_interval = tick_interval
        self.upcoming_count = upcoming_count
        self.clock = clock

        self._armed: dict[TimerKey, ArmedTimer] = {}
        self._fired: dict[TimerKey, datetime.datetime] = {}
        self._inflight: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self.is_running = False

    # === Lifecycle ===

    async def start(self) -> None:
        if self.is_running:
            logger.info("Shift scheduler already running")
            return
        if self.source.current is None:
            await asyncio.to_thread(self.source.reload)
        await asyncio.to_thread(self.overrides.reload)
        self.is_running = True
        self._loop_task = asyncio.create_task(self.run())
        logger.info("Shift scheduler service started")

    async def stop(self) -> None:
        """Cancel every armed timer and the tick loop. Safe to call when not running."""
        was_running = self.is_running
        self.is_running = False
        for timer in self._armed.values():
            if timer.handle is not None:
                timer.handle.cancel()
        self._armed.clear()
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Shift scheduler service stopped" if was_running else "Shift scheduler not running")

    async def run(self) -> None:
        while self.is_running:
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self.tick_interval)

    # === Arming ===

    @property
    def armed_keys(self) -> list[TimerKey]:
        return sorted(self._armed, key=lambda key: (key[1], key[0]))

    def tick(self, now: datetime.datetime | None = None) -> int:
        """
        Re-evaluate every layer and arm timers for occurrences within the look-ahead.

        Returns:
            Number of timers newly armed
        """
        now = ensure_aware(now or self.clock())
        document = self.source.current
        if document is None:
            logger.warning("No schedule loaded, refusing to arm notifications")
            return 0

        for key, timer in list(self._armed.items()):
            if timer.occurrence < now:
                if timer.handle is not None:
                    timer.handle.cancel()
                del self._armed[key]
        for key, occurrence in list(self._fired.items()):
            if occurrence < now:
                del self._fired[key]

        armed = 0
        for layer in document.layers():
            try:
                occurrence = next_occurrence(layer, now)
            except ConfigurationError as e:
                logger.error("Skipping layer %s: %s", layer.key, e, extra={"extra_fields": {"layer_key": layer.key}})
                continue

            if occurrence is None:
                continue
            if occurrence - now <= self.lookahead and self._arm(layer, occurrence, now):
                armed += 1
        return armed

    def _arm(self, layer: Layer, occurrence: datetime.datetime, now: datetime.datetime) -> bool:
        key = (layer.key, occurrence)
        if key in self._armed or key in self._fired:
            return False

        fire_at = occurrence - self.notify_lead
        if fire_at <= now:
            return False

        timer = ArmedTimer(layer=layer, occurrence=occurrence, fire_at=fire_at)
        loop = asyncio.get_running_loop()
        timer.handle = loop.call_later((fire_at - now).total_seconds(), self._on_timer, key)
        timer.state = TimerState.ARMED
        self._armed[key] = timer
        logger.info(
            "Scheduled notification for %s at %s",
            layer.name,
            fire_at.isoformat(),
            extra={"extra_fields": {"layer_key": layer.key, "occurrence": occurrence.isoformat()}},
        )
        return True

    def _on_timer(self, key: TimerKey) -> None:
        timer = self._armed.pop(key, None)
        if timer is None:
            return
        timer.state = TimerState.FIRED
        self._fired[key] = timer.occurrence
        task = asyncio.get_running_loop().create_task(self.fire(timer.layer, timer.occurrence))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # === Firing ===

    def build_transition(
        self,
        layer: Layer,
        occurrence: datetime.datetime,
        overrides: OverrideStore | None = None,
    ) -> ShiftTransition:
        overrides = overrides if overrides is not None else self.overrides.current
        assignment = assign(layer, occurrence, overrides)
        end = shift_end(layer, occurrence)
        spillover = self.post_boundary_spillover(end, overrides) if layer.kind is LayerKind.WEEKEND else None
        return ShiftTransition(
            layer_key=layer.key,
            layer_name=layer.name,
            current_assignee=assignment.person,
            is_override=assignment.is_override,
            shift_start=occurrence,
            shift_end=end,
            upcoming_assignments=self.next_shifts_in_sequence(occurrence, overrides, self.upcoming_count),
            post_boundary_spillover=spillover,
        )

    async def fire(self, layer: Layer, occurrence: datetime.datetime) -> ShiftTransition | None:
        """
        Resolve and announce one occurrence. Dispatch failures are logged and
        not retried; the occurrence stays fired either way.
        """
        overrides = await asyncio.to_thread(self.overrides.reload)
        try:
            transition = self.build_transition(layer, occurrence, overrides)
        except ConfigurationError:
            logger.exception("Cannot build transition for %s", layer.key)
            return None

        if self.history is not None:
            assignment = Assignment(person=transition.current_assignee, is_override=transition.is_override)
            try:
                await asyncio.to_thread(self.history.record_fired, layer, occurrence, assignment)
            except Exception:
                logger.exception("Failed to record historical assignment for %s", layer.key)

        try:
            await self.dispatcher.dispatch(transition)
        except DispatchFailure as e:
            logger.error(
                "Notification dispatch failed: %s",
                e,
                extra={"extra_fields": {"layer_key": layer.key, "occurrence": occurrence.isoformat()}},
            )
        return transition

    # === Queries ===

    def _document(self) -> ScheduleDocument | None:
        return self.source.current

    def active_layer_at(self, instant: datetime.datetime) -> Layer | None:
        """
        Layer whose window contains `instant`: weekend layers first, then
        weekday layers in declaration order. None when no layer is active.
        """
        document = self._document()
        if document is None:
            return None
        for layer in document.layers():
            try:
                if is_within_window(layer, instant):
                    return layer
            except ConfigurationError as e:
                logger.error("Skipping layer %s: %s", layer.key, e)
        return None

    def next_shifts_in_sequence(
        self,
        now: datetime.datetime,
        overrides: OverrideStore | None = None,
        count: int = UPCOMING_ASSIGNMENTS_COUNT,
    ) -> list[UpcomingAssignment]:
        """
        The next `count` weekday-layer shifts across all layers, in real start order.

        Candidates are every weekday layer's start on each of the next few
        non-weekend days; only those strictly after `now` count.
        """
        document = self._document()
        if document is None or count <= 0:
            return []
        overrides = overrides if overrides is not None else self.overrides.current
        now = ensure_aware(now)

        upcoming: list[UpcomingAssignment] = []
        for layer in document.weekday:
            local_today = now.astimezone(layer.tz).date()
            for day_offset in range(SEQUENCE_LOOKAHEAD_DAYS + 1):
                day = local_today + datetime.timedelta(days=day_offset)
                if is_weekend_day(day):
                    continue
                start = shift_start_on(layer, day)
                if start <= now:
                    continue
                try:
                    assignment = assign(layer, start, overrides)
                except ConfigurationError:
                    continue
                upcoming.append(
                    UpcomingAssignment(
                        layer_key=layer.key,
                        layer_name=layer.name,
                        person=assignment.person,
                        start=start,
                        is_override=assignment.is_override,
                    )
                )

        upcoming.sort(key=lambda item: item.start)
        return upcoming[:count]

    def post_boundary_spillover(
        self,
        boundary: datetime.datetime,
        overrides: OverrideStore | None = None,
    ) -> list[UpcomingAssignment]:
        """First shift of every weekday layer at or after `boundary`."""
        document = self._document()
        if document is None:
            return []
        overrides = overrides if overrides is not None else self.overrides.current
        probe = boundary - datetime.timedelta(seconds=1)

        spillover = []
        for layer in document.weekday:
            occurrence = next_occurrence(layer, probe)
            if occurrence is None:
                continue
            assignment = assign(layer, occurrence, overrides)
            spillover.append(
                UpcomingAssignment(
                    layer_key=layer.key,
                    layer_name=layer.name,
                    person=assignment.person,
                    start=occurrence,
                    is_override=assignment.is_override,
                )
            )
        spillover.sort(key=lambda item: item.start)
        return spillover

    def current_shift_start(self, layer: Layer, instant: datetime.datetime) -> datetime.datetime:
        """Start of the occurrence of `layer` that contains `instant`."""
        local = ensure_aware(instant).astimezone(layer.tz)
        start = shift_start_on(layer, local.date())
        while start > local:
            start -= datetime.timedelta(days=1)
        if layer.kind is LayerKind.WEEKEND:
            while start.weekday() != layer.start_time.weekday():
                start -= datetime.timedelta(days=1)
        return start

    def current_assignment(self, instant: datetime.datetime | None = None) -> dict[str, Any] | None:
        """Who is on call at `instant`, when the shift ends, and who comes next."""
        now = ensure_aware(instant or self.clock())
        layer = self.active_layer_at(now)
        if layer is None:
            return None
        overrides = self.overrides.current
        # Cross-midnight shifts belong to the date they started on
        start = self.current_shift_start(layer, now)
        assignment = assign(layer, start, overrides)
        return {
            "now": now,
            "active_layer_key": layer.key,
            "active_layer_name": layer.name,
            "current_person": assignment.person,
            "current_is_override": assignment.is_override,
            "current_ends_at": shift_end(layer, start),
            "next": self.next_shifts_in_sequence(now, overrides, self.upcoming_count),
        }

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "active_notifications": len(self._armed),
            "armed": [{"layer_key": key, "occurrence": occurrence} for key, occurrence in self.armed_keys],
            "notifications": self.dispatcher.config(),
            "schedule_loaded": self.source.current is not None,
        }
