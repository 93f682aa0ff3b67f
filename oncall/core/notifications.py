"""
Shift-transition notifications.

The dispatcher renders a ShiftTransition into a main message plus a threaded
handover reply and hands both to a NotificationSink. Sinks decide how the
text is transmitted; Slack is the production sink.
"""

import asyncio
import logging
from typing import Any, Protocol

import httpx

from oncall.core.config import DISPATCH_TIMEOUT_SECONDS
from oncall.core.errors import DispatchFailure
from oncall.core.models import ShiftTransition, TeamMember, UpcomingAssignment
from oncall.core.time_utils import format_utc

logger = logging.getLogger(__name__)


def render_main_text(transition: ShiftTransition, assignee: str | None = None) -> str:
    return (
        ":rotating_light: *ON-CALL SHIFT UPDATE* :rotating_light:\n\n"
        ":large_green_circle: *CURRENT ON-CALL*\n"
        f":pager: {assignee or transition.current_assignee} is now on-call until {format_utc(transition.shift_end)}"
    )


def _handover_line(index: int, person: str, upcoming: UpcomingAssignment) -> str:
    start = format_utc(upcoming.start)
    if index == 0:
        return f":large_yellow_circle: NEXT: {person} starts at {start}"
    if index == 1:
        return f":large_orange_circle: AFTER: {person} starts at {start}"
    return f":large_blue_circle: {person} - {start}"


def render_thread_text(transition: ShiftTransition, names: dict[str, str] | None = None) -> str | None:
    """Handover and post-weekend lines, or None when there is nothing to add."""
    names = names or {}
    parts = []

    if transition.upcoming_assignments:
        lines = [
            _handover_line(i, names.get(a.person, a.person), a)
            for i, a in enumerate(transition.upcoming_assignments)
        ]
        parts.append(":arrows_counterclockwise: Handover\n" + "\n".join(lines))

    if transition.post_boundary_spillover:
        lines = [
            f"• {a.layer_name}: {names.get(a.person, a.person)} starts at {format_utc(a.start)}"
            for a in transition.post_boundary_spillover
        ]
        parts.append(":calendar: After weekend ends:\n" + "\n".join(lines))

    return "\n\n".join(parts) if parts else None


def _people(transition: ShiftTransition) -> set[str]:
    people = {transition.current_assignee}
    people.update(a.person for a in transition.upcoming_assignments)
    people.update(a.person for a in transition.post_boundary_spillover or [])
    return people


class NotificationSink(Protocol):
    async def send(self, transition: ShiftTransition) -> Any: ...


class LoggingSink:
    """Writes transitions to the log. Used when no Slack channel is configured."""

    async def send(self, transition: ShiftTransition) -> dict[str, Any]:
        logger.info(
            "%s\n%s",
            render_main_text(transition),
            render_thread_text(transition) or "",
            extra={"extra_fields": {"layer_key": transition.layer_key}},
        )
        return {"ok": True}


class RecordingSink:
    """Keeps every transition in memory."""

    def __init__(self):
        self.transitions: list[ShiftTransition] = []

    async def send(self, transition: ShiftTransition) -> dict[str, Any]:
        self.transitions.append(transition)
        return {"ok": True}


class SlackNotificationSink:
    """
    Posts transitions to a Slack channel through the Web API.

    The main message names the current assignee; handover details go into a
    threaded reply. People are mentioned as <@id> when the team roster gives
    a slack_id or an email Slack can resolve, otherwise by plain name.
    """

    def __init__(
        self,
        bot_token: str,
        channel_id: str,
        members: list[TeamMember] | None = None,
        base_url: str = "https://slack.com/api",
        client: httpx.AsyncClient | None = None,
    ):
        self.bot_token = bot_token
        self.channel_id = channel_id
        self.members = members or []
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._slack_id_cache: dict[str, str | None] = {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DISPATCH_TIMEOUT_SECONDS)
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.bot_token}", "Content-Type": "application/json"}

    def find_member(self, name: str) -> TeamMember | None:
        """Match a short person name ("dinesh") against id, name or email prefix."""
        needle = (name or "").strip().lower()
        if not needle:
            return None
        for member in self.members:
            if (
                member.id.lower().startswith(needle)
                or (member.name or "").lower().startswith(needle)
                or (member.email or "").lower().startswith(needle + ".")
            ):
                return member
        return None

    async def lookup_slack_id(self, email: str) -> str | None:
        key = email.lower()
        if key in self._slack_id_cache:
            return self._slack_id_cache[key]
        try:
            response = await self._http().get(
                f"{self.base_url}/users.lookupByEmail", params={"email": email}, headers=self._headers
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Slack users.lookupByEmail failed for %s: %s", email, e)
            return None
        slack_id = (result.get("user") or {}).get("id") if result.get("ok") else None
        if slack_id is None:
            logger.warning("Slack users.lookupByEmail failed for %s: %s", email, result.get("error"))
        self._slack_id_cache[key] = slack_id
        return slack_id

    async def resolve_mention(self, name: str) -> str:
        member = self.find_member(name)
        if member is None:
            return name
        if member.slack_id:
            return f"<@{member.slack_id}>"
        if not member.email:
            return name
        slack_id = await self.lookup_slack_id(member.email)
        return f"<@{slack_id}>" if slack_id else name

    async def post_message(self, text: str, thread_ts: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"channel": self.channel_id, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        logger.debug("Sending Slack message", extra={"extra_fields": {"thread": bool(thread_ts), "length": len(text)}})
        try:
            response = await self._http().post(
                f"{self.base_url}/chat.postMessage", json=payload, headers=self._headers
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DispatchFailure(f"Slack request failed: {e}") from e
        if not result.get("ok"):
            raise DispatchFailure(f"Slack API error: {result.get('error')}")
        return result

    async def send(self, transition: ShiftTransition) -> dict[str, Any]:
        names = {person: await self.resolve_mention(person) for person in _people(transition)}
        main = await self.post_message(render_main_text(transition, names[transition.current_assignee]))
        thread_text = render_thread_text(transition, names)
        if thread_text and main.get("ts"):
            await self.post_message(thread_text, thread_ts=main["ts"])
        return main

    async def test_connection(self) -> bool:
        try:
            await self.post_message(":test_tube: Test notification from the on-call scheduler")
        except DispatchFailure as e:
            logger.error("Slack connection test failed: %s", e)
            return False
        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class NotificationDispatcher:
    """Sends ShiftTransitions through a sink with a per-dispatch timeout."""

    def __init__(
        self,
        sink: NotificationSink,
        enabled: bool = True,
        timeout_seconds: float = DISPATCH_TIMEOUT_SECONDS,
        minutes_before: int = 0,
    ):
        self.sink = sink
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self.minutes_before = minutes_before

    async def dispatch(self, transition: ShiftTransition) -> Any:
        """
        Send one transition.

        Raises:
            DispatchFailure: If the sink rejects the message or times out
        """
        if not self.enabled:
            logger.info("Notifications disabled, not sending %s", transition.layer_key)
            return None
        try:
            result = await asyncio.wait_for(self.sink.send(transition), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise DispatchFailure(
                f"Notification for {transition.layer_key} timed out after {self.timeout_seconds}s"
            ) from e
        except DispatchFailure:
            raise
        except Exception as e:
            raise DispatchFailure(f"Notification for {transition.layer_key} failed: {e}") from e
        logger.info(
            "Sent notification for %s shift",
            transition.layer_name,
            extra={
                "extra_fields": {
                    "layer_key": transition.layer_key,
                    "occurrence": transition.shift_start.isoformat(),
                    "assignee": transition.current_assignee,
                }
            },
        )
        return result

    async def test_connection(self) -> bool:
        tester = getattr(self.sink, "test_connection", None)
        if tester is None:
            return True
        return await tester()

    def config(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "minutes_before": self.minutes_before,
            "sink": type(self.sink).__name__,
            "channel_id": getattr(self.sink, "channel_id", None),
        }
