"""
Tests for message rendering, the dispatcher timeout and the Slack sink.

The Slack Web API is replaced by an httpx.MockTransport.
"""

import asyncio
import datetime
import json
import sys
from pathlib import Path

import httpx
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# ruff: noqa: E402
from oncall.core.errors import DispatchFailure
from oncall.core.models import ShiftTransition, TeamMember, UpcomingAssignment
from oncall.core.notifications import (
    NotificationDispatcher,
    RecordingSink,
    SlackNotificationSink,
    render_main_text,
    render_thread_text,
)
from tests.sample_data import IST


def make_transition(spillover=None) -> ShiftTransition:
    return ShiftTransition(
        layer_key="layer1",
        layer_name="Layer 1",
        current_assignee="dinesh",
        shift_start=datetime.datetime(2025, 9, 25, 9, 30, tzinfo=IST),
        shift_end=datetime.datetime(2025, 9, 25, 15, 30, tzinfo=IST),
        upcoming_assignments=[
            UpcomingAssignment(
                layer_key="layer2",
                layer_name="Layer 2",
                person="melannie",
                start=datetime.datetime(2025, 9, 25, 15, 30, tzinfo=IST),
            ),
            UpcomingAssignment(
                layer_key="layer3",
                layer_name="Layer 3",
                person="kartikeya",
                start=datetime.datetime(2025, 9, 25, 21, 30, tzinfo=IST),
            ),
        ],
        post_boundary_spillover=spillover,
    )


class TestRendering:
    def test_main_text_names_assignee_and_utc_end(self):
        text = render_main_text(make_transition())

        assert "dinesh is now on-call until Sep 25, 10:00 AM UTC" in text

    def test_thread_text_lists_handover_in_order(self):
        text = render_thread_text(make_transition())

        assert "NEXT: melannie starts at Sep 25, 10:00 AM UTC" in text
        assert "AFTER: kartikeya starts at Sep 25, 4:00 PM UTC" in text
        assert text.index("NEXT") < text.index("AFTER")
        assert "After weekend ends" not in text

    def test_thread_text_includes_spillover(self):
        spillover = [
            UpcomingAssignment(
                layer_key="layer1",
                layer_name="Layer 1",
                person="melannie",
                start=datetime.datetime(2025, 9, 29, 9, 30, tzinfo=IST),
            )
        ]
        text = render_thread_text(make_transition(spillover))

        assert "After weekend ends" in text
        assert "Layer 1: melannie starts at Sep 29, 4:00 AM UTC" in text

    def test_nothing_to_add_gives_none(self):
        transition = make_transition().model_copy(update={"upcoming_assignments": []})
        assert render_thread_text(transition) is None


class SlowSink:
    async def send(self, transition):
        await asyncio.sleep(5)


class TestDispatcher:
    def test_dispatch_reaches_sink(self):
        sink = RecordingSink()
        dispatcher = NotificationDispatcher(sink)
        asyncio.run(dispatcher.dispatch(make_transition()))

        assert len(sink.transitions) == 1

    def test_timeout_raises_dispatch_failure(self):
        dispatcher = NotificationDispatcher(SlowSink(), timeout_seconds=0.01)

        with pytest.raises(DispatchFailure, match="timed out"):
            asyncio.run(dispatcher.dispatch(make_transition()))

    def test_disabled_dispatcher_sends_nothing(self):
        sink = RecordingSink()
        dispatcher = NotificationDispatcher(sink, enabled=False)
        asyncio.run(dispatcher.dispatch(make_transition()))

        assert sink.transitions == []


class FakeSlack:
    """Records Slack Web API calls and answers them."""

    def __init__(self, post_ok=True):
        self.posts = []
        self.lookups = []
        self.post_ok = post_ok

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/chat.postMessage"):
            payload = json.loads(request.content)
            self.posts.append(payload)
            if not self.post_ok:
                return httpx.Response(200, json={"ok": False, "error": "channel_not_found"})
            return httpx.Response(200, json={"ok": True, "ts": f"{len(self.posts)}.000"})
        if request.url.path.endswith("/users.lookupByEmail"):
            self.lookups.append(request.url.params["email"])
            return httpx.Response(200, json={"ok": True, "user": {"id": "U_MEL"}})
        return httpx.Response(404)


def make_sink(fake: FakeSlack) -> SlackNotificationSink:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    members = [
        TeamMember(id="dinesh.kumar", name="Dinesh Kumar", slack_id="U_DIN"),
        TeamMember(id="melannie.fernandes", name="Melannie Fernandes", email="melannie.fernandes@example.com"),
    ]
    return SlackNotificationSink("xoxb-test", "C123", members=members, base_url="https://slack.test/api", client=client)


class TestSlackSink:
    def test_main_message_and_thread_reply(self):
        fake = FakeSlack()
        sink = make_sink(fake)
        asyncio.run(sink.send(make_transition()))

        assert len(fake.posts) == 2
        main, reply = fake.posts
        assert main["channel"] == "C123"
        assert "<@U_DIN> is now on-call" in main["text"]
        assert reply["thread_ts"] == "1.000"
        assert "NEXT: <@U_MEL>" in reply["text"]
        assert "kartikeya" in reply["text"], "Unknown people fall back to plain names"

    def test_email_lookup_is_cached(self):
        fake = FakeSlack()
        sink = make_sink(fake)

        async def scenario():
            await sink.resolve_mention("melannie")
            await sink.resolve_mention("melannie")

        asyncio.run(scenario())

        assert fake.lookups == ["melannie.fernandes@example.com"]

    def test_api_error_raises_dispatch_failure(self):
        sink = make_sink(FakeSlack(post_ok=False))

        with pytest.raises(DispatchFailure, match="channel_not_found"):
            asyncio.run(sink.send(make_transition()))

    def test_connection_test_reports_failure(self):
        sink = make_sink(FakeSlack(post_ok=False))
        assert asyncio.run(sink.test_connection()) is False
