# oncall/core/services.py
"""
Application service container.

Builds the schedule/override sources, the ledger-backed history service, the
notification dispatcher and the scheduler from AppSettings, and hands them to
routes through a FastAPI dependency.
"""

import datetime
import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from oncall.core.config import AppSettings
from oncall.core.history import VersionedScheduleService
from oncall.core.ledger import Ledger
from oncall.core.notifications import LoggingSink, NotificationDispatcher, SlackNotificationSink
from oncall.core.scheduler import ShiftScheduler
from oncall.core.storage import OverrideSource, ScheduleSource, load_team_members
from oncall.database import database as db_module

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: AppSettings
    source: ScheduleSource
    overrides: OverrideSource
    ledger: Ledger
    history: VersionedScheduleService
    dispatcher: NotificationDispatcher
    scheduler: ShiftScheduler


def build_dispatcher(settings: AppSettings) -> NotificationDispatcher:
    """Slack when a bot token and channel are configured, the log otherwise."""
    if settings.slack_bot_token and settings.slack_channel_id:
        sink = SlackNotificationSink(
            bot_token=settings.slack_bot_token,
            channel_id=settings.slack_channel_id,
            members=load_team_members(settings.teams_path),
            base_url=settings.slack_api_base_url,
        )
    else:
        logger.warning("SLACK_BOT_TOKEN or SLACK_CHANNEL_ID not set, notifications go to the log")
        sink = LoggingSink()
    return NotificationDispatcher(
        sink,
        enabled=settings.notifications_enabled,
        timeout_seconds=settings.dispatch_timeout_seconds,
        minutes_before=settings.notify_minutes_before,
    )


def build_services(
    settings: AppSettings,
    dispatcher: NotificationDispatcher | None = None,
    session_factory: sessionmaker | None = None,
) -> Services:
    if session_factory is None and settings.database_url != db_module.DATABASE_URL:
        engine = db_module.make_engine(settings.database_url)
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    source = ScheduleSource(settings.schedule_path)
    overrides = OverrideSource(settings.overrides_path)
    ledger = Ledger(session_factory)
    history = VersionedScheduleService(ledger, source, overrides)
    dispatcher = dispatcher or build_dispatcher(settings)
    scheduler = ShiftScheduler(
        source,
        dispatcher,
        overrides=overrides,
        history=history,
        notify_lead=datetime.timedelta(minutes=settings.notify_minutes_before),
    )
    return Services(
        settings=settings,
        source=source,
        overrides=overrides,
        ledger=ledger,
        history=history,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


def get_services(request: Request) -> Services:
    """Dependency for getting the application services."""
    return request.app.state.services
