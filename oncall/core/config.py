# oncall/core/config.py

import os
from typing import Final

from pydantic import BaseModel

# ==========================
# Scheduler
# ==========================

#: Sekunder mellan två omvärderingar av schemat (en "tick").
TICK_INTERVAL_SECONDS: Final[int] = 60

#: Hur långt fram en förekomst får ligga för att en timer ska armeras.
LOOKAHEAD_HOURS: Final[int] = 24

#: Max antal dagar som förekomstsökningen provar innan den ger upp.
OCCURRENCE_SEARCH_DAYS: Final[int] = 7

#: Skift som börjar före denna timme (lokal tid) får även starta en lördag,
#: eftersom de logiskt hör till fredag natt.
EARLY_MORNING_CUTOFF_HOUR: Final[int] = 10

#: Antal kommande pass som tas med som överlämningsinformation.
UPCOMING_ASSIGNMENTS_COUNT: Final[int] = 2

#: Antal dagar framåt som den tvärgående sekvensen av pass räknas fram.
SEQUENCE_LOOKAHEAD_DAYS: Final[int] = 3


# ==========================
# Tid och datum
# ==========================

#: UTC-offset som används när ett ISO-värde saknar offset eller har en
#: trasig offset. Varje sådan fallback loggas som WARNING.
DEFAULT_UTC_OFFSET: Final[str] = "+00:00"

#: Format för månadsnycklar ("2025-09").
MONTH_FORMAT_ISO: Final[str] = "%Y-%m"


# ==========================
# Notifieringar och historik
# ==========================

#: Maxtid för ett enskilt utskick till notifieringskanalen.
DISPATCH_TIMEOUT_SECONDS: Final[float] = 10.0

#: Antal månader historik som behålls vid städning.
RETENTION_MONTHS: Final[int] = 6

#: Standardvärde för antal versioner i versionshistoriken.
VERSION_HISTORY_LIMIT: Final[int] = 10


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class AppSettings(BaseModel):
    """Deployment settings read from the environment."""

    schedule_path: str = "data/schedule.yaml"
    overrides_path: str = "data/overrides.json"
    teams_path: str = "data/teams.yaml"
    database_url: str = "sqlite:///./data/history.db"
    notify_minutes_before: int = 0
    notifications_enabled: bool = True
    slack_bot_token: str | None = None
    slack_channel_id: str | None = None
    slack_api_base_url: str = "https://slack.com/api"
    dispatch_timeout_seconds: float = DISPATCH_TIMEOUT_SECONDS
    retention_months: int = RETENTION_MONTHS
    scheduler_autostart: bool = True
    production: bool = False

    @classmethod
    def from_env(cls) -> "AppSettings":
        defaults = cls()
        return cls(
            schedule_path=os.getenv("SCHEDULE_PATH", defaults.schedule_path),
            overrides_path=os.getenv("OVERRIDES_PATH", defaults.overrides_path),
            teams_path=os.getenv("TEAMS_PATH", defaults.teams_path),
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            notify_minutes_before=int(os.getenv("NOTIFY_MINUTES_BEFORE", defaults.notify_minutes_before)),
            notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", defaults.notifications_enabled),
            slack_bot_token=os.getenv("SLACK_BOT_TOKEN") or None,
            slack_channel_id=os.getenv("SLACK_CHANNEL_ID") or None,
            slack_api_base_url=os.getenv("SLACK_API_BASE_URL", defaults.slack_api_base_url),
            dispatch_timeout_seconds=float(
                os.getenv("DISPATCH_TIMEOUT_SECONDS", defaults.dispatch_timeout_seconds)
            ),
            retention_months=int(os.getenv("RETENTION_MONTHS", defaults.retention_months)),
            scheduler_autostart=_env_bool("SCHEDULER_AUTOSTART", defaults.scheduler_autostart),
            production=_env_bool("PRODUCTION", defaults.production),
        )
