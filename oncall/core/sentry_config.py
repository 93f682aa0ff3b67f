# oncall/core/sentry_config.py
"""
Sentry configuration for error tracking in production.

Scheduler failures (dispatch errors, broken layers) are logged at ERROR and
reach Sentry as events through the logging integration.
"""

import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

logger = logging.getLogger(__name__)

RELEASE_VERSION = "oncall-scheduler@0.1.0"


def init_sentry(production: bool | None = None) -> bool:
    """
    Initialize Sentry error tracking.

    Returns:
        True if Sentry was initialized successfully, False otherwise.
    """
    if production is None:
        production = os.getenv("PRODUCTION", "false").lower() == "true"
    sentry_dsn = os.getenv("SENTRY_DSN", "").strip()

    if not production:
        logger.info("Sentry disabled in development mode")
        return False

    if not sentry_dsn:
        logger.warning(
            "SENTRY_DSN not set. Error tracking disabled. "
            "Set SENTRY_DSN environment variable to enable Sentry in production."
        )
        return False

    env = os.getenv("SENTRY_ENVIRONMENT", "production")
    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FastApiIntegration(),
                StarletteIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=0.1,
            sample_rate=1.0,
            release=os.getenv("RELEASE_VERSION", RELEASE_VERSION),
            environment=env,
            send_default_pii=False,
            attach_stacktrace=True,
            before_send=before_send_hook,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
        return False

    logger.info(f"Sentry initialized successfully (environment: {env})")
    return True


def before_send_hook(event, hint):
    """
    Filter sensitive data before sending to Sentry.

    Slack tokens travel in the Authorization header and occasionally end up
    in error messages from the Web API client.
    """
    request = event.get("request")
    if request:
        headers = request.get("headers") or {}
        for header in ("cookie", "authorization", "x-api-key"):
            if header in headers:
                headers[header] = "[Filtered]"

        query = request.get("query_string")
        if query and "token" in str(query).lower():
            request["query_string"] = "[Filtered]"

    bot_token = os.getenv("SLACK_BOT_TOKEN")
    if bot_token:
        for entry in (event.get("exception") or {}).get("values") or []:
            if entry.get("value") and bot_token in entry["value"]:
                entry["value"] = entry["value"].replace(bot_token, "[Filtered]")

    return event
