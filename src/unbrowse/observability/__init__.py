"""Sentry error reporting.

Events are scrubbed before they leave the process: credential-bearing
request headers are dropped and messages pass through the log redactor.
"""

import logging
from typing import TYPE_CHECKING, Any

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from unbrowse.logging import get_redactor

if TYPE_CHECKING:
    from unbrowse.config import SentryConfig

logger = logging.getLogger(__name__)

SCRUBBED_HEADERS = frozenset(
    {"authorization", "cookie", "set-cookie", "x-api-key", "x-credential-key"}
)


def scrub_event(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """``before_send`` hook removing credential material from an event."""
    request = event.get("request")
    if isinstance(request, dict):
        headers = request.get("headers")
        if isinstance(headers, dict):
            request["headers"] = {
                name: value
                for name, value in headers.items()
                if name.lower() not in SCRUBBED_HEADERS
            }
        # Bodies carry ability params and transform code
        request.pop("data", None)
        request.pop("cookies", None)

    redactor = get_redactor()
    logentry = event.get("logentry")
    if isinstance(logentry, dict) and isinstance(logentry.get("message"), str):
        logentry["message"] = redactor.redact(logentry["message"])
    for exception in (event.get("exception") or {}).get("values") or []:
        if isinstance(exception.get("value"), str):
            exception["value"] = redactor.redact(exception["value"])
    return event


def init_sentry(config: "SentryConfig | None", server_mode: bool = False) -> bool:
    """Initialize Sentry if a DSN is configured.

    Args:
        config: Sentry configuration.
        server_mode: Whether running in server mode (enables FastAPI integration).

    Returns:
        True if Sentry was initialized, False otherwise.
    """
    if config is None or config.dsn is None:
        logger.debug("sentry_disabled")
        return False

    integrations = [
        AsyncioIntegration(),
        LoggingIntegration(
            level=logging.INFO,  # Capture INFO+ as breadcrumbs
            event_level=logging.ERROR,  # Create events for ERROR+
        ),
    ]
    if server_mode:
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        integrations.append(FastApiIntegration())

    sentry_sdk.init(
        dsn=config.dsn.get_secret_value(),
        environment=config.environment,
        release=config.release,
        traces_sample_rate=config.traces_sample_rate,
        profiles_sample_rate=config.profiles_sample_rate,
        send_default_pii=config.send_default_pii,
        debug=config.debug,
        integrations=integrations,
        before_send=scrub_event,
    )

    logger.info("sentry_initialized", extra={"sentry.environment": config.environment})
    return True
