"""Sentry error tracking.

Initialization is skipped when SENTRY_DSN is empty, in which case every
function here is a no-op. Capture never raises: a failing error reporter
must not turn a handled error into a second one.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from proctor.core.config import settings

logger = logging.getLogger(__name__)

_initialized = False


def _serialize_value(value: Any) -> Any:
    """Convert a context value to something Sentry can store as JSON."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize_value(item) for item in value]
    return str(value)


def init_error_tracking() -> bool:
    """Initialize the Sentry SDK with FastAPI/Starlette integrations.

    Returns:
        True if Sentry was initialized, False if skipped or failed.
    """
    global _initialized

    if not settings.SENTRY_DSN:
        logger.debug("Sentry initialization skipped (DSN not configured)")
        return False

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENV,
            release=settings.APP_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                LoggingIntegration(level=None, event_level=None),
                FastApiIntegration(transaction_style="endpoint"),
                StarletteIntegration(transaction_style="endpoint"),
            ],
            send_default_pii=False,
        )
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}", exc_info=True)
        return False

    _initialized = True
    logger.info(
        f"Sentry initialized for environment '{settings.ENV}' "
        f"with {settings.SENTRY_TRACES_SAMPLE_RATE * 100:.0f}% trace sampling"
    )
    return True


def capture_error(
    exception: BaseException,
    *,
    context: Optional[dict[str, Any]] = None,
    tags: Optional[dict[str, str]] = None,
    level: str = "error",
) -> Optional[str]:
    """Send an exception to Sentry with optional context and tags.

    Returns:
        The Sentry event ID, or None when tracking is disabled or failed.
    """
    if not _initialized:
        return None

    try:
        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("additional", _serialize_value(context))
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            scope.level = level
            return sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.warning(f"Failed to capture error in Sentry: {e}")
        return None


def shutdown_error_tracking(timeout: float = 2.0) -> None:
    """Flush pending Sentry events before the process exits."""
    if _initialized:
        sentry_sdk.flush(timeout=timeout)
