"""
Session window evaluation.

Derives a session's displayed status from its stored status and its time
window. Nothing here writes to the database: a session whose stored status
is still "active" after its end time is reported as expired on every read,
so no background job is needed to rewrite it.

Precedence of the effective status:
    cancelled > completed > expired > active > draft
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from proctor.core.config import settings
from proctor.core.datetime_utils import ensure_timezone_aware
from proctor.core.error_responses import ErrorMessages
from proctor.core.exceptions import InvalidSessionWindowError
from proctor.models.models import EffectiveSessionStatus, SessionStatus


class SessionLike(Protocol):
    """Fields of a session the window evaluation reads."""

    start_time: datetime
    end_time: datetime
    status: SessionStatus


@dataclass(frozen=True)
class SessionWindow:
    """Time-derived view of a session at one instant."""

    is_active: bool
    is_expired: bool
    effective_status: EffectiveSessionStatus


def evaluate_session_window(session: SessionLike, now: datetime) -> SessionWindow:
    """
    Evaluate a session's window at ``now``.

    Args:
        session: Session with start_time, end_time and stored status.
        now: Timezone-aware current time.

    Returns:
        SessionWindow with is_active, is_expired and effective_status.
    """
    start = ensure_timezone_aware(session.start_time)
    end = ensure_timezone_aware(session.end_time)
    stored = SessionStatus(session.status)

    is_expired = now > end
    is_active = stored == SessionStatus.ACTIVE and start <= now <= end

    if stored == SessionStatus.CANCELLED:
        effective = EffectiveSessionStatus.CANCELLED
    elif stored == SessionStatus.COMPLETED:
        effective = EffectiveSessionStatus.COMPLETED
    elif is_expired:
        effective = EffectiveSessionStatus.EXPIRED
    elif is_active:
        effective = EffectiveSessionStatus.ACTIVE
    else:
        # Draft, or stored active but not yet started
        effective = EffectiveSessionStatus.DRAFT

    return SessionWindow(
        is_active=is_active,
        is_expired=is_expired,
        effective_status=effective,
    )


def validate_session_window(start_time: datetime, end_time: datetime) -> None:
    """
    Reject malformed session windows at creation time.

    Raises:
        InvalidSessionWindowError: If end is not after start, or the window is
            shorter or longer than the configured limits.
    """
    start = ensure_timezone_aware(start_time)
    end = ensure_timezone_aware(end_time)

    if end <= start:
        raise InvalidSessionWindowError(ErrorMessages.SESSION_END_BEFORE_START)

    duration = end - start
    if duration < timedelta(minutes=settings.SESSION_MIN_DURATION_MINUTES):
        raise InvalidSessionWindowError(
            ErrorMessages.session_too_short(settings.SESSION_MIN_DURATION_MINUTES)
        )
    if duration > timedelta(hours=settings.SESSION_MAX_DURATION_HOURS):
        raise InvalidSessionWindowError(
            ErrorMessages.session_too_long(settings.SESSION_MAX_DURATION_HOURS)
        )


def session_time_progress(session: SessionLike, now: datetime) -> float:
    """Percentage (0-100) of the session window that has elapsed at ``now``."""
    start = ensure_timezone_aware(session.start_time)
    end = ensure_timezone_aware(session.end_time)
    total = (end - start).total_seconds()
    if total <= 0:
        return 0.0
    elapsed = (now - start).total_seconds()
    return round(min(100.0, max(0.0, elapsed / total * 100)), 2)


def session_time_remaining(session: SessionLike, now: datetime) -> int:
    """Whole seconds until the session window closes, 0 once it has."""
    end = ensure_timezone_aware(session.end_time)
    return max(0, int((end - now).total_seconds()))
