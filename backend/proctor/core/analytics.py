"""
Analytics and event tracking for session, participant and attempt lifecycle
events.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from proctor.core.config import settings

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Analytics event types."""

    # Session events
    SESSION_CREATED = "session.created"
    SESSION_STATUS_CHANGED = "session.status_changed"

    # Participant events
    PARTICIPANT_REGISTERED = "participant.registered"
    PARTICIPANT_STARTED = "participant.started"
    PARTICIPANT_COMPLETED = "participant.completed"
    PARTICIPANT_NO_SHOW = "participant.no_show"

    # Attempt events
    ATTEMPT_STARTED = "attempt.started"
    ATTEMPT_COMPLETED = "attempt.completed"
    ATTEMPT_AUTO_COMPLETED = "attempt.auto_completed"
    ANSWER_SUBMITTED = "attempt.answer_submitted"

    # Errors
    API_ERROR = "api.error"


class AnalyticsTracker:
    """
    Analytics event tracker.

    Events are emitted as structured log records; an external analytics
    sink can consume them from the log stream.
    """

    @staticmethod
    def track_event(
        event_type: EventType,
        user_id: Optional[int] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Track an analytics event.

        Example:
            AnalyticsTracker.track_event(
                EventType.ATTEMPT_COMPLETED,
                user_id=123,
                properties={"attempt_id": 7, "time_spent_seconds": 1200}
            )
        """
        event_data = {
            "event": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": user_id,
            "properties": properties or {},
            "environment": settings.ENV,
        }

        logger.info(
            f"Analytics Event: {event_type.value}",
            extra={
                "event_data": event_data,
                "user_id": user_id,
            },
        )

    @staticmethod
    def track_session_created(session_id: int, start_time: datetime) -> None:
        """Track creation of a test session."""
        AnalyticsTracker.track_event(
            EventType.SESSION_CREATED,
            properties={"session_id": session_id, "start_time": start_time.isoformat()},
        )

    @staticmethod
    def track_session_status_changed(
        session_id: int, previous: str, current: str
    ) -> None:
        """Track an explicit session status change."""
        AnalyticsTracker.track_event(
            EventType.SESSION_STATUS_CHANGED,
            properties={
                "session_id": session_id,
                "previous_status": previous,
                "status": current,
            },
        )

    @staticmethod
    def track_participant_registered(user_id: int, session_id: int) -> None:
        """Track participant registration."""
        AnalyticsTracker.track_event(
            EventType.PARTICIPANT_REGISTERED,
            user_id=user_id,
            properties={"session_id": session_id},
        )

    @staticmethod
    def track_participant_started(user_id: int, session_id: int) -> None:
        """Track a participant starting their first test module."""
        AnalyticsTracker.track_event(
            EventType.PARTICIPANT_STARTED,
            user_id=user_id,
            properties={"session_id": session_id},
        )

    @staticmethod
    def track_participant_completed(user_id: int, session_id: int) -> None:
        """Track a participant finishing all required modules."""
        AnalyticsTracker.track_event(
            EventType.PARTICIPANT_COMPLETED,
            user_id=user_id,
            properties={"session_id": session_id},
        )

    @staticmethod
    def track_no_show(session_id: int, user_ids: list[int]) -> None:
        """Track participants swept to no_show after session expiry."""
        AnalyticsTracker.track_event(
            EventType.PARTICIPANT_NO_SHOW,
            properties={"session_id": session_id, "user_ids": user_ids},
        )

    @staticmethod
    def track_attempt_started(
        user_id: int, attempt_id: int, test_id: int, total_questions: int
    ) -> None:
        """Track start of a test attempt."""
        AnalyticsTracker.track_event(
            EventType.ATTEMPT_STARTED,
            user_id=user_id,
            properties={
                "attempt_id": attempt_id,
                "test_id": test_id,
                "total_questions": total_questions,
            },
        )

    @staticmethod
    def track_attempt_completed(
        user_id: int,
        attempt_id: int,
        time_spent_seconds: int,
        answered_count: int,
        auto_completed: bool = False,
    ) -> None:
        """Track a finished attempt, participant-initiated or expired."""
        AnalyticsTracker.track_event(
            (
                EventType.ATTEMPT_AUTO_COMPLETED
                if auto_completed
                else EventType.ATTEMPT_COMPLETED
            ),
            user_id=user_id,
            properties={
                "attempt_id": attempt_id,
                "time_spent_seconds": time_spent_seconds,
                "answered_count": answered_count,
            },
        )

    @staticmethod
    def track_answer_submitted(
        user_id: int, attempt_id: int, question_id: int, first_answer: bool
    ) -> None:
        """Track an answer write."""
        AnalyticsTracker.track_event(
            EventType.ANSWER_SUBMITTED,
            user_id=user_id,
            properties={
                "attempt_id": attempt_id,
                "question_id": question_id,
                "first_answer": first_answer,
            },
        )

    @staticmethod
    def track_api_error(
        method: str,
        path: str,
        error_type: str,
        error_message: str,
        user_id: Optional[int] = None,
    ) -> None:
        """Track API errors."""
        AnalyticsTracker.track_event(
            EventType.API_ERROR,
            user_id=user_id,
            properties={
                "method": method,
                "path": path,
                "error_type": error_type,
                "error_message": error_message,
            },
        )
