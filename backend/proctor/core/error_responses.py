"""
Standardized error response messages and builders.

All user-facing error messages live here so that endpoint code, domain
exceptions and tests agree on wording.

Error Message Format Guidelines:
- Use sentence case (capitalize first letter only)
- End with a period for complete sentences
- Include relevant IDs in parentheses when helpful for debugging: "(ID: 123)"

Usage:
    from proctor.core.error_responses import ErrorMessages, raise_not_found

    if session is None:
        raise_not_found(ErrorMessages.SESSION_NOT_FOUND)
"""

from typing import NoReturn

from fastapi import HTTPException, status


class ErrorMessages:
    """Centralized error message constants and templates.

    Naming Convention:
    - Constants: SCREAMING_SNAKE_CASE for static messages
    - Methods: snake_case for templates that accept parameters
    """

    # ==========================================================================
    # Authorization Errors (401)
    # ==========================================================================
    ADMIN_TOKEN_INVALID = "Invalid admin token."

    # ==========================================================================
    # Not Found Errors (404)
    # ==========================================================================
    SESSION_NOT_FOUND = "Test session not found."
    ATTEMPT_NOT_FOUND = "Test attempt not found."
    PARTICIPANT_NOT_FOUND = "Participant is not registered for this session."
    TEST_MODULE_NOT_FOUND = "Test module not found."
    USER_NOT_FOUND = "User not found."

    # ==========================================================================
    # Conflict Errors (409)
    # ==========================================================================
    LATE_ENTRY_CLOSED = "Registration is closed: the late-entry grace window has passed."
    SESSION_FULL = "Test session has reached its participant limit."
    PARTICIPANT_NOT_ELIGIBLE = (
        "Participant must be registered for the session before starting a test."
    )
    MODULE_NOT_IN_SESSION = "Test module is not part of this session."
    MODULE_ALREADY_IN_SESSION = "Test module is already part of this session."
    SESSION_CODE_TAKEN = "Session code already in use."
    ATTEMPT_NOT_STARTED = "Test attempt is not in progress."
    ANSWER_WRITE_CONFLICT = (
        "Another answer to this question was saved at the same time. Please retry."
    )

    # ==========================================================================
    # Bad Request Errors (400)
    # ==========================================================================
    SESSION_END_BEFORE_START = "Session end time must be after start time."

    # ==========================================================================
    # Configuration Errors (500)
    # ==========================================================================
    ADMIN_TOKEN_NOT_CONFIGURED = "Admin token not configured on server."

    # ==========================================================================
    # Template Methods for Dynamic Messages
    # ==========================================================================
    @staticmethod
    def attempt_finalized(status: str) -> str:
        """Message for writes against a completed or auto-completed attempt."""
        return f"Test attempt is already {status}. Answers can no longer be changed."

    @staticmethod
    def session_not_open(effective_status: str) -> str:
        """Message when a session's effective status blocks the operation."""
        return f"Test session is {effective_status}."

    @staticmethod
    def participant_already(status: str) -> str:
        """Message for participant transitions that would move backwards."""
        return f"Participant is already {status}."

    @staticmethod
    def invalid_status_transition(current: str, requested: str) -> str:
        """Message for a disallowed explicit session status change."""
        return f"Cannot change session status from {current} to {requested}."

    @staticmethod
    def session_too_short(minimum_minutes: int) -> str:
        """Message when a session window is shorter than allowed."""
        return f"Session must last at least {minimum_minutes} minutes."

    @staticmethod
    def session_too_long(maximum_hours: int) -> str:
        """Message when a session window is longer than allowed."""
        return f"Session cannot last longer than {maximum_hours} hours."

    @staticmethod
    def question_not_in_test(question_id: int) -> str:
        """Message when an answer references a question outside the attempt's test."""
        return f"Question {question_id} does not belong to this test."


# ==============================================================================
# HTTPException Builder Functions
# ==============================================================================


def raise_unauthorized(detail: str) -> NoReturn:
    """Raise a 401 Unauthorized exception."""
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
    )


def raise_not_found(detail: str) -> NoReturn:
    """Raise a 404 Not Found exception.

    Use when a requested resource doesn't exist.
    """
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def raise_conflict(detail: str) -> NoReturn:
    """Raise a 409 Conflict exception.

    Use when the request conflicts with current state (e.g., answering a
    finalized attempt).
    """
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
    )


def raise_not_configured(detail: str) -> NoReturn:
    """Raise a 500 error for missing server configuration."""
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )
