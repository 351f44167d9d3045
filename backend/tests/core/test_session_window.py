"""
Tests for session window evaluation.
"""
from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import at
from proctor.core.exceptions import InvalidSessionWindowError
from proctor.core.session_window import (
    evaluate_session_window,
    session_time_progress,
    session_time_remaining,
    validate_session_window,
)
from proctor.models import EffectiveSessionStatus, SessionStatus


def _session(status=SessionStatus.ACTIVE, start=None, end=None):
    return SimpleNamespace(
        start_time=start or at(9),
        end_time=end or at(11),
        status=status,
    )


class TestEvaluateSessionWindow:
    """Tests for evaluate_session_window."""

    def test_active_session_past_end_reads_as_expired(self):
        """Stored active after the end time is displayed as expired."""
        window = evaluate_session_window(_session(), at(11, 30))

        assert window.effective_status == EffectiveSessionStatus.EXPIRED
        assert window.is_active is False
        assert window.is_expired is True

    def test_active_inside_window(self):
        """Stored active inside the window is active."""
        window = evaluate_session_window(_session(), at(10))

        assert window.effective_status == EffectiveSessionStatus.ACTIVE
        assert window.is_active is True
        assert window.is_expired is False

    def test_window_bounds_are_inclusive(self):
        """The start and end instants both count as inside the window."""
        assert evaluate_session_window(_session(), at(9)).is_active is True
        at_end = evaluate_session_window(_session(), at(11))
        assert at_end.is_active is True
        assert at_end.is_expired is False

    def test_active_before_start_reads_as_draft(self):
        """An activated session that has not opened yet is not active."""
        window = evaluate_session_window(_session(), at(8, 59))

        assert window.is_active is False
        assert window.effective_status == EffectiveSessionStatus.DRAFT

    def test_draft_inside_window_is_not_active(self):
        """Only a stored active session can be active."""
        window = evaluate_session_window(_session(SessionStatus.DRAFT), at(10))

        assert window.is_active is False
        assert window.effective_status == EffectiveSessionStatus.DRAFT

    @pytest.mark.parametrize(
        "stored,expected",
        [
            (SessionStatus.CANCELLED, EffectiveSessionStatus.CANCELLED),
            (SessionStatus.COMPLETED, EffectiveSessionStatus.COMPLETED),
            (SessionStatus.DRAFT, EffectiveSessionStatus.EXPIRED),
        ],
    )
    def test_precedence_after_end(self, stored, expected):
        """Cancelled and completed outrank expired; expired outranks draft."""
        window = evaluate_session_window(_session(stored), at(12))

        assert window.effective_status == expected
        assert window.is_expired is True

    def test_cancelled_inside_window(self):
        """A cancelled session is never active."""
        window = evaluate_session_window(_session(SessionStatus.CANCELLED), at(10))

        assert window.is_active is False
        assert window.effective_status == EffectiveSessionStatus.CANCELLED

    def test_naive_datetimes_treated_as_utc(self):
        """Timestamps read back from SQLite without tzinfo are handled."""
        session = _session(
            start=at(9).replace(tzinfo=None), end=at(11).replace(tzinfo=None)
        )

        assert evaluate_session_window(session, at(10)).is_active is True

    def test_evaluation_does_not_modify_session(self):
        """Evaluation never rewrites the stored status."""
        session = _session()
        evaluate_session_window(session, at(12))

        assert session.status == SessionStatus.ACTIVE


class TestValidateSessionWindow:
    """Tests for validate_session_window."""

    def test_accepts_two_hour_window(self):
        """A regular window passes."""
        validate_session_window(at(9), at(11))

    def test_rejects_end_before_start(self):
        """End before start is rejected."""
        with pytest.raises(InvalidSessionWindowError, match="after start"):
            validate_session_window(at(11), at(9))

    def test_rejects_equal_times(self):
        """A zero-length window is rejected."""
        with pytest.raises(InvalidSessionWindowError):
            validate_session_window(at(9), at(9))

    def test_rejects_too_short(self):
        """Windows shorter than the configured minimum are rejected."""
        with pytest.raises(InvalidSessionWindowError, match="at least 30 minutes"):
            validate_session_window(at(9), at(9, 29))

    def test_rejects_too_long(self):
        """Windows longer than the configured maximum are rejected."""
        with pytest.raises(InvalidSessionWindowError, match="24 hours"):
            validate_session_window(at(9), at(9) + timedelta(hours=24, minutes=1))


class TestSessionTimeHelpers:
    """Tests for session_time_progress and session_time_remaining."""

    def test_progress_midway(self):
        """Half the window elapsed is 50%."""
        assert session_time_progress(_session(), at(10)) == 50.0

    def test_progress_clamped(self):
        """Progress stays within 0-100 outside the window."""
        assert session_time_progress(_session(), at(8)) == 0.0
        assert session_time_progress(_session(), at(12)) == 100.0

    def test_time_remaining(self):
        """Remaining time counts down to zero and stays there."""
        assert session_time_remaining(_session(), at(10, 30)) == 1800
        assert session_time_remaining(_session(), at(11, 30)) == 0
