"""
Tests for live monitoring endpoints.
"""
from datetime import datetime, timedelta, timezone

from proctor.models import ParticipantStatus, SessionStatus


class TestLiveStats:
    """Tests for GET /v1/sessions/{id}/live-test/stats."""

    async def test_one_completed_one_not_started(
        self,
        async_client,
        admin_headers,
        live_window_session,
        make_user,
        make_participant,
    ):
        """Half the participants completed and nobody is mid-attempt."""
        await make_participant(
            live_window_session,
            await make_user("done@example.com"),
            status=ParticipantStatus.COMPLETED,
        )
        await make_participant(live_window_session, await make_user("late@example.com"))

        response = await async_client.get(
            f"/v1/sessions/{live_window_session.id}/live-test/stats",
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["effective_status"] == "active"
        assert data["total_participants"] == 2
        assert data["completed_participants"] == 1
        assert data["not_started_participants"] == 1
        assert data["active_participants"] == 0
        assert data["completion_rate"] == 50.0
        assert len(data["modules"]) == 1
        assert data["modules"][0]["average_completion_time"] is None

    async def test_expired_session_persists_no_shows(
        self,
        async_client,
        async_db_session,
        admin_headers,
        morning_session,
        test_user,
        make_participant,
    ):
        """Reading an expired session saves no_show for unstarted participants."""
        participant = await make_participant(morning_session, test_user)

        response = await async_client.get(
            f"/v1/sessions/{morning_session.id}/live-test/stats",
            headers=admin_headers,
        )

        data = response.json()
        assert data["effective_status"] == "expired"
        assert data["no_show_participants"] == 1
        assert data["time_remaining_seconds"] == 0
        await async_db_session.refresh(participant)
        assert participant.status == ParticipantStatus.NO_SHOW

    async def test_requires_admin_token(self, async_client, morning_session):
        response = await async_client.get(
            f"/v1/sessions/{morning_session.id}/live-test/stats",
            headers={"X-Admin-Token": "wrong"},
        )

        assert response.status_code == 401

    async def test_missing_session(self, async_client, admin_headers):
        response = await async_client.get(
            "/v1/sessions/9999/live-test/stats", headers=admin_headers
        )

        assert response.status_code == 404


class TestLiveParticipants:
    """Tests for GET /v1/sessions/{id}/live-test/participants."""

    async def test_participant_records(
        self, async_client, admin_headers, live_window_session, test_user, make_participant
    ):
        await make_participant(live_window_session, test_user)

        response = await async_client.get(
            f"/v1/sessions/{live_window_session.id}/live-test/participants",
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == live_window_session.id
        (record,) = data["participants"]
        assert record["user_id"] == test_user.id
        assert record["status"] == "registered"
        assert record["progress_percentage"] == 0.0
        assert record["current_test_name"] == "Numerical Reasoning"
        assert record["estimated_completion_at"] is None
        assert record["at_risk"] is False


class TestLiveSessions:
    """Tests for GET /v1/live-test/sessions."""

    async def test_lists_active_sessions_only(
        self, async_client, admin_headers, live_window_session, make_session
    ):
        start = datetime.now(timezone.utc) + timedelta(days=1)
        await make_session(
            start,
            start + timedelta(hours=2),
            status=SessionStatus.DRAFT,
            session_name="Next week",
        )

        response = await async_client.get("/v1/live-test/sessions", headers=admin_headers)

        assert response.status_code == 200
        sessions = response.json()["sessions"]
        assert [s["session_id"] for s in sessions] == [live_window_session.id]
        assert sessions[0]["is_active"] is True
