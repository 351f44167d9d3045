"""
Tests for the participant attendance state machine.
"""
import pytest
from sqlalchemy import func, select

from conftest import at
from proctor.core import participant_status
from proctor.core.exceptions import StateConflictError
from proctor.core.participant_status import (
    all_required_finished,
    mark_completed,
    mark_started,
    register,
    sweep_no_show,
)
from proctor.models import (
    AttemptStatus,
    ParticipantStatus,
    SessionParticipant,
    SessionStatus,
    TestAttempt,
)


async def _participant_count(db, session_id):
    return await db.scalar(
        select(func.count(SessionParticipant.id)).where(
            SessionParticipant.session_id == session_id
        )
    )


async def _finalize(db, session, user, test, status=AttemptStatus.COMPLETED):
    attempt = TestAttempt(
        session_id=session.id,
        user_id=user.id,
        test_id=test.id,
        status=status,
        started_at=at(9, 5),
        completed_at=at(9, 30),
        total_questions=test.total_questions,
    )
    db.add(attempt)
    await db.commit()
    return attempt


class TestRegister:
    """Tests for register."""

    async def test_registers_new_participant(
        self, async_db_session, morning_session, test_user
    ):
        """A first registration creates a registered row."""
        participant = await register(async_db_session, morning_session, test_user.id, at(9, 5))

        assert participant.status == ParticipantStatus.REGISTERED
        assert participant.session_id == morning_session.id
        assert participant.user_id == test_user.id

    async def test_registration_is_idempotent(
        self, async_db_session, morning_session, test_user
    ):
        """Registering twice returns the same row and creates no duplicate."""
        first = await register(async_db_session, morning_session, test_user.id, at(9, 5))
        second = await register(async_db_session, morning_session, test_user.id, at(9, 6))

        assert second.id == first.id
        assert await _participant_count(async_db_session, morning_session.id) == 1

    async def test_existing_started_participant_returned_unchanged(
        self, async_db_session, morning_session, test_user, make_participant
    ):
        """Registering after starting leaves the participant as started."""
        existing = await make_participant(
            morning_session, test_user, status=ParticipantStatus.STARTED
        )

        participant = await register(
            async_db_session, morning_session, test_user.id, at(10, 30)
        )

        assert participant.id == existing.id
        assert participant.status == ParticipantStatus.STARTED

    async def test_registration_before_start_allowed(
        self, async_db_session, morning_session, test_user
    ):
        """Users can register ahead of the window."""
        participant = await register(async_db_session, morning_session, test_user.id, at(8))

        assert participant.status == ParticipantStatus.REGISTERED

    async def test_late_entry_within_grace_allowed(
        self, async_db_session, morning_session, test_user
    ):
        """Registration is accepted up to the grace period after start."""
        participant = await register(
            async_db_session, morning_session, test_user.id, at(9, 15)
        )

        assert participant.status == ParticipantStatus.REGISTERED

    async def test_late_entry_after_grace_rejected(
        self, async_db_session, morning_session, test_user
    ):
        """Without late entry, registration closes after the grace period."""
        with pytest.raises(StateConflictError):
            await register(async_db_session, morning_session, test_user.id, at(9, 16))

    async def test_late_entry_allowed_when_enabled(
        self, async_db_session, make_session, test_module, test_user
    ):
        """allow_late_entry keeps registration open for the whole window."""
        session = await make_session(
            at(9), at(11), modules=(test_module,), allow_late_entry=True
        )

        participant = await register(async_db_session, session, test_user.id, at(10, 45))

        assert participant.status == ParticipantStatus.REGISTERED

    @pytest.mark.parametrize(
        "status", [SessionStatus.CANCELLED, SessionStatus.COMPLETED]
    )
    async def test_closed_session_rejected(
        self, async_db_session, make_session, test_module, test_user, status
    ):
        """Cancelled and completed sessions accept no registrations."""
        session = await make_session(at(9), at(11), status=status, modules=(test_module,))

        with pytest.raises(StateConflictError):
            await register(async_db_session, session, test_user.id, at(8))

    async def test_expired_session_rejected(
        self, async_db_session, make_session, test_module, test_user
    ):
        """A session past its end time accepts no registrations."""
        session = await make_session(
            at(9), at(11), modules=(test_module,), allow_late_entry=True
        )

        with pytest.raises(StateConflictError):
            await register(async_db_session, session, test_user.id, at(11, 1))

    async def test_full_session_rejected(
        self, async_db_session, make_session, test_module, test_user, make_user
    ):
        """max_participants caps new registrations."""
        session = await make_session(
            at(9), at(11), modules=(test_module,), max_participants=1
        )
        await register(async_db_session, session, test_user.id, at(8))
        other = await make_user("other@example.com")

        with pytest.raises(StateConflictError):
            await register(async_db_session, session, other.id, at(8))

    async def test_invited_participant_promoted(
        self, async_db_session, morning_session, test_user, make_participant
    ):
        """An invited row is promoted to registered in place."""
        invited = await make_participant(
            morning_session, test_user, status=ParticipantStatus.INVITED
        )

        participant = await register(async_db_session, morning_session, test_user.id, at(9))

        assert participant.id == invited.id
        assert participant.status == ParticipantStatus.REGISTERED
        assert await _participant_count(async_db_session, morning_session.id) == 1

    async def test_concurrent_duplicate_returns_winner(
        self, async_db_session, morning_session, test_user, monkeypatch
    ):
        """A unique-constraint race returns the row that won."""
        winner = SessionParticipant(
            session_id=morning_session.id,
            user_id=test_user.id,
            status=ParticipantStatus.REGISTERED,
            registered_at=at(9),
        )
        async_db_session.add(winner)
        await async_db_session.commit()

        calls = []
        real_get = participant_status.get_participant

        async def _miss_first(db, session_id, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                return None
            return await real_get(db, session_id, user_id)

        monkeypatch.setattr(participant_status, "get_participant", _miss_first)

        participant = await register(
            async_db_session, morning_session, test_user.id, at(9, 1)
        )

        assert participant.id == winner.id
        assert len(calls) == 2


class TestMarkStarted:
    """Tests for mark_started."""

    async def test_registered_to_started(
        self, async_db_session, morning_session, test_user, make_participant
    ):
        """A registered participant moves to started with a timestamp."""
        participant = await make_participant(morning_session, test_user)

        await mark_started(async_db_session, participant, at(9, 5))

        assert participant.status == ParticipantStatus.STARTED
        assert participant.started_at is not None

    @pytest.mark.parametrize(
        "status",
        [
            ParticipantStatus.STARTED,
            ParticipantStatus.COMPLETED,
            ParticipantStatus.NO_SHOW,
            ParticipantStatus.INVITED,
        ],
    )
    async def test_other_states_rejected(
        self, async_db_session, morning_session, test_user, make_participant, status
    ):
        """Only registered participants can start."""
        participant = await make_participant(morning_session, test_user, status=status)

        with pytest.raises(StateConflictError):
            await mark_started(async_db_session, participant, at(9, 5))


class TestMarkCompleted:
    """Tests for mark_completed."""

    async def test_completes_when_required_modules_finished(
        self, async_db_session, make_session, make_test_module, test_user, make_participant
    ):
        """Finishing every required module completes the participant."""
        first = await make_test_module("Verbal")
        second = await make_test_module("Spatial")
        session = await make_session(at(9), at(11), modules=(first, second))
        participant = await make_participant(
            session, test_user, status=ParticipantStatus.STARTED
        )
        await _finalize(async_db_session, session, test_user, first)

        assert await mark_completed(async_db_session, participant, at(9, 40)) is False
        assert participant.status == ParticipantStatus.STARTED

        await _finalize(
            async_db_session, session, test_user, second, AttemptStatus.AUTO_COMPLETED
        )

        assert await mark_completed(async_db_session, participant, at(10)) is True
        assert participant.status == ParticipantStatus.COMPLETED
        assert participant.completed_at is not None

    async def test_optional_modules_not_required(
        self, async_db_session, make_session, make_test_module, test_user, make_participant
    ):
        """Optional modules do not block completion."""
        required = await make_test_module("Verbal")
        optional = await make_test_module("Bonus")
        session = await make_session(
            at(9), at(11), modules=(required,), optional_modules=(optional,)
        )
        participant = await make_participant(
            session, test_user, status=ParticipantStatus.STARTED
        )
        await _finalize(async_db_session, session, test_user, required)

        assert await mark_completed(async_db_session, participant, at(9, 40)) is True

    async def test_session_without_required_modules(
        self, async_db_session, make_session, make_test_module, test_user, make_participant
    ):
        """With nothing required, a started participant completes on the next check."""
        optional = await make_test_module("Bonus")
        session = await make_session(at(9), at(11), optional_modules=(optional,))
        participant = await make_participant(
            session, test_user, status=ParticipantStatus.STARTED
        )
        await _finalize(async_db_session, session, test_user, optional)

        assert await mark_completed(async_db_session, participant, at(9, 40)) is True
        assert participant.status == ParticipantStatus.COMPLETED

    @pytest.mark.parametrize(
        "required, finished, expected",
        [
            ({1, 2}, {1}, False),
            ({1, 2}, {1, 2, 3}, True),
            (set(), set(), True),
            (set(), {3}, True),
        ],
    )
    def test_all_required_finished(self, required, finished, expected):
        assert all_required_finished(required, finished) is expected

    async def test_only_started_participants_complete(
        self, async_db_session, morning_session, test_module, test_user, make_participant
    ):
        """A registered participant is not completed even with finished attempts."""
        participant = await make_participant(morning_session, test_user)
        await _finalize(async_db_session, morning_session, test_user, test_module)

        assert await mark_completed(async_db_session, participant, at(9, 40)) is False
        assert participant.status == ParticipantStatus.REGISTERED


class TestSweepNoShow:
    """Tests for sweep_no_show."""

    async def test_sweeps_unstarted_participants_after_expiry(
        self, async_db_session, morning_session, make_user, make_participant
    ):
        """Invited and registered participants become no_show once expired."""
        statuses = [
            ParticipantStatus.INVITED,
            ParticipantStatus.REGISTERED,
            ParticipantStatus.STARTED,
            ParticipantStatus.COMPLETED,
        ]
        participants = []
        for index, status in enumerate(statuses):
            user = await make_user(f"user{index}@example.com")
            participants.append(
                await make_participant(morning_session, user, status=status)
            )

        swept = sweep_no_show(morning_session, participants, at(11, 1))

        assert swept == participants[:2]
        assert [p.status for p in participants] == [
            ParticipantStatus.NO_SHOW,
            ParticipantStatus.NO_SHOW,
            ParticipantStatus.STARTED,
            ParticipantStatus.COMPLETED,
        ]

    async def test_sweep_is_idempotent(
        self, async_db_session, morning_session, test_user, make_participant
    ):
        """A second sweep changes nothing."""
        participants = [await make_participant(morning_session, test_user)]

        sweep_no_show(morning_session, participants, at(11, 1))
        second = sweep_no_show(morning_session, participants, at(11, 1))

        assert second == []
        assert participants[0].status == ParticipantStatus.NO_SHOW

    async def test_no_sweep_before_expiry(
        self, async_db_session, morning_session, test_user, make_participant
    ):
        """Nobody is a no-show while the session is still running."""
        participants = [await make_participant(morning_session, test_user)]

        assert sweep_no_show(morning_session, participants, at(10, 59)) == []
        assert participants[0].status == ParticipantStatus.REGISTERED
