"""
Participant attendance state machine.

    invited -> registered -> started -> completed
    invited/registered -> no_show   (only once the session has expired)

Transitions only move forward. ``no_show`` never overwrites ``completed``
and is assigned lazily by ``sweep_no_show`` from read paths rather than by
a scheduler.
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.core.analytics import AnalyticsTracker
from proctor.core.config import settings
from proctor.core.datetime_utils import ensure_timezone_aware
from proctor.core.error_responses import ErrorMessages
from proctor.core.exceptions import StateConflictError
from proctor.core.session_window import evaluate_session_window
from proctor.models.models import (
    FINAL_ATTEMPT_STATUSES,
    EffectiveSessionStatus,
    ParticipantStatus,
    SessionModule,
    SessionParticipant,
    TestAttempt,
    TestSession,
)

logger = logging.getLogger(__name__)

# Statuses from which a participant can still be swept to no_show
NO_SHOW_ELIGIBLE = frozenset({ParticipantStatus.INVITED, ParticipantStatus.REGISTERED})

# Sessions whose effective status rejects new registrations
_CLOSED_FOR_REGISTRATION = frozenset(
    {
        EffectiveSessionStatus.CANCELLED,
        EffectiveSessionStatus.COMPLETED,
        EffectiveSessionStatus.EXPIRED,
    }
)


async def get_participant(
    db: AsyncSession, session_id: int, user_id: int
) -> SessionParticipant | None:
    """Load the participant row for (session_id, user_id), if any."""
    result = await db.execute(
        select(SessionParticipant).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


def _check_registration_open(session: TestSession, now: datetime) -> None:
    window = evaluate_session_window(session, now)
    if window.effective_status in _CLOSED_FOR_REGISTRATION:
        raise StateConflictError(
            ErrorMessages.session_not_open(window.effective_status.value)
        )

    if not session.allow_late_entry:
        grace_ends = ensure_timezone_aware(session.start_time) + timedelta(
            minutes=settings.LATE_ENTRY_GRACE_MINUTES
        )
        if now > grace_ends:
            raise StateConflictError(ErrorMessages.LATE_ENTRY_CLOSED)


async def _check_capacity(db: AsyncSession, session: TestSession) -> None:
    if session.max_participants is None:
        return
    count = await db.scalar(
        select(func.count(SessionParticipant.id)).where(
            SessionParticipant.session_id == session.id
        )
    )
    if (count or 0) >= session.max_participants:
        raise StateConflictError(ErrorMessages.SESSION_FULL)


async def register(
    db: AsyncSession, session: TestSession, user_id: int, now: datetime
) -> SessionParticipant:
    """
    Register a user for a session.

    Idempotent: an existing registration (in any status other than invited)
    is returned unchanged. An invited participant is promoted to registered
    under the same rules as a new registration.

    Raises:
        StateConflictError: If the session is closed, the late-entry grace
            window has passed, or the session is full.
    """
    session_id = session.id
    existing = await get_participant(db, session_id, user_id)
    if existing is not None and existing.status != ParticipantStatus.INVITED:
        return existing

    _check_registration_open(session, now)

    if existing is not None:
        existing.status = ParticipantStatus.REGISTERED
        existing.registered_at = now
        await db.commit()
        await db.refresh(existing)
        AnalyticsTracker.track_participant_registered(user_id, session_id)
        return existing

    await _check_capacity(db, session)

    participant = SessionParticipant(
        session_id=session_id,
        user_id=user_id,
        status=ParticipantStatus.REGISTERED,
        registered_at=now,
    )
    db.add(participant)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request registered the same user first
        await db.rollback()
        logger.info(
            f"Concurrent registration for user {user_id} in session {session_id}; "
            "returning existing row"
        )
        winner = await get_participant(db, session_id, user_id)
        if winner is None:
            raise
        return winner

    await db.refresh(participant)
    AnalyticsTracker.track_participant_registered(user_id, session_id)
    return participant


async def mark_started(
    db: AsyncSession, participant: SessionParticipant, now: datetime
) -> SessionParticipant:
    """
    Move a registered participant to started.

    Raises:
        StateConflictError: If the participant is not in the registered state.
    """
    if participant.status != ParticipantStatus.REGISTERED:
        raise StateConflictError(
            ErrorMessages.participant_already(ParticipantStatus(participant.status).value)
        )

    participant.status = ParticipantStatus.STARTED
    participant.started_at = now
    await db.commit()
    await db.refresh(participant)

    AnalyticsTracker.track_participant_started(participant.user_id, participant.session_id)
    return participant


def all_required_finished(
    required_ids: Iterable[int], finished_ids: Iterable[int]
) -> bool:
    """
    Whether every required module is among the finished ones.

    A session without required modules counts as finished once started.
    """
    return set(required_ids) <= set(finished_ids)


async def required_modules_finished(
    db: AsyncSession, session_id: int, user_id: int
) -> bool:
    """Whether every required module of the session has a finalized attempt for the user."""
    required_ids = set(
        (
            await db.scalars(
                select(SessionModule.test_id).where(
                    SessionModule.session_id == session_id,
                    SessionModule.is_required.is_(True),
                )
            )
        ).all()
    )
    finished_ids = set(
        (
            await db.scalars(
                select(TestAttempt.test_id).where(
                    TestAttempt.session_id == session_id,
                    TestAttempt.user_id == user_id,
                    TestAttempt.status.in_(FINAL_ATTEMPT_STATUSES),
                )
            )
        ).all()
    )
    return all_required_finished(required_ids, finished_ids)


async def mark_completed(
    db: AsyncSession, participant: SessionParticipant, now: datetime
) -> bool:
    """
    Move a started participant to completed once all required modules are finished.

    The check is recomputed from attempt rows on every call.

    Returns:
        True if the participant transitioned to completed on this call.
    """
    if participant.status != ParticipantStatus.STARTED:
        return False

    if not await required_modules_finished(db, participant.session_id, participant.user_id):
        return False

    participant.status = ParticipantStatus.COMPLETED
    participant.completed_at = now
    await db.commit()
    await db.refresh(participant)

    AnalyticsTracker.track_participant_completed(
        participant.user_id, participant.session_id
    )
    return True


def sweep_no_show(
    session: TestSession,
    participants: Iterable[SessionParticipant],
    now: datetime,
) -> List[SessionParticipant]:
    """
    Assign no_show to participants who never started an expired session.

    Mutates the given participant objects in memory and returns those that
    changed. Does not touch the database; callers persist the result.
    Calling it again with the same inputs changes nothing.
    """
    if not evaluate_session_window(session, now).is_expired:
        return []

    swept = []
    for participant in participants:
        if participant.status in NO_SHOW_ELIGIBLE:
            participant.status = ParticipantStatus.NO_SHOW
            swept.append(participant)
    return swept
