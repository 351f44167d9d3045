"""
Attempt lifecycle for one participant and one test module.

    not_started -> in_progress -> completed       (participant finished)
                               -> auto_completed  (time limit elapsed)

Transitions are one-way. Time expiry is pulled rather than scheduled:
``check_expiry`` runs at the top of every read and write on an attempt,
and ``derive_attempt_state`` gives the same answer without writing, so an
attempt read at started_at + limit + ε always reports auto_completed with
time_spent_seconds == limit no matter how many reads came before.

Every write that depends on the attempt still being in progress is a single
UPDATE guarded on ``status = 'in_progress'``; a zero rowcount means another
request finalized the attempt first.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.core.analytics import AnalyticsTracker
from proctor.core.config import settings
from proctor.core.datetime_utils import ensure_timezone_aware, seconds_between
from proctor.core.error_responses import ErrorMessages
from proctor.core.exceptions import NotFoundError, StateConflictError
from proctor.core.participant_status import get_participant, mark_completed
from proctor.core.session_window import evaluate_session_window
from proctor.models.models import (
    FINAL_ATTEMPT_STATUSES,
    Answer,
    AttemptStatus,
    ParticipantStatus,
    Question,
    SessionModule,
    SessionParticipant,
    TestAttempt,
    TestModule,
    TestSession,
)

logger = logging.getLogger(__name__)

# Participant statuses allowed to start a test module
_CAN_START = frozenset({ParticipantStatus.REGISTERED, ParticipantStatus.STARTED})


@dataclass(frozen=True)
class AttemptState:
    """Attempt status, time spent and completion time as of one instant."""

    status: AttemptStatus
    time_spent_seconds: int
    completed_at: Optional[datetime]

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_ATTEMPT_STATUSES


def derive_attempt_state(
    attempt: TestAttempt, time_limit_seconds: int, now: datetime
) -> AttemptState:
    """
    Derive an attempt's state at ``now`` without writing anything.

    An in-progress attempt whose time limit has elapsed is reported as
    auto_completed, finishing exactly at started_at + time_limit_seconds.
    """
    status = AttemptStatus(attempt.status)
    completed_at = (
        ensure_timezone_aware(attempt.completed_at) if attempt.completed_at else None
    )

    if status != AttemptStatus.IN_PROGRESS or attempt.started_at is None:
        return AttemptState(status, attempt.time_spent_seconds or 0, completed_at)

    started_at = ensure_timezone_aware(attempt.started_at)
    elapsed = seconds_between(started_at, now)
    if elapsed >= time_limit_seconds:
        return AttemptState(
            AttemptStatus.AUTO_COMPLETED,
            time_limit_seconds,
            started_at + timedelta(seconds=time_limit_seconds),
        )
    return AttemptState(status, elapsed, None)


def progress_percentage(answered_count: int, total_questions: int) -> float:
    """Answered questions as a percentage of the total; 0 for an empty test."""
    if not total_questions:
        return 0.0
    return round(answered_count / total_questions * 100, 2)


def time_remaining_seconds(
    attempt: TestAttempt, time_limit_seconds: int, now: datetime
) -> int:
    """Seconds left before the attempt auto-completes; 0 when not in progress."""
    state = derive_attempt_state(attempt, time_limit_seconds, now)
    if state.status != AttemptStatus.IN_PROGRESS:
        return 0
    return max(0, time_limit_seconds - state.time_spent_seconds)


def is_nearly_expired(
    attempt: TestAttempt, time_limit_seconds: int, now: datetime
) -> bool:
    """Whether an in-progress attempt is inside the final warning window."""
    state = derive_attempt_state(attempt, time_limit_seconds, now)
    if state.status != AttemptStatus.IN_PROGRESS:
        return False
    remaining = time_limit_seconds - state.time_spent_seconds
    return remaining <= settings.NEARLY_EXPIRED_WARNING_SECONDS


def can_modify_answer(
    attempt: TestAttempt, time_limit_seconds: int, now: datetime
) -> bool:
    """Whether answers may still be written to the attempt at ``now``."""
    return (
        derive_attempt_state(attempt, time_limit_seconds, now).status
        == AttemptStatus.IN_PROGRESS
    )


async def get_attempt(
    db: AsyncSession, session_id: int, user_id: int, test_id: int
) -> TestAttempt | None:
    """Load the attempt for (session, user, test module), if any."""
    result = await db.execute(
        select(TestAttempt).where(
            TestAttempt.session_id == session_id,
            TestAttempt.user_id == user_id,
            TestAttempt.test_id == test_id,
        )
    )
    return result.scalar_one_or_none()


async def _sync_participant_completion(
    db: AsyncSession, attempt: TestAttempt, now: datetime
) -> None:
    participant = await get_participant(db, attempt.session_id, attempt.user_id)
    if participant is not None:
        await mark_completed(db, participant, now)


async def check_expiry(
    db: AsyncSession, attempt: TestAttempt, test: TestModule, now: datetime
) -> bool:
    """
    Auto-complete an in-progress attempt whose time limit has elapsed.

    Returns:
        True if the attempt is finalized after the call (whether by this
        call or earlier).
    """
    state = derive_attempt_state(attempt, test.time_limit_seconds, now)
    if attempt.status == AttemptStatus.IN_PROGRESS and state.is_final:
        result = await db.execute(
            update(TestAttempt)
            .where(
                TestAttempt.id == attempt.id,
                TestAttempt.status == AttemptStatus.IN_PROGRESS,
            )
            .values(
                status=AttemptStatus.AUTO_COMPLETED,
                time_spent_seconds=state.time_spent_seconds,
                completed_at=state.completed_at,
                version=TestAttempt.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(attempt)

        if result.rowcount == 1:
            logger.info(
                f"Attempt {attempt.id} auto-completed after "
                f"{test.time_limit_seconds}s time limit"
            )
            AnalyticsTracker.track_attempt_completed(
                user_id=attempt.user_id,
                attempt_id=attempt.id,
                time_spent_seconds=attempt.time_spent_seconds,
                answered_count=attempt.answered_count,
                auto_completed=True,
            )
            await _sync_participant_completion(db, attempt, now)

    return attempt.status in FINAL_ATTEMPT_STATUSES


async def start_attempt(
    db: AsyncSession,
    session: TestSession,
    participant: SessionParticipant,
    test: TestModule,
    now: datetime,
) -> TestAttempt:
    """
    Start (or return) the participant's attempt at a test module.

    Idempotent: an existing attempt is returned as is, after the usual lazy
    expiry check.

    Raises:
        NotFoundError: If the module is not scheduled in the session.
        StateConflictError: If the session is not active or the participant
            is not registered/started.
    """
    session_id, user_id, test_id = session.id, participant.user_id, test.id
    existing = await get_attempt(db, session_id, user_id, test_id)
    if existing is not None:
        await check_expiry(db, existing, test, now)
        return existing

    window = evaluate_session_window(session, now)
    if not window.is_active:
        raise StateConflictError(
            ErrorMessages.session_not_open(window.effective_status.value)
        )

    if participant.status not in _CAN_START:
        raise StateConflictError(ErrorMessages.PARTICIPANT_NOT_ELIGIBLE)

    scheduled = await db.scalar(
        select(SessionModule.id).where(
            SessionModule.session_id == session.id,
            SessionModule.test_id == test.id,
        )
    )
    if scheduled is None:
        raise NotFoundError(ErrorMessages.MODULE_NOT_IN_SESSION)

    attempt = TestAttempt(
        session_id=session.id,
        user_id=participant.user_id,
        test_id=test.id,
        status=AttemptStatus.IN_PROGRESS,
        started_at=now,
        last_activity_at=now,
        time_spent_seconds=0,
        answered_count=0,
        total_questions=test.total_questions,
    )
    db.add(attempt)

    first_module = participant.status == ParticipantStatus.REGISTERED
    if first_module:
        participant.status = ParticipantStatus.STARTED
        participant.started_at = now

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request created the attempt first
        await db.rollback()
        logger.info(
            f"Concurrent start for user {user_id} on test {test_id} "
            f"in session {session_id}; returning existing attempt"
        )
        winner = await get_attempt(db, session_id, user_id, test_id)
        if winner is None:
            raise
        return winner

    await db.refresh(attempt)

    AnalyticsTracker.track_attempt_started(
        user_id=attempt.user_id,
        attempt_id=attempt.id,
        test_id=test.id,
        total_questions=attempt.total_questions,
    )
    if first_module:
        AnalyticsTracker.track_participant_started(participant.user_id, session.id)

    return attempt


def _raise_if_finalized(attempt: TestAttempt) -> None:
    if attempt.status in FINAL_ATTEMPT_STATUSES:
        raise StateConflictError(
            ErrorMessages.attempt_finalized(AttemptStatus(attempt.status).value)
        )
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise StateConflictError(ErrorMessages.ATTEMPT_NOT_STARTED)


async def _lost_race(db: AsyncSession, attempt: TestAttempt) -> None:
    """Roll back after a guarded UPDATE matched no row and report the winner's state."""
    await db.rollback()
    await db.refresh(attempt)
    logger.warning(
        f"Attempt {attempt.id} was finalized concurrently "
        f"(now {AttemptStatus(attempt.status).value}); rejecting write"
    )
    _raise_if_finalized(attempt)
    # Guard failed without a final status; treat as a conflict all the same
    raise StateConflictError(ErrorMessages.ATTEMPT_NOT_STARTED)


async def submit_answer(
    db: AsyncSession,
    attempt: TestAttempt,
    test: TestModule,
    question_id: int,
    now: datetime,
    *,
    value: Optional[str] = None,
    structured_value: Optional[dict[str, Any]] = None,
) -> Answer:
    """
    Write (or overwrite) the answer to one question.

    The attempt row is updated with a status-guarded UPDATE in the same
    transaction as the answer write, so an answer can never land on an
    attempt that was finalized by a concurrent finish or expiry.

    Raises:
        StateConflictError: If the attempt is finalized (including by the
            expiry check performed here).
        NotFoundError: If the question does not belong to the attempt's test.
    """
    await check_expiry(db, attempt, test, now)
    _raise_if_finalized(attempt)

    question = await db.get(Question, question_id)
    if question is None or question.test_id != attempt.test_id:
        raise NotFoundError(ErrorMessages.question_not_in_test(question_id))

    existing = await db.scalar(
        select(Answer).where(
            Answer.attempt_id == attempt.id,
            Answer.question_id == question_id,
        )
    )
    first_answer = existing is None

    time_spent = min(
        seconds_between(ensure_timezone_aware(attempt.started_at), now),
        test.time_limit_seconds,
    )
    result = await db.execute(
        update(TestAttempt)
        .where(
            TestAttempt.id == attempt.id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(
            answered_count=TestAttempt.answered_count + (1 if first_answer else 0),
            time_spent_seconds=time_spent,
            last_activity_at=now,
            version=TestAttempt.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await _lost_race(db, attempt)

    if existing is not None:
        existing.raw_value = value
        existing.structured_value = structured_value
        existing.submitted_at = now
        answer = existing
    else:
        answer = Answer(
            attempt_id=attempt.id,
            question_id=question_id,
            raw_value=value,
            structured_value=structured_value,
            submitted_at=now,
        )
        db.add(answer)

    try:
        await db.commit()
    except IntegrityError:
        # Two first answers to the same question raced; the loser's count
        # increment is rolled back with it.
        await db.rollback()
        raise StateConflictError(ErrorMessages.ANSWER_WRITE_CONFLICT)

    await db.refresh(attempt)
    await db.refresh(answer)

    AnalyticsTracker.track_answer_submitted(
        user_id=attempt.user_id,
        attempt_id=attempt.id,
        question_id=question_id,
        first_answer=first_answer,
    )
    return answer


async def finish_attempt(
    db: AsyncSession, attempt: TestAttempt, test: TestModule, now: datetime
) -> TestAttempt:
    """
    Finish an attempt at the participant's request.

    time_spent_seconds is the actual elapsed time; the expiry check runs
    first, so an attempt past its limit is already auto_completed and the
    finish is rejected.

    Raises:
        StateConflictError: If the attempt is already finalized.
    """
    await check_expiry(db, attempt, test, now)
    _raise_if_finalized(attempt)

    result = await db.execute(
        update(TestAttempt)
        .where(
            TestAttempt.id == attempt.id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(
            status=AttemptStatus.COMPLETED,
            completed_at=now,
            time_spent_seconds=seconds_between(
                ensure_timezone_aware(attempt.started_at), now
            ),
            last_activity_at=now,
            version=TestAttempt.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await _lost_race(db, attempt)

    await db.commit()
    await db.refresh(attempt)

    AnalyticsTracker.track_attempt_completed(
        user_id=attempt.user_id,
        attempt_id=attempt.id,
        time_spent_seconds=attempt.time_spent_seconds,
        answered_count=attempt.answered_count,
    )
    await _sync_participant_completion(db, attempt, now)
    return attempt


async def touch_activity(db: AsyncSession, attempt: TestAttempt, now: datetime) -> None:
    """Record participant activity on an in-progress attempt.

    Callers wrap this in graceful_failure. Nothing is rolled back on failure,
    so objects already loaded in the session stay readable for the response.
    """
    await db.execute(
        update(TestAttempt)
        .where(
            TestAttempt.id == attempt.id,
            TestAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .values(last_activity_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(attempt)
