"""
Live monitoring aggregates for sessions.

Everything here is recomputed from the current participant and attempt rows
on every call; no counters are stored or updated incrementally. Attempt
states are derived with ``derive_attempt_state`` so an attempt that ran out
of time reads as auto_completed even if nobody has touched it since.

The one write on this path is the no-show sweep, which is idempotent and
wrapped so that a failure to persist it never fails the read.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from proctor.core.analytics import AnalyticsTracker
from proctor.core.attempt_progress import (
    AttemptState,
    derive_attempt_state,
    progress_percentage,
)
from proctor.core.config import settings
from proctor.core.datetime_utils import ensure_timezone_aware, seconds_between
from proctor.core.graceful_failure import graceful_failure, graceful_failure_decorator
from proctor.core.participant_status import (
    NO_SHOW_ELIGIBLE,
    all_required_finished,
    sweep_no_show,
)
from proctor.core.session_window import (
    SessionWindow,
    evaluate_session_window,
    session_time_progress,
    session_time_remaining,
)
from proctor.models.models import (
    AttemptStatus,
    ParticipantStatus,
    SessionModule,
    SessionParticipant,
    TestAttempt,
    TestSession,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionSnapshot:
    """Rows needed to aggregate one session, loaded in a single pass."""

    session: TestSession
    participants: List[SessionParticipant]
    attempts: List[TestAttempt]
    modules: List[SessionModule]


@dataclass
class ModuleStats:
    """Per-module breakdown within a session."""

    test_id: int
    test_name: str
    sequence: int
    is_required: bool
    participants_started: int
    participants_completed: int
    average_completion_time: Optional[float]  # seconds, finalized attempts only


@dataclass
class SessionLiveStats:
    """Session-wide live statistics."""

    session_id: int
    session_name: str
    window: SessionWindow
    time_progress_percentage: float
    time_remaining_seconds: int
    total_participants: int
    active_participants: int
    completed_participants: int
    not_started_participants: int
    no_show_participants: int
    completion_rate: float
    average_progress: float
    modules: List[ModuleStats] = field(default_factory=list)
    generated_at: Optional[datetime] = None


@dataclass
class ParticipantProgress:
    """One participant's live progress across the session's modules."""

    participant_id: int
    user_id: int
    status: ParticipantStatus
    progress_percentage: float
    modules_completed: int
    modules_total: int
    current_test_id: Optional[int]
    current_test_name: Optional[str]
    started_at: Optional[datetime]
    last_activity_at: Optional[datetime]
    estimated_completion_at: Optional[datetime]
    time_remaining_seconds: Optional[int]
    is_nearly_expired: bool
    at_risk: bool


def _derived_states(
    attempts: Iterable[TestAttempt],
    modules: Sequence[SessionModule],
    now: datetime,
) -> Dict[int, AttemptState]:
    limits = {m.test_id: m.test.time_limit_seconds for m in modules}
    states = {}
    for attempt in attempts:
        limit = limits.get(attempt.test_id)
        if limit is None:
            # Module removed from the session; keep the stored state
            states[attempt.id] = AttemptState(
                AttemptStatus(attempt.status),
                attempt.time_spent_seconds or 0,
                attempt.completed_at,
            )
        else:
            states[attempt.id] = derive_attempt_state(attempt, limit, now)
    return states


def _participant_finished(
    attempts: Sequence[TestAttempt],
    states: Dict[int, AttemptState],
    modules: Sequence[SessionModule],
) -> bool:
    required = {m.test_id for m in modules if m.is_required}
    finished = {a.test_id for a in attempts if states[a.id].is_final}
    return all_required_finished(required, finished)


def effective_participant_status(
    participant: SessionParticipant,
    attempts: Sequence[TestAttempt],
    states: Dict[int, AttemptState],
    modules: Sequence[SessionModule],
    window: SessionWindow,
) -> ParticipantStatus:
    """Participant status at read time, including lazily derived transitions."""
    stored = ParticipantStatus(participant.status)
    if stored in (ParticipantStatus.COMPLETED, ParticipantStatus.NO_SHOW):
        return stored
    if attempts and _participant_finished(attempts, states, modules):
        return ParticipantStatus.COMPLETED
    if attempts:
        return ParticipantStatus.STARTED
    if window.is_expired and stored in NO_SHOW_ELIGIBLE:
        return ParticipantStatus.NO_SHOW
    return stored


def aggregate_session(snapshot: SessionSnapshot, now: datetime) -> SessionLiveStats:
    """
    Compute live statistics for one session from its current rows.

    Active participants are those with an in-progress attempt (after lazy
    expiry). Completion rate is completed / total * 100, 0 for an empty
    session.
    """
    session = snapshot.session
    window = evaluate_session_window(session, now)
    states = _derived_states(snapshot.attempts, snapshot.modules, now)

    attempts_by_user: Dict[int, List[TestAttempt]] = defaultdict(list)
    for attempt in snapshot.attempts:
        attempts_by_user[attempt.user_id].append(attempt)

    total_questions = sum(m.test.total_questions for m in snapshot.modules)

    active = completed = not_started = no_show = 0
    progress_values = []
    for participant in snapshot.participants:
        user_attempts = attempts_by_user.get(participant.user_id, [])
        status = effective_participant_status(
            participant, user_attempts, states, snapshot.modules, window
        )
        if any(states[a.id].status == AttemptStatus.IN_PROGRESS for a in user_attempts):
            active += 1
        if status == ParticipantStatus.COMPLETED:
            completed += 1
        elif status == ParticipantStatus.NO_SHOW:
            no_show += 1
        elif not user_attempts:
            not_started += 1
        progress_values.append(
            progress_percentage(
                sum(a.answered_count for a in user_attempts), total_questions
            )
        )

    total = len(snapshot.participants)
    return SessionLiveStats(
        session_id=session.id,
        session_name=session.session_name,
        window=window,
        time_progress_percentage=session_time_progress(session, now),
        time_remaining_seconds=session_time_remaining(session, now),
        total_participants=total,
        active_participants=active,
        completed_participants=completed,
        not_started_participants=not_started,
        no_show_participants=no_show,
        completion_rate=round(completed / total * 100, 2) if total else 0.0,
        average_progress=(
            round(sum(progress_values) / len(progress_values), 2)
            if progress_values
            else 0.0
        ),
        modules=_module_stats(snapshot, states),
        generated_at=now,
    )


def _module_stats(
    snapshot: SessionSnapshot, states: Dict[int, AttemptState]
) -> List[ModuleStats]:
    attempts_by_test: Dict[int, List[TestAttempt]] = defaultdict(list)
    for attempt in snapshot.attempts:
        attempts_by_test[attempt.test_id].append(attempt)

    stats = []
    for module in snapshot.modules:
        attempts = attempts_by_test.get(module.test_id, [])
        finished_times = [
            states[a.id].time_spent_seconds for a in attempts if states[a.id].is_final
        ]
        stats.append(
            ModuleStats(
                test_id=module.test_id,
                test_name=module.test.name,
                sequence=module.sequence,
                is_required=module.is_required,
                participants_started=sum(1 for a in attempts if a.started_at is not None),
                participants_completed=len(finished_times),
                average_completion_time=(
                    round(sum(finished_times) / len(finished_times), 2)
                    if finished_times
                    else None
                ),
            )
        )
    return stats


def estimate_completion(
    started_at: datetime, now: datetime, progress_fraction: float
) -> Optional[datetime]:
    """
    Linear extrapolation of when a participant will finish.

    started_at + elapsed / max(progress_fraction, ε); None when no progress
    has been made.
    """
    if progress_fraction <= 0:
        return None
    elapsed = seconds_between(started_at, now)
    fraction = max(progress_fraction, settings.ESTIMATE_PROGRESS_EPSILON)
    return ensure_timezone_aware(started_at) + timedelta(seconds=elapsed / fraction)


def is_at_risk(time_fraction: float, completion_fraction: float) -> bool:
    """Whether elapsed time is running ahead of answered questions by more than the threshold."""
    return time_fraction - completion_fraction > settings.AT_RISK_THRESHOLD


def participant_progress(
    snapshot: SessionSnapshot, now: datetime
) -> List[ParticipantProgress]:
    """Per-participant live progress records for a session."""
    window = evaluate_session_window(snapshot.session, now)
    states = _derived_states(snapshot.attempts, snapshot.modules, now)
    modules = sorted(snapshot.modules, key=lambda m: m.sequence)
    total_questions = sum(m.test.total_questions for m in modules)

    attempts_by_user: Dict[int, Dict[int, TestAttempt]] = defaultdict(dict)
    for attempt in snapshot.attempts:
        attempts_by_user[attempt.user_id][attempt.test_id] = attempt

    records = []
    for participant in snapshot.participants:
        by_test = attempts_by_user.get(participant.user_id, {})
        user_attempts = list(by_test.values())
        status = effective_participant_status(
            participant, user_attempts, states, modules, window
        )
        answered = sum(a.answered_count for a in user_attempts)
        overall = progress_percentage(answered, total_questions)

        current_module = None
        current_attempt = None
        for module in modules:
            attempt = by_test.get(module.test_id)
            if attempt is not None and states[attempt.id].status == AttemptStatus.IN_PROGRESS:
                current_module, current_attempt = module, attempt
                break
        if current_module is None and status != ParticipantStatus.COMPLETED:
            current_module = next(
                (m for m in modules if m.test_id not in by_test), None
            )

        started_at = (
            ensure_timezone_aware(participant.started_at)
            if participant.started_at
            else min(
                (ensure_timezone_aware(a.started_at) for a in user_attempts if a.started_at),
                default=None,
            )
        )
        last_activity = max(
            (
                ensure_timezone_aware(a.last_activity_at)
                for a in user_attempts
                if a.last_activity_at
            ),
            default=None,
        )

        estimated = None
        if started_at is not None and status != ParticipantStatus.COMPLETED:
            estimated = estimate_completion(started_at, now, overall / 100)

        time_remaining = None
        nearly_expired = False
        at_risk = False
        if current_attempt is not None:
            limit = current_module.test.time_limit_seconds
            spent = states[current_attempt.id].time_spent_seconds
            time_remaining = max(0, limit - spent)
            nearly_expired = time_remaining <= settings.NEARLY_EXPIRED_WARNING_SECONDS
            completion_fraction = (
                current_attempt.answered_count / current_attempt.total_questions
                if current_attempt.total_questions
                else 0.0
            )
            at_risk = is_at_risk(spent / limit, completion_fraction)

        records.append(
            ParticipantProgress(
                participant_id=participant.id,
                user_id=participant.user_id,
                status=status,
                progress_percentage=overall,
                modules_completed=sum(
                    1 for a in user_attempts if states[a.id].is_final
                ),
                modules_total=len(modules),
                current_test_id=current_module.test_id if current_module else None,
                current_test_name=current_module.test.name if current_module else None,
                started_at=started_at,
                last_activity_at=last_activity,
                estimated_completion_at=estimated,
                time_remaining_seconds=time_remaining,
                is_nearly_expired=nearly_expired,
                at_risk=at_risk,
            )
        )
    return records


async def load_session_snapshot(db: AsyncSession, session: TestSession) -> SessionSnapshot:
    """Load participants, attempts and scheduled modules of a session."""
    participants = (
        await db.scalars(
            select(SessionParticipant)
            .where(SessionParticipant.session_id == session.id)
            .order_by(SessionParticipant.id)
        )
    ).all()
    attempts = (
        await db.scalars(select(TestAttempt).where(TestAttempt.session_id == session.id))
    ).all()
    modules = (
        await db.scalars(
            select(SessionModule)
            .where(SessionModule.session_id == session.id)
            .options(selectinload(SessionModule.test))
            .order_by(SessionModule.sequence)
        )
    ).all()
    return SessionSnapshot(
        session=session,
        participants=list(participants),
        attempts=list(attempts),
        modules=list(modules),
    )


async def reload_snapshot(db: AsyncSession, snapshot: SessionSnapshot) -> None:
    """
    Repopulate a snapshot after a rollback expired its rows.

    Unsaved changes (such as a failed no-show sweep) are discarded and the
    stored state is loaded again, so the snapshot can still be aggregated.
    """
    await db.refresh(snapshot.session)
    reloaded = await load_session_snapshot(db, snapshot.session)
    snapshot.participants = reloaded.participants
    snapshot.attempts = reloaded.attempts
    snapshot.modules = reloaded.modules
    # selectinload may hand back the expired TestModule from the identity map
    for test in {m.test for m in reloaded.modules}:
        await db.refresh(test)


@graceful_failure_decorator("persist no-show assignments", default=0)
async def persist_no_show_sweep(
    db: AsyncSession, snapshot: SessionSnapshot, now: datetime
) -> int:
    """
    Apply the no-show sweep to a loaded snapshot and save it.

    Participants with any attempt are left alone; they did start.

    Returns:
        Number of participants newly marked no_show.
    """
    started_users = {a.user_id for a in snapshot.attempts}
    candidates = [
        p for p in snapshot.participants if p.user_id not in started_users
    ]
    swept = sweep_no_show(snapshot.session, candidates, now)
    if not swept:
        return 0

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        await reload_snapshot(db, snapshot)
        raise

    AnalyticsTracker.track_no_show(snapshot.session.id, [p.user_id for p in swept])
    return len(swept)


async def aggregate_sessions(
    db: AsyncSession, sessions: Iterable[TestSession], now: datetime
) -> List[SessionLiveStats]:
    """
    Live statistics for many sessions.

    A failure while aggregating one session is logged and that session is
    left out; the others are still returned.
    """
    results = []
    for session in sessions:
        with graceful_failure(
            "aggregate live session stats",
            logger,
            log_level=logging.ERROR,
            exc_info=True,
            context={"session_id": session.id},
        ):
            snapshot = await load_session_snapshot(db, session)
            results.append(aggregate_session(snapshot, now))
    return results
