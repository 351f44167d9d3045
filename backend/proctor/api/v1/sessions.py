"""
Session management and participant registration endpoints.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.api.v1._dependencies import (
    get_session_or_404,
    get_test_module_or_404,
    verify_admin_token,
)
from proctor.core import participant_status
from proctor.core.analytics import AnalyticsTracker
from proctor.core.datetime_utils import utc_now
from proctor.core.error_responses import (
    ErrorMessages,
    raise_conflict,
    raise_not_found,
)
from proctor.core.session_window import (
    evaluate_session_window,
    session_time_progress,
    validate_session_window,
)
from proctor.models import (
    SessionModule,
    SessionStatus,
    TestSession,
    User,
    get_db,
)
from proctor.schemas import (
    ParticipantRegister,
    ParticipantResponse,
    SessionCreate,
    SessionModuleCreate,
    SessionModuleResponse,
    SessionResponse,
    SessionStatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Explicit status changes an admin may make; completed and cancelled are terminal
ALLOWED_STATUS_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.DRAFT: frozenset({SessionStatus.ACTIVE, SessionStatus.CANCELLED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


def session_to_response(session: TestSession, now: datetime) -> SessionResponse:
    """Build a session response including its time-derived window."""
    window = evaluate_session_window(session, now)
    return SessionResponse(
        id=session.id,
        session_name=session.session_name,
        session_code=session.session_code,
        start_time=session.start_time,
        end_time=session.end_time,
        status=session.status,
        effective_status=window.effective_status,
        is_active=window.is_active,
        is_expired=window.is_expired,
        time_progress_percentage=session_time_progress(session, now),
        max_participants=session.max_participants,
        auto_expire=session.auto_expire,
        allow_late_entry=session.allow_late_entry,
    )


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_admin_token)],
)
async def create_session(
    payload: SessionCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a session in draft status.

    The window is validated here so that time derivations never meet a
    malformed session later.
    """
    validate_session_window(payload.start_time, payload.end_time)

    session = TestSession(
        session_name=payload.session_name,
        session_code=payload.session_code,
        start_time=payload.start_time,
        end_time=payload.end_time,
        status=SessionStatus.DRAFT,
        max_participants=payload.max_participants,
        auto_expire=payload.auto_expire,
        allow_late_entry=payload.allow_late_entry,
    )
    db.add(session)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise_conflict(ErrorMessages.SESSION_CODE_TAKEN)
    await db.refresh(session)

    AnalyticsTracker.track_session_created(session.id, payload.start_time)
    return session_to_response(session, utc_now())


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Get a session with its effective status.

    A session left "active" after its end time is reported as expired.
    """
    session = await get_session_or_404(db, session_id)
    return session_to_response(session, utc_now())


@router.post(
    "/{session_id}/status",
    response_model=SessionResponse,
    dependencies=[Depends(verify_admin_token)],
)
async def update_session_status(
    session_id: int,
    payload: SessionStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Change a session's stored status (activate, complete or cancel)."""
    session = await get_session_or_404(db, session_id)
    current = SessionStatus(session.status)
    target = payload.status

    if target != current and target not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise_conflict(
            ErrorMessages.invalid_status_transition(current.value, target.value)
        )

    if target != current:
        session.status = target
        await db.commit()
        await db.refresh(session)
        logger.info(
            f"Session {session.id} status changed from {current.value} to {target.value}"
        )
        AnalyticsTracker.track_session_status_changed(
            session.id, current.value, target.value
        )

    return session_to_response(session, utc_now())


@router.post(
    "/{session_id}/modules",
    response_model=SessionModuleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_admin_token)],
)
async def add_session_module(
    session_id: int,
    payload: SessionModuleCreate,
    db: AsyncSession = Depends(get_db),
):
    """Schedule a test module into a session."""
    session = await get_session_or_404(db, session_id)
    await get_test_module_or_404(db, payload.test_id)

    existing = await db.scalar(
        select(SessionModule.id).where(
            SessionModule.session_id == session.id,
            SessionModule.test_id == payload.test_id,
        )
    )
    if existing is not None:
        raise_conflict(ErrorMessages.MODULE_ALREADY_IN_SESSION)

    module = SessionModule(
        session_id=session.id,
        test_id=payload.test_id,
        sequence=payload.sequence,
        is_required=payload.is_required,
    )
    db.add(module)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise_conflict(ErrorMessages.MODULE_ALREADY_IN_SESSION)
    await db.refresh(module)
    return module


@router.post("/{session_id}/participants", response_model=ParticipantResponse)
async def register_participant(
    session_id: int,
    payload: ParticipantRegister,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a user for a session.

    Idempotent: registering the same user again returns the existing
    registration unchanged.
    """
    session = await get_session_or_404(db, session_id)
    if await db.get(User, payload.user_id) is None:
        raise_not_found(ErrorMessages.USER_NOT_FOUND)

    return await participant_status.register(db, session, payload.user_id, utc_now())
