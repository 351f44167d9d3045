"""
Attempt lifecycle and scoring endpoints.

Every endpoint that reads or writes an attempt applies the lazy expiry
check first, so an attempt past its time limit is auto-completed by
whichever request touches it next.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.api.v1._dependencies import (
    get_attempt_with_test_or_404,
    get_session_or_404,
    get_test_module_or_404,
    verify_admin_token,
)
from proctor.core import attempt_progress
from proctor.core.config import settings
from proctor.core.datetime_utils import utc_now
from proctor.core.error_responses import ErrorMessages, raise_not_found
from proctor.core.graceful_failure import graceful_failure
from proctor.core.participant_status import get_participant
from proctor.core.results_cache import load_scoring_inputs, rebuild_result
from proctor.core.scoring import (
    calculate_grade,
    is_passing,
    rating_distribution,
    score_attempt,
    trait_profile,
)
from proctor.models import TestAttempt, TestModule, get_db
from proctor.schemas import (
    AnswerResponse,
    AnswerSubmit,
    AnswerSubmitResponse,
    AttemptResponse,
    AttemptStartRequest,
    ComputedScoreResponse,
    TestResultResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def attempt_to_response(
    attempt: TestAttempt, test: TestModule, now: datetime
) -> AttemptResponse:
    """Build an attempt response with progress and remaining time."""
    limit = test.time_limit_seconds
    return AttemptResponse(
        id=attempt.id,
        session_id=attempt.session_id,
        user_id=attempt.user_id,
        test_id=attempt.test_id,
        status=attempt.status,
        started_at=attempt.started_at,
        completed_at=attempt.completed_at,
        last_activity_at=attempt.last_activity_at,
        time_spent_seconds=attempt.time_spent_seconds,
        answered_count=attempt.answered_count,
        total_questions=attempt.total_questions,
        progress_percentage=attempt_progress.progress_percentage(
            attempt.answered_count, attempt.total_questions
        ),
        time_limit_seconds=limit,
        time_remaining_seconds=attempt_progress.time_remaining_seconds(
            attempt, limit, now
        ),
        is_nearly_expired=attempt_progress.is_nearly_expired(attempt, limit, now),
        can_modify_answers=attempt_progress.can_modify_answer(attempt, limit, now),
    )


@router.post("/start", response_model=AttemptResponse)
async def start_attempt(
    payload: AttemptStartRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Start a participant's attempt at a test module.

    Idempotent: if the attempt already exists it is returned unchanged
    (apart from lazy expiry).
    """
    session = await get_session_or_404(db, payload.session_id)
    test = await get_test_module_or_404(db, payload.test_id)
    participant = await get_participant(db, session.id, payload.user_id)
    if participant is None:
        raise_not_found(ErrorMessages.PARTICIPANT_NOT_FOUND)

    now = utc_now()
    attempt = await attempt_progress.start_attempt(db, session, participant, test, now)
    return attempt_to_response(attempt, test, now)


@router.post("/{attempt_id}/start", response_model=AttemptResponse)
async def resume_attempt(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Re-enter an existing attempt.

    Records participant activity on in-progress attempts; a failure to do
    so does not fail the request.
    """
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    now = utc_now()
    finalized = await attempt_progress.check_expiry(db, attempt, test, now)
    if not finalized:
        with graceful_failure(
            "record attempt activity", logger, context={"attempt_id": attempt.id}
        ):
            await attempt_progress.touch_activity(db, attempt, now)
    return attempt_to_response(attempt, test, now)


@router.get("/{attempt_id}", response_model=AttemptResponse)
async def get_attempt(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get an attempt with its progress, applying lazy expiry."""
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    now = utc_now()
    await attempt_progress.check_expiry(db, attempt, test, now)
    return attempt_to_response(attempt, test, now)


@router.post("/{attempt_id}/answers", response_model=AnswerSubmitResponse)
async def submit_answer(
    attempt_id: int,
    payload: AnswerSubmit,
    db: AsyncSession = Depends(get_db),
):
    """
    Submit or overwrite the answer to one question.

    Rejected with 409 once the attempt is completed or auto-completed.
    """
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    now = utc_now()
    answer = await attempt_progress.submit_answer(
        db,
        attempt,
        test,
        payload.question_id,
        now,
        value=payload.value,
        structured_value=payload.structured_value,
    )
    return AnswerSubmitResponse(
        answer=AnswerResponse.model_validate(answer),
        attempt=attempt_to_response(attempt, test, now),
    )


@router.post("/{attempt_id}/finish", response_model=AttemptResponse)
async def finish_attempt(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Finish an attempt. Rejected with 409 if it is already finalized."""
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    now = utc_now()
    await attempt_progress.finish_attempt(db, attempt, test, now)
    return attempt_to_response(attempt, test, now)


@router.get("/{attempt_id}/score", response_model=ComputedScoreResponse)
async def get_attempt_score(
    attempt_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Compute an attempt's score from its current answers.

    Always computed fresh; the cached results table is never consulted.
    """
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    await attempt_progress.check_expiry(db, attempt, test, utc_now())

    answers, questions = await load_scoring_inputs(db, attempt)
    score = score_attempt(attempt, answers, questions)
    passing = (
        test.passing_score
        if test.passing_score is not None
        else settings.DEFAULT_PASSING_SCORE
    )

    return ComputedScoreResponse(
        attempt_id=attempt.id,
        raw_score=score.raw_score,
        scaled_score=score.scaled_score,
        correct_count=score.correct_count,
        answered_count=score.answered_count,
        accuracy_rate=score.accuracy_rate,
        completion_percentage=score.completion_percentage,
        grade=calculate_grade(score.scaled_score, passing),
        is_passed=is_passing(score.scaled_score, passing),
        passing_score=passing,
        trait_scores=trait_profile(answers, questions),
        rating_distribution=rating_distribution(answers, questions),
    )


@router.post(
    "/{attempt_id}/results/rebuild",
    response_model=TestResultResponse,
    dependencies=[Depends(verify_admin_token)],
)
async def rebuild_attempt_result(
    attempt_id: int,
    force_recalculate: bool = True,
    db: AsyncSession = Depends(get_db),
):
    """Rebuild the cached result row of an attempt from a fresh computation."""
    attempt, test = await get_attempt_with_test_or_404(db, attempt_id)
    now = utc_now()
    await attempt_progress.check_expiry(db, attempt, test, now)
    return await rebuild_result(
        db, attempt, test, now, force_recalculate=force_recalculate
    )
