"""
Per-user reporting endpoints.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from proctor.core.attempt_progress import check_expiry
from proctor.core.datetime_utils import utc_now
from proctor.core.error_responses import ErrorMessages, raise_not_found
from proctor.core.results_cache import compute_attempt_score
from proctor.core.scoring import aggregate_user_scores
from proctor.models import FINAL_ATTEMPT_STATUSES, AttemptStatus, TestAttempt, User, get_db
from proctor.schemas import UserScoreSummaryResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{user_id}/score-summary", response_model=UserScoreSummaryResponse)
async def get_user_score_summary(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Average a user's scores across finalized attempts.

    In-progress attempts past their time limit are auto-completed first, so
    the summary does not depend on which attempts were read before.
    Each attempt is scored fresh from its answers; scaled scores are
    averaged so that tests of different lengths weigh equally.
    """
    if await db.get(User, user_id) is None:
        raise_not_found(ErrorMessages.USER_NOT_FOUND)

    attempts = (
        await db.scalars(
            select(TestAttempt)
            .where(
                TestAttempt.user_id == user_id,
                TestAttempt.status.in_(
                    [*FINAL_ATTEMPT_STATUSES, AttemptStatus.IN_PROGRESS]
                ),
            )
            .options(selectinload(TestAttempt.test))
            .order_by(TestAttempt.id)
        )
    ).all()

    now = utc_now()
    scores = []
    for attempt in attempts:
        if attempt.status == AttemptStatus.IN_PROGRESS:
            if not await check_expiry(db, attempt, attempt.test, now):
                continue
        score, _ = await compute_attempt_score(db, attempt)
        scores.append(score)

    summary = aggregate_user_scores(scores)
    return UserScoreSummaryResponse(user_id=user_id, **vars(summary))
