"""
Advisory cache of computed attempt scores.

``test_results`` rows are derived data. They are written only by
``rebuild_result`` from a fresh ``score_attempt`` call and are never read
back as the score of record; score endpoints always recompute.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.core.scoring import (
    ComputedScore,
    calculate_grade,
    is_passing,
    score_attempt,
    trait_profile,
)
from proctor.models.models import Answer, Question, TestAttempt, TestModule, TestResult

logger = logging.getLogger(__name__)


async def load_scoring_inputs(
    db: AsyncSession, attempt: TestAttempt
) -> tuple[list[Answer], list[Question]]:
    """Fetch the answers of an attempt and the questions of its test module."""
    answers = list(
        (
            await db.scalars(select(Answer).where(Answer.attempt_id == attempt.id))
        ).all()
    )
    questions = list(
        (
            await db.scalars(select(Question).where(Question.test_id == attempt.test_id))
        ).all()
    )
    return answers, questions


async def compute_attempt_score(
    db: AsyncSession, attempt: TestAttempt
) -> tuple[ComputedScore, dict[str, float]]:
    """Score an attempt from its current answer rows, plus its trait profile."""
    answers, questions = await load_scoring_inputs(db, attempt)
    return score_attempt(attempt, answers, questions), trait_profile(answers, questions)


async def rebuild_result(
    db: AsyncSession,
    attempt: TestAttempt,
    test: TestModule,
    now: datetime,
    *,
    force_recalculate: bool = False,
) -> TestResult:
    """
    Write the cached result for an attempt from a fresh computation.

    An existing row is kept as is unless ``force_recalculate`` is set.
    """
    existing = await db.scalar(
        select(TestResult).where(TestResult.attempt_id == attempt.id)
    )
    if existing is not None and not force_recalculate:
        return existing

    score, traits = await compute_attempt_score(db, attempt)
    values = {
        "raw_score": score.raw_score,
        "scaled_score": score.scaled_score,
        "correct_count": score.correct_count,
        "answered_count": score.answered_count,
        "accuracy_rate": score.accuracy_rate,
        "completion_percentage": score.completion_percentage,
        "grade": calculate_grade(score.scaled_score, test.passing_score),
        "is_passed": is_passing(score.scaled_score, test.passing_score),
        "trait_scores": traits or None,
        "calculated_at": now,
    }

    if existing is None:
        result = TestResult(attempt_id=attempt.id, **values)
        db.add(result)
    else:
        result = existing
        for key, value in values.items():
            setattr(result, key, value)

    await db.commit()
    await db.refresh(result)
    logger.info(
        f"Rebuilt cached result for attempt {attempt.id} "
        f"(scaled_score={score.scaled_score})"
    )
    return result
