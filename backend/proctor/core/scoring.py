"""
Score calculation for test attempts.

Scores are always computed fresh from answer rows and question metadata.
``score_attempt`` is the single source of truth; the ``test_results`` table
is a cache rebuilt from it (see ``proctor.core.results_cache``).

Question kinds
==============
Questions are converted once into a closed set of variants, each carrying
only the fields its scoring rule needs:

- ChoiceQuestion (multiple_choice, true_false): correct iff the answer
  equals ``correct_answer`` or earns points in the option/score map.
  Only these count towards ``correct_count``.
- RatingQuestion (rating_scale): any non-empty answer is credited for
  accuracy; points come from the score map or the rating itself. May carry
  a personality ``trait`` used by ``trait_profile``.
- OpenQuestion (text, drawing, sequence, matrix): credited like ratings;
  points from the score map, else the answer's numeric value, else 0.

Aggregates
==========
- raw_score = sum of per-answer points
- scaled_score = raw_score / total_questions * 100   (0 when no questions)
- accuracy_rate = credited answers / answered_count * 100   (0 when none)
- completion_percentage = answered_count / total_questions * 100
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
    assert_never,
)

from proctor.core.config import settings
from proctor.models.models import Answer, Question, QuestionType, TestAttempt

logger = logging.getLogger(__name__)

RATING_MIN = 1
RATING_MAX = 5

# scoring_key entries that are metadata rather than answer -> points
_SCORING_KEY_METADATA = frozenset({"trait", "reverse"})


@dataclass(frozen=True)
class ChoiceQuestion:
    """Multiple-choice or true/false question."""

    id: int
    correct_answer: Optional[str]
    points: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class RatingQuestion:
    """Rating-scale question, optionally tied to a personality trait."""

    id: int
    points: Mapping[str, float] = field(default_factory=dict)
    trait: Optional[str] = None
    reverse: bool = False


@dataclass(frozen=True)
class OpenQuestion:
    """Free-form question (text, drawing, sequence, matrix)."""

    id: int
    points: Mapping[str, float] = field(default_factory=dict)


ScorableQuestion = Union[ChoiceQuestion, RatingQuestion, OpenQuestion]


@dataclass(frozen=True)
class AnswerScore:
    """Points and correctness for one answer."""

    question_id: int
    points: float
    is_correct: bool  # counted in correct_count (choice questions only)
    is_credited: bool  # counted in accuracy_rate


@dataclass(frozen=True)
class ComputedScore:
    """Score of one attempt. Ephemeral: re-derivable from answers at any time."""

    raw_score: float
    scaled_score: float
    correct_count: int
    answered_count: int
    accuracy_rate: float
    completion_percentage: float


@dataclass(frozen=True)
class UserScoreSummary:
    """Scores of one user averaged across attempts."""

    attempt_count: int
    average_scaled_score: float
    average_accuracy_rate: float
    average_completion_percentage: float
    best_scaled_score: float


def _normalize(value: Any) -> str:
    return str(value).strip().casefold()


def _numeric(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _point_map(question: Question) -> Dict[str, float]:
    """Collect answer -> points from scoring_key and options."""
    points: Dict[str, float] = {}

    for option in question.options or []:
        if isinstance(option, dict) and "value" in option and "score" in option:
            score = _numeric(option["score"])
            if score is not None:
                points[_normalize(option["value"])] = score

    if isinstance(question.scoring_key, dict):
        for key, raw in question.scoring_key.items():
            if key in _SCORING_KEY_METADATA:
                continue
            score = _numeric(raw)
            if score is not None:
                points[_normalize(key)] = score

    return points


def to_scorable(question: Question) -> ScorableQuestion:
    """Convert a question row into its scoring variant."""
    question_type = QuestionType(question.question_type)
    points = _point_map(question)

    if question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        correct = question.correct_answer
        return ChoiceQuestion(
            id=question.id,
            correct_answer=_normalize(correct) if correct is not None else None,
            points=points,
        )

    if question_type == QuestionType.RATING_SCALE:
        key = question.scoring_key if isinstance(question.scoring_key, dict) else {}
        return RatingQuestion(
            id=question.id,
            points=points,
            trait=key.get("trait"),
            reverse=bool(key.get("reverse", False)),
        )

    return OpenQuestion(id=question.id, points=points)


def answer_text(answer: Answer) -> Optional[str]:
    """The scalar form of an answer: raw_value, or structured_value["value"]."""
    if answer.raw_value is not None:
        text = str(answer.raw_value).strip()
        return text or None
    structured = answer.structured_value
    if isinstance(structured, dict) and structured.get("value") is not None:
        text = str(structured["value"]).strip()
        return text or None
    return None


def _is_non_empty(answer: Answer) -> bool:
    if answer_text(answer) is not None:
        return True
    return bool(answer.structured_value)


def score_answer(question: ScorableQuestion, answer: Answer) -> AnswerScore:
    """Score one answer against its question variant."""
    text = answer_text(answer)
    key = _normalize(text) if text is not None else None

    if isinstance(question, ChoiceQuestion):
        mapped = question.points.get(key) if key is not None else None
        is_correct = key is not None and (
            key == question.correct_answer or (mapped is not None and mapped > 0)
        )
        if mapped is not None:
            points = mapped
        else:
            points = 1.0 if is_correct else 0.0
        return AnswerScore(question.id, points, is_correct, is_correct)

    if isinstance(question, (RatingQuestion, OpenQuestion)):
        credited = _is_non_empty(answer)
        if key is not None and key in question.points:
            points = question.points[key]
        else:
            points = _numeric(text) or 0.0
        return AnswerScore(question.id, points, False, credited)

    assert_never(question)


def _percentage(numerator: float, denominator: int) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def score_answers(
    answers: Iterable[Answer], questions: Iterable[Question]
) -> List[AnswerScore]:
    """Score every answer whose question can be resolved.

    Answers referencing a missing question are logged and skipped.
    """
    scorable = {q.id: to_scorable(q) for q in questions}
    scored = []
    for answer in answers:
        question = scorable.get(answer.question_id)
        if question is None:
            logger.warning(
                f"Skipping answer {answer.id} on attempt {answer.attempt_id}: "
                f"question {answer.question_id} not found"
            )
            continue
        scored.append(score_answer(question, answer))
    return scored


def score_attempt(
    attempt: TestAttempt,
    answers: Iterable[Answer],
    questions: Iterable[Question],
) -> ComputedScore:
    """
    Compute an attempt's score from its answers.

    Pure: the same inputs always give the same ComputedScore.

    Args:
        attempt: Attempt providing total_questions.
        answers: The attempt's answer rows.
        questions: Questions of the attempt's test module.
    """
    scored = score_answers(answers, questions)
    total_questions = attempt.total_questions or 0

    raw_score = round(sum(s.points for s in scored), 4)
    answered_count = len(scored)
    correct_count = sum(1 for s in scored if s.is_correct)
    credited_count = sum(1 for s in scored if s.is_credited)

    return ComputedScore(
        raw_score=raw_score,
        scaled_score=_percentage(raw_score, total_questions),
        correct_count=correct_count,
        answered_count=answered_count,
        accuracy_rate=_percentage(credited_count, answered_count),
        completion_percentage=_percentage(answered_count, total_questions),
    )


def calculate_grade(scaled_score: float, passing_score: Optional[float] = None) -> str:
    """Letter grade: A >= 90, B >= 80, C >= 70, D >= passing score, else E."""
    passing = settings.DEFAULT_PASSING_SCORE if passing_score is None else passing_score
    if scaled_score >= 90:
        return "A"
    if scaled_score >= 80:
        return "B"
    if scaled_score >= 70:
        return "C"
    if scaled_score >= passing:
        return "D"
    return "E"


def is_passing(scaled_score: float, passing_score: Optional[float] = None) -> bool:
    """Whether a scaled score meets the passing score."""
    passing = settings.DEFAULT_PASSING_SCORE if passing_score is None else passing_score
    return scaled_score >= passing


def _rating(answer: Answer) -> Optional[int]:
    value = _numeric(answer_text(answer))
    if value is None or not value.is_integer():
        return None
    rating = int(value)
    if RATING_MIN <= rating <= RATING_MAX:
        return rating
    return None


def trait_profile(
    answers: Iterable[Answer], questions: Iterable[Question]
) -> Dict[str, float]:
    """
    Personality trait scores (0-100) from rating-scale answers.

    Ratings are averaged per ``scoring_key["trait"]`` and mapped linearly
    from the 1-5 scale onto 0-100. Reverse-keyed items are flipped first.
    """
    rating_questions: Dict[int, RatingQuestion] = {}
    for q in questions:
        scorable = to_scorable(q)
        if isinstance(scorable, RatingQuestion) and scorable.trait:
            rating_questions[q.id] = scorable

    ratings: Dict[str, List[int]] = defaultdict(list)
    for answer in answers:
        question = rating_questions.get(answer.question_id)
        if question is None:
            continue
        rating = _rating(answer)
        if rating is None:
            continue
        if question.reverse:
            rating = RATING_MAX + RATING_MIN - rating
        ratings[question.trait].append(rating)

    profile = {}
    for trait, values in ratings.items():
        average = sum(values) / len(values)
        score = (average - RATING_MIN) / (RATING_MAX - RATING_MIN) * 100
        profile[trait] = round(min(100.0, max(0.0, score)), 2)
    return profile


def rating_distribution(
    answers: Iterable[Answer], questions: Iterable[Question]
) -> Dict[int, int]:
    """Count of each rating value (1-5) across rating-scale answers."""
    rating_ids = {
        q.id for q in questions if QuestionType(q.question_type) == QuestionType.RATING_SCALE
    }
    distribution = {value: 0 for value in range(RATING_MIN, RATING_MAX + 1)}
    for answer in answers:
        if answer.question_id not in rating_ids:
            continue
        rating = _rating(answer)
        if rating is not None:
            distribution[rating] += 1
    return distribution


def aggregate_user_scores(scores: Sequence[ComputedScore]) -> UserScoreSummary:
    """
    Summarize a user's scores across attempts.

    Averages scaled_score rather than raw_score so tests of different lengths
    weigh equally. No attempts gives an all-zero summary.
    """
    if not scores:
        return UserScoreSummary(
            attempt_count=0,
            average_scaled_score=0.0,
            average_accuracy_rate=0.0,
            average_completion_percentage=0.0,
            best_scaled_score=0.0,
        )

    count = len(scores)
    return UserScoreSummary(
        attempt_count=count,
        average_scaled_score=round(sum(s.scaled_score for s in scores) / count, 2),
        average_accuracy_rate=round(sum(s.accuracy_rate for s in scores) / count, 2),
        average_completion_percentage=round(
            sum(s.completion_percentage for s in scores) / count, 2
        ),
        best_scaled_score=max(s.scaled_score for s in scores),
    )
