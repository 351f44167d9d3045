"""
Pydantic schemas for score endpoints.
"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class ComputedScoreResponse(BaseModel):
    """Schema for an attempt score computed from its answers."""

    attempt_id: int
    raw_score: float = Field(..., description="Sum of per-answer points")
    scaled_score: float = Field(..., description="raw_score / total_questions * 100")
    correct_count: int = Field(
        ..., description="Correct multiple-choice and true/false answers"
    )
    answered_count: int
    accuracy_rate: float = Field(..., description="Credited answers / answered * 100")
    completion_percentage: float = Field(
        ..., description="answered_count / total_questions * 100"
    )
    grade: str = Field(..., description="Letter grade A-E")
    is_passed: bool
    passing_score: float
    trait_scores: Dict[str, float] = Field(
        default_factory=dict, description="Personality trait scores (0-100)"
    )
    rating_distribution: Dict[int, int] = Field(default_factory=dict)


class TestResultResponse(BaseModel):
    """Schema for the cached (advisory) result of an attempt."""

    attempt_id: int
    raw_score: float
    scaled_score: float
    correct_count: int
    answered_count: int
    accuracy_rate: float
    completion_percentage: float
    grade: str
    is_passed: bool
    trait_scores: Optional[Dict[str, float]] = None
    calculated_at: datetime

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class UserScoreSummaryResponse(BaseModel):
    """Schema for a user's scores averaged across attempts."""

    user_id: int
    attempt_count: int
    average_scaled_score: float = Field(
        ..., description="Mean scaled score (0-100) across attempts"
    )
    average_accuracy_rate: float
    average_completion_percentage: float
    best_scaled_score: float
