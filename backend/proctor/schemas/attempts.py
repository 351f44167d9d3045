"""
Pydantic schemas for attempt endpoints.
"""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from proctor.models.models import AttemptStatus


class AttemptStartRequest(BaseModel):
    """Schema for starting (or re-entering) an attempt at a test module."""

    session_id: int = Field(..., description="Session ID")
    user_id: int = Field(..., description="Participant's user ID")
    test_id: int = Field(..., description="Test module ID")


class AttemptResponse(BaseModel):
    """Schema for an attempt with its live progress."""

    id: int = Field(..., description="Attempt ID")
    session_id: int
    user_id: int
    test_id: int
    status: AttemptStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    time_spent_seconds: int
    answered_count: int
    total_questions: int
    progress_percentage: float = Field(
        ..., description="answered_count / total_questions * 100 (0 for empty tests)"
    )
    time_limit_seconds: int
    time_remaining_seconds: int
    is_nearly_expired: bool
    can_modify_answers: bool


class AnswerSubmit(BaseModel):
    """Schema for submitting an answer to one question."""

    question_id: int = Field(..., description="Question ID")
    value: Optional[str] = Field(
        None, max_length=10000, description="Scalar answer (option value, rating, text)"
    )
    structured_value: Optional[Dict[str, Any]] = Field(
        None, description="Structured answer (drawing, matrix, sequence)"
    )

    @model_validator(mode="after")
    def require_value(self) -> "AnswerSubmit":
        """Require at least one of value or structured_value."""
        if self.value is None and not self.structured_value:
            raise ValueError("Either value or structured_value is required")
        return self


class AnswerResponse(BaseModel):
    """Schema for a stored answer."""

    id: int
    attempt_id: int
    question_id: int
    raw_value: Optional[str] = None
    structured_value: Optional[Dict[str, Any]] = None
    submitted_at: datetime

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class AnswerSubmitResponse(BaseModel):
    """Schema for the result of an answer submission."""

    answer: AnswerResponse
    attempt: AttemptResponse
