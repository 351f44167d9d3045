"""
Pydantic schemas for session, module and participant endpoints.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from proctor.models.models import (
    EffectiveSessionStatus,
    ParticipantStatus,
    SessionStatus,
)


class SessionCreate(BaseModel):
    """Schema for creating a test session."""

    session_name: str = Field(..., min_length=1, max_length=255)
    session_code: Optional[str] = Field(None, max_length=50)
    start_time: datetime = Field(..., description="Window start (timezone-aware)")
    end_time: datetime = Field(..., description="Window end (timezone-aware)")
    max_participants: Optional[int] = Field(None, ge=1)
    auto_expire: bool = True
    allow_late_entry: bool = False

    @field_validator("session_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("Session name cannot be blank")
        return v


class SessionStatusUpdate(BaseModel):
    """Schema for an explicit session status change."""

    status: SessionStatus = Field(..., description="Target stored status")


class SessionModuleCreate(BaseModel):
    """Schema for scheduling a test module into a session."""

    test_id: int = Field(..., description="Test module ID")
    sequence: int = Field(0, ge=0, description="Running order within the session")
    is_required: bool = True


class SessionModuleResponse(BaseModel):
    """Schema for a scheduled module."""

    id: int
    session_id: int
    test_id: int
    sequence: int
    is_required: bool

    class Config:
        """Pydantic configuration."""

        from_attributes = True


class SessionResponse(BaseModel):
    """Schema for a session with its time-derived status."""

    id: int = Field(..., description="Session ID")
    session_name: str
    session_code: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: SessionStatus = Field(..., description="Stored status")
    effective_status: EffectiveSessionStatus = Field(
        ..., description="Status as displayed, including expiry"
    )
    is_active: bool
    is_expired: bool
    time_progress_percentage: float = Field(
        ..., description="Elapsed share of the session window (0-100)"
    )
    max_participants: Optional[int] = None
    auto_expire: bool
    allow_late_entry: bool


class ParticipantRegister(BaseModel):
    """Schema for registering a user to a session."""

    user_id: int = Field(..., description="User ID to register")


class ParticipantResponse(BaseModel):
    """Schema for a session participant."""

    id: int
    session_id: int
    user_id: int
    status: ParticipantStatus
    registered_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration."""

        from_attributes = True
