"""
Pydantic schemas for live monitoring endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from proctor.models.models import EffectiveSessionStatus, ParticipantStatus


class ModuleStatsResponse(BaseModel):
    """Per-module breakdown of a live session."""

    test_id: int
    test_name: str
    sequence: int
    is_required: bool
    participants_started: int
    participants_completed: int
    average_completion_time: Optional[float] = Field(
        None, description="Mean seconds spent on finalized attempts"
    )


class SessionLiveStatsResponse(BaseModel):
    """Session-wide live statistics."""

    session_id: int
    session_name: str
    effective_status: EffectiveSessionStatus
    is_active: bool
    is_expired: bool
    time_progress_percentage: float
    time_remaining_seconds: int
    total_participants: int
    active_participants: int = Field(
        ..., description="Participants with an in-progress attempt"
    )
    completed_participants: int
    not_started_participants: int
    no_show_participants: int
    completion_rate: float = Field(..., description="completed / total * 100")
    average_progress: float
    modules: List[ModuleStatsResponse]
    generated_at: datetime


class ParticipantProgressResponse(BaseModel):
    """Live progress record for one participant."""

    participant_id: int
    user_id: int
    status: ParticipantStatus
    progress_percentage: float
    modules_completed: int
    modules_total: int
    current_test_id: Optional[int] = None
    current_test_name: Optional[str] = None
    started_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    estimated_completion_at: Optional[datetime] = None
    time_remaining_seconds: Optional[int] = None
    is_nearly_expired: bool
    at_risk: bool


class LiveParticipantsResponse(BaseModel):
    """All participant progress records for a session."""

    session_id: int
    participants: List[ParticipantProgressResponse]
    generated_at: datetime


class LiveSessionsResponse(BaseModel):
    """Live statistics for every session currently being monitored."""

    sessions: List[SessionLiveStatsResponse]
    generated_at: datetime
