"""
Pydantic schemas for request/response validation.
"""
from .sessions import (
    SessionCreate,
    SessionStatusUpdate,
    SessionModuleCreate,
    SessionModuleResponse,
    SessionResponse,
    ParticipantRegister,
    ParticipantResponse,
)
from .attempts import (
    AttemptStartRequest,
    AttemptResponse,
    AnswerSubmit,
    AnswerResponse,
    AnswerSubmitResponse,
)
from .scores import (
    ComputedScoreResponse,
    TestResultResponse,
    UserScoreSummaryResponse,
)
from .live_test import (
    ModuleStatsResponse,
    SessionLiveStatsResponse,
    ParticipantProgressResponse,
    LiveParticipantsResponse,
    LiveSessionsResponse,
)

__all__ = [
    "SessionCreate",
    "SessionStatusUpdate",
    "SessionModuleCreate",
    "SessionModuleResponse",
    "SessionResponse",
    "ParticipantRegister",
    "ParticipantResponse",
    "AttemptStartRequest",
    "AttemptResponse",
    "AnswerSubmit",
    "AnswerResponse",
    "AnswerSubmitResponse",
    "ComputedScoreResponse",
    "TestResultResponse",
    "UserScoreSummaryResponse",
    "ModuleStatsResponse",
    "SessionLiveStatsResponse",
    "ParticipantProgressResponse",
    "LiveParticipantsResponse",
    "LiveSessionsResponse",
]
