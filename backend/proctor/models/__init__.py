"""
Models package for the proctor backend.
"""
from .base import Base, AsyncSessionLocal, async_engine, create_all_tables, get_db
from .models import (
    User,
    TestModule,
    Question,
    TestSession,
    SessionModule,
    SessionParticipant,
    TestAttempt,
    Answer,
    TestResult,
    SessionStatus,
    EffectiveSessionStatus,
    ParticipantStatus,
    AttemptStatus,
    FINAL_ATTEMPT_STATUSES,
    QuestionType,
)

__all__ = [
    "Base",
    "AsyncSessionLocal",
    "async_engine",
    "create_all_tables",
    "get_db",
    "User",
    "TestModule",
    "Question",
    "TestSession",
    "SessionModule",
    "SessionParticipant",
    "TestAttempt",
    "Answer",
    "TestResult",
    "SessionStatus",
    "EffectiveSessionStatus",
    "ParticipantStatus",
    "AttemptStatus",
    "FINAL_ATTEMPT_STATUSES",
    "QuestionType",
]
