"""
Database models for the proctored test-session service.

Sessions, participants, attempts and answers are the mutable state of the
session state machine. Users, test modules and questions are owned by
external CRUD collaborators and read here.
"""
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, enum.Enum):
    """Stored session status.

    "expired" is never stored; it is derived from the time window on read.
    """

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EffectiveSessionStatus(str, enum.Enum):
    """Session status as displayed, including the time-derived expiry."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, enum.Enum):
    """Participant attendance status enumeration."""

    INVITED = "invited"
    REGISTERED = "registered"
    STARTED = "started"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class AttemptStatus(str, enum.Enum):
    """Test attempt status enumeration."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    AUTO_COMPLETED = "auto_completed"


FINAL_ATTEMPT_STATUSES = frozenset(
    {AttemptStatus.COMPLETED, AttemptStatus.AUTO_COMPLETED}
)


class QuestionType(str, enum.Enum):
    """Question type enumeration."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    RATING_SCALE = "rating_scale"
    TEXT = "text"
    DRAWING = "drawing"
    SEQUENCE = "sequence"
    MATRIX = "matrix"


class User(Base):
    """Minimal user record; profiles are managed by an external service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    participations = relationship("SessionParticipant", back_populates="user")


class TestModule(Base):
    """A timed test (module) that can be scheduled into sessions."""

    __tablename__ = "test_modules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    module_type = Column(String(50), nullable=True)  # e.g. "cognitive", "personality"
    category = Column(String(100), nullable=True)
    time_limit_seconds = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False, default=0)
    # Passing scaled score (0-100); settings.DEFAULT_PASSING_SCORE when null
    passing_score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    questions = relationship(
        "Question", back_populates="test", order_by="Question.sequence"
    )

    __table_args__ = (
        CheckConstraint("time_limit_seconds > 0", name="ck_test_modules_time_limit"),
        CheckConstraint("total_questions >= 0", name="ck_test_modules_total_questions"),
    )


class Question(Base):
    """Question belonging to a test module. Read-only to the session engine."""

    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    test_id = Column(
        Integer,
        ForeignKey("test_modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_type = Column(Enum(QuestionType), nullable=False)
    question_text = Column(Text, nullable=False, default="")
    correct_answer = Column(String(500), nullable=True)
    # Per-answer point map, e.g. {"A": 2, "B": 1} or {"trait": "openness"}
    scoring_key = Column(JSON, nullable=True)
    # Option list, e.g. [{"value": "A", "label": "...", "score": 1}]
    options = Column(JSON, nullable=True)
    sequence = Column(Integer, nullable=False, default=0)

    test = relationship("TestModule", back_populates="questions")


class TestSession(Base):
    """A scheduled, time-windowed test-taking event."""

    __tablename__ = "test_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_name = Column(String(255), nullable=False)
    session_code = Column(String(50), unique=True, nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(SessionStatus), default=SessionStatus.DRAFT, nullable=False, index=True
    )
    max_participants = Column(Integer, nullable=True)
    auto_expire = Column(Boolean, default=True, nullable=False)
    allow_late_entry = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    modules = relationship(
        "SessionModule",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionModule.sequence",
    )
    participants = relationship(
        "SessionParticipant", back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_test_sessions_window"),
        Index("ix_test_sessions_window", "start_time", "end_time"),
    )


class SessionModule(Base):
    """A test module scheduled into a session, in running order."""

    __tablename__ = "session_modules"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    test_id = Column(
        Integer, ForeignKey("test_modules.id", ondelete="CASCADE"), nullable=False
    )
    sequence = Column(Integer, nullable=False, default=0)
    is_required = Column(Boolean, default=True, nullable=False)

    session = relationship("TestSession", back_populates="modules")
    test = relationship("TestModule")

    __table_args__ = (
        UniqueConstraint("session_id", "test_id", name="uq_session_modules_test"),
    )


class SessionParticipant(Base):
    """A user's attendance record within one session."""

    __tablename__ = "session_participants"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(
        Enum(ParticipantStatus),
        default=ParticipantStatus.REGISTERED,
        nullable=False,
    )
    registered_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("TestSession", back_populates="participants")
    user = relationship("User", back_populates="participations")

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participants_user"),
        Index("ix_session_participants_session_status", "session_id", "status"),
    )


class TestAttempt(Base):
    """A participant's run through one test module within a session."""

    __tablename__ = "test_attempts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("test_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    test_id = Column(
        Integer, ForeignKey("test_modules.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(
        Enum(AttemptStatus), default=AttemptStatus.NOT_STARTED, nullable=False
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    time_spent_seconds = Column(Integer, default=0, nullable=False)
    answered_count = Column(Integer, default=0, nullable=False)
    # Copied from the test module when the attempt is created
    total_questions = Column(Integer, default=0, nullable=False)
    # Incremented on every guarded state write
    version = Column(Integer, default=1, nullable=False)

    test = relationship("TestModule")
    answers = relationship(
        "Answer", back_populates="attempt", cascade="all, delete-orphan"
    )
    result = relationship(
        "TestResult",
        back_populates="attempt",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint(
            "session_id", "user_id", "test_id", name="uq_test_attempts_module"
        ),
        Index("ix_test_attempts_session_status", "session_id", "status"),
    )


class Answer(Base):
    """A participant's answer to one question within an attempt."""

    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer,
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No foreign key: answers outlive deleted questions and are skipped when scoring
    question_id = Column(Integer, nullable=False, index=True)
    raw_value = Column(Text, nullable=True)
    structured_value = Column(JSON, nullable=True)
    submitted_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    attempt = relationship("TestAttempt", back_populates="answers")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answers_question"),
    )


class TestResult(Base):
    """Cached score for an attempt.

    Derived data only: rebuilt from answers by the scoring engine and never
    read as the system of record.
    """

    __tablename__ = "test_results"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(
        Integer,
        ForeignKey("test_attempts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    raw_score = Column(Float, nullable=False)
    scaled_score = Column(Float, nullable=False)
    correct_count = Column(Integer, nullable=False)
    answered_count = Column(Integer, nullable=False)
    accuracy_rate = Column(Float, nullable=False)
    completion_percentage = Column(Float, nullable=False)
    grade = Column(String(1), nullable=False)
    is_passed = Column(Boolean, nullable=False)
    trait_scores = Column(JSON, nullable=True)
    calculated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    attempt = relationship("TestAttempt", back_populates="result")
