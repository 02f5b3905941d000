from sqlalchemy import (
    BigInteger, Integer, String, Text, Boolean, Float, Numeric,
    ForeignKey, DateTime, UniqueConstraint, Index,
    CheckConstraint, Enum as SQLEnum, Uuid
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
import uuid
import enum

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass

class SessionKind(str, enum.Enum):
    CONTROL = "control"
    EXAM = "exam"
    MOCK_EXAM = "mock_exam"

class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

class SessionStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

# Questions per session, fixed by package kind
QUESTIONS_PER_KIND = {
    SessionKind.CONTROL: 15,
    SessionKind.EXAM: 45,
    SessionKind.MOCK_EXAM: 180,
}

# ========== Content Models ==========

class Specialty(Base):
    __tablename__ = "specialties"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    topics: Mapped[List["Topic"]] = relationship(back_populates="specialty")

class Topic(Base):
    __tablename__ = "topics"
    __table_args__ = (
        Index("idx_topics_specialty", "specialty_id"),
        CheckConstraint(
            "weight_percentage IS NULL OR (weight_percentage >= 0 AND weight_percentage <= 100)",
            name="ck_topic_weight_range",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    specialty_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("specialties.id", ondelete="SET NULL")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # Only consulted when sampling mock exams
    weight_percentage: Mapped[Optional[float]] = mapped_column(Float)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    specialty: Mapped[Optional["Specialty"]] = relationship(back_populates="topics")
    questions: Mapped[List["BaseQuestion"]] = relationship(back_populates="topic")

class BaseQuestion(Base):
    __tablename__ = "base_questions"
    __table_args__ = (
        Index("idx_bq_topic", "topic_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    topic_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("topics.id", ondelete="SET NULL")
    )
    display_sequence: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    topic: Mapped[Optional["Topic"]] = relationship(back_populates="questions")
    variations: Mapped[List["QuestionVariation"]] = relationship(
        back_populates="base_question", cascade="all, delete-orphan"
    )

class QuestionVariation(Base):
    __tablename__ = "question_variations"
    __table_args__ = (
        Index("idx_qvar_slot", "base_question_id", "variation_number"),
        UniqueConstraint(
            "base_question_id", "variation_number", "version",
            name="uq_variation_version",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    base_question_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("base_questions.id", ondelete="CASCADE"), nullable=False
    )
    variation_number: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    explanation: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    base_question: Mapped["BaseQuestion"] = relationship(back_populates="variations")
    alternatives: Mapped[List["Alternative"]] = relationship(
        back_populates="variation",
        cascade="all, delete-orphan",
        order_by="Alternative.order",
    )

class Alternative(Base):
    __tablename__ = "alternatives"
    __table_args__ = (
        Index("idx_alt_variation", "variation_id"),
        UniqueConstraint("variation_id", "order", name="uq_alternative_order"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    variation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("question_variations.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    explanation: Mapped[Optional[str]] = mapped_column(Text)

    variation: Mapped["QuestionVariation"] = relationship(back_populates="alternatives")

# ========== Entitlement Models ==========

class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (
        Index("idx_pkg_kind", "kind"),
        CheckConstraint("session_qty > 0", name="ck_package_session_qty"),
        CheckConstraint("total_questions > 0", name="ck_package_total_questions"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    kind: Mapped[SessionKind] = mapped_column(SQLEnum(SessionKind), nullable=False)
    session_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    purchases: Mapped[List["Purchase"]] = relationship(back_populates="package")

class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        Index("idx_purchase_user", "user_id"),
        CheckConstraint("sessions_used >= 0", name="ck_purchase_used_nonneg"),
        CheckConstraint("sessions_used <= sessions_total", name="ck_purchase_used_le_total"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    package_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("packages.id"), nullable=False
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(255))
    sessions_total: Mapped[int] = mapped_column(Integer, nullable=False)
    sessions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PurchaseStatus] = mapped_column(
        SQLEnum(PurchaseStatus), nullable=False, default=PurchaseStatus.PENDING
    )
    # Bumped on every usage increment; compare-and-swap guard
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    package: Mapped["Package"] = relationship(back_populates="purchases")
    sessions: Mapped[List["AssessmentSession"]] = relationship(back_populates="purchase")

    @property
    def sessions_remaining(self) -> int:
        return self.sessions_total - self.sessions_used

# ========== Delivery Models ==========

class AssessmentSession(Base):
    __tablename__ = "assessment_sessions"
    __table_args__ = (
        Index("idx_as_user", "user_id"),
        Index("idx_as_purchase", "purchase_id"),
        Index("idx_as_status_started", "status", "started_at"),
        CheckConstraint(
            "score IS NULL OR (score >= 0 AND score <= 100)",
            name="ck_session_score_range",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchases.id"), nullable=False
    )
    kind: Mapped[SessionKind] = mapped_column(SQLEnum(SessionKind), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(SessionStatus), nullable=False, default=SessionStatus.IN_PROGRESS
    )
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    correct_answers: Mapped[Optional[int]] = mapped_column(Integer)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    time_spent_secs: Mapped[Optional[int]] = mapped_column(Integer)

    purchase: Mapped["Purchase"] = relationship(back_populates="sessions")
    questions: Mapped[List["SessionQuestion"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionQuestion.question_order",
    )
    answers: Mapped[List["Answer"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

class SessionQuestion(Base):
    __tablename__ = "session_questions"
    __table_args__ = (
        UniqueConstraint("session_id", "question_order", name="uq_session_question_order"),
        UniqueConstraint("session_id", "variation_id", name="uq_session_question_variation"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessment_sessions.id", ondelete="CASCADE"), nullable=False
    )
    variation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("question_variations.id"), nullable=False
    )
    question_order: Mapped[int] = mapped_column(Integer, nullable=False)

    session: Mapped["AssessmentSession"] = relationship(back_populates="questions")
    variation: Mapped["QuestionVariation"] = relationship()

class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        Index("idx_answer_session", "session_id"),
        UniqueConstraint("session_id", "variation_id", name="uq_answer_session_variation"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assessment_sessions.id", ondelete="CASCADE"), nullable=False
    )
    variation_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("question_variations.id"), nullable=False
    )
    selected_answer: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    session: Mapped["AssessmentSession"] = relationship(back_populates="answers")
