from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.bdgenai.models import Base

if TYPE_CHECKING:
    from app.bdgenai.modules.courses.models import Section

QUESTION_TYPES = (
    "MULTIPLE_CHOICE",
    "TRUE_FALSE",
    "SHORT_ANSWER",
    "ESSAY",
    "FILL_IN_BLANK",
    "MATCHING",
    "ORDERING",
)
ATTEMPT_STATUSES = ("IN_PROGRESS", "SUBMITTED", "GRADED")


class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (Index("idx_exams_section", "section_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    section_id: Mapped[int] = mapped_column(ForeignKey("sections.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    passing_score: Mapped[float] = mapped_column(Float, nullable=False, default=70.0)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_results: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    section: Mapped["Section"] = relationship(back_populates="exams")
    questions: Mapped[list["ExamQuestion"]] = relationship(
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.order",
        lazy="selectin",
    )


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (Index("idx_exam_questions_exam_order", "exam_id", "order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    exam_id: Mapped[int] = mapped_column(ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(32), nullable=False)
    options: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    correct_answer: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    exam: Mapped[Exam] = relationship(back_populates="questions")


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        UniqueConstraint("exam_id", "user_id", "attempt_number", name="uq_exam_attempts_number"),
        CheckConstraint("status IN ('IN_PROGRESS', 'SUBMITTED', 'GRADED')", name="ck_exam_attempts_status"),
        Index("idx_exam_attempts_user", "user_id", "exam_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    exam_id: Mapped[int] = mapped_column(ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="IN_PROGRESS")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds

    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    earned_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    exam: Mapped[Exam] = relationship(lazy="joined")
    answers: Mapped[list["ExamAnswer"]] = relationship(
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="ExamAnswer.id",
        lazy="selectin",
    )


class ExamAnswer(Base):
    __tablename__ = "exam_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_exam_answers_question"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("exam_questions.id", ondelete="CASCADE"), nullable=False)
    answer: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)  # None until manually graded
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)

    attempt: Mapped[ExamAttempt] = relationship(back_populates="answers")
    question: Mapped[ExamQuestion] = relationship(lazy="joined")
