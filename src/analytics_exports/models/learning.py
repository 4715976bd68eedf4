"""Learning activity reporting tables: students, courses, events and submissions."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from analytics_exports.models.base import Base, UTCDateTime


class Student(Base):
    """An enrolled student."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    program: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    year_level: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Course(Base):
    """A course offering."""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    course_name: Mapped[str] = mapped_column(String(200), nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)


class CourseEvent(Base):
    """One learning-platform interaction (login, page view, quiz attempt, ...)."""

    __tablename__ = "course_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_course_events_occurred_at", "occurred_at"),
        Index("ix_course_events_student_occurred", "student_id", "occurred_at"),
    )


class Assignment(Base):
    """A graded assignment with a due date."""

    __tablename__ = "assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    max_points: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("100"))


class Submission(Base):
    """A student's submission for an assignment."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey("assignments.id"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), nullable=False, index=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    final_score: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
