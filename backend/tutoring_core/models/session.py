# backend/tutoring_core/models/session.py
"""Scheduled session model (private lesson or group class)."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import window_minutes
from ..core.enums import SessionStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:
    from .teacher import Teacher


class ClassSession(Base):
    """
    A scheduled session taught by one teacher.

    PRIVATE sessions have a capacity of one; GROUP sessions are limited by
    ``capacity_max`` confirmed bookings. Time-window conflicts are checked
    against every non-deleted, non-cancelled session of the teacher.
    """

    __tablename__ = "session"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    teacher_id: Mapped[str] = mapped_column(String(26), ForeignKey("teacher.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    capacity_max: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), onupdate=func.now())
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    teacher: Mapped["Teacher"] = relationship("Teacher", lazy="joined")

    __table_args__ = (
        CheckConstraint("capacity_max >= 1", name="ck_session_capacity_positive"),
        CheckConstraint("end_at > start_at", name="ck_session_window"),
        Index("idx_session_teacher_window", "teacher_id", "start_at", "end_at"),
    )

    @property
    def duration_minutes(self) -> int:
        return window_minutes(self.start_at, self.end_at)

    @property
    def is_scheduled(self) -> bool:
        return self.status == SessionStatus.SCHEDULED.value and self.deleted_at is None

    def __repr__(self) -> str:
        return f"<ClassSession(id={self.id}, type={self.type}, start={self.start_at})>"
