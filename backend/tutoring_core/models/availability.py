# backend/tutoring_core/models/availability.py
"""
Teacher availability rules.

Three kinds share one table:
- ONE_OFF: absolute ``start_at``/``end_at`` window
- RECURRING: ``weekday`` plus minute-of-day ``start_time_minutes``/``end_time_minutes``
- BLACKOUT: absolute window that always overrides availability

Weekdays use 0 = Sunday through 6 = Saturday.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.enums import AvailabilityKind
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:
    from .teacher import Teacher


def sunday_based_weekday(moment: datetime) -> int:
    """Weekday of ``moment`` with 0 = Sunday."""
    return (moment.weekday() + 1) % 7


class TeacherAvailability(Base):
    """A declarative availability or blackout rule for one teacher."""

    __tablename__ = "teacher_availability"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    teacher_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("teacher.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # ONE_OFF / BLACKOUT
    start_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    end_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # RECURRING
    weekday: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_time_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    teacher: Mapped["Teacher"] = relationship("Teacher", back_populates="availability_rules")

    __table_args__ = (
        CheckConstraint(
            "kind IN ('ONE_OFF', 'RECURRING', 'BLACKOUT')", name="ck_teacher_availability_kind"
        ),
        CheckConstraint(
            "weekday IS NULL OR (weekday >= 0 AND weekday <= 6)",
            name="ck_teacher_availability_weekday",
        ),
        CheckConstraint(
            "start_time_minutes IS NULL OR (start_time_minutes >= 0 AND end_time_minutes <= 1440 "
            "AND start_time_minutes < end_time_minutes)",
            name="ck_teacher_availability_minutes",
        ),
        Index("idx_teacher_availability_teacher_kind", "teacher_id", "kind"),
    )

    @property
    def is_recurring(self) -> bool:
        return self.kind == AvailabilityKind.RECURRING.value

    def __repr__(self) -> str:
        return f"<TeacherAvailability(id={self.id}, teacher={self.teacher_id}, kind={self.kind})>"
