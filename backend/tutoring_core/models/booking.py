# backend/tutoring_core/models/booking.py
"""
Booking model.

A booking is a student's seat in a session. There is at most one booking
row per (session, student); re-booking after a cancellation re-uses it.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.enums import BookingStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:
    from .session import ClassSession


class Booking(Base):
    """A student's seat in a session, optionally paid from a package."""

    __tablename__ = "booking"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    session_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("session.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING.value)

    # Package payment
    student_package_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("student_package.id"), nullable=True
    )
    package_use_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("package_use.id"), nullable=True
    )
    credits_cost: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    accepted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rescheduled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), onupdate=func.now())

    session: Mapped["ClassSession"] = relationship("ClassSession")

    __table_args__ = (UniqueConstraint("session_id", "student_id", name="uq_booking_session_student"),)

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED.value

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, session={self.session_id}, status={self.status})>"
