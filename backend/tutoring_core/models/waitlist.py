# backend/tutoring_core/models/waitlist.py
"""
Waitlist entries for full sessions.

Positions are 1-based and gapless per session. Entries are hard-deleted on
leave or promotion so the renumbering never has tombstones to skip.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import ensure_utc
from ..core.enums import WaitlistState
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class WaitlistEntry(Base):
    """A student's place in line for a seat in a full session."""

    __tablename__ = "waitlist"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    session_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("session.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String(26), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    notification_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_waitlist_session_student"),
        CheckConstraint("position >= 1", name="ck_waitlist_position_positive"),
        Index("idx_waitlist_session_position", "session_id", "position"),
    )

    def offer_state(self, now: datetime) -> WaitlistState:
        """WAITING until notified, NOTIFIED while the offer runs, EXPIRED after."""
        if self.notified_at is None:
            return WaitlistState.WAITING
        if self.notification_expires_at is not None and ensure_utc(self.notification_expires_at) <= now:
            return WaitlistState.EXPIRED
        return WaitlistState.NOTIFIED

    def __repr__(self) -> str:
        return f"<WaitlistEntry(id={self.id}, session={self.session_id}, position={self.position})>"
