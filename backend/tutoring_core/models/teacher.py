# backend/tutoring_core/models/teacher.py
"""Teacher record as seen by the booking core."""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime

if TYPE_CHECKING:
    from .availability import TeacherAvailability


class Teacher(Base):
    """
    A teacher who can run sessions.

    ``tier`` is the teacher premium added to a session's base tier when
    deciding which credits may pay for it (0 = standard).
    """

    __tablename__ = "teacher"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), onupdate=func.now())
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    availability_rules: Mapped[List["TeacherAvailability"]] = relationship(
        "TeacherAvailability", back_populates="teacher"
    )

    __table_args__ = (CheckConstraint("tier >= 0", name="ck_teacher_tier_non_negative"),)

    def __repr__(self) -> str:
        return f"<Teacher(id={self.id}, tier={self.tier}, active={self.is_active})>"
