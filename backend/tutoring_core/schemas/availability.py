"""Availability validation and preview schemas."""
from datetime import datetime
from typing import Literal

from .base import StandardizedModel


class AvailabilityValidationResult(StandardizedModel):
    """Returned when a window passed every availability predicate."""

    valid: Literal[True] = True
    teacher_id: str


class BookableWindow(StandardizedModel):
    """A free interval in a teacher's calendar."""

    start_at: datetime
    end_at: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)
