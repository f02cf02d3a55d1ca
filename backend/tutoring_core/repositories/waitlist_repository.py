# backend/tutoring_core/repositories/waitlist_repository.py
"""
Waitlist Repository

Positions are dense per session. Removal deletes the row and shifts every
later entry up by one inside the caller's transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.waitlist import WaitlistEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Repository for waitlist entries."""

    def __init__(self, db: Session):
        super().__init__(db, WaitlistEntry)

    def get_for_student(self, entry_id: str, student_id: str) -> Optional[WaitlistEntry]:
        return self.find_one_by(id=entry_id, student_id=student_id)

    def get_by_session_and_student(self, session_id: str, student_id: str) -> Optional[WaitlistEntry]:
        return self.find_one_by(session_id=session_id, student_id=student_id)

    def get_head(self, session_id: str) -> Optional[WaitlistEntry]:
        """The entry at position 1, if any."""
        return self.find_one_by(session_id=session_id, position=1)

    def get_max_position(self, session_id: str) -> int:
        try:
            return (
                self.db.query(func.max(WaitlistEntry.position))
                .filter(WaitlistEntry.session_id == session_id)
                .scalar()
                or 0
            )
        except SQLAlchemyError as e:
            self.logger.error("Error reading max position for session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to read waitlist positions: {e}") from e

    def list_for_session(self, session_id: str) -> List[WaitlistEntry]:
        try:
            return (
                self._build_query()
                .filter(WaitlistEntry.session_id == session_id)
                .order_by(WaitlistEntry.position)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing waitlist for session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to list waitlist: {e}") from e

    def list_for_student(self, student_id: str) -> List[WaitlistEntry]:
        try:
            return (
                self._build_query()
                .filter(WaitlistEntry.student_id == student_id)
                .order_by(WaitlistEntry.created_at, WaitlistEntry.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing waitlists for student %s: %s", student_id, e)
            raise RepositoryException(f"Failed to list waitlists: {e}") from e

    def remove_and_compact(self, entry: WaitlistEntry) -> int:
        """
        Delete ``entry`` and close the gap it leaves.

        Returns the number of entries whose position moved up.
        """
        session_id = entry.session_id
        removed_position = entry.position
        try:
            self.db.delete(entry)
            self.db.flush()
            shifted = (
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.session_id == session_id,
                    WaitlistEntry.position > removed_position,
                )
                .update(
                    {WaitlistEntry.position: WaitlistEntry.position - 1},
                    synchronize_session="fetch",
                )
            )
            self.db.flush()
            return shifted
        except SQLAlchemyError as e:
            self.logger.error("Error compacting waitlist for session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to update waitlist positions: {e}") from e
