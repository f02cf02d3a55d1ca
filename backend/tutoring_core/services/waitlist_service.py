# backend/tutoring_core/services/waitlist_service.py
"""
Waitlist Service

Ordered queue of students waiting for a seat in a full session.

Entry lifecycle: WAITING -> NOTIFIED -> PROMOTED | EXPIRED | WITHDRAWN.
Only WAITING and NOTIFIED are stored; the terminal states delete the row.

Every position mutation runs inside a transaction that first takes the
session row lock, so concurrent joins cannot hand out the same position
and removals always leave positions 1..N.
"""

from datetime import timedelta
import logging
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import Settings, settings as default_settings
from ..core.enums import WaitlistState
from ..core.exceptions import (
    NotFoundException,
    SessionCapacityException,
    ValidationException,
)
from ..events.waitlist_events import WaitlistOfferExpired, WaitlistPromoted, WaitlistSeatOffered
from ..models.session import ClassSession
from ..models.waitlist import WaitlistEntry
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_service import BookingService
from .notification_dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)

if TYPE_CHECKING:
    from .package_service import PackageService

logger = logging.getLogger(__name__)


class WaitlistService(BaseService):
    """Service for the per-session waitlist queue."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        package_service: Optional["PackageService"] = None,
        booking_service: Optional[BookingService] = None,
    ):
        super().__init__(db, clock)
        self.settings = settings or default_settings
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.repository = RepositoryFactory.create_waitlist_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.booking_service = booking_service or BookingService(
            db, clock=self.clock, settings=self.settings, dispatcher=self.dispatcher, waitlist_service=self
        )
        self._package_service = package_service

    @property
    def package_service(self) -> "PackageService":
        if self._package_service is None:
            from .package_service import PackageService

            self._package_service = PackageService(
                self.db,
                clock=self.clock,
                settings=self.settings,
                dispatcher=self.dispatcher,
                booking_service=self.booking_service,
            )
        return self._package_service

    def _lock_session(self, session_id: str) -> ClassSession:
        session = self.session_repository.lock_session(session_id)
        if session is None:
            raise NotFoundException("Session not found", details={"session_id": session_id})
        return session

    @BaseService.measure_operation("join_waitlist")
    def join_waitlist(self, session_id: str, student_id: str) -> WaitlistEntry:
        """
        Put a student at the back of a full session's queue.

        Idempotent: a student already in the queue gets the existing entry
        back unchanged.

        Raises:
            NotFoundException: Session does not exist
            SessionCapacityException: Session still has free seats
        """
        with self.transaction():
            session = self._lock_session(session_id)
            if not self.session_repository.is_full(session):
                raise SessionCapacityException("Session is not full", session_id=session_id)

            existing = self.repository.get_by_session_and_student(session_id, student_id)
            if existing is not None:
                return existing

            entry = self.repository.create(
                session_id=session_id,
                student_id=student_id,
                position=self.repository.get_max_position(session_id) + 1,
                created_at=self.clock(),
            )

        prometheus_metrics.inc_waitlist_transition("joined")
        self.logger.info(
            "Student %s joined waitlist for session %s at position %s",
            student_id,
            session_id,
            entry.position,
        )
        return entry

    @BaseService.measure_operation("leave_waitlist")
    def leave_waitlist(self, entry_id: str, student_id: str) -> None:
        """
        Withdraw a student's entry and close the gap behind it.

        Raises:
            NotFoundException: No such entry for this student
        """
        entry = self.repository.get_for_student(entry_id, student_id)
        if entry is None:
            raise NotFoundException("Waitlist entry not found", details={"entry_id": entry_id})

        with self.transaction():
            self._lock_session(entry.session_id)
            entry = self.repository.get_for_student(entry_id, student_id)
            if entry is None:
                raise NotFoundException("Waitlist entry not found", details={"entry_id": entry_id})
            self.repository.remove_and_compact(entry)

        prometheus_metrics.inc_waitlist_transition("withdrawn")
        self.logger.info("Student %s left waitlist entry %s", student_id, entry_id)

    @BaseService.measure_operation("notify_waitlist_member")
    def notify_waitlist_member(
        self, entry_id: str, expires_in_hours: Optional[int] = None
    ) -> WaitlistEntry:
        """Start a time-boxed seat offer for an entry; position is unchanged."""
        hours = expires_in_hours if expires_in_hours is not None else self.settings.waitlist_offer_hours
        if hours <= 0:
            raise ValidationException("expires_in_hours must be positive")

        entry = self.repository.get_by_id(entry_id)
        if entry is None:
            raise NotFoundException("Waitlist entry not found", details={"entry_id": entry_id})

        now = self.clock()
        with self.transaction():
            entry.notified_at = now
            entry.notification_expires_at = now + timedelta(hours=hours)
            self.repository.flush()

        prometheus_metrics.inc_waitlist_transition("notified")
        dispatch_safely(
            self.dispatcher,
            WaitlistSeatOffered(
                entry_id=entry.id,
                session_id=entry.session_id,
                student_id=entry.student_id,
                notified_at=now,
                expires_at=entry.notification_expires_at,
            ),
        )
        return entry

    @BaseService.measure_operation("promote_to_booking")
    def promote_to_booking(self, entry_id: str, student_package_id: Optional[str] = None):
        """
        Turn a waitlist entry into a CONFIRMED booking.

        Capacity is re-checked under the session lock. With a package id,
        the seat is paid through the credit ledger in the same transaction.

        Returns:
            The confirmed Booking

        Raises:
            NotFoundException: Entry or session does not exist
            SessionCapacityException: No seat is free
        """
        entry = self.repository.get_by_id(entry_id)
        if entry is None:
            raise NotFoundException("Waitlist entry not found", details={"entry_id": entry_id})
        session_id = entry.session_id
        student_id = entry.student_id
        package_use_id = None

        with self.transaction():
            session = self._lock_session(session_id)
            entry = self.repository.get_by_id(entry_id)
            if entry is None:
                raise NotFoundException("Waitlist entry not found", details={"entry_id": entry_id})
            if self.session_repository.is_full(session):
                raise SessionCapacityException("Session is still full", session_id=session_id)

            if student_package_id:
                result = self.package_service.use_package_for_session(
                    student_id,
                    student_package_id,
                    session_id=session_id,
                    use_transaction=False,
                )
                booking = result.booking
                package_use_id = result.use.id
            else:
                booking = self.booking_service.confirm_seat(session, student_id)

            self.repository.remove_and_compact(entry)

        prometheus_metrics.inc_waitlist_transition("promoted")
        self.logger.info(
            "Promoted student %s from waitlist to booking %s",
            student_id,
            booking.id,
            extra={"session_id": session_id, "package_use_id": package_use_id},
        )
        dispatch_safely(
            self.dispatcher,
            WaitlistPromoted(
                session_id=session_id,
                student_id=student_id,
                booking_id=booking.id,
                package_use_id=package_use_id,
            ),
        )
        return booking

    def handle_booking_cancellation(self, session_id: str) -> Optional[WaitlistEntry]:
        """Offer a freed seat to the head of the queue; no-op on an empty queue."""
        head = self.repository.get_head(session_id)
        if head is None:
            return None
        return self.notify_waitlist_member(head.id)

    @BaseService.measure_operation("expire_lapsed_offers")
    def expire_lapsed_offers(self, session_id: str) -> List[WaitlistEntry]:
        """
        Drop head entries whose offer ran out and offer the seat onward.

        Returns the removed entries. The new head, if any, is notified.
        """
        now = self.clock()
        expired: List[WaitlistEntry] = []

        with self.transaction():
            self._lock_session(session_id)
            head = self.repository.get_head(session_id)
            while head is not None and head.offer_state(now) == WaitlistState.EXPIRED:
                expired.append(head)
                self.repository.remove_and_compact(head)
                head = self.repository.get_head(session_id)

        for entry in expired:
            prometheus_metrics.inc_waitlist_transition("expired")
            dispatch_safely(
                self.dispatcher,
                WaitlistOfferExpired(
                    entry_id=entry.id,
                    session_id=entry.session_id,
                    student_id=entry.student_id,
                    expired_at=now,
                ),
            )

        if expired and head is not None and head.notified_at is None:
            self.notify_waitlist_member(head.id)
        return expired

    def get_waitlist_for_session(self, session_id: str) -> List[WaitlistEntry]:
        return self.repository.list_for_session(session_id)

    def get_student_waitlists(self, student_id: str) -> List[WaitlistEntry]:
        return self.repository.list_for_student(student_id)
