# backend/tutoring_core/services/package_service.py
"""
Package Service: the credit ledger.

Every debit follows the same sequence:

1. Load the package owned by the student (NotFound otherwise)
2. Inside a transaction, lock the session (or, for a new private session,
   the teacher), then re-read the package row under a write lock
3. Recompute the allowance balance from the ledger as seen under the lock
4. Reject expired packages and insufficient balances
5. Append a PackageUse row and confirm the Booking in the same transaction
6. Commit

Two concurrent debits against one package serialize on step 2, so the
second one sees the first one's ledger row when it recomputes the balance.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc, window_minutes
from ..core.config import Settings, settings as default_settings
from ..core.enums import ServiceType, SessionStatus
from ..core.exceptions import (
    BookingConflictException,
    InsufficientCreditsException,
    NotFoundException,
    PackageExpiredException,
    RepositoryException,
    SessionCapacityException,
    ValidationException,
)
from ..events.booking_events import PackageCreditsUsed
from ..models.package import PackageAllowance, PackageProduct, PackageUse, StudentPackage
from ..models.session import ClassSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.package import (
    AllowanceBalance,
    AllowanceSpec,
    BookingData,
    CompatiblePackage,
    CompatiblePackagesForSession,
    PackageUseResult,
    StudentPackageSummary,
)
from .allowance_balance import (
    compute_allowance_balances,
    generate_bundle_description,
    has_mixed_ledger,
    is_package_expired,
    remaining_for_allowance,
    validate_allowances,
)
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_service import BookingService
from .credit_tiers import (
    COURSE_NOT_CREDITABLE,
    SERVICE_TYPE_MISMATCH,
    SessionTierInfo,
    TierCheck,
    calculate_credits_required,
    can_use_allowance_for_session,
    get_allowance_display_label,
    get_duration_mismatch_warning,
    select_allowance_for_session,
)
from .notification_dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    dispatch_safely,
)

logger = logging.getLogger(__name__)

DATABASE_ERROR_MESSAGE = "Failed to use package due to a database error."


def _expiry_sort_key(item: CompatiblePackage) -> Tuple[int, datetime]:
    # Soonest expiry first, packages without expiry last
    if item.expires_at is None:
        return (1, datetime.max)
    return (0, ensure_utc(item.expires_at).replace(tzinfo=None))


class PackageService(BaseService):
    """
    Service for credit packages and the usage ledger.

    The ledger is the only source of balances; nothing here stores a
    remaining count.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        availability_service: Optional[AvailabilityService] = None,
        booking_service: Optional[BookingService] = None,
    ):
        super().__init__(db, clock)
        self.settings = settings or default_settings
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.package_repository = RepositoryFactory.create_package_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.availability_service = availability_service or AvailabilityService(db, clock=self.clock)
        self.booking_service = booking_service or BookingService(
            db, clock=self.clock, settings=self.settings, dispatcher=self.dispatcher
        )

    # Catalog

    @BaseService.measure_operation("create_product")
    def create_product(
        self,
        name: str,
        allowances: Sequence[Union[AllowanceSpec, Dict[str, Any]]],
        *,
        description: Optional[str] = None,
        validity_days: Optional[int] = None,
    ) -> PackageProduct:
        """
        Define a purchasable bundle.

        Raises:
            ValidationException: The allowances do not form a valid bundle;
                ``details["errors"]`` lists every problem
        """
        try:
            specs = [
                spec if isinstance(spec, AllowanceSpec) else AllowanceSpec.model_validate(spec)
                for spec in allowances
            ]
        except PydanticValidationError as e:
            raise ValidationException(
                "Invalid package allowances",
                details={"errors": [error["msg"] for error in e.errors()]},
            ) from e

        valid, errors = validate_allowances(specs)
        if not valid:
            raise ValidationException("Invalid package allowances", details={"errors": errors})
        if validity_days is not None and validity_days <= 0:
            raise ValidationException("validity_days must be positive")

        with self.transaction():
            product = self.package_repository.create_product(
                name=name,
                description=description or generate_bundle_description(specs),
                validity_days=validity_days,
                allowances=[spec.model_dump(mode="json") for spec in specs],
            )
        self.logger.info("Created package product %s (%s)", product.id, product.description)
        return product

    @BaseService.measure_operation("grant_package")
    def grant_package(
        self,
        student_id: str,
        product_id: str,
        *,
        package_name: Optional[str] = None,
        purchased_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        source_payment_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StudentPackage:
        """Create a student's package from a product (on successful payment)."""
        product = self.package_repository.get_product(product_id)
        if product is None:
            raise NotFoundException("Package product not found", details={"product_id": product_id})

        purchased = ensure_utc(purchased_at) if purchased_at else self.clock()
        if expires_at is None and product.validity_days:
            expires_at = purchased + timedelta(days=product.validity_days)

        with self.transaction():
            package = self.package_repository.create(
                student_id=student_id,
                product_id=product.id,
                package_name=package_name or product.name,
                purchased_at=purchased,
                expires_at=ensure_utc(expires_at) if expires_at else None,
                source_payment_id=source_payment_id,
                package_metadata=metadata,
            )
        return package

    # Ledger

    def _resolve_allowance(
        self, package: StudentPackage, info: SessionTierInfo, allowance_id: Optional[str]
    ) -> Tuple[PackageAllowance, TierCheck]:
        allowances = package.allowances
        if allowance_id is not None:
            allowance = next((a for a in allowances if a.id == allowance_id), None)
            if allowance is None:
                raise NotFoundException(
                    "Allowance not found for this package", details={"allowance_id": allowance_id}
                )
        else:
            allowance = select_allowance_for_session(allowances, info)
            if allowance is None:
                raise ValidationException(SERVICE_TYPE_MISMATCH)

        check = can_use_allowance_for_session(allowance, info)
        if not check.can_use:
            raise ValidationException(check.reason or SERVICE_TYPE_MISMATCH)
        return allowance, check

    def _reject_debit(self, reason: str, exc: Exception) -> Exception:
        prometheus_metrics.inc_credit_debit_rejected(reason)
        return exc

    @BaseService.measure_operation("use_package_for_session")
    def use_package_for_session(
        self,
        student_id: str,
        package_id: str,
        *,
        session_id: Optional[str] = None,
        booking_data: Optional[Union[BookingData, Dict[str, Any]]] = None,
        credits_used: Optional[int] = None,
        service_type: Optional[Union[ServiceType, str]] = None,
        allowance_id: Optional[str] = None,
        used_by: Optional[str] = None,
        note: Optional[str] = None,
        use_transaction: bool = True,
    ) -> PackageUseResult:
        """
        Debit package credits for a session and confirm the student's seat.

        Pass ``session_id`` to book an existing session, or ``booking_data``
        to create a private session with a teacher as part of the debit.

        Args:
            student_id: Paying student; must own the package
            package_id: Package to debit
            session_id: Existing session to book
            booking_data: Teacher and window for a new private session
            credits_used: Explicit charge; defaults to
                ceil(duration / allowance unit)
            service_type: Expected session type, rejected on mismatch
            allowance_id: Allowance to use; defaults to the first usable
                allowance in declaration order
            used_by: Actor recorded on the ledger row (defaults to student)
            note: Free-form ledger note
            use_transaction: Commit here; pass False to run inside the
                caller's transaction

        Returns:
            PackageUseResult with the ledger row, booking, session and
            cross-tier / duration warnings

        Raises:
            NotFoundException: Package, session, teacher or allowance missing
            ValidationException: COURSE session, unusable allowance, expired
                package, insufficient credits, full session
            ConflictException: Seat already held or window taken
        """
        if (session_id is None) == (booking_data is None):
            raise ValidationException("Provide exactly one of session_id or booking_data")
        if isinstance(booking_data, dict):
            booking_data = BookingData.model_validate(booking_data)
        if credits_used is not None and credits_used < 1:
            raise ValidationException("credits_used must be at least 1")

        try:
            package = self.package_repository.get_package_for_student(package_id, student_id)
            if package is None:
                raise NotFoundException("Package not found", details={"package_id": package_id})

            existing_session: Optional[ClassSession] = None
            if session_id is not None:
                existing_session = self.session_repository.get_session(session_id)
                if existing_session is None:
                    raise NotFoundException("Session not found", details={"session_id": session_id})
                if existing_session.status != SessionStatus.SCHEDULED.value:
                    raise ValidationException("Session is not open for booking")
                info = SessionTierInfo.from_session(existing_session)
            else:
                teacher = self.availability_repository.get_teacher(booking_data.teacher_id)
                if teacher is None:
                    raise NotFoundException(f"Teacher {booking_data.teacher_id} not found.")
                start_at = ensure_utc(booking_data.start_at)
                end_at = ensure_utc(booking_data.end_at)
                info = SessionTierInfo(
                    service_type=ServiceType.PRIVATE,
                    teacher_tier=teacher.tier or 0,
                    duration_minutes=window_minutes(start_at, end_at),
                )
        except RepositoryException as e:
            self.logger.error("Package lookup failed for %s: %s", package_id, e)
            raise ValidationException(DATABASE_ERROR_MESSAGE) from e

        if info.service_type == ServiceType.COURSE:
            raise ValidationException(COURSE_NOT_CREDITABLE)
        if service_type is not None and ServiceType(service_type) != info.service_type:
            raise ValidationException(SERVICE_TYPE_MISMATCH)

        allowance, check = self._resolve_allowance(package, info, allowance_id)
        required = credits_used or calculate_credits_required(
            info.duration_minutes, allowance.credit_unit_minutes
        )
        warnings = [
            message
            for message in (
                check.warning,
                get_duration_mismatch_warning(info.duration_minutes, allowance.credit_unit_minutes),
            )
            if message
        ]

        if booking_data is not None:
            # Full check outside the lock; the conflict predicate runs again under it
            self.availability_service.validate_availability(
                booking_data.teacher_id, start_at, end_at, student_id=student_id
            )

        def _debit() -> Tuple[PackageUse, Any, ClassSession, int]:
            if existing_session is not None:
                target = self.session_repository.lock_session(existing_session.id)
                if target is None:
                    raise NotFoundException("Session not found", details={"session_id": existing_session.id})
            elif self.availability_repository.lock_teacher(booking_data.teacher_id) is None:
                raise NotFoundException(f"Teacher {booking_data.teacher_id} not found.")

            locked = self.package_repository.lock_package(package.id)
            if locked is None:
                raise NotFoundException("Package not found", details={"package_id": package.id})

            now = self.clock()
            if is_package_expired(locked.expires_at, now):
                raise self._reject_debit("expired", PackageExpiredException(locked.id))

            uses = self.package_repository.get_active_uses(locked.id)
            if has_mixed_ledger(uses):
                self.logger.warning(
                    "Package %s mixes allowance-tracked and legacy ledger rows", locked.id
                )
            available = remaining_for_allowance(allowance, package.allowances, uses)
            if available < required:
                raise self._reject_debit(
                    "insufficient", InsufficientCreditsException(required, available)
                )

            if existing_session is None:
                if self.availability_repository.has_conflict(
                    booking_data.teacher_id, start_at, end_at, student_id=student_id
                ):
                    raise self._reject_debit(
                        "conflict",
                        BookingConflictException(
                            f"Teacher {booking_data.teacher_id} has a conflicting booking "
                            f"during the requested time."
                        ),
                    )
                target = self.session_repository.get_pending_session_for_student(
                    booking_data.teacher_id, start_at, end_at, student_id
                ) or self.session_repository.create(
                    teacher_id=booking_data.teacher_id,
                    type=ServiceType.PRIVATE.value,
                    title=booking_data.title,
                    start_at=start_at,
                    end_at=end_at,
                    capacity_max=1,
                    status=SessionStatus.SCHEDULED.value,
                )
            elif self.session_repository.count_confirmed_bookings(target.id) >= target.capacity_max:
                raise self._reject_debit(
                    "full", SessionCapacityException("Session is full", session_id=target.id)
                )

            use = self.package_repository.create_use(
                student_package_id=locked.id,
                allowance_id=allowance.id,
                session_id=target.id,
                service_type=info.service_type.value,
                credits_used=required,
                used_at=now,
                used_by=used_by or student_id,
                note=note,
            )
            booking = self.booking_service.confirm_seat(
                target,
                student_id,
                student_package_id=locked.id,
                package_use_id=use.id,
                credits_cost=required,
            )
            use.booking_id = booking.id
            self.package_repository.flush()
            return use, booking, target, available - required

        if use_transaction:
            with self.transaction(db_error_message=DATABASE_ERROR_MESSAGE):
                use, booking, target, remaining = _debit()
        else:
            try:
                use, booking, target, remaining = _debit()
            except RepositoryException as e:
                raise ValidationException(DATABASE_ERROR_MESSAGE) from e

        prometheus_metrics.inc_credits_debited(info.service_type.value, required)
        self.logger.info(
            "Debited %s credit(s) from package %s for session %s",
            required,
            package.id,
            target.id,
            extra={
                "student_id": student_id,
                "package_id": package.id,
                "allowance_id": allowance.id,
                "session_id": target.id,
                "credits_used": required,
                "remaining": remaining,
            },
        )
        if use_transaction:
            dispatch_safely(
                self.dispatcher,
                PackageCreditsUsed(
                    package_use_id=use.id,
                    student_package_id=package.id,
                    student_id=student_id,
                    session_id=target.id,
                    booking_id=booking.id,
                    credits_used=required,
                    used_at=use.used_at,
                ),
            )

        return PackageUseResult(
            use=use,
            booking=booking,
            session=target,
            credits_used=required,
            remaining=remaining,
            is_cross_tier=check.is_cross_tier,
            warnings=warnings,
        )

    @BaseService.measure_operation("link_use_to_booking")
    def link_use_to_booking(self, use_id: str, booking_id: str) -> Optional[PackageUse]:
        """
        Back-fill ``booking_id`` on a ledger row.

        Idempotent; returns None when the ledger row does not exist.
        """
        use = self.package_repository.get_use(use_id)
        if use is None:
            return None
        if use.booking_id == booking_id:
            return use
        with self.transaction():
            use.booking_id = booking_id
            self.package_repository.flush()
        return use

    # Listings

    def _summarize(
        self, package: StudentPackage, uses: Sequence[PackageUse], now: datetime
    ) -> StudentPackageSummary:
        lines = compute_allowance_balances(package.allowances, uses)
        balances = [
            AllowanceBalance(
                allowance_id=line.allowance.id,
                service_type=line.allowance.service_type,
                teacher_tier_floor=line.allowance.teacher_tier_floor,
                credit_unit_minutes=line.allowance.credit_unit_minutes,
                credits=line.allowance.credits,
                used=line.used,
                remaining=line.remaining,
                label=get_allowance_display_label(line.allowance),
            )
            for line in lines
        ]
        total = sum(balance.remaining for balance in balances)
        expired = is_package_expired(package.expires_at, now)
        return StudentPackageSummary(
            id=package.id,
            package_name=package.package_name,
            description=generate_bundle_description(package.allowances),
            purchased_at=package.purchased_at,
            expires_at=package.expires_at,
            is_expired=expired,
            is_active=not expired and total > 0,
            total_remaining=total,
            allowances=balances,
        )

    def _summaries(self, student_id: str) -> List[Tuple[StudentPackage, StudentPackageSummary]]:
        packages = self.package_repository.list_packages_for_student(student_id)
        uses = self.package_repository.get_active_uses_by_package(p.id for p in packages)
        now = self.clock()
        return [(p, self._summarize(p, uses[p.id], now)) for p in packages]

    @BaseService.measure_operation("get_active_packages")
    def get_active_packages(self, student_id: str) -> List[StudentPackageSummary]:
        """Packages the student can still spend: not expired, not exhausted."""
        return [summary for _, summary in self._summaries(student_id) if summary.is_active]

    @BaseService.measure_operation("get_package_history")
    def get_package_history(self, student_id: str) -> List[StudentPackageSummary]:
        """Every non-deleted package, expired and exhausted ones included."""
        return [summary for _, summary in self._summaries(student_id)]

    @BaseService.measure_operation("get_compatible_packages_for_session")
    def get_compatible_packages_for_session(
        self, student_id: str, session_id: str
    ) -> CompatiblePackagesForSession:
        """
        Active packages that could pay for a session, grouped by tier fit.

        The recommendation is the exact-tier package expiring soonest, or
        failing that the higher-tier one expiring soonest.
        """
        session = self.session_repository.get_session(session_id)
        if session is None:
            raise NotFoundException("Session not found", details={"session_id": session_id})

        result = CompatiblePackagesForSession(session_id=session.id)
        info = SessionTierInfo.from_session(session)
        if info.service_type == ServiceType.COURSE:
            return result

        for package, summary in self._summaries(student_id):
            if not summary.is_active:
                continue
            allowance = select_allowance_for_session(package.allowances, info)
            if allowance is None:
                continue
            balance = next(b for b in summary.allowances if b.allowance_id == allowance.id)
            required = calculate_credits_required(info.duration_minutes, allowance.credit_unit_minutes)
            if balance.remaining < required:
                continue
            check = can_use_allowance_for_session(allowance, info)
            candidate = CompatiblePackage(
                package_id=package.id,
                package_name=package.package_name,
                expires_at=package.expires_at,
                allowance=balance,
                credits_required=required,
                is_cross_tier=check.is_cross_tier,
                warning=check.warning,
                duration_warning=get_duration_mismatch_warning(
                    info.duration_minutes, allowance.credit_unit_minutes
                ),
            )
            if check.is_cross_tier:
                result.higher_tier.append(candidate)
            else:
                result.exact_match.append(candidate)

        result.exact_match.sort(key=_expiry_sort_key)
        result.higher_tier.sort(key=_expiry_sort_key)
        if result.exact_match:
            result.recommended = result.exact_match[0]
        elif result.higher_tier:
            result.recommended = result.higher_tier[0]
        return result
