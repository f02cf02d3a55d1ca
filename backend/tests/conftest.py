# backend/tests/conftest.py
"""
Pytest configuration for the tutoring core.

Every test gets a fresh in-memory SQLite database built from the ORM
metadata, a frozen clock and a recording notification dispatcher.
Concurrency tests that need real parallel connections use the
``file_engine`` fixture instead.
"""

import os

# Set testing mode BEFORE any tutoring_core imports
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tutoring_core.core.config import Settings
from tutoring_core.core.enums import AvailabilityKind, BookingStatus, ServiceType, SessionStatus
from tutoring_core.database import Base, build_engine
from tutoring_core.models import (
    Booking,
    ClassSession,
    PackageAllowance,
    PackageProduct,
    PackageUse,
    StudentPackage,
    Teacher,
    TeacherAvailability,
    WaitlistEntry,
)
from tutoring_core.services.notification_dispatcher import RecordingNotificationDispatcher

# Wednesday; the scenario sessions sit on Monday 2024-01-15
FROZEN_NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FrozenClock:
    """Injectable clock that only moves when a test says so."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ModelFactory:
    """Creates committed rows with sensible defaults."""

    def __init__(self, db: Session):
        self.db = db
        self._students = 0

    def _save(self, entity: Any) -> Any:
        self.db.add(entity)
        self.db.commit()
        return entity

    def student_id(self) -> str:
        self._students += 1
        return f"student-{self._students:02d}"

    def teacher(self, *, tier: int = 0, is_active: bool = True, name: str = "Teacher") -> Teacher:
        return self._save(Teacher(display_name=name, tier=tier, is_active=is_active))

    def recurring(
        self,
        teacher: Teacher,
        *,
        weekday: int,
        start_minutes: int,
        end_minutes: int,
        is_active: bool = True,
    ) -> TeacherAvailability:
        return self._save(
            TeacherAvailability(
                teacher_id=teacher.id,
                kind=AvailabilityKind.RECURRING.value,
                weekday=weekday,
                start_time_minutes=start_minutes,
                end_time_minutes=end_minutes,
                is_active=is_active,
            )
        )

    def one_off(self, teacher: Teacher, start_at: datetime, end_at: datetime) -> TeacherAvailability:
        return self._save(
            TeacherAvailability(
                teacher_id=teacher.id,
                kind=AvailabilityKind.ONE_OFF.value,
                start_at=start_at,
                end_at=end_at,
            )
        )

    def blackout(self, teacher: Teacher, start_at: datetime, end_at: datetime) -> TeacherAvailability:
        return self._save(
            TeacherAvailability(
                teacher_id=teacher.id,
                kind=AvailabilityKind.BLACKOUT.value,
                start_at=start_at,
                end_at=end_at,
            )
        )

    def session(
        self,
        teacher: Teacher,
        *,
        type: ServiceType = ServiceType.GROUP,
        start_at: datetime = utc(2024, 1, 15, 10, 0),
        minutes: int = 60,
        capacity_max: int = 1,
        status: SessionStatus = SessionStatus.SCHEDULED,
    ) -> ClassSession:
        return self._save(
            ClassSession(
                teacher_id=teacher.id,
                type=type.value,
                start_at=start_at,
                end_at=start_at + timedelta(minutes=minutes),
                capacity_max=capacity_max,
                status=status.value,
            )
        )

    def booking(
        self,
        session: ClassSession,
        student_id: Optional[str] = None,
        *,
        status: BookingStatus = BookingStatus.CONFIRMED,
    ) -> Booking:
        return self._save(
            Booking(
                session_id=session.id,
                student_id=student_id or self.student_id(),
                status=status.value,
            )
        )

    def fill(self, session: ClassSession) -> List[Booking]:
        """Confirm bookings until the session is at capacity."""
        return [self.booking(session) for _ in range(session.capacity_max)]

    def product(self, allowances: List[Dict[str, Any]], *, name: str = "Bundle") -> PackageProduct:
        product = self._save(PackageProduct(name=name))
        for index, data in enumerate(allowances):
            values = {"credit_unit_minutes": 60, "teacher_tier_floor": 0, **data}
            if isinstance(values["service_type"], ServiceType):
                values["service_type"] = values["service_type"].value
            self.db.add(PackageAllowance(product_id=product.id, sort_order=index, **values))
        self.db.commit()
        self.db.expire(product, ["allowances"])
        return product

    def package(
        self,
        student_id: str,
        allowances: Optional[List[Dict[str, Any]]] = None,
        *,
        expires_at: Optional[datetime] = None,
        purchased_at: datetime = FROZEN_NOW - timedelta(days=1),
        name: str = "Bundle",
    ) -> StudentPackage:
        product = self.product(
            allowances or [{"service_type": ServiceType.GROUP, "credits": 5}], name=name
        )
        return self._save(
            StudentPackage(
                student_id=student_id,
                product_id=product.id,
                package_name=name,
                purchased_at=purchased_at,
                expires_at=expires_at,
            )
        )

    def use(
        self,
        package: StudentPackage,
        session: ClassSession,
        *,
        allowance_id: Optional[str] = None,
        service_type: Optional[str] = None,
        credits_used: int = 1,
        deleted_at: Optional[datetime] = None,
    ) -> PackageUse:
        return self._save(
            PackageUse(
                student_package_id=package.id,
                allowance_id=allowance_id,
                session_id=session.id,
                service_type=service_type,
                credits_used=credits_used,
                used_at=FROZEN_NOW,
                deleted_at=deleted_at,
            )
        )

    def waitlist(self, session: ClassSession, student_id: str, position: int) -> WaitlistEntry:
        return self._save(
            WaitlistEntry(
                session_id=session.id,
                student_id=student_id,
                position=position,
                created_at=FROZEN_NOW,
            )
        )


@pytest.fixture
def engine():
    engine = build_engine(
        "sqlite://",
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed engine; each pooled connection is a real SQLite connection."""
    engine = build_engine(f"sqlite:///{tmp_path / 'tutoring_core.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine):
    return sessionmaker(bind=file_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def file_factory(file_session_factory):
    """ModelFactory writing to the file-backed database."""
    session = file_session_factory()
    try:
        yield ModelFactory(session)
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def dispatcher() -> RecordingNotificationDispatcher:
    return RecordingNotificationDispatcher()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        waitlist_offer_hours=24,
        refund_credits_on_cancel=True,
        cancellation_deadline_hours=24,
    )


@pytest.fixture
def factory(db: Session) -> ModelFactory:
    return ModelFactory(db)


@pytest.fixture
def teacher(factory: ModelFactory) -> Teacher:
    """Active tier-0 teacher available Mondays 10:00-11:00."""
    teacher = factory.teacher()
    factory.recurring(teacher, weekday=1, start_minutes=600, end_minutes=660)
    return teacher
