# backend/tests/models/test_utc_datetime.py
"""
Stored datetimes come back timezone-aware in UTC, including on SQLite
where the column holds a naive string.
"""

from datetime import datetime, timedelta, timezone

from tutoring_core.core.enums import ServiceType
from tutoring_core.models import ClassSession, StudentPackage, WaitlistEntry
from tutoring_core.models.types import UTCDateTime
from tutoring_core.services.package_service import PackageService
from tutoring_core.services.waitlist_service import WaitlistService

MONDAY_10 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class TestUTCDateTime:
    def test_bind_converts_offsets_to_utc(self):
        column_type = UTCDateTime()
        plus_two = datetime(2024, 1, 15, 12, 0, tzinfo=timezone(timedelta(hours=2)))

        assert column_type.process_bind_param(plus_two, None) == MONDAY_10
        assert column_type.process_bind_param(plus_two, None).tzinfo == timezone.utc
        assert column_type.process_bind_param(None, None) is None

    def test_result_tags_naive_values_as_utc(self):
        column_type = UTCDateTime()

        loaded = column_type.process_result_value(datetime(2024, 1, 15, 10, 0), None)

        assert loaded == MONDAY_10
        assert loaded.tzinfo == timezone.utc

    def test_fresh_read_is_aware(self, db, factory, teacher):
        session = factory.session(teacher, start_at=MONDAY_10)
        db.expunge_all()

        loaded = db.query(ClassSession).filter(ClassSession.id == session.id).one()

        assert loaded.start_at.tzinfo is not None
        assert loaded.start_at == MONDAY_10
        assert loaded.created_at.tzinfo is not None

    def test_non_utc_input_is_stored_as_utc(self, db, factory, teacher):
        local = MONDAY_10.astimezone(timezone(timedelta(hours=-5)))
        session = factory.session(teacher, start_at=local)
        db.expunge_all()

        loaded = db.query(ClassSession).filter(ClassSession.id == session.id).one()

        assert loaded.start_at == MONDAY_10
        assert loaded.start_at.utcoffset() == timedelta(0)


class TestReloadedValuesCompareWithClock:
    def test_offer_window_of_reloaded_entry(self, db, clock, dispatcher, test_settings, factory, teacher):
        session = factory.session(teacher, start_at=MONDAY_10, capacity_max=1)
        factory.fill(session)
        service = WaitlistService(db, clock=clock, settings=test_settings, dispatcher=dispatcher)
        entry = service.join_waitlist(session.id, "s1")
        service.notify_waitlist_member(entry.id, expires_in_hours=1)
        db.expunge_all()

        reloaded = service.get_waitlist_for_session(session.id)[0]

        assert reloaded.notification_expires_at > clock()
        assert reloaded.notified_at == clock()

    def test_package_summary_expiry(self, db, clock, dispatcher, factory):
        package = factory.package(
            "student-a",
            [{"service_type": ServiceType.GROUP, "credits": 2}],
            expires_at=clock() + timedelta(days=30),
        )
        db.expunge_all()

        summary = PackageService(db, clock=clock, dispatcher=dispatcher).get_package_history("student-a")[0]
        stored = db.query(StudentPackage).filter(StudentPackage.id == package.id).one()

        assert summary.expires_at > clock()
        assert stored.purchased_at < clock()
        assert summary.is_expired is False

    def test_waitlist_rows_reload_with_created_at(self, db, factory, teacher):
        session = factory.session(teacher, start_at=MONDAY_10, capacity_max=1)
        entry = factory.waitlist(session, "s1", 1)
        db.expunge_all()

        loaded = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry.id).one()

        assert loaded.created_at.tzinfo is not None
