# backend/tests/repositories/test_row_locks.py
"""
Tests for the locking reads used before ledger and seat writes.

Rows are changed behind the session's back so the identity map holds stale
values; a locking read must return the stored ones.
"""

from datetime import datetime, timezone

from sqlalchemy import update

from tutoring_core.models import ClassSession, StudentPackage, Teacher
from tutoring_core.repositories.factory import RepositoryFactory

MONDAY_10 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def write_behind(db, model, row_id, **values):
    db.execute(
        update(model).where(model.id == row_id).values(**values),
        execution_options={"synchronize_session": False},
    )


class TestLockingReads:
    def test_lock_session_overwrites_stale_identity(self, db, factory, teacher):
        session = factory.session(teacher, start_at=MONDAY_10, capacity_max=1)
        write_behind(db, ClassSession, session.id, capacity_max=4)
        assert session.capacity_max == 1

        locked = RepositoryFactory.create_session_repository(db).lock_session(session.id)

        assert locked is session
        assert locked.capacity_max == 4

    def test_lock_package_overwrites_stale_identity(self, db, factory):
        package = factory.package("student-a")
        write_behind(db, StudentPackage, package.id, package_name="Renamed")

        locked = RepositoryFactory.create_package_repository(db).lock_package(package.id)

        assert locked is package
        assert locked.package_name == "Renamed"

    def test_lock_teacher(self, db, factory, clock):
        repository = RepositoryFactory.create_availability_repository(db)
        active = factory.teacher()
        removed = factory.teacher(name="Removed")
        write_behind(db, Teacher, removed.id, deleted_at=clock())

        assert repository.lock_teacher(active.id) is active
        assert repository.lock_teacher(removed.id) is None
        assert repository.lock_teacher("missing") is None

    def test_deleted_rows_are_not_locked(self, db, factory, teacher, clock):
        session = factory.session(teacher, start_at=MONDAY_10)
        package = factory.package("student-a")
        write_behind(db, ClassSession, session.id, deleted_at=clock())
        write_behind(db, StudentPackage, package.id, deleted_at=clock())

        assert RepositoryFactory.create_session_repository(db).lock_session(session.id) is None
        assert RepositoryFactory.create_package_repository(db).lock_package(package.id) is None
