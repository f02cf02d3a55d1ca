# backend/tests/repositories/test_waitlist_repository.py
"""
Tests for WaitlistRepository position bookkeeping.
"""

from datetime import datetime, timezone

import pytest

from tutoring_core.models import WaitlistEntry
from tutoring_core.repositories.factory import RepositoryFactory
from tutoring_core.repositories.waitlist_repository import WaitlistRepository

MONDAY_10 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository(db) -> WaitlistRepository:
    return RepositoryFactory.create_waitlist_repository(db)


@pytest.fixture
def queue(factory, teacher):
    session = factory.session(teacher, start_at=MONDAY_10, capacity_max=1)
    entries = [factory.waitlist(session, f"s{i}", i) for i in range(1, 5)]
    return session, entries


class TestWaitlistRepository:
    def test_head_and_max_position(self, repository, queue):
        session, entries = queue

        assert repository.get_head(session.id).id == entries[0].id
        assert repository.get_max_position(session.id) == 4
        assert repository.get_max_position("empty-session") == 0

    def test_remove_and_compact_shifts_only_later_entries(self, repository, db, queue):
        session, entries = queue

        shifted = repository.remove_and_compact(entries[1])
        db.commit()

        assert shifted == 2
        assert [(e.student_id, e.position) for e in repository.list_for_session(session.id)] == [
            ("s1", 1),
            ("s3", 2),
            ("s4", 3),
        ]
        assert db.query(WaitlistEntry).filter(WaitlistEntry.id == entries[1].id).first() is None

    def test_compaction_is_scoped_to_one_session(self, repository, db, factory, teacher, queue):
        session, entries = queue
        other = factory.session(teacher, start_at=datetime(2024, 1, 22, 10, 0, tzinfo=timezone.utc))
        other_entry = factory.waitlist(other, "s9", 3)

        repository.remove_and_compact(entries[0])
        db.commit()

        db.refresh(other_entry)
        assert other_entry.position == 3

    def test_lookup_by_student(self, repository, queue):
        session, entries = queue

        assert repository.get_by_session_and_student(session.id, "s3").id == entries[2].id
        assert repository.get_for_student(entries[2].id, "s1") is None
        assert [e.id for e in repository.list_for_student("s2")] == [entries[1].id]
