# backend/tests/core/test_ulid_helper.py
from tutoring_core.core.ulid_helper import generate_ulid, is_valid_ulid, parse_ulid


class TestUlidHelper:
    def test_generated_ids_are_valid_and_sortable(self):
        first = generate_ulid()
        second = generate_ulid()

        assert len(first) == 26
        assert is_valid_ulid(first)
        assert parse_ulid(first).timestamp <= parse_ulid(second).timestamp

    def test_rejects_garbage(self):
        assert parse_ulid("not-a-ulid") is None
        assert is_valid_ulid("") is False

    def test_model_ids_use_ulids(self, factory):
        teacher = factory.teacher()

        assert is_valid_ulid(teacher.id)
