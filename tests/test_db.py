"""Tests for src.data.db — MemberDB (SQLite storage)."""

from src.data.db import MemberDB


class TestMemberDBAddAndGet:
    def test_add_member_returns_member(self, member_db):
        member = member_db.add_member("fam", "Alice", is_admin=True)
        assert member.id
        assert member.display_name == "Alice"
        assert member.is_admin is True
        assert member.is_virtual is False
        assert member.telegram_user_id is None

    def test_get_member_round_trips_flags(self, member_db):
        member_db.add_member("fam", "Kid", is_virtual=True, member_id="kid")
        member = member_db.get_member("kid")
        assert member is not None
        assert member.is_virtual is True
        assert member.family_id == "fam"

    def test_get_missing_member_returns_none(self, member_db):
        assert member_db.get_member("nope") is None


class TestMemberDBQueries:
    def test_list_members_is_family_scoped_and_ordered(self, member_db):
        member_db.add_member("fam", "Bob", member_id="bob")
        member_db.add_member("other", "Eve", member_id="eve")
        member_db.add_member("fam", "Alice", member_id="alice")
        assert [m.id for m in member_db.list_members("fam")] == ["bob", "alice"]

    def test_find_by_telegram_id(self, member_db):
        member_db.add_member("fam", "Alice", telegram_user_id=42, member_id="alice")
        assert member_db.find_by_telegram_id(42).id == "alice"
        assert member_db.find_by_telegram_id(43) is None

    def test_list_linked_spans_families(self, member_db):
        member_db.add_member("fam", "Alice", telegram_user_id=1, member_id="alice")
        member_db.add_member("fam", "Bob", member_id="bob")
        member_db.add_member("other", "Eve", telegram_user_id=2, member_id="eve")
        assert [m.id for m in member_db.list_linked()] == ["alice", "eve"]


def test_data_persists_across_instances(tmp_db_path):
    MemberDB(db_path=tmp_db_path).add_member("fam", "Alice", member_id="alice")
    assert MemberDB(db_path=tmp_db_path).get_member("alice").display_name == "Alice"
