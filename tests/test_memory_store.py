from datetime import datetime, timedelta

import pytest

from warden.storage.errors import ConstraintViolation
from warden.storage.memory import MemoryStore


def _create(store, username, email=None, **kwargs):
    return store.create_user(
        username,
        email or f"{username}@example.com",
        "hash-" + username,
        full_name=kwargs.pop("full_name", f"{username.title()} Person"),
        **kwargs,
    )


class TestMemoryStoreUsers:
    """User record persistence in the in-process store."""

    def test_create_assigns_sequential_ids_and_defaults(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        bob = _create(store, "bob", role="admin")
        assert (alice.id, bob.id) == (1, 2)
        assert alice.role == "user"
        assert bob.role == "admin"
        assert alice.is_active is True
        assert alice.email_verified is False
        assert store.get_password_hash(alice.id) == "hash-alice"

    def test_duplicate_username_and_email_rejected(self):
        store = MemoryStore()
        _create(store, "alice")
        with pytest.raises(ConstraintViolation) as exc_info:
            _create(store, "alice", email="other@example.com")
        assert exc_info.value.detail == {"field": "username"}
        with pytest.raises(ConstraintViolation) as exc_info:
            _create(store, "alice2", email="ALICE@example.com")
        assert exc_info.value.detail == {"field": "email"}
        assert store.count_users() == 1

    def test_lookup_by_login_matches_username_or_email(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        assert store.get_user_by_login("alice").id == alice.id
        assert store.get_user_by_login("Alice@Example.com").id == alice.id
        assert store.get_user_by_login("nobody") is None
        assert store.get_user_by_email("alice@example.com").id == alice.id

    def test_email_shaped_identifier_never_matches_a_username(self):
        store = MemoryStore()
        _create(store, "victim@x.com", email="attacker@x.com")
        victim = _create(store, "victim", email="victim@x.com")
        assert store.get_user_by_login("victim@x.com").id == victim.id

    def test_returned_records_are_copies(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        alice.role = "admin"
        assert store.get_user(alice.id).role == "user"

    def test_listing_is_newest_first_and_paged(self):
        store = MemoryStore()
        users = [_create(store, f"user{i}") for i in range(5)]
        listed = store.list_users(limit=2, offset=0)
        assert [u.id for u in listed] == [users[4].id, users[3].id]
        assert [u.id for u in store.list_users(limit=2, offset=4)] == [users[0].id]
        assert store.count_users() == 5

    def test_search_is_case_insensitive_over_name_fields(self):
        store = MemoryStore()
        _create(store, "alice", full_name="Alice Liddell")
        _create(store, "bob", full_name="Robert Smith")
        assert [u.username for u in store.search_users("LIDDELL")] == ["alice"]
        assert [u.username for u in store.search_users("example")] == ["bob", "alice"]
        assert store.search_users("zzz") == []

    def test_recent_users_respects_cutoff(self):
        store = MemoryStore()
        old = _create(store, "old")
        new = _create(store, "new")
        store.users[old.id].created_at = datetime.utcnow() - timedelta(days=30)
        assert [u.id for u in store.list_recent_users(7)] == [new.id]

    def test_update_user_fields_and_password(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        updated = store.update_user(
            alice.id, full_name="Alice Updated", email=None, password_hash="new-hash"
        )
        assert updated.full_name == "Alice Updated"
        assert updated.email == "alice@example.com"
        assert store.get_password_hash(alice.id) == "new-hash"
        assert store.update_user(999, full_name="Ghost") is None

    def test_update_user_rejects_taken_email(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        _create(store, "bob")
        with pytest.raises(ConstraintViolation):
            store.update_user(alice.id, email="bob@example.com")

    def test_update_user_rejects_unknown_fields(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        with pytest.raises(ValueError):
            store.update_user(alice.id, role="admin")

    def test_flag_setters(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        assert store.update_user_role(alice.id, "admin").role == "admin"
        assert store.set_user_active(alice.id, False).is_active is False
        assert store.set_email_verified(alice.id).email_verified is True
        assert store.update_password(alice.id, "h2") is True
        assert store.update_password(999, "h2") is False
        assert store.set_user_active(999, True) is None

    def test_update_last_login(self):
        store = MemoryStore()
        alice = _create(store, "alice")
        assert alice.last_login is None
        store.update_last_login(alice.id)
        assert store.get_user(alice.id).last_login is not None
