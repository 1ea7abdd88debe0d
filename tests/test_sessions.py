"""Unit tests for auth/sessions.py -- server-side session lifecycle.

Covers:
- create() returns a token that resolves to the user
- unknown, empty, and expired tokens resolve to None
- only the HMAC of the token is stored
- destroy() and destroy_for_user() (with and without keep_token)
- purge_expired() removes only expired rows
- sessions disappear with their user
"""

import pytest
from sqlalchemy import text

from auth.models import User
from auth.sessions import SessionStore, hash_token
from auth.store import UserStore


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    s.seed_defaults()
    yield s
    s.close()


@pytest.fixture
def user_id(store):
    return store.create_user(
        User(
            username="alice",
            email="alice@example.com",
            hashed_password="x",
            first_name="Alice",
            last_name="Doe",
            group_id=2,
        )
    )


@pytest.fixture
def sessions(store):
    return SessionStore(store.engine, ttl=3600)


class TestSessionLifecycle:
    def test_create_and_resolve(self, sessions, user_id):
        token = sessions.create(user_id)
        assert sessions.resolve(token) == user_id
        assert sessions.count_for_user(user_id) == 1

    def test_unknown_and_empty_tokens(self, sessions):
        assert sessions.resolve("no-such-token") is None
        assert sessions.resolve("") is None

    def test_tokens_are_unique(self, sessions, user_id):
        assert sessions.create(user_id) != sessions.create(user_id)

    def test_raw_token_not_stored(self, store, sessions, user_id):
        token = sessions.create(user_id)
        with store.engine.connect() as conn:
            stored = conn.execute(text("SELECT token_hash FROM sessions")).scalars().all()
        assert stored == [hash_token(token)]
        assert token not in stored

    def test_expired_session_resolves_to_none(self, store, user_id):
        expired = SessionStore(store.engine, ttl=-1)
        token = expired.create(user_id)
        assert expired.resolve(token) is None
        assert expired.count_for_user(user_id) == 0

    def test_destroy(self, sessions, user_id):
        token = sessions.create(user_id)
        assert sessions.destroy(token)
        assert sessions.resolve(token) is None
        assert sessions.destroy(token) is False

    def test_destroy_for_user(self, sessions, user_id):
        first = sessions.create(user_id)
        second = sessions.create(user_id)
        assert sessions.destroy_for_user(user_id) == 2
        assert sessions.resolve(first) is None
        assert sessions.resolve(second) is None

    def test_destroy_for_user_keeps_current(self, sessions, user_id):
        current = sessions.create(user_id)
        other = sessions.create(user_id)
        assert sessions.destroy_for_user(user_id, keep_token=current) == 1
        assert sessions.resolve(current) == user_id
        assert sessions.resolve(other) is None

    def test_purge_expired(self, store, sessions, user_id):
        live = sessions.create(user_id)
        SessionStore(store.engine, ttl=-1).create(user_id)
        assert sessions.purge_expired() == 1
        assert sessions.resolve(live) == user_id

    def test_sessions_removed_with_user(self, store, sessions, user_id):
        token = sessions.create(user_id)
        store.delete_user(user_id)
        assert sessions.resolve(token) is None
