"""Unit tests for auth/recovery.py -- single-use password reset tokens.

Covers:
- issue() then redeem() returns the user id exactly once
- a newer token invalidates older unredeemed ones
- expired and unknown tokens are refused
- purge_expired() clears redeemed and expired tokens
"""

import pytest

from auth.models import User
from auth.recovery import PasswordResetStore
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
def resets(store):
    return PasswordResetStore(store.engine, ttl=3600)


def test_redeem_once(resets, user_id):
    token = resets.issue(user_id)
    assert resets.redeem(token) == user_id
    assert resets.redeem(token) is None


def test_new_token_invalidates_old(resets, user_id):
    old = resets.issue(user_id)
    new = resets.issue(user_id)
    assert resets.redeem(old) is None
    assert resets.redeem(new) == user_id


def test_expired_token_refused(store, user_id):
    expired = PasswordResetStore(store.engine, ttl=-1)
    assert expired.redeem(expired.issue(user_id)) is None


def test_unknown_token_refused(resets):
    assert resets.redeem("bogus") is None
    assert resets.redeem("") is None


def test_purge_expired(store, resets, user_id):
    used = resets.issue(user_id)
    resets.redeem(used)
    PasswordResetStore(store.engine, ttl=-1).issue(user_id)
    assert resets.purge_expired() == 2
