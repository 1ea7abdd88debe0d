"""Unit tests for auth/passwords.py -- bcrypt hashing and credential checks.

Covers:
- hash/verify round trip; a different plaintext fails
- fresh salt per hash
- malformed stored hashes fail closed
- the 1..72 byte length window
- authenticate_user() for unknown users, wrong passwords, and blocked users
"""

import pytest

from auth.models import User
from auth.passwords import MAX_PASSWORD_BYTES, authenticate_user, hash_password, verify_password
from auth.store import UserStore


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    s.seed_defaults()
    yield s
    s.close()


def _add_user(store: UserStore, username: str, password: str, is_blocked: bool = False) -> int:
    return store.create_user(
        User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hash_password(password),
            first_name="Pat",
            last_name="Doe",
            group_id=2,
            is_blocked=is_blocked,
        )
    )


class TestHashing:
    def test_round_trip(self):
        hashed = hash_password("correct horse")
        assert verify_password("correct horse", hashed)

    def test_different_plaintext_fails(self):
        hashed = hash_password("correct horse")
        assert not verify_password("battery staple", hashed)

    def test_hash_is_not_plaintext_and_salted(self):
        first = hash_password("samepassword")
        second = hash_password("samepassword")
        assert "samepassword" not in first
        assert first != second
        assert verify_password("samepassword", first)
        assert verify_password("samepassword", second)

    def test_malformed_hash_returns_false(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_empty_password_rejected(self):
        with pytest.raises(ValueError):
            hash_password("")

    def test_password_at_byte_limit_accepted(self):
        password = "a" * MAX_PASSWORD_BYTES
        assert verify_password(password, hash_password(password))

    def test_password_over_byte_limit_rejected(self):
        # 36 two-byte characters plus one more = 74 bytes
        with pytest.raises(ValueError):
            hash_password("é" * 37)


class TestAuthenticateUser:
    def test_valid_credentials(self, store):
        uid = _add_user(store, "pat", "patpassword")
        user = authenticate_user(store, "pat", "patpassword")
        assert user is not None
        assert user.id == uid

    def test_wrong_password(self, store):
        _add_user(store, "pat", "patpassword")
        assert authenticate_user(store, "pat", "wrongpassword") is None

    def test_unknown_user(self, store):
        assert authenticate_user(store, "ghost", "whatever123") is None

    def test_blocked_user_still_authenticates(self, store):
        """The blocked flag is the login route's concern, checked after the password."""
        _add_user(store, "pat", "patpassword", is_blocked=True)
        user = authenticate_user(store, "pat", "patpassword")
        assert user is not None
        assert user.is_blocked
