"""
auth/passwords.py -- Password hashing, verification, and credential checks.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Each hash gets a fresh salt from
  bcrypt.gensalt(); the salt and cost factor are embedded in the output string,
  so verify_password() needs nothing but the stored value. bcrypt.checkpw()
  compares digests in constant time.

  bcrypt only reads the first 72 bytes of a password and current releases
  raise ValueError beyond that. hash_password() enforces 1..72 UTF-8 bytes
  explicitly; the API models reject longer input before it gets here.

  verify_password() fails closed: a malformed stored hash returns False
  instead of raising into the caller.

  authenticate_user() always runs one bcrypt verification, against a dummy
  hash when the username is unknown, so response time does not reveal
  whether an account exists.

  There is no literal-password special case for any account. The bootstrap
  admin is hashed exactly like every other user.

Layer rule: no imports from api/ or audit/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("accessdesk.auth")

_settings = get_settings()

MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError for an empty password or one longer than 72 bytes.
    """
    encoded = plain.encode("utf-8")
    if not encoded:
        raise ValueError("Password must not be empty.")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Returns False, never raises, for a malformed hash or oversized input.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("accessdesk_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Check a username/password pair with timing equalization.

    Returns the User when the password verifies, None otherwise. Unknown
    username and wrong password are indistinguishable to the caller.

    The blocked flag is NOT checked here: the login route reports a blocked
    account only after the password has been proven, so the blocked state of
    an account is never disclosed to someone who does not know its password.
    """
    user = store.get_by_username(username)
    if user is None:
        # Equalize timing -- do NOT return before running bcrypt.
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        logger.info("Failed password check for user_id=%s", user.id)
        return None
    return user
