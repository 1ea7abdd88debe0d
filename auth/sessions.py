"""
auth/sessions.py -- Server-side sessions bound to an httpOnly cookie.

Lifecycle per session:
  Unauthenticated -> Authenticated   create() on login / registration
  Authenticated   -> Unauthenticated destroy() on logout, or expiry

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The raw token
       only ever lives in the client's cookie. The database stores
       HMAC-SHA256(SECRET_KEY, token), so a leaked sessions table cannot be
       replayed without also knowing SECRET_KEY. The hash is deterministic,
       which keeps resolve() an indexed lookup.

  Expiry: fixed, SESSION_EXPIRE_SECONDS from creation. The cookie max_age
       matches so both expire together. An expired row resolves to None and is
       deleted on sight; purge_expired() sweeps the rest from the background
       task in api/main.py.

  Concurrent sessions per user are allowed. destroy_for_user() revokes all of
       them at once (block, password reset, password change).

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from sqlalchemy import Column, Float, ForeignKey, Integer, String, Table, func, select
from sqlalchemy.engine import Engine

from auth.store import _now_iso, metadata
from core.config import get_settings

_settings = get_settings()

COOKIE_NAME = "session_id"

_sessions = Table(
    "sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", Float, nullable=False),  # epoch seconds
)


# ---------------------------------------------------------------------------
# Token helpers (shared with auth/recovery.py)
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a fresh URL-safe random token (256 bits)."""
    return secrets.token_urlsafe(32)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Persistence for server-side sessions.

    Usage:
        sessions = SessionStore(user_store.engine)
        token = sessions.create(user.id)       # put in the cookie
        user_id = sessions.resolve(token)      # None if unknown or expired
        sessions.destroy(token)
    """

    def __init__(self, engine: Engine, ttl: int | None = None) -> None:
        self.engine = engine
        self.ttl = ttl if ttl is not None else _settings.session_expire_seconds
        metadata.create_all(self.engine, tables=[_sessions])

    def create(self, user_id: int) -> str:
        """Open a session for user_id and return the raw token for the cookie."""
        raw = generate_token()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=hash_token(raw),
                    user_id=user_id,
                    created_at=_now_iso(),
                    expires_at=time.time() + self.ttl,
                )
            )
            conn.commit()
        return raw

    def resolve(self, raw_token: str) -> int | None:
        """Return the user id bound to raw_token, or None if unknown or expired."""
        if not raw_token:
            return None
        token_hash = hash_token(raw_token)
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
            if row is None:
                return None
            if row.expires_at <= time.time():
                conn.execute(_sessions.delete().where(_sessions.c.id == row.id))
                conn.commit()
                return None
        return row.user_id

    def destroy(self, raw_token: str) -> bool:
        """Delete the session for raw_token. Returns True if one existed."""
        if not raw_token:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == hash_token(raw_token)))
            conn.commit()
        return result.rowcount > 0

    def destroy_for_user(self, user_id: int, keep_token: str | None = None) -> int:
        """Delete every session of user_id except keep_token. Returns the number removed."""
        condition = _sessions.c.user_id == user_id
        if keep_token:
            condition = condition & (_sessions.c.token_hash != hash_token(keep_token))
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        """Return the number of unexpired sessions held by user_id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > time.time()))
            ).scalar()
        return result or 0

    def purge_expired(self) -> int:
        """Delete all expired sessions. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= time.time()))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    max_age: matches the server-side expiry.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True, samesite="lax", secure=_settings.secure_cookies)
