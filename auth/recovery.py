"""
auth/recovery.py -- One-time password reset tokens.

POST /recover-password issues a token; POST /reset-password redeems it.
Tokens are stored the same way as session tokens (HMAC-SHA256 under
SECRET_KEY, see auth/sessions.py), expire after PASSWORD_RESET_EXPIRE_SECONDS,
and can be redeemed exactly once. Issuing a new token for a user invalidates
their older unredeemed ones.

Delivery (email) is not part of this service. The route hands the raw token
to a delivery hook that only logs it in DEBUG mode.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import time

from sqlalchemy import Column, Float, ForeignKey, Integer, String, Table
from sqlalchemy.engine import Engine

from auth.sessions import generate_token, hash_token
from auth.store import _now_iso, metadata
from core.config import get_settings

_settings = get_settings()

_password_resets = Table(
    "password_resets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", Float, nullable=False),  # epoch seconds
    Column("used_at", String(32)),  # NULL until redeemed
)


class PasswordResetStore:
    """Issue and redeem single-use password reset tokens."""

    def __init__(self, engine: Engine, ttl: int | None = None) -> None:
        self.engine = engine
        self.ttl = ttl if ttl is not None else _settings.password_reset_expire_seconds
        metadata.create_all(self.engine, tables=[_password_resets])

    def issue(self, user_id: int) -> str:
        """Create a reset token for user_id and return the raw value.

        Older unredeemed tokens for the same user are dropped first, so only
        the most recent email link works.
        """
        raw = generate_token()
        with self.engine.begin() as conn:
            conn.execute(
                _password_resets.delete().where(
                    (_password_resets.c.user_id == user_id) & (_password_resets.c.used_at.is_(None))
                )
            )
            conn.execute(
                _password_resets.insert().values(
                    token_hash=hash_token(raw),
                    user_id=user_id,
                    created_at=_now_iso(),
                    expires_at=time.time() + self.ttl,
                )
            )
        return raw

    def redeem(self, raw_token: str) -> int | None:
        """Consume raw_token and return its user id.

        Returns None if the token is unknown, expired, or already used. The
        used_at stamp is written with a conditional UPDATE so two concurrent
        redemptions of the same token cannot both succeed.
        """
        if not raw_token:
            return None
        token_hash = hash_token(raw_token)
        with self.engine.begin() as conn:
            row = conn.execute(
                _password_resets.select().where(_password_resets.c.token_hash == token_hash)
            ).fetchone()
            if row is None or row.used_at is not None or row.expires_at <= time.time():
                return None
            result = conn.execute(
                _password_resets.update()
                .where((_password_resets.c.id == row.id) & (_password_resets.c.used_at.is_(None)))
                .values(used_at=_now_iso())
            )
            if result.rowcount == 0:
                return None
        return row.user_id

    def purge_expired(self) -> int:
        """Delete expired and redeemed tokens. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _password_resets.delete().where(
                    (_password_resets.c.expires_at <= time.time()) | (_password_resets.c.used_at.is_not(None))
                )
            )
            conn.commit()
        return result.rowcount
