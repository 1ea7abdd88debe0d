"""
audit/store.py -- SQLAlchemy Core persistence for the activity trail.

Pattern: Repository + Data Mapper, same as auth/store.py. The activities
table lives in its own MetaData with no foreign key to users, so the trail
outlives deleted accounts.

Write policy: record() is best-effort. A database failure while writing an
audit entry is logged with a full traceback and swallowed -- the business
operation it describes has already committed and is not rolled back. Routes
call record() before returning, so a client never sees success for an
operation whose entry was silently skipped without a log line.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit.models import Activity, ActivityAction

logger = logging.getLogger("accessdesk.audit")

_metadata = MetaData()

_activities = Table(
    "activities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("action", String(40), nullable=False),
    Column("description", Text, nullable=False),
    Column("timestamp", String(32), nullable=False),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ActivityLog:
    """Append-only activity repository.

    Usage:
        log = ActivityLog(user_store.engine)
        log.record(user.id, ActivityAction.login, "User signed in")
        entries = log.list(user_id=user.id)   # newest first
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    def record(self, user_id: int, action: ActivityAction | str, description: str) -> Activity | None:
        """Append one entry and return it, or None if the write failed.

        Raises ValueError for an action outside ActivityAction -- that is a
        programming error, not a storage failure.
        """
        tag = ActivityAction(action).value
        timestamp = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _activities.insert().values(
                        user_id=user_id,
                        action=tag,
                        description=description,
                        timestamp=timestamp,
                    )
                )
                conn.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record activity %s for user_id=%s", tag, user_id)
            return None
        logger.info("activity %s user_id=%s: %s", tag, user_id, description)
        return Activity(
            id=result.inserted_primary_key[0],
            user_id=user_id,
            action=tag,
            description=description,
            timestamp=timestamp,
        )

    def list(self, user_id: int | None = None, limit: int | None = None) -> list[Activity]:
        """Return entries newest first, optionally for one actor and capped at limit."""
        query = _activities.select().order_by(_activities.c.timestamp.desc(), _activities.c.id.desc())
        if user_id is not None:
            query = query.where(_activities.c.user_id == user_id)
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_activity(r) for r in rows]

    def count_by_weekday(self) -> list[int]:
        """Return seven counters of entries per UTC weekday, index 0 = Sunday."""
        counts = [0] * 7
        with self.engine.connect() as conn:
            stamps = conn.execute(select(_activities.c.timestamp)).scalars().all()
        for stamp in stamps:
            try:
                day = datetime.fromisoformat(stamp).weekday()  # Monday = 0
            except ValueError:
                logger.warning("Skipping activity with malformed timestamp %r", stamp)
                continue
            counts[(day + 1) % 7] += 1
        return counts


def _row_to_activity(row) -> Activity:
    return Activity(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        description=row.description,
        timestamp=row.timestamp,
    )
