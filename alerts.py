"""
Alert persistence.

Every alert row carries the calendar day it was written on, a hash of its
(title, message) pair and a per-title slot number. Two unique constraints on
the alerts table turn those into the daily policy:

* the same (title, message) can land at most once per user, farm and day;
* one title can occupy at most ``cap`` slots per user, farm and day.

Inserts use ``ON CONFLICT DO NOTHING``, so concurrent advisory runs cannot
push a title past its cap.
"""

import hashlib
from datetime import datetime, date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from models import Alert, Farm, new_id


def content_key(title: str, message: str) -> str:
    raw = f"{title or ''}\x1f{message or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def farm_belongs_to(session, farm_id: str, user_id: str) -> bool:
    if not farm_id or not user_id:
        return False
    row = session.execute(
        select(Farm.id).where(Farm.id == farm_id, Farm.user_id == user_id)
    ).first()
    return row is not None


def _insert_ignore(session, values: dict) -> bool:
    """Insert one alert row, returning False when a unique constraint rejects it."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(Alert).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(Alert).values(**values).on_conflict_do_nothing()
    else:
        try:
            with session.begin_nested():
                session.execute(Alert.__table__.insert().values(**values))
            return True
        except IntegrityError:
            return False
    result = session.execute(stmt)
    return result.rowcount == 1


def save_alerts(session, user_id: str, farm_id: str, candidates: Iterable[dict],
                cap: int = 2, today: Optional[date] = None) -> int:
    """
    Persist candidate alerts for one (user, farm) and return how many rows landed.

    Candidates are dicts with ``type``, ``severity``, ``title_bn`` and
    ``message_bn``. Nothing is written when the farm does not belong to the user.
    """
    candidates = list(candidates)
    if not candidates:
        return 0
    if not farm_belongs_to(session, farm_id, user_id):
        print(f"⚠️ Alert write skipped: farm {farm_id} is not owned by {user_id}")
        return 0

    day = today or datetime.utcnow().date()
    inserted = 0
    for alert in candidates:
        title = alert.get("title_bn") or ""
        message = alert.get("message_bn") or ""
        values = {
            "user_id": user_id,
            "farm_id": farm_id,
            "alert_type": alert.get("type") or "general",
            "severity": alert.get("severity") or "medium",
            "title_bn": title,
            "message_bn": message,
            "is_read": False,
            "alert_day": day,
            "content_key": content_key(title, message),
            "created_at": datetime.utcnow(),
        }
        for slot in range(max(cap, 0)):
            values["id"] = new_id()
            values["title_slot"] = slot
            if _insert_ignore(session, values):
                inserted += 1
                break
    session.commit()
    if inserted:
        print(f"✅ Saved {inserted}/{len(candidates)} alerts for farm {farm_id}")
    return inserted
