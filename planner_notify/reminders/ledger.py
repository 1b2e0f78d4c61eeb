from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from planner_notify.models import (
  IS_SEND_BEFORE_DUE_SENT,
  IS_SEND_DUE_SENT,
  IS_SEND_PENDING,
  PATTERN_ONETIME,
  Notification,
)


def due_predicate(now: datetime) -> ColumnElement[bool]:
  return or_(
    and_(
      Notification.is_send == IS_SEND_PENDING,
      or_(
        and_(Notification.beforedue_date.isnot(None), Notification.beforedue_date <= now),
        and_(Notification.beforedue_date.is_(None), Notification.due_date <= now),
      ),
    ),
    and_(Notification.is_send == IS_SEND_BEFORE_DUE_SENT, Notification.due_date <= now),
  )


def recurring_predicate() -> ColumnElement[bool]:
  # Blank and padded values are compared trimmed, matching transitions.is_recurring.
  pattern = func.trim(Notification.recurring_pattern)
  return and_(
    Notification.is_send == IS_SEND_DUE_SENT,
    Notification.recurring_pattern.isnot(None),
    pattern != PATTERN_ONETIME,
    pattern != "",
  )


async def fetch_due(db: AsyncSession, *, now: datetime, limit: int | None = None) -> list[Notification]:
  stmt = select(Notification).where(due_predicate(now)).order_by(Notification.due_date.asc(), Notification.notification_id.asc())
  if limit:
    stmt = stmt.limit(int(limit))
  res = await db.execute(stmt)
  return list(res.scalars().all())


async def fetch_recurring(db: AsyncSession, *, limit: int | None = None) -> list[Notification]:
  stmt = select(Notification).where(recurring_predicate()).order_by(Notification.notification_id.asc())
  if limit:
    stmt = stmt.limit(int(limit))
  res = await db.execute(stmt)
  return list(res.scalars().all())


async def mark_sent(db: AsyncSession, *, notification_id: int, from_state: str, to_state: str) -> bool:
  """Move is_send forward only if the row is still in the state the send was planned from."""
  res = await db.execute(
    update(Notification)
    .where(Notification.notification_id == notification_id, Notification.is_send == from_state)
    .values(is_send=to_state)
  )
  return res.rowcount > 0


async def reschedule(
  db: AsyncSession,
  *,
  notification_id: int,
  next_due: datetime,
  next_before_due: datetime | None,
) -> bool:
  res = await db.execute(
    update(Notification)
    .where(Notification.notification_id == notification_id, Notification.is_send == IS_SEND_DUE_SENT)
    .values(due_date=next_due, beforedue_date=next_before_due, is_send=IS_SEND_PENDING)
  )
  return res.rowcount > 0
