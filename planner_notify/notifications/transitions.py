"""
Pure send-state rules.

Nothing here touches a store: the dispatch and recurrence passes re-read a ledger row,
ask these functions what to do with it, and act on the answer.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from dateutil.relativedelta import relativedelta

from planner_notify.errors import UnsupportedPatternError
from planner_notify.models import (
  IS_SEND_BEFORE_DUE_SENT,
  IS_SEND_DUE_SENT,
  IS_SEND_PENDING,
  PATTERN_DAILY,
  PATTERN_MONTHLY,
  PATTERN_ONETIME,
  PATTERN_WEEKLY,
  PATTERN_YEARLY,
  as_utc,
)


class Phase(str, Enum):
  BEFORE_DUE = "before_due"
  DUE = "due"


@dataclass(frozen=True)
class Transition:
  phase: Phase
  from_state: str
  to_state: str
  announced_at: datetime


def plan_transition(
  *,
  is_send: str,
  due_date: datetime,
  before_due_date: datetime | None,
  now: datetime,
) -> Transition | None:
  due = as_utc(due_date)
  before = as_utc(before_due_date)
  if is_send == IS_SEND_PENDING:
    if before is not None:
      if before <= now:
        return Transition(Phase.BEFORE_DUE, IS_SEND_PENDING, IS_SEND_BEFORE_DUE_SENT, before)
      return None
    if due <= now:
      return Transition(Phase.DUE, IS_SEND_PENDING, IS_SEND_DUE_SENT, due)
    return None
  if is_send == IS_SEND_BEFORE_DUE_SENT and due <= now:
    return Transition(Phase.DUE, IS_SEND_BEFORE_DUE_SENT, IS_SEND_DUE_SENT, due)
  return None


def build_message_body(task_name: str, phase: Phase) -> str:
  name = (task_name or "").strip() or "Untitled task"
  if phase is Phase.BEFORE_DUE:
    return f"⏰ Almost due: {name}"
  return f"📌 Now due: {name}"


def rfc3339(dt: datetime) -> str:
  return as_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_data(*, task_id: int, board_label: str, transition: Transition) -> dict[str, str]:
  return {
    "taskid": str(task_id),
    "timestamp": rfc3339(transition.announced_at),
    "boardid": board_label,
  }


_INCREMENTS = {
  PATTERN_DAILY: relativedelta(days=1),
  PATTERN_WEEKLY: relativedelta(days=7),
  PATTERN_MONTHLY: relativedelta(months=1),
  PATTERN_YEARLY: relativedelta(years=1),
}


def is_recurring(pattern: str | None) -> bool:
  p = (pattern or "").strip()
  return bool(p) and p != PATTERN_ONETIME


def next_occurrence(
  due_date: datetime,
  before_due_date: datetime | None,
  pattern: str | None,
  *,
  notification_id: int | None = None,
) -> tuple[datetime, datetime | None]:
  """
  Advance one period. Month and year steps clamp to the last valid day
  (Jan 31 + 1 month -> Feb 28/29). The before-due offset is carried over unchanged.
  """
  step = _INCREMENTS.get((pattern or "").strip())
  if step is None:
    raise UnsupportedPatternError(pattern, notification_id=notification_id)
  due = as_utc(due_date)
  next_due = (due + step).astimezone(timezone.utc)
  if before_due_date is None:
    return next_due, None
  offset = due - as_utc(before_due_date)
  return next_due, next_due - offset
