from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from planner_notify.errors import (
  LedgerUpdateError,
  NotificationEngineError,
  PassSetupError,
  ProjectionWriteError,
  UnsupportedPatternError,
)
from planner_notify.models import as_utc, utcnow
from planner_notify.notifications.projection import RecurrenceReset
from planner_notify.notifications.recipients import PassCache
from planner_notify.notifications.transitions import next_occurrence
from planner_notify.reminders import ledger
from planner_notify.reminders.dispatch import Candidate
from planner_notify.reminders.pool import Outcome
from planner_notify.runtime import Runtime
from planner_notify.schemas import RunSummary

logger = logging.getLogger(__name__)


async def _advance_one(rt: Runtime, c: Candidate, cache: PassCache) -> Outcome:
  next_due, next_before = next_occurrence(
    c.due_date, c.before_due_date, c.recurring_pattern, notification_id=c.notification_id
  )

  # Ledger reset and mirror write share one transaction: a failed mirror write rolls the ledger back.
  async with rt.sessionmaker() as db:
    try:
      target = await rt.resolver.resolve(db, c.task_id, cache, with_tokens=False)
      moved = await ledger.reschedule(
        db, notification_id=c.notification_id, next_due=next_due, next_before_due=next_before
      )
      if not moved:
        await db.rollback()
        logger.info("notification %s no longer awaiting recurrence; left untouched", c.notification_id)
        return Outcome.SKIPPED
      await rt.writer.write(target, c.notification_id, RecurrenceReset(next_due=next_due, next_before_due=next_before))
      await db.commit()
    except SQLAlchemyError as e:
      await db.rollback()
      raise LedgerUpdateError(f"could not reschedule: {e}", notification_id=c.notification_id) from e
    except Exception:
      await db.rollback()
      raise

  logger.info(
    "notification %s rescheduled (%s): due %s -> %s",
    c.notification_id,
    c.recurring_pattern,
    c.due_date.isoformat(),
    next_due.isoformat(),
  )
  return Outcome.SUCCESS


async def process_recurring_notifications_once(rt: Runtime, *, now: datetime | None = None) -> RunSummary:
  """
  Reset every fully-sent recurring notification to its next occurrence.

  - Only rows with is_send=2 and a recurring pattern are touched; one-time rows are terminal.
  - Each candidate commits or rolls back on its own, so one failure does not affect the others.
  """
  now = as_utc(now) or utcnow()

  try:
    async with rt.sessionmaker() as db:
      rows = await ledger.fetch_recurring(db)
      candidates = [Candidate.from_row(n) for n in rows]
  except SQLAlchemyError as e:
    raise PassSetupError(f"could not query recurring notifications: {e}") from e

  cache = PassCache()

  async def handle(c: Candidate) -> Outcome:
    try:
      return await _advance_one(rt, c, cache)
    except UnsupportedPatternError as e:
      logger.error("notification %s: %s", c.notification_id, e.message)
      return Outcome.ERROR
    except ProjectionWriteError as e:
      logger.error("notification %s rolled back: %s", c.notification_id, e.message)
      return Outcome.ERROR
    except NotificationEngineError as e:
      logger.warning("notification %s failed: %s", c.notification_id, e.message)
      return Outcome.ERROR if e.counts_as_error else Outcome.SKIPPED

  counters = await rt.pool().run(candidates, handle)
  logger.info(
    "Recurrence pass done: total=%d success=%d error=%d skipped=%d deferred=%d",
    counters.total,
    counters.success,
    counters.error,
    counters.skipped,
    counters.deferred,
  )
  return RunSummary(
    pass_name="recurrence",
    message="Recurring notifications processed successfully",
    current_time=now,
    total_count=counters.total,
    success_count=counters.success,
    error_count=counters.error,
    skipped_count=counters.skipped,
    deferred_count=counters.deferred,
  )
