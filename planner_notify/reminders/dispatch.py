from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from planner_notify.errors import (
  GatewaySendError,
  LedgerUpdateError,
  NoRecipientsError,
  NotificationEngineError,
  PassSetupError,
  ProjectionWriteError,
  UnsupportedPatternError,
)
from planner_notify.models import Notification, as_utc, utcnow
from planner_notify.notifications.projection import (
  BeforeDueSent,
  DueSentOnetime,
  DueSentRecurring,
  ProjectionUpdate,
)
from planner_notify.notifications.recipients import PassCache, TaskTarget
from planner_notify.notifications.transitions import (
  Phase,
  Transition,
  build_data,
  build_message_body,
  is_recurring,
  next_occurrence,
  plan_transition,
)
from planner_notify.push.gateway import PushMessage, SendReport
from planner_notify.reminders import ledger
from planner_notify.reminders.pool import Outcome
from planner_notify.runtime import Runtime
from planner_notify.schemas import PreviewItem, PreviewResult, PreviewSummary, RunSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
  """Ledger row as read by the pass query; workers never share the ORM instance."""

  notification_id: int
  task_id: int
  due_date: datetime
  before_due_date: datetime | None
  recurring_pattern: str | None
  is_send: str

  @classmethod
  def from_row(cls, n: Notification) -> "Candidate":
    return cls(
      notification_id=n.notification_id,
      task_id=n.task_id,
      due_date=as_utc(n.due_date),
      before_due_date=as_utc(n.beforedue_date),
      recurring_pattern=n.recurring_pattern,
      is_send=n.is_send,
    )


def _projection_update(c: Candidate, transition: Transition) -> ProjectionUpdate:
  if transition.phase is Phase.BEFORE_DUE:
    return BeforeDueSent()
  if not is_recurring(c.recurring_pattern):
    return DueSentOnetime()
  try:
    next_due, next_before = next_occurrence(
      c.due_date, c.before_due_date, c.recurring_pattern, notification_id=c.notification_id
    )
  except UnsupportedPatternError as e:
    # The recurrence pass reports this; here the mirror just gets the non-recurring view.
    logger.warning("notification %s: %s; mirroring as one-time", c.notification_id, e.message)
    return DueSentOnetime()
  return DueSentRecurring(
    previous_due=c.due_date,
    previous_before_due=c.before_due_date,
    next_due=next_due,
    next_before_due=next_before,
  )


async def _send(rt: Runtime, target: TaskTarget, transition: Transition) -> SendReport:
  msg = PushMessage(
    title=rt.cfg.notification_title,
    body=build_message_body(target.task_name, transition.phase),
    data=build_data(task_id=target.task_id, board_label=target.board_label, transition=transition),
  )
  try:
    if len(target.tokens) == 1:
      return await rt.gateway.send_to_one(token=target.tokens[0], msg=msg)
    return await rt.gateway.send_to_many(tokens=target.tokens, msg=msg)
  except GatewaySendError:
    raise
  except Exception as e:
    raise GatewaySendError(f"push gateway failed: {e}") from e


async def _dispatch_one(rt: Runtime, c: Candidate, cache: PassCache, now: datetime) -> Outcome:
  transition = plan_transition(is_send=c.is_send, due_date=c.due_date, before_due_date=c.before_due_date, now=now)
  if transition is None:
    return Outcome.SKIPPED

  # No session is held across the gateway call.
  async with rt.sessionmaker() as db:
    target = await rt.resolver.resolve(db, c.task_id, cache)
  if not target.tokens:
    raise NoRecipientsError(f"task {c.task_id} has no reachable recipients", notification_id=c.notification_id)

  report = await _send(rt, target, transition)
  logger.info(
    "notification %s: %s sent to %d/%d token(s)",
    c.notification_id,
    transition.phase.value,
    report.success_count,
    report.attempted,
  )

  async with rt.sessionmaker() as db:
    try:
      moved = await ledger.mark_sent(
        db,
        notification_id=c.notification_id,
        from_state=transition.from_state,
        to_state=transition.to_state,
      )
      await db.commit()
    except SQLAlchemyError as e:
      await db.rollback()
      raise LedgerUpdateError(
        f"sent but could not record is_send={transition.to_state}; the next pass may send again: {e}",
        notification_id=c.notification_id,
      ) from e

  if not moved:
    logger.warning(
      "notification %s left state %s during the pass; mirror not updated", c.notification_id, transition.from_state
    )
    return Outcome.SKIPPED

  try:
    await rt.writer.write(target, c.notification_id, _projection_update(c, transition))
  except ProjectionWriteError as e:
    # The ledger stays committed; the mirror catches up on the next change.
    logger.error("notification %s: %s", c.notification_id, e.message)
  return Outcome.SUCCESS


async def dispatch_due_notifications_once(rt: Runtime, *, now: datetime | None = None) -> RunSummary:
  """
  Send every due before-due and due notification once.

  - Candidates are processed concurrently by the worker pool; each gets its own session.
  - The ledger transition is guarded by the state the send was planned from.
  - Mirror failures are logged and never undo a committed ledger transition.
  """
  now = as_utc(now) or utcnow()

  try:
    async with rt.sessionmaker() as db:
      rows = await ledger.fetch_due(db, now=now)
      candidates = [Candidate.from_row(n) for n in rows]
  except SQLAlchemyError as e:
    raise PassSetupError(f"could not query due notifications: {e}") from e

  cache = PassCache()

  async def handle(c: Candidate) -> Outcome:
    try:
      return await _dispatch_one(rt, c, cache, now)
    except NoRecipientsError as e:
      logger.info("notification %s skipped: %s", c.notification_id, e.message)
      return Outcome.SKIPPED
    except LedgerUpdateError as e:
      logger.error("notification %s: %s", c.notification_id, e.message)
      return Outcome.ERROR
    except NotificationEngineError as e:
      logger.warning("notification %s failed: %s", c.notification_id, e.message)
      return Outcome.ERROR if e.counts_as_error else Outcome.SKIPPED

  counters = await rt.pool().run(candidates, handle)
  logger.info(
    "Dispatch pass done: total=%d success=%d error=%d skipped=%d deferred=%d (cache hits=%d misses=%d)",
    counters.total,
    counters.success,
    counters.error,
    counters.skipped,
    counters.deferred,
    cache.hits,
    cache.misses,
  )
  return RunSummary(
    pass_name="dispatch",
    message="Notifications processed successfully",
    current_time=now,
    total_count=counters.total,
    success_count=counters.success,
    error_count=counters.error,
    skipped_count=counters.skipped,
    deferred_count=counters.deferred,
  )


async def preview_due_notifications(rt: Runtime, *, now: datetime | None = None) -> PreviewResult:
  """List what the next dispatch pass would send without sending or writing anything."""
  now = as_utc(now) or utcnow()
  try:
    async with rt.sessionmaker() as db:
      rows = await ledger.fetch_due(db, now=now)
      items: list[PreviewItem] = []
      for n in rows:
        c = Candidate.from_row(n)
        transition = plan_transition(is_send=c.is_send, due_date=c.due_date, before_due_date=c.before_due_date, now=now)
        if transition is None:
          continue
        items.append(
          PreviewItem(
            notification_id=c.notification_id,
            task_id=c.task_id,
            task_name=n.task.task_name if n.task is not None else "",
            notification_type=transition.phase.value,
            due_date=c.due_date,
            before_due_date=c.before_due_date,
            recurring_pattern=c.recurring_pattern,
            next_is_send=transition.to_state,
          )
        )
  except SQLAlchemyError as e:
    raise PassSetupError(f"could not query due notifications: {e}") from e

  before = sum(1 for i in items if i.notification_type == Phase.BEFORE_DUE.value)
  return PreviewResult(
    current_time=now,
    summary=PreviewSummary(total_found=len(items), before_due_notifications=before, due_notifications=len(items) - before),
    notifications=items,
  )
