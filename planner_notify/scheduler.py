from __future__ import annotations

import asyncio
import logging

from planner_notify.errors import PassSetupError
from planner_notify.reminders.dispatch import dispatch_due_notifications_once
from planner_notify.reminders.recurrence import process_recurring_notifications_once
from planner_notify.runtime import Runtime
from planner_notify.schemas import RunSummary

logger = logging.getLogger(__name__)


class Scheduler:
  """
  Periodic triggers for the two passes.

  A trigger that fires while the previous run of the same pass is still active is skipped,
  never queued. Failures are logged and the loop keeps going.
  """

  def __init__(self, rt: Runtime) -> None:
    self.rt = rt
    self._dispatch_lock = asyncio.Lock()
    self._recurrence_lock = asyncio.Lock()
    self._tasks: list[asyncio.Task] = []
    self._inflight: set[asyncio.Task] = set()

  async def run_dispatch_pass(self) -> RunSummary | None:
    if self._dispatch_lock.locked():
      logger.warning("Dispatch trigger skipped, previous run still active")
      return None
    async with self._dispatch_lock:
      return await dispatch_due_notifications_once(self.rt)

  async def run_recurrence_pass(self) -> RunSummary | None:
    if self._recurrence_lock.locked():
      logger.warning("Recurrence trigger skipped, previous run still active")
      return None
    async with self._recurrence_lock:
      return await process_recurring_notifications_once(self.rt)

  def _spawn(self, name: str, interval: float, run) -> None:
    # Each tick runs in its own task so a slow pass does not delay the next trigger.
    async def ticker() -> None:
      while True:
        run_task = asyncio.create_task(self._guarded(name, run))
        self._inflight.add(run_task)
        run_task.add_done_callback(self._inflight.discard)
        await asyncio.sleep(max(1.0, float(interval)))

    self._tasks.append(asyncio.create_task(ticker(), name=f"{name}-ticker"))

  async def _guarded(self, name: str, run) -> None:
    try:
      summary = await run()
    except PassSetupError as e:
      logger.error("%s pass could not start: %s", name, e)
      return
    except Exception:
      logger.exception("%s pass crashed", name)
      return
    if summary is not None:
      logger.info("%s pass: %s", name, summary.model_dump_json())

  def start(self) -> None:
    if self._tasks:
      return
    self._spawn("dispatch", self.rt.cfg.dispatch_interval_seconds, self.run_dispatch_pass)
    self._spawn("recurrence", self.rt.cfg.recurrence_interval_seconds, self.run_recurrence_pass)

  async def stop(self) -> None:
    pending = [*self._tasks, *self._inflight]
    for t in pending:
      t.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    self._tasks.clear()

  async def serve_forever(self) -> None:
    self.start()
    try:
      await asyncio.gather(*self._tasks)
    finally:
      await self.stop()
