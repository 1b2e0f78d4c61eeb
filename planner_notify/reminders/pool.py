from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Outcome(str, Enum):
  SUCCESS = "success"
  ERROR = "error"
  SKIPPED = "skipped"


@dataclass
class PassCounters:
  total: int = 0
  success: int = 0
  error: int = 0
  skipped: int = 0
  deferred: int = 0
  _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

  def add_total(self, n: int = 1) -> None:
    with self._lock:
      self.total += n

  def record(self, outcome: Outcome) -> None:
    with self._lock:
      if outcome is Outcome.SUCCESS:
        self.success += 1
      elif outcome is Outcome.ERROR:
        self.error += 1
      else:
        self.skipped += 1

  def defer(self) -> None:
    with self._lock:
      self.deferred += 1

  def snapshot(self) -> dict[str, int]:
    with self._lock:
      return {
        "total": self.total,
        "success": self.success,
        "error": self.error,
        "skipped": self.skipped,
        "deferred": self.deferred,
      }


_DONE = object()


class WorkerPool(Generic[T]):
  """
  Fixed number of workers over a bounded queue.

  `run` returns only after every queued job has been handled or deferred, so the caller's
  summary is complete. Once the deadline passes, workers finish what they hold and defer the rest.
  """

  def __init__(self, *, size: int = 10, timeout_seconds: float | None = None, queue_factor: int = 2) -> None:
    self.size = max(1, int(size))
    self.timeout_seconds = timeout_seconds
    self._queue_size = self.size * max(1, int(queue_factor))

  async def run(self, jobs: Iterable[T], handler: Callable[[T], Awaitable[Outcome]]) -> PassCounters:
    counters = PassCounters()
    queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + self.timeout_seconds if self.timeout_seconds else None

    async def worker(idx: int) -> None:
      while True:
        item = await queue.get()
        try:
          if item is _DONE:
            return
          if deadline is not None and loop.time() >= deadline:
            counters.defer()
            continue
          try:
            outcome = await handler(item)
          except Exception:
            logger.exception("worker %d: unhandled error", idx)
            outcome = Outcome.ERROR
          counters.record(outcome)
        finally:
          queue.task_done()

    workers = [asyncio.create_task(worker(i)) for i in range(self.size)]
    try:
      for job in jobs:
        counters.add_total()
        await queue.put(job)
      for _ in workers:
        await queue.put(_DONE)
      await asyncio.gather(*workers)
    finally:
      for w in workers:
        if not w.done():
          w.cancel()

    if counters.deferred:
      logger.warning("Pass deadline reached; %d candidate(s) deferred to the next run", counters.deferred)
    return counters
