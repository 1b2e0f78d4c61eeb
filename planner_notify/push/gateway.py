from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from planner_notify.config import Settings, settings as default_settings
from planner_notify.errors import GatewaySendError

logger = logging.getLogger(__name__)

# FCM rejects multicast requests above this many tokens.
FCM_MULTICAST_LIMIT = 500


@dataclass(frozen=True)
class PushMessage:
  title: str
  body: str
  data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SendReport:
  success_count: int
  failure_count: int
  failed_tokens: tuple[str, ...] = ()

  @property
  def attempted(self) -> int:
    return self.success_count + self.failure_count


class PushGateway(Protocol):
  async def send_to_one(self, *, token: str, msg: PushMessage) -> SendReport: ...

  async def send_to_many(self, *, tokens: Sequence[str], msg: PushMessage) -> SendReport: ...


class LocalPushGateway:
  """Logs instead of delivering; every token counts as delivered. Keeps only the latest sends."""

  def __init__(self, *, keep: int = 100) -> None:
    self.sent: deque[tuple[tuple[str, ...], PushMessage]] = deque(maxlen=max(1, int(keep)))

  async def send_to_one(self, *, token: str, msg: PushMessage) -> SendReport:
    return await self.send_to_many(tokens=[token], msg=msg)

  async def send_to_many(self, *, tokens: Sequence[str], msg: PushMessage) -> SendReport:
    batch = tuple(tokens)
    self.sent.append((batch, msg))
    logger.info("local push title=%r body=%r tokens=%d data=%s", msg.title, msg.body, len(batch), msg.data)
    return SendReport(success_count=len(batch), failure_count=0)


# Per-token rejections; anything else from FCM is treated as a transport failure.
_TOKEN_REJECTIONS = (messaging.UnregisteredError, messaging.SenderIdMismatchError)


class FcmPushGateway:
  def __init__(self, app: Any = None, *, batch_size: int = FCM_MULTICAST_LIMIT) -> None:
    self._app = app
    self._batch_size = max(1, min(int(batch_size), FCM_MULTICAST_LIMIT))

  def _notification(self, msg: PushMessage) -> messaging.Notification:
    return messaging.Notification(title=msg.title, body=msg.body)

  async def send_to_one(self, *, token: str, msg: PushMessage) -> SendReport:
    message = messaging.Message(data=dict(msg.data), notification=self._notification(msg), token=token)
    try:
      message_id = await asyncio.to_thread(messaging.send, message, False, self._app)
    except _TOKEN_REJECTIONS as e:
      logger.warning("FCM rejected token %s...: %s", token[:12], e)
      return SendReport(success_count=0, failure_count=1, failed_tokens=(token,))
    except (firebase_exceptions.FirebaseError, ValueError) as e:
      raise GatewaySendError(f"FCM send failed: {e}") from e
    logger.debug("FCM message sent: %s", message_id)
    return SendReport(success_count=1, failure_count=0)

  async def send_to_many(self, *, tokens: Sequence[str], msg: PushMessage) -> SendReport:
    tokens = list(tokens)
    if not tokens:
      return SendReport(success_count=0, failure_count=0)

    success = 0
    failure = 0
    failed: list[str] = []
    batch_errors: list[Exception] = []
    batches = 0

    for start in range(0, len(tokens), self._batch_size):
      batch = tokens[start : start + self._batch_size]
      batches += 1
      message = messaging.MulticastMessage(
        tokens=batch,
        data=dict(msg.data),
        notification=self._notification(msg),
      )
      try:
        response = await asyncio.to_thread(messaging.send_each_for_multicast, message, False, self._app)
      except (firebase_exceptions.FirebaseError, ValueError) as e:
        logger.error("FCM batch %d-%d failed: %s", start, start + len(batch) - 1, e)
        batch_errors.append(e)
        failure += len(batch)
        failed.extend(batch)
        continue

      logger.info(
        "FCM batch %d-%d: success=%d failure=%d",
        start,
        start + len(batch) - 1,
        response.success_count,
        response.failure_count,
      )
      success += response.success_count
      failure += response.failure_count
      for idx, resp in enumerate(response.responses):
        if not resp.success:
          failed.append(batch[idx])
          logger.warning("FCM failed for token %s...: %s", batch[idx][:12], resp.exception)

    if batch_errors and len(batch_errors) == batches:
      raise GatewaySendError(f"FCM multicast failed for every batch: {batch_errors[-1]}")
    return SendReport(success_count=success, failure_count=failure, failed_tokens=tuple(failed))


def gateway_for(cfg: Settings | None = None) -> PushGateway:
  cfg = cfg or default_settings
  if cfg.push_provider == "local":
    return LocalPushGateway()
  from planner_notify.firebase import get_firebase_app

  return FcmPushGateway(get_firebase_app(cfg), batch_size=cfg.multicast_batch_size)
