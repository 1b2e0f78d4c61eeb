"""
Projection mirror updates.

Every scenario that touches a mirror document has its own update type listing exactly what
it carries; `build_fields` turns one into the merge payload for a Group or Personal document.
Writes always merge, so fields owned by other writers (client flags, titles) survive.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from planner_notify.errors import ProjectionWriteError
from planner_notify.mirror.store import DELETE_FIELD, SERVER_TIMESTAMP, MirrorStore
from planner_notify.models import IS_SEND_BEFORE_DUE_SENT, IS_SEND_DUE_SENT, IS_SEND_PENDING
from planner_notify.notifications.recipients import TaskKind, TaskTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeforeDueSent:
  pass


@dataclass(frozen=True)
class DueSentOnetime:
  pass


@dataclass(frozen=True)
class DueSentRecurring:
  previous_due: datetime
  previous_before_due: datetime | None
  next_due: datetime
  next_before_due: datetime | None


@dataclass(frozen=True)
class RecurrenceReset:
  next_due: datetime
  next_before_due: datetime | None


ProjectionUpdate = BeforeDueSent | DueSentOnetime | DueSentRecurring | RecurrenceReset


def _member_map(member_ids: tuple[int, ...], flags: dict[str, Any]) -> dict[str, Any]:
  return {str(uid): dict(flags) for uid in member_ids}


def build_fields(update: ProjectionUpdate, *, shape: TaskKind, member_ids: tuple[int, ...] = ()) -> dict[str, Any]:
  group = shape is TaskKind.GROUP

  if isinstance(update, BeforeDueSent):
    fields: dict[str, Any] = {
      "isSend": IS_SEND_BEFORE_DUE_SENT,
      "isNotiRemind": True,
      "isNotiRemindShow": True,
      "dueDateOld": DELETE_FIELD,
      "remindMeBeforeOld": DELETE_FIELD,
      "updatedAt": SERVER_TIMESTAMP,
    }
    if group:
      fields["userNotifications"] = _member_map(
        member_ids, {"isShow": False, "isNotiRemindShow": True, "notiCount": False}
      )
    return fields

  if isinstance(update, DueSentOnetime):
    fields = {
      "isSend": IS_SEND_DUE_SENT,
      "isShow": True,
      "dueDateOld": DELETE_FIELD,
      "remindMeBeforeOld": DELETE_FIELD,
      "updatedAt": SERVER_TIMESTAMP,
    }
    if group:
      fields["userNotifications"] = _member_map(member_ids, {"isShow": True, "notiCount": False})
    return fields

  if isinstance(update, DueSentRecurring):
    fields = {
      "isSend": IS_SEND_DUE_SENT,
      "dueDate": update.next_due,
      "remindMeBefore": update.next_before_due,
      "dueDateOld": update.previous_due,
      "remindMeBeforeOld": update.previous_before_due,
      "isShow": False,
      "isNotiRemind": False,
      "updatedAt": SERVER_TIMESTAMP,
    }
    if group:
      fields["userNotifications"] = _member_map(
        member_ids,
        {
          "notiCount": False,
          "isShow": True,
          "isNotiRemindShow": True,
          "dueDateOld": update.previous_due,
          "remindMeBeforeOld": update.previous_before_due,
        },
      )
    return fields

  if isinstance(update, RecurrenceReset):
    fields = {
      "isSend": IS_SEND_PENDING,
      "dueDate": update.next_due,
      "remindMeBefore": update.next_before_due,
      "isShow": False,
      "isNotiRemind": False,
      "notiCount": False,
      "updatedAt": SERVER_TIMESTAMP,
    }
    if group:
      fields["userNotifications"] = _member_map(member_ids, {"isShow": False, "isNotiRemindShow": False})
    return fields

  raise TypeError(f"unknown projection update: {update!r}")


class ProjectionWriter:
  def __init__(self, mirror: MirrorStore) -> None:
    self._mirror = mirror

  async def write(self, target: TaskTarget, notification_id: int, update: ProjectionUpdate) -> str:
    path = f"<unresolved>/{notification_id}"
    try:
      path = target.projection_path(notification_id)
      fields = build_fields(update, shape=target.shape, member_ids=target.member_ids)
      await self._mirror.merge_set(path, fields)
    except Exception as e:
      raise ProjectionWriteError(
        f"failed to update mirror document at {path}: {e}", path=path, notification_id=notification_id
      ) from e
    logger.debug("Mirror updated at %s (%s)", path, type(update).__name__)
    return path
