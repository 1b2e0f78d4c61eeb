from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from planner_notify.errors import TransientResolutionError
from planner_notify.mirror.store import TokenDirectory
from planner_notify.models import Board, BoardUser, Task, User

logger = logging.getLogger(__name__)

BOARDLESS_LABEL = "Today"


class TaskKind(str, Enum):
  GROUP = "group"
  PERSONAL = "personal"


@dataclass(frozen=True)
class Recipient:
  user_id: int
  email: str


@dataclass(frozen=True)
class TaskTarget:
  task_id: int
  task_name: str
  board_id: int | None
  kind: TaskKind
  # Shape of the mirror document; differs from kind only for memberless boards.
  shape: TaskKind
  recipients: tuple[Recipient, ...]
  tokens: tuple[str, ...]

  @property
  def board_label(self) -> str:
    return str(self.board_id) if self.board_id is not None else BOARDLESS_LABEL

  @property
  def member_ids(self) -> tuple[int, ...]:
    return tuple(r.user_id for r in self.recipients)

  @property
  def owner_email(self) -> str | None:
    return self.recipients[0].email if self.recipients else None

  def projection_path(self, notification_id: int) -> str:
    if self.shape is TaskKind.GROUP:
      return f"BoardTasks/{self.task_id}/Notifications/{notification_id}"
    if not self.owner_email:
      raise TransientResolutionError(f"task {self.task_id} has no owner for its projection")
    return f"Notifications/{self.owner_email}/Tasks/{notification_id}"


@dataclass
class PassCache:
  """
  Lookups memoized for a single pass. A new instance is created per pass and handed to
  every worker, so nothing leaks from one run into the next.
  """

  targets: dict[int, TaskTarget] = field(default_factory=dict)
  board_members: dict[int, list[int]] = field(default_factory=dict)
  users: dict[int, Recipient] = field(default_factory=dict)
  tokens: dict[str, str] = field(default_factory=dict)
  hits: int = 0
  misses: int = 0


class RecipientResolver:
  def __init__(self, tokens: TokenDirectory, *, memberless_board_projection: str = "group") -> None:
    self._tokens = tokens
    self._memberless_shape = TaskKind(memberless_board_projection)

  async def resolve(
    self, db: AsyncSession, task_id: int, cache: PassCache, *, with_tokens: bool = True
  ) -> TaskTarget:
    """Recipients for one task. The recurrence pass only needs the projection shape, so it skips tokens."""
    cached = cache.targets.get(task_id)
    if cached is not None:
      cache.hits += 1
      return cached
    cache.misses += 1

    try:
      task = await db.get(Task, task_id)
      if task is None:
        raise TransientResolutionError(f"task {task_id} not found")
      kind, shape, user_ids = await self._classify(db, task, cache)
      recipients = await self._load_recipients(db, user_ids, cache)
    except SQLAlchemyError as e:
      raise TransientResolutionError(f"failed to resolve recipients for task {task_id}: {e}") from e

    tokens = await self._resolve_tokens(recipients, cache) if with_tokens else ()
    target = TaskTarget(
      task_id=task.task_id,
      task_name=task.task_name,
      board_id=task.board_id,
      kind=kind,
      shape=shape,
      recipients=recipients,
      tokens=tokens,
    )
    cache.targets[task_id] = target
    return target

  async def _classify(self, db: AsyncSession, task: Task, cache: PassCache) -> tuple[TaskKind, TaskKind, list[int]]:
    if task.board_id is None:
      owner = [task.create_by] if task.create_by is not None else []
      return TaskKind.PERSONAL, TaskKind.PERSONAL, owner

    members = cache.board_members.get(task.board_id)
    if members is None:
      res = await db.execute(
        select(BoardUser.user_id).where(BoardUser.board_id == task.board_id).order_by(BoardUser.board_user_id.asc())
      )
      members = list(res.scalars().all())
      cache.board_members[task.board_id] = members

    if members:
      return TaskKind.GROUP, TaskKind.GROUP, members

    board = await db.get(Board, task.board_id)
    if board is None:
      raise TransientResolutionError(f"board {task.board_id} of task {task.task_id} not found")
    return TaskKind.PERSONAL, self._memberless_shape, [board.created_by]

  async def _load_recipients(self, db: AsyncSession, user_ids: list[int], cache: PassCache) -> tuple[Recipient, ...]:
    missing = [uid for uid in user_ids if uid not in cache.users]
    if missing:
      res = await db.execute(select(User).where(User.user_id.in_(missing)))
      for u in res.scalars().all():
        cache.users[u.user_id] = Recipient(user_id=u.user_id, email=u.email)
    out: list[Recipient] = []
    for uid in user_ids:
      u = cache.users.get(uid)
      if u is None:
        logger.warning("Recipient user %s not found; skipping", uid)
        continue
      out.append(u)
    return tuple(out)

  async def _resolve_tokens(self, recipients: tuple[Recipient, ...], cache: PassCache) -> tuple[str, ...]:
    tokens: list[str] = []
    for r in recipients:
      token = cache.tokens.get(r.email)
      if token is None:
        try:
          token = await self._tokens.token_for(r.email)
        except Exception as e:
          logger.warning("Token lookup failed for %s: %s", r.email, e)
          continue
        if not token:
          logger.info("No push token for %s", r.email)
          continue
        cache.tokens[r.email] = token
      if token not in tokens:
        tokens.append(token)
    return tuple(tokens)
