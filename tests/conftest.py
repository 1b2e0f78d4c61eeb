from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

from planner_notify.config import Settings
from planner_notify.mirror.store import MemoryMirror
from planner_notify.models import (
  IS_SEND_PENDING,
  PATTERN_ONETIME,
  Base,
  Board,
  BoardUser,
  Notification,
  Task,
  User,
)
from planner_notify.runtime import Runtime

from tests.fakes import RecordingGateway

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def engine(tmp_path: Path):
  eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
  async with eng.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  yield eng
  await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
  return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def cfg() -> Settings:
  # Sequential by default so per-candidate order is predictable; concurrency tests raise it.
  return Settings(
    _env_file=None,
    worker_pool_size=1,
    pass_timeout_seconds=30.0,
    push_provider="local",
    mirror_provider="memory",
    memberless_board_projection="group",
  )


@pytest.fixture
def mirror() -> MemoryMirror:
  return MemoryMirror()


@pytest.fixture
def gateway() -> RecordingGateway:
  return RecordingGateway()


@pytest.fixture
def rt(sessionmaker, gateway, mirror, cfg) -> Runtime:
  return Runtime(sessionmaker=sessionmaker, gateway=gateway, mirror=mirror, cfg=cfg)


class Seed:
  """Small builders for ledger rows and push tokens."""

  def __init__(self, sessionmaker, mirror: MemoryMirror) -> None:
    self.sessionmaker = sessionmaker
    self.mirror = mirror

  async def user(self, email: str, *, token: str | None = None) -> int:
    async with self.sessionmaker() as db:
      u = User(email=email, name=email.split("@", 1)[0])
      db.add(u)
      await db.commit()
      uid = u.user_id
    if token is not None:
      await self.mirror.merge_set(f"usersLogin/{email}", {"FMCToken": token})
    return uid

  async def board(self, created_by: int, *, members: list[int] = (), name: str = "Board") -> int:
    async with self.sessionmaker() as db:
      b = Board(board_name=name, created_by=created_by)
      db.add(b)
      await db.flush()
      for uid in members:
        db.add(BoardUser(board_id=b.board_id, user_id=uid))
      await db.commit()
      return b.board_id

  async def task(self, name: str, *, board_id: int | None = None, create_by: int | None = None) -> int:
    async with self.sessionmaker() as db:
      t = Task(task_name=name, board_id=board_id, create_by=create_by)
      db.add(t)
      await db.commit()
      return t.task_id

  async def notification(
    self,
    task_id: int,
    *,
    due: datetime,
    before: datetime | None = None,
    pattern: str | None = PATTERN_ONETIME,
    is_send: str = IS_SEND_PENDING,
  ) -> int:
    async with self.sessionmaker() as db:
      n = Notification(task_id=task_id, due_date=due, beforedue_date=before, recurring_pattern=pattern, is_send=is_send)
      db.add(n)
      await db.commit()
      return n.notification_id

  async def personal(self, email: str, name: str, *, token: str | None = "tok", **kwargs) -> tuple[int, int]:
    uid = await self.user(email, token=token)
    tid = await self.task(name, create_by=uid)
    nid = await self.notification(tid, **kwargs)
    return tid, nid

  async def load(self, notification_id: int) -> Notification:
    async with self.sessionmaker() as db:
      res = await db.execute(select(Notification).where(Notification.notification_id == notification_id))
      return res.scalar_one()


@pytest.fixture
def seed(sessionmaker, mirror) -> Seed:
  return Seed(sessionmaker, mirror)


def minutes(n: int) -> timedelta:
  return timedelta(minutes=n)
