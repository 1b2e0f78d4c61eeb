from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from planner_notify.config import Settings, settings as default_settings
from planner_notify.mirror.store import MirrorStore, mirror_for, token_directory_for
from planner_notify.notifications.projection import ProjectionWriter
from planner_notify.notifications.recipients import RecipientResolver
from planner_notify.push.gateway import PushGateway, gateway_for
from planner_notify.reminders.pool import WorkerPool


@dataclass
class Runtime:
  """Collaborators shared by the dispatch and recurrence passes."""

  sessionmaker: async_sessionmaker[AsyncSession]
  gateway: PushGateway
  mirror: MirrorStore
  cfg: Settings = field(default_factory=lambda: default_settings)
  # Set when the runtime built its own engine; aclose disposes it.
  engine: AsyncEngine | None = None
  resolver: RecipientResolver = field(init=False)
  writer: ProjectionWriter = field(init=False)

  def __post_init__(self) -> None:
    self.resolver = RecipientResolver(
      token_directory_for(self.mirror, self.cfg),
      memberless_board_projection=self.cfg.memberless_board_projection,
    )
    self.writer = ProjectionWriter(self.mirror)

  async def aclose(self) -> None:
    if self.engine is not None:
      await self.engine.dispose()
      self.engine = None

  def pool(self) -> WorkerPool:
    return WorkerPool(size=self.cfg.worker_count(), timeout_seconds=self.cfg.pass_timeout_seconds)

  @classmethod
  def from_settings(
    cls,
    cfg: Settings | None = None,
    *,
    sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    gateway: PushGateway | None = None,
    mirror: MirrorStore | None = None,
  ) -> "Runtime":
    cfg = cfg or default_settings
    engine = None
    if sessionmaker is None:
      from planner_notify.db import make_engine, make_sessionmaker

      engine = make_engine(cfg.database_url)
      sessionmaker = make_sessionmaker(engine)
    return cls(
      sessionmaker=sessionmaker,
      gateway=gateway if gateway is not None else gateway_for(cfg),
      mirror=mirror if mirror is not None else mirror_for(cfg),
      cfg=cfg,
      engine=engine,
    )
