from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
  """Normalize a stored timestamp to an aware UTC datetime (SQLite hands back naive values)."""
  if dt is None:
    return None
  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


# Ledger send-state values, stored as strings like the upstream enum column.
IS_SEND_PENDING = "0"
IS_SEND_BEFORE_DUE_SENT = "1"
IS_SEND_DUE_SENT = "2"

PATTERN_ONETIME = "onetime"
PATTERN_DAILY = "daily"
PATTERN_WEEKLY = "weekly"
PATTERN_MONTHLY = "monthly"
PATTERN_YEARLY = "yearly"


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "user"

  user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
  name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Board(Base):
  __tablename__ = "board"

  board_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  board_name: Mapped[str] = mapped_column(String(255), nullable=False)
  created_by: Mapped[int] = mapped_column(Integer, ForeignKey("user.user_id"), nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class BoardUser(Base):
  __tablename__ = "board_user"
  __table_args__ = (UniqueConstraint("board_id", "user_id", name="ux_board_user_board_user"),)

  board_user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  board_id: Mapped[int] = mapped_column(Integer, ForeignKey("board.board_id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user.user_id"), nullable=False)
  added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  task_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  board_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("board.board_id", ondelete="CASCADE"), nullable=True)
  task_name: Mapped[str] = mapped_column(String(255), nullable=False)
  create_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("user.user_id"), nullable=True)
  create_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notification"

  notification_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  task_id: Mapped[int] = mapped_column(
    Integer, ForeignKey("tasks.task_id", ondelete="CASCADE"), nullable=False, unique=True, index=True
  )
  due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  beforedue_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  recurring_pattern: Mapped[str | None] = mapped_column(String(255), nullable=True, default=PATTERN_ONETIME)
  is_send: Mapped[str] = mapped_column(String(1), nullable=False, default=IS_SEND_PENDING, index=True)  # 0|1|2
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

  task: Mapped[Task] = relationship(lazy="joined")
