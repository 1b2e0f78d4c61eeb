from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class RunSummary(BaseModel):
  pass_name: Literal["dispatch", "recurrence"]
  message: str
  current_time: datetime
  total_count: int = 0
  success_count: int = 0
  error_count: int = 0
  skipped_count: int = 0
  deferred_count: int = 0


class PreviewItem(BaseModel):
  notification_id: int
  task_id: int
  task_name: str
  notification_type: Literal["before_due", "due"]
  due_date: datetime
  before_due_date: datetime | None = None
  recurring_pattern: str | None = None
  next_is_send: str


class PreviewSummary(BaseModel):
  total_found: int = 0
  before_due_notifications: int = 0
  due_notifications: int = 0


class PreviewResult(BaseModel):
  current_time: datetime
  summary: PreviewSummary = Field(default_factory=PreviewSummary)
  notifications: list[PreviewItem] = Field(default_factory=list)
