from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://planner:planner@db:5432/planner"
  app_version: str = "0.1.0"

  firebase_project_id: str | None = None
  firebase_credentials_path: str | None = "./serviceAccountKey.json"
  firebase_credentials_json: str | None = None

  dispatch_interval_seconds: int = 60
  recurrence_interval_seconds: int = 86400
  worker_pool_size: int = 10
  pass_timeout_seconds: float = 50.0
  multicast_batch_size: int = 500

  push_provider: Literal["fcm", "local"] = "fcm"
  mirror_provider: Literal["firestore", "memory"] = "firestore"
  notification_title: str = "Task reminder"
  token_collection: str = "usersLogin"
  token_field: str = "FMCToken"
  memberless_board_projection: Literal["group", "personal"] = "group"

  log_dir: str = ".local/planner-notify"
  log_level: str = "INFO"

  def worker_count(self) -> int:
    return max(1, int(self.worker_pool_size))


settings = Settings()
