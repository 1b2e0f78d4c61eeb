"""Firebase Admin bootstrap shared by the push gateway and the document mirror."""
from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any

import firebase_admin
from firebase_admin import credentials, firestore

from planner_notify.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_lock = threading.Lock()


def load_service_account(cfg: Settings) -> dict[str, Any] | str | None:
  """
  Find service-account credentials.

  Order: FIREBASE_CREDENTIALS_JSON (inline JSON or a path), FIREBASE_CREDENTIALS_PATH,
  GOOGLE_APPLICATION_CREDENTIALS. Returns None to fall back to application default credentials.
  """
  raw = (cfg.firebase_credentials_json or "").strip()
  if raw:
    try:
      return json.loads(raw)
    except json.JSONDecodeError:
      if os.path.exists(raw):
        return raw
      raise ValueError("FIREBASE_CREDENTIALS_JSON is neither JSON nor an existing file")

  path = (cfg.firebase_credentials_path or "").strip()
  if path and os.path.exists(path):
    return path

  google_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
  if google_path and os.path.exists(google_path):
    return google_path
  return None


def get_firebase_app(cfg: Settings | None = None) -> firebase_admin.App:
  cfg = cfg or default_settings
  with _lock:
    try:
      return firebase_admin.get_app()
    except ValueError:
      pass

    options = {"projectId": cfg.firebase_project_id} if cfg.firebase_project_id else None
    source = load_service_account(cfg)
    if source is None:
      app = firebase_admin.initialize_app(options=options)
    else:
      app = firebase_admin.initialize_app(credentials.Certificate(source), options)
    logger.info("Firebase initialized for project: %s", cfg.firebase_project_id or app.project_id)
    return app


def get_firestore_client(cfg: Settings | None = None):
  return firestore.client(app=get_firebase_app(cfg))
