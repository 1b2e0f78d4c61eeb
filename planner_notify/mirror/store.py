from __future__ import annotations

import asyncio
import copy
from typing import Any, Protocol

from planner_notify.config import Settings, settings as default_settings
from planner_notify.models import utcnow


class _Sentinel:
  def __init__(self, name: str) -> None:
    self._name = name

  def __repr__(self) -> str:
    return self._name


# Store-neutral markers; each MirrorStore maps them to its own representation.
DELETE_FIELD = _Sentinel("DELETE_FIELD")
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")


class MirrorStore(Protocol):
  async def get(self, path: str) -> dict[str, Any] | None: ...

  async def merge_set(self, path: str, fields: dict[str, Any]) -> None: ...


class FirestoreMirror:
  def __init__(self, client: Any) -> None:
    self._client = client

  def _translate(self, value: Any) -> Any:
    from firebase_admin import firestore

    if value is DELETE_FIELD:
      return firestore.DELETE_FIELD
    if value is SERVER_TIMESTAMP:
      return firestore.SERVER_TIMESTAMP
    if isinstance(value, dict):
      return {k: self._translate(v) for k, v in value.items()}
    return value

  async def get(self, path: str) -> dict[str, Any] | None:
    snap = await asyncio.to_thread(self._client.document(path).get)
    if not snap.exists:
      return None
    return snap.to_dict() or {}

  async def merge_set(self, path: str, fields: dict[str, Any]) -> None:
    payload = self._translate(fields)
    await asyncio.to_thread(self._client.document(path).set, payload, merge=True)


def _merge_into(target: dict[str, Any], fields: dict[str, Any]) -> None:
  for key, value in fields.items():
    if value is DELETE_FIELD:
      target.pop(key, None)
    elif value is SERVER_TIMESTAMP:
      target[key] = utcnow()
    elif isinstance(value, dict):
      existing = target.get(key)
      if not isinstance(existing, dict):
        existing = {}
        target[key] = existing
      _merge_into(existing, value)
    else:
      target[key] = copy.deepcopy(value)


class MemoryMirror:
  """Process-local mirror with Firestore merge semantics (nested maps merge, DELETE_FIELD removes)."""

  def __init__(self) -> None:
    self.documents: dict[str, dict[str, Any]] = {}
    self._lock = asyncio.Lock()

  async def get(self, path: str) -> dict[str, Any] | None:
    doc = self.documents.get(path)
    return copy.deepcopy(doc) if doc is not None else None

  async def merge_set(self, path: str, fields: dict[str, Any]) -> None:
    async with self._lock:
      doc = self.documents.setdefault(path, {})
      _merge_into(doc, fields)


class TokenDirectory:
  """Per-user push tokens kept as single-field documents in the mirror (`usersLogin/{email}`)."""

  def __init__(self, mirror: MirrorStore, *, collection: str = "usersLogin", field: str = "FMCToken") -> None:
    self._mirror = mirror
    self._collection = collection
    self._field = field

  def path_for(self, email: str) -> str:
    return f"{self._collection}/{email}"

  async def token_for(self, email: str) -> str | None:
    doc = await self._mirror.get(self.path_for(email))
    if not doc:
      return None
    token = doc.get(self._field)
    if not isinstance(token, str) or not token.strip():
      return None
    return token.strip()


def mirror_for(cfg: Settings | None = None) -> MirrorStore:
  cfg = cfg or default_settings
  if cfg.mirror_provider == "memory":
    return MemoryMirror()
  from planner_notify.firebase import get_firestore_client

  return FirestoreMirror(get_firestore_client(cfg))


def token_directory_for(mirror: MirrorStore, cfg: Settings | None = None) -> TokenDirectory:
  cfg = cfg or default_settings
  return TokenDirectory(mirror, collection=cfg.token_collection, field=cfg.token_field)
