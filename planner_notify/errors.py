from __future__ import annotations


class NotificationEngineError(RuntimeError):
  """Base class for per-candidate failures; the pass counts them and moves on."""

  counts_as_error = True

  def __init__(self, message: str, *, notification_id: int | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.notification_id = notification_id


class TransientResolutionError(NotificationEngineError):
  pass


class NoRecipientsError(NotificationEngineError):
  counts_as_error = False


class GatewaySendError(NotificationEngineError):
  pass


class LedgerUpdateError(NotificationEngineError):
  pass


class ProjectionWriteError(NotificationEngineError):
  def __init__(self, message: str, *, path: str, notification_id: int | None = None) -> None:
    super().__init__(message, notification_id=notification_id)
    self.path = path


class UnsupportedPatternError(NotificationEngineError):
  def __init__(self, pattern: str | None, *, notification_id: int | None = None) -> None:
    super().__init__(f"unsupported recurring pattern: {pattern!r}", notification_id=notification_id)
    self.pattern = pattern


class PassSetupError(RuntimeError):
  """The pass could not start (ledger unreachable); surfaces to the caller."""
