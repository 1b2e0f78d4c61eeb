from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ConsoleNoiseFilter(logging.Filter):
  """
  Keep the console readable:
  - engine logs pass through
  - google/grpc/urllib3 chatter only at WARNING+
  - anything else third-party only at ERROR+
  """

  def filter(self, record: logging.LogRecord) -> bool:
    name = record.name
    if name.startswith("planner_notify"):
      return True
    if name.startswith(("google", "grpc", "urllib3", "firebase_admin")):
      return record.levelno >= logging.WARNING
    return record.levelno >= logging.ERROR


def setup_logging(
  *,
  log_dir: str | Path | None = ".local/planner-notify",
  console_level: int | str = logging.INFO,
  file_level: int = logging.DEBUG,
) -> None:
  """
  Console handler (filtered) plus a file handler with everything.

  Call once, before the first pass runs. Pass log_dir=None to skip the file.
  """
  root = logging.getLogger()
  root.setLevel(logging.DEBUG)

  for h in list(root.handlers):
    root.removeHandler(h)

  fmt = logging.Formatter(
    fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
  )

  ch = logging.StreamHandler(sys.stderr)
  ch.setLevel(console_level)
  ch.setFormatter(fmt)
  ch.addFilter(_ConsoleNoiseFilter())
  root.addHandler(ch)

  if log_dir is not None:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(str(path / "planner-notify.log"), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

  logging.captureWarnings(True)
