from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from pydantic import BaseModel

from planner_notify.config import settings
from planner_notify.errors import PassSetupError
from planner_notify.logging_setup import setup_logging
from planner_notify.models import as_utc
from planner_notify.reminders.dispatch import dispatch_due_notifications_once, preview_due_notifications
from planner_notify.reminders.recurrence import process_recurring_notifications_once
from planner_notify.runtime import Runtime
from planner_notify.scheduler import Scheduler

logger = logging.getLogger(__name__)


def _parse_now(s: str | None) -> datetime | None:
  if not s:
    return None
  txt = s.strip()
  if txt.endswith("Z"):
    txt = txt[:-1] + "+00:00"
  try:
    return as_utc(datetime.fromisoformat(txt))
  except ValueError as e:
    raise argparse.ArgumentTypeError(f"invalid --now value {s!r}: {e}") from e


def build_parser() -> argparse.ArgumentParser:
  ap = argparse.ArgumentParser(prog="planner-notify", description="Task notification dispatch and recurrence.")
  ap.add_argument("--no-log-file", action="store_true", help="Log to the console only.")
  ap.add_argument("--log-level", default=None, help="Console log level (default from LOG_LEVEL).")
  sub = ap.add_subparsers(dest="command", required=True)

  sub.add_parser("run", help="Run the dispatch and recurrence loops until interrupted.")
  for name, help_text in (
    ("dispatch", "Run one dispatch pass and print its summary."),
    ("recurrence", "Run one recurrence pass and print its summary."),
    ("preview", "List notifications the next dispatch pass would send."),
  ):
    p = sub.add_parser(name, help=help_text)
    p.add_argument("--now", type=_parse_now, default=None, help="Evaluate as of this RFC3339 time.")
  return ap


def _print(model: BaseModel) -> None:
  sys.stdout.write(model.model_dump_json(indent=2) + "\n")


async def _amain(args: argparse.Namespace) -> int:
  rt = Runtime.from_settings(settings)
  try:
    return await _run_command(rt, args)
  finally:
    await rt.aclose()


async def _run_command(rt: Runtime, args: argparse.Namespace) -> int:
  if args.command == "run":
    sched = Scheduler(rt)
    logger.info("planner-notify %s", settings.app_version)
    logger.info(
      "Starting loops: dispatch every %ss, recurrence every %ss, %d workers",
      settings.dispatch_interval_seconds,
      settings.recurrence_interval_seconds,
      settings.worker_count(),
    )
    await sched.serve_forever()
    return 0

  try:
    if args.command == "dispatch":
      _print(await dispatch_due_notifications_once(rt, now=args.now))
    elif args.command == "recurrence":
      _print(await process_recurring_notifications_once(rt, now=args.now))
    else:
      _print(await preview_due_notifications(rt, now=args.now))
  except PassSetupError as e:
    logger.error("%s", e)
    return 2
  return 0


def main(argv: list[str] | None = None) -> int:
  args = build_parser().parse_args(argv)
  setup_logging(
    log_dir=None if args.no_log_file else settings.log_dir,
    console_level=(args.log_level or settings.log_level).upper(),
  )
  try:
    return asyncio.run(_amain(args))
  except KeyboardInterrupt:
    return 130


if __name__ == "__main__":
  raise SystemExit(main())
