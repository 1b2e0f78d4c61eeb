from __future__ import annotations

import pytest

from planner_notify.errors import TransientResolutionError
from planner_notify.mirror.store import TokenDirectory
from planner_notify.notifications.recipients import PassCache, RecipientResolver, TaskKind

from tests.fakes import FlakyMirror


@pytest.mark.anyio
async def test_boardless_task_targets_its_creator(seed, sessionmaker, mirror) -> None:
  uid = await seed.user("solo@planner.local", token="tok-solo")
  tid = await seed.task("Water plants", create_by=uid)

  resolver = RecipientResolver(TokenDirectory(mirror))
  async with sessionmaker() as db:
    target = await resolver.resolve(db, tid, PassCache())

  assert target.kind is TaskKind.PERSONAL
  assert target.shape is TaskKind.PERSONAL
  assert target.board_label == "Today"
  assert target.tokens == ("tok-solo",)
  assert target.projection_path(9) == "Notifications/solo@planner.local/Tasks/9"


@pytest.mark.anyio
async def test_board_with_members_targets_every_member(seed, sessionmaker, mirror) -> None:
  owner = await seed.user("owner@planner.local", token="tok-owner")
  a = await seed.user("a@planner.local", token="tok-a")
  b = await seed.user("b@planner.local")  # no token
  board = await seed.board(owner, members=[owner, a, b])
  tid = await seed.task("Sprint review", board_id=board, create_by=owner)

  resolver = RecipientResolver(TokenDirectory(mirror))
  async with sessionmaker() as db:
    target = await resolver.resolve(db, tid, PassCache())

  assert target.kind is TaskKind.GROUP
  assert target.member_ids == (owner, a, b)
  assert target.tokens == ("tok-owner", "tok-a")
  assert target.board_label == str(board)
  assert target.projection_path(3) == f"BoardTasks/{tid}/Notifications/3"


@pytest.mark.anyio
async def test_board_creator_outside_membership_is_not_notified(seed, sessionmaker, mirror) -> None:
  owner = await seed.user("owner@planner.local", token="tok-owner")
  a = await seed.user("a@planner.local", token="tok-a")
  b = await seed.user("b@planner.local", token="tok-b")
  board = await seed.board(owner, members=[a, b])
  tid = await seed.task("Retro", board_id=board, create_by=owner)

  async with sessionmaker() as db:
    target = await RecipientResolver(TokenDirectory(mirror)).resolve(db, tid, PassCache())

  assert target.kind is TaskKind.GROUP
  assert target.member_ids == (a, b)
  assert target.tokens == ("tok-a", "tok-b")
  assert "tok-owner" not in target.tokens

@pytest.mark.anyio
async def test_memberless_board_targets_board_creator(seed, sessionmaker, mirror) -> None:
  creator = await seed.user("creator@planner.local", token="tok-creator")
  other = await seed.user("other@planner.local", token="tok-other")
  board = await seed.board(creator)
  tid = await seed.task("Quarterly taxes", board_id=board, create_by=other)

  async with sessionmaker() as db:
    group_shaped = await RecipientResolver(TokenDirectory(mirror)).resolve(db, tid, PassCache())
    personal_shaped = await RecipientResolver(TokenDirectory(mirror), memberless_board_projection="personal").resolve(
      db, tid, PassCache()
    )

  assert group_shaped.kind is TaskKind.PERSONAL
  assert group_shaped.tokens == ("tok-creator",)
  assert group_shaped.shape is TaskKind.GROUP
  assert group_shaped.projection_path(1) == f"BoardTasks/{tid}/Notifications/1"
  assert personal_shaped.shape is TaskKind.PERSONAL
  assert personal_shaped.projection_path(1) == "Notifications/creator@planner.local/Tasks/1"


@pytest.mark.anyio
async def test_token_lookup_failure_skips_only_that_recipient(seed, sessionmaker) -> None:
  mirror = FlakyMirror(fail_reads=["usersLogin/broken@"])
  owner = await seed.user("owner@planner.local")
  await mirror.merge_set("usersLogin/owner@planner.local", {"FMCToken": "tok-owner"})
  broken = await seed.user("broken@planner.local")
  board = await seed.board(owner, members=[owner, broken])
  tid = await seed.task("Standup", board_id=board, create_by=owner)

  async with sessionmaker() as db:
    target = await RecipientResolver(TokenDirectory(mirror)).resolve(db, tid, PassCache())

  assert target.member_ids == (owner, broken)
  assert target.tokens == ("tok-owner",)


@pytest.mark.anyio
async def test_blank_tokens_are_ignored_and_duplicates_collapse(seed, sessionmaker, mirror) -> None:
  owner = await seed.user("owner@planner.local", token="shared")
  twin = await seed.user("twin@planner.local", token="shared")
  blank = await seed.user("blank@planner.local", token="   ")
  board = await seed.board(owner, members=[owner, twin, blank])
  tid = await seed.task("Demo", board_id=board, create_by=owner)

  async with sessionmaker() as db:
    target = await RecipientResolver(TokenDirectory(mirror)).resolve(db, tid, PassCache())

  assert target.tokens == ("shared",)


@pytest.mark.anyio
async def test_pass_cache_reuses_targets_within_a_pass(seed, sessionmaker, mirror) -> None:
  uid = await seed.user("solo@planner.local", token="tok-1")
  tid = await seed.task("Inbox zero", create_by=uid)
  resolver = RecipientResolver(TokenDirectory(mirror))
  cache = PassCache()

  async with sessionmaker() as db:
    first = await resolver.resolve(db, tid, cache)
    await mirror.merge_set("usersLogin/solo@planner.local", {"FMCToken": "tok-2"})
    second = await resolver.resolve(db, tid, cache)
    fresh = await resolver.resolve(db, tid, PassCache())

  assert first is second
  assert (cache.hits, cache.misses) == (1, 1)
  assert fresh.tokens == ("tok-2",)


@pytest.mark.anyio
async def test_missing_task_is_transient(sessionmaker, mirror) -> None:
  async with sessionmaker() as db:
    with pytest.raises(TransientResolutionError):
      await RecipientResolver(TokenDirectory(mirror)).resolve(db, 999, PassCache())


@pytest.mark.anyio
async def test_ownerless_personal_task_has_no_projection_path(seed, sessionmaker, mirror) -> None:
  tid = await seed.task("Orphan")
  async with sessionmaker() as db:
    target = await RecipientResolver(TokenDirectory(mirror)).resolve(db, tid, PassCache())
  assert target.tokens == ()
  with pytest.raises(TransientResolutionError):
    target.projection_path(1)
