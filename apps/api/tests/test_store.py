from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import pytest
from sqlalchemy.exc import OperationalError

from tasktrack.db import SessionLocal
from tasktrack.errors import Conflict, InvalidArgument, NotFound, StoreUnavailable
from tasktrack.store import ASSIGNMENTS, TASK_INDEX, TASKS, USER_INDEX, TaskStore, decode_cursor, encode_cursor
from tasktrack.stream import ChangeStream


def _task(**fields) -> dict:
  return {"taskId": str(uuid.uuid4()), "title": "t", "description": "d", "assignedUsers": [], **fields}


def _assignment(task_id: str, user_id: str) -> dict:
  return {"assignmentId": str(uuid.uuid4()), "taskId": task_id, "userId": user_id, "userEmail": f"{user_id}@x.com"}


@pytest.mark.anyio
async def test_put_get_update_delete_emit_change_records() -> None:
  stream = ChangeStream()
  store = TaskStore(SessionLocal, stream=stream)
  task = _task(status="open")

  stored = await store.put(TASKS, task)
  assert stored["taskId"] == task["taskId"]
  assert stored["priority"] == "medium"
  assert await store.get(TASKS, task["taskId"]) == stored
  assert await store.get(TASKS, str(uuid.uuid4())) is None

  updated = await store.update(TASKS, task["taskId"], {"status": "in-progress"})
  assert updated["status"] == "in-progress"
  assert updated["title"] == "t"

  assert await store.delete(TASKS, task["taskId"]) is True
  assert await store.delete(TASKS, task["taskId"]) is False

  records = stream.drain()
  assert [(r.collection, r.event_name) for r in records] == [(TASKS, "INSERT"), (TASKS, "MODIFY"), (TASKS, "REMOVE")]
  assert records[1].old_image["status"] == "open"
  assert records[1].new_image["status"] == "in-progress"
  assert records[2].new_image is None


@pytest.mark.anyio
async def test_put_merges_into_existing_item() -> None:
  store = TaskStore(SessionLocal)
  task = await store.put(TASKS, _task(dueDate="2026-03-01"))
  again = await store.put(TASKS, {"taskId": task["taskId"], "title": "renamed"})
  assert again["title"] == "renamed"
  assert again["dueDate"] == "2026-03-01"


@pytest.mark.anyio
async def test_update_missing_item_is_not_found() -> None:
  store = TaskStore(SessionLocal)
  with pytest.raises(NotFound):
    await store.update(TASKS, str(uuid.uuid4()), {"status": "closed"})


@pytest.mark.anyio
async def test_query_by_index_pages_in_insertion_order() -> None:
  store = TaskStore(SessionLocal)
  task_id = str(uuid.uuid4())
  rows = [_assignment(task_id, u) for u in ("u1", "u2", "u3")]
  await store.batch_put(ASSIGNMENTS, rows)
  await store.put(ASSIGNMENTS, _assignment(str(uuid.uuid4()), "u1"))

  first = await store.query_by_index(ASSIGNMENTS, TASK_INDEX, task_id, limit=2)
  assert [a["userId"] for a in first.items] == ["u1", "u2"]
  assert first.cursor

  second = await store.query_by_index(ASSIGNMENTS, TASK_INDEX, task_id, limit=2, cursor=first.cursor)
  assert [a["userId"] for a in second.items] == ["u3"]
  assert second.cursor is None

  by_user = await store.query_all(ASSIGNMENTS, USER_INDEX, "u1")
  assert len(by_user) == 2


@pytest.mark.anyio
async def test_scan_caps_page_size_below_query_cap() -> None:
  store = TaskStore(SessionLocal)
  await store.batch_put(TASKS, [_task() for _ in range(55)])

  page = await store.scan(TASKS, limit=500)
  assert len(page.items) == 50
  assert page.cursor

  rest = await store.scan(TASKS, cursor=page.cursor)
  assert len(rest.items) == 5
  assert rest.cursor is None
  assert len(await store.scan_all(TASKS)) == 55


@pytest.mark.anyio
async def test_scan_filters() -> None:
  store = TaskStore(SessionLocal)
  await store.batch_put(TASKS, [_task(assignedTo="a@x.com"), _task(assignedTo="bob"), _task()])
  assert len(await store.scan_all(TASKS, {"assignedTo": ["a@x.com", "bob"]})) == 2
  assert len(await store.scan_all(TASKS, {"assignedTo": "bob"})) == 1
  assert len(await store.scan_all(TASKS, {"assignedTo": None})) == 1
  with pytest.raises(ValueError):
    await store.scan(TASKS, {"nope": 1})


@pytest.mark.anyio
async def test_cursor_encoding() -> None:
  assert decode_cursor(encode_cursor(17)) == 17
  assert decode_cursor(None) is None
  assert decode_cursor("") is None
  with pytest.raises(InvalidArgument):
    decode_cursor("not-a-cursor")


@pytest.mark.anyio
async def test_duplicate_task_user_pair_is_a_conflict() -> None:
  store = TaskStore(SessionLocal)
  task_id = str(uuid.uuid4())
  await store.put(ASSIGNMENTS, _assignment(task_id, "alice"))
  with pytest.raises(Conflict):
    await store.put(ASSIGNMENTS, _assignment(task_id, "alice"))
  assert len(await store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)) == 1


class _BrokenSession:
  async def execute(self, *_args, **_kwargs):
    raise OperationalError("SELECT 1", {}, Exception("connection refused"))


@asynccontextmanager
async def _broken_sessionmaker():
  yield _BrokenSession()


@pytest.mark.anyio
async def test_driver_failures_surface_as_store_unavailable() -> None:
  store = TaskStore(_broken_sessionmaker)  # type: ignore[arg-type]
  with pytest.raises(StoreUnavailable):
    await store.get(TASKS, str(uuid.uuid4()))
  with pytest.raises(StoreUnavailable):
    await store.scan(TASKS)
