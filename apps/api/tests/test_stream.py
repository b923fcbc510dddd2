from __future__ import annotations

import pytest

from tasktrack.stream import (
  ASSIGNMENTS_COLLECTION,
  TASKS_COLLECTION,
  ChangeRecord,
  ChangeStream,
  TaskAssignedMessage,
  TaskStatusChangedMessage,
  Topic,
  parse_message,
  relay_once,
  translate_record,
)


def _assignment_insert(**image) -> ChangeRecord:
  base = {"assignmentId": "as-1", "taskId": "t-1", "userId": "alice", "userEmail": "a@x.com", "assignedBy": "admin"}
  base.update(image)
  return ChangeRecord(collection=ASSIGNMENTS_COLLECTION, event_name="INSERT", new_image=base)


def _status_modify(old: str | None, new: str | None) -> ChangeRecord:
  return ChangeRecord(
    collection=TASKS_COLLECTION,
    event_name="MODIFY",
    old_image={"taskId": "t-1", "status": old},
    new_image={"taskId": "t-1", "status": new, "updatedBy": "alice"},
  )


@pytest.mark.anyio
async def test_assignment_insert_becomes_task_assigned() -> None:
  msg = translate_record(_assignment_insert())
  assert isinstance(msg, TaskAssignedMessage)
  assert msg.type == "TASK_ASSIGNED"
  assert (msg.assignmentId, msg.taskId, msg.assignedToUserId, msg.assignedToEmail, msg.assignedBy) == (
    "as-1", "t-1", "alice", "a@x.com", "admin",
  )


@pytest.mark.anyio
async def test_records_missing_keys_or_irrelevant_are_skipped() -> None:
  assert translate_record(_assignment_insert(assignmentId=None)) is None
  assert translate_record(_assignment_insert(taskId="")) is None
  assert translate_record(ChangeRecord(collection=ASSIGNMENTS_COLLECTION, event_name="REMOVE", old_image={"taskId": "t"})) is None
  assert translate_record(ChangeRecord(collection=TASKS_COLLECTION, event_name="INSERT", new_image={"status": "open"})) is None


@pytest.mark.anyio
async def test_status_modify_only_when_status_differs() -> None:
  msg = translate_record(_status_modify("open", "in-progress"))
  assert isinstance(msg, TaskStatusChangedMessage)
  assert (msg.taskId, msg.oldStatus, msg.newStatus, msg.updatedBy) == ("t-1", "open", "in-progress", "alice")
  assert translate_record(_status_modify("open", "open")) is None
  assert translate_record(_status_modify(None, "open")) is None


@pytest.mark.anyio
async def test_parse_message_dispatches_on_type() -> None:
  raw = '{"type": "TASK_STATUS_CHANGED", "taskId": "t-1", "oldStatus": "open", "newStatus": "closed"}'
  msg = parse_message(raw)
  assert isinstance(msg, TaskStatusChangedMessage)
  assert msg.newStatus == "closed"
  assigned = parse_message({"type": "TASK_ASSIGNED", "assignmentId": "a", "taskId": "t"})
  assert isinstance(assigned, TaskAssignedMessage)


@pytest.mark.anyio
async def test_relay_isolates_bad_records_and_failing_subscribers() -> None:
  stream = ChangeStream()
  topic = Topic(name="t")
  seen: list[str] = []

  async def _boom(_msg) -> None:
    raise RuntimeError("subscriber down")

  async def _collect(msg) -> None:
    seen.append(msg.type)

  topic.subscribe(_boom)
  topic.subscribe(_collect)

  stream.emit(ChangeRecord(collection=ASSIGNMENTS_COLLECTION, event_name="INSERT", new_image=["not", "a", "dict"]))  # type: ignore[arg-type]
  stream.emit(_assignment_insert())
  stream.emit(_status_modify("open", "open"))
  stream.emit(_status_modify("open", "closed"))

  published = await relay_once(stream, topic)
  assert published == 2
  assert seen == ["TASK_ASSIGNED", "TASK_STATUS_CHANGED"]
  assert stream.pending() == 0
  assert await relay_once(stream, topic) == 0


@pytest.mark.anyio
async def test_malformed_record_does_not_drop_the_status_change_behind_it() -> None:
  stream = ChangeStream()
  topic = Topic(name="t")
  seen: list = []

  async def _collect(msg) -> None:
    seen.append(msg)

  topic.subscribe(_collect)
  stream.emit(ChangeRecord(collection=ASSIGNMENTS_COLLECTION, event_name="INSERT", new_image=["bad"]))  # type: ignore[arg-type]
  stream.emit(_status_modify("open", "closed"))

  assert await relay_once(stream, topic) == 1
  assert [(m.type, m.newStatus) for m in seen] == [("TASK_STATUS_CHANGED", "closed")]
  assert stream.pending() == 0


class _ExplodingTopic(Topic):
  async def publish(self, message) -> None:
    raise RuntimeError("topic unreachable")


@pytest.mark.anyio
async def test_records_not_yet_relayed_stay_queued() -> None:
  stream = ChangeStream()
  stream.emit(_assignment_insert())
  stream.emit(_status_modify("open", "closed"))

  with pytest.raises(RuntimeError):
    await relay_once(stream, _ExplodingTopic(name="t"))
  assert stream.pending() == 1

  topic = Topic(name="t")
  assert await relay_once(stream, topic) == 1


@pytest.mark.anyio
async def test_topic_keeps_no_message_history() -> None:
  topic = Topic(name="t")
  for _ in range(3):
    await topic.publish(translate_record(_status_modify("open", "closed")))
  assert set(vars(topic)) == {"name", "subscribers"}
