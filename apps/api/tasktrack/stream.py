from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Annotated, Any, Awaitable, Callable, Literal, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter

log = structlog.get_logger(__name__)

TASK_ASSIGNED = "TASK_ASSIGNED"
TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"

TASKS_COLLECTION = "Tasks"
ASSIGNMENTS_COLLECTION = "Assignments"


@dataclass(frozen=True)
class ChangeRecord:
  collection: str
  event_name: Literal["INSERT", "MODIFY", "REMOVE"]
  new_image: dict[str, Any] | None = None
  old_image: dict[str, Any] | None = None


class ChangeStream:
  """Ordered change records emitted by the store after each committed write."""

  def __init__(self) -> None:
    self._pending: deque[ChangeRecord] = deque()

  def emit(self, record: ChangeRecord) -> None:
    self._pending.append(record)

  def pop(self) -> ChangeRecord | None:
    return self._pending.popleft() if self._pending else None

  def drain(self) -> list[ChangeRecord]:
    out: list[ChangeRecord] = []
    while self._pending:
      out.append(self._pending.popleft())
    return out

  def pending(self) -> int:
    return len(self._pending)

  def clear(self) -> None:
    self._pending.clear()


class TaskAssignedMessage(BaseModel):
  type: Literal["TASK_ASSIGNED"] = TASK_ASSIGNED
  assignmentId: str
  taskId: str
  assignedToUserId: str | None = None
  assignedToEmail: str | None = None
  assignedToName: str | None = None
  assignedBy: str | None = None
  assignedAt: str | None = None


class TaskStatusChangedMessage(BaseModel):
  type: Literal["TASK_STATUS_CHANGED"] = TASK_STATUS_CHANGED
  taskId: str
  oldStatus: str
  newStatus: str
  updatedBy: str | None = None
  updatedAt: str | None = None


NotificationMessage = Annotated[Union[TaskAssignedMessage, TaskStatusChangedMessage], Field(discriminator="type")]
_message_adapter: TypeAdapter[Any] = TypeAdapter(NotificationMessage)


def parse_message(raw: str | bytes | dict[str, Any]) -> TaskAssignedMessage | TaskStatusChangedMessage:
  if isinstance(raw, dict):
    return _message_adapter.validate_python(raw)
  return _message_adapter.validate_json(raw)


def _text(image: dict[str, Any] | None, key: str) -> str | None:
  if not image:
    return None
  value = image.get(key)
  if value is None or value == "":
    return None
  return str(value)


def translate_record(record: ChangeRecord) -> TaskAssignedMessage | TaskStatusChangedMessage | None:
  """Map one change record onto the notification it implies, if any."""
  if record.collection == ASSIGNMENTS_COLLECTION and record.event_name == "INSERT":
    image = record.new_image
    task_id = _text(image, "taskId")
    assignment_id = _text(image, "assignmentId")
    if not task_id or not assignment_id:
      log.warning("stream.assignment_missing_fields", image=image)
      return None
    return TaskAssignedMessage(
      assignmentId=assignment_id,
      taskId=task_id,
      assignedToUserId=_text(image, "userId"),
      assignedToEmail=_text(image, "userEmail"),
      assignedToName=_text(image, "userName"),
      assignedBy=_text(image, "assignedBy"),
      assignedAt=_text(image, "assignedAt"),
    )

  if record.collection == TASKS_COLLECTION and record.event_name == "MODIFY":
    new_status = _text(record.new_image, "status")
    old_status = _text(record.old_image, "status")
    if not new_status or not old_status or new_status == old_status:
      return None
    task_id = _text(record.new_image, "taskId")
    if not task_id:
      log.warning("stream.status_change_missing_task_id", image=record.new_image)
      return None
    return TaskStatusChangedMessage(
      taskId=task_id,
      oldStatus=old_status,
      newStatus=new_status,
      updatedBy=_text(record.new_image, "updatedBy"),
      updatedAt=_text(record.new_image, "updatedAt"),
    )

  return None


Subscriber = Callable[[Union[TaskAssignedMessage, TaskStatusChangedMessage]], Awaitable[None]]


@dataclass
class Topic:
  """In-process pub/sub topic. Subscriber failures are logged, never raised to the publisher."""

  name: str
  subscribers: list[Subscriber] = field(default_factory=list)

  def subscribe(self, subscriber: Subscriber) -> None:
    if subscriber not in self.subscribers:
      self.subscribers.append(subscriber)

  async def publish(self, message: TaskAssignedMessage | TaskStatusChangedMessage) -> None:
    for sub in list(self.subscribers):
      try:
        await sub(message)
      except Exception:
        log.exception("topic.subscriber_failed", topic=self.name, type=message.type, taskId=message.taskId)


async def relay_once(stream: ChangeStream, topic: Topic) -> int:
  """Translate every pending change record and publish the resulting messages.

  Records are taken one at a time, so anything not yet reached stays queued.
  """
  published = 0
  while True:
    record = stream.pop()
    if record is None:
      break
    try:
      message = translate_record(record)
    except Exception:
      log.exception("stream.record_failed", collection=record.collection, event_name=record.event_name)
      continue
    if message is None:
      continue
    await topic.publish(message)
    published += 1
  return published


change_stream = ChangeStream()
notification_topic = Topic(name="task-notifications")
