from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import Any, Iterable, Mapping

import structlog

from tasktrack.directory import UserDirectory, resolve_email
from tasktrack.errors import AppError
from tasktrack.identity import AssigneeRef
from tasktrack.notifications.service import EmailMessage, EmailProvider
from tasktrack.store import ASSIGNMENTS, TASK_INDEX, TASKS, TaskStore
from tasktrack.stream import TaskAssignedMessage, TaskStatusChangedMessage

log = structlog.get_logger(__name__)


def _format_due_date(raw: Any) -> str:
  s = str(raw or "").strip()
  if not s:
    return "No due date"
  try:
    return datetime.fromisoformat(s.replace("Z", "+00:00")).date().isoformat()
  except ValueError:
    pass
  try:
    return date.fromisoformat(s[:10]).isoformat()
  except ValueError:
    return s


def task_summary(task: Mapping[str, Any]) -> str:
  return (
    f"Task: {task.get('title') or 'Untitled'}\n"
    f"Description: {task.get('description') or 'No description'}\n"
    f"Priority: {task.get('priority') or 'Not set'}\n"
    f"Status: {task.get('status') or 'open'}\n"
    f"Due Date: {_format_due_date(task.get('dueDate'))}"
  )


def assignment_email(task: Mapping[str, Any], assignee: str, assigned_by: str | None) -> tuple[str, str]:
  subject = f"New Task Assignment: {task.get('title') or 'Untitled'}"
  by_line = f"Assigned by: {assigned_by}\n" if assigned_by else ""
  body = f"A task assignment was made.\nAssigned to: {assignee}\n{by_line}\n{task_summary(task)}"
  return subject, body


def status_email(task: Mapping[str, Any], old_status: str, new_status: str) -> tuple[str, str]:
  subject = f"Task Status Updated: {task.get('title') or 'Untitled'}"
  body = f"Task status changed from {old_status} to {new_status}.\n\n{task_summary({**task, 'status': new_status})}"
  return subject, body


def _unique(values: Iterable[str | None]) -> list[str]:
  out: list[str] = []
  for v in values:
    if v and v not in out:
      out.append(v)
  return out


class NotificationFanout:
  """Turns assignment and status-change messages into emails.

  Best effort throughout: a missing task drops the message, and a failed
  delivery to one recipient is logged without affecting the others.
  """

  def __init__(self, store: TaskStore, directory: UserDirectory, provider: EmailProvider) -> None:
    self.store = store
    self.directory = directory
    self.provider = provider

  async def handle(self, message: TaskAssignedMessage | TaskStatusChangedMessage) -> int:
    if isinstance(message, TaskAssignedMessage):
      return await self.on_task_assigned(message)
    if isinstance(message, TaskStatusChangedMessage):
      return await self.on_status_changed(message)
    log.warning("notify.unknown_message", type=getattr(message, "type", None))
    return 0

  async def _load_task(self, task_id: str) -> dict[str, Any] | None:
    try:
      return await self.store.get(TASKS, task_id)
    except AppError:
      log.exception("notify.task_load_failed", taskId=task_id)
      return None

  async def admin_emails(self) -> list[str]:
    try:
      admin_ids = await self.directory.list_admin_user_ids()
    except AppError:
      log.exception("notify.admin_lookup_failed")
      return []
    emails = await asyncio.gather(*(resolve_email(self.directory, uid) for uid in admin_ids))
    return _unique(emails)

  async def assignment_emails(self, task_id: str) -> list[str]:
    try:
      assignments = await self.store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)
    except AppError:
      log.exception("notify.assignment_lookup_failed", taskId=task_id)
      return []
    emails = await asyncio.gather(
      *(resolve_email(self.directory, a.get("userEmail") or a.get("userId")) for a in assignments)
    )
    return _unique(emails)

  async def on_task_assigned(self, message: TaskAssignedMessage) -> int:
    task = await self._load_task(message.taskId)
    if task is None:
      log.warning("notify.task_missing", taskId=message.taskId, assignmentId=message.assignmentId)
      return 0

    assignee = await resolve_email(self.directory, message.assignedToEmail or message.assignedToUserId)
    if not assignee:
      log.warning("notify.no_assignee_email", taskId=message.taskId, assignmentId=message.assignmentId)
      return 0

    assigned_by = await resolve_email(self.directory, message.assignedBy)
    recipients = _unique([assignee, assigned_by, *(await self.admin_emails())])
    subject, body = assignment_email(task, assignee, assigned_by)
    sent = await self._deliver(recipients, subject, body, taskId=message.taskId)
    log.info("notify.assignment_sent", taskId=message.taskId, recipients=len(recipients), sent=sent)
    return sent

  async def on_status_changed(self, message: TaskStatusChangedMessage) -> int:
    task = await self._load_task(message.taskId)
    if task is None:
      log.warning("notify.task_missing", taskId=message.taskId)
      return 0

    fallback = [
      ref.email for ref in (AssigneeRef.from_value(v) for v in task.get("assignedUsers") or []) if ref and ref.email
    ]
    recipients = _unique([
      *(await self.assignment_emails(message.taskId)),
      *fallback,
      *(await self.admin_emails()),
    ])
    if not recipients:
      log.info("notify.no_recipients", taskId=message.taskId)
      return 0

    subject, body = status_email(task, message.oldStatus, message.newStatus)
    sent = await self._deliver(recipients, subject, body, taskId=message.taskId)
    log.info("notify.status_sent", taskId=message.taskId, recipients=len(recipients), sent=sent)
    return sent

  async def _deliver(self, recipients: list[str], subject: str, body: str, **context: Any) -> int:
    sent = 0
    for to in recipients:
      try:
        await self.provider.send(EmailMessage(to=to, subject=subject, body=body))
        sent += 1
      except Exception:
        log.exception("notify.delivery_failed", to=to, **context)
    return sent
