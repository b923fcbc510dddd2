from __future__ import annotations

import asyncio
import uuid
from typing import Any, Iterable, Mapping

import structlog

from tasktrack.config import settings
from tasktrack.directory import DirectoryEntry, UserDirectory, lookup, resolve_email
from tasktrack.errors import AlreadyAssigned, AppError, InvalidArgument, InvalidAssignee, NotFound
from tasktrack.identity import AssigneeRef, Identity
from tasktrack.models import utcnow_iso
from tasktrack.policy import require_admin
from tasktrack.store import ASSIGNMENTS, TASK_INDEX, TASKS, TaskStore

log = structlog.get_logger(__name__)


def _ordered_unique(values: Iterable[str | None]) -> list[str]:
  seen: set[str] = set()
  out: list[str] = []
  for v in values:
    if not v or v in seen:
      continue
    seen.add(v)
    out.append(v)
  return out


def normalize_candidates(raw: Any) -> list[str]:
  if not isinstance(raw, list):
    raise InvalidArgument("User IDs array is required")
  if not raw:
    raise InvalidArgument("User IDs array is required")
  if len(raw) > settings.assign_batch_cap:
    raise InvalidArgument(f"Cannot assign more than {settings.assign_batch_cap} users at once")
  if not all(isinstance(v, str) and v.strip() for v in raw):
    raise InvalidArgument("User IDs must be non-empty strings")
  return _ordered_unique(v.strip() for v in raw)


async def validate_candidates(directory: UserDirectory, candidates: list[str]) -> list[DirectoryEntry]:
  """Resolve every candidate concurrently; reject the whole batch if any is unusable.

  Returned entries are in candidate order with duplicates (same directory user
  reached through two identifiers) removed.
  """
  entries = await asyncio.gather(*(lookup(directory, c) for c in candidates))
  invalid = [c for c, e in zip(candidates, entries) if e is None or not e.assignable]
  if invalid:
    log.warning("assignment.invalid_candidates", invalid=invalid)
    raise InvalidAssignee(invalid)
  out: list[DirectoryEntry] = []
  seen: set[str] = set()
  for e in entries:
    if e is not None and e.user_id not in seen:
      seen.add(e.user_id)
      out.append(e)
  return out


def assignment_records(task_id: str, entries: list[DirectoryEntry], actor: Identity) -> list[dict[str, Any]]:
  now = utcnow_iso()
  return [
    {
      "assignmentId": str(uuid.uuid4()),
      "taskId": task_id,
      "userId": e.user_id,
      "userEmail": e.email,
      "userName": e.name,
      "assignedBy": actor.user_id,
      "assignedAt": now,
    }
    for e in entries
  ]


def _prior_identifiers(task: Mapping[str, Any]) -> list[str]:
  out: list[str] = []
  for entry in task.get("assignedUsers") or []:
    ref = AssigneeRef.from_value(entry)
    if ref is not None:
      out.append(ref.identifier())
  return out


async def assign(
  store: TaskStore,
  directory: UserDirectory,
  task_id: str,
  user_ids: Any,
  actor: Identity,
) -> dict[str, Any]:
  require_admin(actor)
  candidates = normalize_candidates(user_ids)

  task = await store.get(TASKS, task_id)
  if task is None:
    raise NotFound("Task not found")

  existing = await store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)
  taken = {a.get("userId") for a in existing} | {a.get("userEmail") for a in existing}
  taken.discard(None)
  fresh = [c for c in candidates if c not in taken]
  if not fresh:
    log.info("assignment.all_already_assigned", taskId=task_id, userIds=candidates)
    raise AlreadyAssigned(task_id)

  entries = await validate_candidates(directory, fresh)
  existing_ids = {a.get("userId") for a in existing}
  entries = [e for e in entries if e.user_id not in existing_ids]
  if not entries:
    raise AlreadyAssigned(task_id)

  records = assignment_records(task_id, entries, actor)
  await store.batch_put(ASSIGNMENTS, records)

  existing_emails = await asyncio.gather(
    *(_assignment_email(directory, a) for a in existing)
  )
  prior = _prior_identifiers(task)
  missing = [e for e in existing_emails if e and e not in prior]
  if missing:
    log.warning("assignment.assigned_users_drift", taskId=task_id, missing=missing)
  assigned_users = _ordered_unique([*prior, *existing_emails, *(e.email for e in entries)])

  try:
    await store.update(
      TASKS,
      task_id,
      {"assignedUsers": assigned_users, "updatedAt": utcnow_iso(), "updatedBy": actor.user_id},
    )
  except AppError:
    # Assignment rows are already written; the task list is now behind them.
    log.error(
      "assignment.task_update_failed",
      taskId=task_id,
      assignmentIds=[r["assignmentId"] for r in records],
    )
    raise

  log.info("assignment.created", taskId=task_id, newUsers=len(records), totalUsers=len(assigned_users))
  return {
    "message": "Task assigned successfully",
    "taskId": task_id,
    "newAssignments": len(records),
    "totalAssignedUsers": len(assigned_users),
  }


async def _assignment_email(directory: UserDirectory, assignment: Mapping[str, Any]) -> str | None:
  return assignment.get("userEmail") or await resolve_email(directory, assignment.get("userId"))


async def create_with_assignees(
  store: TaskStore,
  directory: UserDirectory,
  task: dict[str, Any],
  candidates: list[str],
  actor: Identity,
) -> dict[str, Any]:
  """Persist a new task and its initial assignments.

  Candidates are validated before anything is written. The task goes first,
  carrying the resolved emails, then the assignment rows.
  """
  entries = await validate_candidates(directory, candidates) if candidates else []
  task["assignedUsers"] = _ordered_unique(e.email for e in entries)
  stored = await store.put(TASKS, task)
  if entries:
    records = assignment_records(stored["taskId"], entries, actor)
    try:
      await store.batch_put(ASSIGNMENTS, records)
    except AppError:
      log.error("assignment.create_rows_failed", taskId=stored["taskId"], userIds=[e.user_id for e in entries])
      raise
  log.info("task.created", taskId=stored["taskId"], createdBy=actor.user_id, assignees=len(entries))
  return stored
