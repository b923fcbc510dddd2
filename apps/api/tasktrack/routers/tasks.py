from __future__ import annotations

import asyncio
import uuid
from typing import Any, Mapping

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from tasktrack.assignments.service import assign, create_with_assignees, normalize_candidates
from tasktrack.config import settings
from tasktrack.deps import get_directory, get_identity, get_store
from tasktrack.directory import UserDirectory, resolve_email
from tasktrack.errors import AppError, Forbidden, InvalidArgument, NotFound
from tasktrack.identity import Identity, assignee_refs
from tasktrack.models import utcnow_iso
from tasktrack.policy import can_access_task, can_update_task, is_admin, require_admin
from tasktrack.responses import success_response
from tasktrack.schemas import AssigneeOut, TaskAssignIn, TaskCreateIn, TaskUpdateIn
from tasktrack.store import ASSIGNMENTS, TASK_INDEX, TASKS, USER_INDEX, TaskStore
from tasktrack.validation import is_uuid, sanitize_string

router = APIRouter(tags=["tasks"])
log = structlog.get_logger(__name__)


def _require_task_id(task_id: str) -> None:
  if not is_uuid(task_id):
    log.warning("task.invalid_id", taskId=task_id)
    raise InvalidArgument("Invalid task ID format")


async def _load_task(store: TaskStore, task_id: str) -> dict[str, Any]:
  task = await store.get(TASKS, task_id)
  if task is None:
    log.info("task.not_found", taskId=task_id)
    raise NotFound("Task not found")
  return task


def _gate_view(task: Mapping[str, Any], assignees: list[dict[str, Any]]) -> dict[str, Any]:
  """The task as seen by the access check: stored assignees plus assignment rows."""
  return {**task, "assignedUsers": [*(task.get("assignedUsers") or []), *assignees]}


async def _assignees(store: TaskStore, directory: UserDirectory, task: Mapping[str, Any]) -> list[dict[str, Any]]:
  task_id = task["taskId"]
  try:
    rows = await store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)
  except AppError:
    log.exception("task.assignments_unavailable", taskId=task_id)
    rows = []

  async def _detail(a: Mapping[str, Any]) -> dict[str, Any]:
    email = a.get("userEmail") or await resolve_email(directory, a.get("userId"))
    return AssigneeOut(
      userId=a.get("userId"),
      userName=a.get("userName"),
      userEmail=email,
      assignedAt=a.get("assignedAt"),
    ).model_dump()

  details = list(await asyncio.gather(*(_detail(a) for a in rows)))
  if not details and task.get("assignedTo"):
    details = [AssigneeOut(userEmail=task["assignedTo"]).model_dump()]
  return details


async def _assignee_emails(store: TaskStore, directory: UserDirectory, task: Mapping[str, Any]) -> list[str]:
  details = await _assignees(store, directory, task)
  out: list[str] = []
  candidates = [d.get("userEmail") for d in details]
  candidates += [ref.email for ref in assignee_refs(task) if ref.email]
  for email in candidates:
    if email and email not in out:
      out.append(email)
  return out


@router.post("/tasks", status_code=201)
async def create_task(
  payload: TaskCreateIn,
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
  directory: UserDirectory = Depends(get_directory),
) -> JSONResponse:
  require_admin(identity)

  title = sanitize_string(payload.title, settings.title_max_length)
  description = sanitize_string(payload.description, settings.description_max_length)
  if not title or not description:
    raise InvalidArgument("Title and description cannot be empty")

  assigned_to = (payload.assignedTo or "").strip() or None
  raw_candidates = [*payload.assignedUserIds, *([assigned_to] if assigned_to else [])]
  candidates = normalize_candidates(raw_candidates) if raw_candidates else []

  now = utcnow_iso()
  task: dict[str, Any] = {
    "taskId": str(uuid.uuid4()),
    "title": title,
    "description": description,
    "priority": payload.priority or "medium",
    "status": payload.status or "open",
    "dueDate": payload.dueDate,
    "timeEstimate": payload.timeEstimate,
    "assignedTo": assigned_to,
    "createdBy": identity.user_id,
    "createdByEmail": identity.email,
    "createdAt": now,
    "updatedAt": now,
    "updatedBy": identity.user_id,
  }
  stored = await create_with_assignees(store, directory, task, candidates, identity)
  return success_response(stored, 201)


@router.get("/tasks")
async def list_tasks(
  limit: int | None = Query(default=None),
  lastKey: str | None = Query(default=None),
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
  directory: UserDirectory = Depends(get_directory),
) -> JSONResponse:
  size = settings.default_page_size if not limit or limit <= 0 else min(limit, settings.query_page_cap)

  if is_admin(identity):
    page = await store.scan(TASKS, limit=size, cursor=lastKey)
    tasks, cursor = page.items, page.cursor
  else:
    tasks, cursor = await _member_tasks(store, identity), None

  emails = await asyncio.gather(*(_assignee_emails(store, directory, t) for t in tasks))
  out = [{**t, "assigneeEmails": e} for t, e in zip(tasks, emails)]
  log.info("task.listed", count=len(out), admin=is_admin(identity), hasMore=bool(cursor))
  return success_response({"tasks": out, "lastEvaluatedKey": cursor}, cacheable=True)


async def _member_tasks(store: TaskStore, identity: Identity) -> list[dict[str, Any]]:
  """Tasks reachable through the caller's assignment rows plus legacy assignedTo matches."""
  ids = sorted(identity.alternate_ids)
  rows_by_task: dict[str, list[dict[str, Any]]] = {}
  for rows in await asyncio.gather(*(store.query_all(ASSIGNMENTS, USER_INDEX, i) for i in ids)):
    for a in rows:
      rows_by_task.setdefault(a["taskId"], []).append(a)

  assigned = await asyncio.gather(*(store.get(TASKS, tid) for tid in rows_by_task))
  legacy = await store.scan_all(TASKS, {"assignedTo": ids})

  out: list[dict[str, Any]] = []
  seen: set[str] = set()
  for task in [*(t for t in assigned if t is not None), *legacy]:
    tid = task["taskId"]
    if tid in seen:
      continue
    seen.add(tid)
    if can_access_task(identity, _gate_view(task, rows_by_task.get(tid, []))):
      out.append(task)
  return out


@router.get("/tasks/{task_id}")
async def get_task(
  task_id: str,
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
  directory: UserDirectory = Depends(get_directory),
) -> JSONResponse:
  _require_task_id(task_id)
  task = await _load_task(store, task_id)
  assignees = await _assignees(store, directory, task)
  if not can_access_task(identity, _gate_view(task, assignees)):
    log.warning("task.access_denied", taskId=task_id)
    raise Forbidden("Access denied")
  return success_response({**task, "assignees": assignees})


@router.put("/tasks/{task_id}")
@router.patch("/tasks/{task_id}")
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
) -> JSONResponse:
  _require_task_id(task_id)
  provided = set(payload.model_fields_set)
  if "assignedUsers" in provided:
    raise InvalidArgument("assignedUsers cannot be updated directly; use the assign endpoint")

  existing = await _load_task(store, task_id)
  rows = [] if is_admin(identity) else await store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)
  if not can_update_task(identity, _gate_view(existing, rows)):
    log.warning("task.access_denied", taskId=task_id)
    raise Forbidden("Access denied")
  if not is_admin(identity) and provided - {"status"}:
    raise Forbidden("Members may only update task status")

  changes: dict[str, Any] = {}
  if "title" in provided:
    title = sanitize_string(payload.title, settings.title_max_length)
    if not title:
      raise InvalidArgument("Title cannot be empty")
    changes["title"] = title
  if "description" in provided:
    description = sanitize_string(payload.description, settings.description_max_length)
    if not description:
      raise InvalidArgument("Description cannot be empty")
    changes["description"] = description
  for name in ("status", "priority"):
    if name in provided:
      value = getattr(payload, name)
      if value is None:
        raise InvalidArgument(f"{name} cannot be empty")
      changes[name] = value
  for name in ("dueDate", "timeEstimate", "assignedTo"):
    if name in provided:
      changes[name] = getattr(payload, name)
  if not changes:
    raise InvalidArgument("No fields to update")

  changes["updatedAt"] = utcnow_iso()
  changes["updatedBy"] = identity.user_id
  updated = await store.update(TASKS, task_id, changes)

  if "status" in changes and changes["status"] != existing.get("status"):
    log.info("task.status_changed", taskId=task_id, oldStatus=existing.get("status"), newStatus=changes["status"])
  log.info("task.updated", taskId=task_id, fields=sorted(provided))
  return success_response(updated)


@router.delete("/tasks/{task_id}")
async def delete_task(
  task_id: str,
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
) -> JSONResponse:
  require_admin(identity)
  _require_task_id(task_id)
  await _load_task(store, task_id)

  rows = await store.query_all(ASSIGNMENTS, TASK_INDEX, task_id)
  results = await asyncio.gather(
    *(store.delete(ASSIGNMENTS, a["assignmentId"]) for a in rows),
    return_exceptions=True,
  )
  failed = [a["assignmentId"] for a, r in zip(rows, results) if isinstance(r, BaseException)]
  deleted = len(rows) - len(failed)
  if failed:
    log.error("task.delete_orphaned_assignments", taskId=task_id, assignmentIds=failed)

  await store.delete(TASKS, task_id)
  log.info("task.deleted", taskId=task_id, assignmentsDeleted=deleted)
  return success_response({"message": "Task deleted successfully", "taskId": task_id, "assignmentsDeleted": deleted})


@router.post("/tasks/{task_id}/assign")
async def assign_task(
  task_id: str,
  payload: TaskAssignIn,
  identity: Identity = Depends(get_identity),
  store: TaskStore = Depends(get_store),
  directory: UserDirectory = Depends(get_directory),
) -> JSONResponse:
  require_admin(identity)
  _require_task_id(task_id)
  result = await assign(store, directory, task_id, payload.userIds, identity)
  return success_response(result)
