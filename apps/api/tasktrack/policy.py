from __future__ import annotations

from typing import Any, Mapping

from tasktrack.config import settings
from tasktrack.errors import Forbidden
from tasktrack.identity import Identity, assignee_refs


def is_admin(identity: Identity) -> bool:
  return identity.role == "admin" or bool(identity.groups & settings.admin_group_set())


def require_admin(identity: Identity) -> None:
  if not is_admin(identity):
    raise Forbidden("admin access required")


def can_access_task(identity: Identity, task: Mapping[str, Any]) -> bool:
  if is_admin(identity):
    return True
  return any(ref.matches(identity) for ref in assignee_refs(task))


def can_update_task(identity: Identity, task: Mapping[str, Any]) -> bool:
  # Same gate as reads; which fields a member may touch is the handler's concern.
  return can_access_task(identity, task)
