from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from tasktrack.validation import PRIORITIES, STATUSES

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_due_date(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    return value.isoformat()
  if isinstance(value, date):
    return value.isoformat()
  if isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      date.fromisoformat(s)
    else:
      datetime.fromisoformat(s.replace("Z", "+00:00"))
    return s
  return value


def _parse_time_estimate(value: object) -> object:
  if value is None or value == "":
    return None
  if isinstance(value, bool):
    raise ValueError("Invalid timeEstimate value. Must be a positive number")
  try:
    parsed = float(value)  # type: ignore[arg-type]
  except (TypeError, ValueError) as exc:
    raise ValueError("Invalid timeEstimate value. Must be a positive number") from exc
  if parsed != parsed or parsed < 0:
    raise ValueError("Invalid timeEstimate value. Must be a positive number")
  return parsed


def _check_priority(value: str | None) -> str | None:
  if value is not None and value not in PRIORITIES:
    raise ValueError("Invalid priority value. Must be: low, medium, or high")
  return value


def _check_status(value: str | None) -> str | None:
  if value is not None and value not in STATUSES:
    raise ValueError("Invalid status value. Must be: open, in-progress, completed, or closed")
  return value


class TaskCreateIn(BaseModel):
  model_config = ConfigDict(extra="ignore")

  title: str
  description: str
  priority: str | None = None
  status: str | None = None
  dueDate: str | None = None
  timeEstimate: float | None = None
  assignedTo: str | None = None
  assignedUserIds: list[str] = []

  @field_validator("priority")
  @classmethod
  def _priority(cls, v: str | None) -> str | None:
    return _check_priority(v)

  @field_validator("status")
  @classmethod
  def _status(cls, v: str | None) -> str | None:
    return _check_status(v)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date(cls, v: object) -> object:
    return _parse_due_date(v)

  @field_validator("timeEstimate", mode="before")
  @classmethod
  def _time_estimate(cls, v: object) -> object:
    return _parse_time_estimate(v)


class TaskUpdateIn(BaseModel):
  model_config = ConfigDict(extra="ignore")

  title: str | None = None
  description: str | None = None
  status: str | None = None
  priority: str | None = None
  dueDate: str | None = None
  timeEstimate: float | None = None
  assignedTo: str | None = None
  # Accepted only so it can be refused; assignees change through /assign.
  assignedUsers: Any = None

  @field_validator("priority")
  @classmethod
  def _priority(cls, v: str | None) -> str | None:
    return _check_priority(v)

  @field_validator("status")
  @classmethod
  def _status(cls, v: str | None) -> str | None:
    return _check_status(v)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date(cls, v: object) -> object:
    return _parse_due_date(v)

  @field_validator("timeEstimate", mode="before")
  @classmethod
  def _time_estimate(cls, v: object) -> object:
    return _parse_time_estimate(v)


class TaskAssignIn(BaseModel):
  userIds: Any = None


class AssigneeOut(BaseModel):
  userId: str | None = None
  userName: str | None = None
  userEmail: str | None = None
  assignedAt: str | None = None


class DirectoryUserOut(BaseModel):
  userId: str
  email: str | None
  name: str | None
  role: str
  status: str
  enabled: bool
  created: datetime | None
