from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def utcnow_iso() -> str:
  return utcnow().isoformat().replace("+00:00", "Z")


class Base(DeclarativeBase):
  pass


# `seq` is the insertion order used for index queries and cursors; the document
# key lives in its own unique column. `fields` maps document keys to columns.


class TaskRow(Base):
  __tablename__ = "tasks"

  seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  task_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  status: Mapped[str] = mapped_column(String, nullable=False, default="open")
  due_date: Mapped[str | None] = mapped_column(String, nullable=True)
  time_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)
  assigned_to: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  assigned_users: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
  created_by: Mapped[str | None] = mapped_column(String, nullable=True)
  created_by_email: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[str | None] = mapped_column(String, nullable=True)
  updated_at: Mapped[str | None] = mapped_column(String, nullable=True)
  updated_by: Mapped[str | None] = mapped_column(String, nullable=True)

  fields = {
    "taskId": "task_id",
    "title": "title",
    "description": "description",
    "priority": "priority",
    "status": "status",
    "dueDate": "due_date",
    "timeEstimate": "time_estimate",
    "assignedTo": "assigned_to",
    "assignedUsers": "assigned_users",
    "createdBy": "created_by",
    "createdByEmail": "created_by_email",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "updatedBy": "updated_by",
  }


class AssignmentRow(Base):
  __tablename__ = "assignments"
  __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_assignments_task_user"),)

  seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  assignment_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
  task_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  user_email: Mapped[str | None] = mapped_column(String, nullable=True)
  user_name: Mapped[str | None] = mapped_column(String, nullable=True)
  assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
  assigned_at: Mapped[str | None] = mapped_column(String, nullable=True)

  fields = {
    "assignmentId": "assignment_id",
    "taskId": "task_id",
    "userId": "user_id",
    "userEmail": "user_email",
    "userName": "user_name",
    "assignedBy": "assigned_by",
    "assignedAt": "assigned_at",
  }


class DirectoryUser(Base):
  __tablename__ = "directory_users"

  seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  username: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  sub: Mapped[str | None] = mapped_column(String, nullable=True, unique=True, index=True)
  email: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  name: Mapped[str | None] = mapped_column(String, nullable=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")
  groups: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="CONFIRMED")
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# Email lookups are case-insensitive.
Index("ix_directory_users_email_lower", func.lower(DirectoryUser.email))
