from __future__ import annotations


class AppError(Exception):
  """Base for errors that map onto a stable HTTP status and a readable message."""

  status_code = 500

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class Unauthenticated(AppError):
  status_code = 401


class Forbidden(AppError):
  status_code = 403


class InvalidArgument(AppError):
  status_code = 400


class InvalidAssignee(InvalidArgument):
  def __init__(self, user_ids: list[str]) -> None:
    super().__init__(f"Cannot assign task to disabled, unconfirmed, or missing users: {', '.join(user_ids)}")
    self.user_ids = list(user_ids)


class NotFound(AppError):
  status_code = 404


class Conflict(AppError):
  status_code = 409


class AlreadyAssigned(Conflict):
  # Reported as a bad request on the wire; callers treat it as a conflict.
  status_code = 400

  def __init__(self, task_id: str) -> None:
    super().__init__("All specified users are already assigned to this task")
    self.task_id = task_id


class StoreUnavailable(AppError):
  status_code = 500


class UpstreamUnavailable(AppError):
  status_code = 502
