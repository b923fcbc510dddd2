from __future__ import annotations

import structlog
from fastapi import Request

from tasktrack.db import SessionLocal
from tasktrack.directory import SqlUserDirectory, UserDirectory
from tasktrack.errors import Unauthenticated
from tasktrack.identity import Identity, decode_token, resolve_identity
from tasktrack.store import TaskStore
from tasktrack.stream import change_stream

store = TaskStore(SessionLocal, stream=change_stream)
directory = SqlUserDirectory(SessionLocal)


def get_store() -> TaskStore:
  return store


def get_directory() -> UserDirectory:
  return directory


async def get_identity(request: Request) -> Identity:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise Unauthenticated("No authorization claims found")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise Unauthenticated("Invalid token")
  identity = resolve_identity(decode_token(token))
  structlog.contextvars.bind_contextvars(user_id=identity.user_id)
  return identity
