from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Protocol, TypeVar

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasktrack.config import settings
from tasktrack.errors import UpstreamUnavailable
from tasktrack.models import DirectoryUser
from tasktrack.store import decode_cursor, encode_cursor
from tasktrack.validation import looks_like_email

log = structlog.get_logger(__name__)

CONFIRMED = "CONFIRMED"

T = TypeVar("T")


@dataclass(frozen=True)
class DirectoryEntry:
  user_id: str
  email: str | None
  name: str | None
  role: str
  groups: frozenset[str]
  enabled: bool
  status: str
  created_at: datetime | None = None

  @property
  def assignable(self) -> bool:
    return self.enabled and self.status == CONFIRMED and bool(self.email)


@dataclass
class DirectoryPage:
  users: list[DirectoryEntry]
  cursor: str | None = None


class UserDirectory(Protocol):
  async def get_user(self, user_id: str) -> DirectoryEntry | None: ...

  async def find_by_email(self, email: str) -> DirectoryEntry | None: ...

  async def list_users(self, *, limit: int = 60, cursor: str | None = None) -> DirectoryPage: ...

  async def list_users_in_group(self, group: str) -> list[DirectoryEntry]: ...

  async def list_admin_user_ids(self) -> list[str]: ...


def _entry(u: DirectoryUser) -> DirectoryEntry:
  return DirectoryEntry(
    user_id=u.username,
    email=u.email,
    name=u.name,
    role=u.role or "member",
    groups=frozenset(u.groups or []),
    enabled=bool(u.enabled),
    status=u.status or "",
    created_at=u.created_at,
  )


class SqlUserDirectory:
  """Identity directory backed by the directory_users table.

  Lookups accept either the username or the token subject.
  """

  def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], *, timeout: float | None = None) -> None:
    self._sessionmaker = sessionmaker
    self._timeout = timeout if timeout is not None else settings.directory_timeout_seconds

  async def _run(self, op: str, fn: Callable[[], Awaitable[T]]) -> T:
    try:
      return await asyncio.wait_for(fn(), timeout=self._timeout)
    except asyncio.TimeoutError as exc:
      raise UpstreamUnavailable(f"Directory {op} timed out") from exc
    except SQLAlchemyError as exc:
      raise UpstreamUnavailable(f"Directory {op} failed") from exc

  async def get_user(self, user_id: str) -> DirectoryEntry | None:
    async def _get() -> DirectoryEntry | None:
      async with self._sessionmaker() as db:
        res = await db.execute(
          select(DirectoryUser).where(or_(DirectoryUser.username == user_id, DirectoryUser.sub == user_id))
        )
        u = res.scalars().first()
        return _entry(u) if u else None

    return await self._run("get_user", _get)

  async def find_by_email(self, email: str) -> DirectoryEntry | None:
    needle = email.strip().lower()

    async def _find() -> DirectoryEntry | None:
      async with self._sessionmaker() as db:
        q = select(DirectoryUser).where(func.lower(DirectoryUser.email) == needle).order_by(DirectoryUser.seq.asc()).limit(1)
        u = (await db.execute(q)).scalars().first()
        return _entry(u) if u is not None else None

    return await self._run("find_by_email", _find)

  async def list_users(self, *, limit: int = 60, cursor: str | None = None) -> DirectoryPage:
    size = max(1, min(int(limit or 60), 60))
    after = decode_cursor(cursor)

    async def _list() -> DirectoryPage:
      q = select(DirectoryUser)
      if after is not None:
        q = q.where(DirectoryUser.seq > after)
      q = q.order_by(DirectoryUser.seq.asc()).limit(size + 1)
      async with self._sessionmaker() as db:
        rows = list((await db.execute(q)).scalars().all())
      more = len(rows) > size
      rows = rows[:size]
      return DirectoryPage(users=[_entry(u) for u in rows], cursor=encode_cursor(rows[-1].seq) if more and rows else None)

    return await self._run("list_users", _list)

  async def iter_users(self) -> AsyncIterator[DirectoryEntry]:
    cursor: str | None = None
    while True:
      page = await self.list_users(cursor=cursor)
      for u in page.users:
        yield u
      if not page.cursor:
        return
      cursor = page.cursor

  async def list_users_in_group(self, group: str) -> list[DirectoryEntry]:
    async def _list() -> list[DirectoryEntry]:
      async with self._sessionmaker() as db:
        res = await db.execute(select(DirectoryUser).order_by(DirectoryUser.seq.asc()))
        return [_entry(u) for u in res.scalars().all() if group in (u.groups or [])]

    return await self._run("list_users_in_group", _list)

  async def list_admin_user_ids(self) -> list[str]:
    """Every user with the admin role, then every member of an admin group.

    Walks the whole directory, so cost grows with the user count.
    """
    out: list[str] = []
    async for u in self.iter_users():
      if u.role == "admin" and u.user_id not in out:
        out.append(u.user_id)
    for group in sorted(settings.admin_group_set()):
      for u in await self.list_users_in_group(group):
        if u.user_id not in out:
          out.append(u.user_id)
    return out


async def lookup(directory: UserDirectory, value: str) -> DirectoryEntry | None:
  """Find a user by directory id, or by email when the value looks like one."""
  if looks_like_email(value):
    return await directory.find_by_email(value)
  return await directory.get_user(value)


async def resolve_email(directory: UserDirectory, value: str | None) -> str | None:
  """Email for a stored assignee identifier. Directory failures degrade to None."""
  if not value:
    return None
  if looks_like_email(value):
    return value
  try:
    entry = await directory.get_user(value)
  except UpstreamUnavailable:
    log.warning("directory.resolve_email_failed", userId=value)
    return None
  if entry is None or not entry.email:
    log.info("directory.email_not_found", userId=value)
    return None
  return entry.email
