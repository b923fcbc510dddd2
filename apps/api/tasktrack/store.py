from __future__ import annotations

import asyncio
import base64
import copy
import json
from collections.abc import Collection as _Many
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasktrack.config import settings
from tasktrack.errors import Conflict, InvalidArgument, NotFound, StoreUnavailable
from tasktrack.models import AssignmentRow, Base, TaskRow
from tasktrack.stream import ASSIGNMENTS_COLLECTION, TASKS_COLLECTION, ChangeRecord, ChangeStream

log = structlog.get_logger(__name__)

TASKS = TASKS_COLLECTION
ASSIGNMENTS = ASSIGNMENTS_COLLECTION
TASK_INDEX = "TaskIndex"
USER_INDEX = "UserIndex"

T = TypeVar("T")


@dataclass(frozen=True)
class CollectionSpec:
  name: str
  model: type[Base]
  key: str
  indexes: dict[str, str] = field(default_factory=dict)

  def column(self, field_name: str) -> str:
    attr = self.model.fields.get(field_name)
    if attr is None:
      raise ValueError(f"Unknown {self.name} field: {field_name}")
    return attr


COLLECTIONS: dict[str, CollectionSpec] = {
  TASKS: CollectionSpec(name=TASKS, model=TaskRow, key="taskId"),
  ASSIGNMENTS: CollectionSpec(
    name=ASSIGNMENTS,
    model=AssignmentRow,
    key="assignmentId",
    indexes={TASK_INDEX: "taskId", USER_INDEX: "userId"},
  ),
}


@dataclass
class Page:
  items: list[dict[str, Any]]
  cursor: str | None = None


def encode_cursor(seq: int | None) -> str | None:
  if seq is None:
    return None
  raw = json.dumps({"seq": int(seq)}, separators=(",", ":")).encode("utf-8")
  return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> int | None:
  s = (cursor or "").strip()
  if not s:
    return None
  try:
    padded = s + ("=" * (-len(s) % 4))
    parsed = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    return int(parsed["seq"])
  except (ValueError, KeyError, TypeError) as exc:
    raise InvalidArgument("Invalid pagination cursor") from exc


def _spec(collection: str) -> CollectionSpec:
  spec = COLLECTIONS.get(collection)
  if spec is None:
    raise ValueError(f"Unknown collection: {collection}")
  return spec


def _to_item(spec: CollectionSpec, row: Base) -> dict[str, Any]:
  return {name: copy.deepcopy(getattr(row, attr)) for name, attr in spec.model.fields.items()}


def _apply(spec: CollectionSpec, row: Base, values: Mapping[str, Any]) -> None:
  for name, value in values.items():
    setattr(row, spec.column(name), copy.deepcopy(value))


def _page_size(limit: int | None, cap: int) -> int:
  if not limit or limit <= 0:
    return cap
  return min(int(limit), cap)


class TaskStore:
  """Document-style access to the Tasks and Assignments collections.

  Every operation runs in its own session, so nothing spans more than one
  collection atomically. Committed writes are reported to the change stream.
  Failures surface as StoreUnavailable and are not retried here.
  """

  def __init__(
    self,
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    stream: ChangeStream | None = None,
    timeout: float | None = None,
  ) -> None:
    self._sessionmaker = sessionmaker
    self._stream = stream
    self._timeout = timeout if timeout is not None else settings.store_timeout_seconds

  async def _run(self, op: str, collection: str, fn: Callable[[], Awaitable[T]]) -> T:
    try:
      return await asyncio.wait_for(fn(), timeout=self._timeout)
    except IntegrityError as exc:
      raise Conflict(f"Conflicting write to {collection}") from exc
    except asyncio.TimeoutError as exc:
      raise StoreUnavailable(f"Store {op} on {collection} timed out") from exc
    except SQLAlchemyError as exc:
      raise StoreUnavailable(f"Store {op} on {collection} failed") from exc

  def _emit(self, record: ChangeRecord) -> None:
    if self._stream is not None:
      self._stream.emit(record)

  async def _load(self, db: AsyncSession, spec: CollectionSpec, key: str) -> Base | None:
    col = getattr(spec.model, spec.column(spec.key))
    res = await db.execute(select(spec.model).where(col == key))
    return res.scalar_one_or_none()

  async def get(self, collection: str, key: str) -> dict[str, Any] | None:
    spec = _spec(collection)

    async def _get() -> dict[str, Any] | None:
      async with self._sessionmaker() as db:
        row = await self._load(db, spec, key)
        return _to_item(spec, row) if row is not None else None

    log.debug("store.get", collection=collection, key=key)
    return await self._run("get", collection, _get)

  async def put(self, collection: str, item: Mapping[str, Any]) -> dict[str, Any]:
    return (await self.batch_put(collection, [item]))[0]

  async def batch_put(self, collection: str, items: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Upsert several items in one write; attributes not given are left as stored."""
    spec = _spec(collection)
    for item in items:
      if not item.get(spec.key):
        raise ValueError(f"{collection} item is missing {spec.key}")

    async def _put() -> list[tuple[dict[str, Any], dict[str, Any] | None]]:
      out: list[tuple[dict[str, Any], dict[str, Any] | None]] = []
      async with self._sessionmaker() as db:
        rows: list[tuple[Base, dict[str, Any] | None]] = []
        for item in items:
          row = await self._load(db, spec, str(item[spec.key]))
          old = None
          if row is None:
            row = spec.model()
            db.add(row)
          else:
            old = _to_item(spec, row)
          _apply(spec, row, item)
          rows.append((row, old))
        await db.commit()
        for row, old in rows:
          out.append((_to_item(spec, row), old))
      return out

    log.debug("store.batch_put", collection=collection, count=len(items))
    written = await self._run("put", collection, _put)
    for new, old in written:
      self._emit(ChangeRecord(collection=collection, event_name="INSERT" if old is None else "MODIFY", new_image=new, old_image=old))
    return [new for new, _ in written]

  async def update(self, collection: str, key: str, changes: Mapping[str, Any]) -> dict[str, Any]:
    spec = _spec(collection)
    if spec.key in changes:
      raise ValueError(f"{spec.key} is immutable")

    async def _update() -> tuple[dict[str, Any], dict[str, Any]] | None:
      async with self._sessionmaker() as db:
        row = await self._load(db, spec, key)
        if row is None:
          return None
        old = _to_item(spec, row)
        _apply(spec, row, changes)
        await db.commit()
        return _to_item(spec, row), old

    log.debug("store.update", collection=collection, key=key, fields=sorted(changes.keys()))
    result = await self._run("update", collection, _update)
    if result is None:
      raise NotFound(f"{collection} item not found")
    new, old = result
    self._emit(ChangeRecord(collection=collection, event_name="MODIFY", new_image=new, old_image=old))
    return new

  async def delete(self, collection: str, key: str) -> bool:
    """Remove an item. Returns False when it was already gone."""
    spec = _spec(collection)

    async def _delete() -> dict[str, Any] | None:
      async with self._sessionmaker() as db:
        row = await self._load(db, spec, key)
        if row is None:
          return None
        old = _to_item(spec, row)
        await db.delete(row)
        await db.commit()
        return old

    log.debug("store.delete", collection=collection, key=key)
    old = await self._run("delete", collection, _delete)
    if old is None:
      return False
    self._emit(ChangeRecord(collection=collection, event_name="REMOVE", old_image=old))
    return True

  async def query_by_index(
    self,
    collection: str,
    index: str,
    value: str,
    *,
    limit: int | None = None,
    cursor: str | None = None,
  ) -> Page:
    spec = _spec(collection)
    field_name = spec.indexes.get(index)
    if field_name is None:
      raise ValueError(f"{collection} has no index {index}")
    size = _page_size(limit, settings.query_page_cap)
    after = decode_cursor(cursor)
    col = getattr(spec.model, spec.column(field_name))

    q = select(spec.model).where(col == value)
    if after is not None:
      q = q.where(spec.model.seq > after)
    q = q.order_by(spec.model.seq.asc()).limit(size + 1)

    log.debug("store.query", collection=collection, index=index, value=value, limit=size)
    return await self._run("query", collection, lambda: self._page(spec, q, size))

  async def scan(
    self,
    collection: str,
    filters: Mapping[str, Any] | None = None,
    *,
    limit: int | None = None,
    cursor: str | None = None,
  ) -> Page:
    """Full-collection read; a filter value that is a list/set matches any of its members."""
    spec = _spec(collection)
    size = _page_size(limit, settings.scan_page_cap)
    after = decode_cursor(cursor)

    q = select(spec.model)
    for name, expected in (filters or {}).items():
      col = getattr(spec.model, spec.column(name))
      if expected is None:
        q = q.where(col.is_(None))
      elif isinstance(expected, _Many) and not isinstance(expected, str):
        q = q.where(col.in_(list(expected)))
      else:
        q = q.where(col == expected)
    if after is not None:
      q = q.where(spec.model.seq > after)
    q = q.order_by(spec.model.seq.asc()).limit(size + 1)

    log.debug("store.scan", collection=collection, filters=sorted((filters or {}).keys()), limit=size)
    return await self._run("scan", collection, lambda: self._page(spec, q, size))

  async def _page(self, spec: CollectionSpec, q: Any, size: int) -> Page:
    async with self._sessionmaker() as db:
      res = await db.execute(q)
      rows = list(res.scalars().all())
    more = len(rows) > size
    rows = rows[:size]
    return Page(items=[_to_item(spec, r) for r in rows], cursor=encode_cursor(rows[-1].seq) if more and rows else None)

  async def query_all(self, collection: str, index: str, value: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    cursor: str | None = None
    while True:
      page = await self.query_by_index(collection, index, value, cursor=cursor)
      items.extend(page.items)
      if not page.cursor:
        return items
      cursor = page.cursor

  async def scan_all(self, collection: str, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    cursor: str | None = None
    while True:
      page = await self.scan(collection, filters, cursor=cursor)
      items.extend(page.items)
      if not page.cursor:
        return items
      cursor = page.cursor
