from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL") or (
  f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'tasktrack_test.db'}"
)
os.environ["EMAIL_PROVIDER"] = "local"
os.environ["JWT_SECRET"] = "tasktrack-test-secret-0123456789abcdef"
os.environ.setdefault("ENVIRONMENT", "test")

from tasktrack.config import settings
from tasktrack.db import SessionLocal, engine
from tasktrack.main import app, fanout
from tasktrack.models import Base, DirectoryUser
from tasktrack.notifications.service import EmailMessage, LocalEmailProvider
from tasktrack.stream import change_stream, notification_topic

# Everything the relay published and every email the app sent, per test.
published: list = []
outbox: list[EmailMessage] = []


class RecordingEmailProvider(LocalEmailProvider):
  async def send(self, msg: EmailMessage) -> dict:
    outbox.append(msg)
    return await super().send(msg)


async def _record_published(message) -> None:
  published.append(message)


fanout.provider = RecordingEmailProvider()
notification_topic.subscribe(_record_published)

# username -> directory attributes
USERS: dict[str, dict] = {
  "admin": {"email": "admin@x.com", "name": "Admin", "role": "admin", "groups": []},
  "alice": {"email": "a@x.com", "name": "Alice", "role": "member", "groups": []},
  "bob": {"email": "b@x.com", "name": "Bob", "role": "member", "groups": []},
  "gina": {"email": "g@x.com", "name": "Gina", "role": "member", "groups": ["Admins"]},
  "dora": {"email": "d@x.com", "name": "Dora", "role": "member", "groups": [], "enabled": False},
  "uma": {"email": "u@x.com", "name": "Uma", "role": "member", "groups": [], "status": "FORCE_CHANGE_PASSWORD"},
  "nina": {"email": None, "name": "Nina", "role": "member", "groups": []},
}


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    for username, attrs in USERS.items():
      db.add(
        DirectoryUser(
          username=username,
          sub=f"sub-{username}",
          email=attrs["email"],
          name=attrs["name"],
          role=attrs["role"],
          groups=list(attrs["groups"]),
          enabled=attrs.get("enabled", True),
          status=attrs.get("status", "CONFIRMED"),
        )
      )
    await db.commit()
  change_stream.clear()
  published.clear()
  outbox.clear()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set TEST_DATABASE_URL to a *_test database."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://test") as c:
    yield c


def claims_for(username: str, **overrides) -> dict:
  attrs = USERS.get(username, {"email": None, "role": "member", "groups": []})
  claims = {
    "sub": f"sub-{username}",
    "cognito:username": username,
    "custom:role": attrs["role"],
    "cognito:groups": list(attrs["groups"]),
    "exp": datetime.now(timezone.utc) + timedelta(minutes=10),
  }
  if attrs.get("email"):
    claims["email"] = attrs["email"]
  claims.update(overrides)
  return {k: v for k, v in claims.items() if v is not None}


def auth_headers(username: str, **overrides) -> dict[str, str]:
  token = jwt.encode(claims_for(username, **overrides), settings.jwt_secret, algorithm=settings.jwt_algorithm)
  return {"Authorization": f"Bearer {token}"}


async def add_directory_users(count: int, *, prefix: str = "user") -> list[str]:
  names = [f"{prefix}{i:02d}" for i in range(1, count + 1)]
  async with SessionLocal() as db:
    for name in names:
      db.add(DirectoryUser(username=name, sub=f"sub-{name}", email=f"{name}@x.com", name=name.title(), role="member", groups=[]))
    await db.commit()
  return names


async def create_task(client: AsyncClient, **fields) -> dict:
  payload = {"title": "Ship v1", "description": "release", **fields}
  res = await client.post("/tasks", json=payload, headers=auth_headers("admin"))
  assert res.status_code == 201, res.text
  return res.json()["data"]
