from __future__ import annotations

import asyncio
import os

from sqlalchemy import select

from tasktrack.db import SessionLocal
from tasktrack.models import DirectoryUser


def _seed_users() -> list[dict]:
  return [
    {
      "username": "admin",
      "email": (os.getenv("SEED_ADMIN_EMAIL") or "admin@tasktrack.local").strip(),
      "name": "Admin",
      "role": "admin",
      "groups": ["Admins"],
    },
    {
      "username": "member",
      "email": (os.getenv("SEED_MEMBER_EMAIL") or "member@tasktrack.local").strip(),
      "name": "Member",
      "role": "member",
      "groups": [],
    },
  ]


async def seed() -> None:
  async with SessionLocal() as db:
    created: list[str] = []
    for attrs in _seed_users():
      res = await db.execute(select(DirectoryUser).where(DirectoryUser.username == attrs["username"]))
      if res.scalar_one_or_none():
        continue
      db.add(DirectoryUser(sub=attrs["username"], enabled=True, status="CONFIRMED", **attrs))
      created.append(attrs["username"])
    await db.commit()
  if created:
    print(f"seeded directory users: {', '.join(created)}")


if __name__ == "__main__":
  asyncio.run(seed())
