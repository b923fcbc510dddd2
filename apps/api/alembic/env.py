from __future__ import annotations

import asyncio

from alembic import context
from sqlalchemy.ext.asyncio import create_async_engine

from tasktrack.config import settings
from tasktrack.models import Base

target_metadata = Base.metadata


def _run_migrations(connection) -> None:
  context.configure(connection=connection, target_metadata=target_metadata)
  with context.begin_transaction():
    context.run_migrations()


async def _run_online() -> None:
  engine = create_async_engine(settings.database_url)
  async with engine.connect() as conn:
    await conn.run_sync(_run_migrations)
    await conn.commit()
  await engine.dispose()


if context.is_offline_mode():
  context.configure(url=settings.database_url, target_metadata=target_metadata, literal_binds=True)
  with context.begin_transaction():
    context.run_migrations()
else:
  asyncio.run(_run_online())
