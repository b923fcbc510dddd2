from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import USERS, add_directory_users, auth_headers


@pytest.mark.anyio
async def test_admin_lists_directory_users(client: AsyncClient) -> None:
  res = await client.get("/users", headers=auth_headers("admin"))
  assert res.status_code == 200, res.text
  data = res.json()["data"]
  assert [u["userId"] for u in data["users"]] == list(USERS)
  assert data["paginationToken"] is None

  dora = next(u for u in data["users"] if u["userId"] == "dora")
  assert dora["enabled"] is False
  assert dora["status"] == "CONFIRMED"
  assert dora["email"] == "d@x.com"
  assert dora["created"]
  nina = next(u for u in data["users"] if u["userId"] == "nina")
  assert nina["email"] is None


@pytest.mark.anyio
async def test_user_list_pages_with_token(client: AsyncClient) -> None:
  await add_directory_users(3)
  first = (await client.get("/users", params={"limit": 5}, headers=auth_headers("gina"))).json()["data"]
  assert len(first["users"]) == 5
  assert first["paginationToken"]

  rest = (
    await client.get("/users", params={"limit": 5, "paginationToken": first["paginationToken"]}, headers=auth_headers("gina"))
  ).json()["data"]
  assert [u["userId"] for u in rest["users"]] == ["uma", "nina", "user01", "user02", "user03"]
  assert len(rest["users"]) == 5
  assert rest["paginationToken"] is None


@pytest.mark.anyio
async def test_members_cannot_list_users(client: AsyncClient) -> None:
  res = await client.get("/users", headers=auth_headers("alice"))
  assert res.status_code == 403, res.text

  too_big = await client.get("/users", params={"limit": 61}, headers=auth_headers("admin"))
  assert too_big.status_code == 400, too_big.text


@pytest.mark.anyio
async def test_health_and_version_are_public(client: AsyncClient) -> None:
  res = await client.get("/health")
  assert res.status_code == 200
  assert res.json()["ok"] is True
  assert res.headers["x-request-id"]

  version = await client.get("/version")
  assert version.status_code == 200
  assert "version" in version.json()
