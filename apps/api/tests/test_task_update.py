from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from tasktrack.stream import TASK_STATUS_CHANGED, change_stream, notification_topic, relay_once
from conftest import auth_headers, create_task, published


async def _status_events() -> list:
  await relay_once(change_stream, notification_topic)
  return [m for m in published if m.type == TASK_STATUS_CHANGED]


@pytest.mark.anyio
async def test_assigned_member_changes_status_once(client: AsyncClient) -> None:
  task = await create_task(client, assignedUserIds=["alice"])
  res = await client.put(f"/tasks/{task['taskId']}", json={"status": "in-progress"}, headers=auth_headers("alice"))
  assert res.status_code == 200, res.text
  updated = res.json()["data"]
  assert updated["status"] == "in-progress"
  assert updated["updatedBy"] == "alice"
  assert updated["title"] == task["title"]

  events = await _status_events()
  assert len(events) == 1
  assert (events[0].taskId, events[0].oldStatus, events[0].newStatus) == (task["taskId"], "open", "in-progress")


@pytest.mark.anyio
async def test_same_status_produces_no_event(client: AsyncClient) -> None:
  task = await create_task(client, assignedUserIds=["alice"])
  res = await client.patch(f"/tasks/{task['taskId']}", json={"status": "open"}, headers=auth_headers("alice"))
  assert res.status_code == 200, res.text
  assert await _status_events() == []


@pytest.mark.anyio
async def test_members_may_only_change_status(client: AsyncClient) -> None:
  task = await create_task(client, assignedUserIds=["alice"])
  res = await client.put(
    f"/tasks/{task['taskId']}",
    json={"status": "completed", "title": "mine now"},
    headers=auth_headers("alice"),
  )
  assert res.status_code == 403, res.text
  assert res.json()["message"] == "Members may only update task status"

  other = await client.put(f"/tasks/{task['taskId']}", json={"status": "completed"}, headers=auth_headers("bob"))
  assert other.status_code == 403, other.text
  assert other.json()["message"] == "Access denied"
  assert await _status_events() == []


@pytest.mark.anyio
async def test_member_matched_by_legacy_assigned_to(client: AsyncClient) -> None:
  task = await create_task(client, assignedTo="b@x.com")
  res = await client.put(f"/tasks/{task['taskId']}", json={"status": "closed"}, headers=auth_headers("bob"))
  assert res.status_code == 200, res.text
  assert res.json()["data"]["status"] == "closed"


@pytest.mark.anyio
async def test_admin_updates_any_field(client: AsyncClient) -> None:
  task = await create_task(client)
  res = await client.put(
    f"/tasks/{task['taskId']}",
    json={
      "title": "<em>Ship v2</em>",
      "priority": "high",
      "dueDate": "2026-04-01",
      "timeEstimate": 3,
      "assignedTo": "a@x.com",
    },
    headers=auth_headers("admin"),
  )
  assert res.status_code == 200, res.text
  data = res.json()["data"]
  assert data["title"] == "Ship v2"
  assert data["priority"] == "high"
  assert data["dueDate"] == "2026-04-01"
  assert data["timeEstimate"] == 3
  assert data["assignedTo"] == "a@x.com"
  assert data["createdAt"] == task["createdAt"]
  assert await _status_events() == []


@pytest.mark.anyio
async def test_update_validation(client: AsyncClient) -> None:
  task = await create_task(client)
  admin = auth_headers("admin")
  url = f"/tasks/{task['taskId']}"

  cases = [
    ({}, "No fields to update"),
    ({"status": "done"}, "Invalid status value"),
    ({"priority": "urgent"}, "Invalid priority value"),
    ({"timeEstimate": -2}, "Invalid timeEstimate value"),
    ({"title": "<p></p>"}, "Title cannot be empty"),
    ({"description": ""}, "Description cannot be empty"),
    ({"assignedUsers": ["a@x.com"]}, "assignedUsers cannot be updated directly"),
  ]
  for payload, message in cases:
    res = await client.put(url, json=payload, headers=admin)
    assert res.status_code == 400, (payload, res.text)
    assert message in res.json()["message"], (payload, res.text)

  bad = await client.put("/tasks/nope", json={"status": "open"}, headers=admin)
  assert bad.status_code == 400, bad.text
  missing = await client.put(f"/tasks/{uuid.uuid4()}", json={"status": "open"}, headers=admin)
  assert missing.status_code == 404, missing.text
