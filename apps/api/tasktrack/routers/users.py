from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from tasktrack.deps import get_directory, get_identity
from tasktrack.directory import DirectoryEntry, UserDirectory
from tasktrack.identity import Identity
from tasktrack.policy import require_admin
from tasktrack.responses import success_response
from tasktrack.schemas import DirectoryUserOut

router = APIRouter(prefix="/users", tags=["users"])


def _user_out(u: DirectoryEntry) -> DirectoryUserOut:
  return DirectoryUserOut(
    userId=u.user_id,
    email=u.email,
    name=u.name,
    role=u.role,
    status=u.status,
    enabled=u.enabled,
    created=u.created_at,
  )


@router.get("")
async def list_users(
  limit: int = Query(default=60, ge=1, le=60),
  paginationToken: str | None = Query(default=None),
  identity: Identity = Depends(get_identity),
  directory: UserDirectory = Depends(get_directory),
) -> JSONResponse:
  require_admin(identity)
  page = await directory.list_users(limit=limit, cursor=paginationToken)
  users = [_user_out(u).model_dump(mode="json") for u in page.users]
  return success_response({"users": users, "paginationToken": page.cursor})
