from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import jwt

from tasktrack.config import settings
from tasktrack.errors import Unauthenticated
from tasktrack.validation import looks_like_email


@dataclass(frozen=True)
class Identity:
  """The caller, normalized from verified token claims.

  `user_id` is the directory username (the key assignment rows are written
  under). Historical task data may reference the same person by subject or by
  email, so every comparison goes through `alternate_ids`.
  """

  user_id: str
  username: str | None
  sub: str | None
  email: str | None
  role: str
  groups: frozenset[str]
  alternate_ids: frozenset[str]

  def matches(self, candidate: str | None) -> bool:
    return bool(candidate) and candidate in self.alternate_ids


def _parse_groups(raw: Any) -> frozenset[str]:
  if not raw:
    return frozenset()
  if isinstance(raw, str):
    parts: Iterable[Any] = raw.split(",")
  elif isinstance(raw, (list, tuple, set, frozenset)):
    parts = raw
  else:
    return frozenset()
  return frozenset(str(p).strip() for p in parts if str(p).strip())


def resolve_identity(claims: Mapping[str, Any] | None) -> Identity:
  if not claims:
    raise Unauthenticated("No authorization claims found")
  username = str(claims.get("cognito:username") or claims.get("username") or "").strip() or None
  sub = str(claims.get("sub") or "").strip() or None
  email = str(claims.get("email") or "").strip() or None
  user_id = username or sub
  if not user_id:
    raise Unauthenticated("Token carries no subject")
  return Identity(
    user_id=user_id,
    username=username,
    sub=sub,
    email=email,
    role=str(claims.get("custom:role") or "member").strip() or "member",
    groups=_parse_groups(claims.get("cognito:groups")),
    alternate_ids=frozenset(v for v in (username, sub, email) if v),
  )


def decode_token(token: str) -> dict[str, Any]:
  options: dict[str, Any] = {}
  if not settings.jwt_audience:
    options["verify_aud"] = False
  try:
    return jwt.decode(
      token,
      settings.jwt_secret,
      algorithms=[settings.jwt_algorithm],
      audience=settings.jwt_audience or None,
      issuer=settings.jwt_issuer or None,
      options=options,
    )
  except jwt.ExpiredSignatureError as exc:
    raise Unauthenticated("Token expired") from exc
  except jwt.InvalidTokenError as exc:
    raise Unauthenticated("Invalid token") from exc


@dataclass(frozen=True)
class AssigneeRef:
  """One assignee, whatever shape it was stored in."""

  user_id: str | None
  email: str | None

  @classmethod
  def from_value(cls, value: Any) -> AssigneeRef | None:
    if isinstance(value, str):
      v = value.strip()
      if not v:
        return None
      return cls(user_id=None, email=v) if looks_like_email(v) else cls(user_id=v, email=None)
    if isinstance(value, Mapping):
      user_id = str(value.get("userId") or "").strip() or None
      email = str(value.get("userEmail") or "").strip() or None
      if not user_id and not email:
        return None
      return cls(user_id=user_id, email=email)
    return None

  def matches(self, identity: Identity) -> bool:
    return identity.matches(self.user_id) or identity.matches(self.email)

  def identifier(self) -> str:
    return self.email or self.user_id or ""


def assignee_refs(task: Mapping[str, Any]) -> list[AssigneeRef]:
  """Legacy `assignedTo` first, then every `assignedUsers` entry."""
  refs: list[AssigneeRef] = []
  legacy = AssigneeRef.from_value(task.get("assignedTo"))
  if legacy is not None:
    refs.append(legacy)
  for entry in task.get("assignedUsers") or []:
    ref = AssigneeRef.from_value(entry)
    if ref is not None:
      refs.append(ref)
  return refs
