from __future__ import annotations

import re

PRIORITIES = ("low", "medium", "high")
STATUSES = ("open", "in-progress", "completed", "closed")

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]*>")


def is_uuid(value: str | None) -> bool:
  return bool(value) and bool(_UUID_RE.fullmatch(value))


def is_email(value: str | None) -> bool:
  return bool(value) and bool(_EMAIL_RE.fullmatch(value))


def looks_like_email(value: str | None) -> bool:
  # Stored identifiers are either emails or directory ids; an "@" is enough to tell them apart.
  return bool(value) and "@" in value


def sanitize_string(value: object, max_length: int = 1000) -> str:
  if not isinstance(value, str):
    return ""
  cleaned = _SCRIPT_RE.sub("", value)
  cleaned = _TAG_RE.sub("", cleaned)
  return cleaned.strip()[:max_length]
