from __future__ import annotations

import hashlib
import json
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from tasktrack.config import settings

NO_CACHE_HEADERS = {
  "Cache-Control": "no-cache, no-store, must-revalidate",
  "Pragma": "no-cache",
  "Expires": "0",
}


def weak_etag(data: Any) -> str:
  raw = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
  return f'W/"{hashlib.sha256(raw).hexdigest()[:32]}"'


def success_response(data: Any, status_code: int = 200, *, cacheable: bool = False) -> JSONResponse:
  payload = jsonable_encoder(data)
  if cacheable:
    headers = {"Cache-Control": "max-age=300, must-revalidate", "ETag": weak_etag(payload)}
  else:
    headers = dict(NO_CACHE_HEADERS)
  return JSONResponse(status_code=status_code, content={"success": True, "data": payload}, headers=headers)


def error_response(message: str, status_code: int = 400, error: Any = None) -> JSONResponse:
  body: dict[str, Any] = {"success": False, "message": message}
  if error is not None and not settings.is_production():
    body["error"] = jsonable_encoder(error) if isinstance(error, (list, dict)) else str(error)
  return JSONResponse(status_code=status_code, content=body, headers=dict(NO_CACHE_HEADERS))
