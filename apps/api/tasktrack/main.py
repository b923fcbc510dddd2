from __future__ import annotations

import asyncio
import uuid
from time import monotonic

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from tasktrack.config import settings
from tasktrack.deps import directory, store
from tasktrack.errors import AppError
from tasktrack.logging_config import setup_logging
from tasktrack.notifications.events import NotificationFanout
from tasktrack.notifications.service import provider_for
from tasktrack.responses import error_response
from tasktrack.routers.tasks import router as tasks_router
from tasktrack.routers.users import router as users_router
from tasktrack.stream import change_stream, notification_topic, relay_once

log = structlog.get_logger(__name__)

app = FastAPI(title="Tasktrack API", version="0.1.0")

fanout = NotificationFanout(store, directory, provider_for(settings.email_provider))
notification_topic.subscribe(fanout.handle)


def _validation_message(exc: RequestValidationError) -> str:
  errors = exc.errors()
  if not errors:
    return "Invalid request"
  first = errors[0]
  field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
  msg = str(first.get("msg") or "Invalid value").removeprefix("Value error, ")
  if first.get("type") == "missing":
    return f"{field} is required" if field else "Request body is required"
  return f"{field}: {msg}" if field else msg


@app.exception_handler(AppError)
async def _app_error_handler(_, exc: AppError) -> JSONResponse:
  if exc.status_code >= 500:
    log.error("request.failed", error=type(exc).__name__, message=exc.message, cause=repr(exc.__cause__))
  return error_response(exc.message, exc.status_code, error=repr(exc.__cause__) if exc.__cause__ else None)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(_, exc: RequestValidationError) -> JSONResponse:
  details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
  return error_response(_validation_message(exc), 400, error=details)


@app.exception_handler(Exception)
async def _unhandled_error_handler(_, exc: Exception) -> JSONResponse:
  log.exception("request.unhandled_error")
  return error_response("Internal server error", 500, error=exc)


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(tasks_router)
app.include_router(users_router)


@app.middleware("http")
async def _request_logging_middleware(request: Request, call_next):
  request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
  structlog.contextvars.clear_contextvars()
  structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)
  start = monotonic()
  log.info("request_started")
  response = await call_next(request)
  elapsed_ms = (monotonic() - start) * 1000.0
  log.info("request_completed", status=response.status_code, duration_ms=round(elapsed_ms, 2))
  response.headers["X-Request-ID"] = request_id
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_relay_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  try:
    db_name = settings.database_url.rsplit("/", 1)[-1]
    return "test" in db_name
  except Exception:
    return False


async def _notification_relay_loop() -> None:
  while True:
    await asyncio.sleep(max(0.1, float(settings.stream_poll_interval_seconds)))
    try:
      await relay_once(change_stream, notification_topic)
    except Exception:
      # Notification is best effort; keep relaying.
      log.exception("stream.relay_failed")


@app.on_event("startup")
async def _startup() -> None:
  global _relay_loop_task
  setup_logging()
  if settings.is_production() and settings.jwt_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret", ""}:
    raise RuntimeError("JWT_SECRET is required and must not be a placeholder")
  if _is_test_db():
    return
  if _relay_loop_task is None:
    _relay_loop_task = asyncio.create_task(_notification_relay_loop())
  log.info("startup.complete", environment=settings.environment, emailProvider=settings.email_provider)
