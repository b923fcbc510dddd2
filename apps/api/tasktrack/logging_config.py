from __future__ import annotations

import logging

import structlog

from tasktrack.config import settings


def setup_logging() -> None:
  """Route structlog and stdlib logging through one handler.

  LOG_FORMAT=json renders one JSON object per line (production); anything else
  uses the console renderer.
  """
  shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
  ]

  if settings.log_format.strip().lower() == "json":
    renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
  else:
    renderer = structlog.dev.ConsoleRenderer()

  structlog.configure(
    processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors)
  handler = logging.StreamHandler()
  handler.setFormatter(formatter)

  root = logging.getLogger()
  root.handlers.clear()
  root.addHandler(handler)
  root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
