"""structlog configuration shared by the API server and the CLI.

One processor chain (context vars, level, ISO timestamp, exc info) ends in
either ``ConsoleRenderer`` or ``JSONRenderer``; JSON is used when asked for
or when ``APP_ENV=production``.  Stdlib ``logging`` records from uvicorn,
httpx and aiosqlite go through the same chain via ``ProcessorFormatter``.

Logs are written to stdout for the server.  The CLI passes ``sys.stderr``
so its JSON summary on stdout stays machine-readable.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog

# Chatty at INFO; only shown when running at DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Install the structlog and stdlib logging configuration.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Force JSON lines.  ``APP_ENV=production`` also enables them.
        stream: Where log lines go; stdout when omitted.

    Returns:
        The root structlog logger.
    """
    level = logging.getLevelName(log_level.upper())
    out = stream or sys.stdout
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"

    chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=out.isatty())
    )

    structlog.configure(
        processors=[*chain, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *chain, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger bound to *name*, configuring defaults if nothing has yet."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


@contextmanager
def bound_job_context(job_id: str, **extra: Any) -> Iterator[None]:
    """Tag every log line inside the block with ``job_id`` (and *extra*).

    Bindings live in contextvars, so imports running as separate asyncio
    tasks do not see each other's ``job_id``.
    """
    tokens = structlog.contextvars.bind_contextvars(job_id=job_id, **extra)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
