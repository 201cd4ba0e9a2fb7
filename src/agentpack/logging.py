"""structlog setup shared by the CLI and the sandbox worker.

Everything is rendered to stderr. The worker's stdout is its message channel
to the host, so no handler may ever point there.
"""

import logging
import sys
from typing import TextIO

import structlog

# Libraries that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure_logging(
    level: str,
    *,
    env: str = "dev",
    stream: TextIO | None = None,
) -> None:
    """Route stdlib logging through structlog.

    ``env == "prod"`` renders JSON lines; any other environment uses the
    console renderer, without colors when the stream is not a terminal.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    stream = stream or sys.stderr

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor
    if env == "prod":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def bind_context(**kwargs: object) -> None:
    """Attach key-value pairs to every log line from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)
