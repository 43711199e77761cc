"""Structured logging configuration using structlog."""

import logging
import sys

import structlog

LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "info", json_logs: bool | None = None) -> None:
    """Configure structlog and route stdlib logging to the same stream.

    Args:
        level: Minimum level name (debug, info, warning, error).
        json_logs: Render JSON lines. Defaults to JSON unless stderr is a
            terminal, where colored console output is used.
    """
    log_level = LEVELS[level.lower()]
    if json_logs is None:
        json_logs = not sys.stderr.isatty()

    renderer: structlog.typing.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    for name in ["uvicorn", "uvicorn.error", "uvicorn.access", "watchdog"]:
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
