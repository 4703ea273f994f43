"""
Structured logging for nightshift.

This module configures structlog with:
- Structured JSON output for production
- Human-readable console output for development
- Per-agent context tracking across async tasks

Usage:
    from nightshift.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("task_queued", task_id=task_id, priority=priority)
    logger.error("task_failed", task_id=task_id, error=str(e))
"""

import logging
import sys
from contextvars import ContextVar, Token

import structlog
from structlog.types import FilteringBoundLogger

from nightshift.config.settings import settings

agent_id_var: ContextVar[str | None] = ContextVar("agent_id", default=None)


def add_agent_context(
    logger: FilteringBoundLogger, method_name: str, event_dict: dict
) -> dict:
    """Attach the agent currently being scheduled, if any."""
    if "agent_id" not in event_dict and (agent_id := agent_id_var.get()):
        event_dict["agent_id"] = agent_id
    return event_dict


def configure_logging(
    log_level: str | None = None, json_logs: bool | None = None, log_file: str | None = None
) -> None:
    """
    Configure structlog with appropriate processors and renderers.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR). Defaults to settings.
        json_logs: If True, output JSON logs suitable for production. Defaults to settings.
        log_file: Optional file path to write logs to
    """
    level = (log_level or settings.log_level).upper()
    as_json = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, level))
        logging.getLogger().addHandler(file_handler)

    processors = [
        structlog.contextvars.merge_contextvars,
        add_agent_context,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if as_json:
        processors.extend(
            [
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        )
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "nightshift") -> FilteringBoundLogger:
    """
    Get a configured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("tick_skipped", reason="user_active")
    """
    return structlog.get_logger(name)


def bind_agent_context(agent_id: str) -> Token:
    """Tag every log entry in the current async context with ``agent_id``."""
    return agent_id_var.set(agent_id)


def clear_agent_context(token: Token | None = None) -> None:
    if token is not None:
        agent_id_var.reset(token)
    else:
        agent_id_var.set(None)


# Initialize logging with defaults
configure_logging()


__all__ = [
    "bind_agent_context",
    "clear_agent_context",
    "configure_logging",
    "get_logger",
]
