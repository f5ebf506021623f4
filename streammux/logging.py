"""Structlog setup for streammux and the application embedding it.

Log lines are written to stderr by default: a host that drives agent
subprocesses often uses its own stdout for protocol traffic.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

from streammux.settings import settings

LOGGER_NAME = "streammux"


def _add_conversation_field(
    logger: logging.Logger | None, name: str, event_dict: dict
) -> dict:
    """Copy a stdlib record's ``conversation_id`` extra into the event dict.

    Args:
        logger: Logging.Logger instance (unused by this processor).
        name: Logger name passed by structlog.
        event_dict: Structlog event dict to enrich.
    """
    record = event_dict.get("_record")
    if record is None:
        return event_dict
    conversation_id = getattr(record, "conversation_id", None)
    if conversation_id and "conversation_id" not in event_dict:
        event_dict["conversation_id"] = conversation_id
    return event_dict


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def bind_conversation(conversation_id: str | None) -> None:
    """Tag every log line of the current task with ``conversation_id``.

    Context variables are copied into new tasks, so binding inside a
    conversation's reader task never leaks into another conversation.
    """
    structlog.contextvars.bind_contextvars(conversation_id=conversation_id)


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and the ``streammux`` stdlib logger through one handler.

    Args:
        level: Overrides ``STREAMMUX_LOG_LEVEL``.
        log_format: ``"console"`` or ``"json"``; overrides ``STREAMMUX_LOG_FORMAT``.
        stream: Destination, stderr when omitted.
    """
    level_name = (level or settings.log_level()).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[*pre_chain, _add_conversation_field],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer((log_format or settings.log_format()).lower()),
            ],
        )
    )

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.handlers = [handler]
    package_logger.setLevel(log_level)
    package_logger.propagate = False
