# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Log output for the framefill CLI and embedding applications.

framefill modules log through ``logging.getLogger(__name__)`` and bind
per-session context (``session``, ``stage``) with structlog contextvars.
``configure()`` sends both kinds of record to one stderr handler, rendered
for a terminal or as JSON lines (``FRAMEFILL_LOG_JSON`` / ``--json-logs``).
Leaf module: importing it pulls in nothing else from framefill.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty third-party loggers held at WARNING or the root level, whichever is stricter
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _pre_chain() -> list:
    """Processors applied to every record, structlog-born or stdlib-born."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _stderr_handler(pre_chain: list, *, json_output: bool) -> logging.Handler:
    render = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, render],
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def _level_number(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route framefill logging to stderr.

    Safe to call more than once: the root handler is replaced, not added.

    Args:
        json_output: one JSON object per line instead of coloured console output.
        level: root level name; anything ``logging`` does not know means INFO.
    """
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_level = _level_number(level)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(pre_chain, json_output=json_output))
    root.setLevel(root_level)

    quiet_level = max(root_level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
