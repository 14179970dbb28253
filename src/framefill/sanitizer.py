# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Sanitization of page-provided text that reaches the reasoning collaborator.

Field labels, option texts and form descriptions come straight from the
page and are forwarded to an LLM-backed service. Hidden Unicode, ANSI
escapes and role-prefix patterns are stripped before they leave the
process.
"""

from __future__ import annotations

import re

# Zero-width chars, bidi overrides, interlinear annotations, C0/C1 controls
_CONTROL_CHAR_RE = re.compile(
    r"[\u200B-\u200F\u202A-\u202E\u2060-\u2069\uFEFF\uFFF9-\uFFFB"
    r"\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]"
)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# "[SYSTEM: ...]", "ASSISTANT:" and similar instruction prefixes
_ROLE_PREFIX_RE = re.compile(
    r"\[?\s*\b(?:SYSTEM|ASSISTANT|USER|HUMAN|AI|ADMIN|INSTRUCTION|OVERRIDE"
    r"|IMPORTANT|IGNORE|COMMAND)\b\s*[:\]]\s*",
    re.IGNORECASE,
)

_WS_RUN_RE = re.compile(r"\s+")

DEFAULT_LABEL_LEN = 200


def sanitize_text(text: str, max_len: int = DEFAULT_LABEL_LEN) -> str:
    """Single-line, control-free, length-capped version of ``text``."""
    if not text:
        return ""
    text = _ANSI_ESCAPE_RE.sub("", text)
    text = _CONTROL_CHAR_RE.sub("", text)
    text = _ROLE_PREFIX_RE.sub("", text)
    text = _WS_RUN_RE.sub(" ", text).strip()
    return text[:max_len]
