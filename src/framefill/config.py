# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime settings with FRAMEFILL_* environment overrides.

Settings are passed explicitly to the components that need them; nothing
reads the environment after ``Settings.from_env()`` returns.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass, fields, replace

logger = logging.getLogger(__name__)

ENV_PREFIX = "FRAMEFILL_"

_TRUE_VALUES = ("1", "true", "yes")

DEFAULT_CHUNK_SIZE = 4000
DEFAULT_WORDS_PER_MINUTE = 200


@dataclass(frozen=True, slots=True)
class Settings:
    # Frame walking
    max_frame_depth: int = 5
    frame_timeout: float = 5.0  # seconds, per frame read
    probe_attempts: int = 3
    probe_backoff: float = 0.5  # seconds between readiness probes
    max_concurrency: int = 8  # concurrent frame reads per walk

    # Request channel
    channel_timeout: float = 10.0
    extraction_timeout: float = 5.0  # frame-aware extraction request

    # Cleaning / statistics
    main_content_min_chars: int = 100
    max_chunk_size: int = DEFAULT_CHUNK_SIZE
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE

    # Reasoning collaborator
    reasoning_url: str = "http://localhost:8000"
    reasoning_timeout: float = 60.0
    model: str = "gpt-4.1-nano"
    language: str = "en"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``FRAMEFILL_<FIELD>`` variables.

        Unparseable values are ignored with a warning and the default kept.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper(), "").strip()
            if not raw:
                continue
            parsed = _parse(raw, _PARSERS.get(f.type, str))
            if parsed is None:
                logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
                continue
            overrides[f.name] = parsed
        settings = cls(**overrides)
        return settings.validated()

    def validated(self) -> Settings:
        """Clamp values that would make the walker or chunker misbehave."""
        changes: dict[str, object] = {}
        if self.max_frame_depth < 0:
            changes["max_frame_depth"] = 0
        if self.probe_attempts < 1:
            changes["probe_attempts"] = 1
        if self.max_concurrency < 1:
            changes["max_concurrency"] = 1
        if self.extraction_timeout <= 0:
            changes["extraction_timeout"] = 5.0
        if self.max_chunk_size < 1:
            changes["max_chunk_size"] = DEFAULT_CHUNK_SIZE
        if self.words_per_minute < 1:
            changes["words_per_minute"] = DEFAULT_WORDS_PER_MINUTE
        if changes:
            logger.warning("Adjusted out-of-range settings: %s", changes)
            return replace(self, **changes)
        return self


def _parse_bool(raw: str) -> bool:
    return raw.lower() in _TRUE_VALUES


_PARSERS: dict[str, Callable[[str], object]] = {
    "int": int,
    "float": float,
    "bool": _parse_bool,
    "str": str,
}


def _parse(raw: str, parser: Callable[[str], object]) -> object | None:
    with suppress(ValueError):
        return parser(raw)
    return None
