# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Stage timer for extraction latency tracking and timeout diagnostics.

Created outside asyncio.wait_for so it survives cancellation and can still
say which extraction stage was running when a deadline hit.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0

    @property
    def elapsed_ms(self) -> float:
        return round((self.end_ns - self.start_ns) / 1e6, 1)


_STAGE_HINTS = {
    "probe": "Page-side agent never answered the readiness ping. Is the page still loading?",
    "extraction": "Frame walk is slow. Deeply nested or slow third-party frames; try a lower max depth.",
    "fallback": "Whole-page read also stalled. The page may be unresponsive.",
    "merge": "Very large frame content. Merging is linear in document size.",
    "cleaning": "Document is very large. Consider extracting a narrower page.",
    "markdown": "Rendering a very large document to markdown.",
}


class PipelineTimer:
    """Track stage transitions of one extraction run."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        """End current stage. Call on success or error."""
        if self._current is None:
            return
        self._current.end_ns = time.monotonic_ns()
        self._stages.append(self._current)
        self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms}; a running stage is measured up to now."""
        result = {s.name: s.elapsed_ms for s in self._stages}
        if self._current is not None:
            result[self._current.name] = round((time.monotonic_ns() - self._current.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic for an extraction that ran out of time."""
        current = self.current_stage or "unknown"
        running_ms = 0.0
        if self._current is not None:
            running_ms = round((time.monotonic_ns() - self._current.start_ns) / 1e6, 1)
        return {
            "error": "timeout",
            "completed_stages": [{"stage": s.name, "ms": s.elapsed_ms} for s in self._stages],
            "timed_out_at": current,
            "timed_out_stage_ms": running_ms,
            "total_ms": self.total_ms,
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _STAGE_HINTS.get(stage, f"Timed out during '{stage}' stage.")
