# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""framefill exception hierarchy.

All framefill-specific errors inherit from FrameFillError. Frame-level and
field-level failures are normally recorded as data (FrameNode.error,
FillOutcome.error); the exceptions below surface only where an operation
as a whole cannot continue.
"""

from __future__ import annotations


class FrameFillError(Exception):
    """Base exception for all framefill errors."""


class FrameAccessError(FrameFillError):
    """Frame content is isolated from the caller (cross-origin or sandboxed)."""


class ChannelError(FrameFillError):
    """Request channel failure or an unsuccessful reply from the page side."""

    def __init__(self, message: str, *, action: str = "") -> None:
        super().__init__(message)
        self.action = action


class ChannelTimeoutError(ChannelError, TimeoutError):
    """No reply arrived before the request deadline."""

    def __init__(self, action: str, timeout: float) -> None:
        super().__init__(f"'{action}' timed out after {timeout:.1f}s", action=action)
        self.timeout = timeout


class ContentEmptyError(FrameFillError):
    """Extracted content was empty or not HTML."""


class InvalidSelectorError(FrameFillError):
    """A CSS selector or XPath expression could not be compiled."""


class ReasoningError(FrameFillError):
    """The reasoning collaborator returned a malformed or unusable reply."""


class FillValidationError(FrameFillError):
    """Value read back after a fill differs from the value written."""

    def __init__(self, field_id: str, expected: str, actual: str) -> None:
        super().__init__(f"validation failed: expected {expected!r}, found {actual!r}")
        self.field_id = field_id
        self.expected = expected
        self.actual = actual


# ── Pipeline stage errors ─────────────────────────────────────────


class StageError(FrameFillError):
    """A pipeline stage failed; earlier stage results are left intact."""

    stage = "pipeline"
    label = "Pipeline"

    def __init__(self, reason: str) -> None:
        super().__init__(f"{self.label} failed: {reason}")
        self.reason = reason


class DetectionError(StageError):
    stage = "detect"
    label = "Detection"


class AnalysisError(StageError):
    stage = "analyze"
    label = "Stage 1"


class MappingError(StageError):
    stage = "map_fields"
    label = "Stage 2"


class FillStageError(StageError):
    stage = "fill"
    label = "Fill"


class StageOrderError(StageError):
    """A stage was invoked before the stage it depends on completed."""


class StaleSessionError(StageError):
    """A newer detect() superseded the stage while it was running."""


class BrowserError(FrameFillError):
    """The live browser could not be started or driven."""
