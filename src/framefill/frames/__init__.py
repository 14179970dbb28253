# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Frame sources and the frame hierarchy walker."""

from .sources import FrameSource, PlaywrightFrameSource, StaticFrameSource
from .walker import FrameWalker, index_path_key, walk_report

__all__ = [
    "FrameSource",
    "FrameWalker",
    "PlaywrightFrameSource",
    "StaticFrameSource",
    "index_path_key",
    "walk_report",
]
