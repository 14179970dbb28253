# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Form discovery and filling."""

from .discovery import categorize_field, detection_summary, discover_forms, discover_in_document, summarize_forms
from .filler import HIGHLIGHT_ATTR, FormFiller

__all__ = [
    "HIGHLIGHT_ATTR",
    "FormFiller",
    "categorize_field",
    "detection_summary",
    "discover_forms",
    "discover_in_document",
    "summarize_forms",
]
