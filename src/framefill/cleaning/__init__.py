# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTML cleaning, main-content extraction and markdown rendering."""

from .cleaner import CleanedHtml, clean_html, extract_main_content, extract_structure, remove_noise, sanitize_attributes
from .markdown import MarkdownRenderer, html_to_markdown, post_process_markdown

__all__ = [
    "CleanedHtml",
    "MarkdownRenderer",
    "clean_html",
    "extract_main_content",
    "extract_structure",
    "html_to_markdown",
    "post_process_markdown",
    "remove_noise",
    "sanitize_attributes",
]
