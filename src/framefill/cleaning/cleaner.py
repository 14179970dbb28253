# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTML cleaning + main-content extraction + structure signals.

Pipeline:
  1. Remove non-content elements (scripts, styles, ads, navigation chrome)
  2. Strip event handlers, inline styles and data-* attributes
  3. Pick the main content region (first candidate with enough text)
  4. Count structural elements of the result
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .. import StructureSignals
from ..document import DocumentTree, LxmlDocument
from ..errors import ContentEmptyError

logger = logging.getLogger(__name__)

# Elements that never carry page content
_REMOVE_SELECTORS = (
    "script",
    "style",
    "noscript",
    "meta",
    "link[rel=stylesheet]",
)

# Ads, navigation chrome and overlays
_NOISE_SELECTORS = (
    ".advertisement",
    ".ad",
    ".ads",
    ".sponsored",
    "nav",
    "footer",
    "header .navbar",
    ".cookie-notice",
    ".popup",
    ".modal",
)

# Main-content candidates, most specific first
MAIN_CONTENT_SELECTORS = (
    "main",
    "[role=main]",
    ".main-content",
    "#main",
    ".content",
    "article",
    ".post-content",
    ".entry-content",
)

DEFAULT_MIN_CHARS = 100


@dataclass(frozen=True, slots=True)
class CleanedHtml:
    html: str
    structure: StructureSignals
    selector_used: str  # main-content selector, "body" or "document"


def remove_noise(doc: DocumentTree) -> int:
    """Remove non-content elements in place. Returns the number removed."""
    removed = 0
    for selector in (*_REMOVE_SELECTORS, *_NOISE_SELECTORS):
        for node in doc.query(selector):
            doc.remove(node)
            removed += 1
    return removed


def _is_stripped_attribute(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("on") or lowered == "style" or lowered.startswith("data-")


def sanitize_attributes(doc: DocumentTree) -> int:
    """Drop on* handlers, style and data-* attributes; elements are kept."""
    stripped = 0
    for node in doc.query("*"):
        for name in list(doc.attributes(node)):
            if _is_stripped_attribute(name):
                doc.remove_attribute(node, name)
                stripped += 1
    return stripped


def extract_main_content(doc: DocumentTree, min_chars: int = DEFAULT_MIN_CHARS) -> tuple[str, str]:
    """Return (html, selector_used) for the main content region.

    The first element of the first selector whose stripped text exceeds
    ``min_chars`` wins; otherwise the body, otherwise the whole document.
    """
    for selector in MAIN_CONTENT_SELECTORS:
        found = doc.query(selector)
        if not found:
            continue
        if len(doc.text(found[0]).strip()) > min_chars:
            return doc.inner_html(found[0]), selector

    bodies = doc.query("body")
    if bodies:
        return doc.inner_html(bodies[0]), "body"
    return doc.html(), "document"


def extract_structure(doc: DocumentTree) -> StructureSignals:
    return StructureSignals(
        tables=len(doc.query("table")),
        forms=len(doc.query("form")),
        lists=len(doc.query("ul, ol")),
        headers=len(doc.query("h1, h2, h3, h4, h5, h6")),
        links=len(doc.query("a[href]")),
        images=len(doc.query("img[src]")),
    )


def clean_html(raw_html: str, *, min_chars: int = DEFAULT_MIN_CHARS) -> CleanedHtml:
    """Clean ``raw_html`` and reduce it to its main content.

    Raises:
        ContentEmptyError: if the input is empty.
    """
    if not raw_html or not raw_html.strip():
        raise ContentEmptyError("no HTML to clean")

    doc = LxmlDocument(raw_html)
    removed = remove_noise(doc)
    stripped = sanitize_attributes(doc)
    main_html, selector = extract_main_content(doc, min_chars)

    structure = extract_structure(LxmlDocument(main_html))
    logger.debug(
        "Cleaned HTML: %d -> %d chars (removed=%d elements, stripped=%d attrs, region=%s)",
        len(raw_html),
        len(main_html),
        removed,
        stripped,
        selector,
    )
    return CleanedHtml(html=main_html, structure=structure, selector_used=selector)
