# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content merger: substitute frame content into the host document.

Each ``<iframe>``/``<frame>`` tag of the host document is paired with a
walked frame, first by exact ``src`` and then by sibling position, and
replaced by the frame's markup wrapped in provenance comments::

    <!-- IFRAME_CONTENT_START: name (src) -->
    ...frame markup...
    <!-- IFRAME_CONTENT_END: name -->

Frames with content that no tag claimed (nested frames, script-injected
frames) are appended in an additional-contents section so nothing read is
lost. A frame is consumed at most once, keyed by its index path.

Positional pairing assumes the host document has not changed between the
frame walk and the merge; if it has, a frame can be paired with the wrong
tag. The provenance markers keep such mistakes visible.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from . import FrameNode, MergedDocument, ProcessedFrameRecord
from .document import DocumentTree, parse_document

logger = logging.getLogger(__name__)

FRAME_SELECTOR = "iframe, frame"

ADDITIONAL_SECTION = "<!-- ADDITIONAL_IFRAME_CONTENTS_SECTION -->"

_MARKER_RE = re.compile(
    r"<!-- (?:IFRAME_CONTENT_(?:START|END)|ADDITIONAL_IFRAME_(?:START|END)): .*? -->\n?"
    r"|<!-- ADDITIONAL_IFRAME_CONTENTS_SECTION -->\n?"
)
_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)


def _marker_safe(text: str) -> str:
    # "--" inside a comment would end it early
    return text.replace("--", "- -").replace("\n", " ")


def wrap_matched(name: str, src: str, html: str) -> str:
    name, src = _marker_safe(name), _marker_safe(src)
    return f"<!-- IFRAME_CONTENT_START: {name} ({src}) -->\n{html}\n<!-- IFRAME_CONTENT_END: {name} -->"


def wrap_additional(name: str, src: str, html: str) -> str:
    name, src = _marker_safe(name), _marker_safe(src)
    return f"<!-- ADDITIONAL_IFRAME_START: {name} ({src}) -->\n{html}\n<!-- ADDITIONAL_IFRAME_END: {name} -->"


def strip_frame_markers(html: str) -> str:
    """Remove every provenance comment inserted by ``merge_frames``."""
    return _MARKER_RE.sub("", html)


class _FramePool:
    """Walked frames with consumption tracking."""

    def __init__(self, frames: Sequence[FrameNode]) -> None:
        self.frames = list(frames)
        self.by_path = {f.index_path: f for f in self.frames}
        self.consumed: set[str] = set()  # index paths merged into the document
        self.recorded: set[str] = set()  # index paths with any record

    def by_src(self, src: str) -> FrameNode | None:
        for frame in self.frames:
            if frame.src == src and frame.has_content and frame.index_path not in self.consumed:
                return frame
        return None

    def at_position(self, index: int) -> FrameNode | None:
        # Host-document tags correspond to top-level frames only
        return self.by_path.get(str(index))

    def claim(self, frame: FrameNode) -> None:
        self.consumed.add(frame.index_path)
        self.recorded.add(frame.index_path)


def merge_frames(
    main_html: str,
    frames: Sequence[FrameNode],
    *,
    parse: Callable[[str], DocumentTree] = parse_document,
) -> MergedDocument:
    """Merge walked frame content into ``main_html``."""
    doc = parse(main_html)
    pool = _FramePool(frames)
    records: list[ProcessedFrameRecord] = []

    for i, tag in enumerate(doc.query(FRAME_SELECTOR)):
        src = doc.get_attribute(tag, "src") or f"iframe-{i}"
        name = doc.get_attribute(tag, "name") or f"iframe-{i}"

        frame = pool.by_src(src)
        if frame is None:
            candidate = pool.at_position(i)
            if candidate is not None and candidate.has_content and candidate.index_path not in pool.consumed:
                frame = candidate

        if frame is not None:
            html = frame.content.html
            doc.replace(tag, wrap_matched(name, src, html))
            pool.claim(frame)
            records.append(ProcessedFrameRecord(frame.index_path, src, name, "matched", size=len(html)))
            continue

        # Tag without usable content: record it against its positional frame if one exists
        candidate = pool.at_position(i)
        if candidate is not None and candidate.index_path not in pool.recorded:
            pool.recorded.add(candidate.index_path)
            reason = candidate.error or "no content"
            records.append(ProcessedFrameRecord(candidate.index_path, src, name, "unavailable", error_reason=reason))
        else:
            records.append(ProcessedFrameRecord("", src, name, "unavailable", error_reason="no matching frame"))

    extra_blocks: list[str] = []
    for frame in pool.frames:
        if frame.index_path in pool.recorded:
            continue
        src = frame.src or f"iframe-{frame.index_path}"
        name = frame.name or f"iframe-{frame.index_path}"
        if frame.has_content:
            html = frame.content.html
            extra_blocks.append(wrap_additional(name, src, html))
            pool.claim(frame)
            records.append(ProcessedFrameRecord(frame.index_path, src, name, "additional", size=len(html)))
        else:
            pool.recorded.add(frame.index_path)
            reason = frame.error or "no content"
            records.append(ProcessedFrameRecord(frame.index_path, src, name, "unavailable", error_reason=reason))

    merged = doc.html()
    if extra_blocks:
        merged = _append_section(merged, "\n".join(extra_blocks))

    result = MergedDocument(html=merged, processed_frames=records)
    logger.debug(
        "Merged frames: matched=%d additional=%d unavailable=%d",
        len(result.matched),
        len(result.additional),
        len(result.unavailable),
    )
    return result


def _append_section(html: str, blocks: str) -> str:
    section = f"\n{ADDITIONAL_SECTION}\n{blocks}\n"
    closes = list(_BODY_CLOSE_RE.finditer(html))
    if not closes:
        return html + section
    # The host document's </body> is the last one; spliced frames may carry their own
    at = closes[-1].start()
    return html[:at] + section + html[at:]
