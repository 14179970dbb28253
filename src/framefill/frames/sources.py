# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Frame sources: what the walker walks.

A ``FrameSource`` is one browsing context (the top page or a frame). It can
be pinged for readiness, read, and asked for its child frames in document
order. Two implementations:

- ``StaticFrameSource``: markup held in memory (offline pages, tests).
  Child frame content is looked up by ``src`` in a mapping; ``srcdoc`` is
  honoured; ``data-framefill-blocked`` marks a frame as isolated.
- ``PlaywrightFrameSource``: a live Playwright ``Frame``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable
from urllib.parse import urljoin, urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame

from .. import FrameContent
from ..document import LxmlDocument
from ..errors import FrameAccessError

logger = logging.getLogger(__name__)

FRAME_TAGS = ("iframe", "frame")
BLOCKED_ATTR = "data-framefill-blocked"


@runtime_checkable
class FrameSource(Protocol):
    src: str  # src attribute of the frame element ("" for the top page)
    name: str
    url: str
    inline: bool  # content comes from srcdoc rather than a URL

    async def ping(self) -> bool: ...

    async def read(self) -> FrameContent: ...

    async def children(self) -> list[FrameSource]: ...


def domain_of(url: str) -> str:
    return urlparse(url).hostname or ""


# ── In-memory pages ───────────────────────────────────────────────


class StaticFrameSource:
    """Markup-backed frame source.

    Args:
        html: markup of this browsing context.
        frames: src -> markup for descendant frames; looked up by full src,
            by src resolved against ``url``, then by the last path segment.
        blocked: reading raises ``FrameAccessError``.
        ready: result of ``ping()``.
        delay: seconds ``read()`` sleeps before answering.
    """

    def __init__(
        self,
        html: str,
        *,
        src: str = "",
        name: str = "",
        url: str = "",
        frames: Mapping[str, str] | None = None,
        blocked: bool = False,
        ready: bool = True,
        delay: float = 0.0,
        inline: bool = False,
    ) -> None:
        self.html = html
        self.src = src
        self.name = name
        self.url = url or src
        self.inline = inline
        self.frames = dict(frames or {})
        self.blocked = blocked
        self.ready = ready
        self.delay = delay

    @classmethod
    def from_path(cls, page: Path, frames_dir: Path | None = None, *, url: str = "") -> StaticFrameSource:
        """Load a saved page; every ``*.htm*`` file in ``frames_dir`` is a frame body."""
        frames: dict[str, str] = {}
        if frames_dir is not None:
            for path in sorted(frames_dir.iterdir()):
                if path.is_file() and path.suffix.lower() in (".html", ".htm"):
                    frames[path.name] = path.read_text(encoding="utf-8", errors="replace")
        html = page.read_text(encoding="utf-8", errors="replace")
        return cls(html, url=url or page.resolve().as_uri(), frames=frames)

    def __repr__(self) -> str:
        return f"StaticFrameSource(src={self.src!r}, name={self.name!r})"

    async def ping(self) -> bool:
        return self.ready

    async def read(self) -> FrameContent:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.blocked:
            raise FrameAccessError(f"frame {self.src or self.name!r} is cross-origin")
        title = LxmlDocument(self.html).title if self.html else ""
        return FrameContent(html=self.html, title=title, url=self.url, domain=domain_of(self.url))

    async def children(self) -> list[FrameSource]:
        if self.blocked or not self.html:
            return []
        doc = LxmlDocument(self.html)
        result: list[FrameSource] = []
        for element in doc.iter_elements(*FRAME_TAGS):
            src = element.get("src", "") or ""
            srcdoc = element.get("srcdoc")
            name = element.get("name", "") or ""
            if srcdoc is not None:
                body, inline = srcdoc, True
            else:
                body, inline = self._lookup(src), False
            result.append(
                StaticFrameSource(
                    body,
                    src=src,
                    name=name,
                    url=urljoin(self.url, src) if src else "about:srcdoc",
                    frames=self.frames,
                    blocked=element.get(BLOCKED_ATTR) is not None,
                    inline=inline,
                )
            )
        return result

    def _lookup(self, src: str) -> str:
        if not src:
            return ""
        if src in self.frames:
            return self.frames[src]
        resolved = urljoin(self.url, src)
        if resolved in self.frames:
            return self.frames[resolved]
        return self.frames.get(PurePosixPath(urlparse(src).path).name, "")


# ── Live pages ────────────────────────────────────────────────────

_READY_STATES = ("interactive", "complete")


class PlaywrightFrameSource:
    """Frame source over a live Playwright ``Frame``."""

    def __init__(self, frame: Frame, *, src: str = "", name: str = "") -> None:
        self._frame = frame
        self.src = src
        self.name = name or frame.name
        self.url = frame.url
        self.inline = not src and frame.url in ("about:srcdoc", "about:blank")

    def __repr__(self) -> str:
        return f"PlaywrightFrameSource(url={self.url!r})"

    async def ping(self) -> bool:
        if self._frame.is_detached():
            return False
        try:
            state = await self._frame.evaluate("document.readyState")
        except PlaywrightError:
            return False
        return state in _READY_STATES

    async def read(self) -> FrameContent:
        if self._frame.is_detached():
            raise FrameAccessError(f"frame {self.url!r} was detached")
        try:
            html = await self._frame.content()
            title = await self._frame.title()
        except PlaywrightError as exc:
            raise FrameAccessError(f"frame {self.url!r} not readable: {exc}") from exc
        url = self._frame.url
        return FrameContent(html=html, title=title, url=url, domain=domain_of(url))

    async def children(self) -> list[FrameSource]:
        result: list[FrameSource] = []
        for child in self._frame.child_frames:
            src = ""
            name = child.name
            try:
                element = await child.frame_element()
                src = await element.get_attribute("src") or ""
                name = name or await element.get_attribute("name") or ""
            except PlaywrightError:
                logger.debug("Could not inspect frame element for %s", child.url)
            result.append(PlaywrightFrameSource(child, src=src, name=name))
        return result
