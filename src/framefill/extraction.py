# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Extraction orchestration: probe -> frame-aware extraction -> merge -> clean -> stats.

Runs on the orchestrator side and talks to the page through the request
channel. When the frame-aware extraction fails or returns nothing usable,
a single whole-page read (no frames) is attempted before giving up.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field

from . import ContentStats, FrameNode, MergedDocument
from .channel import ACTION_EXTRACT_HTML, ACTION_EXTRACT_WITH_FRAMES, ACTION_PING, RequestChannel
from .cleaning.cleaner import CleanedHtml, clean_html
from .cleaning.markdown import html_to_markdown
from .config import Settings
from .errors import ChannelError, ContentEmptyError
from .frames.walker import walk_budget
from .merger import merge_frames
from .pipeline_timer import PipelineTimer
from .serializer import frame_node_from_dict
from .stats import build_content_stats, chunk_content

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[a-zA-Z!][^>]*>")


def is_valid_html(html: str | None) -> bool:
    """Non-empty and contains at least one tag."""
    return bool(html and html.strip() and _TAG_RE.search(html))


@dataclass
class ExtractionResult:
    url: str
    title: str
    frames: list[FrameNode]
    merged: MergedDocument
    cleaned: CleanedHtml
    markdown: str
    chunks: list[str]
    stats: ContentStats
    used_fallback: bool = False
    timings: dict[str, float] = field(default_factory=dict)


class ContentExtractor:
    """Extract analyzable page content through a ``RequestChannel``."""

    def __init__(self, channel: RequestChannel, settings: Settings | None = None) -> None:
        self._channel = channel
        self._settings = settings or Settings()

    async def wait_until_ready(self) -> bool:
        """Ping the page side; ``probe_attempts`` tries spaced by ``probe_backoff``."""
        s = self._settings
        for attempt in range(1, s.probe_attempts + 1):
            try:
                reply = await self._channel.request(ACTION_PING, timeout=s.frame_timeout)
            except ChannelError as exc:
                logger.debug("Ping %d/%d failed: %s", attempt, s.probe_attempts, exc)
            else:
                if reply.get("ready", True):
                    return True
            if attempt < s.probe_attempts:
                await asyncio.sleep(s.probe_backoff)
        return False

    async def extract(self) -> ExtractionResult:
        """Run the whole extraction.

        Raises:
            ContentEmptyError: neither the frame-aware read nor the whole-page
                fallback produced HTML.
        """
        s = self._settings
        timer = PipelineTimer()
        frames: list[FrameNode] = []
        main_html = ""
        url = title = ""
        used_fallback = False
        try:
            timer.stage("probe")
            ready = await self.wait_until_ready()

            if ready:
                timer.stage("extraction")
                try:
                    data = await self._channel.request(
                        ACTION_EXTRACT_WITH_FRAMES,
                        {"budget": walk_budget(s.extraction_timeout)},
                        timeout=s.extraction_timeout,
                    )
                except ChannelError as exc:
                    logger.warning("Frame-aware extraction failed, falling back: %s", exc)
                else:
                    main_html = data.get("mainHtml", "")
                    url, title = data.get("url", ""), data.get("title", "")
                    frames = [frame_node_from_dict(f) for f in data.get("iframes") or []]
            else:
                logger.warning("Page side not ready after %d pings, falling back", s.probe_attempts)

            if not is_valid_html(main_html):
                timer.stage("fallback")
                used_fallback = True
                frames = []
                try:
                    data = await self._channel.request(
                        ACTION_EXTRACT_HTML,
                        {"budget": walk_budget(s.channel_timeout)},
                        timeout=s.channel_timeout,
                    )
                except ChannelError as exc:
                    raise ContentEmptyError(f"whole-page extraction failed: {exc}") from exc
                main_html = data.get("html", "")
                url, title = data.get("url", url), data.get("title", title)
                if not is_valid_html(main_html):
                    raise ContentEmptyError("page returned no HTML")

            timer.stage("merge")
            merged = merge_frames(main_html, frames)

            timer.stage("cleaning")
            cleaned = clean_html(merged.html, min_chars=s.main_content_min_chars)

            timer.stage("markdown")
            markdown = html_to_markdown(cleaned.html)
            chunks = chunk_content(markdown, s.max_chunk_size)
        except asyncio.CancelledError:
            logger.warning("Extraction cancelled: %s", timer.timeout_report())
            raise
        finally:
            timer.finalize()

        stats = build_content_stats(
            original_size=len(main_html) + merged.merged_size,
            main_page_size=len(main_html),
            iframe_content_size=merged.merged_size,
            cleaned_size=len(cleaned.html),
            markdown=markdown,
            chunk_count=len(chunks),
            words_per_minute=s.words_per_minute,
        )
        logger.info(
            "Extracted %s: %d frames, %d words, fallback=%s",
            url or "page",
            len(frames),
            stats.word_count,
            used_fallback,
        )
        return ExtractionResult(
            url=url,
            title=title,
            frames=frames,
            merged=merged,
            cleaned=cleaned,
            markdown=markdown,
            chunks=chunks,
            stats=stats,
            used_fallback=used_fallback,
            timings=timer.elapsed_per_stage(),
        )
