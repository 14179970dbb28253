# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Frame hierarchy walker.

Depth-first discovery of every frame reachable from a root source. Sibling
frames are read concurrently; each read has its own deadline and its own
failure record, so one slow or isolated frame never costs its siblings.

Result order is numeric over the dot-separated index path, which is the
depth-first pre-order of the frame tree.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from urllib.parse import urlparse

from .. import FrameNode
from ..config import Settings
from ..errors import FrameAccessError
from .sources import FrameSource

logger = logging.getLogger(__name__)

# Frame error codes recorded on FrameNode.error
ERR_ACCESS_DENIED = "access-denied"
ERR_TIMEOUT = "timeout"
ERR_NOT_READY = "not-ready"
ERR_SKIPPED = "skipped"
ERR_EMPTY = "empty-content"

# Share of a request deadline the page side may spend walking frames; the
# rest is left for merging and the reply.
WALK_BUDGET_SHARE = 0.8

# Ad and tracker hosts whose frames carry no page content.
SKIPPED_HOSTS = frozenset(
    {
        "google.com",
        "googletagmanager.com",
        "doubleclick.net",
        "facebook.com",
        "twitter.com",
        "youtube.com",
        "analytics.google.com",
        "googleadservices.com",
    }
)


def index_path_key(index_path: str) -> tuple[int, ...]:
    """Numeric-aware sort key: "2" < "10" and "1.2" < "1.10"."""
    return tuple(int(part) for part in index_path.split(".") if part)


def walk_budget(deadline: float) -> float:
    """Walk budget for a request answered within ``deadline`` seconds."""
    return deadline * WALK_BUDGET_SHARE


def should_skip(src: str, *, inline: bool = False) -> bool:
    """True for frames with no readable document or an ad/tracker origin."""
    if inline:
        return False
    value = src.strip()
    if not value or value == "about:blank" or value.lower().startswith("javascript:"):
        return True
    host = (urlparse(value).hostname or "").lower()
    return any(host == h or host.endswith("." + h) for h in SKIPPED_HOSTS)


@dataclass(frozen=True, slots=True)
class WalkReport:
    total: int
    accessible: int
    by_depth: dict[int, int]
    errors: dict[str, int]
    max_depth: int


class FrameWalker:
    """Collect ``FrameNode`` entries for every frame under a root source."""

    def __init__(
        self,
        *,
        max_depth: int = 5,
        frame_timeout: float = 5.0,
        probe_attempts: int = 3,
        probe_backoff: float = 0.5,
        max_concurrency: int = 8,
    ) -> None:
        self.max_depth = max_depth
        self.frame_timeout = frame_timeout
        self.probe_attempts = max(1, probe_attempts)
        self.probe_backoff = probe_backoff
        self.max_concurrency = max(1, max_concurrency)

    @classmethod
    def from_settings(cls, settings: Settings) -> FrameWalker:
        return cls(
            max_depth=settings.max_frame_depth,
            frame_timeout=settings.frame_timeout,
            probe_attempts=settings.probe_attempts,
            probe_backoff=settings.probe_backoff,
            max_concurrency=settings.max_concurrency,
        )

    async def walk(self, root: FrameSource, *, budget: float | None = None) -> list[FrameNode]:
        """Walk every frame under ``root``; the root itself is not included.

        With a ``budget`` (seconds) the walk stops when it runs out and
        returns what it has: frames still being read are reported with a
        ``timeout`` error, and anything below them is not visited.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        nodes: list[FrameNode] = []
        pending: dict[str, FrameNode] = {}
        try:
            async with asyncio.timeout(budget):
                await self._walk_children(root, "", 0, semaphore, nodes, pending)
        except TimeoutError:
            logger.info("Frame walk stopped after %.1fs with %d frames unfinished", budget, len(pending))
            nodes.extend(pending.values())
        nodes.sort(key=lambda n: index_path_key(n.index_path))
        logger.debug(
            "Frame walk complete: %d frames, %d accessible",
            len(nodes),
            sum(1 for n in nodes if n.accessible),
        )
        return nodes

    async def _walk_children(
        self,
        parent: FrameSource,
        parent_path: str,
        depth: int,
        semaphore: asyncio.Semaphore,
        out: list[FrameNode],
        pending: dict[str, FrameNode],
    ) -> None:
        if depth > self.max_depth:
            return
        try:
            children = await asyncio.wait_for(parent.children(), timeout=self.frame_timeout)
        except (TimeoutError, FrameAccessError) as exc:
            logger.debug("Cannot list frames under %r: %s", parent, exc)
            return
        except Exception:
            logger.warning("Listing frames under %r failed", parent, exc_info=True)
            return

        async def visit(index: int, child: FrameSource) -> None:
            path = f"{parent_path}.{index}" if parent_path else str(index)
            pending[path] = FrameNode(
                index_path=path, depth=depth, src=child.src, name=child.name, error=ERR_TIMEOUT
            )
            node = await self._visit(child, path, depth, semaphore)
            del pending[path]
            out.append(node)
            if node.accessible:
                await self._walk_children(child, path, depth + 1, semaphore, out, pending)

        await asyncio.gather(*(visit(i, c) for i, c in enumerate(children)))

    async def _visit(
        self,
        source: FrameSource,
        index_path: str,
        depth: int,
        semaphore: asyncio.Semaphore,
    ) -> FrameNode:
        node = FrameNode(index_path=index_path, depth=depth, src=source.src, name=source.name)
        if should_skip(source.src, inline=source.inline):
            node.error = ERR_SKIPPED
            return node
        async with semaphore:
            if not await self._probe(source):
                node.error = ERR_NOT_READY
                return node
            try:
                content = await asyncio.wait_for(source.read(), timeout=self.frame_timeout)
            except TimeoutError:
                logger.info("Frame %s (%s) timed out after %.1fs", index_path, source.src, self.frame_timeout)
                node.error = ERR_TIMEOUT
                return node
            except FrameAccessError as exc:
                logger.debug("Frame %s isolated: %s", index_path, exc)
                node.error = ERR_ACCESS_DENIED
                return node
            except Exception as exc:
                logger.warning("Frame %s read failed", index_path, exc_info=True)
                node.error = str(exc) or type(exc).__name__
                return node

        node.accessible = True
        node.content = content
        if not content.html:
            node.error = ERR_EMPTY
        return node

    async def _probe(self, source: FrameSource) -> bool:
        """Readiness ping with fixed backoff."""
        for attempt in range(1, self.probe_attempts + 1):
            try:
                if await asyncio.wait_for(source.ping(), timeout=self.frame_timeout):
                    return True
            except TimeoutError:
                pass
            except Exception:
                logger.debug("Ping attempt %d failed for %r", attempt, source, exc_info=True)
            if attempt < self.probe_attempts:
                await asyncio.sleep(self.probe_backoff)
        return False


def walk_report(nodes: list[FrameNode]) -> WalkReport:
    """Summarise a walk for logs and the CLI."""
    by_depth = Counter(n.depth for n in nodes)
    errors = Counter(n.error for n in nodes if n.error)
    return WalkReport(
        total=len(nodes),
        accessible=sum(1 for n in nodes if n.accessible),
        by_depth=dict(sorted(by_depth.items())),
        errors=dict(errors),
        max_depth=max((n.depth for n in nodes), default=0),
    )
