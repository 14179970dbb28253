# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Page-side companion: answers request-channel actions for one page.

The agent owns the parsed documents of the page and its frames. They are
loaded on first use (or when a request asks for ``refresh``) and then act
as the live DOM: fills mutate them, and later extractions and detections
see the filled state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from . import FieldDescriptor, FieldFill, FormDescriptor, FrameContent, FrameNode
from .channel import (
    ACTION_CLEAR_FORMS,
    ACTION_DETECT_FORMS,
    ACTION_EXTRACT_HTML,
    ACTION_EXTRACT_WITH_FRAMES,
    ACTION_FILL_FORMS,
    ACTION_PING,
)
from .document import LxmlDocument
from .forms.discovery import detection_summary, discover_forms
from .forms.filler import FormFiller
from .frames.sources import FrameSource
from .frames.walker import FrameWalker, walk_report
from .serializer import fill_options_from_dict, form_from_dict, form_to_dict, frame_node_to_dict, report_to_dict

logger = logging.getLogger(__name__)


class PageAgent:
    """Handle ``ping``, extraction, detection, fill and clear requests for one page."""

    def __init__(self, root: FrameSource, walker: FrameWalker | None = None) -> None:
        self._root = root
        self._walker = walker or FrameWalker()
        self._main: LxmlDocument | None = None
        self._main_content: FrameContent | None = None
        self._nodes: list[FrameNode] = []
        self._frames: dict[str, LxmlDocument] = {}
        self._forms: dict[str, FormDescriptor] = {}
        self._filler: FormFiller | None = None
        self._load_lock = asyncio.Lock()
        self._fill_lock = asyncio.Lock()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            ACTION_PING: self._on_ping,
            ACTION_EXTRACT_WITH_FRAMES: self._on_extract_with_frames,
            ACTION_EXTRACT_HTML: self._on_extract_html,
            ACTION_DETECT_FORMS: self._on_detect_forms,
            ACTION_FILL_FORMS: self._on_fill_forms,
            ACTION_CLEAR_FORMS: self._on_clear_forms,
        }

    async def handle(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Channel entry point: returns a ``{success, data | error}`` reply body."""
        handler = self._handlers.get(action)
        if handler is None:
            return {"success": False, "error": f"unknown action {action!r}"}
        return {"success": True, "data": await handler(payload)}

    # ── Document state ─────────────────────────────────────────────

    async def load(self, *, refresh: bool = False, budget: float | None = None) -> None:
        """Parse the page and walk its frames, once or again on ``refresh``.

        ``budget`` caps the frame walk in seconds; frames it cuts off are
        recorded as timed out.
        """
        async with self._load_lock:
            if self._main is not None and not refresh:
                return
            main = await self._root.read()
            nodes = await self._walker.walk(self._root, budget=budget)
            self._main_content = main
            self._main = LxmlDocument(main.html, url=main.url)
            self._nodes = nodes
            self._frames = {
                n.index_path: LxmlDocument(n.content.html, url=n.content.url) for n in nodes if n.has_content
            }
            self._forms = {}
            self._filler = None
            report = walk_report(nodes)
            logger.info(
                "Page loaded: %d frames (%d accessible, max depth %d)",
                report.total,
                report.accessible,
                report.max_depth,
            )

    def _current_nodes(self) -> list[FrameNode]:
        """Walked frames with content reflecting the current (possibly filled) documents."""
        current = []
        for node in self._nodes:
            doc = self._frames.get(node.index_path)
            if doc is not None and node.content is not None:
                node = replace(node, content=replace(node.content, html=doc.html()))
            current.append(node)
        return current

    def snapshot(self) -> dict[str, Any]:
        """Current markup of the main document and every loaded frame."""
        if self._main is None:
            return {"main": "", "frames": {}}
        return {"main": self._main.html(), "frames": {path: doc.html() for path, doc in self._frames.items()}}

    def restore(self) -> int:
        """Roll back the most recent fill from its backups."""
        return self._filler.restore() if self._filler is not None else 0

    # ── Handlers ───────────────────────────────────────────────────

    async def _on_ping(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {"ready": await self._root.ping()}

    def _page_info(self) -> dict[str, str]:
        content = self._main_content
        return {
            "url": content.url if content else "",
            "title": content.title if content else "",
        }

    async def _on_extract_with_frames(self, payload: dict[str, Any]) -> dict[str, Any]:
        await self.load(refresh=bool(payload.get("refresh")), budget=_budget(payload))
        nodes = self._current_nodes()
        return {
            **self._page_info(),
            "mainHtml": self._main.html(),
            "iframes": [frame_node_to_dict(n) for n in nodes],
        }

    async def _on_extract_html(self, payload: dict[str, Any]) -> dict[str, Any]:
        await self.load(refresh=bool(payload.get("refresh")), budget=_budget(payload))
        return {**self._page_info(), "html": self._main.html()}

    async def _on_detect_forms(self, payload: dict[str, Any]) -> dict[str, Any]:
        await self.load(refresh=bool(payload.get("refresh")), budget=_budget(payload))
        frame_docs = [(n, self._frames[n.index_path]) for n in self._nodes if n.index_path in self._frames]
        forms = discover_forms(self._main, frame_docs)
        self._forms = {f.id: f for f in forms}
        return {
            **self._page_info(),
            "forms": [form_to_dict(f) for f in forms],
            "detection": detection_summary(forms),
        }

    async def _on_fill_forms(self, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._fill_lock:
            await self.load()
            form = form_from_dict(payload["form"]) if payload.get("form") else None
            fills = [
                FieldFill(
                    field_id=m["fieldId"],
                    value=str(m.get("value", "")),
                    field=self._lookup_field(m["fieldId"], form),
                )
                for m in payload.get("mappings") or []
            ]
            filler = FormFiller(self._main, self._frames)
            report = filler.fill(fills, fill_options_from_dict(payload.get("options")))
            self._filler = filler
            return report_to_dict(report)

    async def _on_clear_forms(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Empty every field of one form (``formId``) or of all detected forms."""
        async with self._fill_lock:
            await self.load()
            if not self._forms:
                await self._on_detect_forms({})
            form_id = payload.get("formId")
            if form_id:
                if form_id not in self._forms:
                    raise ValueError(f"unknown form {form_id!r}")
                forms = [self._forms[form_id]]
            else:
                forms = list(self._forms.values())
            fields = [f for form in forms for f in form.fields if f.editable]
            filler = FormFiller(self._main, self._frames)
            report = filler.clear(fields, fill_options_from_dict(payload.get("options")))
            self._filler = filler
            return report_to_dict(report)

    def _lookup_field(self, field_id: str, form: FormDescriptor | None) -> FieldDescriptor | None:
        if form is not None:
            found = form.field_by_id(field_id)
            if found is not None:
                return found
        for known in self._forms.values():
            found = known.field_by_id(field_id)
            if found is not None:
                return found
        return None


def _budget(payload: dict[str, Any]) -> float | None:
    value = payload.get("budget")
    return float(value) if value else None
