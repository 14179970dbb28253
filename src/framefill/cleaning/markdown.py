# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cleaned HTML -> Markdown.

Forms are kept visible to a reader of the markdown: a form renders as a
``[FORM ...] ... [/FORM]`` block, each control as a bracketed tag carrying
its name/id/placeholder/value, and each label as ``**label**: ``.
"""

from __future__ import annotations

import html as html_lib
import re

import lxml.html

_WS_RE = re.compile(r"\s+")

_BLOCK_TAGS = frozenset(
    {
        "p",
        "div",
        "section",
        "article",
        "main",
        "aside",
        "header",
        "figure",
        "figcaption",
        "address",
        "dl",
        "dt",
        "dd",
        "fieldset",
        "details",
        "summary",
        "body",
        "html",
    }
)
_SKIP_TAGS = frozenset({"script", "style", "noscript", "template", "head", "svg", "iframe", "frame"})
_HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_BUTTON_INPUT_TYPES = frozenset({"submit", "button", "reset", "image"})


def _attr_list(el, names: tuple[str, ...]) -> str:
    parts = [f'{n}="{el.get(n)}"' for n in names if el.get(n)]
    return (" " + " ".join(parts)) if parts else ""


class MarkdownRenderer:
    """Render an lxml tree to Markdown text."""

    def __init__(self, *, bullet: str = "-") -> None:
        self.bullet = bullet

    def render(self, markup: str) -> str:
        if not markup or not markup.strip():
            return ""
        root = lxml.html.document_fromstring(markup)
        return post_process_markdown(self._children(root))

    # ── Tree walk ──────────────────────────────────────────────────

    def _children(self, el) -> str:
        parts: list[str] = []
        if el.text:
            parts.append(_WS_RE.sub(" ", el.text))
        for child in el:
            parts.append(self._node(child))
            if child.tail:
                parts.append(_WS_RE.sub(" ", child.tail))
        return "".join(parts)

    def _node(self, el) -> str:
        if not isinstance(el.tag, str):
            return ""  # comments, processing instructions
        tag = el.tag.lower()
        if tag in _SKIP_TAGS:
            return ""

        if tag in _HEADING_LEVELS:
            text = self._children(el).strip()
            return f"\n\n{'#' * _HEADING_LEVELS[tag]} {text}\n\n" if text else ""
        if tag in _BLOCK_TAGS:
            return f"\n\n{self._children(el).strip()}\n\n"

        handler = getattr(self, f"_tag_{tag}", None)
        if handler is not None:
            return handler(el)
        return self._children(el)

    # ── Inline ─────────────────────────────────────────────────────

    def _emphasis(self, el, mark: str) -> str:
        text = self._children(el)
        stripped = text.strip()
        if not stripped:
            return text
        return f"{mark}{stripped}{mark}"

    def _tag_strong(self, el) -> str:
        return self._emphasis(el, "**")

    _tag_b = _tag_strong

    def _tag_em(self, el) -> str:
        return self._emphasis(el, "*")

    _tag_i = _tag_em

    def _tag_code(self, el) -> str:
        text = el.text_content()
        return f"`{text}`" if text else ""

    def _tag_a(self, el) -> str:
        text = self._children(el).strip()
        href = el.get("href", "")
        if not href or href.startswith("javascript:"):
            return text
        return f"[{text}]({href})"

    def _tag_img(self, el) -> str:
        src = el.get("src", "")
        return f"![{el.get('alt', '')}]({src})" if src else ""

    def _tag_br(self, el) -> str:
        return "  \n"

    # ── Blocks ─────────────────────────────────────────────────────

    def _tag_hr(self, el) -> str:
        return "\n\n---\n\n"

    def _tag_pre(self, el) -> str:
        code = el.text_content().strip("\n")
        return f"\n\n```\n{code}\n```\n\n"

    def _tag_blockquote(self, el) -> str:
        body = _tidy(self._children(el))
        quoted = "\n".join(f"> {line}" if line else ">" for line in body.splitlines())
        return f"\n\n{quoted}\n\n"

    def _list(self, el, ordered: bool) -> str:
        lines: list[str] = []
        number = int(el.get("start", "1")) if (el.get("start") or "").isdigit() else 1
        for item in el:
            if not isinstance(item.tag, str) or item.tag.lower() != "li":
                continue
            marker = f"{number}." if ordered else self.bullet
            number += 1
            body = _tidy(self._children(item))
            first, *rest = body.splitlines() or [""]
            lines.append(f"{marker} {first}")
            lines.extend(f"  {line}" if line else "" for line in rest)
        return "\n\n" + "\n".join(lines) + "\n\n"

    def _tag_ul(self, el) -> str:
        return self._list(el, ordered=False)

    def _tag_ol(self, el) -> str:
        return self._list(el, ordered=True)

    def _tag_table(self, el) -> str:
        rows: list[list[str]] = []
        for tr in el.iter("tr"):
            cells = [
                _WS_RE.sub(" ", self._children(cell)).strip().replace("|", "\\|")
                for cell in tr
                if isinstance(cell.tag, str) and cell.tag.lower() in ("td", "th")
            ]
            if cells:
                rows.append(cells)
        if not rows:
            return ""
        width = max(len(r) for r in rows)
        lines = []
        for i, row in enumerate(rows):
            padded = row + [""] * (width - len(row))
            lines.append("| " + " | ".join(padded) + " |")
            if i == 0:
                lines.append("| " + " | ".join(["---"] * width) + " |")
        return "\n\n" + "\n".join(lines) + "\n\n"

    # ── Forms ──────────────────────────────────────────────────────

    def _tag_form(self, el) -> str:
        head = "[FORM" + _attr_list(el, ("name", "action", "method")) + "]"
        body = _tidy(self._children(el))
        return f"\n\n{head}\n{body}\n[/FORM]\n\n"

    def _tag_input(self, el) -> str:
        kind = (el.get("type") or "text").lower()
        if kind == "hidden":
            return ""
        if kind in _BUTTON_INPUT_TYPES:
            label = el.get("value") or kind
            return f"[BUTTON: {label}]"
        return f"[{kind.upper()}" + _attr_list(el, ("name", "id", "placeholder", "value")) + "] "

    def _tag_textarea(self, el) -> str:
        return "[TEXTAREA" + _attr_list(el, ("name", "id", "placeholder")) + "] "

    def _tag_select(self, el) -> str:
        options = [
            _WS_RE.sub(" ", o.text_content()).strip()
            for o in el.iter("option")
        ]
        head = "[SELECT" + _attr_list(el, ("name", "id")) + "]"
        listed = ", ".join(o for o in options if o)
        return f"{head} options: {listed} " if listed else f"{head} "

    def _tag_button(self, el) -> str:
        text = _WS_RE.sub(" ", el.text_content()).strip()
        return f"[BUTTON: {text}]" if text else ""

    def _tag_label(self, el) -> str:
        text = self._children(el).strip()
        return f"**{text}**: " if text else ""


_EMPTY_LINK_RE = re.compile(r"(?<!!)\[\s*\]\([^)]*\)")
_EMPTY_HEADING_RE = re.compile(r"^#{1,6}\s*$", re.MULTILINE)
_EMPTY_FENCE_RE = re.compile(r"```\s*```")
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def _tidy(text: str) -> str:
    text = _EMPTY_LINK_RE.sub("", text)
    text = _EMPTY_HEADING_RE.sub("", text)
    text = _EMPTY_FENCE_RE.sub("", text)
    text = _TRAILING_WS_RE.sub("", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def post_process_markdown(markdown: str) -> str:
    """Tidy rendered markdown: decode leftover entities, drop empty constructs, collapse blank runs."""
    return _tidy(html_lib.unescape(markdown))


def html_to_markdown(markup: str) -> str:
    return MarkdownRenderer().render(markup)
