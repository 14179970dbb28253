# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Document tree capability.

Every component that reads or mutates markup goes through ``DocumentTree``:
the merger, the cleaner, form discovery and the filler never touch a parser
directly. ``LxmlDocument`` is the implementation over ``lxml.html`` with
CSS selectors compiled by ``cssselect``.

``replace()`` splices raw markup: the replacement is emitted verbatim when
the document is serialized and is never re-parsed into this tree. The
merger relies on that to carry frame content byte-for-byte.
"""

from __future__ import annotations

import html as html_lib
import re
import uuid
from collections.abc import Iterator
from typing import Any, Protocol, runtime_checkable

import lxml.html
from cssselect import SelectorError
from lxml import etree

from .errors import InvalidSelectorError

_EMPTY_DOCUMENT = "<html><head></head><body></body></html>"
_SPLICE_PREFIX = "framefill-splice:"
# lxml refuses str input that carries an encoding declaration
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)


@runtime_checkable
class DocumentTree(Protocol):
    """Query and mutate a parsed document."""

    def query(self, selector: str, within: Any | None = None) -> list[Any]: ...

    def query_xpath(self, xpath: str) -> list[Any]: ...

    def text(self, node: Any) -> str: ...

    def html(self, node: Any | None = None) -> str: ...

    def inner_html(self, node: Any) -> str: ...

    def replace(self, node: Any, content: str) -> None: ...

    def remove(self, node: Any) -> None: ...

    def get_attribute(self, node: Any, name: str, default: str | None = None) -> str | None: ...

    def set_attribute(self, node: Any, name: str, value: str) -> None: ...

    def remove_attribute(self, node: Any, name: str) -> None: ...

    def set_text(self, node: Any, text: str) -> None: ...

    def attributes(self, node: Any) -> dict[str, str]: ...

    def tag_of(self, node: Any) -> str: ...

    def ancestors(self, node: Any) -> Iterator[Any]: ...

    def children_of(self, node: Any) -> list[Any]: ...

    def previous_element(self, node: Any) -> Any | None: ...

    def path_of(self, node: Any) -> str: ...


class LxmlDocument:
    """``DocumentTree`` over an ``lxml.html`` element tree."""

    def __init__(self, markup: str, *, url: str = "") -> None:
        if not markup or not markup.strip():
            markup = _EMPTY_DOCUMENT
        markup = _XML_DECL_RE.sub("", markup, count=1)
        self._root = lxml.html.document_fromstring(markup)
        self._splices: dict[str, str] = {}
        self.url = url

    # ── Document-level accessors ───────────────────────────────────

    @property
    def root(self) -> Any:
        return self._root

    @property
    def body(self) -> Any | None:
        return self._root.find(".//body")

    @property
    def title(self) -> str:
        return (self._root.findtext(".//title") or "").strip()

    # ── Queries ────────────────────────────────────────────────────

    def query(self, selector: str, within: Any | None = None) -> list[Any]:
        scope = self._root if within is None else within
        try:
            return list(scope.cssselect(selector))
        except SelectorError as exc:
            raise InvalidSelectorError(f"invalid selector {selector!r}: {exc}") from exc

    def query_xpath(self, xpath: str) -> list[Any]:
        try:
            found = self._root.xpath(xpath)
        except etree.XPathError as exc:
            raise InvalidSelectorError(f"invalid xpath {xpath!r}: {exc}") from exc
        if not isinstance(found, list):
            return []
        return [n for n in found if isinstance(n, etree._Element) and isinstance(n.tag, str)]

    def iter_elements(self, *tags: str) -> Iterator[Any]:
        """Elements in document order, optionally restricted to ``tags``."""
        return self._root.iter(*tags) if tags else self._root.iter(etree.Element)

    # ── Reading ────────────────────────────────────────────────────

    def text(self, node: Any) -> str:
        return node.text_content()

    def html(self, node: Any | None = None) -> str:
        target = self._root if node is None else node
        out = lxml.html.tostring(target, encoding="unicode", with_tail=False)
        return self._apply_splices(out)

    def inner_html(self, node: Any) -> str:
        parts = [html_lib.escape(node.text, quote=False)] if node.text else []
        parts.extend(lxml.html.tostring(child, encoding="unicode") for child in node)
        return self._apply_splices("".join(parts))

    def get_attribute(self, node: Any, name: str, default: str | None = None) -> str | None:
        return node.get(name, default)

    def attributes(self, node: Any) -> dict[str, str]:
        return dict(node.attrib)

    def tag_of(self, node: Any) -> str:
        tag = node.tag
        return tag.lower() if isinstance(tag, str) else ""

    def ancestors(self, node: Any) -> Iterator[Any]:
        return node.iterancestors()

    def children_of(self, node: Any) -> list[Any]:
        return [c for c in node if isinstance(c.tag, str)]

    def previous_element(self, node: Any) -> Any | None:
        prev = node.getprevious()
        while prev is not None and not isinstance(prev.tag, str):
            prev = prev.getprevious()
        return prev

    def path_of(self, node: Any) -> str:
        return self._root.getroottree().getpath(node)

    # ── Mutation ───────────────────────────────────────────────────

    def replace(self, node: Any, content: str) -> None:
        token = uuid.uuid4().hex
        self._splices[token] = content
        marker = etree.Comment(_SPLICE_PREFIX + token)
        marker.tail = node.tail
        parent = node.getparent()
        if parent is None:
            raise ValueError("cannot replace the document root")
        parent.replace(node, marker)

    def remove(self, node: Any) -> None:
        if node.getparent() is None:
            return
        node.drop_tree()

    def set_attribute(self, node: Any, name: str, value: str) -> None:
        node.set(name, value)

    def remove_attribute(self, node: Any, name: str) -> None:
        node.attrib.pop(name, None)

    def set_text(self, node: Any, text: str) -> None:
        for child in list(node):
            node.remove(child)
        node.text = text

    def _apply_splices(self, markup: str) -> str:
        for token, content in self._splices.items():
            markup = markup.replace(f"<!--{_SPLICE_PREFIX}{token}-->", content)
        return markup


def parse_document(markup: str, *, url: str = "") -> LxmlDocument:
    """Parse markup into the default ``DocumentTree`` implementation."""
    return LxmlDocument(markup, url=url)
