# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Form filler: apply field values with backup, validation and highlight.

Each instruction is handled independently. A field that cannot be found or
assigned yields an outcome with ``applied=False``; a field whose read-back
value differs from what was written yields ``applied=True`` with an error.
Neither stops the remaining fields.

Highlighting is cosmetic: a failure to mark a field never changes its
outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Any

from .. import FieldDescriptor, FieldFill, FillOptions, FillOutcome, FillReport
from ..document import DocumentTree
from ..errors import FillValidationError, FrameFillError, InvalidSelectorError

logger = logging.getLogger(__name__)

HIGHLIGHT_ATTR = "data-framefill-highlight"

ERR_UNKNOWN_FIELD = "unknown field"
ERR_FRAME_UNAVAILABLE = "frame-unavailable"
ERR_NOT_FOUND = "field not found"

_TRUTHY = frozenset({"true", "1", "yes", "y", "on", "checked", "selected"})


class AssignmentError(FrameFillError):
    """A value could not be written to a control."""


@dataclass(slots=True)
class _Target:
    doc: DocumentTree
    nodes: list[Any]
    field: FieldDescriptor
    backup: str | None


class FormFiller:
    """Fill fields of the main document and of frame documents keyed by index path."""

    def __init__(self, main: DocumentTree, frames: Mapping[str, DocumentTree] | None = None) -> None:
        self._main = main
        self._frames = dict(frames or {})
        self._last: dict[str, _Target] = {}

    def document_for(self, field: FieldDescriptor) -> DocumentTree | None:
        if field.source == "iframe" or field.iframe_path:
            return self._frames.get(field.iframe_path or "")
        return self._main

    # ── Public API ─────────────────────────────────────────────────

    def fill(self, fills: Sequence[FieldFill], options: FillOptions | None = None) -> FillReport:
        opts = options or FillOptions()
        self._last = {}
        report = FillReport()
        for instruction in fills:
            report.outcomes.append(self._fill_one(instruction, opts))
        logger.info(
            "Fill finished: %d/%d applied, %d with errors",
            report.applied_count,
            len(report.outcomes),
            len(report.failures),
        )
        return report

    def restore(self, outcomes: Sequence[FillOutcome] | None = None) -> int:
        """Write backup values back for the given outcomes (default: last fill).

        Returns the number of fields restored. Fields filled without backup
        are left alone.
        """
        ids = [o.field_id for o in outcomes] if outcomes is not None else list(self._last)
        restored = 0
        for field_id in ids:
            target = self._last.get(field_id)
            if target is None or target.backup is None:
                continue
            try:
                _assign(target.doc, target.nodes, target.field, target.backup)
            except AssignmentError:
                logger.warning("Could not restore %s", field_id, exc_info=True)
                continue
            restored += 1
        return restored

    def clear(self, fields: Sequence[FieldDescriptor], options: FillOptions | None = None) -> FillReport:
        """Empty the given fields: text blanked, boxes unchecked, selects back to their first option.

        Backups are taken as for a fill, so ``restore()`` undoes a clear.
        Cleared fields are not highlighted.
        """
        opts = replace(options or FillOptions(), highlight=False)
        return self.fill([FieldFill(f.id, "", f) for f in fields], opts)

    def clear_highlights(self) -> int:
        cleared = 0
        for doc in (self._main, *self._frames.values()):
            for node in doc.query(f"[{HIGHLIGHT_ATTR}]"):
                doc.remove_attribute(node, HIGHLIGHT_ATTR)
                cleared += 1
        return cleared

    # ── Per-field work ─────────────────────────────────────────────

    def _fill_one(self, instruction: FieldFill, opts: FillOptions) -> FillOutcome:
        field = instruction.field
        if field is None:
            return FillOutcome(instruction.field_id, applied=False, error=ERR_UNKNOWN_FIELD)

        doc = self.document_for(field)
        if doc is None:
            return FillOutcome(field.id, applied=False, error=ERR_FRAME_UNAVAILABLE)

        nodes = locate(doc, field)
        if not nodes:
            return FillOutcome(field.id, applied=False, error=ERR_NOT_FOUND)
        if field.type not in ("radio", "checkbox"):
            nodes = nodes[:1]

        backup = read_value(doc, nodes, field) if opts.backup else None
        try:
            expected = _assign(doc, nodes, field, instruction.value)
        except AssignmentError as exc:
            return FillOutcome(field.id, applied=False, backup_value=backup, error=str(exc))

        self._last[field.id] = _Target(doc, nodes, field, backup)
        outcome = FillOutcome(field.id, applied=True, backup_value=backup, applied_value=expected)

        if opts.validate:
            actual = read_value(doc, nodes, field)
            if not _matches(field, expected, actual):
                outcome.error = str(FillValidationError(field.id, expected, actual))

        if opts.highlight:
            with suppress(Exception):
                for node in nodes:
                    doc.set_attribute(node, HIGHLIGHT_ATTR, "error" if outcome.error else "filled")
        return outcome


def locate(doc: DocumentTree, field: FieldDescriptor) -> list[Any]:
    """Find the field's element(s) again after the page may have changed.

    The recorded CSS selector and XPath come first. When both miss, the
    stable facts kept at discovery are tried: original id, name, placeholder
    and finally the visible label text. Those fallbacks accept only an
    unambiguous match, so a renamed page never gets the wrong control.
    """
    if field.selector:
        try:
            nodes = doc.query(field.selector)
        except InvalidSelectorError:
            logger.debug("Selector %r invalid, trying xpath", field.selector)
        else:
            if nodes:
                return nodes
    if field.xpath:
        try:
            nodes = doc.query_xpath(field.xpath)
        except InvalidSelectorError:
            logger.debug("XPath %r invalid", field.xpath)
        else:
            if nodes:
                return nodes
    for how, finder in _FALLBACKS:
        nodes = finder(doc, field)
        if nodes:
            logger.debug("Field %s located by %s", field.id, how)
            return nodes
    return []


_CONTROLS = "*[self::input or self::textarea or self::select]"


def _is_group(field: FieldDescriptor) -> bool:
    return field.type == "radio" or (field.type == "checkbox" and bool(field.options))


def _literal(value: str) -> str | None:
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    return None


def _one(nodes: list[Any]) -> list[Any]:
    return nodes if len(nodes) == 1 else []


def _by_original_id(doc: DocumentTree, field: FieldDescriptor) -> list[Any]:
    literal = _literal(field.original_id) if field.original_id else None
    if literal is None or _is_group(field):
        return []
    return _one(doc.query_xpath(f"//{_CONTROLS}[@id={literal}]"))


def _by_name(doc: DocumentTree, field: FieldDescriptor) -> list[Any]:
    literal = _literal(field.name) if field.name else None
    if literal is None:
        return []
    nodes = doc.query_xpath(f"//{_CONTROLS}[@name={literal}]")
    if not _is_group(field):
        return _one(nodes)
    members = [n for n in nodes if (doc.get_attribute(n, "type") or "").lower() == field.type]
    # a group is only trusted when the page still holds exactly its members
    return members if field.options and len(members) == len(field.options) else []


def _by_placeholder(doc: DocumentTree, field: FieldDescriptor) -> list[Any]:
    literal = _literal(field.placeholder) if field.placeholder else None
    if literal is None:
        return []
    return _one(doc.query_xpath(f"//{_CONTROLS}[@placeholder={literal}]"))


def _label_key(text: str) -> str:
    return " ".join(text.split()).rstrip(" :*").lower()


def _by_label(doc: DocumentTree, field: FieldDescriptor) -> list[Any]:
    wanted = _label_key(field.label)
    if not wanted or _is_group(field):
        return []
    found: list[Any] = []
    for label in doc.query("label"):
        nested = doc.query("input, textarea, select", within=label)
        text = doc.text(label)
        for control in nested:
            own = doc.text(control)
            if own:
                text = text.replace(own, " ")
        if _label_key(text) != wanted:
            continue
        target = doc.get_attribute(label, "for")
        literal = _literal(target) if target else None
        candidates = doc.query_xpath(f"//{_CONTROLS}[@id={literal}]") if literal is not None else nested
        found.extend(c for c in candidates if not any(c is f for f in found))
    return _one(found)

_FALLBACKS = (
    ("original id", _by_original_id),
    ("name", _by_name),
    ("placeholder", _by_placeholder),
    ("label text", _by_label),
)


# ── Reading ───────────────────────────────────────────────────────


def _option_value(doc: DocumentTree, option: Any) -> str:
    value = doc.get_attribute(option, "value")
    return value if value is not None else doc.text(option).strip()


def _is_checked(doc: DocumentTree, node: Any) -> bool:
    return doc.get_attribute(node, "checked") is not None


def read_value(doc: DocumentTree, nodes: list[Any], field: FieldDescriptor) -> str:
    """Current value of the field as a string."""
    node = nodes[0]
    tag = doc.tag_of(node)
    if field.type == "radio":
        for member in nodes:
            if _is_checked(doc, member):
                return doc.get_attribute(member, "value") or "on"
        return ""
    if field.type == "checkbox":
        if len(nodes) == 1:
            return "true" if _is_checked(doc, node) else "false"
        return ",".join(doc.get_attribute(m, "value") or "on" for m in nodes if _is_checked(doc, m))
    if tag == "textarea":
        return doc.text(node)
    if tag == "select":
        options = doc.query("option", within=node)
        for option in options:
            if doc.get_attribute(option, "selected") is not None:
                return _option_value(doc, option)
        return _option_value(doc, options[0]) if options else ""
    return doc.get_attribute(node, "value") or ""


def _matches(field: FieldDescriptor, expected: str, actual: str) -> bool:
    if field.type == "checkbox" and "," not in expected and expected in ("true", "false"):
        return (actual == "true") == (expected == "true")
    return actual == expected


# ── Assignment ────────────────────────────────────────────────────


def _assign(doc: DocumentTree, nodes: list[Any], field: FieldDescriptor, value: str) -> str:
    """Write ``value``; returns the value expected on read-back."""
    node = nodes[0]
    tag = doc.tag_of(node)
    if field.type == "radio":
        return _assign_radio(doc, nodes, field, value)
    if field.type == "checkbox":
        return _assign_checkbox(doc, nodes, value)
    if tag == "select":
        return _assign_select(doc, node, value)
    if tag == "textarea":
        doc.set_text(node, value)
        return value
    if (doc.get_attribute(node, "type") or "").lower() == "file":
        raise AssignmentError("file inputs cannot be filled")
    doc.set_attribute(node, "value", value)
    return value


def _assign_select(doc: DocumentTree, node: Any, value: str) -> str:
    options = doc.query("option", within=node)
    wanted = value.strip()
    if not wanted:
        for option in options:
            doc.remove_attribute(option, "selected")
        return _option_value(doc, options[0]) if options else ""
    lowered = wanted.lower()
    chosen = next((o for o in options if _option_value(doc, o) == wanted), None)
    if chosen is None:
        chosen = next((o for o in options if doc.text(o).strip() == wanted), None)
    if chosen is None and lowered:
        chosen = next((o for o in options if lowered in doc.text(o).strip().lower()), None)
    if chosen is None:
        raise AssignmentError(f"no option matching {value!r}")
    for option in options:
        if option is chosen:
            doc.set_attribute(option, "selected", "selected")
        else:
            doc.remove_attribute(option, "selected")
    return _option_value(doc, chosen)


def _assign_radio(doc: DocumentTree, nodes: list[Any], field: FieldDescriptor, value: str) -> str:
    wanted = value.strip().lower()
    if not wanted:
        for member in nodes:
            doc.remove_attribute(member, "checked")
        return ""
    chosen = next((n for n in nodes if (doc.get_attribute(n, "value") or "on").lower() == wanted), None)
    if chosen is None:
        # fall back to the option label the collaborator may have answered with
        for member, option in zip(nodes, field.options, strict=False):
            if option.text and option.text.lower() == wanted:
                chosen = member
                break
    if chosen is None:
        raise AssignmentError(f"no radio option matching {value!r}")
    for member in nodes:
        if member is chosen:
            doc.set_attribute(member, "checked", "checked")
        else:
            doc.remove_attribute(member, "checked")
    return doc.get_attribute(chosen, "value") or "on"


def _assign_checkbox(doc: DocumentTree, nodes: list[Any], value: str) -> str:
    if len(nodes) == 1:
        node = nodes[0]
        own = (doc.get_attribute(node, "value") or "").lower()
        state = value.strip().lower() in _TRUTHY or (bool(own) and value.strip().lower() == own)
        if state:
            doc.set_attribute(node, "checked", "checked")
        else:
            doc.remove_attribute(node, "checked")
        return "true" if state else "false"

    wanted = {v.strip().lower() for v in value.split(",") if v.strip()}
    checked = []
    for member in nodes:
        member_value = doc.get_attribute(member, "value") or "on"
        if member_value.lower() in wanted:
            doc.set_attribute(member, "checked", "checked")
            checked.append(member_value)
        else:
            doc.remove_attribute(member, "checked")
    if wanted and not checked:
        raise AssignmentError(f"no checkbox matching {value!r}")
    return ",".join(checked)
