# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Form and field discovery across the main document and its frames.

For every document: each ``<form>`` becomes a FormDescriptor, and controls
outside any form are gathered into one standalone descriptor. Radio
buttons (and checkboxes) sharing a name collapse into a single field whose
options are the group members.

Every field gets a CSS selector and an XPath so the filler can find it
again; selectors prefer stable attributes that are unique in the document
and fall back to a positional path.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from .. import FieldDescriptor, FieldOption, FieldSource, FormDescriptor, FormSummary, FrameNode
from ..document import DocumentTree
from ..sanitizer import sanitize_text

logger = logging.getLogger(__name__)

FIELD_SELECTOR = "input, textarea, select"

# Input types that are actions, not values
SKIPPED_INPUT_TYPES = frozenset({"button", "submit", "reset", "image", "file"})

GROUPED_INPUT_TYPES = frozenset({"radio", "checkbox"})

_SIMPLE_IDENT_RE = re.compile(r"^[A-Za-z_][\w-]*$")
_WS_RE = re.compile(r"\s+")
_HIDDEN_STYLE_RE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)
_READONLY_CLASS_RE = re.compile(r"(?:^|[\s_-])(?:readonly|read-only|disabled)(?:$|[\s_-])", re.IGNORECASE)

_NEARBY_TEXT_MIN = 2
_NEARBY_TEXT_MAX = 50


# ── Categorization ────────────────────────────────────────────────

_DATETIME_TYPES = frozenset({"date", "datetime-local", "time", "month", "week"})

# (category, input types, keyword pattern), checked in order
_CATEGORY_RULES: tuple[tuple[str, frozenset[str], re.Pattern[str] | None], ...] = (
    ("password", frozenset({"password"}), None),
    ("file", frozenset({"file"}), None),
    ("datetime", _DATETIME_TYPES, re.compile(r"date|time|when|schedule|deadline|일시|날짜|시간|기간")),
    ("email", frozenset({"email"}), re.compile(r"e-?mail|메일")),
    ("phone", frozenset({"tel"}), re.compile(r"phone|tel\b|mobile|cell|연락처|전화|휴대")),
    ("name", frozenset(), re.compile(r"name|이름|성명|담당자")),
    ("department", frozenset(), re.compile(r"department|dept|division|team|부서|팀")),
    ("position", frozenset(), re.compile(r"position|job|role|rank|title|직급|직책|직위")),
    ("location", frozenset(), re.compile(r"location|address|place|city|venue|주소|장소|위치")),
    ("work", frozenset(), re.compile(r"work|task|project|duty|업무|작업|프로젝트")),
    ("description", frozenset({"textarea"}), re.compile(r"desc|comment|message|note|detail|memo|reason|내용|설명|비고|사유")),
    ("number", frozenset({"number", "range"}), re.compile(r"number|amount|count|qty|quantity|수량|금액|개수")),
    ("select", frozenset({"select"}), None),
)


def categorize_field(field_type: str, *texts: str) -> str:
    """Deterministic category from the control type and its descriptive texts."""
    haystack = " ".join(t for t in texts if t).lower()
    for category, types, pattern in _CATEGORY_RULES:
        if field_type in types:
            return category
        if pattern is not None and haystack and pattern.search(haystack):
            return category
    return "text"


# ── Text helpers ──────────────────────────────────────────────────


def _clean(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _control_type(doc: DocumentTree, el: Any) -> str:
    tag = doc.tag_of(el)
    if tag in ("textarea", "select"):
        return tag
    return (doc.get_attribute(el, "type") or "text").strip().lower() or "text"


# ── Label resolution ──────────────────────────────────────────────


def _text_without(doc: DocumentTree, container: Any, el: Any) -> str:
    text = _clean(doc.text(container))
    own = _clean(doc.text(el))
    if own:
        text = _clean(text.replace(own, " "))
    return text


def resolve_label(doc: DocumentTree, el: Any) -> str:
    """Human label for a control, from the most to the least explicit source."""
    el_id = doc.get_attribute(el, "id")
    if el_id:
        for label in doc.query(f'label[for="{_quote(el_id)}"]'):
            text = _text_without(doc, label, el)
            if text:
                return text

    for ancestor in doc.ancestors(el):
        if doc.tag_of(ancestor) == "label":
            text = _text_without(doc, ancestor, el)
            if text:
                return text
            break

    prev = doc.previous_element(el)
    if prev is not None and doc.tag_of(prev) == "label":
        text = _clean(doc.text(prev))
        if text:
            return text

    aria = _clean(doc.get_attribute(el, "aria-label"))
    if aria:
        return aria

    labelledby = doc.get_attribute(el, "aria-labelledby") or ""
    parts = []
    for ref in labelledby.split():
        for node in doc.query_xpath(f'//*[@id="{ref}"]') if '"' not in ref else []:
            parts.append(_clean(doc.text(node)))
    if any(parts):
        return " ".join(p for p in parts if p)

    parent = next(iter(doc.ancestors(el)), None)
    if parent is not None and doc.tag_of(parent) not in ("form", "body", "html"):
        nearby = _text_without(doc, parent, el)
        if _NEARBY_TEXT_MIN < len(nearby) < _NEARBY_TEXT_MAX:
            return nearby
    return ""


def _group_label(doc: DocumentTree, first: Any) -> str:
    for ancestor in doc.ancestors(first):
        if doc.tag_of(ancestor) == "fieldset":
            legends = doc.query("legend", within=ancestor)
            if legends:
                return _clean(doc.text(legends[0]))
            break
    return ""


# ── Selector / XPath ──────────────────────────────────────────────


def _unique(doc: DocumentTree, selector: str) -> bool:
    return len(doc.query(selector)) == 1


def _path_selector(doc: DocumentTree, el: Any) -> str:
    segments: list[str] = []
    chain = [el, *doc.ancestors(el)]
    for i, node in enumerate(chain):
        tag = doc.tag_of(node)
        node_id = doc.get_attribute(node, "id")
        if node_id and _SIMPLE_IDENT_RE.match(node_id):
            segments.append(f"#{node_id}")
            break
        if i + 1 < len(chain):
            siblings = [c for c in doc.children_of(chain[i + 1]) if doc.tag_of(c) == tag]
            if len(siblings) > 1:
                tag += f":nth-of-type({siblings.index(node) + 1})"
        segments.append(tag)
    return " > ".join(reversed(segments))


def build_selector(doc: DocumentTree, el: Any) -> str:
    """CSS selector for ``el``: a unique attribute selector, else a positional path."""
    tag = doc.tag_of(el)
    el_id = doc.get_attribute(el, "id")
    if el_id:
        candidate = f"#{el_id}" if _SIMPLE_IDENT_RE.match(el_id) else f'{tag}[id="{_quote(el_id)}"]'
        if _unique(doc, candidate):
            return candidate
    for attr in ("name", "aria-labelledby", "placeholder"):
        value = doc.get_attribute(el, attr)
        if value:
            candidate = f'{tag}[{attr}="{_quote(value)}"]'
            if _unique(doc, candidate):
                return candidate
    return _path_selector(doc, el)


def build_xpath(doc: DocumentTree, el: Any) -> str:
    """XPath for ``el``: a unique attribute predicate, else the absolute tree path."""
    for attr in ("id", "name", "aria-labelledby", "placeholder"):
        value = doc.get_attribute(el, attr)
        if value and '"' not in value:
            candidate = f'//*[@{attr}="{value}"]'
            if len(doc.query_xpath(candidate)) == 1:
                return candidate
    return doc.path_of(el)


# ── Visibility / editability ──────────────────────────────────────


def _hidden_by(doc: DocumentTree, node: Any) -> bool:
    if doc.get_attribute(node, "hidden") is not None:
        return True
    if (doc.get_attribute(node, "aria-hidden") or "").lower() == "true" and doc.tag_of(node) != "input":
        return True
    return bool(_HIDDEN_STYLE_RE.search(doc.get_attribute(node, "style") or ""))


def is_visible(doc: DocumentTree, el: Any) -> bool:
    if _control_type(doc, el) == "hidden":
        return False
    if _hidden_by(doc, el):
        return False
    return not any(_hidden_by(doc, a) for a in doc.ancestors(el))


def is_editable(doc: DocumentTree, el: Any) -> bool:
    if _control_type(doc, el) == "hidden":
        return False
    if doc.get_attribute(el, "disabled") is not None or doc.get_attribute(el, "readonly") is not None:
        return False
    if _READONLY_CLASS_RE.search(doc.get_attribute(el, "class") or ""):
        return False
    return not any(
        doc.tag_of(a) == "fieldset" and doc.get_attribute(a, "disabled") is not None for a in doc.ancestors(el)
    )


def _is_required(doc: DocumentTree, el: Any) -> bool:
    return doc.get_attribute(el, "required") is not None or (doc.get_attribute(el, "aria-required") or "") == "true"


# ── Field construction ────────────────────────────────────────────


def _select_options(doc: DocumentTree, el: Any) -> list[FieldOption]:
    options = []
    for opt in doc.query("option", within=el):
        text = sanitize_text(_clean(doc.text(opt)), max_len=100)
        value = doc.get_attribute(opt, "value")
        options.append(
            FieldOption(
                value=text if value is None else value,
                text=text,
                selected=doc.get_attribute(opt, "selected") is not None,
            )
        )
    return options


def _single_field(
    doc: DocumentTree,
    el: Any,
    field_id: str,
    source: FieldSource,
    iframe_path: str | None,
) -> FieldDescriptor:
    field_type = _control_type(doc, el)
    name = doc.get_attribute(el, "name") or ""
    original_id = doc.get_attribute(el, "id") or ""
    label = sanitize_text(resolve_label(doc, el))
    placeholder = sanitize_text(doc.get_attribute(el, "placeholder") or "")
    return FieldDescriptor(
        id=original_id or field_id,
        original_id=original_id,
        name=name,
        label=label,
        type=field_type,
        placeholder=placeholder,
        category=categorize_field(field_type, name, original_id, label, placeholder),
        required=_is_required(doc, el),
        visible=is_visible(doc, el),
        editable=is_editable(doc, el),
        selector=build_selector(doc, el),
        xpath=build_xpath(doc, el),
        source=source,
        iframe_path=iframe_path,
        options=_select_options(doc, el) if field_type == "select" else [],
    )


def group_locators(
    doc: DocumentTree,
    members: list[Any],
    field_type: str,
    name: str,
    scope: Any | None,
) -> tuple[str, str]:
    """Selector and XPath that match exactly the members of one group.

    A name shared with controls of another form is narrowed to ``scope`` (the
    owning form). Standalone groups exclude in-form members, which CSS cannot
    express, so they get an empty selector and rely on the XPath.
    """
    css = f'input[type="{field_type}"][name="{_quote(name)}"]'
    if '"' in name:
        return css, doc.path_of(members[0])
    xpath = f'//input[@type="{field_type}"][@name="{name}"]'
    if len(doc.query(css)) == len(members):
        return css, xpath
    if scope is None:
        return "", f"{xpath}[not(ancestor::form)]"
    return f"{build_selector(doc, scope)} {css}", build_xpath(doc, scope) + xpath


def _group_field(
    doc: DocumentTree,
    members: list[Any],
    field_type: str,
    name: str,
    field_id: str,
    source: FieldSource,
    iframe_path: str | None,
    scope: Any | None = None,
) -> FieldDescriptor:
    first = members[0]
    selector, xpath = group_locators(doc, members, field_type, name, scope)
    options = [
        FieldOption(
            value=doc.get_attribute(m, "value") or "on",
            text=sanitize_text(resolve_label(doc, m), max_len=100),
            selected=doc.get_attribute(m, "checked") is not None,
        )
        for m in members
    ]
    label = sanitize_text(_group_label(doc, first) or resolve_label(doc, first) or name)
    return FieldDescriptor(
        id=field_id,
        name=name,
        label=label,
        type=field_type,
        category=categorize_field(field_type, name, label),
        required=any(_is_required(doc, m) for m in members),
        visible=any(is_visible(doc, m) for m in members),
        editable=any(is_editable(doc, m) for m in members),
        selector=selector,
        xpath=xpath,
        source=source,
        iframe_path=iframe_path,
        options=options,
    )


def _collect_fields(
    doc: DocumentTree,
    controls: Iterable[Any],
    form_id: str,
    source: FieldSource,
    iframe_path: str | None,
    scope: Any | None = None,
) -> list[FieldDescriptor]:
    eligible = []
    for el in controls:
        field_type = _control_type(doc, el)
        if doc.tag_of(el) == "input" and field_type in SKIPPED_INPUT_TYPES:
            continue
        eligible.append((el, field_type))

    # Same-named radios/checkboxes become one field
    groups: dict[tuple[str, str], list[Any]] = {}
    for el, field_type in eligible:
        name = doc.get_attribute(el, "name") or ""
        if field_type in GROUPED_INPUT_TYPES and name:
            groups.setdefault((field_type, name), []).append(el)

    fields: list[FieldDescriptor] = []
    emitted_groups: set[tuple[str, str]] = set()
    for el, field_type in eligible:
        name = doc.get_attribute(el, "name") or ""
        key = (field_type, name)
        field_id = f"{form_id}_field_{len(fields)}"
        if key in groups and (field_type == "radio" or len(groups[key]) > 1):
            if key in emitted_groups:
                continue
            emitted_groups.add(key)
            fields.append(_group_field(doc, groups[key], field_type, name, field_id, source, iframe_path, scope))
            continue
        fields.append(_single_field(doc, el, field_id, source, iframe_path))
    return fields


def _form_description(doc: DocumentTree, form_el: Any) -> str:
    for selector in ("legend", "h1, h2, h3, h4, h5, h6"):
        found = doc.query(selector, within=form_el)
        if found:
            return sanitize_text(_clean(doc.text(found[0])))
    return sanitize_text(doc.get_attribute(form_el, "aria-label") or doc.get_attribute(form_el, "title") or "")


def _inside_form(doc: DocumentTree, el: Any) -> bool:
    return any(doc.tag_of(a) == "form" for a in doc.ancestors(el))


def discover_in_document(
    doc: DocumentTree,
    source: FieldSource = "main",
    iframe_path: str | None = None,
) -> list[FormDescriptor]:
    """Forms of one document, plus a standalone descriptor for loose controls."""
    suffix = f"_{iframe_path}" if iframe_path else ""
    forms: list[FormDescriptor] = []

    for i, form_el in enumerate(doc.query("form")):
        form_id = doc.get_attribute(form_el, "id") or f"{source}_form_{i}{suffix}"
        fields = _collect_fields(
            doc, doc.query(FIELD_SELECTOR, within=form_el), form_id, source, iframe_path, scope=form_el
        )
        if not fields:
            continue
        forms.append(
            FormDescriptor(
                id=form_id,
                source=source,
                iframe_path=iframe_path,
                fields=fields,
                name=doc.get_attribute(form_el, "name") or "",
                action=doc.get_attribute(form_el, "action") or "",
                method=(doc.get_attribute(form_el, "method") or "get").lower(),
                description=_form_description(doc, form_el),
            )
        )

    loose = [el for el in doc.query(FIELD_SELECTOR) if not _inside_form(doc, el)]
    if loose:
        standalone_id = f"standalone_fields_{source}{suffix}"
        fields = _collect_fields(doc, loose, standalone_id, source, iframe_path)
        if fields:
            forms.append(
                FormDescriptor(
                    id=standalone_id,
                    source=source,
                    iframe_path=iframe_path,
                    fields=fields,
                    name="Standalone fields",
                    kind="standalone",
                )
            )
    return forms


def discover_forms(
    main: DocumentTree,
    frames: Sequence[tuple[FrameNode, DocumentTree]] = (),
) -> list[FormDescriptor]:
    """Forms of the main document followed by those of each accessible frame."""
    forms = discover_in_document(main, "main")
    for node, doc in frames:
        if not node.accessible:
            continue
        forms.extend(discover_in_document(doc, "iframe", node.index_path))
    logger.debug(
        "Discovered %d forms with %d fields (%d frames scanned)",
        len(forms),
        sum(len(f.fields) for f in forms),
        len(frames),
    )
    return forms


def summarize_forms(forms: Sequence[FormDescriptor], page_url: str = "", page_title: str = "") -> FormSummary:
    """Eligible-only summary: invisible, read-only and hidden fields are left out."""
    eligible_forms = []
    categories: dict[str, int] = {}
    for form in forms:
        fields = form.eligible_fields
        if not fields:
            continue
        eligible_forms.append(replace(form, fields=fields))
        for f in fields:
            categories[f.category] = categories.get(f.category, 0) + 1
    return FormSummary(
        total_forms=len(eligible_forms),
        total_fields=sum(len(f.fields) for f in eligible_forms),
        categories=categories,
        page_url=page_url,
        page_title=page_title,
        forms=eligible_forms,
    )


def detection_summary(forms: Sequence[FormDescriptor]) -> dict[str, int]:
    """Counts for logs and the CLI."""
    fields = [f for form in forms for f in form.fields]
    return {
        "totalForms": len(forms),
        "totalFields": len(fields),
        "visibleFields": sum(1 for f in fields if f.visible),
        "editableFields": sum(1 for f in fields if f.editable),
        "eligibleFields": sum(1 for f in fields if f.eligible),
        "mainForms": sum(1 for f in forms if f.source == "main"),
        "iframeForms": sum(1 for f in forms if f.source == "iframe"),
    }
