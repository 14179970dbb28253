# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Wire serialization: dataclasses <-> camelCase JSON objects.

The same shapes are used on the request channel, in reasoning-service
payloads and in CLI JSON output.
"""

from __future__ import annotations

import json
from typing import Any

from . import (
    ContentStats,
    FieldDescriptor,
    FieldOption,
    FillOptions,
    FillOutcome,
    FillReport,
    FormDescriptor,
    FormSummary,
    FrameContent,
    FrameNode,
    MappingResult,
    MergedDocument,
    ProcessedFrameRecord,
    RelevanceResult,
    StructureSignals,
)


def dumps(data: Any, indent: int | None = 2) -> str:
    return json.dumps(data, ensure_ascii=False, indent=indent)


# ── Frames ────────────────────────────────────────────────────────


def frame_node_to_dict(node: FrameNode, *, include_html: bool = True) -> dict[str, Any]:
    content = None
    if node.content is not None:
        content = {
            "title": node.content.title,
            "url": node.content.url,
            "domain": node.content.domain,
            **({"html": node.content.html} if include_html else {"size": len(node.content.html)}),
        }
    return {
        "indexPath": node.index_path,
        "depth": node.depth,
        "src": node.src,
        "name": node.name,
        "accessible": node.accessible,
        "content": content,
        "error": node.error,
    }


def frame_node_from_dict(data: dict[str, Any]) -> FrameNode:
    raw = data.get("content")
    content = None
    if isinstance(raw, dict):
        content = FrameContent(
            html=raw.get("html", ""),
            title=raw.get("title", ""),
            url=raw.get("url", ""),
            domain=raw.get("domain", ""),
        )
    return FrameNode(
        index_path=str(data["indexPath"]),
        depth=int(data.get("depth", 0)),
        src=data.get("src", ""),
        name=data.get("name", ""),
        accessible=bool(data.get("accessible", False)),
        content=content,
        error=data.get("error"),
    )


def frame_record_to_dict(record: ProcessedFrameRecord) -> dict[str, Any]:
    return {
        "indexPath": record.index_path,
        "src": record.src,
        "name": record.name,
        "status": record.status,
        "size": record.size,
        **({"errorReason": record.error_reason} if record.error_reason else {}),
    }


def merged_to_dict(merged: MergedDocument, *, include_html: bool = False) -> dict[str, Any]:
    return {
        **({"html": merged.html} if include_html else {}),
        "processedFrames": [frame_record_to_dict(r) for r in merged.processed_frames],
        "counts": {
            "matched": len(merged.matched),
            "additional": len(merged.additional),
            "unavailable": len(merged.unavailable),
        },
    }


def structure_to_dict(structure: StructureSignals) -> dict[str, Any]:
    return {
        "tables": structure.tables,
        "forms": structure.forms,
        "lists": structure.lists,
        "headers": structure.headers,
        "links": structure.links,
        "images": structure.images,
        "hasStructuredData": structure.has_structured_data,
    }


def stats_to_dict(stats: ContentStats) -> dict[str, Any]:
    return {
        "originalSize": stats.original_size,
        "mainPageSize": stats.main_page_size,
        "iframeContentSize": stats.iframe_content_size,
        "cleanedSize": stats.cleaned_size,
        "markdownSize": stats.markdown_size,
        "compressionRatios": dict(stats.compression_ratios),
        "wordCount": stats.word_count,
        "readingTime": stats.reading_time,
        "chunkCount": stats.chunk_count,
        "sizeBreakdown": dict(stats.size_breakdown),
    }


# ── Forms ─────────────────────────────────────────────────────────


def field_to_dict(field: FieldDescriptor) -> dict[str, Any]:
    return {
        "id": field.id,
        "originalId": field.original_id,
        "name": field.name,
        "label": field.label,
        "type": field.type,
        "placeholder": field.placeholder,
        "category": field.category,
        "required": field.required,
        "visible": field.visible,
        "editable": field.editable,
        "selector": field.selector,
        "xpath": field.xpath,
        "source": field.source,
        **({"iframePath": field.iframe_path} if field.iframe_path else {}),
        **(
            {"options": [{"value": o.value, "text": o.text, "selected": o.selected} for o in field.options]}
            if field.options
            else {}
        ),
    }


def field_from_dict(data: dict[str, Any]) -> FieldDescriptor:
    return FieldDescriptor(
        id=data["id"],
        original_id=data.get("originalId", ""),
        name=data.get("name", ""),
        label=data.get("label", ""),
        type=data.get("type", "text"),
        placeholder=data.get("placeholder", ""),
        category=data.get("category", "text"),
        required=bool(data.get("required", False)),
        visible=bool(data.get("visible", True)),
        editable=bool(data.get("editable", True)),
        selector=data.get("selector", ""),
        xpath=data.get("xpath", ""),
        source=data.get("source", "main"),
        iframe_path=data.get("iframePath"),
        options=[
            FieldOption(value=o.get("value", ""), text=o.get("text", ""), selected=bool(o.get("selected", False)))
            for o in data.get("options") or []
        ],
    )


def form_to_dict(form: FormDescriptor) -> dict[str, Any]:
    return {
        "id": form.id,
        "kind": form.kind,
        "source": form.source,
        **({"iframePath": form.iframe_path} if form.iframe_path else {}),
        "name": form.name,
        "action": form.action,
        "method": form.method,
        "description": form.description,
        "fields": [field_to_dict(f) for f in form.fields],
    }


def form_from_dict(data: dict[str, Any]) -> FormDescriptor:
    return FormDescriptor(
        id=data["id"],
        source=data.get("source", "main"),
        iframe_path=data.get("iframePath"),
        fields=[field_from_dict(f) for f in data.get("fields") or []],
        name=data.get("name", ""),
        action=data.get("action", ""),
        method=data.get("method", ""),
        description=data.get("description", ""),
        kind=data.get("kind", "form"),
    )


def summary_to_dict(summary: FormSummary) -> dict[str, Any]:
    return {
        "totalForms": summary.total_forms,
        "totalFields": summary.total_fields,
        "categories": dict(summary.categories),
        "pageUrl": summary.page_url,
        "pageTitle": summary.page_title,
    }


# ── Pipeline results ──────────────────────────────────────────────


def relevance_to_dict(result: RelevanceResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "selectedForm": form_to_dict(result.selected_form) if result.selected_form else None,
        "rationale": result.rationale,
        "confidence": result.confidence,
    }


def mapping_to_dict(result: MappingResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "mappings": [{"fieldId": m.field_id, "value": m.value} for m in result.mappings],
        "confidence": result.confidence,
    }


def fill_options_to_dict(options: FillOptions) -> dict[str, bool]:
    return {"backup": options.backup, "validate": options.validate, "highlight": options.highlight}


def fill_options_from_dict(data: dict[str, Any] | None) -> FillOptions:
    data = data or {}
    return FillOptions(
        backup=bool(data.get("backup", True)),
        validate=bool(data.get("validate", True)),
        highlight=bool(data.get("highlight", True)),
    )


def outcome_to_dict(outcome: FillOutcome) -> dict[str, Any]:
    return {
        "fieldId": outcome.field_id,
        "applied": outcome.applied,
        "backupValue": outcome.backup_value,
        **({"appliedValue": outcome.applied_value} if outcome.applied_value is not None else {}),
        **({"error": outcome.error} if outcome.error else {}),
    }


def report_to_dict(report: FillReport) -> dict[str, Any]:
    return {
        "success": report.success,
        "outcomes": [outcome_to_dict(o) for o in report.outcomes],
    }


def report_from_dict(data: dict[str, Any]) -> FillReport:
    return FillReport(
        outcomes=[
            FillOutcome(
                field_id=o["fieldId"],
                applied=bool(o.get("applied", False)),
                backup_value=o.get("backupValue"),
                applied_value=o.get("appliedValue"),
                error=o.get("error"),
            )
            for o in data.get("outcomes") or []
        ]
    )
