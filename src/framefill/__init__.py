# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""framefill: multi-frame page extraction and two-stage form filling.

Walks every reachable frame of a page, merges frame content back into the
host document, cleans it for analysis, and discovers fillable forms across
frame boundaries so they can be populated from free-text user content:
- frames + merger: one coherent document with provenance markers
- cleaning + stats: main content, markdown rendering, size/word metrics
- forms + pipeline: detect -> relevance -> field mapping -> fill
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

FrameStatus = Literal["matched", "additional", "unavailable"]
FieldSource = Literal["main", "iframe"]


@dataclass(slots=True)
class FrameContent:
    """Content read from one frame."""

    html: str
    title: str = ""
    url: str = ""
    domain: str = ""


@dataclass(slots=True)
class FrameNode:
    """One frame reached by the walker."""

    index_path: str  # dot-separated sibling indices, e.g. "0.1"
    depth: int  # 0 for top-level frames
    src: str = ""
    name: str = ""
    accessible: bool = False
    content: FrameContent | None = None
    error: str | None = None

    @property
    def has_content(self) -> bool:
        return self.content is not None and bool(self.content.html)

    @property
    def parent_path(self) -> str | None:
        head, sep, _ = self.index_path.rpartition(".")
        return head if sep else None


@dataclass(slots=True)
class ProcessedFrameRecord:
    """What the merger did with one frame."""

    index_path: str
    src: str
    name: str
    status: FrameStatus
    size: int = 0
    error_reason: str | None = None


@dataclass
class MergedDocument:
    """Host document with frame content substituted in place."""

    html: str
    processed_frames: list[ProcessedFrameRecord] = field(default_factory=list)

    def _with_status(self, status: FrameStatus) -> list[ProcessedFrameRecord]:
        return [r for r in self.processed_frames if r.status == status]

    @property
    def matched(self) -> list[ProcessedFrameRecord]:
        return self._with_status("matched")

    @property
    def additional(self) -> list[ProcessedFrameRecord]:
        return self._with_status("additional")

    @property
    def unavailable(self) -> list[ProcessedFrameRecord]:
        return self._with_status("unavailable")

    @property
    def merged_size(self) -> int:
        """Total frame bytes carried into the document (matched + additional)."""
        return sum(r.size for r in self.processed_frames if r.status != "unavailable")


@dataclass(frozen=True, slots=True)
class StructureSignals:
    tables: int = 0
    forms: int = 0
    lists: int = 0
    headers: int = 0
    links: int = 0
    images: int = 0

    @property
    def has_structured_data(self) -> bool:
        return self.tables > 0 or self.forms > 0 or self.lists > 2


@dataclass(frozen=True, slots=True)
class ContentStats:
    """Size, ratio and reading metrics for one extraction."""

    original_size: int
    main_page_size: int
    iframe_content_size: int
    cleaned_size: int
    markdown_size: int
    compression_ratios: dict[str, str]  # {"cleaned": "42.0%", "markdown": "80.3%"}
    word_count: int
    reading_time: str
    chunk_count: int
    size_breakdown: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FieldOption:
    value: str
    text: str = ""
    selected: bool = False


@dataclass
class FieldDescriptor:
    """A single fillable control discovered on the page or inside a frame."""

    id: str
    name: str = ""
    label: str = ""
    type: str = "text"  # input type, "textarea", "select", "radio", "checkbox"
    original_id: str = ""
    placeholder: str = ""
    category: str = "text"
    required: bool = False
    visible: bool = True
    editable: bool = True
    selector: str = ""
    xpath: str = ""
    source: FieldSource = "main"
    iframe_path: str | None = None
    options: list[FieldOption] = field(default_factory=list)

    @property
    def eligible(self) -> bool:
        """Only visible, editable, non-hidden fields are offered for mapping."""
        return self.visible and self.editable and self.type != "hidden"


@dataclass
class FormDescriptor:
    """A form (or the loose fields of one document) with its fields."""

    id: str
    source: FieldSource = "main"
    iframe_path: str | None = None
    fields: list[FieldDescriptor] = field(default_factory=list)
    name: str = ""
    action: str = ""
    method: str = ""
    description: str = ""
    kind: Literal["form", "standalone"] = "form"

    @property
    def eligible_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.eligible]

    def field_by_id(self, field_id: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None


@dataclass
class FormSummary:
    """Eligible-only view of the detected forms, handed to the collaborator."""

    total_forms: int
    total_fields: int
    categories: dict[str, int]
    page_url: str = ""
    page_title: str = ""
    forms: list[FormDescriptor] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RelevanceResult:
    """Stage-1 output: which form the user content belongs to."""

    success: bool
    selected_form: FormDescriptor | None = None
    rationale: str = ""
    confidence: float | None = None


@dataclass(frozen=True, slots=True)
class FieldMapping:
    field_id: str
    value: str


@dataclass(frozen=True, slots=True)
class MappingResult:
    """Stage-2 output: values for fields of the selected form."""

    success: bool
    mappings: tuple[FieldMapping, ...] = ()
    confidence: float | None = None
    relevance: RelevanceResult | None = None  # stage-1 result, unmodified


@dataclass(frozen=True, slots=True)
class FillOptions:
    backup: bool = True
    validate: bool = True
    highlight: bool = True


@dataclass(slots=True)
class FieldFill:
    """One fill instruction: the target field and the value to write."""

    field_id: str
    value: str
    field: FieldDescriptor | None = None


@dataclass(slots=True)
class FillOutcome:
    field_id: str
    applied: bool
    backup_value: str | None = None
    applied_value: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.applied and self.error is None


@dataclass
class FillReport:
    """Per-field results of one fill run."""

    outcomes: list[FillOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> list[FillOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def applied_count(self) -> int:
        return sum(1 for o in self.outcomes if o.applied)
