# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Two-stage analysis pipeline: detect -> relevance -> field mapping -> fill.

``FormFillSession`` is a small state machine over one page. Each stage
either commits (advancing ``state``) or raises a ``StageError`` subclass and
leaves every earlier result untouched, so the caller retries by calling the
same method again.

Stages are serialised by a lock. ``detect()`` bumps a generation counter
before it queues for the lock; a later stage that started under an older
generation refuses to commit and raises ``StaleSessionError``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import StrEnum

import structlog

from . import FieldFill, FillOptions, FillReport, FormDescriptor, FormSummary, MappingResult, RelevanceResult
from .channel import ACTION_DETECT_FORMS, ACTION_EXTRACT_HTML, ACTION_FILL_FORMS, RequestChannel
from .cleaning.cleaner import clean_html
from .config import Settings
from .errors import (
    AnalysisError,
    DetectionError,
    FillStageError,
    FrameFillError,
    MappingError,
    StageError,
    StageOrderError,
    StaleSessionError,
)
from .forms.discovery import summarize_forms
from .frames.walker import walk_budget
from .reasoning import ReasoningCollaborator
from .serializer import fill_options_to_dict, form_from_dict, form_to_dict, report_from_dict

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    FORMS_DETECTED = "forms_detected"
    CONTENT_ANALYZED = "content_analyzed"
    FIELDS_MAPPED = "fields_mapped"
    FILLED = "filled"
    FAILED_AT_FORMS_DETECTED = "failed_at_forms_detected"
    FAILED_AT_CONTENT_ANALYZED = "failed_at_content_analyzed"
    FAILED_AT_FIELDS_MAPPED = "failed_at_fields_mapped"
    FAILED_AT_FILLED = "failed_at_filled"


_FAILED_STATUS: dict[type[StageError], PipelineState] = {
    DetectionError: PipelineState.FAILED_AT_FORMS_DETECTED,
    AnalysisError: PipelineState.FAILED_AT_CONTENT_ANALYZED,
    MappingError: PipelineState.FAILED_AT_FIELDS_MAPPED,
    FillStageError: PipelineState.FAILED_AT_FILLED,
}

_ORDER = (
    PipelineState.IDLE,
    PipelineState.FORMS_DETECTED,
    PipelineState.CONTENT_ANALYZED,
    PipelineState.FIELDS_MAPPED,
    PipelineState.FILLED,
)


class FormFillSession:
    """Drive one page through detect, analyze, map_fields and fill."""

    def __init__(
        self,
        channel: RequestChannel,
        collaborator: ReasoningCollaborator,
        settings: Settings | None = None,
    ) -> None:
        self._channel = channel
        self._collaborator = collaborator
        self._settings = settings or Settings()
        self.session_id = uuid.uuid4().hex[:12]

        self.state = PipelineState.IDLE
        self.status = PipelineState.IDLE
        self.last_error: StageError | None = None

        self.forms: list[FormDescriptor] = []
        self.page_url = ""
        self.page_title = ""
        self.summary: FormSummary | None = None
        self.relevance: RelevanceResult | None = None
        self.mapping: MappingResult | None = None
        self.report: FillReport | None = None

        self._lock = asyncio.Lock()
        self._generation = 0

    # ── Helpers ────────────────────────────────────────────────────

    def _require(self, minimum: PipelineState, stage: str) -> None:
        if _ORDER.index(self.state) < _ORDER.index(minimum):
            raise StageOrderError(f"{stage} needs state {minimum}, session is at {self.state}")

    def _fail(self, error_cls: type[StageError], reason: object) -> StageError:
        error = error_cls(str(reason) or type(reason).__name__)
        self.status = _FAILED_STATUS[error_cls]
        self.last_error = error
        logger.warning("%s (state stays %s)", error, self.state)
        return error

    def _check_generation(self, generation: int, stage: str) -> None:
        if generation != self._generation:
            raise StaleSessionError(f"{stage} superseded by a newer detect()")

    def _commit(self, state: PipelineState) -> None:
        self.state = state
        self.status = state
        self.last_error = None
        logger.info("Session advanced to %s", state)

    def _bind(self, stage: str):
        return structlog.contextvars.bound_contextvars(session=self.session_id, stage=stage)

    # ── Stages ─────────────────────────────────────────────────────

    async def detect(self, *, refresh: bool = True) -> list[FormDescriptor]:
        """Discover forms on the page and reset every later stage."""
        self._generation += 1
        generation = self._generation
        async with self._lock:
            with self._bind("detect"):
                self._check_generation(generation, "detect")
                try:
                    data = await self._channel.request(
                        ACTION_DETECT_FORMS,
                        {"refresh": refresh, "budget": walk_budget(self._settings.channel_timeout)},
                        timeout=self._settings.channel_timeout,
                    )
                    forms = [form_from_dict(f) for f in data.get("forms") or []]
                except (FrameFillError, KeyError, TypeError, ValueError) as exc:
                    raise self._fail(DetectionError, exc) from exc
                self._check_generation(generation, "detect")

                self.forms = forms
                self.page_url = data.get("url", "")
                self.page_title = data.get("title", "")
                self.summary = summarize_forms(forms, self.page_url, self.page_title)
                self.relevance = None
                self.mapping = None
                self.report = None
                self._commit(PipelineState.FORMS_DETECTED)
                logger.info(
                    "Detected %d forms (%d eligible fields)",
                    len(forms),
                    self.summary.total_fields,
                )
                return list(forms)

    async def _page_html(self) -> str:
        """Cleaned page HTML for stage 1; empty when it cannot be obtained."""
        try:
            data = await self._channel.request(ACTION_EXTRACT_HTML, timeout=self._settings.channel_timeout)
            return clean_html(data.get("html", ""), min_chars=self._settings.main_content_min_chars).html
        except FrameFillError as exc:
            logger.debug("Page HTML unavailable for analysis: %s", exc)
            return ""

    async def analyze(self, content: str, *, model: str | None = None) -> RelevanceResult:
        """Stage 1: ask the collaborator which detected form the content belongs to."""
        generation = self._generation
        async with self._lock:
            with self._bind("analyze"):
                self._check_generation(generation, "analyze")
                self._require(PipelineState.FORMS_DETECTED, "analyze")
                summary = self.summary or summarize_forms(self.forms, self.page_url, self.page_title)
                if not summary.forms:
                    raise self._fail(AnalysisError, "no eligible forms detected")
                if not content.strip():
                    raise self._fail(AnalysisError, "content is empty")

                page_html = await self._page_html()
                try:
                    result = await self._collaborator.analyze_relevance(
                        content=content,
                        summary=summary,
                        page_html=page_html,
                        model=model or self._settings.model,
                    )
                except FrameFillError as exc:
                    raise self._fail(AnalysisError, exc) from exc
                self._check_generation(generation, "analyze")

                if not result.success:
                    raise self._fail(AnalysisError, result.rationale or "collaborator reported failure")
                selected = result.selected_form
                if selected is None:
                    raise self._fail(AnalysisError, "no form selected")
                if not any(f.id == selected.id for f in self.forms):
                    raise self._fail(AnalysisError, f"selected form {selected.id!r} was not detected")

                self.relevance = result
                self.mapping = None
                self.report = None
                self._commit(PipelineState.CONTENT_ANALYZED)
                return result

    async def map_fields(
        self,
        content: str,
        *,
        model: str | None = None,
        language: str | None = None,
    ) -> MappingResult:
        """Stage 2: map the content onto fields of the selected form."""
        generation = self._generation
        async with self._lock:
            with self._bind("map_fields"):
                self._check_generation(generation, "map_fields")
                self._require(PipelineState.CONTENT_ANALYZED, "map_fields")
                prior = self.relevance
                selected = prior.selected_form
                try:
                    result = await self._collaborator.analyze_field_mapping(
                        content=content,
                        selected_form=selected,
                        model=model or self._settings.model,
                        language=language or self._settings.language,
                        prior=prior,
                    )
                except FrameFillError as exc:
                    raise self._fail(MappingError, exc) from exc
                self._check_generation(generation, "map_fields")

                if not result.success:
                    raise self._fail(MappingError, "collaborator reported failure")
                if not result.mappings:
                    raise self._fail(MappingError, "no field mappings returned")
                if result.relevance is not prior:
                    # carry stage 1 through untouched whatever the collaborator returned
                    result = MappingResult(
                        success=result.success,
                        mappings=result.mappings,
                        confidence=result.confidence,
                        relevance=prior,
                    )

                self.mapping = result
                self.report = None
                self._commit(PipelineState.FIELDS_MAPPED)
                return result

    def fill_instructions(self) -> list[FieldFill]:
        """Turn the current mapping into filler instructions against the selected form."""
        if self.mapping is None or self.relevance is None or self.relevance.selected_form is None:
            return []
        form = self.relevance.selected_form
        return [FieldFill(m.field_id, m.value, form.field_by_id(m.field_id)) for m in self.mapping.mappings]

    async def fill(self, options: FillOptions | None = None) -> FillReport:
        """Send the mapped values to the page. Per-field failures are in the report."""
        generation = self._generation
        async with self._lock:
            with self._bind("fill"):
                self._check_generation(generation, "fill")
                self._require(PipelineState.FIELDS_MAPPED, "fill")
                opts = options or FillOptions()
                payload = {
                    "form": form_to_dict(self.relevance.selected_form),
                    "mappings": [{"fieldId": f.field_id, "value": f.value} for f in self.fill_instructions()],
                    "options": fill_options_to_dict(opts),
                }
                try:
                    data = await self._channel.request(
                        ACTION_FILL_FORMS,
                        payload,
                        timeout=self._settings.channel_timeout,
                    )
                    report = report_from_dict(data)
                except (FrameFillError, KeyError, TypeError) as exc:
                    raise self._fail(FillStageError, exc) from exc
                self._check_generation(generation, "fill")

                self.report = report
                self._commit(PipelineState.FILLED)
                if report.failures:
                    logger.warning(
                        "%d of %d fields not filled cleanly",
                        len(report.failures),
                        len(report.outcomes),
                    )
                return report

    async def run(
        self,
        content: str,
        *,
        model: str | None = None,
        language: str | None = None,
        options: FillOptions | None = None,
    ) -> FillReport:
        """All four stages in order."""
        await self.detect()
        await self.analyze(content, model=model)
        await self.map_fields(content, model=model, language=language)
        return await self.fill(options)
