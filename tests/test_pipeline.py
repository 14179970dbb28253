# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for framefill.pipeline.FormFillSession: stage ordering and failure isolation."""

from __future__ import annotations

import asyncio

import pytest

from framefill import FieldMapping, FillOptions, FormDescriptor, MappingResult, RelevanceResult
from framefill.agent import PageAgent
from framefill.channel import ACTION_DETECT_FORMS, ACTION_FILL_FORMS, LocalTransport, RequestChannel
from framefill.config import Settings
from framefill.errors import (
    AnalysisError,
    DetectionError,
    FillStageError,
    MappingError,
    ReasoningError,
    StageOrderError,
    StaleSessionError,
)
from framefill.frames.sources import StaticFrameSource
from framefill.pipeline import FormFillSession, PipelineState

CONTENT = "Please book Meeting Room B for Jane Doe, afternoon slot. We need parking."

DEFAULT_MAPPINGS = {"full-name": "Jane Doe", "room": "Meeting Room B", "booking-form_field_3": "pm"}


class FakeCollaborator:
    """Answers both stages from canned data and records what it was sent."""

    def __init__(
        self,
        *,
        form_id: str | None = "booking-form",
        mappings: dict[str, str] | None = None,
        relevance_success: bool = True,
        mapping_success: bool = True,
        raise_on: str | None = None,
    ) -> None:
        self.form_id = form_id
        self.mappings = DEFAULT_MAPPINGS if mappings is None else mappings
        self.relevance_success = relevance_success
        self.mapping_success = mapping_success
        self.raise_on = raise_on
        self.relevance_calls: list[dict] = []
        self.mapping_calls: list[dict] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def analyze_relevance(self, *, content, summary, page_html, model):
        self.relevance_calls.append({"content": content, "summary": summary, "page_html": page_html, "model": model})
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_on == "relevance":
            raise ReasoningError("service unavailable")
        selected = next((f for f in summary.forms if f.id == self.form_id), None)
        if selected is None and self.form_id is not None:
            # the collaborator picked something the page never had
            selected = FormDescriptor(id=self.form_id)
        return RelevanceResult(
            success=self.relevance_success,
            selected_form=selected,
            rationale="booking request" if self.relevance_success else "content is unrelated to any form",
            confidence=0.9,
        )

    async def analyze_field_mapping(self, *, content, selected_form, model, language, prior):
        self.mapping_calls.append({"selected_form": selected_form, "language": language, "prior": prior})
        if self.raise_on == "mapping":
            raise ReasoningError("timeout")
        return MappingResult(
            success=self.mapping_success,
            mappings=tuple(FieldMapping(k, v) for k, v in self.mappings.items()),
            confidence=0.8,
        )


class FlakyPage:
    """Wraps a PageAgent and fails chosen actions on demand."""

    def __init__(self, agent: PageAgent) -> None:
        self.agent = agent
        self.failing: set[str] = set()

    async def handle(self, action, payload):
        if action in self.failing:
            return {"success": False, "error": "page navigated away"}
        return await self.agent.handle(action, payload)


@pytest.fixture
async def make_session():
    transports = []

    def make(handler, collaborator: FakeCollaborator | None = None):
        transport = LocalTransport(handler)
        transports.append(transport)
        channel = RequestChannel(transport, timeout=2.0)
        return FormFillSession(channel, collaborator or FakeCollaborator(), Settings(channel_timeout=2.0))

    yield make
    for transport in transports:
        await transport.aclose()


@pytest.fixture
def flaky(agent) -> FlakyPage:
    return FlakyPage(agent)


# ── Happy path ────────────────────────────────────────────────────


class TestRun:
    async def test_full_run(self, make_session, agent):
        session = make_session(agent.handle)
        report = await session.run(CONTENT)
        assert report.success
        assert session.state == PipelineState.FILLED
        assert session.status == PipelineState.FILLED
        assert len(report.outcomes) == 3
        frame_html = agent.snapshot()["frames"]["0"]
        assert 'value="Jane Doe"' in frame_html

    async def test_stages_advance_state(self, make_session, agent):
        session = make_session(agent.handle)
        assert session.state == PipelineState.IDLE
        forms = await session.detect()
        assert [f.id for f in forms] == ["newsletter", "booking-form"]
        assert session.page_title == "Contact"
        assert session.state == PipelineState.FORMS_DETECTED
        relevance = await session.analyze(CONTENT)
        assert relevance.selected_form.id == "booking-form"
        assert session.state == PipelineState.CONTENT_ANALYZED
        mapping = await session.map_fields(CONTENT, language="ko")
        assert session.state == PipelineState.FIELDS_MAPPED
        assert len(mapping.mappings) == 3

    async def test_stage_one_inputs(self, make_session, agent):
        collaborator = FakeCollaborator()
        session = make_session(agent.handle, collaborator)
        await session.detect()
        await session.analyze(CONTENT, model="small-model")
        [call] = collaborator.relevance_calls
        assert call["model"] == "small-model"
        assert call["summary"].total_forms == 2
        assert "Contact us" in call["page_html"]
        assert "<script" not in call["page_html"]

    async def test_stage_two_gets_stage_one_result(self, make_session, agent):
        collaborator = FakeCollaborator()
        session = make_session(agent.handle, collaborator)
        await session.detect()
        relevance = await session.analyze(CONTENT)
        mapping = await session.map_fields(CONTENT)
        [call] = collaborator.mapping_calls
        assert call["prior"] is relevance
        assert call["selected_form"].id == "booking-form"
        assert call["language"] == "en"
        assert mapping.relevance is relevance

    async def test_fill_options_forwarded(self, make_session, agent):
        session = make_session(agent.handle)
        await session.run(CONTENT, options=FillOptions(highlight=False))
        assert "data-framefill-highlight" not in agent.snapshot()["frames"]["0"]

    async def test_fill_instructions(self, make_session, agent):
        session = make_session(agent.handle)
        assert session.fill_instructions() == []
        await session.detect()
        await session.analyze(CONTENT)
        await session.map_fields(CONTENT)
        instructions = {i.field_id: i for i in session.fill_instructions()}
        assert instructions["room"].field.type == "select"
        assert instructions["room"].value == "Meeting Room B"

    async def test_partial_fill_is_reported(self, make_session, agent):
        collaborator = FakeCollaborator(mappings={"full-name": "Jane", "ghost": "x"})
        session = make_session(agent.handle, collaborator)
        report = await session.run(CONTENT)
        assert session.state == PipelineState.FILLED
        assert not report.success
        assert [o.field_id for o in report.failures] == ["ghost"]
        assert 'value="Jane"' in agent.snapshot()["frames"]["0"]


# ── Ordering ──────────────────────────────────────────────────────


class TestStageOrder:
    async def test_analyze_before_detect(self, make_session, agent):
        session = make_session(agent.handle)
        with pytest.raises(StageOrderError):
            await session.analyze(CONTENT)
        assert session.state == PipelineState.IDLE
        assert session.status == PipelineState.IDLE

    async def test_map_before_analyze(self, make_session, agent):
        session = make_session(agent.handle)
        await session.detect()
        with pytest.raises(StageOrderError):
            await session.map_fields(CONTENT)
        assert session.state == PipelineState.FORMS_DETECTED

    async def test_fill_before_mapping(self, make_session, agent):
        session = make_session(agent.handle)
        await session.detect()
        await session.analyze(CONTENT)
        with pytest.raises(StageOrderError):
            await session.fill()

    async def test_detect_resets_later_stages(self, make_session, agent):
        session = make_session(agent.handle)
        await session.run(CONTENT)
        await session.detect()
        assert session.state == PipelineState.FORMS_DETECTED
        assert session.relevance is None
        assert session.mapping is None
        assert session.report is None
        with pytest.raises(StageOrderError):
            await session.fill()

    async def test_reanalyze_clears_mapping(self, make_session, agent):
        session = make_session(agent.handle)
        await session.detect()
        await session.analyze(CONTENT)
        await session.map_fields(CONTENT)
        await session.analyze(CONTENT)
        assert session.state == PipelineState.CONTENT_ANALYZED
        assert session.mapping is None


# ── Failures ──────────────────────────────────────────────────────


class TestStageOneFailure:
    async def test_unsuccessful_relevance(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(relevance_success=False))
        await session.detect()
        with pytest.raises(AnalysisError, match="^Stage 1 failed: content is unrelated to any form$"):
            await session.analyze(CONTENT)
        assert session.state == PipelineState.FORMS_DETECTED
        assert session.status == PipelineState.FAILED_AT_CONTENT_ANALYZED
        assert isinstance(session.last_error, AnalysisError)
        assert len(session.forms) == 2
        assert session.relevance is None

    async def test_retry_after_failure(self, make_session, agent):
        collaborator = FakeCollaborator(relevance_success=False)
        session = make_session(agent.handle, collaborator)
        await session.detect()
        with pytest.raises(AnalysisError):
            await session.analyze(CONTENT)
        collaborator.relevance_success = True
        await session.analyze(CONTENT)
        assert session.status == PipelineState.CONTENT_ANALYZED
        assert session.last_error is None

    async def test_collaborator_error(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(raise_on="relevance"))
        await session.detect()
        with pytest.raises(AnalysisError, match="service unavailable"):
            await session.analyze(CONTENT)

    async def test_unknown_form_selected(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(form_id="signup"))
        await session.detect()
        with pytest.raises(AnalysisError, match="'signup' was not detected"):
            await session.analyze(CONTENT)

    async def test_no_form_selected(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(form_id=None))
        await session.detect()
        with pytest.raises(AnalysisError, match="no form selected"):
            await session.analyze(CONTENT)

    async def test_empty_content(self, make_session, agent):
        collaborator = FakeCollaborator()
        session = make_session(agent.handle, collaborator)
        await session.detect()
        with pytest.raises(AnalysisError, match="content is empty"):
            await session.analyze("   ")
        assert collaborator.relevance_calls == []

    async def test_page_without_forms(self, make_session, walker):
        agent = PageAgent(StaticFrameSource("<html><body><p>Nothing to fill</p></body></html>"), walker)
        session = make_session(agent.handle)
        assert await session.detect() == []
        with pytest.raises(AnalysisError, match="no eligible forms"):
            await session.analyze(CONTENT)


class TestStageTwoFailure:
    async def test_empty_mappings(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(mappings={}))
        await session.detect()
        relevance = await session.analyze(CONTENT)
        with pytest.raises(MappingError, match="^Stage 2 failed: no field mappings returned$"):
            await session.map_fields(CONTENT)
        assert session.state == PipelineState.CONTENT_ANALYZED
        assert session.status == PipelineState.FAILED_AT_FIELDS_MAPPED
        assert session.relevance is relevance

    async def test_unsuccessful_mapping(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(mapping_success=False))
        await session.detect()
        await session.analyze(CONTENT)
        with pytest.raises(MappingError, match="collaborator reported failure"):
            await session.map_fields(CONTENT)

    async def test_collaborator_error(self, make_session, agent):
        session = make_session(agent.handle, FakeCollaborator(raise_on="mapping"))
        await session.detect()
        await session.analyze(CONTENT)
        with pytest.raises(MappingError, match="timeout"):
            await session.map_fields(CONTENT)


class TestDetectAndFillFailure:
    async def test_detection_failure(self, make_session, flaky):
        flaky.failing.add(ACTION_DETECT_FORMS)
        session = make_session(flaky.handle)
        with pytest.raises(DetectionError, match="page navigated away"):
            await session.detect()
        assert session.state == PipelineState.IDLE
        assert session.status == PipelineState.FAILED_AT_FORMS_DETECTED

    async def test_failed_detect_keeps_prior_results(self, make_session, flaky):
        session = make_session(flaky.handle)
        await session.detect()
        relevance = await session.analyze(CONTENT)
        flaky.failing.add(ACTION_DETECT_FORMS)
        with pytest.raises(DetectionError):
            await session.detect()
        assert session.state == PipelineState.CONTENT_ANALYZED
        assert session.relevance is relevance
        assert len(session.forms) == 2

    async def test_fill_failure(self, make_session, flaky):
        session = make_session(flaky.handle)
        await session.detect()
        await session.analyze(CONTENT)
        mapping = await session.map_fields(CONTENT)
        flaky.failing.add(ACTION_FILL_FORMS)
        with pytest.raises(FillStageError, match="^Fill failed: page navigated away$"):
            await session.fill()
        assert session.state == PipelineState.FIELDS_MAPPED
        assert session.status == PipelineState.FAILED_AT_FILLED
        assert session.mapping is mapping
        assert session.report is None


# ── Concurrency ───────────────────────────────────────────────────


class TestStaleStages:
    async def test_detect_supersedes_running_analysis(self, make_session, agent):
        collaborator = FakeCollaborator()
        session = make_session(agent.handle, collaborator)
        await session.detect()
        collaborator.gate = asyncio.Event()

        analysis = asyncio.create_task(session.analyze(CONTENT))
        await collaborator.entered.wait()
        redetect = asyncio.create_task(session.detect())
        await asyncio.sleep(0)
        collaborator.gate.set()

        with pytest.raises(StaleSessionError):
            await analysis
        await redetect
        assert session.state == PipelineState.FORMS_DETECTED
        assert session.relevance is None
        assert session.status == PipelineState.FORMS_DETECTED

    async def test_stages_are_serialised(self, make_session, agent):
        session = make_session(agent.handle)
        await session.detect()
        results = await asyncio.gather(session.analyze(CONTENT), session.analyze(CONTENT))
        assert all(r.success for r in results)
        assert session.state == PipelineState.CONTENT_ANALYZED

    def test_sessions_have_distinct_ids(self, agent):
        channel = RequestChannel(LocalTransport(agent.handle))
        ids = {FormFillSession(channel, FakeCollaborator()).session_id for _ in range(5)}
        assert len(ids) == 5
