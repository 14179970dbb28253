# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Reasoning collaborator: the external service that picks a form and maps values.

Only the request/response contract lives here. ``HttpReasoningClient``
speaks it over HTTP; tests and embedders can supply any object with the
same two coroutines.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from . import FieldMapping, FormDescriptor, FormSummary, MappingResult, RelevanceResult
from .errors import ReasoningError
from .serializer import form_from_dict, form_to_dict, relevance_to_dict, summary_to_dict

logger = logging.getLogger(__name__)

RELEVANCE_PATH = "/form-filler/analyze-form-relevance"
MAPPING_PATH = "/form-filler/analyze-field-mapping"


class ReasoningCollaborator(Protocol):
    async def analyze_relevance(
        self,
        *,
        content: str,
        summary: FormSummary,
        page_html: str,
        model: str,
    ) -> RelevanceResult: ...

    async def analyze_field_mapping(
        self,
        *,
        content: str,
        selected_form: FormDescriptor,
        model: str,
        language: str,
        prior: RelevanceResult,
    ) -> MappingResult: ...


# ── Response parsing ──────────────────────────────────────────────


def _as_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _form_ref(value: Any) -> tuple[str | None, dict | None]:
    if isinstance(value, dict):
        return value.get("id"), value
    if isinstance(value, str) and value:
        return value, None
    return None, None


def parse_relevance(data: dict[str, Any], forms: Sequence[FormDescriptor]) -> RelevanceResult:
    """Build a RelevanceResult, preferring the locally detected descriptor of the chosen form.

    Accepts either ``selectedForm`` (object or id) or ``recommendedForm``.
    """
    form_id, raw = _form_ref(data.get("selectedForm"))
    if form_id is None:
        form_id, raw = _form_ref(data.get("recommendedForm"))

    selected = next((f for f in forms if f.id == form_id), None) if form_id else None
    if selected is None and raw is not None and raw.get("fields"):
        selected = form_from_dict(raw)

    return RelevanceResult(
        success=bool(data.get("success", False)),
        selected_form=selected,
        rationale=str(data.get("rationale") or data.get("reason") or ""),
        confidence=_as_float(data.get("confidence")),
    )


def parse_mapping(data: dict[str, Any], prior: RelevanceResult) -> MappingResult:
    """Build a MappingResult; entries may carry ``value`` or ``suggestedValue``."""
    raw = data.get("mappings")
    if not isinstance(raw, list):
        raise ReasoningError("field mapping response has no 'mappings' list")
    mappings = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("fieldId"):
            logger.debug("Skipping malformed mapping entry: %r", entry)
            continue
        value = entry.get("value", entry.get("suggestedValue"))
        if value is None:
            continue
        mappings.append(FieldMapping(field_id=str(entry["fieldId"]), value=str(value)))
    return MappingResult(
        success=bool(data.get("success", True)),
        mappings=tuple(mappings),
        confidence=_as_float(data.get("confidence")),
        relevance=prior,
    )


# ── HTTP client ───────────────────────────────────────────────────


class HttpReasoningClient:
    """Reasoning collaborator reached over HTTP (JSON in, JSON out)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 60.0,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(10.0, read=timeout),
            headers=headers,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ReasoningError(f"request to {path} failed: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise ReasoningError(f"{path} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ReasoningError(f"{path} returned {type(data).__name__}, expected an object")
        return data

    async def analyze_relevance(
        self,
        *,
        content: str,
        summary: FormSummary,
        page_html: str,
        model: str,
    ) -> RelevanceResult:
        payload = {
            "content": content,
            "formStructure": {
                "forms": [form_to_dict(f) for f in summary.forms],
                "summary": summary_to_dict(summary),
            },
            "pageHtml": page_html,
            "model": model,
        }
        data = await self._post(RELEVANCE_PATH, payload)
        return parse_relevance(data, summary.forms)

    async def analyze_field_mapping(
        self,
        *,
        content: str,
        selected_form: FormDescriptor,
        model: str,
        language: str,
        prior: RelevanceResult,
    ) -> MappingResult:
        payload = {
            "content": content,
            "selectedForm": form_to_dict(selected_form),
            "model": model,
            "language": language,
            "analysisResult": relevance_to_dict(prior),
        }
        data = await self._post(MAPPING_PATH, payload)
        return parse_mapping(data, prior)

    async def aclose(self) -> None:
        await self._client.aclose()
