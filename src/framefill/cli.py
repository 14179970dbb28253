# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""framefill CLI: extract, detect, fill and run commands.

Usage:
    python -m framefill.cli extract PAGE.html [--frames-dir DIR] [--format json|markdown|text] [-o PATH]
    python -m framefill.cli extract --live URL [--format ...]
    python -m framefill.cli detect PAGE.html [--frames-dir DIR]
    python -m framefill.cli fill PAGE.html --mappings MAPPINGS.json [--no-backup] [--no-validate] [-o OUT.html]
    python -m framefill.cli run PAGE.html --content TEXT [--reasoning-url URL] [--model M] [--language L]

Saved pages are read offline: each frame ``src`` is looked up in
``--frames-dir`` by its last path segment.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path

from . import FillOptions, logging_config
from .agent import PageAgent
from .channel import ACTION_DETECT_FORMS, ACTION_FILL_FORMS, LocalTransport, RequestChannel
from .config import Settings
from .errors import FrameFillError
from .frames.sources import FrameSource, StaticFrameSource
from .frames.walker import FrameWalker
from .serializer import (
    dumps,
    fill_options_to_dict,
    mapping_to_dict,
    merged_to_dict,
    relevance_to_dict,
    report_to_dict,
    stats_to_dict,
    structure_to_dict,
)

EXIT_FAILURE = 1
EXIT_PARTIAL = 2


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(EXIT_FAILURE)


def _static_source(args: argparse.Namespace) -> StaticFrameSource:
    page = Path(args.page)
    if not page.is_file():
        _fail(f"page not found: {page}")
    frames_dir = Path(args.frames_dir) if args.frames_dir else None
    if frames_dir is not None and not frames_dir.is_dir():
        _fail(f"frames directory not found: {frames_dir}")
    return StaticFrameSource.from_path(page, frames_dir, url=args.url or "")


@asynccontextmanager
async def _connect(root: FrameSource, settings: Settings) -> AsyncIterator[tuple[PageAgent, RequestChannel]]:
    """Page agent plus an in-process channel to it."""
    agent = PageAgent(root, FrameWalker.from_settings(settings))
    transport = LocalTransport(agent.handle)
    channel = RequestChannel(transport, timeout=settings.channel_timeout)
    try:
        yield agent, channel
    finally:
        await transport.aclose()


def _emit(text: str, output: str | None) -> None:
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        print(f"Saved to {path}", file=sys.stderr)
    else:
        print(text)


# ── extract ───────────────────────────────────────────────────────


async def _extract(root: FrameSource, settings: Settings, fmt: str) -> str:
    from .document import parse_document
    from .extraction import ContentExtractor

    async with _connect(root, settings) as (_agent, channel):
        result = await ContentExtractor(channel, settings).extract()

    if fmt == "markdown":
        return result.markdown
    if fmt == "text":
        doc = parse_document(result.cleaned.html)
        return doc.text(doc.body).strip()
    return dumps(
        {
            "url": result.url,
            "title": result.title,
            "usedFallback": result.used_fallback,
            "mainContentSelector": result.cleaned.selector_used,
            "merge": merged_to_dict(result.merged),
            "structure": structure_to_dict(result.cleaned.structure),
            "stats": stats_to_dict(result.stats),
            "timings": result.timings,
            "chunks": result.chunks,
        }
    )


async def _extract_live(url: str, settings: Settings, fmt: str) -> str:
    from .browser_session import BrowserSession

    async with BrowserSession() as session:
        await session.navigate(url)
        return await _extract(session.frame_source(), settings, fmt)


def cmd_extract(args: argparse.Namespace) -> None:
    """Extract merged, cleaned page content with stats."""
    settings = args.settings
    if args.live:
        text = asyncio.run(_extract_live(args.live, settings, args.format))
    elif args.page:
        text = asyncio.run(_extract(_static_source(args), settings, args.format))
    else:
        _fail("give a saved PAGE or --live URL")
    _emit(text, args.output)


# ── detect ────────────────────────────────────────────────────────


async def _detect(root: FrameSource, settings: Settings) -> dict:
    async with _connect(root, settings) as (_agent, channel):
        return await channel.request(ACTION_DETECT_FORMS)


def cmd_detect(args: argparse.Namespace) -> None:
    """List forms and fields across the page and its frames."""
    data = asyncio.run(_detect(_static_source(args), args.settings))
    _emit(dumps(data), args.output)


# ── fill ──────────────────────────────────────────────────────────


def _load_mappings(path: str) -> list[dict]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _fail(f"cannot read mappings from {path}: {exc}")
    if isinstance(raw, dict):
        # {"mappings": [...]} or {"fieldId": "value", ...}
        raw = raw.get("mappings", [{"fieldId": k, "value": v} for k, v in raw.items()])
    if not isinstance(raw, list):
        _fail("mappings must be a list of {fieldId, value} objects")
    return raw


async def _fill(root: FrameSource, settings: Settings, mappings: list[dict], options: FillOptions) -> tuple[dict, str]:
    async with _connect(root, settings) as (agent, channel):
        await channel.request(ACTION_DETECT_FORMS)
        report = await channel.request(
            ACTION_FILL_FORMS,
            {"mappings": mappings, "options": fill_options_to_dict(options)},
        )
        return report, agent.snapshot()["main"]


def cmd_fill(args: argparse.Namespace) -> None:
    """Fill fields of a saved page from a mappings file."""
    options = FillOptions(backup=not args.no_backup, validate=not args.no_validate, highlight=not args.no_highlight)
    report, html = asyncio.run(_fill(_static_source(args), args.settings, _load_mappings(args.mappings), options))
    print(dumps(report))
    if args.output:
        _emit(html, args.output)
    if not report.get("success"):
        sys.exit(EXIT_PARTIAL)


# ── run ───────────────────────────────────────────────────────────


async def _run(root: FrameSource, settings: Settings, content: str, args: argparse.Namespace) -> dict:
    from .pipeline import FormFillSession
    from .reasoning import HttpReasoningClient

    client = HttpReasoningClient(settings.reasoning_url, timeout=settings.reasoning_timeout)
    try:
        async with _connect(root, settings) as (_agent, channel):
            session = FormFillSession(channel, client, settings)
            report = await session.run(content, model=args.model, language=args.language)
    finally:
        await client.aclose()
    return {
        "state": str(session.state),
        "relevance": relevance_to_dict(session.relevance),
        "mapping": mapping_to_dict(session.mapping),
        "report": report_to_dict(report),
    }


def cmd_run(args: argparse.Namespace) -> None:
    """Detect, analyze, map and fill in one go against a reasoning service."""
    content = args.content
    if args.content_file:
        content = Path(args.content_file).read_text(encoding="utf-8")
    if not content:
        _fail("--content or --content-file is required")
    settings = args.settings
    if args.reasoning_url:
        settings = replace(settings, reasoning_url=args.reasoning_url)
    result = asyncio.run(_run(_static_source(args), settings, content, args))
    _emit(dumps(result), args.output)
    if not result["report"]["success"]:
        sys.exit(EXIT_PARTIAL)


# ── Entry point ───────────────────────────────────────────────────


def _add_page_args(parser: argparse.ArgumentParser, *, optional: bool = False) -> None:
    parser.add_argument("page", nargs="?" if optional else None, metavar="PAGE", help="Saved HTML page")
    parser.add_argument("--frames-dir", type=str, metavar="DIR", help="Directory holding frame documents")
    parser.add_argument("--url", type=str, default="", help="URL the saved page was loaded from")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="framefill CLI", prog="python -m framefill.cli")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Log JSON lines to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_extract = subparsers.add_parser("extract", help="Extract and clean content across frames")
    _add_page_args(p_extract, optional=True)
    p_extract.add_argument("--live", type=str, metavar="URL", help="Load URL in Chromium instead of a saved page")
    p_extract.add_argument("--format", choices=["json", "markdown", "text"], default="json")
    p_extract.add_argument("-o", "--output", type=str, help="Write to file instead of stdout")

    p_detect = subparsers.add_parser("detect", help="Detect forms across frames")
    _add_page_args(p_detect)
    p_detect.add_argument("-o", "--output", type=str)

    p_fill = subparsers.add_parser("fill", help="Fill a saved page from a mappings file")
    _add_page_args(p_fill)
    p_fill.add_argument("--mappings", required=True, help="JSON list of {fieldId, value}")
    p_fill.add_argument("--no-backup", action="store_true")
    p_fill.add_argument("--no-validate", action="store_true")
    p_fill.add_argument("--no-highlight", action="store_true")
    p_fill.add_argument("-o", "--output", type=str, help="Write the filled page HTML here")

    p_run = subparsers.add_parser("run", help="Run the full detect/analyze/map/fill pipeline")
    _add_page_args(p_run)
    p_run.add_argument("--content", type=str, default="", help="Free-text content to fill from")
    p_run.add_argument("--content-file", type=str, help="Read content from a file")
    p_run.add_argument("--reasoning-url", type=str, help="Base URL of the reasoning service")
    p_run.add_argument("--model", type=str)
    p_run.add_argument("--language", type=str)
    p_run.add_argument("-o", "--output", type=str)
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env().validated()
    args.settings = settings
    level = "DEBUG" if args.verbose else settings.log_level
    logging_config.configure(json_output=args.json_logs or settings.log_json, level=level)

    commands = {
        "extract": cmd_extract,
        "detect": cmd_detect,
        "fill": cmd_fill,
        "run": cmd_run,
    }
    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except FrameFillError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
