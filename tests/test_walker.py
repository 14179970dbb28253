# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for framefill.frames.walker: depth-first frame discovery."""

from __future__ import annotations

import asyncio
import time

import pytest
from hypothesis import given
from hypothesis import strategies as st

from framefill import FrameContent
from framefill.frames.sources import StaticFrameSource
from framefill.frames.walker import (
    ERR_ACCESS_DENIED,
    ERR_EMPTY,
    ERR_NOT_READY,
    ERR_SKIPPED,
    ERR_TIMEOUT,
    FrameWalker,
    index_path_key,
    should_skip,
    walk_budget,
    walk_report,
)

FAST_WALKER = {"frame_timeout": 0.5, "probe_attempts": 2, "probe_backoff": 0.01}


def _page(*frames: str) -> str:
    return "<html><body>" + "".join(frames) + "</body></html>"


# ── Ordering ──────────────────────────────────────────────────────


class TestIndexPathKey:
    def test_numeric_order(self):
        paths = ["10", "2", "1.10", "1.2", "1", "0"]
        assert sorted(paths, key=index_path_key) == ["0", "1", "1.2", "1.10", "2", "10"]

    @given(st.lists(st.lists(st.integers(min_value=0, max_value=30), min_size=1, max_size=4), min_size=1))
    def test_matches_tuple_order(self, raw):
        paths = [".".join(map(str, parts)) for parts in raw]
        expected = sorted(paths, key=lambda p: [int(x) for x in p.split(".")])
        assert sorted(paths, key=index_path_key) == expected


class TestShouldSkip:
    def test_blank_and_javascript(self):
        assert should_skip("")
        assert should_skip("about:blank")
        assert should_skip("javascript:void(0)")

    def test_tracker_hosts(self):
        assert should_skip("https://www.googletagmanager.com/ns.html")
        assert should_skip("https://ads.doubleclick.net/x")
        assert not should_skip("https://notdoubleclick.net/x")

    def test_inline_never_skipped(self):
        assert not should_skip("", inline=True)

    def test_regular_frame(self):
        assert not should_skip("frames/a.html")


# ── Walking ───────────────────────────────────────────────────────


class TestWalk:
    async def test_nested_depth_first(self):
        root = StaticFrameSource(
            _page('<iframe src="a.html" name="A"></iframe><iframe src="b.html"></iframe>'),
            url="https://example.com/",
            frames={
                "a.html": _page('<iframe src="a1.html"></iframe><iframe src="a2.html"></iframe>'),
                "a1.html": "<p>a1</p>",
                "a2.html": "<p>a2</p>",
                "b.html": "<p>b</p>",
            },
        )
        nodes = await FrameWalker(**FAST_WALKER).walk(root)
        assert [n.index_path for n in nodes] == ["0", "0.0", "0.1", "1"]
        assert [n.depth for n in nodes] == [0, 1, 1, 0]
        assert nodes[0].name == "A"
        assert nodes[1].parent_path == "0"
        assert nodes[1].content.url == "https://example.com/a1.html"
        assert nodes[1].content.domain == "example.com"
        assert all(n.accessible for n in nodes)

    async def test_many_siblings_sorted_numerically(self):
        frames = {f"f{i}.html": f"<p>{i}</p>" for i in range(12)}
        tags = "".join(f'<iframe src="f{i}.html"></iframe>' for i in range(12))
        nodes = await FrameWalker(**FAST_WALKER).walk(StaticFrameSource(_page(tags), frames=frames))
        assert [n.index_path for n in nodes] == [str(i) for i in range(12)]
        assert nodes[10].content.html == "<p>10</p>"

    async def test_blocked_frame_does_not_stop_siblings(self):
        root = StaticFrameSource(
            _page('<iframe src="x.html" data-framefill-blocked></iframe><iframe src="ok.html"></iframe>'),
            frames={"x.html": "<p>secret</p>", "ok.html": "<p>ok</p>"},
        )
        nodes = await FrameWalker(**FAST_WALKER).walk(root)
        assert nodes[0].accessible is False
        assert nodes[0].error == ERR_ACCESS_DENIED
        assert nodes[0].content is None
        assert nodes[1].accessible is True

    async def test_skipped_and_empty(self):
        root = StaticFrameSource(
            _page('<iframe src="about:blank"></iframe><iframe src="missing.html"></iframe>'),
        )
        nodes = await FrameWalker(**FAST_WALKER).walk(root)
        assert nodes[0].error == ERR_SKIPPED
        assert nodes[1].accessible is True
        assert nodes[1].error == ERR_EMPTY
        assert not nodes[1].has_content

    async def test_srcdoc_frame(self):
        root = StaticFrameSource(_page('<iframe srcdoc="&lt;p&gt;inline&lt;/p&gt;"></iframe>'))
        nodes = await FrameWalker(**FAST_WALKER).walk(root)
        assert nodes[0].has_content
        assert "inline" in nodes[0].content.html

    async def test_depth_bound(self):
        # every level embeds itself: a cyclic frame graph
        loop_page = _page('<iframe src="loop.html"></iframe>')
        root = StaticFrameSource(loop_page, frames={"loop.html": loop_page})
        nodes = await FrameWalker(max_depth=2, **FAST_WALKER).walk(root)
        assert [n.index_path for n in nodes] == ["0", "0.0", "0.0.0"]
        assert max(n.depth for n in nodes) == 2

    async def test_slow_frame_times_out_alone(self):
        class SlowSource(StaticFrameSource):
            async def children(self):
                return [
                    StaticFrameSource("<p>slow</p>", src="slow.html", delay=5.0),
                    StaticFrameSource("<p>fast</p>", src="fast.html"),
                ]

        walker = FrameWalker(frame_timeout=0.1, probe_attempts=1, probe_backoff=0.0)
        started = time.monotonic()
        nodes = await walker.walk(SlowSource("<p>root</p>"))
        assert time.monotonic() - started < 2.0
        assert nodes[0].error == ERR_TIMEOUT
        assert nodes[1].content.html == "<p>fast</p>"

    async def test_not_ready_after_probes(self):
        class NotReadyRoot(StaticFrameSource):
            async def children(self):
                return [StaticFrameSource("<p>x</p>", src="x.html", ready=False)]

        nodes = await FrameWalker(frame_timeout=0.5, probe_attempts=3, probe_backoff=0.01).walk(NotReadyRoot(""))
        assert nodes[0].error == ERR_NOT_READY
        assert nodes[0].accessible is False

    async def test_probe_retries_until_ready(self):
        class FlakySource(StaticFrameSource):
            pings = 0

            async def ping(self):
                FlakySource.pings += 1
                return FlakySource.pings >= 3

        class Root(StaticFrameSource):
            async def children(self):
                return [FlakySource("<p>late</p>", src="late.html")]

        nodes = await FrameWalker(frame_timeout=0.5, probe_attempts=3, probe_backoff=0.01).walk(Root(""))
        assert nodes[0].has_content
        assert FlakySource.pings == 3

    async def test_unexpected_read_error_is_recorded(self):
        class Broken(StaticFrameSource):
            async def read(self) -> FrameContent:
                raise RuntimeError("boom")

        class Root(StaticFrameSource):
            async def children(self):
                return [Broken("<p>x</p>", src="b.html"), StaticFrameSource("<p>y</p>", src="y.html")]

        nodes = await FrameWalker(**FAST_WALKER).walk(Root(""))
        assert nodes[0].error == "boom"
        assert nodes[1].has_content

    async def test_concurrency_limit(self):
        active = 0
        peak = 0

        class Counting(StaticFrameSource):
            async def read(self) -> FrameContent:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.02)
                active -= 1
                return FrameContent(html=self.html)

        class Root(StaticFrameSource):
            async def children(self):
                return [Counting("<p>x</p>", src=f"{i}.html") for i in range(6)]

        await FrameWalker(max_concurrency=2, **FAST_WALKER).walk(Root(""))
        assert peak == 2


class TestWalkBudget:
    async def test_budget_keeps_finished_frames(self, slow_chain_source):
        started = time.monotonic()
        nodes = await FrameWalker(frame_timeout=0.5).walk(slow_chain_source, budget=0.8)
        assert time.monotonic() - started < 1.2
        assert [n.index_path for n in nodes] == ["0", "1", "1.0", "1.0.0"]
        assert nodes[0].content.html == "<p>FAST SIBLING</p>"
        assert nodes[1].accessible and nodes[2].accessible
        unfinished = nodes[3]
        assert unfinished.error == ERR_TIMEOUT
        assert unfinished.accessible is False
        assert (unfinished.depth, unfinished.src) == (2, "s3.html")

    async def test_no_budget_walks_everything(self, slow_chain_source):
        nodes = await FrameWalker(**FAST_WALKER).walk(slow_chain_source)
        assert all(n.has_content for n in nodes)
        assert nodes[-1].content.html == "<p>slow three</p>"

    def test_budget_leaves_room_for_the_reply(self):
        assert walk_budget(5.0) == pytest.approx(4.0)
        assert walk_budget(1.0) < 1.0


def test_walk_report():
    from framefill import FrameNode

    nodes = [
        FrameNode("0", 0, accessible=True),
        FrameNode("0.0", 1, accessible=False, error=ERR_ACCESS_DENIED),
        FrameNode("1", 0, error=ERR_SKIPPED),
    ]
    report = walk_report(nodes)
    assert report.total == 3
    assert report.accessible == 1
    assert report.by_depth == {0: 2, 1: 1}
    assert report.errors == {ERR_ACCESS_DENIED: 1, ERR_SKIPPED: 1}
    assert report.max_depth == 1
