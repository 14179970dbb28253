# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for framefill.merger: frame content substitution."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from framefill import FrameContent, FrameNode
from framefill.merger import ADDITIONAL_SECTION, merge_frames, strip_frame_markers


def _frame(path: str, src: str = "", html: str | None = "<p>x</p>", *, name: str = "", error: str | None = None):
    content = FrameContent(html=html) if html is not None else None
    return FrameNode(
        index_path=path,
        depth=path.count("."),
        src=src,
        name=name,
        accessible=content is not None,
        content=content,
        error=error,
    )


def _accessible_size(frames: list[FrameNode]) -> int:
    return sum(len(f.content.html) for f in frames if f.accessible and f.content is not None)


class TestMatching:
    def test_src_match_replaces_tag(self):
        main = '<html><body><p>before</p><iframe src="a.html" name="A"></iframe><p>after</p></body></html>'
        merged = merge_frames(main, [_frame("0", "a.html", "<div>frame A</div>")])
        assert "<iframe" not in merged.html
        assert "<!-- IFRAME_CONTENT_START: A (a.html) -->\n<div>frame A</div>\n<!-- IFRAME_CONTENT_END: A -->" in (
            merged.html
        )
        assert merged.html.index("before") < merged.html.index("frame A") < merged.html.index("after")
        [record] = merged.processed_frames
        assert (record.index_path, record.status, record.size) == ("0", "matched", len("<div>frame A</div>"))

    def test_src_match_beats_position(self):
        main = '<body><iframe src="b.html"></iframe><iframe src="a.html"></iframe></body>'
        frames = [_frame("0", "a.html", "<p>A</p>"), _frame("1", "b.html", "<p>B</p>")]
        merged = merge_frames(main, frames)
        assert merged.html.index("<p>B</p>") < merged.html.index("<p>A</p>")
        assert [r.index_path for r in merged.matched] == ["1", "0"]

    def test_positional_fallback(self):
        main = '<body><iframe src="/redirected"></iframe></body>'
        merged = merge_frames(main, [_frame("0", "original.html", "<p>content</p>")])
        assert merged.matched[0].index_path == "0"
        assert "<p>content</p>" in merged.html

    def test_default_names(self):
        merged = merge_frames("<body><iframe></iframe></body>", [_frame("0", "", "<p>x</p>")])
        assert "IFRAME_CONTENT_START: iframe-0 (iframe-0)" in merged.html

    def test_frame_tag_variant(self):
        main = '<html><body><frame src="top.html"></body></html>'
        merged = merge_frames(main, [_frame("0", "top.html", "<p>top</p>")])
        assert merged.matched[0].src == "top.html"

    def test_frame_content_kept_verbatim(self):
        raw = "<form id='f'><input name='a' value=\"1\"></form>"
        merged = merge_frames('<body><iframe src="f.html"></iframe></body>', [_frame("0", "f.html", raw)])
        assert raw in merged.html


class TestNoDuplication:
    def test_same_src_twice(self):
        main = '<body><iframe src="w.html"></iframe><iframe src="w.html"></iframe></body>'
        frames = [_frame("0", "w.html", "<p>one</p>"), _frame("1", "w.html", "<p>two</p>")]
        merged = merge_frames(main, frames)
        assert merged.html.count("<p>one</p>") == 1
        assert merged.html.count("<p>two</p>") == 1
        assert [r.index_path for r in merged.matched] == ["0", "1"]

    def test_positional_candidate_already_consumed(self):
        main = '<body><iframe src="x.html"></iframe><iframe src="b.html"></iframe></body>'
        frames = [_frame("0", "b.html", "<p>B</p>")]
        merged = merge_frames(main, frames)
        # tag 0 takes frame 0 positionally; tag 1 finds nothing left
        assert merged.html.count("<p>B</p>") == 1
        assert len(merged.matched) == 1
        assert merged.unavailable[0].error_reason == "no matching frame"


class TestOrphansAndUnavailable:
    def test_nested_frames_are_additional(self):
        main = '<body><iframe src="outer.html"></iframe></body>'
        frames = [
            _frame("0", "outer.html", '<p>outer</p><iframe src="inner.html"></iframe>'),
            _frame("0.0", "inner.html", "<p>inner</p>"),
        ]
        merged = merge_frames(main, frames)
        assert ADDITIONAL_SECTION in merged.html
        assert "<!-- ADDITIONAL_IFRAME_START: iframe-0.0 (inner.html) -->\n<p>inner</p>" in merged.html
        assert merged.html.index(ADDITIONAL_SECTION) < merged.html.rindex("</body>")
        assert [r.index_path for r in merged.additional] == ["0.0"]

    def test_unavailable_frames_recorded(self):
        main = '<body><iframe src="x.html" name="X"></iframe><iframe src="ok.html"></iframe></body>'
        frames = [
            _frame("0", "x.html", None, error="access-denied"),
            _frame("1", "ok.html", "<p>ok</p>"),
            _frame("2", "https://ads.doubleclick.net/", None, error="skipped"),
        ]
        merged = merge_frames(main, frames)
        unavailable = {r.index_path: r for r in merged.unavailable}
        assert unavailable["0"].error_reason == "access-denied"
        assert unavailable["0"].name == "X"
        assert unavailable["0"].size == 0
        assert unavailable["2"].error_reason == "skipped"
        assert len(merged.processed_frames) == 3

    def test_tag_without_any_frame(self):
        merged = merge_frames('<body><iframe src="ghost.html"></iframe></body>', [])
        [record] = merged.processed_frames
        assert record.status == "unavailable"
        assert record.index_path == ""
        assert "<iframe" in merged.html


class TestMarkers:
    def test_strip_frame_markers(self):
        main = '<body><iframe src="a.html"></iframe></body>'
        frames = [_frame("0", "a.html", "<p>A</p>"), _frame("0.0", "n.html", "<p>N</p>")]
        stripped = strip_frame_markers(merge_frames(main, frames).html)
        assert "IFRAME" not in stripped
        assert "<p>A</p>" in stripped
        assert "<p>N</p>" in stripped

    def test_marker_text_cannot_close_comment(self):
        merged = merge_frames('<body><iframe src="a--b" name="x-->y"></iframe></body>', [_frame("0", "a--b")])
        assert "<!-- IFRAME_CONTENT_START: x- ->y (a- -b) -->" in merged.html
        assert "<!-- IFRAME_CONTENT_END: x- ->y -->" in merged.html


# ── Invariant: no loss, no duplication ────────────────────────────


@st.composite
def _frame_sets(draw):
    count = draw(st.integers(min_value=0, max_value=6))
    frames = []
    for i in range(count):
        kind = draw(st.sampled_from(["content", "empty", "denied", "nested"]))
        path = f"{i}.0" if kind == "nested" else str(i)
        html = {"content": f"<p>frame {i}</p>", "empty": "", "denied": None, "nested": f"<b>n{i}</b>"}[kind]
        frames.append(_frame(path, f"f{i}.html", html))
    tags = draw(st.lists(st.sampled_from([f"f{i}.html" for i in range(count)] + ["other.html"]), max_size=6))
    return frames, tags


@given(_frame_sets())
def test_merged_size_equals_accessible_content(data):
    frames, tags = data
    main = "<html><body>" + "".join(f'<iframe src="{t}"></iframe>' for t in tags) + "</body></html>"
    merged = merge_frames(main, frames)
    assert merged.merged_size == _accessible_size(frames)
    with_content = [f.index_path for f in frames if f.has_content]
    carried = [r.index_path for r in merged.processed_frames if r.status != "unavailable"]
    assert sorted(carried) == sorted(with_content)
