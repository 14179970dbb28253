# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content statistics: chunking, word counts, reading time, compression ratios.

All functions are pure. Sizes are character counts of the respective
representation (raw merged HTML, cleaned HTML, markdown).
"""

from __future__ import annotations

import math
import re

from . import ContentStats

DEFAULT_MAX_CHUNK_SIZE = 4000
DEFAULT_WORDS_PER_MINUTE = 200

# Sentence boundary: terminal punctuation followed by whitespace
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

_MD_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_MD_LINK_RE = re.compile(r"\[[^\]]*\]\([^)]*\)")
_MD_MARKER_RE = re.compile(r"[#*_`]")


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT_RE.split(text.strip()) if s]


def chunk_content(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[str]:
    """Split text into chunks of at most ``max_chunk_size`` characters.

    Sentences are accumulated greedily and joined by a single space. A
    sentence is never split, so a chunk holding one sentence longer than
    the limit exceeds it. Text within the limit comes back unchanged as a
    single chunk; empty text yields ``[""]``.
    """
    if not text:
        return [""]
    if len(text) <= max_chunk_size:
        return [text]

    chunks: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_chunk_size:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks or [""]


def count_words(text: str) -> int:
    """Count words of markdown text, ignoring images, links and formatting marks."""
    if not text:
        return 0
    stripped = _MD_IMAGE_RE.sub("", text)
    stripped = _MD_LINK_RE.sub("", stripped)
    stripped = _MD_MARKER_RE.sub("", stripped)
    return len(stripped.split())


def estimate_reading_time(word_count: int, words_per_minute: int = DEFAULT_WORDS_PER_MINUTE) -> str:
    minutes = math.ceil(max(word_count, 0) / words_per_minute)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def compression_ratio(original_size: int, size: int) -> str:
    """Percentage reduction of ``size`` relative to ``original_size``, one decimal."""
    if original_size <= 0:
        return "0%"
    return f"{(original_size - size) / original_size * 100:.1f}%"


def size_kb(size: int) -> str:
    return f"{round(size / 1024)}KB"


def build_content_stats(
    *,
    original_size: int,
    main_page_size: int,
    iframe_content_size: int,
    cleaned_size: int,
    markdown: str,
    chunk_count: int,
    words_per_minute: int = DEFAULT_WORDS_PER_MINUTE,
) -> ContentStats:
    markdown_size = len(markdown)
    word_count = count_words(markdown)
    return ContentStats(
        original_size=original_size,
        main_page_size=main_page_size,
        iframe_content_size=iframe_content_size,
        cleaned_size=cleaned_size,
        markdown_size=markdown_size,
        compression_ratios={
            "cleaned": compression_ratio(original_size, cleaned_size),
            "markdown": compression_ratio(original_size, markdown_size),
        },
        word_count=word_count,
        reading_time=estimate_reading_time(word_count, words_per_minute),
        chunk_count=chunk_count,
        size_breakdown={
            "original": size_kb(original_size),
            "mainPage": size_kb(main_page_size),
            "iframes": size_kb(iframe_content_size),
            "cleaned": size_kb(cleaned_size),
            "markdown": size_kb(markdown_size),
        },
    )
