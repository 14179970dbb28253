# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import framefill  # noqa: F401
except ImportError:
    raise ImportError("framefill is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from framefill.agent import PageAgent
from framefill.channel import LocalTransport, RequestChannel
from framefill.document import LxmlDocument
from framefill.frames.sources import StaticFrameSource
from framefill.frames.walker import FrameWalker

PAGE_URL = "https://example.com/contact"

MAIN_PAGE = """<!DOCTYPE html>
<html><head><title>Contact</title><script>track()</script></head>
<body>
<nav><a href="/">Home</a></nav>
<main>
  <h1>Contact us</h1>
  <p>Our office is open on weekdays. Send us a message or book a visit through the
  booking form below and we will get back to you within two working days.</p>
  <form id="newsletter" action="/subscribe" method="POST">
    <label for="email">Email address</label>
    <input type="email" id="email" name="email" placeholder="you@example.com">
    <button type="submit">Subscribe</button>
  </form>
</main>
<iframe src="booking.html" name="booking"></iframe>
<iframe src="https://ads.doubleclick.net/slot" name="ad"></iframe>
<footer>Footer links</footer>
</body></html>
"""

BOOKING_FRAME = """<html><head><title>Booking</title></head>
<body>
<form id="booking-form" method="post">
  <fieldset><legend>Book a visit</legend>
  <label for="full-name">Full name</label>
  <input id="full-name" name="fullName" type="text" required>
  <label for="visit-date">Visit date</label>
  <input id="visit-date" name="visitDate" type="date">
  <label for="room">Room</label>
  <select id="room" name="room">
    <option value="">Choose</option>
    <option value="a">Room A</option>
    <option value="b">Meeting Room B</option>
  </select>
  <input type="radio" name="slot" value="am" id="slot-am"><label for="slot-am">Morning</label>
  <input type="radio" name="slot" value="pm" id="slot-pm"><label for="slot-pm">Afternoon</label>
  <label for="notes">Notes</label>
  <textarea id="notes" name="notes"></textarea>
  <input type="checkbox" id="parking" name="parking" value="yes"><label for="parking">Need parking</label>
  <input type="hidden" name="token" value="abc">
  </fieldset>
  <button type="submit">Book</button>
</form>
</body></html>
"""

# Short deadlines so unavailable-frame paths stay fast
FAST_WALKER = {"frame_timeout": 0.5, "probe_attempts": 2, "probe_backoff": 0.01}


@pytest.fixture
def contact_source() -> StaticFrameSource:
    return StaticFrameSource(MAIN_PAGE, url=PAGE_URL, frames={"booking.html": BOOKING_FRAME})


@pytest.fixture
def contact_documents() -> tuple[LxmlDocument, LxmlDocument]:
    """Parsed host page and booking frame, as the page agent holds them."""
    return LxmlDocument(MAIN_PAGE, url=PAGE_URL), LxmlDocument(BOOKING_FRAME, url="https://example.com/booking.html")


@pytest.fixture
def walker() -> FrameWalker:
    return FrameWalker(**FAST_WALKER)


@pytest.fixture
def agent(contact_source, walker) -> PageAgent:
    return PageAgent(contact_source, walker)


@pytest.fixture
async def channel(agent):
    transport = LocalTransport(agent.handle)
    channel = RequestChannel(transport, timeout=2.0)
    yield channel
    await transport.aclose()


class NestedFrameSource(StaticFrameSource):
    """Static source whose child frames are given directly instead of parsed."""

    def __init__(self, html: str, *, kids=(), **kwargs) -> None:
        super().__init__(html, **kwargs)
        self.kids = list(kids)

    async def children(self):
        return self.kids


@pytest.fixture
def slow_chain_source() -> NestedFrameSource:
    """A fast frame beside a three-level chain of frames taking 0.3s each to read."""
    slow3 = NestedFrameSource("<p>slow three</p>", src="s3.html", delay=0.3)
    slow2 = NestedFrameSource("<p>slow two</p>", src="s2.html", delay=0.3, kids=[slow3])
    slow1 = NestedFrameSource("<p>slow one</p>", src="s1.html", delay=0.3, kids=[slow2])
    fast = NestedFrameSource("<p>FAST SIBLING</p>", src="fast.html")
    page = (
        "<html><head><title>Nested</title></head><body><main><h1>Nested frames</h1>"
        + "<p>The host page embeds a fast frame and a slow chain of frames.</p>" * 3
        + '<iframe src="fast.html"></iframe><iframe src="s1.html"></iframe></main></body></html>'
    )
    return NestedFrameSource(page, url="https://example.com/nested", kids=[fast, slow1])
