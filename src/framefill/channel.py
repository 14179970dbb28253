# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request/response messaging between the orchestrator and the page side.

Every request carries a fresh message id; replies are matched back to the
waiting caller by that id. A request that outlives its deadline is
forgotten, and any reply that arrives for it later is dropped.

Wire shape::

    request  {"id": "...", "action": "detectForms", "payload": {...}}
    reply    {"id": "...", "success": true, "data": {...}}
             {"id": "...", "success": false, "error": "..."}
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from .errors import ChannelError, ChannelTimeoutError

logger = logging.getLogger(__name__)

# Actions understood by the page side
ACTION_PING = "ping"
ACTION_EXTRACT_WITH_FRAMES = "extractContentWithIframes"
ACTION_EXTRACT_HTML = "extractHTML"
ACTION_DETECT_FORMS = "detectForms"
ACTION_FILL_FORMS = "fillForms"
ACTION_CLEAR_FORMS = "clearForms"

ReplyCallback = Callable[[dict[str, Any]], bool]
Handler = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


class Transport(Protocol):
    def connect(self, on_reply: ReplyCallback) -> None: ...

    async def send(self, message: dict[str, Any]) -> None: ...


class RequestChannel:
    """Correlates requests and replies over a ``Transport``."""

    def __init__(self, transport: Transport, *, timeout: float = 10.0) -> None:
        self._transport = transport
        self._timeout = timeout
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        transport.connect(self.deliver)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(
        self,
        action: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send ``action`` and wait for its reply; returns the reply's ``data``.

        Raises:
            ChannelTimeoutError: no reply within the deadline.
            ChannelError: transport failure or ``success: false`` reply.
        """
        deadline = self._timeout if timeout is None else timeout
        message_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            try:
                await self._transport.send({"id": message_id, "action": action, "payload": payload or {}})
            except Exception as exc:
                raise ChannelError(f"'{action}' could not be sent: {exc}", action=action) from exc
            try:
                reply = await asyncio.wait_for(future, timeout=deadline)
            except TimeoutError:
                raise ChannelTimeoutError(action, deadline) from None
        finally:
            self._pending.pop(message_id, None)

        if not reply.get("success", False):
            raise ChannelError(reply.get("error") or f"'{action}' failed", action=action)
        data = reply.get("data")
        return data if isinstance(data, dict) else {}

    def deliver(self, reply: dict[str, Any]) -> bool:
        """Route a reply to its waiting request. Returns False if nobody is waiting."""
        future = self._pending.get(reply.get("id", ""))
        if future is None or future.done():
            logger.debug("Dropping reply for unknown or expired request %s", reply.get("id"))
            return False
        future.set_result(reply)
        return True


class LocalTransport:
    """In-process transport: each request runs ``handler(action, payload)`` as a task."""

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self._on_reply: ReplyCallback | None = None
        self._tasks: set[asyncio.Task] = set()

    def connect(self, on_reply: ReplyCallback) -> None:
        self._on_reply = on_reply

    async def send(self, message: dict[str, Any]) -> None:
        if self._on_reply is None:
            raise ChannelError("transport is not connected")
        task = asyncio.create_task(self._dispatch(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _dispatch(self, message: dict[str, Any]) -> None:
        action = message.get("action", "")
        try:
            reply = await self._handler(action, message.get("payload") or {})
        except Exception as exc:
            logger.warning("Handler for %r raised", action, exc_info=True)
            reply = {"success": False, "error": str(exc) or type(exc).__name__}
        if self._on_reply is not None:
            self._on_reply({"id": message["id"], **reply})

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
