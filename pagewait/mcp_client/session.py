from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .jsonrpc import build_notification, build_request, extract_result, is_notification, is_response
from .transport import StdioTransport, TransportClosedError

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[str, dict[str, Any]], None]

PROTOCOL_VERSION = "2025-06-18"


class McpSession:
    """Request/response correlation for one MCP server over a stdio transport.

    If the reader loop stops (server exit, closed pipe) every pending request
    fails with the reason instead of waiting for its timeout, and later
    requests fail immediately.
    """

    def __init__(self, transport: StdioTransport, timeout_seconds: float = 20.0) -> None:
        self.transport = transport
        self.timeout_seconds = timeout_seconds
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._notifications: list[NotificationHandler] = []
        self._reader_task: asyncio.Task[None] | None = None
        self._closed_reason: BaseException | None = None

    async def __aenter__(self) -> McpSession:
        await self.start()
        try:
            await self.initialize()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        self._closed_reason = None
        await self.transport.start()
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def stop(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._reader_task, timeout=2)
            self._reader_task = None
        self._fail_pending(TransportClosedError("MCP session stopped"))
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.transport.stop(), timeout=8)

    def on_notification(self, handler: NotificationHandler) -> None:
        self._notifications.append(handler)

    async def initialize(self) -> Any:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "clientInfo": {"name": "pagewait", "version": "0.1.0"},
                "capabilities": {},
            },
        )
        await self.notify("notifications/initialized")
        return result

    async def list_tools(self) -> Any:
        return await self.request("tools/list", {})

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        return await self.request(
            "tools/call",
            {"name": name, "arguments": arguments},
        )

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self.transport.send(build_notification(method, params).to_dict())

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self._closed_reason is not None:
            raise TransportClosedError(f"MCP session is closed: {self._closed_reason}")
        req = build_request(method, params)
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()
        self._pending[req.id] = fut
        try:
            await self.transport.send(req.to_dict())
            return await asyncio.wait_for(fut, timeout=self.timeout_seconds)
        finally:
            self._pending.pop(req.id, None)

    async def _reader_loop(self) -> None:
        try:
            while True:
                message = await self.transport.recv()
                if is_response(message):
                    self._resolve(message)
                elif is_notification(message):
                    method = message.get("method", "")
                    params = message.get("params", {})
                    for handler in self._notifications:
                        handler(method, params)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("MCP reader loop stopped: %s", exc)
            self._closed_reason = exc
            self._fail_pending(exc)

    def _resolve(self, message: dict[str, Any]) -> None:
        try:
            msg_id = int(message["id"])
        except (TypeError, ValueError):
            logger.debug("Dropping response with unusable id: %r", message.get("id"))
            return
        future = self._pending.pop(msg_id, None)
        if future is None or future.done():
            return
        try:
            future.set_result(extract_result(message))
        except Exception as exc:
            future.set_exception(exc)

    def _fail_pending(self, exc: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)
