import asyncio

import pytest

from pagewait.mcp_client.jsonrpc import (
    JsonRpcError,
    build_notification,
    build_request,
    extract_result,
    is_notification,
    is_response,
)
from pagewait.mcp_client.session import McpSession
from pagewait.mcp_client.transport import TransportClosedError


class FakeTransport:
    """Answers each request through a handler; recv() blocks on a queue."""

    def __init__(self, handler=None) -> None:
        self.handler = handler or (lambda message: {"jsonrpc": "2.0", "id": message["id"], "result": {}})
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.stopped = False

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self.stopped = True

    async def send(self, payload: dict) -> None:
        self.sent.append(payload)
        if "id" in payload:
            reply = self.handler(payload)
            if reply is not None:
                await self.inbox.put(reply)

    async def recv(self) -> dict:
        message = await self.inbox.get()
        if isinstance(message, BaseException):
            raise message
        return message


def test_request_and_notification_framing() -> None:
    request = build_request("tools/list", {}).to_dict()
    notification = build_notification("notifications/initialized").to_dict()

    assert request["jsonrpc"] == "2.0" and isinstance(request["id"], int)
    assert notification == {"jsonrpc": "2.0", "method": "notifications/initialized"}
    assert is_notification(notification)
    assert not is_response(notification)


def test_extract_result_raises_rpc_errors() -> None:
    with pytest.raises(JsonRpcError) as info:
        extract_result({"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}})
    assert info.value.code == -32601


@pytest.mark.asyncio
async def test_initialize_sends_initialized_notification() -> None:
    transport = FakeTransport()
    session = McpSession(transport, timeout_seconds=1)

    await session.start()
    try:
        await session.initialize()
    finally:
        await session.stop()

    assert [m["method"] for m in transport.sent] == ["initialize", "notifications/initialized"]
    assert transport.sent[0]["params"]["clientInfo"]["name"] == "pagewait"
    assert transport.stopped


@pytest.mark.asyncio
async def test_call_tool_returns_result() -> None:
    def handler(message):
        return {"jsonrpc": "2.0", "id": message["id"], "result": {"echo": message["params"]["name"]}}

    async with McpSession(FakeTransport(handler), timeout_seconds=1) as session:
        assert await session.call_tool("take_snapshot", {}) == {"echo": "take_snapshot"}


@pytest.mark.asyncio
async def test_error_response_raises() -> None:
    def handler(message):
        return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32000, "message": "tool failed"}}

    session = McpSession(FakeTransport(handler), timeout_seconds=1)
    await session.start()
    try:
        with pytest.raises(JsonRpcError, match="tool failed"):
            await session.call_tool("click", {"uid": "1_1"})
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_notifications_reach_handlers() -> None:
    transport = FakeTransport()
    session = McpSession(transport, timeout_seconds=1)
    seen: list[str] = []
    session.on_notification(lambda method, params: seen.append(method))

    await session.start()
    try:
        await transport.inbox.put({"jsonrpc": "2.0", "method": "notifications/message", "params": {}})
        await session.list_tools()
    finally:
        await session.stop()

    assert seen == ["notifications/message"]


@pytest.mark.asyncio
async def test_closed_transport_fails_pending_requests_promptly() -> None:
    transport = FakeTransport(handler=lambda message: None)
    session = McpSession(transport, timeout_seconds=30)
    await session.start()
    try:
        pending = asyncio.create_task(session.call_tool("take_snapshot", {}))
        await asyncio.sleep(0.01)
        await transport.inbox.put(TransportClosedError("MCP transport closed"))

        with pytest.raises(TransportClosedError):
            await asyncio.wait_for(pending, timeout=1)
        with pytest.raises(TransportClosedError):
            await session.list_tools()
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_request_times_out() -> None:
    session = McpSession(FakeTransport(handler=lambda message: None), timeout_seconds=0.05)
    await session.start()
    try:
        with pytest.raises(asyncio.TimeoutError):
            await session.list_tools()
    finally:
        await session.stop()


@pytest.mark.asyncio
async def test_context_manager_stops_the_server_when_initialize_fails() -> None:
    def handler(message):
        return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32602, "message": "unsupported protocol"}}

    transport = FakeTransport(handler)

    with pytest.raises(JsonRpcError, match="unsupported protocol"):
        async with McpSession(transport, timeout_seconds=1):
            pass

    assert transport.stopped
