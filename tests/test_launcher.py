import asyncio

import pytest

from pagewait.browser import launcher
from pagewait.browser.launcher import open_page, server_args
from pagewait.browser.page import BasePage
from pagewait.config import EngineConfig


class ScriptedServer:
    """Stands in for the MCP server process and answers the calls a page run makes."""

    instances: list["ScriptedServer"] = []

    def __init__(self, command: str, args: list[str]) -> None:
        self.command = command
        self.args = args
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.stopped = False
        ScriptedServer.instances.append(self)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self.stopped = True

    async def send(self, payload: dict) -> None:
        self.sent.append(payload)
        if "id" not in payload:
            return
        result: dict = {}
        if payload["method"] == "tools/call" and payload["params"]["name"] == "list_pages":
            result = {"content": [{"type": "text", "text": "## Pages\n0: about:blank [selected]"}]}
        await self.inbox.put({"jsonrpc": "2.0", "id": payload["id"], "result": result})

    async def recv(self) -> dict:
        return await self.inbox.get()


@pytest.fixture
def server(monkeypatch):
    ScriptedServer.instances = []
    monkeypatch.setattr(launcher, "StdioTransport", ScriptedServer)
    monkeypatch.setattr(launcher, "resolve_command", lambda command: command)
    monkeypatch.setenv("CHROME_PATH", "")
    return ScriptedServer


def test_server_args_add_isolation_headless_and_viewport(monkeypatch) -> None:
    monkeypatch.setenv("CHROME_PATH", "")
    config = EngineConfig(headless=True, window_width=1280, window_height=720, server_args=("-y", "chrome-devtools-mcp@latest"))

    args = server_args(config)

    assert args[:2] == ["-y", "chrome-devtools-mcp@latest"]
    assert "--isolated" in args
    assert "--headless" in args
    assert args[args.index("--viewport") + 1] == "1280x720"


def test_server_args_keep_explicit_session_target(monkeypatch) -> None:
    monkeypatch.setenv("CHROME_PATH", "")
    config = EngineConfig(server_args=("chrome-devtools-mcp", "--browserUrl=http://127.0.0.1:9222", "--viewport=800x600"))

    args = server_args(config)

    assert "--isolated" not in args
    assert "--headless" not in args
    assert args.count("--viewport") == 0


@pytest.mark.asyncio
async def test_open_page_initializes_and_cleans_up(server) -> None:
    config = EngineConfig(page_load_timeout_ms=5000, poll_interval_ms=250, step_timeout_seconds=1)

    async with open_page(config) as page:
        assert isinstance(page, BasePage)
        assert page.engine.handle.load_policy == config.page_load_policy()

    transport = server.instances[0]
    assert transport.command == "npx"
    methods = [message["method"] for message in transport.sent]
    assert methods[:2] == ["initialize", "notifications/initialized"]
    tools = [message["params"]["name"] for message in transport.sent if message["method"] == "tools/call"]
    assert tools == ["list_pages", "close_page"]
    assert transport.stopped


@pytest.mark.asyncio
async def test_open_page_builds_the_requested_page_class(server) -> None:
    class CartPage(BasePage):
        pass

    async with open_page(EngineConfig(step_timeout_seconds=1), page_class=CartPage) as page:
        assert isinstance(page, CartPage)
