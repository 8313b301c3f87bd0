from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import pytest

from pagewait.browser.locator import Locator
from pagewait.config import EngineConfig
from pagewait.engine.errors import NotFoundError, RejectedError, StaleReferenceError
from pagewait.engine.wait import WaitEngine


@dataclass
class FakeElement:
    ref: str
    appear_at: float
    visible_at: float | None
    enabled_at: float | None
    detach_at: float | None = None
    text: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    rejections: int = 0
    detaches_on_action: int = 0
    value: str = ""
    clicks: int = 0


class FakeHandle:
    """In-memory RemoteHandle whose elements change state on a timetable."""

    def __init__(self) -> None:
        self.elements: dict[Locator, FakeElement] = {}
        self.calls: list[str] = []
        self.failure: Exception | None = None
        self.latency = 0.0
        self.image = b"\x89PNG\r\n\x1a\nfake"
        self.capture_error: Exception | None = None
        self.capture_latency = 0.0
        self.action_failure: Exception | None = None
        self.action_latency = 0.0
        self.url = "about:blank"
        self.title = ""
        self.history: list[str] = []
        self.scrolled: list[str] = []
        self.visited: list[str] = []

    def add(
        self,
        locator: Locator,
        appear_after: float = 0.0,
        visible_after: float | None = 0.0,
        enabled_after: float | None = 0.0,
        detach_after: float | None = None,
        **fields,
    ) -> FakeElement:
        now = time.monotonic()
        element = FakeElement(
            ref=f"ref-{len(self.elements) + 1}",
            appear_at=now + appear_after,
            visible_at=None if visible_after is None else now + visible_after,
            enabled_at=None if enabled_after is None else now + enabled_after,
            detach_at=None if detach_after is None else now + detach_after,
            **fields,
        )
        self.elements[locator] = element
        return element

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if self.failure is not None:
            raise self.failure
        if self.latency:
            await asyncio.sleep(self.latency)

    @staticmethod
    def _reached(moment: float | None) -> bool:
        return moment is not None and time.monotonic() >= moment

    def _element(self, ref: str) -> FakeElement:
        for element in self.elements.values():
            if element.ref == ref:
                if self._reached(element.detach_at):
                    raise StaleReferenceError(f"{ref} detached")
                return element
        raise StaleReferenceError(f"{ref} unknown")

    async def navigate(self, url: str) -> None:
        await self._enter("navigate")
        self.visited.append(url)
        self.url = url

    async def locate(self, locator: Locator) -> str:
        await self._enter("locate")
        element = self.elements.get(locator)
        if element is None or not self._reached(element.appear_at) or self._reached(element.detach_at):
            raise NotFoundError(f"nothing matches {locator}")
        return element.ref

    async def is_visible(self, ref: str) -> bool:
        await self._enter("is_visible")
        return self._reached(self._element(ref).visible_at)

    async def is_enabled(self, ref: str) -> bool:
        await self._enter("is_enabled")
        return self._reached(self._element(ref).enabled_at)

    async def _act(self, name: str, ref: str, refusal: str) -> FakeElement:
        await self._enter(name)
        if self.action_latency:
            await asyncio.sleep(self.action_latency)
        if self.action_failure is not None:
            raise self.action_failure
        element = self._element(ref)
        if element.detaches_on_action > 0:
            element.detaches_on_action -= 1
            raise StaleReferenceError(f"{ref} was re-rendered")
        if element.rejections > 0:
            element.rejections -= 1
            raise RejectedError(refusal)
        return element

    async def click(self, ref: str) -> None:
        element = await self._act("click", ref, "click intercepted")
        element.clicks += 1

    async def send_text(self, ref: str, text: str) -> None:
        element = await self._act("send_text", ref, "element is not editable")
        element.value = text

    async def read_text(self, ref: str) -> str:
        await self._enter("read_text")
        return self._element(ref).text

    async def read_attribute(self, ref: str, name: str) -> str | None:
        await self._enter("read_attribute")
        return self._element(ref).attributes.get(name)

    async def scroll_into_view(self, ref: str) -> None:
        await self._enter("scroll_into_view")
        self.scrolled.append(self._element(ref).ref)

    async def current_url(self) -> str:
        await self._enter("current_url")
        return self.url

    async def page_title(self) -> str:
        await self._enter("page_title")
        return self.title

    async def reload(self) -> None:
        await self._enter("reload")
        self.history.append("reload")

    async def go_back(self) -> None:
        await self._enter("go_back")
        self.history.append("back")

    async def go_forward(self) -> None:
        await self._enter("go_forward")
        self.history.append("forward")

    async def execute_script(self, function: str, *args):
        await self._enter("execute_script")
        return {"function": function, "args": list(args)}

    async def capture_image(self) -> bytes:
        self.calls.append("capture_image")
        if self.capture_latency:
            await asyncio.sleep(self.capture_latency)
        if self.capture_error is not None:
            raise self.capture_error
        return self.image


class RecordingSink:
    def __init__(self) -> None:
        self.steps: list[str] = []
        self.attachments: list[tuple[str, bytes, str]] = []

    def step(self, name: str) -> None:
        self.steps.append(name)

    def attach(self, name: str, content: bytes, mime_type: str = "text/plain") -> None:
        self.attachments.append((name, content, mime_type))


@pytest.fixture
def handle() -> FakeHandle:
    return FakeHandle()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(explicit_wait_ms=300, poll_interval_ms=50)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(handle: FakeHandle, config: EngineConfig) -> WaitEngine:
    return WaitEngine(handle, config)
