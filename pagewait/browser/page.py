from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

from pagewait.browser.handle import TargetRef
from pagewait.browser.locator import Locator
from pagewait.config import EngineConfig
from pagewait.engine.conditions import ENABLED, LOCATED, VISIBLE
from pagewait.engine.errors import WaitTimeoutError
from pagewait.engine.policy import PollPolicy
from pagewait.engine.retry import retry_with_backoff
from pagewait.engine.wait import WaitEngine
from pagewait.reporting.sink import safe_file_name

logger = logging.getLogger(__name__)


class BasePage:
    """Base class for page objects.

    Waits and actions go through the WaitEngine, so every method is bounded by
    the page's default policy unless a ``timeout_ms`` is given. Failed waits
    raise the typed ``WaitFailure`` carried by the engine's result.
    """

    def __init__(self, engine: WaitEngine, config: EngineConfig | None = None) -> None:
        self.engine = engine
        self.config = config or engine.config
        self.policy = self.config.default_policy()

    def _policy(self, timeout_ms: int | None) -> PollPolicy:
        if timeout_ms is None:
            return self.policy
        return PollPolicy(timeout_ms=timeout_ms, interval_ms=min(self.policy.interval_ms, timeout_ms))

    async def navigate(self, url: str) -> None:
        """Navigate to an absolute URL, retrying once if the page never becomes ready."""
        await retry_with_backoff(
            lambda: self.engine.handle.navigate(url),
            max_retries=2,
            delay_ms=500,
            retry_on=WaitTimeoutError,
        )
        logger.info("Navigated to %s", url)

    async def open(self, path: str = "") -> None:
        """Navigate to a path under the configured base URL."""
        await self.navigate(urljoin(self.config.base_url.rstrip("/") + "/", path.lstrip("/")))

    async def wait_for_element(self, locator: Locator, timeout_ms: int | None = None) -> TargetRef:
        result = await self.engine.await_condition(locator, LOCATED, self._policy(timeout_ms))
        return result.unwrap()

    async def wait_for_visible(self, locator: Locator, timeout_ms: int | None = None) -> TargetRef:
        result = await self.engine.resolve_visible(locator, self._policy(timeout_ms))
        return result.unwrap()

    async def wait_for_clickable(self, locator: Locator, timeout_ms: int | None = None) -> TargetRef:
        result = await self.engine.resolve_clickable(locator, self._policy(timeout_ms))
        return result.unwrap()

    async def wait_for_element_to_disappear(self, locator: Locator, timeout_ms: int | None = None) -> None:
        result = await self.engine.await_gone(locator, self._policy(timeout_ms))
        result.unwrap()

    async def click(self, locator: Locator, timeout_ms: int | None = None) -> None:
        result = await self.engine.perform_click(locator, self._policy(timeout_ms))
        result.unwrap()
        logger.debug("Clicked %s", locator)

    async def type(self, locator: Locator, text: str, timeout_ms: int | None = None) -> None:
        result = await self.engine.perform_input(locator, text, self._policy(timeout_ms))
        result.unwrap()
        logger.debug("Typed into %s", locator)

    async def get_text(self, locator: Locator, timeout_ms: int | None = None) -> str:
        return await self.engine.read_text(locator, self._policy(timeout_ms))

    async def get_attribute(self, locator: Locator, name: str, timeout_ms: int | None = None) -> str | None:
        return await self.engine.read_attribute(locator, name, self._policy(timeout_ms))

    async def is_displayed(self, locator: Locator) -> bool:
        return await self.engine.is_condition_true_now(locator, VISIBLE)

    async def is_enabled(self, locator: Locator) -> bool:
        return await self.engine.is_condition_true_now(locator, ENABLED)

    async def take_screenshot(self, file_name: str) -> bytes:
        return await self.engine.capture(safe_file_name(file_name))

    async def scroll_to_element(self, locator: Locator, timeout_ms: int | None = None) -> None:
        ref = await self.wait_for_element(locator, timeout_ms)
        await self.engine.handle.scroll_into_view(ref)

    async def execute_script(self, function: str, *args: Any) -> Any:
        return await self.engine.handle.execute_script(function, *args)

    async def get_current_url(self) -> str:
        return await self.engine.handle.current_url()

    async def get_title(self) -> str:
        return await self.engine.handle.page_title()

    async def refresh(self) -> None:
        await self.engine.handle.reload()

    async def go_back(self) -> None:
        await self.engine.handle.go_back()

    async def go_forward(self) -> None:
        await self.engine.handle.go_forward()
