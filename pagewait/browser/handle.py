from __future__ import annotations

from typing import Any, Protocol

from pagewait.browser.locator import Locator

TargetRef = str


class RemoteHandle(Protocol):
    """Capabilities the wait engine needs from a remote-controlled browser.

    Every call may raise ``SessionError``. Calls that take a ``TargetRef`` raise
    ``StaleReferenceError`` once the element is detached from the page.
    """

    async def navigate(self, url: str) -> None: ...

    async def locate(self, locator: Locator) -> TargetRef:
        """Return a reference to the first match or raise ``NotFoundError``."""
        ...

    async def is_visible(self, ref: TargetRef) -> bool: ...

    async def is_enabled(self, ref: TargetRef) -> bool: ...

    async def click(self, ref: TargetRef) -> None:
        """Click the element or raise ``RejectedError``."""
        ...

    async def send_text(self, ref: TargetRef, text: str) -> None: ...

    async def read_text(self, ref: TargetRef) -> str: ...

    async def read_attribute(self, ref: TargetRef, name: str) -> str | None: ...

    async def scroll_into_view(self, ref: TargetRef) -> None: ...

    async def current_url(self) -> str: ...

    async def page_title(self) -> str: ...

    async def reload(self) -> None: ...

    async def go_back(self) -> None: ...

    async def go_forward(self) -> None: ...

    async def execute_script(self, function: str, *args: Any) -> Any:
        """Run a JavaScript function in the page with JSON-serializable args."""
        ...

    async def capture_image(self) -> bytes: ...
