from __future__ import annotations

from typing import Any


class PageWaitError(Exception):
    """Base class for every error raised by the wait engine and its handles."""


class SessionError(PageWaitError):
    """The remote session is broken. Never retried."""


class NotFoundError(PageWaitError):
    """The handle could not locate the target (yet)."""


class RejectedError(PageWaitError):
    """The remote refused to perform an action on a located target."""


class WaitFailure(PageWaitError):
    """A non-fatal, diagnosable failure of a wait or a wait-then-act operation."""

    reason = "wait failed"

    def __init__(
        self,
        detail: str = "",
        *,
        locator: Any = None,
        condition: str | None = None,
        elapsed_ms: float | None = None,
    ) -> None:
        self.detail = detail
        self.locator = locator
        self.condition = condition
        self.elapsed_ms = elapsed_ms
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.reason]
        if self.locator is not None:
            parts.append(f"locator={self.locator}")
        if self.condition:
            parts.append(f"condition={self.condition}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed={self.elapsed_ms:.0f}ms")
        message = " ".join(parts)
        if self.detail:
            message = f"{message}: {self.detail}"
        return message


class WaitTimeoutError(WaitFailure):
    reason = "timed out"

    def __init__(self, detail: str = "", *, found: bool = False, **context: Any) -> None:
        self.found = found
        if not detail:
            detail = "condition never became true" if found else "target was never located"
        super().__init__(detail, **context)


class StaleReferenceError(WaitFailure):
    reason = "stale reference"


class ActionRejectedError(WaitFailure):
    reason = "action rejected"
