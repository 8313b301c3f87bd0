from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pagewait.engine.errors import (
    ActionRejectedError,
    StaleReferenceError,
    WaitFailure,
    WaitTimeoutError,
)


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    STALE_REFERENCE = "stale_reference"
    ACTION_REJECTED = "action_rejected"


_KINDS: tuple[tuple[type[Exception], FailureKind], ...] = (
    (WaitTimeoutError, FailureKind.TIMEOUT),
    (StaleReferenceError, FailureKind.STALE_REFERENCE),
    (ActionRejectedError, FailureKind.ACTION_REJECTED),
)


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of a single wait-then-act operation."""

    target: str | None = None
    error: WaitFailure | None = None
    elapsed_ms: float = 0.0

    @classmethod
    def resolved(cls, target: str | None, elapsed_ms: float) -> ActionResult:
        return cls(target=target, elapsed_ms=elapsed_ms)

    @classmethod
    def failed(cls, error: WaitFailure, elapsed_ms: float) -> ActionResult:
        return cls(error=error, elapsed_ms=elapsed_ms)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> FailureKind | None:
        if self.error is None:
            return None
        for error_type, kind in _KINDS:
            if isinstance(self.error, error_type):
                return kind
        return FailureKind.TIMEOUT

    def unwrap(self) -> str | None:
        if self.error is not None:
            raise self.error
        return self.target
