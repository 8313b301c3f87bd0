from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pagewait.browser.handle import RemoteHandle, TargetRef
from pagewait.engine.errors import StaleReferenceError

Check = Callable[[RemoteHandle, TargetRef], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class WaitCondition:
    """A named predicate over a located target's observable state."""

    name: str
    check: Check

    def __str__(self) -> str:
        return self.name


async def _located(handle: RemoteHandle, ref: TargetRef) -> bool:
    return True


async def _visible(handle: RemoteHandle, ref: TargetRef) -> bool:
    return await handle.is_visible(ref)


async def _enabled(handle: RemoteHandle, ref: TargetRef) -> bool:
    return await handle.is_enabled(ref)


async def _stale(handle: RemoteHandle, ref: TargetRef) -> bool:
    try:
        await handle.is_visible(ref)
    except StaleReferenceError:
        return True
    return False


LOCATED = WaitCondition("located", _located)
VISIBLE = WaitCondition("visible", _visible)
ENABLED = WaitCondition("enabled", _enabled)
STALE = WaitCondition("stale", _stale)

CLICKABLE_STAGES: tuple[WaitCondition, ...] = (LOCATED, VISIBLE, ENABLED)
VISIBLE_STAGES: tuple[WaitCondition, ...] = (LOCATED, VISIBLE)
