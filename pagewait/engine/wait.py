from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from pagewait.browser.actions import ActionResult
from pagewait.browser.handle import RemoteHandle, TargetRef
from pagewait.browser.locator import Locator
from pagewait.config import EngineConfig
from pagewait.engine.conditions import (
    CLICKABLE_STAGES,
    STALE,
    VISIBLE_STAGES,
    WaitCondition,
)
from pagewait.engine.errors import (
    ActionRejectedError,
    NotFoundError,
    RejectedError,
    StaleReferenceError,
    WaitTimeoutError,
)
from pagewait.engine.policy import PollPolicy
from pagewait.engine.retry import ACTION_RETRY_LIMIT, should_retry
from pagewait.reporting.sink import ReportSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


async def _bounded(call: Awaitable[T], hard_stop: float) -> T:
    return await asyncio.wait_for(call, timeout=max(hard_stop - time.monotonic(), 0.0))


class WaitEngine:
    """Bounded-time waits and wait-then-act operations over a RemoteHandle.

    Every operation runs against a single deadline taken from its PollPolicy.
    A remote call still in flight when the deadline passes gets at most one
    more interval before it is cancelled, so no call outlives
    ``timeout_ms + interval_ms``.
    """

    def __init__(
        self,
        handle: RemoteHandle,
        config: EngineConfig,
        sink: ReportSink | None = None,
    ) -> None:
        self.handle = handle
        self.config = config
        self.sink = sink

    def _policy(self, policy: PollPolicy | None) -> PollPolicy:
        return policy if policy is not None else self.config.default_policy()

    async def await_condition(
        self,
        locator: Locator,
        condition: WaitCondition,
        policy: PollPolicy | None = None,
    ) -> ActionResult:
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        result = await self._poll(locator, condition, policy, started, deadline)
        return await self._finish(result, f"wait for {condition} {locator}", deadline + policy.interval)

    async def resolve_visible(self, locator: Locator, policy: PollPolicy | None = None) -> ActionResult:
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        result = await self._resolve(locator, VISIBLE_STAGES, policy, started, deadline)
        return await self._finish(result, f"resolve visible {locator}", deadline + policy.interval)

    async def resolve_clickable(self, locator: Locator, policy: PollPolicy | None = None) -> ActionResult:
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        result = await self._resolve(locator, CLICKABLE_STAGES, policy, started, deadline)
        return await self._finish(result, f"resolve clickable {locator}", deadline + policy.interval)

    async def perform_click(self, locator: Locator, policy: PollPolicy | None = None) -> ActionResult:
        return await self._perform(locator, CLICKABLE_STAGES, "click", self.handle.click, policy)

    async def perform_input(
        self,
        locator: Locator,
        text: str,
        policy: PollPolicy | None = None,
    ) -> ActionResult:
        """Replace the value of the target with ``text`` once it is visible."""

        async def send(ref: TargetRef) -> None:
            await self.handle.send_text(ref, text)

        return await self._perform(locator, VISIBLE_STAGES, "input", send, policy)

    async def read_text(self, locator: Locator, policy: PollPolicy | None = None) -> str:
        return await self._read(locator, "text", self.handle.read_text, policy)

    async def read_attribute(
        self,
        locator: Locator,
        name: str,
        policy: PollPolicy | None = None,
    ) -> str | None:
        async def read(ref: TargetRef) -> str | None:
            return await self.handle.read_attribute(ref, name)

        return await self._read(locator, f"attribute {name}", read, policy)

    async def await_gone(self, locator: Locator, policy: PollPolicy | None = None) -> ActionResult:
        """Wait until the element currently matching ``locator`` is detached.

        Succeeds at once when nothing matches right now.
        """
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        hard_stop = deadline + policy.interval
        step = f"wait for {locator} to go"
        try:
            ref = await _bounded(self.handle.locate(locator), hard_stop)
        except NotFoundError:
            return ActionResult.resolved(None, _elapsed_ms(started))
        except asyncio.TimeoutError:
            return await self._finish(self._timeout(locator, STALE, started, found=False), step, hard_stop)
        result = await self._poll(locator, STALE, policy, started, deadline, ref=ref)
        if result.success:
            result = ActionResult.resolved(None, result.elapsed_ms)
        return await self._finish(result, step, hard_stop)

    async def is_condition_true_now(self, locator: Locator, condition: WaitCondition) -> bool:
        """Single check without waiting. Any failure reads as ``False``."""
        bound = self.config.default_policy().timeout
        try:
            ref = await asyncio.wait_for(self.handle.locate(locator), timeout=bound)
            return bool(await asyncio.wait_for(condition.check(self.handle, ref), timeout=bound))
        except Exception as exc:
            logger.debug("Check %s on %s is false: %s", condition, locator, exc)
            return False

    async def capture(self, name: str) -> bytes:
        image = await asyncio.wait_for(
            self.handle.capture_image(),
            timeout=self.config.capture_timeout_seconds,
        )
        if self.sink is not None:
            self.sink.attach(name, image, "image/png")
        return image

    async def _poll(
        self,
        locator: Locator,
        condition: WaitCondition,
        policy: PollPolicy,
        started: float,
        deadline: float,
        ref: TargetRef | None = None,
    ) -> ActionResult:
        hard_stop = deadline + policy.interval
        polls = 0
        while True:
            polls += 1
            try:
                if ref is None:
                    ref = await _bounded(self.handle.locate(locator), hard_stop)
                if await _bounded(condition.check(self.handle, ref), hard_stop):
                    logger.debug("%s is %s after %d poll(s)", locator, condition, polls)
                    return ActionResult.resolved(ref, _elapsed_ms(started))
            except NotFoundError:
                pass
            except StaleReferenceError as exc:
                elapsed = _elapsed_ms(started)
                error = StaleReferenceError(
                    str(exc.detail or exc),
                    locator=locator,
                    condition=condition.name,
                    elapsed_ms=elapsed,
                )
                error.__cause__ = exc
                return ActionResult.failed(error, elapsed)
            except asyncio.TimeoutError:
                logger.debug("Remote call for %s outlived the deadline", locator)
                break

            now = time.monotonic()
            if now >= deadline:
                break
            await asyncio.sleep(min(policy.interval, deadline - now))

        return self._timeout(locator, condition, started, found=ref is not None)

    async def _resolve(
        self,
        locator: Locator,
        stages: Sequence[WaitCondition],
        policy: PollPolicy,
        started: float,
        deadline: float,
    ) -> ActionResult:
        # Stages share the deadline: each one only gets what its predecessors left.
        result = ActionResult.resolved(None, 0.0)
        for stage in stages:
            result = await self._poll(locator, stage, policy, started, deadline)
            if not result.success:
                break
        return result

    async def _perform(
        self,
        locator: Locator,
        stages: Sequence[WaitCondition],
        action: str,
        act: Callable[[TargetRef], Awaitable[Any]],
        policy: PollPolicy | None,
    ) -> ActionResult:
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        hard_stop = deadline + policy.interval
        step = f"{action} {locator}"

        result = await self._resolve(locator, stages, policy, started, deadline)
        if not result.success:
            return await self._finish(result, step, hard_stop)

        attempt = 1
        while True:
            try:
                await _bounded(act(result.target), hard_stop)
                logger.debug("%s done after %d attempt(s)", step, attempt)
                return ActionResult.resolved(result.target, _elapsed_ms(started))
            except (RejectedError, StaleReferenceError) as exc:
                rejection: Exception = exc
                logger.debug("%s rejected on attempt %d: %s", step, attempt, exc)
            except asyncio.TimeoutError:
                return await self._finish(self._timeout(locator, action, started, found=True), step, hard_stop)

            if not should_retry(attempt, ACTION_RETRY_LIMIT + 1, has_error=True):
                break
            if time.monotonic() >= deadline:
                break
            attempt += 1
            result = await self._resolve(locator, stages, policy, started, deadline)
            if not result.success:
                rejection = result.error or rejection
                break

        elapsed = _elapsed_ms(started)
        error = ActionRejectedError(
            f"{rejection} (after {attempt} attempt(s))",
            locator=locator,
            condition=action,
            elapsed_ms=elapsed,
        )
        error.__cause__ = rejection
        return await self._finish(ActionResult.failed(error, elapsed), step, hard_stop)

    async def _read(
        self,
        locator: Locator,
        what: str,
        reader: Callable[[TargetRef], Awaitable[T]],
        policy: PollPolicy | None,
    ) -> T:
        policy = self._policy(policy)
        started = time.monotonic()
        deadline = started + policy.timeout
        step = f"read {what} of {locator}"

        result = await self._resolve(locator, VISIBLE_STAGES, policy, started, deadline)
        if result.success:
            try:
                return await _bounded(reader(result.target), deadline + policy.interval)
            except StaleReferenceError as exc:
                elapsed = _elapsed_ms(started)
                error = StaleReferenceError(str(exc), locator=locator, condition=what, elapsed_ms=elapsed)
                error.__cause__ = exc
                result = ActionResult.failed(error, elapsed)
            except asyncio.TimeoutError:
                result = self._timeout(locator, what, started, found=True)
        result = await self._finish(result, step, deadline + policy.interval)
        raise result.error

    @staticmethod
    def _timeout(
        locator: Locator,
        condition: WaitCondition | str,
        started: float,
        found: bool,
    ) -> ActionResult:
        elapsed = _elapsed_ms(started)
        error = WaitTimeoutError(
            found=found,
            locator=locator,
            condition=str(condition),
            elapsed_ms=elapsed,
        )
        return ActionResult.failed(error, elapsed)

    async def _finish(self, result: ActionResult, step: str, hard_stop: float) -> ActionResult:
        if result.success:
            return result
        logger.warning("%s failed: %s", step, result.error)
        if self.sink is None or not self.config.capture_on_failure:
            return result

        # The capture shares the operation's hard stop.
        hard_stop = min(hard_stop, time.monotonic() + self.config.capture_timeout_seconds)
        if hard_stop <= time.monotonic():
            logger.warning("No time left to capture a failure image for %s", step)
            return result
        try:
            image = await _bounded(self.handle.capture_image(), hard_stop)
        except Exception as exc:
            logger.warning("Could not capture failure image for %s: %s", step, exc)
            return result

        try:
            self.sink.step(f"FAILED: {step}: {result.error}")
            self.sink.attach(step, image, "image/png")
        except Exception as exc:
            logger.warning("Report sink rejected failure diagnostics for %s: %s", step, exc)
        return result
