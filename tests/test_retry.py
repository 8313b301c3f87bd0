import time

import pytest

from pagewait.engine.errors import SessionError
from pagewait.engine.retry import ACTION_RETRY_LIMIT, backoff, retry_with_backoff, should_retry


def test_should_retry_when_error_and_below_limit() -> None:
    assert should_retry(step_attempt=1, max_attempts=2, has_error=True)


def test_should_not_retry_when_no_error() -> None:
    assert not should_retry(step_attempt=1, max_attempts=2, has_error=False)


def test_should_not_retry_when_limit_reached() -> None:
    assert not should_retry(step_attempt=2, max_attempts=2, has_error=True)


def test_actions_get_exactly_one_retry() -> None:
    assert ACTION_RETRY_LIMIT == 1


class Flaky:
    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return self.result


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.mark.asyncio
async def test_backoff_doubles_the_delay_between_attempts() -> None:
    fn = Flaky(failures=2)
    sleep = RecordingSleep()

    result = await retry_with_backoff(fn, max_retries=3, delay_ms=100, sleep=sleep)

    assert result == "ok"
    assert fn.calls == 3
    assert sleep.delays == pytest.approx([0.1, 0.2])


@pytest.mark.asyncio
async def test_backoff_real_elapsed_time() -> None:
    fn = Flaky(failures=2)
    started = time.monotonic()

    result = await retry_with_backoff(fn, max_retries=3, delay_ms=100)

    elapsed = time.monotonic() - started
    assert result == "ok"
    assert 0.3 <= elapsed < 0.45


@pytest.mark.asyncio
async def test_backoff_reraises_last_error_after_max_attempts() -> None:
    fn = Flaky(failures=10)
    sleep = RecordingSleep()

    with pytest.raises(ConnectionError, match="failure 3"):
        await retry_with_backoff(fn, max_retries=3, delay_ms=100, sleep=sleep)

    assert fn.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_backoff_does_not_retry_session_errors() -> None:
    calls = 0

    async def broken() -> None:
        nonlocal calls
        calls += 1
        raise SessionError("session deleted")

    with pytest.raises(SessionError):
        await retry_with_backoff(broken, max_retries=5, delay_ms=0)
    assert calls == 1


@pytest.mark.asyncio
async def test_backoff_only_retries_selected_errors() -> None:
    fn = Flaky(failures=1)

    with pytest.raises(ConnectionError):
        await retry_with_backoff(fn, max_retries=3, delay_ms=0, retry_on=TimeoutError)
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_backoff_decorator() -> None:
    fn = Flaky(failures=1, result="decorated")

    @backoff(max_retries=2, delay_ms=1)
    async def call() -> str:
        return await fn()

    assert await call() == "decorated"
    assert fn.calls == 2


@pytest.mark.parametrize("max_retries, delay_ms", [(0, 100), (3, -1)])
def test_backoff_rejects_bad_budget(max_retries: int, delay_ms: float) -> None:
    with pytest.raises(ValueError):
        backoff(max_retries=max_retries, delay_ms=delay_ms)
