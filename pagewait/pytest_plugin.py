"""pytest fixtures for page-object tests against a live browser.

Enable with ``pytest_plugins = ["pagewait.pytest_plugin"]`` in the top-level
conftest.py. ``browser_page`` starts the DevTools MCP server for one test and,
when ``SCREENSHOTS_ON_FAILURE`` is set, saves ``<test>_failure_<timestamp>.png``
under ``ARTIFACTS_DIR`` if the test failed.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from pagewait.browser.launcher import open_page
from pagewait.browser.page import BasePage
from pagewait.config import EngineConfig
from pagewait.reporting.sink import ArtifactSink

logger = logging.getLogger(__name__)


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    setattr(item, f"rep_{rep.when}", rep)


def _test_failed(node: Any) -> bool:
    report = getattr(node, "rep_call", None)
    return report is not None and report.failed


async def capture_failure(page: BasePage, node: Any) -> bytes | None:
    """Screenshot the page if the test behind ``node`` failed and capture is on."""
    if not page.config.capture_on_failure or not _test_failed(node):
        return None
    try:
        return await page.take_screenshot(f"{node.name}_failure")
    except Exception as exc:
        logger.warning("Could not capture failure screenshot for %s: %s", node.name, exc)
        return None


@pytest.fixture
def pagewait_config() -> EngineConfig:
    return EngineConfig.from_env()


@pytest_asyncio.fixture
async def browser_page(request, pagewait_config: EngineConfig) -> AsyncIterator[BasePage]:
    sink = ArtifactSink(pagewait_config.artifacts_dir)
    async with open_page(pagewait_config, sink=sink) as page:
        yield page
        await capture_failure(page, request.node)
