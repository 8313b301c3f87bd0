from __future__ import annotations

import contextlib
import logging
import os
import shutil
from collections.abc import AsyncIterator

from pagewait.browser.devtools_handle import DevToolsHandle
from pagewait.browser.page import BasePage
from pagewait.config import EngineConfig
from pagewait.engine.errors import PageWaitError
from pagewait.engine.wait import WaitEngine
from pagewait.mcp_client.session import McpSession
from pagewait.mcp_client.transport import StdioTransport
from pagewait.reporting.sink import ReportSink

logger = logging.getLogger(__name__)


def server_args(config: EngineConfig) -> list[str]:
    args = list(config.server_args)

    has_isolated = "--isolated" in args
    has_custom_session_target = any(
        token in {"-u", "--browserUrl", "-w", "--wsEndpoint", "--userDataDir"}
        or token.startswith("--browserUrl=")
        or token.startswith("--wsEndpoint=")
        or token.startswith("--userDataDir=")
        for token in args
    )
    if not has_isolated and not has_custom_session_target:
        args.append("--isolated")

    if config.headless and "--headless" not in args:
        args.append("--headless")
    if not any(token == "--viewport" or token.startswith("--viewport=") for token in args):
        args.extend(["--viewport", f"{config.window_width}x{config.window_height}"])

    has_executable_arg = any(
        token in {"-e", "--executablePath"} or token.startswith("--executablePath=")
        for token in args
    )
    if not has_executable_arg:
        browser_executable = resolve_browser_executable(config.browser)
        if browser_executable:
            args.extend(["--executablePath", browser_executable])

    return args


def resolve_browser_executable(browser: str) -> str | None:
    configured = os.getenv("CHROME_PATH", "").strip().strip('"')
    if configured and os.path.exists(configured):
        return configured

    program_files = os.getenv("ProgramFiles", "C:\\Program Files")
    program_files_x86 = os.getenv("ProgramFiles(x86)", "C:\\Program Files (x86)")
    local_app_data = os.getenv("LOCALAPPDATA", "")

    if browser == "edge":
        candidates = [
            os.path.join(program_files, "Microsoft", "Edge", "Application", "msedge.exe"),
            os.path.join(program_files_x86, "Microsoft", "Edge", "Application", "msedge.exe"),
        ]
    else:
        candidates = [
            os.path.join(program_files, "Google", "Chrome", "Application", "chrome.exe"),
            os.path.join(program_files_x86, "Google", "Chrome", "Application", "chrome.exe"),
            os.path.join(local_app_data, "Google", "Chrome", "Application", "chrome.exe"),
        ]
    for candidate in candidates:
        if candidate and os.path.exists(candidate):
            return candidate
    return None


def resolve_command(command: str) -> str:
    candidate = command.strip().strip('"')
    resolved = shutil.which(candidate)
    if resolved and os.name == "nt" and resolved.lower().endswith(".ps1"):
        cmd_candidate = str(resolved)[:-4] + ".cmd"
        if os.path.exists(cmd_candidate):
            return cmd_candidate
    if resolved:
        return resolved
    if os.name == "nt" and not candidate.lower().endswith(".cmd"):
        resolved_cmd = shutil.which(f"{candidate}.cmd")
        if resolved_cmd:
            return resolved_cmd
    raise RuntimeError(
        f"MCP server command not found: {command}. Ensure Node.js/npx is installed and available in PATH."
    )


@contextlib.asynccontextmanager
async def open_page(
    config: EngineConfig,
    sink: ReportSink | None = None,
    page_class: type[BasePage] = BasePage,
) -> AsyncIterator[BasePage]:
    """Start the DevTools MCP server and yield a page object bound to it.

    Open pages are closed and the server is stopped on exit.
    """
    transport = StdioTransport(resolve_command(config.server_command), server_args(config))
    async with McpSession(transport, timeout_seconds=config.step_timeout_seconds) as session:
        handle = DevToolsHandle(session, load_policy=config.page_load_policy())
        engine = WaitEngine(handle, config, sink=sink)
        try:
            yield page_class(engine, config)
        finally:
            try:
                await handle.close_all_pages()
            except PageWaitError as exc:
                logger.debug("Could not close pages: %s", exc)
