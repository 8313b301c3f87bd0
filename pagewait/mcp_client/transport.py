from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

logger = logging.getLogger(__name__)


class TransportClosedError(ConnectionError):
    """The MCP server process is gone or its stdout was closed."""


class StdioTransport:
    """Newline-delimited JSON over the stdio pipes of an MCP server process."""

    def __init__(self, command: str, args: list[str], cwd: str | None = None) -> None:
        self.command = command
        self.args = args
        self.cwd = cwd
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        logger.debug("Starting MCP server: %s %s", self.command, " ".join(self.args))
        self._process = await asyncio.create_subprocess_exec(
            self.command,
            *self.args,
            cwd=self.cwd or str(Path.cwd()),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def stop(self) -> None:
        if self._process is None:
            return
        process = self._process
        pid = process.pid
        if process.stdin is not None:
            process.stdin.close()
            with contextlib.suppress(Exception):
                await process.stdin.wait_closed()
        if process.returncode is None and os.name == "nt" and pid is not None:
            with contextlib.suppress(Exception):
                killer = await asyncio.create_subprocess_exec(
                    "taskkill",
                    "/T",
                    "/F",
                    "/PID",
                    str(pid),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await asyncio.wait_for(killer.wait(), timeout=5)
        if process.returncode is None:
            process.terminate()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(process.wait(), timeout=5)
            if process.returncode is None:
                process.kill()
                with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                    await asyncio.wait_for(process.wait(), timeout=5)
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None
        logger.debug("MCP server stopped (exit code %s)", process.returncode)
        self._process = None

    async def send(self, payload: dict) -> None:
        if self._process is None or self._process.stdin is None:
            raise TransportClosedError("Transport is not started")
        data = (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TransportClosedError(f"MCP server stdin closed: {exc}") from exc

    async def recv(self) -> dict:
        if self._process is None or self._process.stdout is None:
            raise TransportClosedError("Transport is not started")
        while True:
            line = await self._process.stdout.readline()
            if not line:
                raise TransportClosedError("MCP transport closed")
            try:
                message = json.loads(line.decode("utf-8"))
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON line from MCP server: %r", line[:200])
                continue
            if isinstance(message, dict):
                return message

    async def iter_stderr(self) -> AsyncIterator[str]:
        if self._process is None or self._process.stderr is None:
            return
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            yield line.decode("utf-8", errors="replace").rstrip()

    async def _drain_stderr(self) -> None:
        async for line in self.iter_stderr():
            logger.debug("[mcp-server] %s", line)
