from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field

from dotenv import load_dotenv

from pagewait.engine.policy import PollPolicy

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class EngineConfig:
    browser: str = "chrome"
    headless: bool = False
    window_width: int = 1920
    window_height: int = 1080
    explicit_wait_ms: int = 20000
    poll_interval_ms: int = 500
    page_load_timeout_ms: int = 30000
    base_url: str = "https://example.com"
    capture_on_failure: bool = False
    artifacts_dir: str = "artifacts"
    step_timeout_seconds: float = 20.0
    capture_timeout_seconds: float = 10.0
    server_command: str = "npx"
    server_args: tuple[str, ...] = field(default=("-y", "chrome-devtools-mcp@latest"))
    verbose: bool = False

    def __post_init__(self) -> None:
        # Validates the defaults early instead of at the first wait.
        self.default_policy()

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> EngineConfig:
        load_dotenv(dotenv_path)
        return cls(
            browser=os.getenv("BROWSER", "chrome").strip().lower() or "chrome",
            headless=_env_flag("HEADLESS"),
            window_width=_env_int("WINDOW_WIDTH", 1920),
            window_height=_env_int("WINDOW_HEIGHT", 1080),
            explicit_wait_ms=_env_int("EXPLICIT_WAIT", 20000),
            poll_interval_ms=_env_int("POLL_INTERVAL", 500),
            page_load_timeout_ms=_env_int("PAGE_LOAD_TIMEOUT", 30000),
            base_url=os.getenv("BASE_URL", "https://example.com").strip(),
            capture_on_failure=_env_flag("SCREENSHOTS_ON_FAILURE"),
            artifacts_dir=os.getenv("ARTIFACTS_DIR", "artifacts").strip() or "artifacts",
            step_timeout_seconds=_env_float("STEP_TIMEOUT_SECONDS", 20.0),
            server_command=os.getenv("MCP_SERVER_COMMAND", "npx").strip() or "npx",
            server_args=tuple(
                shlex.split(os.getenv("MCP_SERVER_ARGS", "-y chrome-devtools-mcp@latest"), posix=False)
            ),
            verbose=_env_flag("VERBOSE"),
        )

    def default_policy(self) -> PollPolicy:
        return PollPolicy(timeout_ms=self.explicit_wait_ms, interval_ms=self.poll_interval_ms)

    def page_load_policy(self) -> PollPolicy:
        return PollPolicy(
            timeout_ms=self.page_load_timeout_ms,
            interval_ms=min(self.poll_interval_ms, self.page_load_timeout_ms),
        )
