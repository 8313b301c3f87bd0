from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from pagewait.browser.launcher import open_page
from pagewait.browser.locator import Locator
from pagewait.browser.page import BasePage
from pagewait.config import EngineConfig
from pagewait.engine.errors import PageWaitError
from pagewait.reporting.sink import ArtifactSink

console = Console()


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Open a page and run bounded waits and actions against it")
    parser.add_argument("--url", help="Page to open (defaults to BASE_URL)")
    parser.add_argument("--wait-for", action="append", default=[], metavar="CSS", help="Wait until visible")
    parser.add_argument("--click", action="append", default=[], metavar="CSS", help="Click once clickable")
    parser.add_argument(
        "--type",
        action="append",
        default=[],
        nargs=2,
        metavar=("CSS", "TEXT"),
        help="Replace the value of an input",
    )
    parser.add_argument("--timeout-ms", type=int, help="Override EXPLICIT_WAIT")
    parser.add_argument("--headless", action="store_true", help="Run the browser headless")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)
    if args.timeout_ms is not None and args.timeout_ms <= 0:
        parser.error("--timeout-ms must be a positive number of milliseconds")
    return args


async def run_steps(page: BasePage, args: argparse.Namespace) -> list[dict[str, Any]]:
    """Run the requested waits and actions in order; stop at the first failure."""
    steps: list[dict[str, Any]] = []
    plan: list[tuple[str, Any]] = [("wait_for", css) for css in args.wait_for]
    plan += [("type", pair) for pair in args.type]
    plan += [("click", css) for css in args.click]

    for action, target in plan:
        try:
            if action == "wait_for":
                await page.wait_for_visible(Locator.css(target))
            elif action == "type":
                await page.type(Locator.css(target[0]), target[1])
            else:
                await page.click(Locator.css(target))
        except PageWaitError as exc:
            steps.append({"action": action, "target": target, "success": False, "reason": str(exc)})
            console.print(f"   [red]FAILED[/red] {action} {target}: {exc}")
            break
        steps.append({"action": action, "target": target, "success": True})
        console.print(f"   [green]PASSED[/green] {action} {target}")
    return steps


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.headless:
        overrides["headless"] = True
    if args.verbose:
        overrides["verbose"] = True
    if args.timeout_ms is not None:
        overrides["explicit_wait_ms"] = args.timeout_ms
        overrides["poll_interval_ms"] = min(config.poll_interval_ms, args.timeout_ms)
    return replace(config, **overrides)


async def _run(args: argparse.Namespace, config: EngineConfig) -> dict[str, Any]:
    url = args.url or config.base_url
    steps: list[dict[str, Any]] = []
    last_error: str | None = None

    async with open_page(config, sink=ArtifactSink(config.artifacts_dir)) as page:
        console.print(f"\nOpening {url}\n")
        try:
            await page.navigate(url)
            steps = await run_steps(page, args)
        except PageWaitError as exc:
            last_error = str(exc)

    failed = [step for step in steps if not step["success"]]
    if failed and last_error is None:
        last_error = failed[0]["reason"]
    return {
        "url": url,
        "success": last_error is None,
        "last_error": last_error,
        "steps": steps,
    }


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    config = _load_config(args)
    _configure_logging(config.verbose)
    result = asyncio.run(_run(args, config))

    console.print("\n" + "=" * 60)
    if result["success"]:
        console.print("[bold green]TEST PASSED[/bold green]")
    else:
        console.print("[bold red]TEST FAILED[/bold red]")
    console.print(f"Steps executed: {len(result['steps'])}")
    if result["last_error"]:
        console.print(f"Error: {result['last_error']}")
    console.print("=" * 60 + "\n")

    if config.verbose:
        console.print("\nDetailed result:")
        console.print(result)

    sys.exit(0 if result["success"] else 1)


if __name__ == "__main__":
    main()
