from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import re
import time
from typing import Any

from pagewait.browser.handle import TargetRef
from pagewait.browser.locator import Locator
from pagewait.engine.errors import (
    NotFoundError,
    PageWaitError,
    RejectedError,
    SessionError,
    StaleReferenceError,
    WaitTimeoutError,
)
from pagewait.engine.policy import PollPolicy
from pagewait.mcp_client.jsonrpc import JsonRpcError
from pagewait.mcp_client.session import McpSession
from pagewait.mcp_client.transport import TransportClosedError

logger = logging.getLogger(__name__)

# Located elements live in this page-side map until the document goes away.
_REGISTRY = "__pagewaitRefs"

_CONTEXT_LOST = re.compile(
    r"execution context was destroyed|cannot find context|frame was detached",
    re.IGNORECASE,
)

_LOCATE_SCRIPT = """() => {
const by = %(by)s;
const value = %(value)s;
const reg = window.%(registry)s || (window.%(registry)s = {seq: 0, nodes: {}});
let el = null;
try {
  if (by === 'id') el = document.getElementById(value);
  else if (by === 'name') el = document.getElementsByName(value)[0] || null;
  else if (by === 'css') el = document.querySelector(value);
  else if (by === 'xpath') el = document.evaluate(value, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
  else if (by === 'link_text') el = Array.from(document.querySelectorAll('a')).find((a) => (a.innerText || a.textContent || '').trim() === value) || null;
} catch (e) {
  return {ok: false, invalid: String(e)};
}
if (!el) return {ok: false};
for (const [ref, node] of Object.entries(reg.nodes)) {
  if (node === el) return {ok: true, ref};
}
reg.seq += 1;
const ref = 'pw-' + reg.seq;
reg.nodes[ref] = el;
return {ok: true, ref};
}"""

_REF_SCRIPT = """() => {
const reg = window.%(registry)s;
const el = reg && reg.nodes[%(ref)s];
if (!el || !el.isConnected) return {ok: false, stale: true};
const isVisible = (node) => {
  const rect = node.getBoundingClientRect();
  if (!rect || rect.width <= 0 || rect.height <= 0) return false;
  const style = window.getComputedStyle(node);
  if (!style || style.display === 'none' || style.visibility === 'hidden' || style.opacity === '0') return false;
  return true;
};
const isEnabled = (node) => !node.disabled && node.getAttribute('aria-disabled') !== 'true';
%(body)s
}"""

_VISIBLE_BODY = "return {ok: true, value: isVisible(el)};"

_ENABLED_BODY = "return {ok: true, value: isEnabled(el)};"

_CLICK_BODY = """if (!isVisible(el)) return {ok: false, rejected: 'element is not visible'};
if (!isEnabled(el)) return {ok: false, rejected: 'element is disabled'};
el.scrollIntoView({block: 'center', inline: 'center'});
const rect = el.getBoundingClientRect();
const hit = document.elementFromPoint(rect.left + rect.width / 2, rect.top + rect.height / 2);
if (hit && hit !== el && !el.contains(hit)) {
  return {ok: false, rejected: 'element is obscured by <' + String(hit.tagName || '').toLowerCase() + '>'};
}
el.click();
return {ok: true};"""

_INPUT_BODY = """const value = %(text)s;
if (el.disabled || el.readOnly) return {ok: false, rejected: 'element is not editable'};
el.focus();
if ('value' in el) {
  el.value = value;
  el.dispatchEvent(new Event('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
} else if (el.isContentEditable) {
  el.textContent = value;
  el.dispatchEvent(new Event('input', {bubbles: true}));
} else {
  return {ok: false, rejected: 'element does not accept text'};
}
return {ok: true};"""

_TEXT_BODY = "return {ok: true, value: String(el.innerText || el.textContent || '').trim()};"

_ATTRIBUTE_BODY = """const name = %(name)s;
let value = el.getAttribute(name);
if (value === null && name in el) {
  const prop = el[name];
  if (prop !== null && prop !== undefined && typeof prop !== 'object' && typeof prop !== 'function') value = String(prop);
}
return {ok: true, value};"""

_SCROLL_BODY = """el.scrollIntoView(true);
return {ok: true};"""

_PAGE_VALUE_SCRIPT = "() => ({ok: true, value: String(%(expression)s || '')})"

_EXECUTE_SCRIPT = """async () => {
const fn = (%(function)s);
const value = await fn(...%(args)s);
return {ok: true, value: value === undefined ? null : value};
}"""

_READY_SCRIPT = """() => {
const readyState = document.readyState || 'loading';
const hasBody = Boolean(document.body);
const href = String(window.location && window.location.href || '');
return {readyState, hasBody, href};
}"""


class DevToolsHandle:
    """RemoteHandle backed by the Chrome DevTools MCP server.

    Elements are found and acted on through ``evaluate_script``; located nodes
    are kept in a page-side registry so a ``TargetRef`` goes stale when its
    node is detached or the page navigates away.
    """

    def __init__(self, session: McpSession, load_policy: PollPolicy | None = None) -> None:
        self.session = session
        self.load_policy = load_policy or PollPolicy(timeout_ms=30000, interval_ms=200)

    async def navigate(self, url: str) -> None:
        await self._call("navigate_page", {"url": url})
        await self.wait_until_page_ready()

    async def reload(self) -> None:
        await self._call("navigate_page", {"type": "reload"})
        await self.wait_until_page_ready()

    async def go_back(self) -> None:
        await self._call("navigate_page", {"type": "back"})
        await self.wait_until_page_ready()

    async def go_forward(self) -> None:
        await self._call("navigate_page", {"type": "forward"})
        await self.wait_until_page_ready()

    async def current_url(self) -> str:
        return await self._page_value("window.location.href")

    async def page_title(self) -> str:
        return await self._page_value("document.title")

    async def execute_script(self, function: str, *args: Any) -> Any:
        script = _EXECUTE_SCRIPT % {"function": function, "args": json.dumps(list(args))}
        payload = await self._evaluate(script, context_lost=SessionError)
        return payload.get("value")

    async def locate(self, locator: Locator) -> TargetRef:
        script = _LOCATE_SCRIPT % {
            "by": json.dumps(locator.by),
            "value": json.dumps(locator.value),
            "registry": _REGISTRY,
        }
        payload = await self._evaluate(script, context_lost=NotFoundError)
        if payload.get("invalid"):
            raise ValueError(f"Invalid locator {locator}: {payload['invalid']}")
        ref = payload.get("ref")
        if not payload.get("ok") or not isinstance(ref, str):
            raise NotFoundError(f"No element matches {locator}")
        return ref

    async def is_visible(self, ref: TargetRef) -> bool:
        return bool(await self._on_ref(ref, _VISIBLE_BODY))

    async def is_enabled(self, ref: TargetRef) -> bool:
        return bool(await self._on_ref(ref, _ENABLED_BODY))

    async def click(self, ref: TargetRef) -> None:
        await self._on_ref(ref, _CLICK_BODY)

    async def send_text(self, ref: TargetRef, text: str) -> None:
        await self._on_ref(ref, _INPUT_BODY % {"text": json.dumps(text)})

    async def read_text(self, ref: TargetRef) -> str:
        value = await self._on_ref(ref, _TEXT_BODY)
        return "" if value is None else str(value)

    async def read_attribute(self, ref: TargetRef, name: str) -> str | None:
        value = await self._on_ref(ref, _ATTRIBUTE_BODY % {"name": json.dumps(name)})
        return None if value is None else str(value)

    async def scroll_into_view(self, ref: TargetRef) -> None:
        await self._on_ref(ref, _SCROLL_BODY)

    async def capture_image(self) -> bytes:
        raw = await self._call("take_screenshot", {"format": "png"})
        content = raw.get("content", []) if isinstance(raw, dict) else []
        for chunk in content if isinstance(content, list) else []:
            if isinstance(chunk, dict) and chunk.get("type") == "image" and chunk.get("data"):
                try:
                    return base64.b64decode(chunk["data"], validate=True)
                except (binascii.Error, ValueError) as exc:
                    raise SessionError(f"take_screenshot returned undecodable image data: {exc}") from exc
        raise SessionError("take_screenshot returned no image content")

    async def wait_until_page_ready(self) -> dict[str, Any]:
        started = time.monotonic()
        deadline = started + self.load_policy.timeout
        last_state: dict[str, Any] = {"readyState": "loading", "hasBody": False, "href": ""}

        while time.monotonic() <= deadline:
            try:
                state = await self._evaluate(_READY_SCRIPT, context_lost=NotFoundError)
            except NotFoundError:
                state = {}
            if state:
                last_state = {
                    "readyState": str(state.get("readyState", "loading")),
                    "hasBody": bool(state.get("hasBody", False)),
                    "href": str(state.get("href", "")),
                }
                if last_state["hasBody"] and last_state["readyState"] in {"interactive", "complete"}:
                    return last_state
            await asyncio.sleep(self.load_policy.interval)

        if last_state["hasBody"]:
            logger.debug("Page body present before full readyState: %s", last_state)
            return last_state
        raise WaitTimeoutError(
            f"last readyState {last_state['readyState']!r} at {last_state['href'] or 'unknown url'}",
            condition="document ready",
            elapsed_ms=(time.monotonic() - started) * 1000,
        )

    async def list_page_ids(self) -> list[int]:
        raw = await self._call("list_pages", {})
        page_ids: list[int] = []
        for line in self._flatten_text(raw).splitlines():
            match = re.match(r"\s*(\d+)\s*:", line)
            if match:
                page_ids.append(int(match.group(1)))
        return page_ids

    async def close_all_pages(self) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for page_id in sorted(await self.list_page_ids(), reverse=True):
            try:
                await self._call("close_page", {"pageId": page_id})
                results.append({"pageId": page_id, "success": True})
            except SessionError as exc:
                results.append({"pageId": page_id, "success": False, "reason": str(exc)})
        return results

    async def _page_value(self, expression: str) -> str:
        payload = await self._evaluate(_PAGE_VALUE_SCRIPT % {"expression": expression}, context_lost=SessionError)
        return str(payload.get("value") or "")

    async def _on_ref(self, ref: TargetRef, body: str) -> Any:
        script = _REF_SCRIPT % {"registry": _REGISTRY, "ref": json.dumps(ref), "body": body}
        payload = await self._evaluate(script, context_lost=StaleReferenceError)
        if payload.get("stale"):
            raise StaleReferenceError(f"element {ref} is no longer attached")
        if payload.get("rejected"):
            raise RejectedError(str(payload["rejected"]))
        if not payload.get("ok"):
            raise SessionError(f"Unexpected script result for {ref}: {payload}")
        return payload.get("value")

    async def _evaluate(self, script: str, context_lost: type[PageWaitError]) -> dict[str, Any]:
        try:
            raw = await self._call("evaluate_script", {"function": script})
        except _ContextLost as exc:
            raise context_lost(str(exc)) from exc
        payload = self._extract_script_result_payload(raw) if isinstance(raw, dict) else None
        if payload is None:
            raise SessionError(f"evaluate_script returned no JSON result: {self._flatten_text(raw)[:200]}")
        return payload

    async def _call(self, tool_name: str, params: dict[str, Any]) -> Any:
        try:
            raw = await self.session.call_tool(tool_name, params)
        except (JsonRpcError, TransportClosedError, asyncio.TimeoutError) as exc:
            raise SessionError(f"{tool_name} failed: {exc}") from exc
        if isinstance(raw, dict) and raw.get("isError") is True:
            text = self._flatten_text(raw)
            if _CONTEXT_LOST.search(text):
                raise _ContextLost(text)
            raise SessionError(f"{tool_name} returned an error: {text[:300]}")
        return raw

    @classmethod
    def _extract_script_result_payload(cls, raw: dict[str, Any]) -> dict[str, Any] | None:
        result = raw.get("result")
        if isinstance(result, dict):
            return result
        return cls._extract_json_object(cls._flatten_text(raw))

    @staticmethod
    def _extract_json_object(text: str) -> dict[str, Any] | None:
        if not text:
            return None

        candidates: list[str] = []
        fenced = re.search(r"```json\s*(\{.*?\})\s*```", text, flags=re.DOTALL | re.IGNORECASE)
        if fenced:
            candidates.append(fenced.group(1))
        loose = re.search(r"(\{.*\})", text, flags=re.DOTALL)
        if loose:
            candidates.append(loose.group(1))

        for candidate in candidates:
            try:
                parsed = json.loads(candidate)
            except ValueError:
                continue
            if isinstance(parsed, dict):
                return parsed
        return None

    @classmethod
    def _flatten_text(cls, value: Any) -> str:
        if isinstance(value, dict):
            if value.get("type") == "image":
                return ""
            if value.get("type") == "text":
                return str(value.get("text", ""))
            return "\n".join(text for text in (cls._flatten_text(v) for v in value.values()) if text)
        if isinstance(value, list):
            return "\n".join(text for text in (cls._flatten_text(v) for v in value) if text)
        if isinstance(value, str):
            return value
        return ""


class _ContextLost(PageWaitError):
    """The page's JavaScript context went away mid-call (navigation, reload)."""
