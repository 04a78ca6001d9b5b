#!/usr/bin/env python3
"""appiumkit MCP adapter

MCP (Model Context Protocol) server exposing appiumkit device automation as
MCP tools, spoken as line-delimited JSON-RPC 2.0 over stdin/stdout.

It runs next to an Appium server and talks to it through appiumkit; nothing
on the server side changes.

Usage::

    appium --port 4723 &
    python3 adapters/mcp/appium_mcp.py

    # custom server
    APPIUM_URL=http://10.0.0.5:4723 python3 adapters/mcp/appium_mcp.py

Exposed MCP tools:
  - appium_start_session   reuse or create a session for a driver description
  - appium_click           click an element, optionally waiting for another
  - appium_type            type text into an element
  - appium_read_value      read an element's value attribute as a number
  - appium_wait_for_text   wait until text appears in the UI hierarchy
  - appium_source          dump the UI hierarchy / page source
  - appium_delete_session  end a session
"""

from __future__ import annotations

import asyncio
import json
import sys
import traceback
from typing import Any, Awaitable, BinaryIO, Callable, Dict, Optional

from appiumkit import AppiumClient, AppiumConfig, AppiumError, Locator, Platform, Strategy
from appiumkit.models import driver_adapter

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 framing
# ---------------------------------------------------------------------------

def _send(obj: dict) -> None:
    # binary stdout, explicit UTF-8: no locale codec, no CRLF translation
    line = (json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8")
    sys.stdout.buffer.write(line)
    sys.stdout.buffer.flush()


def _error_response(req_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def _ok_response(req_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


# ---------------------------------------------------------------------------
# MCP tool definitions
# ---------------------------------------------------------------------------

_SESSION_PROPS = {
    "session_id": {"type": "string"},
    "platform": {"type": "string", "enum": [p.value for p in Platform]},
}

_LOCATOR_SCHEMA = {
    "type": "object",
    "required": ["strategy", "selector"],
    "properties": {
        "strategy": {"type": "string", "enum": [s.value for s in Strategy]},
        "selector": {"type": "string"},
    },
}

TOOLS = [
    {
        "name": "appium_start_session",
        "description": "Reuse a compatible live Appium session or create one. Returns session_id and platform.",
        "inputSchema": {
            "type": "object",
            "required": ["driver"],
            "properties": {
                "driver": {
                    "type": "object",
                    "description": "Driver description; 'kind' is one of xcuitest, uiautomator, espresso, chromium.",
                },
            },
        },
    },
    {
        "name": "appium_click",
        "description": "Click an element, retrying within a time budget. Optionally wait for a second element afterwards.",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform", "locator"],
            "properties": {
                **_SESSION_PROPS,
                "locator": _LOCATOR_SCHEMA,
                "and_wait_for": _LOCATOR_SCHEMA,
                "timeout": {"type": "number", "description": "Seconds (default: 5)"},
            },
        },
    },
    {
        "name": "appium_type",
        "description": "Type text into an element.",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform", "locator", "text"],
            "properties": {**_SESSION_PROPS, "locator": _LOCATOR_SCHEMA, "text": {"type": "string"}},
        },
    },
    {
        "name": "appium_read_value",
        "description": "Read an element's value attribute as a number; percentages become fractions.",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform", "locator"],
            "properties": {**_SESSION_PROPS, "locator": _LOCATOR_SCHEMA},
        },
    },
    {
        "name": "appium_wait_for_text",
        "description": "Poll the UI hierarchy until text appears. Returns found=true/false.",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform", "text"],
            "properties": {**_SESSION_PROPS, "text": {"type": "string"}, "timeout": {"type": "number"}},
        },
    },
    {
        "name": "appium_source",
        "description": "Return the current UI hierarchy (XML) or page source (HTML).",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform"],
            "properties": dict(_SESSION_PROPS),
        },
    },
    {
        "name": "appium_delete_session",
        "description": "Delete an Appium session.",
        "inputSchema": {
            "type": "object",
            "required": ["session_id", "platform"],
            "properties": dict(_SESSION_PROPS),
        },
    },
]

# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------

def _get_client() -> AppiumClient:
    """Client for the server named by APPIUM_URL."""
    return AppiumClient(AppiumConfig.from_env())


def _locator(raw: dict) -> Locator:
    return Locator(strategy=Strategy(raw["strategy"]), selector=raw["selector"])


def _run(fn: Callable[[AppiumClient], Awaitable[dict]]) -> dict:
    async def _main() -> dict:
        async with _get_client() as client:
            return await fn(client)
    return asyncio.run(_main())


def _session(client: AppiumClient, args: dict):
    return client.sessions.attach(args["session_id"], Platform(args["platform"]))


def handle_start_session(args: dict) -> dict:
    driver = driver_adapter.validate_python(args["driver"])

    async def go(client: AppiumClient) -> dict:
        session = await client.sessions.reconcile(driver)
        return {
            "session_id": session.id,
            "platform": session.platform.value,
            "device_name": session.device_name,
            "origin": session.origin.value,
        }
    return _run(go)


def handle_click(args: dict) -> dict:
    wait_for = _locator(args["and_wait_for"]) if args.get("and_wait_for") else None

    async def go(client: AppiumClient) -> dict:
        await _session(client, args).click(_locator(args["locator"]), timeout=args.get("timeout"), and_wait_for=wait_for)
        return {"clicked": True}
    return _run(go)


def handle_type(args: dict) -> dict:
    async def go(client: AppiumClient) -> dict:
        await _session(client, args).type(_locator(args["locator"]), args["text"])
        return {"typed": len(args["text"])}
    return _run(go)


def handle_read_value(args: dict) -> dict:
    async def go(client: AppiumClient) -> dict:
        return {"value": await _session(client, args).numeric_value(_locator(args["locator"]))}
    return _run(go)


def handle_wait_for_text(args: dict) -> dict:
    async def go(client: AppiumClient) -> dict:
        found = await _session(client, args).wait_until_contains(args["text"], timeout=args.get("timeout"))
        return {"found": found}
    return _run(go)


def handle_source(args: dict) -> dict:
    async def go(client: AppiumClient) -> dict:
        return {"source": await _session(client, args).source()}
    return _run(go)


def handle_delete_session(args: dict) -> dict:
    async def go(client: AppiumClient) -> dict:
        await _session(client, args).close()
        return {"deleted": args["session_id"]}
    return _run(go)


HANDLERS: Dict[str, Callable[[dict], dict]] = {
    "appium_start_session": handle_start_session,
    "appium_click": handle_click,
    "appium_type": handle_type,
    "appium_read_value": handle_read_value,
    "appium_wait_for_text": handle_wait_for_text,
    "appium_source": handle_source,
    "appium_delete_session": handle_delete_session,
}

# ---------------------------------------------------------------------------
# MCP message dispatch
# ---------------------------------------------------------------------------

PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "appiumkit-mcp", "version": "0.1.0"}

METHOD_NOT_FOUND = -32601
PARSE_ERROR = -32700


class UnknownTool(LookupError):
    pass


def _text_result(text: str, is_error: bool) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def _initialize(params: dict) -> dict:
    return {"protocolVersion": PROTOCOL_VERSION, "capabilities": {"tools": {}}, "serverInfo": SERVER_INFO}


def _list_tools(params: dict) -> dict:
    return {"tools": TOOLS}


def _call_tool(params: dict) -> dict:
    """Run one tool. Tool failures become an ``isError`` result, not a JSON-RPC error."""
    name = params.get("name", "")
    handler = HANDLERS.get(name)
    if handler is None:
        raise UnknownTool(f"Unknown tool: {name}")
    try:
        data = handler(params.get("arguments", {}))
    except AppiumError as exc:
        # engine errors already name the operation and session
        return _text_result(f"Error: {exc}", True)
    except Exception as exc:
        return _text_result(f"Error: {exc}\n{traceback.format_exc()}", True)
    return _text_result(json.dumps(data, ensure_ascii=False), False)


_METHODS: Dict[str, Callable[[dict], dict]] = {
    "initialize": _initialize,
    "tools/list": _list_tools,
    "tools/call": _call_tool,
}


def dispatch(req: dict) -> Optional[dict]:
    """Answer one JSON-RPC request. Notifications get no reply."""
    req_id = req.get("id")
    method = req.get("method", "")
    if req_id is None and (method == "initialized" or method.startswith("notifications/")):
        return None

    handler = _METHODS.get(method)
    if handler is None:
        if req_id is None:
            return None
        return _error_response(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")
    try:
        return _ok_response(req_id, handler(req.get("params") or {}))
    except UnknownTool as exc:
        return _error_response(req_id, METHOD_NOT_FOUND, str(exc))


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def serve(stream: BinaryIO, send: Callable[[dict], None] = _send) -> None:
    """Read newline-delimited requests from *stream* until EOF."""
    for raw in stream:
        line = raw.strip().decode("utf-8", errors="replace")
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError as exc:
            send(_error_response(None, PARSE_ERROR, f"Parse error: {exc}"))
            continue
        reply = dispatch(req)
        if reply is not None:
            send(reply)


def main() -> None:
    sys.stderr.write("[appiumkit-mcp] serving tools on stdio\n")
    sys.stderr.flush()
    serve(sys.stdin.buffer)


if __name__ == "__main__":
    main()
