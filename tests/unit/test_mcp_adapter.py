"""
MCP adapter dispatch tests (no stdio, handlers run against the fake server).
"""

import io
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../adapters/mcp"))

import appium_mcp  # noqa: E402
from appiumkit import AppiumClient  # noqa: E402


@pytest.fixture
def wired(monkeypatch, fake, config):
    monkeypatch.setattr(appium_mcp, "_get_client", lambda: AppiumClient(config, transport=fake.transport))
    return fake


def _call(name, arguments, req_id=1):
    return appium_mcp.dispatch({
        "jsonrpc": "2.0", "id": req_id, "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    })


def _payload(resp):
    return json.loads(resp["result"]["content"][0]["text"])


def test_initialize():
    resp = appium_mcp.dispatch({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
    assert resp["result"]["serverInfo"]["name"] == "appiumkit-mcp"
    assert resp["result"]["protocolVersion"] == "2024-11-05"


def test_notifications_get_no_reply():
    assert appium_mcp.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None


def test_tools_list_matches_handlers():
    resp = appium_mcp.dispatch({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
    names = {t["name"] for t in resp["result"]["tools"]}
    assert names == set(appium_mcp.HANDLERS)


def test_unknown_tool_and_method():
    assert _call("appium_fly", {})["error"]["code"] == -32601
    resp = appium_mcp.dispatch({"jsonrpc": "2.0", "id": 3, "method": "resources/list"})
    assert resp["error"]["code"] == -32601


def test_start_session_then_click(wired):
    resp = _call("appium_start_session", {"driver": {
        "kind": "uiautomator", "device_name": "Pixel 8", "platform_version": "14",
    }})
    assert resp["result"]["isError"] is False
    started = _payload(resp)
    assert started["origin"] == "created"

    wired.add_element("id", "login")
    resp = _call("appium_click", {
        "session_id": started["session_id"], "platform": started["platform"],
        "locator": {"strategy": "id", "selector": "login"},
    })
    assert _payload(resp) == {"clicked": True}
    assert len(wired.clicked) == 1


def test_read_value_and_wait_for_text(wired):
    wired.add_session("sess-9", platformName="Android", platformVersion="14")
    wired.add_element("id", "battery", value="80%")
    wired.sources = ["<node text='Charging'/>"]
    target = {"session_id": "sess-9", "platform": "android"}

    resp = _call("appium_read_value", {**target, "locator": {"strategy": "id", "selector": "battery"}})
    assert _payload(resp)["value"] == pytest.approx(0.8)

    resp = _call("appium_wait_for_text", {**target, "text": "Charging", "timeout": 0.2})
    assert _payload(resp) == {"found": True}


def test_tool_failure_is_reported_not_raised(wired):
    resp = _call("appium_click", {
        "session_id": "sess-9", "platform": "android",
        "locator": {"strategy": "id", "selector": "absent"}, "timeout": 0.3,
    })
    assert resp["result"]["isError"] is True
    assert "Operation timed out" in resp["result"]["content"][0]["text"]
    assert "Traceback" not in resp["result"]["content"][0]["text"]


def test_bad_arguments_report_traceback(wired):
    resp = _call("appium_click", {"session_id": "sess-9"})
    assert resp["result"]["isError"] is True
    assert "Traceback" in resp["result"]["content"][0]["text"]


def test_serve_reads_until_eof():
    stream = io.BytesIO(
        b'{"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}\n'
        b"\n"
        b"{broken\n"
        b'{"jsonrpc": "2.0", "method": "notifications/initialized"}\n'
        b'{"jsonrpc": "2.0", "id": 2, "method": "tools/list"}\n'
    )
    sent = []
    appium_mcp.serve(stream, sent.append)
    assert [m.get("id") for m in sent] == [1, None, 2]
    assert sent[0]["result"]["serverInfo"]["name"] == "appiumkit-mcp"
    assert sent[1]["error"]["code"] == -32700
    assert len(sent[2]["result"]["tools"]) == len(appium_mcp.HANDLERS)
