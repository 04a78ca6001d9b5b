"""
Shared fixtures for the appiumkit unit tests.

FakeAppium is an in-memory stand-in for an Appium server, served through
httpx.MockTransport so no network or device is needed.
"""

import asyncio
import itertools
import json
import os
import re
import sys
from collections import Counter

import httpx
import pytest

# Add sdk to path so we don't need to install it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../sdk/python"))

from appiumkit import AppiumClient, AppiumConfig, Platform

BASE_URL = "http://appium.test:4723"

_S = r"/session/(?P<sid>[^/]+)"
_E = _S + r"/element/(?P<eid>[^/]+)"

_ROUTES = [
    ("GET", r"/status", "status"),
    ("GET", r"/sessions", "sessions"),
    ("POST", r"/session", "create"),
    ("DELETE", _S, "delete"),
    ("GET", _S + r"/source", "source"),
    ("POST", _S + r"/element", "find"),
    ("POST", _E + r"/click", "click"),
    ("POST", _E + r"/value", "type"),
    ("GET", _E + r"/attribute/value", "attribute"),
    ("GET", _E + r"/text", "text"),
    ("GET", _E + r"/displayed", "displayed"),
    ("GET", _E + r"/selected", "selected"),
    ("POST", _S + r"/url", "navigate"),
    ("GET", _S + r"/url", "url"),
    ("POST", _S + r"/execute/sync", "execute"),
    ("POST", _S + r"/appium/device/hide_keyboard", "hide_keyboard"),
    ("GET", _S + r"/appium/settings", "settings"),
    ("POST", _S + r"/appium/settings", "update_settings"),
    ("POST", _S + r"/appium/app/reset", "reset_app"),
    ("POST", _S + r"/window/fullscreen", "fullscreen"),
]
_COMPILED = [(m, re.compile(p + "$"), name) for m, p, name in _ROUTES]


def _reply(status: int, body) -> httpx.Response:
    if isinstance(body, bytes):
        return httpx.Response(status, content=body)
    return httpx.Response(status, json=body)


class FakeAppium:
    """Scriptable Appium server.

    ``failures[route]`` holds replies served (and consumed) before the normal
    handler runs: an int status, a ``(status, body)`` pair, or ``"connect"``
    to raise a connection error. ``delays[route]`` slows a route down.
    """

    def __init__(self) -> None:
        self.sessions = []          # entries as listed by GET /sessions
        self.created_payloads = []  # alwaysMatch maps received by POST /session
        self.create_reply = None    # (status, body) overriding the normal reply
        self.elements = {}          # (using, value) -> element id
        self.hidden_for = Counter() # (using, value) -> finds answered 404 first
        self.attributes = {}        # element id -> value attribute
        self.flags = {}             # (element id, "displayed"|"selected") -> bool
        self.texts = {}
        self.sources = ["<hierarchy/>"]
        self.failures = {}
        self.delays = {}
        self.requests = []          # (route, method, path, body)
        self.typed = []
        self.clicked = []
        self.url = "about:blank"
        self.settings = {"waitForIdleTimeout": 10000}
        self.resets = 0
        self._ids = itertools.count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def calls(self, route: str) -> int:
        return sum(1 for r in self.requests if r[0] == route)

    def add_element(self, using: str, value: str, /, hidden_for: int = 0, **state) -> str:
        element_id = f"el-{next(self._ids)}"
        self.elements[(using, value)] = element_id
        self.hidden_for[(using, value)] = hidden_for
        if "value" in state:
            self.attributes[element_id] = state["value"]
        if "text" in state:
            self.texts[element_id] = state["text"]
        for flag in ("displayed", "selected"):
            if flag in state:
                self.flags[(element_id, flag)] = state[flag]
        return element_id

    def add_session(self, session_id: str, **capabilities) -> None:
        self.sessions.append({"id": session_id, "capabilities": capabilities})

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        for method, pattern, name in _COMPILED:
            match = pattern.match(path)
            if method == request.method and match:
                break
        else:
            return _reply(404, {"value": {"error": "unknown command"}})

        body = json.loads(request.content) if request.content else None
        self.requests.append((name, request.method, path, body))

        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)

        pending = self.failures.get(name)
        if pending:
            failure = pending.pop(0)
            if failure == "connect":
                raise httpx.ConnectError("connection refused", request=request)
            if isinstance(failure, tuple):
                return _reply(*failure)
            return _reply(failure, {"value": {"error": "unknown error", "message": "injected"}})

        return getattr(self, f"_on_{name}")(body, **match.groupdict())

    # -- handlers ---------------------------------------------------------

    def _on_status(self, body):
        return _reply(200, {"value": {"ready": True, "message": "fake appium ready"}})

    def _on_sessions(self, body):
        return _reply(200, {"value": self.sessions})

    def _on_create(self, body):
        caps = body["capabilities"]["alwaysMatch"]
        self.created_payloads.append(caps)
        if self.create_reply is not None:
            return _reply(*self.create_reply)
        session_id = f"session-{next(self._ids)}"
        self.sessions.append({"id": session_id, "capabilities": dict(caps)})
        plain = {k.replace("appium:", "", 1): v for k, v in caps.items()}
        return _reply(200, {"value": {"sessionId": session_id, "capabilities": plain}})

    def _on_delete(self, body, sid):
        self.sessions = [s for s in self.sessions if s["id"] != sid]
        return _reply(200, {"value": None})

    def _on_source(self, body, sid):
        source = self.sources.pop(0) if len(self.sources) > 1 else self.sources[0]
        return _reply(200, {"value": source})

    def _on_find(self, body, sid):
        key = (body["using"], body["value"])
        if key in self.elements:
            if self.hidden_for[key] <= 0:
                return _reply(200, {"value": {"ELEMENT": self.elements[key]}})
            self.hidden_for[key] -= 1
        return _reply(404, {"value": {"error": "no such element", "message": f"{key} not found"}})

    def _on_click(self, body, sid, eid):
        self.clicked.append(eid)
        return _reply(200, {"value": None})

    def _on_type(self, body, sid, eid):
        self.typed.append((eid, body["text"]))
        return _reply(200, {"value": None})

    def _on_attribute(self, body, sid, eid):
        return _reply(200, {"value": self.attributes.get(eid)})

    def _on_text(self, body, sid, eid):
        return _reply(200, {"value": self.texts.get(eid, "")})

    def _on_displayed(self, body, sid, eid):
        return _reply(200, {"value": self.flags.get((eid, "displayed"), False)})

    def _on_selected(self, body, sid, eid):
        return _reply(200, {"value": self.flags.get((eid, "selected"), False)})

    def _on_navigate(self, body, sid):
        self.url = body["url"]
        return _reply(200, {"value": None})

    def _on_url(self, body, sid):
        return _reply(200, {"value": self.url})

    def _on_execute(self, body, sid):
        return _reply(200, {"value": {"script": body["script"], "args": body["args"]}})

    def _on_hide_keyboard(self, body, sid):
        return _reply(200, {"value": None})

    def _on_settings(self, body, sid):
        return _reply(200, {"value": dict(self.settings)})

    def _on_update_settings(self, body, sid):
        self.settings.update(body["settings"])
        return _reply(200, {"value": None})

    def _on_reset_app(self, body, sid):
        self.resets += 1
        return _reply(200, {"value": None})

    def _on_fullscreen(self, body, sid):
        return _reply(200, {"value": {"x": 0, "y": 0, "width": 1920, "height": 1080}})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake():
    return FakeAppium()


@pytest.fixture
def config():
    return AppiumConfig(
        base_url=BASE_URL,
        poll_interval=0.05,
        click_timeout=1.0,
        resolve_timeout=0.5,
        type_timeout=0.5,
        value_timeout=0.5,
        state_timeout=0.5,
        hierarchy_timeout=0.5,
    )


@pytest.fixture
def client(fake, config):
    return AppiumClient(config, transport=fake.transport)


@pytest.fixture
def session(client, fake):
    fake.add_session("sess-1", platformName="Android", platformVersion="14")
    return client.sessions.attach("sess-1", Platform.ANDROID, "Pixel 8")
