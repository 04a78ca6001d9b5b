"""Endpoint builder: maps an operation plus identifiers onto a server URL."""

from __future__ import annotations

from enum import Enum
from typing import Optional
from urllib.parse import quote

import httpx

from .errors import ConfigError


class Route(str, Enum):
    STATUS = "status"
    SESSIONS = "sessions"
    NEW_SESSION = "new_session"
    SESSION = "session"
    SOURCE = "source"
    FIND_ELEMENT = "find_element"
    CLICK = "click"
    ATTRIBUTE_VALUE = "attribute_value"
    ELEMENT_VALUE = "element_value"
    ELEMENT_TEXT = "element_text"
    DISPLAYED = "displayed"
    SELECTED = "selected"
    URL = "url"
    EXECUTE = "execute"
    HIDE_KEYBOARD = "hide_keyboard"
    SETTINGS = "settings"
    RESET_APP = "reset_app"
    FULLSCREEN = "fullscreen"


_PATHS = {
    Route.STATUS: "/status",
    Route.SESSIONS: "/sessions",
    Route.NEW_SESSION: "/session",
    Route.SESSION: "/session/{session}",
    Route.SOURCE: "/session/{session}/source",
    Route.FIND_ELEMENT: "/session/{session}/element",
    Route.CLICK: "/session/{session}/element/{element}/click",
    Route.ATTRIBUTE_VALUE: "/session/{session}/element/{element}/attribute/value",
    Route.ELEMENT_VALUE: "/session/{session}/element/{element}/value",
    Route.ELEMENT_TEXT: "/session/{session}/element/{element}/text",
    Route.DISPLAYED: "/session/{session}/element/{element}/displayed",
    Route.SELECTED: "/session/{session}/element/{element}/selected",
    Route.URL: "/session/{session}/url",
    Route.EXECUTE: "/session/{session}/execute/sync",
    Route.HIDE_KEYBOARD: "/session/{session}/appium/device/hide_keyboard",
    Route.SETTINGS: "/session/{session}/appium/settings",
    Route.RESET_APP: "/session/{session}/appium/app/reset",
    Route.FULLSCREEN: "/session/{session}/window/fullscreen",
}


def validate_base_url(base_url: str) -> str:
    """Return *base_url* without a trailing slash, or raise ConfigError."""
    try:
        url = httpx.URL(base_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise ConfigError(f"malformed server URL {base_url!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"server URL must be http(s)://host[:port], got {base_url!r}")
    return str(url).rstrip("/")


class Endpoints:
    """Builds absolute URLs for every server operation.

    The base URL is checked once here; ``url()`` itself cannot fail for a
    route given the identifiers it needs.
    """

    def __init__(self, base_url: str) -> None:
        self.base_url = validate_base_url(base_url)

    def url(
        self,
        route: Route,
        session_id: Optional[str] = None,
        element_id: Optional[str] = None,
    ) -> str:
        template = _PATHS[route]
        if "{session}" in template and not session_id:
            raise ValueError(f"route {route.value} needs a session id")
        if "{element}" in template and not element_id:
            raise ValueError(f"route {route.value} needs an element id")
        path = template.format(
            session=quote(session_id or "", safe=""),
            element=quote(element_id or "", safe=""),
        )
        return self.base_url + path
