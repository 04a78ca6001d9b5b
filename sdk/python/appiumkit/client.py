"""appiumkit client: shared transport and session reconciliation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from .api import Endpoints, Route
from .config import AppiumConfig
from .errors import EncodingError, InvalidResponse, TransportError
from .models import (
    Platform,
    SessionListResponse,
    SessionSummary,
    StatusResponse,
    decoder_for,
)
from .session import Session, SessionOrigin

logger = logging.getLogger("appiumkit.client")


def _encode(body: Any, operation: str, session_id: Optional[str]) -> bytes:
    try:
        return json.dumps(body, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as exc:  # UnicodeEncodeError is a ValueError
        raise EncodingError(f"cannot serialise request body: {exc}", operation=operation, session_id=session_id) from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class AppiumClient:
    """Async client for an Appium-compatible automation server.

    Usage::

        async with AppiumClient() as client:
            session = await client.sessions.reconcile(
                UIAutomatorDriver(device_name="Pixel", platform_version="14", app="/tmp/app.apk")
            )
            await session.click(Locator.by_id("login"), and_wait_for=Locator.by_id("home"))

    *transport* is handed to ``httpx.AsyncClient``; tests pass an
    ``httpx.MockTransport`` here.
    """

    def __init__(
        self,
        config: Optional[AppiumConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or AppiumConfig.from_env()
        self.endpoints = Endpoints(self.config.base_url)
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._closed = False
        self.sessions = SessionManager(self)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._closed:
            raise TransportError("client has been closed")
        if self._http is None:
            self._http = httpx.AsyncClient(
                headers={"accept": "application/json"},
                timeout=self.config.request_timeout,
                transport=self._transport,
            )
        return self._http

    async def status(self) -> StatusResponse:
        return await self._get(self.endpoints.url(Route.STATUS), StatusResponse, operation="status")

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        operation: str,
        session_id: Optional[str] = None,
    ) -> httpx.Response:
        content = _encode(body, operation, session_id) if body is not None else None
        client = await self._ensure_client()
        headers = {"content-type": "application/json"} if content is not None else None
        try:
            return await client.request(method, url, content=content, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {url} failed: {exc}", operation=operation, session_id=session_id) from exc

    def _decode(self, resp: httpx.Response, model=None, *, operation: str, session_id: Optional[str] = None):
        if not resp.content:
            raise InvalidResponse("empty response body", status_code=resp.status_code,
                                  operation=operation, session_id=session_id)
        try:
            data = resp.json()
        except ValueError as exc:
            raise InvalidResponse(f"response is not JSON: {exc}", status_code=resp.status_code,
                                  operation=operation, session_id=session_id) from exc
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise InvalidResponse(
                f"unexpected response shape for {model.__name__}: {exc.error_count()} error(s)",
                status_code=resp.status_code, operation=operation, session_id=session_id,
            ) from exc

    def _check(self, resp: httpx.Response, *, operation: str, session_id: Optional[str] = None) -> None:
        if not resp.is_success:
            raise InvalidResponse(f"HTTP {resp.status_code}", status_code=resp.status_code,
                                  operation=operation, session_id=session_id)

    async def _post(self, url: str, body: Any, model=None, *, operation: str, session_id: Optional[str] = None):
        resp = await self._send("POST", url, body, operation=operation, session_id=session_id)
        self._check(resp, operation=operation, session_id=session_id)
        if model is None:
            return None
        return self._decode(resp, model, operation=operation, session_id=session_id)

    async def _get(self, url: str, model=None, *, operation: str, session_id: Optional[str] = None):
        resp = await self._send("GET", url, operation=operation, session_id=session_id)
        self._check(resp, operation=operation, session_id=session_id)
        return self._decode(resp, model, operation=operation, session_id=session_id)

    async def _delete(self, url: str, *, operation: str, session_id: Optional[str] = None) -> None:
        resp = await self._send("DELETE", url, operation=operation, session_id=session_id)
        if resp.status_code not in (200, 204, 404):
            self._check(resp, operation=operation, session_id=session_id)

    async def close(self) -> None:
        """Shut the transport down. Every Session of this client becomes unusable."""
        self._closed = True
        if self._http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "AppiumClient":
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()


# ---------------------------------------------------------------------------
# Session reconciliation
# ---------------------------------------------------------------------------

@dataclass
class SessionBuckets:
    ios: List[SessionSummary] = field(default_factory=list)
    android: List[SessionSummary] = field(default_factory=list)
    browser: List[SessionSummary] = field(default_factory=list)

    def for_platform(self, platform: Platform) -> List[SessionSummary]:
        return {Platform.IOS: self.ios, Platform.ANDROID: self.android, Platform.BROWSER: self.browser}[platform]


class SessionManager:
    """Finds a live session matching a driver, or creates one."""

    def __init__(self, client: AppiumClient) -> None:
        self._client = client

    async def list(self) -> List[SessionSummary]:
        resp = await self._client._get(
            self._client.endpoints.url(Route.SESSIONS), SessionListResponse, operation="list sessions",
        )
        return resp.value

    @staticmethod
    def classify(summaries: List[SessionSummary]) -> SessionBuckets:
        """Sort sessions by platform. A browser session on Android lands in both buckets."""
        buckets = SessionBuckets()
        for summary in summaries:
            if summary.is_android:
                buckets.android.append(summary)
            if summary.is_ios:
                buckets.ios.append(summary)
            if summary.is_browser:
                buckets.browser.append(summary)
        return buckets

    @staticmethod
    def match(driver, buckets: SessionBuckets) -> Optional[SessionSummary]:
        """First session in listing order compatible with *driver*."""
        for summary in buckets.for_platform(driver.platform):
            caps = summary.capabilities
            if driver.platform is Platform.ANDROID:
                if caps.platform_version == driver.platform_version:
                    return summary
            elif driver.platform is Platform.IOS:
                if caps.platform_version != driver.platform_version:
                    continue
                if driver.udid and caps.udid != driver.udid:
                    continue
                return summary
            else:
                if (caps.browser_name or "").lower() != driver.browser_name.lower():
                    continue
                if caps.platform_version and caps.platform_version != driver.platform_version:
                    continue
                return summary
        return None

    def _reused(self, driver, summary: SessionSummary) -> Session:
        caps = summary.capabilities
        if driver.platform is Platform.BROWSER:
            name = caps.browser_name or driver.display_name
        else:
            name = driver.display_name or caps.device_name or ""
        return Session(self._client, summary.id, driver.platform, name, SessionOrigin.REUSED)

    async def create(self, driver) -> Session:
        """POST a new session for *driver*, decoding the reply for its platform."""
        op = f"create {driver.platform.value} session"
        payload = driver.new_session_payload(self._client.config.new_command_timeout)
        created = await self._client._post(
            self._client.endpoints.url(Route.NEW_SESSION), payload, decoder_for(driver.platform), operation=op,
        )
        if not created.session_id:
            raise InvalidResponse("server returned an empty session id", operation=op)
        name = created.device_name or driver.display_name
        logger.info("created %s session %s on %s", driver.platform.value, created.session_id, name)
        return Session(self._client, created.session_id, driver.platform, name, SessionOrigin.CREATED)

    async def _find(self, driver) -> Optional[Session]:
        try:
            summaries = await self.list()
        except (InvalidResponse, TransportError) as exc:
            logger.warning("could not list sessions, will create one: %s", exc)
            return None
        summary = self.match(driver, self.classify(summaries))
        if summary is None:
            return None
        session = self._reused(driver, summary)
        logger.info("reusing %s session %s on %s", driver.platform.value, session.id, session.device_name)
        return session

    async def reconcile(self, driver) -> Session:
        """Reuse a compatible live session or create one.

        On failure the client's transport is shut down before the error
        propagates.
        """
        try:
            session = await self._find(driver)
            if session is None:
                session = await self.create(driver)
            return session
        except Exception:
            try:
                await self._client.close()
            except Exception as close_exc:
                logger.error("closing transport after failed reconciliation also failed: %s", close_exc)
            raise

    def attach(self, session_id: str, platform: Platform, device_name: str = "") -> Session:
        """Handle for a session id obtained elsewhere. No request is made."""
        return Session(self._client, session_id, platform, device_name, SessionOrigin.ATTACHED)
