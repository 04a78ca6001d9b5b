"""Session handle: element resolution, interaction and hierarchy polling."""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .api import Route
from .errors import (
    AppiumError,
    ElementNotFound,
    InvalidResponse,
    TimeoutError,
    TransportError,
)
from .models import (
    BoolResponse,
    ElementResponse,
    Locator,
    Platform,
    ScriptResponse,
    SourceResponse,
    ValueResponse,
)
from .wait import Deadline, backoff

if TYPE_CHECKING:
    from .client import AppiumClient

logger = logging.getLogger("appiumkit.session")

# Below this much budget a resolve + click round trip cannot complete.
_CLICK_MARGIN = 0.1
_MIN_CLICK_WINDOW = 0.05

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

# Failures a polling loop absorbs and retries while its client is open.
_TRANSIENT = (ElementNotFound, InvalidResponse, TransportError)


class SessionOrigin(str, Enum):
    REUSED = "reused"
    CREATED = "created"
    ATTACHED = "attached"


class SessionState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


def parse_numeric(raw: str) -> float:
    """Parse a displayed numeric value such as ``"42%"`` or ``"-3.5 kg"``.

    Everything but digits, ``.`` and ``-`` is dropped; a ``%`` anywhere in
    the raw text scales the result by 1/100.
    """
    cleaned = _NON_NUMERIC.sub("", raw)
    try:
        number = float(cleaned)
    except ValueError:
        raise InvalidResponse(f"value {raw!r} is not numeric") from None
    if "%" in raw:
        number /= 100
    return number


class Session:
    """Handle for one live automation session.

    All sessions created by a client share that client's transport; closing
    the client invalidates every handle.
    """

    def __init__(
        self,
        client: "AppiumClient",
        session_id: str,
        platform: Platform,
        device_name: str = "",
        origin: SessionOrigin = SessionOrigin.CREATED,
    ) -> None:
        if not session_id:
            raise ValueError("session id must not be empty")
        self.id = session_id
        self.platform = platform
        self.device_name = device_name
        self.origin = origin
        self.state = SessionState.ACTIVE
        self._client = client

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, platform={self.platform.value}, "
            f"device={self.device_name!r}, origin={self.origin.value})"
        )

    @property
    def config(self):
        return self._client.config

    def _url(self, route: Route, element_id: Optional[str] = None) -> str:
        return self._client.endpoints.url(route, self.id, element_id)

    # ------------------------------------------------------------------
    # Element resolution
    # ------------------------------------------------------------------

    async def find_element(self, locator: Locator) -> str:
        """Single find-element call. Returns the server's element id."""
        op = f"find {locator}"
        resp = await self._client._send(
            "POST", self._url(Route.FIND_ELEMENT), locator.to_body(),
            operation=op, session_id=self.id,
        )
        if not resp.is_success:
            raise ElementNotFound(
                f"no element for {locator} (HTTP {resp.status_code})",
                locator=locator, operation=op, session_id=self.id,
            )
        decoded = self._client._decode(resp, ElementResponse, operation=op, session_id=self.id)
        return decoded.value.element_id

    async def resolve(
        self,
        locator: Locator,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> str:
        """Retry ``find_element`` until it succeeds or *timeout* elapses.

        Raises:
            TimeoutError: the element never appeared; carries the locator.
            EncodingError: the locator cannot be sent. Not retried.
            TransportError: the client has been closed. Not retried.
        """
        timeout = self.config.resolve_timeout if timeout is None else timeout
        poll = self.config.poll_interval if poll_interval is None else poll_interval
        deadline = Deadline(timeout)
        attempts = 0
        last_error: Optional[AppiumError] = None

        while True:
            attempts += 1
            try:
                return await self.find_element(locator)
            except _TRANSIENT as exc:
                if self._client.closed:
                    raise
                last_error = exc
                logger.debug("resolve %s attempt %d failed: %s", locator, attempts, exc)
            if deadline.expired():
                break
            await backoff(min(poll, deadline.remaining()))

        raise TimeoutError(
            f"element {locator} did not appear within {timeout:.2f}s",
            locator=locator, timeout=timeout, elapsed=deadline.elapsed(),
            attempts=attempts, last_error=last_error,
            operation="resolve", session_id=self.id,
        )

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------

    async def _click_once(self, element_id: str, locator: Locator) -> None:
        op = f"click {locator}"
        resp = await self._client._send(
            "POST", self._url(Route.CLICK, element_id), {},
            operation=op, session_id=self.id,
        )
        if not resp.is_success:
            raise InvalidResponse(
                f"click on {locator} rejected", status_code=resp.status_code,
                operation=op, session_id=self.id,
            )

    async def click(
        self,
        locator: Locator,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        and_wait_for: Optional[Locator] = None,
        deadline: Optional[Deadline] = None,
    ) -> None:
        """Resolve *locator* and click it, all within one time budget.

        Failed resolves and rejected clicks are retried while the budget
        allows. With *and_wait_for*, the click only counts once that second
        locator resolves within what is left of the same budget.

        Pass *deadline* to spend a budget that started earlier.
        """
        timeout = self.config.click_timeout if timeout is None else timeout
        poll = self.config.poll_interval if poll_interval is None else poll_interval
        if deadline is None:
            deadline = Deadline(timeout)
        last_error: Optional[BaseException] = None
        attempts = 0

        while not deadline.expired():
            attempts += 1
            remaining = deadline.remaining()
            if remaining < poll + _CLICK_MARGIN:
                logger.warning("click %s: %.3fs left, not enough for another attempt", locator, remaining)
                if last_error is None:
                    last_error = TimeoutError(
                        f"not enough time left to click {locator}",
                        locator=locator, timeout=deadline.timeout, elapsed=deadline.elapsed(),
                        attempts=attempts, operation="click", session_id=self.id,
                    )
                break

            try:
                element_id = await self.resolve(locator, timeout=remaining, poll_interval=poll)
            except (TimeoutError, *_TRANSIENT) as exc:
                if self._client.closed:
                    raise
                last_error = exc
                if deadline.remaining() <= poll:
                    break
                await backoff(poll)
                continue

            if deadline.remaining() <= _MIN_CLICK_WINDOW:
                if last_error is None:
                    last_error = TimeoutError(
                        f"resolved {locator} but no time left to click it",
                        locator=locator, timeout=deadline.timeout, elapsed=deadline.elapsed(),
                        attempts=attempts, operation="click", session_id=self.id,
                    )
                break

            try:
                await self._click_once(element_id, locator)
            except (InvalidResponse, TransportError) as exc:
                if self._client.closed:
                    raise
                last_error = exc
                logger.warning("click %s attempt %d failed: %s", locator, attempts, exc)
            else:
                logger.info("clicked %s in %.2fs", locator, deadline.elapsed())
                if and_wait_for is not None:
                    await self._await_after_click(locator, and_wait_for, deadline, poll)
                return

            if deadline.remaining() <= poll:
                break
            await backoff(poll)

        if last_error is not None:
            logger.error("click %s gave up after %d attempts: %s", locator, attempts, last_error)
            raise last_error
        raise TimeoutError(
            f"click on {locator} did not complete",
            locator=locator, timeout=deadline.timeout, elapsed=deadline.elapsed(),
            attempts=attempts, operation="click", session_id=self.id,
        )

    async def _await_after_click(
        self, clicked: Locator, target: Locator, deadline: Deadline, poll: float
    ) -> None:
        remaining = deadline.remaining()
        if remaining < poll:
            raise TimeoutError(
                f"clicked {clicked}, but not enough time left to wait for {target}",
                locator=target, timeout=deadline.timeout, elapsed=deadline.elapsed(),
                operation="click", session_id=self.id,
            )
        try:
            await self.resolve(target, timeout=remaining, poll_interval=poll)
        except (TimeoutError, *_TRANSIENT) as exc:
            if self._client.closed:
                raise
            raise TimeoutError(
                f"clicked {clicked}, but {target} did not appear",
                locator=target, timeout=deadline.timeout, elapsed=deadline.elapsed(),
                last_error=exc, operation="click", session_id=self.id,
            ) from exc

    async def type(self, locator: Locator, text: str, poll_interval: Optional[float] = None) -> None:
        """Resolve *locator* and send *text* to it once. A rejected send is not retried."""
        element_id = await self.resolve(locator, timeout=self.config.type_timeout, poll_interval=poll_interval)
        await self._client._post(
            self._url(Route.ELEMENT_VALUE, element_id), {"text": text},
            operation=f"type into {locator}", session_id=self.id,
        )

    async def numeric_value(self, locator: Locator) -> float:
        """Read the element's value attribute as a number (``"42%"`` -> 0.42)."""
        element_id = await self.resolve(locator, timeout=self.config.value_timeout)
        op = f"read value of {locator}"
        decoded = await self._client._get(
            self._url(Route.ATTRIBUTE_VALUE, element_id), ValueResponse,
            operation=op, session_id=self.id,
        )
        if not decoded.value:
            raise InvalidResponse(f"{locator} has no value", operation=op, session_id=self.id)
        try:
            return parse_numeric(decoded.value)
        except InvalidResponse as exc:
            exc.operation, exc.session_id = op, self.id
            raise

    async def text(self, locator: Locator) -> str:
        element_id = await self.resolve(locator)
        decoded = await self._client._get(
            self._url(Route.ELEMENT_TEXT, element_id), ValueResponse,
            operation=f"read text of {locator}", session_id=self.id,
        )
        return decoded.value or ""

    async def _element_flag(self, locator: Locator, route: Route) -> bool:
        element_id = await self.resolve(locator, timeout=self.config.state_timeout)
        decoded = await self._client._get(
            self._url(route, element_id), BoolResponse,
            operation=f"{route.value} {locator}", session_id=self.id,
        )
        return decoded.value

    async def is_visible(self, locator: Locator) -> bool:
        return await self._element_flag(locator, Route.DISPLAYED)

    async def is_checked(self, locator: Locator) -> bool:
        return await self._element_flag(locator, Route.SELECTED)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    async def source(self) -> str:
        """Fresh UI hierarchy (XML) or page source (HTML). Never cached."""
        decoded = await self._client._get(
            self._url(Route.SOURCE), SourceResponse, operation="source", session_id=self.id,
        )
        return decoded.value

    async def contains(self, text: str) -> bool:
        return text in await self.source()

    async def contains_at_least(self, text: str, count: int) -> bool:
        """True if *text* occurs at least *count* times, without overlaps."""
        return (await self.source()).count(text) >= count

    async def has_no(self, text: str, delay: float = 0.0) -> bool:
        """Optionally wait *delay* seconds, then check *text* is absent once."""
        await backoff(delay)
        return text not in await self.source()

    async def _poll_source(
        self,
        predicate: Callable[[str], bool],
        what: str,
        timeout: Optional[float],
        poll_interval: Optional[float],
    ) -> bool:
        timeout = self.config.hierarchy_timeout if timeout is None else timeout
        poll = self.config.poll_interval if poll_interval is None else poll_interval
        deadline = Deadline(timeout)
        while True:
            try:
                if predicate(await self.source()):
                    return True
            except AppiumError as exc:
                if self._client.closed:
                    raise
                logger.warning("%s: source fetch failed, retrying: %s", what, exc)
            if deadline.expired():
                logger.info("%s: not satisfied within %.2fs", what, timeout)
                return False
            await backoff(min(poll, deadline.remaining()))

    async def wait_until_contains(
        self, text: str, timeout: Optional[float] = None, poll_interval: Optional[float] = None
    ) -> bool:
        return await self._poll_source(lambda src: text in src, f"wait for {text!r}", timeout, poll_interval)

    async def wait_until_absent(
        self, text: str, timeout: Optional[float] = None, poll_interval: Optional[float] = None
    ) -> bool:
        return await self._poll_source(lambda src: text not in src, f"wait for {text!r} to go", timeout, poll_interval)

    # ------------------------------------------------------------------
    # Session-level commands
    # ------------------------------------------------------------------

    async def execute_script(self, script: str, args: Optional[List[Any]] = None) -> Any:
        decoded = await self._client._post(
            self._url(Route.EXECUTE), {"script": script, "args": args or []}, ScriptResponse,
            operation="execute script", session_id=self.id,
        )
        return decoded.value

    async def hide_keyboard(self) -> None:
        await self._client._post(
            self._url(Route.HIDE_KEYBOARD), {}, operation="hide keyboard", session_id=self.id,
        )

    async def navigate(self, url: str) -> None:
        await self._client._post(self._url(Route.URL), {"url": url}, operation="navigate", session_id=self.id)

    async def current_url(self) -> str:
        decoded = await self._client._get(
            self._url(Route.URL), ValueResponse, operation="current url", session_id=self.id,
        )
        return decoded.value or ""

    async def settings(self) -> Dict[str, Any]:
        decoded = await self._client._get(
            self._url(Route.SETTINGS), ScriptResponse, operation="settings", session_id=self.id,
        )
        return decoded.value or {}

    async def update_settings(self, settings: Dict[str, Any]) -> None:
        await self._client._post(
            self._url(Route.SETTINGS), {"settings": settings}, operation="update settings", session_id=self.id,
        )

    async def reset_app(self) -> None:
        await self._client._post(self._url(Route.RESET_APP), {}, operation="reset app", session_id=self.id)

    async def fullscreen(self) -> None:
        await self._client._post(self._url(Route.FULLSCREEN), {}, operation="fullscreen", session_id=self.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Delete the session on the server. Safe to call twice."""
        if self.state is SessionState.DELETED:
            return
        await self._client._delete(self._url(Route.SESSION), operation="delete session", session_id=self.id)
        self.state = SessionState.DELETED
        logger.info("deleted session %s", self.id)

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()
