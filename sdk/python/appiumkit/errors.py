"""Exception types raised by the appiumkit engine."""

from __future__ import annotations

from typing import Any, Optional


class AppiumError(Exception):
    """Base class for every engine failure.

    Carries the session and operation it happened in so a failure can be
    traced back without a stack dump.
    """

    summary = "Appium error"

    def __init__(
        self,
        message: str,
        *,
        session_id: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.operation = operation

    def _context(self) -> list:
        parts = []
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.session_id:
            parts.append(f"session={self.session_id}")
        return parts

    @property
    def user_message(self) -> str:
        return f"{self.summary}: {self.message}"

    def __str__(self) -> str:
        ctx = self._context()
        if not ctx:
            return self.user_message
        return f"{self.user_message} [{', '.join(ctx)}]"


class InvalidResponse(AppiumError):
    """Non-success status, missing body, or a body that does not decode."""

    summary = "Server returned an invalid response"

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code

    def _context(self) -> list:
        parts = super()._context()
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return parts


class ElementNotFound(AppiumError):
    summary = "Could not find the requested element"

    def __init__(self, message: str, *, locator: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.locator = locator


class EncodingError(AppiumError):
    """Request body could not be serialised. Never retried."""

    summary = "Failed to encode request data"


class TransportError(AppiumError):
    """Network-level failure talking to the automation server."""

    summary = "Could not reach the automation server"


class ConfigError(AppiumError):
    summary = "Invalid configuration"


class TimeoutError(AppiumError):  # noqa: A001 - package-scoped name
    """A deadline budget ran out.

    Attributes:
        locator: The locator being waited on, if any.
        timeout: The budget in seconds.
        elapsed: Seconds spent before giving up.
        attempts: Number of attempts made.
        last_error: The last absorbed failure, if any.
    """

    summary = "Operation timed out"

    def __init__(
        self,
        message: str,
        *,
        locator: Any = None,
        timeout: Optional[float] = None,
        elapsed: Optional[float] = None,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.locator = locator
        self.timeout = timeout
        self.elapsed = elapsed
        self.attempts = attempts
        self.last_error = last_error

    def _context(self) -> list:
        parts = super()._context()
        if self.timeout is not None:
            parts.append(f"timeout={self.timeout:.2f}s")
        if self.elapsed is not None:
            parts.append(f"elapsed={self.elapsed:.2f}s")
        if self.attempts:
            parts.append(f"attempts={self.attempts}")
        if self.last_error is not None:
            parts.append(f"last_error={type(self.last_error).__name__}: {self.last_error}")
        return parts
