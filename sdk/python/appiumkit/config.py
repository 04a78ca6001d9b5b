"""Engine configuration."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .wait import DEFAULT_POLL_INTERVAL

_DEFAULT_BASE_URL = "http://localhost:4723"


class AppiumConfig(BaseModel):
    """Timing and connection settings shared by a client and its sessions.

    All durations are seconds.
    """

    base_url: str = _DEFAULT_BASE_URL
    request_timeout: float = Field(30.0, gt=0)
    new_command_timeout: int = Field(3600, gt=0)  # appium:newCommandTimeout
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL, gt=0)
    click_timeout: float = Field(5.0, gt=0)
    resolve_timeout: float = Field(5.0, gt=0)
    type_timeout: float = Field(5.0, gt=0)
    value_timeout: float = Field(35.0, gt=0)   # numeric attributes settle slowly
    state_timeout: float = Field(3.0, gt=0)    # displayed / selected
    hierarchy_timeout: float = Field(5.0, gt=0)

    @classmethod
    def from_env(cls, **overrides) -> "AppiumConfig":
        """Build a config from APPIUM_* environment variables.

        Keyword overrides win over the environment.
        """
        values: dict = {"base_url": os.environ.get("APPIUM_URL", _DEFAULT_BASE_URL)}
        if "APPIUM_REQUEST_TIMEOUT" in os.environ:
            values["request_timeout"] = os.environ["APPIUM_REQUEST_TIMEOUT"]
        if "APPIUM_POLL_INTERVAL" in os.environ:
            values["poll_interval"] = os.environ["APPIUM_POLL_INTERVAL"]
        values.update(overrides)
        return cls.model_validate(values)
