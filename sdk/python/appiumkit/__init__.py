"""appiumkit: async Appium/WebDriver client engine"""

from .client import AppiumClient, SessionBuckets, SessionManager
from .config import AppiumConfig
from .errors import (
    AppiumError,
    ConfigError,
    ElementNotFound,
    EncodingError,
    InvalidResponse,
    TimeoutError,
    TransportError,
)
from .models import (
    ChromiumDriver,
    EspressoDriver,
    Locator,
    Platform,
    Strategy,
    UIAutomatorDriver,
    XCUITestDriver,
)
from .session import Session, SessionOrigin, SessionState
from .wait import Deadline

__version__ = "0.1.0"
__all__ = [
    "AppiumClient",
    "AppiumConfig",
    "SessionManager",
    "SessionBuckets",
    "Session",
    "SessionOrigin",
    "SessionState",
    "Locator",
    "Strategy",
    "Platform",
    "XCUITestDriver",
    "UIAutomatorDriver",
    "EspressoDriver",
    "ChromiumDriver",
    "Deadline",
    "AppiumError",
    "InvalidResponse",
    "ElementNotFound",
    "EncodingError",
    "TimeoutError",
    "TransportError",
    "ConfigError",
]
