"""Pydantic v2 models for the Appium wire format and capability descriptors."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

VENDOR_PREFIX = "appium:"
W3C_ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    BROWSER = "browser"


# ---------------------------------------------------------------------------
# Locators
# ---------------------------------------------------------------------------

class Strategy(str, Enum):
    ACCESSIBILITY_ID = "accessibility id"
    CLASS_NAME = "class name"
    CSS_SELECTOR = "css selector"
    ID = "id"
    IOS_CLASS_CHAIN = "-ios class chain"
    IOS_PREDICATE = "-ios predicate string"
    ANDROID_DATA_MATCHER = "-android datamatcher"
    ANDROID_VIEW_MATCHER = "-android viewmatcher"
    ANDROID_UIAUTOMATOR = "-android uiautomator"
    ANDROID_VIEWTAG = "-android viewtag"
    TEXT = "text"
    XPATH = "xpath"


class Locator(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    selector: str

    @classmethod
    def by_id(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.ID, selector=selector)

    @classmethod
    def by_xpath(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.XPATH, selector=selector)

    @classmethod
    def by_accessibility_id(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.ACCESSIBILITY_ID, selector=selector)

    @classmethod
    def by_css(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.CSS_SELECTOR, selector=selector)

    @classmethod
    def by_class_name(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.CLASS_NAME, selector=selector)

    @classmethod
    def by_text(cls, selector: str) -> "Locator":
        return cls(strategy=Strategy.TEXT, selector=selector)

    def to_body(self) -> dict:
        return {"using": self.strategy.value, "value": self.selector}

    def describe(self) -> str:
        return f"{self.strategy.value}={self.selector!r}"

    def __str__(self) -> str:
        return self.describe()


# ---------------------------------------------------------------------------
# Capability descriptors
# ---------------------------------------------------------------------------

class _Driver(BaseModel):
    """Immutable description of the session a caller wants.

    ``capabilities()`` merges the fields every backend needs with the
    backend-specific ones; optional fields left as None are never sent.
    """

    model_config = ConfigDict(frozen=True)

    platform: ClassVar[Platform]

    platform_name: str
    platform_version: str
    automation_name: str

    @property
    def display_name(self) -> str:
        raise NotImplementedError

    def _optional_capabilities(self) -> Dict[str, Any]:
        return {}

    def capabilities(self, new_command_timeout: int = 3600) -> Dict[str, Any]:
        caps = {k: v for k, v in self._optional_capabilities().items() if v is not None}
        caps.update({
            "platformName": self.platform_name,
            "appium:platformVersion": self.platform_version,
            "appium:newCommandTimeout": new_command_timeout,
            "appium:automationName": self.automation_name,
        })
        return caps

    def new_session_payload(self, new_command_timeout: int = 3600) -> Dict[str, Any]:
        return {"capabilities": {"alwaysMatch": self.capabilities(new_command_timeout)}}


class XCUITestDriver(_Driver):
    platform: ClassVar[Platform] = Platform.IOS

    kind: Literal["xcuitest"] = "xcuitest"
    platform_name: str = "iOS"
    automation_name: str = "XCUITest"
    device_name: str
    udid: str
    app: Optional[str] = None
    wda_local_port: Optional[int] = None
    use_preinstalled_wda: Optional[bool] = False

    @property
    def display_name(self) -> str:
        return self.device_name or self.udid

    def _optional_capabilities(self) -> Dict[str, Any]:
        return {
            "appium:deviceName": self.device_name,
            "appium:udid": self.udid,
            "appium:app": self.app,
            "appium:wdaLocalPort": self.wda_local_port,
            "appium:usePreinstalledWDA": self.use_preinstalled_wda,
        }


class UIAutomatorDriver(_Driver):
    platform: ClassVar[Platform] = Platform.ANDROID

    kind: Literal["uiautomator"] = "uiautomator"
    platform_name: str = "Android"
    automation_name: str = "UiAutomator2"
    device_name: str
    app: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.device_name

    def _optional_capabilities(self) -> Dict[str, Any]:
        return {"appium:deviceName": self.device_name, "appium:app": self.app}


class EspressoDriver(UIAutomatorDriver):
    kind: Literal["espresso"] = "espresso"  # type: ignore[assignment]
    automation_name: str = "Espresso"
    espresso_build_config: Optional[str] = None  # path or inline JSON
    force_espresso_rebuild: Optional[bool] = None

    def _optional_capabilities(self) -> Dict[str, Any]:
        caps = super()._optional_capabilities()
        caps["appium:espressoBuildConfig"] = self.espresso_build_config
        caps["appium:forceEspressoRebuild"] = self.force_espresso_rebuild
        return caps


class ChromiumDriver(_Driver):
    platform: ClassVar[Platform] = Platform.BROWSER

    kind: Literal["chromium"] = "chromium"
    platform_name: str = "mac"
    automation_name: str = "Chromium"
    browser_name: str = "chrome"

    @property
    def display_name(self) -> str:
        return self.browser_name

    def _optional_capabilities(self) -> Dict[str, Any]:
        return {"appium:browserName": self.browser_name}


Driver = Annotated[
    Union[XCUITestDriver, UIAutomatorDriver, EspressoDriver, ChromiumDriver],
    Field(discriminator="kind"),
]
driver_adapter: TypeAdapter = TypeAdapter(Driver)


# ---------------------------------------------------------------------------
# Session listing
# ---------------------------------------------------------------------------

def _strip_vendor_prefix(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    out = {}
    for key, value in data.items():
        if isinstance(key, str) and key.startswith(VENDOR_PREFIX):
            key = key[len(VENDOR_PREFIX):]
        out[key] = value
    return out


class _CapabilityBag(BaseModel):
    """Flat capability map; ``appium:`` prefixes are dropped on the way in."""

    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _normalise_keys(cls, data: Any) -> Any:
        return _strip_vendor_prefix(data)

    @field_validator("platform_version", mode="before", check_fields=False)
    @classmethod
    def _version_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class SessionCapabilities(_CapabilityBag):
    platform_name: Optional[str] = None
    platform_version: Optional[str] = None
    automation_name: Optional[str] = None
    device_name: Optional[str] = None
    udid: Optional[str] = None
    browser_name: Optional[str] = None
    app: Optional[str] = None


class SessionSummary(BaseModel):
    id: str
    capabilities: SessionCapabilities = Field(default_factory=SessionCapabilities)

    def _platform_name(self) -> str:
        return (self.capabilities.platform_name or "").lower()

    @property
    def is_android(self) -> bool:
        return self._platform_name() == "android"

    @property
    def is_ios(self) -> bool:
        return self._platform_name() == "ios"

    @property
    def is_browser(self) -> bool:
        return bool(self.capabilities.browser_name)


class SessionListResponse(BaseModel):
    value: List[SessionSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Session creation
# ---------------------------------------------------------------------------
# Each platform answers POST /session in its own shape; the decoder is picked
# from the platform that was requested.

class _CreatedSessionValue(BaseModel):
    session_id: Optional[str] = Field(None, alias="sessionId")
    id: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.session_id or self.id or ""


class IOSCapabilities(_CapabilityBag):
    platform_name: str
    platform_version: str
    udid: str
    device_name: Optional[str] = None
    automation_name: Optional[str] = None


class IOSSessionValue(_CreatedSessionValue):
    capabilities: IOSCapabilities


class IOSSessionResponse(BaseModel):
    value: IOSSessionValue

    @property
    def session_id(self) -> str:
        return self.value.identifier

    @property
    def device_name(self) -> str:
        caps = self.value.capabilities
        return caps.device_name or caps.udid


class AndroidCapabilities(_CapabilityBag):
    platform_name: str
    platform_version: str
    automation_name: str
    device_name: Optional[str] = None


class AndroidSessionValue(_CreatedSessionValue):
    capabilities: AndroidCapabilities


class AndroidSessionResponse(BaseModel):
    value: AndroidSessionValue

    @field_validator("value", mode="before")
    @classmethod
    def _first_of_list(cls, v: Any) -> Any:
        # some server builds wrap the new session in a one-element list
        if isinstance(v, list):
            if not v:
                raise ValueError("empty session list")
            return v[0]
        return v

    @property
    def session_id(self) -> str:
        return self.value.identifier

    @property
    def device_name(self) -> str:
        return self.value.capabilities.device_name or ""


class WebCapabilities(_CapabilityBag):
    browser_name: str
    platform_name: Optional[str] = None
    browser_version: Optional[str] = None


class WebSessionValue(BaseModel):
    session_id: str = Field(alias="sessionId")
    capabilities: WebCapabilities


class WebSessionResponse(BaseModel):
    value: WebSessionValue

    @property
    def session_id(self) -> str:
        return self.value.session_id

    @property
    def device_name(self) -> str:
        return self.value.capabilities.browser_name


_DECODERS: Dict[Platform, Type[BaseModel]] = {
    Platform.IOS: IOSSessionResponse,
    Platform.ANDROID: AndroidSessionResponse,
    Platform.BROWSER: WebSessionResponse,
}


def decoder_for(platform: Platform) -> Type[BaseModel]:
    return _DECODERS[platform]


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------

class ElementReference(BaseModel):
    element_id: str = Field(validation_alias=AliasChoices("ELEMENT", W3C_ELEMENT_KEY), min_length=1)


class ElementResponse(BaseModel):
    value: ElementReference


class ValueResponse(BaseModel):
    value: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _number_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class BoolResponse(BaseModel):
    value: bool


class SourceResponse(BaseModel):
    value: str  # XML for native apps, HTML for browsers


class ScriptResponse(BaseModel):
    value: Any = None


class StatusResponse(BaseModel):
    value: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return bool(self.value.get("ready", False))

    @property
    def message(self) -> str:
        return str(self.value.get("message", ""))
