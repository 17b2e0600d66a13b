from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

BASEMAP_API_KEY_ENV = "BASEMAP_API_KEY"
# Older deployments only set the Google Maps server key.
LEGACY_BASEMAP_API_KEY_ENV = "GOOGLE_MAPS_SERVER_API_KEY"
BROWSER_STRATEGY_ENV = "BROWSER_STRATEGY"
BROWSER_EXECUTABLE_PATH_ENV = "BROWSER_EXECUTABLE_PATH"
BROWSER_CDP_ENDPOINT_ENV = "BROWSER_CDP_ENDPOINT"
RENDER_SETTLE_SECONDS_ENV = "RENDER_SETTLE_SECONDS"
RENDER_HARD_TIMEOUT_SECONDS_ENV = "RENDER_HARD_TIMEOUT_SECONDS"
RENDER_WAIT_TIMEOUT_SECONDS_ENV = "RENDER_WAIT_TIMEOUT_SECONDS"
IMAGE_GENERATION_TIMEOUT_SECONDS_ENV = "IMAGE_GENERATION_TIMEOUT_SECONDS"
IMAGERY_REQUEST_TIMEOUT_ENV = "IMAGERY_REQUEST_TIMEOUT"
IMAGERY_MAX_RETRIES_ENV = "IMAGERY_MAX_RETRIES"
IMAGERY_USER_AGENT_ENV = "IMAGERY_USER_AGENT"
LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_HARD_TIMEOUT_SECONDS = 10.0
DEFAULT_WAIT_TIMEOUT_SECONDS = 15.0
DEFAULT_GENERATION_TIMEOUT_SECONDS = 30.0
DEFAULT_REQUEST_TIMEOUT = 20.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "IndexOverlay-Render-Service/1.0"
DEFAULT_LOG_LEVEL = "INFO"


class BrowserStrategy(str, Enum):
    """How the headless browser binary is obtained."""

    BUNDLED = "bundled"
    EXECUTABLE = "executable"
    CDP = "cdp"


@dataclass(frozen=True)
class RenderSettings:
    """Runtime configuration for the render services, read from the environment."""

    basemap_api_key: str = ""
    browser_strategy: BrowserStrategy = BrowserStrategy.BUNDLED
    browser_executable_path: str = ""
    browser_cdp_endpoint: str = ""
    settle_seconds: float = DEFAULT_SETTLE_SECONDS
    hard_timeout_seconds: float = DEFAULT_HARD_TIMEOUT_SECONDS
    wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS
    generation_timeout_seconds: float = DEFAULT_GENERATION_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    user_agent: str = DEFAULT_USER_AGENT


def _env_text(name: str, default: str = "") -> str:
    value = os.getenv(name, "").strip()
    return value or default


def _env_float(name: str, default: float) -> float:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        return default
    return max(0.0, value)


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return default
    try:
        value = int(raw_value)
    except ValueError:
        return default
    return max(0, value)


def _browser_strategy() -> BrowserStrategy:
    raw_value = _env_text(BROWSER_STRATEGY_ENV, BrowserStrategy.BUNDLED.value).lower()
    try:
        return BrowserStrategy(raw_value)
    except ValueError as exc:
        choices = ", ".join(strategy.value for strategy in BrowserStrategy)
        raise ValueError(
            f"Unsupported {BROWSER_STRATEGY_ENV} '{raw_value}'. Expected one of: {choices}."
        ) from exc


def load_settings() -> RenderSettings:
    """Build :class:`RenderSettings` from the current environment."""

    api_key = _env_text(BASEMAP_API_KEY_ENV) or _env_text(LEGACY_BASEMAP_API_KEY_ENV)
    return RenderSettings(
        basemap_api_key=api_key,
        browser_strategy=_browser_strategy(),
        browser_executable_path=_env_text(BROWSER_EXECUTABLE_PATH_ENV),
        browser_cdp_endpoint=_env_text(BROWSER_CDP_ENDPOINT_ENV),
        settle_seconds=_env_float(RENDER_SETTLE_SECONDS_ENV, DEFAULT_SETTLE_SECONDS),
        hard_timeout_seconds=_env_float(
            RENDER_HARD_TIMEOUT_SECONDS_ENV, DEFAULT_HARD_TIMEOUT_SECONDS
        ),
        wait_timeout_seconds=_env_float(
            RENDER_WAIT_TIMEOUT_SECONDS_ENV, DEFAULT_WAIT_TIMEOUT_SECONDS
        ),
        generation_timeout_seconds=_env_float(
            IMAGE_GENERATION_TIMEOUT_SECONDS_ENV, DEFAULT_GENERATION_TIMEOUT_SECONDS
        ),
        request_timeout_seconds=_env_float(IMAGERY_REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT),
        max_retries=_env_int(IMAGERY_MAX_RETRIES_ENV, DEFAULT_MAX_RETRIES),
        user_agent=_env_text(IMAGERY_USER_AGENT_ENV, DEFAULT_USER_AGENT),
    )


def log_level() -> str:
    return _env_text(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
