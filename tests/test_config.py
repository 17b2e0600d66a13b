import pytest

from index_overlay.config import BrowserStrategy, load_settings, log_level

ENV_NAMES = (
    "BASEMAP_API_KEY",
    "GOOGLE_MAPS_SERVER_API_KEY",
    "BROWSER_STRATEGY",
    "BROWSER_EXECUTABLE_PATH",
    "BROWSER_CDP_ENDPOINT",
    "RENDER_SETTLE_SECONDS",
    "RENDER_WAIT_TIMEOUT_SECONDS",
    "IMAGERY_MAX_RETRIES",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()

    assert settings.basemap_api_key == ""
    assert settings.browser_strategy is BrowserStrategy.BUNDLED
    assert settings.settle_seconds == 2.0
    assert settings.hard_timeout_seconds == 10.0
    assert settings.wait_timeout_seconds == 15.0
    assert settings.max_retries == 2
    assert log_level() == "INFO"


def test_basemap_key_falls_back_to_legacy_name(monkeypatch):
    monkeypatch.setenv("GOOGLE_MAPS_SERVER_API_KEY", " legacy-key ")

    assert load_settings().basemap_api_key == "legacy-key"

    monkeypatch.setenv("BASEMAP_API_KEY", "primary-key")

    assert load_settings().basemap_api_key == "primary-key"


def test_numeric_values_are_parsed_and_invalid_ones_ignored(monkeypatch):
    monkeypatch.setenv("RENDER_SETTLE_SECONDS", "0.5")
    monkeypatch.setenv("RENDER_WAIT_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("IMAGERY_MAX_RETRIES", "-4")

    settings = load_settings()

    assert settings.settle_seconds == 0.5
    assert settings.wait_timeout_seconds == 15.0
    assert settings.max_retries == 0


def test_browser_strategy_is_read_case_insensitively(monkeypatch):
    monkeypatch.setenv("BROWSER_STRATEGY", "CDP")
    monkeypatch.setenv("BROWSER_CDP_ENDPOINT", "ws://chrome:9222")

    settings = load_settings()

    assert settings.browser_strategy is BrowserStrategy.CDP
    assert settings.browser_cdp_endpoint == "ws://chrome:9222"


def test_unknown_browser_strategy_is_rejected(monkeypatch):
    monkeypatch.setenv("BROWSER_STRATEGY", "firefox")

    with pytest.raises(ValueError):
        load_settings()
