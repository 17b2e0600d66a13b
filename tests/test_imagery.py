import asyncio
import io

import httpx
import pytest
from PIL import Image

import index_overlay.services.imagery as imagery
from index_overlay.config import RenderSettings
from index_overlay.models import TileCoordinate
from index_overlay.services.errors import NetworkError
from index_overlay.services.imagery import (
    build_tile_url,
    fetch_image_bytes,
    fetch_source_images,
    resolve_tile_urls,
)


def _png_bytes(size: int = 16) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", (size, size), color=(120, 200, 150, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


class DummyResponse:
    def __init__(self, url: str, content: bytes, status_code: int = 200, content_type: str = "image/png"):
        self._url = httpx.URL(url)
        self.content = content
        self.headers = {"Content-Type": content_type}
        self.status_code = status_code

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def raise_for_status(self) -> None:  # pragma: no cover - interface parity
        return None

    @property
    def url(self) -> httpx.URL:
        return self._url


def _mock_client(responses, calls):
    class MockAsyncClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return None

        async def get(self, url: str, headers=None):
            calls.append({"url": url, "headers": headers or {}})
            outcome = responses[url].pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    return MockAsyncClient


@pytest.mark.parametrize(
    "template, expected",
    [
        ("https://tiles.test/{z}/{x}/{y}.png", "https://tiles.test/12/34/56.png"),
        ("https://tiles.test/$z/$x/$y", "https://tiles.test/12/34/56"),
        ("https://tiles.test/map?layer=ndvi", "https://tiles.test/map?layer=ndvi&x=34&y=56&z=12"),
        ("https://tiles.test/map", "https://tiles.test/map?x=34&y=56&z=12"),
        ("https://tiles.test/map?", "https://tiles.test/map?x=34&y=56&z=12"),
    ],
)
def test_build_tile_url_handles_every_template_style(template, expected):
    assert build_tile_url(template, 34, 56, 12) == expected


def test_dollar_placeholders_do_not_touch_longer_names():
    url = build_tile_url("https://tiles.test/$z/$x/$y?token=$xyz", 1, 2, 3)

    assert url == "https://tiles.test/3/1/2?token=$xyz"


def test_resolve_tile_urls_keys_by_tile():
    tiles = [TileCoordinate(x=1, y=2, z=3), TileCoordinate(x=2, y=2, z=3)]

    urls = resolve_tile_urls("https://tiles.test/{z}/{x}/{y}", tiles)

    assert urls == {"3/1/2": "https://tiles.test/3/1/2", "3/2/2": "https://tiles.test/3/2/2"}


def test_empty_template_is_rejected():
    with pytest.raises(ValueError):
        build_tile_url("  ", 0, 0, 0)


def test_fetch_retries_transient_failures_and_sends_user_agent(monkeypatch):
    url = "https://thumbs.test/overlay.png"
    calls: list = []
    responses = {
        url: [
            httpx.ConnectTimeout("timed out"),
            DummyResponse(url, b"busy", status_code=503, content_type="text/plain"),
            DummyResponse(url, _png_bytes()),
        ]
    }
    monkeypatch.setattr(httpx, "AsyncClient", _mock_client(responses, calls))
    monkeypatch.setattr(imagery, "RETRY_BACKOFF_SECONDS", 0)
    settings = RenderSettings(max_retries=2, user_agent="Test-Agent/1.0")

    content = asyncio.run(fetch_image_bytes(url, settings=settings))

    assert content == _png_bytes()
    assert len(calls) == 3
    assert all(call["headers"]["User-Agent"] == "Test-Agent/1.0" for call in calls)


def test_fetch_gives_up_after_max_retries(monkeypatch):
    url = "https://thumbs.test/base.png"
    calls: list = []
    responses = {url: [httpx.ConnectError("refused"), httpx.ConnectError("refused")]}
    monkeypatch.setattr(httpx, "AsyncClient", _mock_client(responses, calls))
    monkeypatch.setattr(imagery, "RETRY_BACKOFF_SECONDS", 0)

    with pytest.raises(NetworkError) as exc:
        asyncio.run(fetch_image_bytes(url, settings=RenderSettings(max_retries=1), label="base image"))

    assert "base image" in str(exc.value)
    assert len(calls) == 2


def test_non_image_payload_is_not_retried(monkeypatch):
    url = "https://thumbs.test/base.png"
    calls: list = []
    responses = {url: [DummyResponse(url, b"<html>quota</html>", content_type="text/html")]}
    monkeypatch.setattr(httpx, "AsyncClient", _mock_client(responses, calls))

    with pytest.raises(NetworkError) as exc:
        asyncio.run(fetch_image_bytes(url, settings=RenderSettings(max_retries=3)))

    assert "unexpected payload" in str(exc.value)
    assert len(calls) == 1


def test_fetch_source_images_downloads_both(monkeypatch):
    base_url = "https://thumbs.test/base.png"
    overlay_url = "https://thumbs.test/overlay.png"
    calls: list = []
    responses = {
        base_url: [DummyResponse(base_url, _png_bytes(8))],
        overlay_url: [DummyResponse(overlay_url, _png_bytes(4))],
    }
    monkeypatch.setattr(httpx, "AsyncClient", _mock_client(responses, calls))

    base, overlay = asyncio.run(
        fetch_source_images(base_url, overlay_url, settings=RenderSettings())
    )

    assert base == _png_bytes(8)
    assert overlay == _png_bytes(4)
    assert sorted(call["url"] for call in calls) == [base_url, overlay_url]
