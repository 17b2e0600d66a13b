from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, Iterable, Tuple

import httpx

from ..config import RenderSettings
from ..models import TileCoordinate
from .errors import NetworkError

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

_BRACE_PLACEHOLDER = re.compile(r"\{([xyz])\}")
_DOLLAR_PLACEHOLDER = re.compile(r"\$([xyz])(?![A-Za-z0-9_])")


class _RetryableDownloadError(Exception):
    """Internal marker for failures worth another attempt."""


def has_tile_placeholders(template: str) -> bool:
    return bool(_BRACE_PLACEHOLDER.search(template) or _DOLLAR_PLACEHOLDER.search(template))


def build_tile_url(template: str, x: int, y: int, z: int) -> str:
    """Resolve a tile URL template for one tile.

    ``{x}``/``{y}``/``{z}`` and ``$x``/``$y``/``$z`` placeholders are substituted.
    A template without placeholders is treated as a base URL and receives the
    indices as ``x``, ``y`` and ``z`` query parameters.
    """

    template = (template or "").strip()
    if not template:
        raise ValueError("Tile URL template is empty.")

    values = {"x": str(x), "y": str(y), "z": str(z)}
    if has_tile_placeholders(template):
        resolved = _BRACE_PLACEHOLDER.sub(lambda match: values[match.group(1)], template)
        return _DOLLAR_PLACEHOLDER.sub(lambda match: values[match.group(1)], resolved)

    separator = "&" if "?" in template else "?"
    if template.endswith(("?", "&")):
        separator = ""
    return f"{template}{separator}x={x}&y={y}&z={z}"


def resolve_tile_urls(template: str, tiles: Iterable[TileCoordinate]) -> Dict[str, str]:
    """Map ``"z/x/y"`` keys to concrete tile URLs."""

    return {tile.key: build_tile_url(template, tile.x, tile.y, tile.z) for tile in tiles}


async def fetch_image_bytes(
    url: str,
    *,
    settings: RenderSettings,
    client: httpx.AsyncClient | None = None,
    label: str = "image",
) -> bytes:
    """Download ``url`` and return the raw image bytes.

    Connection errors, timeouts and transient HTTP statuses are retried up to
    ``settings.max_retries`` times. Any remaining failure, including a non-image
    payload, is raised as :class:`NetworkError`.
    """

    if not url:
        raise NetworkError(f"No URL was provided for the {label}.")

    if client is None:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            follow_redirects=True,
        ) as owned_client:
            return await fetch_image_bytes(url, settings=settings, client=owned_client, label=label)

    headers = {"User-Agent": settings.user_agent}
    attempts = settings.max_retries + 1
    last_error = "no attempts made"

    for attempt in range(1, attempts + 1):
        try:
            return await _download_once(client, url, headers)
        except _RetryableDownloadError as exc:
            last_error = str(exc)
            if attempt < attempts:
                logger.warning(
                    "Download of %s failed (attempt %s/%s): %s", label, attempt, attempts, last_error
                )
                await asyncio.sleep(RETRY_BACKOFF_SECONDS * attempt)

    raise NetworkError(f"Failed to download {label} after {attempts} attempt(s): {last_error}")


async def _download_once(client: httpx.AsyncClient, url: str, headers: Dict[str, str]) -> bytes:
    try:
        response = await client.get(url, headers=headers)
    except httpx.RequestError as exc:
        raise _RetryableDownloadError(f"{type(exc).__name__}: {exc}") from exc

    if response.status_code in RETRYABLE_STATUS_CODES:
        raise _RetryableDownloadError(
            f"{response.status_code} {_short_error_detail(_response_text(response))}"
        )

    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        detail = _short_error_detail(_response_text(exc.response))
        raise NetworkError(f"{exc.response.status_code} {detail}") from exc

    if not _is_image_response(response):
        content_type = response.headers.get("Content-Type", "unknown")
        detail = _short_error_detail(_response_text(response))
        raise NetworkError(f"unexpected payload ({content_type}): {detail}")

    content = response.content
    if not content:
        raise NetworkError("received an empty image payload")
    return content


async def fetch_source_images(
    base_url: str, overlay_url: str, *, settings: RenderSettings
) -> Tuple[bytes, bytes]:
    """Download the base satellite thumbnail and the index overlay thumbnail together."""

    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        follow_redirects=True,
    ) as client:
        base, overlay = await asyncio.gather(
            fetch_image_bytes(base_url, settings=settings, client=client, label="base image"),
            fetch_image_bytes(overlay_url, settings=settings, client=client, label="overlay image"),
        )
    logger.info(
        "Downloaded source thumbnails (base %s bytes, overlay %s bytes)", len(base), len(overlay)
    )
    return base, overlay


def _response_text(response: httpx.Response) -> str:
    try:
        return response.text
    except Exception:  # pragma: no cover - undecodable bodies
        return ""


def _short_error_detail(detail: str) -> str:
    detail = (detail or "").strip()
    if len(detail) > 160:
        return f"{detail[:157]}..."
    return detail or "(no detail)"


def _is_image_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("Content-Type", "")
    return "image" in content_type.lower()
