from __future__ import annotations

import asyncio
import logging
from typing import List, Protocol, Sequence

from PIL import Image

from ..config import RenderSettings, load_settings
from ..models import Failed, Rendered, RenderOutcome, RenderRequest
from .browser import BrowserPool
from .composite import RasterCompositeRenderer
from .compositor import encode_png
from .errors import RenderError, RenderTimeoutError
from .tile_renderer import LiveTileRenderer

logger = logging.getLogger(__name__)

DEFAULT_BATCH_CONCURRENCY = 2


class Renderer(Protocol):
    """A strategy that turns a :class:`RenderRequest` into an RGBA image.

    ``render`` raises a :class:`RenderError` subclass on failure. ``supports``
    lets a renderer decline requests that lack the inputs it needs.
    """

    name: str

    def supports(self, request: RenderRequest) -> bool:
        ...

    async def render(self, request: RenderRequest) -> Image.Image:
        ...


class RenderOrchestrator:
    """Try each renderer once, in order, and return the first image produced.

    Failures never escape :meth:`render`; they are folded into a
    :class:`~index_overlay.models.Failed` outcome so a batch of report images
    can carry on past a single missing image. ``generation_timeout`` is one
    deadline for the whole request: a fallback renderer only gets the time the
    failed attempts before it left over.
    """

    def __init__(
        self,
        renderers: Sequence[Renderer],
        *,
        generation_timeout: float | None = None,
    ) -> None:
        self.renderers = list(renderers)
        self.generation_timeout = generation_timeout

    async def render(self, request: RenderRequest) -> RenderOutcome:
        errors: List[str] = []
        deadline = None
        if self.generation_timeout:
            deadline = asyncio.get_running_loop().time() + self.generation_timeout

        for renderer in self.renderers:
            if not renderer.supports(request):
                logger.debug("Skipping %s renderer for %s", renderer.name, request.description)
                continue

            try:
                image = await self._attempt(renderer, request, deadline)
                png = await asyncio.to_thread(encode_png, image)
            except RenderError as exc:
                logger.warning(
                    "%s renderer failed for %s: %s", renderer.name, request.description, exc
                )
                errors.append(f"{renderer.name}: {exc}")
                continue
            except Exception as exc:
                logger.exception(
                    "Unexpected error in %s renderer for %s", renderer.name, request.description
                )
                errors.append(f"{renderer.name}: {type(exc).__name__}: {exc}")
                continue

            logger.info(
                "Rendered %s with the %s renderer (%s bytes)",
                request.description,
                renderer.name,
                len(png),
            )
            return Rendered(png=png, renderer=renderer.name, width=image.width, height=image.height)

        if not errors:
            return Failed(reason="No renderer has the inputs required for this request.")
        return Failed(reason="; ".join(errors), errors=errors)

    async def _attempt(
        self, renderer: Renderer, request: RenderRequest, deadline: float | None
    ) -> Image.Image:
        if deadline is None:
            return await renderer.render(request)
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise RenderTimeoutError(
                f"image generation exceeded {self.generation_timeout:.0f}s before this attempt"
            )
        try:
            return await asyncio.wait_for(renderer.render(request), remaining)
        except asyncio.TimeoutError as exc:
            raise RenderTimeoutError(
                f"image generation exceeded {self.generation_timeout:.0f}s"
            ) from exc

    async def render_batch(
        self,
        requests: Sequence[RenderRequest],
        *,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> List[RenderOutcome]:
        """Render every request, at most ``concurrency`` at a time, in input order."""

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _bounded(request: RenderRequest) -> RenderOutcome:
            async with semaphore:
                return await self.render(request)

        outcomes = await asyncio.gather(*(_bounded(request) for request in requests))
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning("%s of %s report images could not be rendered", failed, len(outcomes))
        return list(outcomes)


def build_orchestrator(
    pool: BrowserPool, settings: RenderSettings | None = None
) -> RenderOrchestrator:
    """Live tile rendering first, raster compositing as the fallback."""

    settings = settings or load_settings()
    return RenderOrchestrator(
        [LiveTileRenderer(pool, settings), RasterCompositeRenderer(settings)],
        generation_timeout=settings.generation_timeout_seconds,
    )
