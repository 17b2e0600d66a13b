from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from .config import load_settings, log_level
from .models import (
    DEFAULT_DIMENSION,
    DEFAULT_OPACITY,
    DEFAULT_PADDING_PERCENT,
    DEFAULT_STROKE_COLOR,
    Failed,
    GeoPoint,
    RenderOutcome,
    RenderRequest,
)
from .services.browser import BrowserPool
from .services.errors import CompositeError
from .services.geometry import normalize_polygon
from .services.orchestrator import DEFAULT_BATCH_CONCURRENCY, RenderOrchestrator, build_orchestrator

MAX_DIMENSION = 4096
MAX_BATCH_CONCURRENCY = 8

logging.basicConfig(level=log_level())
logger = logging.getLogger(__name__)

app = FastAPI(title="Index Overlay Renderer", version="0.1.0")

settings = load_settings()
browser_pool = BrowserPool(settings)
orchestrator = build_orchestrator(browser_pool, settings)


class GeoPointPayload(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class RenderPayload(BaseModel):
    polygon: List[GeoPointPayload] = Field(min_length=3)
    tile_url: str | None = None
    base_image_url: str | None = None
    overlay_image_url: str | None = None
    opacity: float = Field(DEFAULT_OPACITY, ge=0.0, le=1.0)
    stroke_color: str = DEFAULT_STROKE_COLOR
    width: int = Field(DEFAULT_DIMENSION, gt=0, le=MAX_DIMENSION)
    height: int = Field(DEFAULT_DIMENSION, gt=0, le=MAX_DIMENSION)
    padding_percent: float = Field(DEFAULT_PADDING_PERCENT, ge=0.0)
    label: str | None = None

    def to_request(self) -> RenderRequest:
        polygon = normalize_polygon(GeoPoint(point.lat, point.lng) for point in self.polygon)
        return RenderRequest(
            polygon=polygon,
            tile_url_template=(self.tile_url or "").strip() or None,
            base_image_url=(self.base_image_url or "").strip() or None,
            overlay_image_url=(self.overlay_image_url or "").strip() or None,
            opacity=self.opacity,
            stroke_color=self.stroke_color,
            width=self.width,
            height=self.height,
            padding_percent=self.padding_percent,
            label=self.label,
        )


class BatchRenderPayload(BaseModel):
    items: List[RenderPayload] = Field(min_length=1)
    concurrency: int = Field(DEFAULT_BATCH_CONCURRENCY, ge=1, le=MAX_BATCH_CONCURRENCY)


def get_orchestrator() -> RenderOrchestrator:
    return orchestrator


def _build_request(payload: RenderPayload) -> RenderRequest:
    try:
        return payload.to_request()
    except (CompositeError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _outcome_payload(outcome: RenderOutcome) -> Dict[str, Any]:
    if isinstance(outcome, Failed):
        return {"status": "failed", "reason": outcome.reason, "errors": list(outcome.errors)}
    return {
        "status": "rendered",
        "renderer": outcome.renderer,
        "width": outcome.width,
        "height": outcome.height,
        "image": base64.b64encode(outcome.png).decode("ascii"),
    }


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await browser_pool.shutdown()


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/render")
async def render_image(
    payload: RenderPayload,
    renderer: RenderOrchestrator = Depends(get_orchestrator),
):
    request = _build_request(payload)
    outcome = await renderer.render(request)
    if isinstance(outcome, Failed):
        return JSONResponse(status_code=502, content=_outcome_payload(outcome))
    return Response(
        content=outcome.png,
        media_type="image/png",
        headers={"X-Renderer": outcome.renderer},
    )


@app.post("/render/batch")
async def render_batch(
    payload: BatchRenderPayload,
    renderer: RenderOrchestrator = Depends(get_orchestrator),
):
    outcomes: List[RenderOutcome | None] = []
    requests: List[RenderRequest] = []
    for index, item in enumerate(payload.items):
        try:
            requests.append(item.to_request())
            outcomes.append(None)
        except (CompositeError, ValueError) as exc:
            logger.warning("Batch item %s rejected: %s", index, exc)
            outcomes.append(Failed(reason=str(exc), errors=[str(exc)]))

    rendered = iter(await renderer.render_batch(requests, concurrency=payload.concurrency))
    results = [outcome if outcome is not None else next(rendered) for outcome in outcomes]
    return {"results": [_outcome_payload(outcome) for outcome in results]}
