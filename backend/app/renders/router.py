from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, JSONResponse, Response

from .errors import FeedError
from .models import HealthReport, WorkersSettings
from .registry import validate_endpoints
from .service import ListingNotFound, RenderService, get_render_service

logger = logging.getLogger("tradecast.core.router")

router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("/health", response_model=HealthReport)
async def health(svc: RenderService = Depends(get_render_service)) -> HealthReport:
    return await svc.health_report()


@router.get("/image/{listing_id}")
def get_image(listing_id: str, svc: RenderService = Depends(get_render_service)):
    try:
        data = svc.cache.get(listing_id)
    except ValueError:
        return _error(400, "Invalid trade ad id")

    if data is None:
        if listing_id not in svc.tracker and not svc.poller.has_seen(listing_id):
            logger.info("Image not found for %s, will check on next poll", listing_id)
        return _error(404, "Image not found")

    return Response(content=data, media_type="image/png")


@router.post("/generate/{listing_id}")
async def force_generate(listing_id: str, svc: RenderService = Depends(get_render_service)):
    """
    Render one trade ad now, bypassing the poll cycle. Waits for the result.
    """
    try:
        result = await svc.force_dispatch(listing_id)
    except ListingNotFound:
        return _error(404, "Trade ad not found")
    except FeedError as e:
        logger.error("Error in force generate for %s: %s", listing_id, e)
        return _error(502, "Failed to fetch trade ads")

    if result.status == "skipped":
        return _error(409, "Trade ad is already being processed")
    if not result.ok:
        return JSONResponse(
            status_code=502,
            content={
                "error": "Failed to generate image",
                "attempts": [a.model_dump(mode="json") for a in result.attempts],
            },
        )
    return {"success": True, "message": "Image generated", "worker": result.endpoint}


@router.get("/settings", response_model=WorkersSettings)
def get_settings(svc: RenderService = Depends(get_render_service)) -> WorkersSettings:
    return WorkersSettings(workers=svc.registry.all())


@router.post("/settings")
async def update_settings(request: Request, svc: RenderService = Depends(get_render_service)):
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Invalid workers array")

    workers = body.get("workers") if isinstance(body, dict) else None
    if not isinstance(workers, list) or not all(isinstance(w, str) for w in workers):
        return _error(400, "Invalid workers array")

    try:
        workers = validate_endpoints(workers)
    except ValueError as e:
        return _error(400, str(e))

    svc.registry.replace(workers)
    return {"success": True}


@router.get("/", include_in_schema=False)
def index():
    from ..config import settings

    page = settings.public_dir / "index.html"
    if not page.is_file():
        return _error(404, "Not found")
    return FileResponse(str(page), media_type="text/html")
