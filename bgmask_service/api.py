"""
FastAPI layer exposing in-house background removal.

Endpoints:
 - GET /health
 - POST /remove-bg       JSON {"imageUrl": ...}, returns image/png
 - POST /remove-bg/raw   raw image bytes as body, returns image/png
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, HttpUrl
import requests

from . import config
from .pipeline import is_background_removal_available, process_image_bytes

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="In-house Background Removal Service", version="0.1.0")


class RemoveBgRequest(BaseModel):
    imageUrl: HttpUrl


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


def _remove_to_png_response(image_bytes: bytes) -> Response:
    try:
        png_bytes = process_image_bytes(image_bytes)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as exc:  # noqa: BLE001
        logger.exception("Background removal failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc
    return Response(content=png_bytes, media_type="image/png")


@app.get("/health")
def health():
    return {"status": "ok", "available": is_background_removal_available()}


@app.post("/remove-bg")
def remove_bg(body: RemoveBgRequest):
    try:
        image_bytes = _download_image(str(body.imageUrl))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to download image: %s", exc)
        raise HTTPException(status_code=400, detail="Could not download image") from exc

    return _remove_to_png_response(image_bytes)


@app.post("/remove-bg/raw")
async def remove_bg_raw(request: Request):
    image_bytes = await request.body()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="Request body is empty")
    return await run_in_threadpool(_remove_to_png_response, image_bytes)
