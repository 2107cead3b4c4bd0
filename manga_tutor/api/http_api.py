"""
HTTP API adapter for manga generation and the manga library.

Architectural role:
- Expose JSON and SSE endpoints for the generation flow and library CRUD.
- Enforce adapter-level input validation before any orchestration call.
- Delegate generation work to `manga_tutor.core` and persistence to
  `manga_tutor.library.store`.

Endpoint responsibilities:
- `POST /api/initiate-manga-generation`: start a run (polling variant).
- `GET /api/check-manga-status/{run_id}`: one status resolution.
- `POST /api/streaming-manga-generation`: SSE progress relay.
- `POST /api/generate`: dispatch on the configured generation mode.
- `GET|PATCH|DELETE /api/manga-library[/{id}]`: library browsing and editing.
- `GET /api/proxy-image?url=`: allow-listed remote image passthrough.
- `GET /api/health`: configuration overview.

Input validation behavior:
- Missing/blank `user_question` or `user_level` -> HTTP 400.
- Non-JSON body -> HTTP 400.
- Library edit with no valid field -> HTTP 400, store untouched.

Error handling strategy:
- `MangaTutorError` subclasses are mapped to JSON
  `{"success": false, "error": ...}` responses by one exception handler.
- Degraded generation is not an error: it returns 200 with `degraded: true`.
- Streaming failures after the response started are reported in-band as an
  `error` event.

Side effects:
- Emits debug logs of request payloads only when `DEBUG == "true"`.
- Loads environment variables at import time via `load_dotenv()`.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from manga_tutor.api.services import Services, build_services
from manga_tutor.core.errors import (
    ForbiddenError,
    MangaTutorError,
    NotFoundError,
    RemoteServiceError,
    ValidationError,
)
from manga_tutor.core.types import GenerationRequest, RunHandle
from manga_tutor.library.store import clean_update_fields
from manga_tutor.storage.proxy import PROXY_CACHE_CONTROL, fetch_proxied_image

logger = logging.getLogger(__name__)

app = FastAPI(title="manga_tutor")
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

# Sensitive request/response debug logging is opt-in.
DEBUG = os.getenv("DEBUG") == "true"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# ============================================================
# Service wiring
# ============================================================

_SERVICES: Services | None = None


def set_services(services: Services | None) -> None:
    """Override or clear the shared service container (tests, embedding)."""
    global _SERVICES
    _SERVICES = services


def get_services() -> Services:
    """Return the shared service container, building it on first use."""
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services()
    return _SERVICES


# ============================================================
# Error mapping
# ============================================================

def _status_for(err: MangaTutorError) -> int:
    if isinstance(err, ValidationError):
        return 400
    if isinstance(err, ForbiddenError):
        return 403
    if isinstance(err, NotFoundError):
        return 404
    if isinstance(err, RemoteServiceError):
        status = err.status_code
        return status if status and 400 <= status < 600 else 502
    return 500


@app.exception_handler(MangaTutorError)
async def handle_app_error(request: Request, err: MangaTutorError):
    status_code = _status_for(err)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, err)
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(err)})


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError as err:
        raise ValidationError("request body must be valid JSON") from err


async def _read_generation_request(request: Request) -> GenerationRequest:
    payload = await _read_json(request)
    if DEBUG:
        logger.debug("Incoming generation payload: %r", payload)
    return GenerationRequest.from_payload(payload)


def _event_stream(services: Services, generation_request: GenerationRequest) -> StreamingResponse:
    events = services.streaming_resolver.stream(generation_request)

    def sse_frames():
        """Yield SSE frames; closing the relay closes the remote stream."""
        try:
            for event in events:
                yield event.to_sse()
        finally:
            events.close()

    return StreamingResponse(sse_frames(), media_type="text/event-stream", headers=SSE_HEADERS)


# ============================================================
# Generation
# ============================================================

@app.post("/api/initiate-manga-generation")
async def initiate_manga_generation(request: Request):
    """Start a run and return its id, or a degraded placeholder id."""
    generation_request = await _read_generation_request(request)
    services = get_services()

    result = await asyncio.to_thread(services.initiator.initiate, generation_request)

    if result.degraded:
        logger.warning("Initiate returned degraded run %s", result.handle.run_id)
    return result.to_dict()


@app.get("/api/check-manga-status/{run_id}")
async def check_manga_status(run_id: str):
    """Resolve the current status of one run (single query, no waiting)."""
    services = get_services()
    result = await services.resolver.resolve(RunHandle(run_id=run_id))

    if DEBUG:
        logger.debug("Status for %s: %r", run_id, result)
    return result.to_dict()


@app.post("/api/streaming-manga-generation")
async def streaming_manga_generation(request: Request):
    """Relay generation progress as server-sent events."""
    generation_request = await _read_generation_request(request)
    return _event_stream(get_services(), generation_request)


@app.post("/api/generate")
async def generate(request: Request):
    """Start a generation with the configured strategy.

    Polling mode answers like `/api/initiate-manga-generation` plus
    `mode: "polling"`; streaming mode answers with the SSE relay.
    """
    generation_request = await _read_generation_request(request)
    services = get_services()

    if services.strategy.name == "streaming":
        return _event_stream(services, generation_request)

    result = await asyncio.to_thread(services.strategy.start, generation_request)
    body = result.to_dict()
    body["mode"] = services.strategy.name
    return body


# ============================================================
# Library
# ============================================================

@app.get("/api/manga-library")
async def list_manga_library():
    entries = await asyncio.to_thread(get_services().library.list_entries)
    return {
        "success": True,
        "mangas": [entry.to_dict() for entry in entries],
        "count": len(entries),
    }


@app.get("/api/manga-library/{entry_id}")
async def get_manga(entry_id: str):
    entry = await asyncio.to_thread(get_services().library.get, entry_id)
    if entry is None:
        raise NotFoundError("The requested manga was not found")
    return {"success": True, "manga": entry.to_dict()}


@app.patch("/api/manga-library/{entry_id}")
async def update_manga(entry_id: str, request: Request):
    fields = clean_update_fields(await _read_json(request))
    entry = await asyncio.to_thread(get_services().library.update, entry_id, fields)
    return {"success": True, "manga": entry.to_dict()}


@app.delete("/api/manga-library/{entry_id}")
async def delete_manga(entry_id: str):
    await asyncio.to_thread(get_services().library.delete, entry_id)
    return {"success": True}


# ============================================================
# Image proxy & health
# ============================================================

@app.get("/api/proxy-image")
async def proxy_image(url: str | None = None):
    body, content_type = await asyncio.to_thread(
        fetch_proxied_image, url, get_services().proxy_config
    )
    return Response(
        content=body,
        media_type=content_type,
        headers={"Cache-Control": PROXY_CACHE_CONTROL},
    )


@app.get("/api/health")
async def health():
    services = get_services()
    return {
        "status": "ok",
        "mode": services.strategy.name,
        "mock": services.workflow_config.is_mock,
        "object_store": services.object_store.enabled,
    }
