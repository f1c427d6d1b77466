"""
Relay API Routes.

HTTP adapter over RelayService. Handlers stay thin: they translate
request bodies to service calls and RelayError to JSON error bodies.

Endpoints:
    POST   /v1/tts/speak                    - Submit a speech request
    POST   /v1/tts/chat                     - Inbound chat message
    POST   /v1/tts/detect                   - Language detection preview
    GET    /v1/tts/voices                   - Voice catalogs (all engines)
    GET    /v1/tts/voices/{engine_id}       - Voice catalog for one engine
    GET    /v1/tts/queue                    - Queue status
    POST   /v1/tts/queue/clear              - Drop pending items
    POST   /v1/tts/queue/skip               - Abort the in-flight item
    POST   /v1/tts/playback/{item_id}/done  - Sink completion signal
    GET    /v1/tts/events                   - Server-Sent Events stream
    GET    /v1/tts/users                    - List permission rows
    GET    /v1/tts/users/{user_id}          - One permission row
    DELETE /v1/tts/users/{user_id}          - Delete a permission row
    POST   /v1/tts/users/{user_id}/allow|deny|blacklist|unblacklist
    PUT    /v1/tts/users/{user_id}/voice    - Assign voice (and engine)
    DELETE /v1/tts/users/{user_id}/voice    - Remove assignment
    PUT    /v1/tts/users/{user_id}/volume   - Per-user volume gain
    PUT    /v1/tts/users/{user_id}/language - Per-user language preference
    GET    /v1/tts/permissions/stats        - Permission counters
    GET    /v1/tts/config                   - Flat configuration
    PUT    /v1/tts/config                   - Validate, persist, apply updates
    GET    /health                          - Health check
    GET    /metrics                         - Prometheus metrics

Error Handling:
    All errors are returned as JSON with the standardized format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>",
        "details": {...}
    }

    HTTP status codes are mapped from RelayError codes:
        - INVALID_INPUT, EMPTY_TEXT, CONFIG_INVALID -> 400
        - PERMISSION_DENIED -> 403
        - NOT_FOUND -> 404
        - PROFANITY_BLOCKED -> 422
        - RATE_LIMITED -> 429 (with Retry-After)
        - QUEUE_FULL, TTS_DISABLED -> 503

Handlers that touch the queue or the event bus are coroutines so they
run on the loop that owns the queue worker.
"""
from __future__ import annotations

import json
import math
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from tts_relay.api.dependencies import get_relay_service
from tts_relay.api.schemas import (
    AssignVoiceBody,
    ChatEventBody,
    ConfigUpdateBody,
    DetectBody,
    LanguagePreferenceBody,
    SpeakBody,
    UserBody,
    VolumeGainBody,
)
from tts_relay.core.errors import ErrorCode, RateLimitExceededError, RelayError
from tts_relay.core.logging import error, get_logger, set_request_id
from tts_relay.core.metrics import metrics
from tts_relay.services.relay_service import RelayService, SpeakRequest

router = APIRouter()

_LOG = get_logger("tts-relay.api")

STATUS_MAP = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.EMPTY_TEXT: 400,
    ErrorCode.CONFIG_INVALID: 400,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PROFANITY_BLOCKED: 422,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.QUEUE_FULL: 503,
    ErrorCode.TTS_DISABLED: 503,
    ErrorCode.ENGINE_UNAVAILABLE: 503,
    ErrorCode.ALL_ENGINES_FAILED: 502,
}

SSE_KEEPALIVE_S = 15.0


def _error_response(err: RelayError) -> JSONResponse:
    """Standardized JSON error body with the mapped HTTP status."""
    headers = {}
    if isinstance(err, RateLimitExceededError):
        headers["Retry-After"] = str(max(1, math.ceil(err.retry_after_s)))
    return JSONResponse(status_code=STATUS_MAP.get(err.code, 500), content=err.to_dict(), headers=headers)


def _internal_error(rid: str, exc: Exception) -> JSONResponse:
    # Log internally, don't expose details
    error(_LOG, "internal_error", error=str(exc), type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": ErrorCode.INTERNAL_ERROR,
            "message": "Internal server error",
            "request_id": rid,
        },
    )


def _new_request_id() -> str:
    rid = uuid.uuid4().hex[:12]
    set_request_id(rid)
    return rid


# ─────────────────────────────────────────────────────────────────────────────
# Speech
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/v1/tts/speak")
async def speak(body: SpeakBody, service: RelayService = Depends(get_relay_service)):
    """
    Submit a speech request.

    Returns 202 with item id, queue position and wait estimate.

    Example:
        curl -X POST http://localhost:8000/v1/tts/speak \\
            -H "Content-Type: application/json" \\
            -d '{"text": "Hello chat!", "user_id": "42", "username": "viewer"}'
    """
    rid = _new_request_id()
    try:
        result = service.submit(SpeakRequest(
            text=body.text,
            user_id=body.user_id,
            username=body.username,
            voice_id=body.voice_id,
            engine_id=body.engine_id,
            source=body.source,
            team_level=body.team_level,
            is_subscriber=body.is_subscriber,
            priority=body.priority,
        ))
    except RelayError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error(rid, e)
    return JSONResponse(status_code=202, content=result.to_dict(), headers={"X-Request-Id": rid})


@router.post("/v1/tts/chat")
async def chat_event(body: ChatEventBody, service: RelayService = Depends(get_relay_service)):
    """Chat bridge entry point; ignored while enabled_for_chat is off."""
    _new_request_id()
    result = service.handle_chat_event(body.model_dump())
    if result is None:
        return {"ok": True, "ignored": True}
    if not result.get("ok", False):
        return JSONResponse(status_code=STATUS_MAP.get(result["error"], 500), content=result)
    return JSONResponse(status_code=202, content=result)


@router.post("/v1/tts/detect")
def detect(
    body: DetectBody,
    service: RelayService = Depends(get_relay_service),
):
    try:
        return service.detect_language(body.text, body.engine_id)
    except RelayError as e:
        return _error_response(e)


@router.get("/v1/tts/voices")
def voices(service: RelayService = Depends(get_relay_service)):
    return service.voices()


@router.get("/v1/tts/voices/{engine_id}")
def engine_voices(engine_id: str, service: RelayService = Depends(get_relay_service)):
    try:
        return service.voices(engine_id)
    except RelayError as e:
        return _error_response(e)


# ─────────────────────────────────────────────────────────────────────────────
# Queue & Playback
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/v1/tts/queue")
async def queue_status(service: RelayService = Depends(get_relay_service)):
    return service.queue_status()


@router.post("/v1/tts/queue/clear")
async def queue_clear(service: RelayService = Depends(get_relay_service)):
    return {"ok": True, "cleared": service.clear_queue()}


@router.post("/v1/tts/queue/skip")
async def queue_skip(service: RelayService = Depends(get_relay_service)):
    item_id = service.skip_current()
    return {"ok": True, "skipped": item_id is not None, "id": item_id}


@router.post("/v1/tts/playback/{item_id}/done")
async def playback_done(item_id: str, service: RelayService = Depends(get_relay_service)):
    """Audio sink reports that playback of item_id finished."""
    if not service.notify_playback_finished(item_id):
        return JSONResponse(
            status_code=404,
            content={"ok": False, "error": ErrorCode.NOT_FOUND, "message": f"Item {item_id} is not playing"},
        )
    return {"ok": True, "id": item_id}


@router.get("/v1/tts/events")
async def events(
    request: Request,
    replay: bool = Query(default=False, description="Send recent history first"),
    limit: Optional[int] = Query(default=None, ge=1, description="Close after this many events"),
    service: RelayService = Depends(get_relay_service),
):
    """
    Server-Sent Events stream of relay events.

    Event names are the relay event types (enqueued, playback-ready,
    playback-started, playback-ended, playback-error, queue-cleared,
    queue-skipped); data is the JSON payload. A comment line is sent
    every 15 s of silence as keepalive.

    Example JavaScript Client:
        const es = new EventSource('/v1/tts/events');
        es.addEventListener('playback-ready', (event) => {
            const data = JSON.parse(event.data);
            play(atob(data.audio_b64), data.volume);
        });
    """
    def sse(event: str, payload: dict) -> str:
        """Format a Server-Sent Event message."""
        return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"

    sub = service.events.subscribe()

    async def gen():
        sent = 0
        try:
            if replay:
                for event in service.events.recent():
                    yield sse(event.type, event.to_dict())
                    sent += 1
                    if limit is not None and sent >= limit:
                        return
            while limit is None or sent < limit:
                if await request.is_disconnected():
                    return
                event = await sub.get(timeout=SSE_KEEPALIVE_S)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield sse(event.type, event.to_dict())
                sent += 1
        finally:
            sub.close()

    return StreamingResponse(gen(), media_type="text/event-stream")


# ─────────────────────────────────────────────────────────────────────────────
# Users & Permissions
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/v1/tts/users")
def list_users(
    filter: Optional[str] = Query(default=None, description="whitelisted | blacklisted | voice_assigned"),
    service: RelayService = Depends(get_relay_service),
):
    try:
        users = service.list_users(filter)
    except RelayError as e:
        return _error_response(e)
    return {"ok": True, "count": len(users), "users": [u.to_dict() for u in users]}


@router.get("/v1/tts/users/{user_id}")
def get_user(user_id: str, service: RelayService = Depends(get_relay_service)):
    try:
        return service.get_user(user_id).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.delete("/v1/tts/users/{user_id}")
def delete_user(user_id: str, service: RelayService = Depends(get_relay_service)):
    try:
        return {"ok": True, "deleted": service.delete_user(user_id)}
    except RelayError as e:
        return _error_response(e)


@router.post("/v1/tts/users/{user_id}/allow")
def allow_user(user_id: str, body: Optional[UserBody] = None,
               service: RelayService = Depends(get_relay_service)):
    try:
        return service.allow_user(user_id, body.username if body else None).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.post("/v1/tts/users/{user_id}/deny")
def deny_user(user_id: str, body: Optional[UserBody] = None,
              service: RelayService = Depends(get_relay_service)):
    try:
        return service.deny_user(user_id, body.username if body else None).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.post("/v1/tts/users/{user_id}/blacklist")
def blacklist_user(user_id: str, body: Optional[UserBody] = None,
                   service: RelayService = Depends(get_relay_service)):
    try:
        return service.blacklist_user(user_id, body.username if body else None).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.post("/v1/tts/users/{user_id}/unblacklist")
def unblacklist_user(user_id: str, service: RelayService = Depends(get_relay_service)):
    try:
        return {"ok": True, "updated": service.unblacklist_user(user_id)}
    except RelayError as e:
        return _error_response(e)


@router.put("/v1/tts/users/{user_id}/voice")
def assign_voice(user_id: str, body: AssignVoiceBody, service: RelayService = Depends(get_relay_service)):
    try:
        return service.assign_voice(user_id, body.voice_id, body.engine_id, body.username).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.delete("/v1/tts/users/{user_id}/voice")
def remove_voice(user_id: str, service: RelayService = Depends(get_relay_service)):
    try:
        return {"ok": True, "updated": service.remove_voice(user_id)}
    except RelayError as e:
        return _error_response(e)


@router.put("/v1/tts/users/{user_id}/volume")
def set_volume(user_id: str, body: VolumeGainBody, service: RelayService = Depends(get_relay_service)):
    try:
        return service.set_volume_gain(user_id, body.gain, body.username).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.put("/v1/tts/users/{user_id}/language")
def set_language(user_id: str, body: LanguagePreferenceBody,
                 service: RelayService = Depends(get_relay_service)):
    try:
        return service.set_language_preference(user_id, body.language, body.username).to_dict()
    except RelayError as e:
        return _error_response(e)


@router.get("/v1/tts/permissions/stats")
def permission_stats(service: RelayService = Depends(get_relay_service)):
    return service.permission_stats()


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/v1/tts/config")
def get_config(service: RelayService = Depends(get_relay_service)):
    """Flat configuration; API keys are reported as configured/not configured."""
    return service.get_config()


@router.put("/v1/tts/config")
async def put_config(body: ConfigUpdateBody, service: RelayService = Depends(get_relay_service)):
    try:
        return service.set_config(body.updates)
    except RelayError as e:
        return _error_response(e)


# ─────────────────────────────────────────────────────────────────────────────
# Health & Metrics
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/health")
def health(service: RelayService = Depends(get_relay_service)):
    """
    Health check for probes and dashboards.

    status is "ok" while at least one engine is available (tiktok needs
    no credentials), "degraded" otherwise.
    """
    return service.health()


@router.get("/metrics")
def prometheus_metrics():
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
