"""
Helper Functions for Provider Adapters.

    - classify_status() / classify_exception(): map HTTP outcomes to ErrorKind
    - post_for_audio(): POST through the adapter's shared client, raising
      EngineFailure on any transport or status error
    - decode_base64_audio(): decode JSON-embedded audio, empty -> empty_audio

Status classification:
    401, 403       -> auth
    402, 429       -> quota
    404            -> not_found
    400, 413, 422  -> invalid_request
    5xx            -> server
    timeouts       -> timeout
    other transport errors -> network
"""
from __future__ import annotations

import asyncio
import base64
import binascii
from typing import TYPE_CHECKING, Any, Optional

import httpx

from tts_relay.core.errors import EngineFailure, EngineUnavailableError
from tts_relay.core.logging import debug
from tts_relay.tts.engine import ErrorKind

if TYPE_CHECKING:
    from tts_relay.tts.engine import EngineAdapter


def classify_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.AUTH
    if status in (402, 429):
        return ErrorKind.QUOTA
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (400, 413, 422):
        return ErrorKind.INVALID_REQUEST
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    # TimeoutException subclasses TransportError, so it is checked first
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK
    if isinstance(exc, EngineFailure):
        return exc.kind
    return ErrorKind.UNKNOWN


def _body_preview(response: httpx.Response, limit: int = 160) -> str:
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""
    return text[:limit].replace("\n", " ")


def failure_from_exception(engine_id: str, exc: BaseException) -> EngineFailure:
    """Wrap any exception as a classified EngineFailure."""
    if isinstance(exc, EngineFailure):
        return exc
    kind = classify_exception(exc)
    status: Optional[int] = None
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = f"HTTP {status}: {_body_preview(exc.response)}".rstrip(": ")
    else:
        message = str(exc) or exc.__class__.__name__
    return EngineFailure(engine_id, kind, message, status_code=status)


async def post_for_audio(adapter: "EngineAdapter", url: str, **kwargs: Any) -> httpx.Response:
    """
    POST through the adapter's client and check the status.

    Raises:
        EngineUnavailableError: Credentials were cleared since the
            availability check.
        EngineFailure: On transport errors, timeouts or non-2xx responses.
    """
    if not adapter.available():
        raise EngineUnavailableError(adapter.id)
    try:
        response = await adapter.client.post(url, timeout=adapter.config.performance.timeout_s, **kwargs)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise failure_from_exception(adapter.id, exc) from exc

    debug(adapter.logger, "provider_response", engine=adapter.id, status=response.status_code,
          bytes=len(response.content))
    return response


def decode_base64_audio(engine_id: str, value: Any) -> bytes:
    """
    Decode base64 audio from a JSON payload.

    Raises:
        EngineFailure: empty_audio when missing/empty, unknown when not base64.
    """
    if not value or not isinstance(value, str):
        raise EngineFailure(engine_id, ErrorKind.EMPTY_AUDIO, "provider returned no audio")
    try:
        audio = base64.b64decode(value, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise EngineFailure(engine_id, ErrorKind.UNKNOWN, f"invalid base64 audio: {exc}") from exc
    if not audio:
        raise EngineFailure(engine_id, ErrorKind.EMPTY_AUDIO, "provider returned empty audio")
    return audio


def require_audio(engine_id: str, audio: bytes) -> bytes:
    """Reject empty binary bodies."""
    if not audio:
        raise EngineFailure(engine_id, ErrorKind.EMPTY_AUDIO, "provider returned empty audio")
    return audio
