"""Map provider failures onto the canonical error kinds."""

from __future__ import annotations

import json
import re
import time
from collections.abc import Mapping
from email.utils import parsedate_to_datetime
from typing import Any

from llm_bridge.errors import (
    ApiEndpointNotFound,
    ApiInternalServerError,
    AuthenticationError,
    BadRequestFormat,
    CompletionError,
    HttpResponseError,
    Other,
    PermissionError,
    PromptTooLarge,
    RateLimitExceeded,
    ServerOverloaded,
    UpstreamProviderError,
)

_PROMPT_TOO_LONG = re.compile(r"prompt is too long", re.IGNORECASE)
_TOKEN_COUNT_PATTERNS = (
    re.compile(r"prompt is too long:\s*(\d+)\s*tokens", re.IGNORECASE),
    re.compile(r"resulted in\s*(\d+)\s*tokens", re.IGNORECASE),
    re.compile(r"you requested\s*(\d+)\s*tokens", re.IGNORECASE),
)


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Return the retry delay in seconds advertised by the response headers.

    ``retry-after-ms`` wins over ``retry-after``; the latter may be a number of
    seconds or an HTTP date.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): str(v).strip() for k, v in headers.items()}

    millis = lowered.get("retry-after-ms")
    if millis:
        try:
            return max(0.0, float(millis) / 1000.0)
        except ValueError:
            pass

    value = lowered.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, retry_at.timestamp() - time.time())


def parse_prompt_too_long(message: str) -> int | None:
    for pattern in _TOKEN_COUNT_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1))
    return None


def from_http_status(
    provider: str,
    status: int,
    message: str,
    retry_after: float | None = None,
) -> CompletionError:
    """Classify purely by HTTP status code."""
    if status == 400:
        return BadRequestFormat(provider, message)
    if status == 401:
        return AuthenticationError(provider, message)
    if status == 403:
        return PermissionError(provider, message)
    if status == 404:
        return ApiEndpointNotFound(provider)
    if status == 413:
        return PromptTooLarge(parse_prompt_too_long(message))
    if status == 429:
        return RateLimitExceeded(provider, retry_after)
    if status == 500:
        return ApiInternalServerError(provider, message)
    if status in (503, 529):
        return ServerOverloaded(provider, retry_after)
    return HttpResponseError(provider, status, message)


def from_api_error(
    provider: str,
    error: Mapping[str, Any],
    retry_after: float | None = None,
) -> CompletionError | None:
    """Classify a provider error object (``{"type": ..., "message": ...}``).

    Understands both the Anthropic ``type`` vocabulary and the OpenAI
    ``type``/``code`` pair. Returns ``None`` when the kind is not recognised.
    """
    message = str(error.get("message") or "")
    kinds = {str(error[key]) for key in ("type", "code") if error.get(key)}

    if "context_length_exceeded" in kinds or "request_too_large" in kinds or _PROMPT_TOO_LONG.search(message):
        return PromptTooLarge(parse_prompt_too_long(message))
    if kinds & {"rate_limit_error", "rate_limit_exceeded"}:
        return RateLimitExceeded(provider, retry_after)
    if "overloaded_error" in kinds:
        return ServerOverloaded(provider, retry_after)
    if kinds & {"authentication_error", "invalid_api_key"}:
        return AuthenticationError(provider, message)
    if "permission_error" in kinds:
        return PermissionError(provider, message)
    if kinds & {"not_found_error", "model_not_found"}:
        return ApiEndpointNotFound(provider)
    if "invalid_request_error" in kinds:
        return BadRequestFormat(provider, message)
    if kinds & {"api_error", "server_error"}:
        return ApiInternalServerError(provider, message)
    return None


def _decode_body(body: bytes | str) -> tuple[str, Any]:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        return text, json.loads(text)
    except ValueError:
        return text, None


def classify_http_response(
    provider: str,
    status: int,
    body: bytes | str,
    headers: Mapping[str, str] | None = None,
) -> CompletionError:
    """Turn a non-success HTTP response into a canonical error."""
    retry_after = parse_retry_after(headers)
    if status == 429:
        return RateLimitExceeded(provider, retry_after)
    if status in (503, 529):
        return ServerOverloaded(provider, retry_after)

    text, payload = _decode_body(body)
    message = text
    if isinstance(payload, dict):
        if payload.get("code") == "upstream_http_error":
            upstream_status = payload.get("upstream_status")
            return UpstreamProviderError(
                str(payload.get("message") or text),
                int(upstream_status) if isinstance(upstream_status, int) else status,
                retry_after,
            )
        api_error = payload.get("error")
        if isinstance(api_error, dict):
            classified = from_api_error(provider, api_error, retry_after)
            if classified is not None:
                return classified
            message = str(api_error.get("message") or text)
        elif isinstance(payload.get("message"), str):
            message = payload["message"]

    return from_http_status(provider, status, message, retry_after)


def classify_stream_error(provider: str, error: Any) -> CompletionError:
    """Classify an error reported in-band in the event stream."""
    if isinstance(error, Mapping):
        classified = from_api_error(provider, error)
        if classified is not None:
            return classified
    return Other(error)
