"""Request instrumentation.

Wraps a transport call with timing and structured logging.  Every log
line carries a correlation id and a sanitized URL: userinfo is dropped
and query values whose key looks secret (token, auth, secret, key,
password) are replaced with ``[TOKEN]``.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fme_export.api.cancellation import RequestCancelled
from fme_export.api.transport import TransportResponse
from fme_export.core.constants import (
    REDACTED_VALUE,
    SENSITIVE_QUERY_KEY_PATTERN,
    SLOW_REQUEST_THRESHOLD_MS,
)

logger = logging.getLogger("fme_export.api.instrument")


@dataclass(frozen=True, slots=True)
class NetworkLogSettings:
    """Instrumentation settings.

    Attributes:
        enabled: Log completed requests at INFO (failures are always logged).
        slow_request_ms: Duration above which a request is logged as slow.
        body_preview_limit: Maximum characters of a request body in DEBUG logs.
    """

    enabled: bool = True
    slow_request_ms: int = SLOW_REQUEST_THRESHOLD_MS
    body_preview_limit: int = 512

    @classmethod
    def from_env(cls) -> NetworkLogSettings:
        """Load from ``FME_NETWORK_LOG``, ``FME_SLOW_REQUEST_MS`` and ``FME_BODY_PREVIEW_LIMIT``."""
        return cls(
            enabled=os.getenv("FME_NETWORK_LOG", "true").strip().lower() not in ("0", "false", "no"),
            slow_request_ms=int(os.getenv("FME_SLOW_REQUEST_MS", str(SLOW_REQUEST_THRESHOLD_MS))),
            body_preview_limit=int(os.getenv("FME_BODY_PREVIEW_LIMIT", "512")),
        )


def is_sensitive_key(key: str) -> bool:
    return bool(SENSITIVE_QUERY_KEY_PATTERN.search(key))


def sanitize_url(url: str) -> str:
    """Return *url* without userinfo and with secret query values redacted."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "[invalid url]"
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    query = urlencode(
        [(k, REDACTED_VALUE if is_sensitive_key(k) else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)],
        safe="[]",
    )
    return urlunsplit((parts.scheme, netloc, parts.path, query, ""))


def redact_params(params: Mapping[str, Any], whitelist: Iterable[str] | None = None) -> dict[str, Any]:
    """Redact secret values; with *whitelist*, keep only those keys."""
    allowed = set(whitelist) if whitelist is not None else None
    out: dict[str, Any] = {}
    for key, value in params.items():
        if allowed is not None and key not in allowed:
            continue
        out[key] = REDACTED_VALUE if is_sensitive_key(key) else value
    return out


def describe_body(body: Any, limit: int) -> str:
    """Short, redacted description of a request body for DEBUG logs."""
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        return f"<{len(body)} bytes>"
    if hasattr(body, "read"):
        return f"<file {getattr(body, 'name', '')}>"
    if isinstance(body, Mapping):
        text = json.dumps(redact_params(body), default=str)
    else:
        text = str(body)
    return text if len(text) <= limit else f"{text[:limit]}..."


async def instrumented_request(
    execute: Callable[[], Awaitable[TransportResponse]],
    *,
    method: str,
    url: str,
    correlation_id: str,
    transport: str = "fme",
    body: Any = None,
    settings: NetworkLogSettings | None = None,
) -> TransportResponse:
    """Run *execute* and log its outcome.

    Exceptions propagate unchanged after being logged.
    """
    settings = settings or NetworkLogSettings()
    safe_url = sanitize_url(url)
    if body is not None and logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "FME request body | correlation_id=%s | body=%s",
            correlation_id,
            describe_body(body, settings.body_preview_limit),
        )

    started = time.monotonic()
    try:
        response = await execute()
    except RequestCancelled as exc:
        logger.info(
            "FME request aborted | transport=%s | method=%s | url=%s | timed_out=%s | duration_ms=%d | correlation_id=%s",
            transport,
            method,
            safe_url,
            exc.timed_out,
            _elapsed_ms(started),
            correlation_id,
        )
        raise
    except Exception as exc:
        logger.error(
            "FME request failed | transport=%s | method=%s | url=%s | status=%s | error=%s | duration_ms=%d | correlation_id=%s",
            transport,
            method,
            safe_url,
            getattr(exc, "status", None),
            type(exc).__name__,
            _elapsed_ms(started),
            correlation_id,
        )
        raise

    duration = _elapsed_ms(started)
    if duration >= settings.slow_request_ms:
        logger.warning(
            "FME request slow | transport=%s | method=%s | url=%s | status=%d | duration_ms=%d | correlation_id=%s",
            transport,
            method,
            safe_url,
            response.status,
            duration,
            correlation_id,
        )
    elif settings.enabled:
        logger.info(
            "FME request | transport=%s | method=%s | url=%s | status=%d | duration_ms=%d | correlation_id=%s",
            transport,
            method,
            safe_url,
            response.status,
            duration,
            correlation_id,
        )
    return response


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
