"""Typed errors surfaced by the FME Flow client.

Every failure reaching a caller is an ``FmeFlowApiError``; callers switch
on ``code``.  ``message`` is a localization key derived from the code and
HTTP status (``map_error_to_key``), not server prose.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from fme_export.core.exceptions import FmeExportError

# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

INVALID_CONFIG = "INVALID_CONFIG"
CLIENT_DISPOSED = "CLIENT_DISPOSED"
ARCGIS_MODULE_ERROR = "ARCGIS_MODULE_ERROR"
REQUEST_FAILED = "REQUEST_FAILED"
REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
INVALID_RESPONSE_FORMAT = "INVALID_RESPONSE_FORMAT"
URL_TOO_LONG = "URL_TOO_LONG"
WEBHOOK_AUTH_ERROR = "WEBHOOK_AUTH_ERROR"
WEBHOOK_NON_JSON = "WEBHOOK_NON_JSON"
DATA_DOWNLOAD_ERROR = "DATA_DOWNLOAD_ERROR"
DATA_STREAMING_ERROR = "DATA_STREAMING_ERROR"
DATA_UPLOAD_ERROR = "DATA_UPLOAD_ERROR"
CONNECTION_ERROR = "CONNECTION_ERROR"
REPOSITORIES_ERROR = "REPOSITORIES_ERROR"
REPOSITORY_ITEMS_ERROR = "REPOSITORY_ITEMS_ERROR"
REPOSITORY_NOT_FOUND = "REPOSITORY_NOT_FOUND"
WORKSPACE_ITEM_ERROR = "WORKSPACE_ITEM_ERROR"
WORKSPACE_PARAMETERS_ERROR = "WORKSPACE_PARAMETERS_ERROR"
WORKSPACE_PARAMETER_ERROR = "WORKSPACE_PARAMETER_ERROR"
JOB_SUBMISSION_ERROR = "JOB_SUBMISSION_ERROR"
JOB_STATUS_ERROR = "JOB_STATUS_ERROR"
JOB_CANCEL_ERROR = "JOB_CANCEL_ERROR"
CUSTOM_REQUEST_ERROR = "CUSTOM_REQUEST_ERROR"

PASSTHROUGH_CODES: frozenset[str] = frozenset(
    (CLIENT_DISPOSED, ARCGIS_MODULE_ERROR, REQUEST_TIMEOUT, URL_TOO_LONG, WEBHOOK_AUTH_ERROR)
)
"""Codes that operation-level wrapping must not rename."""

_CONTRACT_CODES = frozenset((INVALID_RESPONSE_FORMAT, WEBHOOK_NON_JSON))

_CODE_TO_KEY: Mapping[str, str] = {
    ARCGIS_MODULE_ERROR: "startupNetworkError",
    INVALID_RESPONSE_FORMAT: "startupTokenError",
    WEBHOOK_AUTH_ERROR: "startupTokenError",
    WEBHOOK_NON_JSON: "startupTokenError",
    REPOSITORIES_ERROR: "startupServerError",
    REPOSITORY_ITEMS_ERROR: "startupServerError",
    WORKSPACE_ITEM_ERROR: "startupServerError",
    JOB_SUBMISSION_ERROR: "startupServerError",
    DATA_STREAMING_ERROR: "startupServerError",
    DATA_DOWNLOAD_ERROR: "startupServerError",
    INVALID_CONFIG: "startupConfigError",
    URL_TOO_LONG: "urlTooLong",
    REQUEST_TIMEOUT: "timeout",
    CLIENT_DISPOSED: "clientDisposed",
}

_STATUS_IN_MESSAGE = re.compile(r"status:\s*(\d{3})", re.IGNORECASE)


class FmeFlowApiError(FmeExportError):
    """Error returned to callers of ``FmeFlowApiClient``.

    Attributes:
        code: Stable error code (e.g. ``"URL_TOO_LONG"``).
        status: HTTP status, ``0`` for failures before a response.
        message: Localization key, or the code itself.
    """

    default_stage = "client"
    default_code = REQUEST_FAILED

    def __init__(
        self,
        code: str,
        message: str = "",
        status: int | None = None,
        *,
        retryable: bool | None = None,
        correlation_id: str = "",
    ) -> None:
        if retryable is None:
            retryable = is_retryable_status(status) and code not in _CONTRACT_CODES
        super().__init__(
            message or code,
            code=code,
            status=status,
            retryable=retryable,
            correlation_id=correlation_id,
        )

    @property
    def category(self) -> str:
        if self.code in _CONTRACT_CODES:
            return "contract"
        if self.code == INVALID_CONFIG:
            return "validation"
        return "transient" if self.retryable else "permanent"

    def __repr__(self) -> str:
        return f"FmeFlowApiError(code={self.code!r}, status={self.status!r}, message={self.message!r})"


def make_flow_error(code: str, status: int | None = None, *, cause: object = None) -> FmeFlowApiError:
    """Build an error whose message is the localization key for *code*/*status*."""
    key = map_error_to_key({"code": code} if cause is None else cause, status, code=code)
    return FmeFlowApiError(code, key, status)


# ---------------------------------------------------------------------------
# Status helpers
# ---------------------------------------------------------------------------


def is_retryable_status(status: int | None) -> bool:
    """Network errors (no status), 5xx, 408 and 429 are retryable."""
    if status is None or status < 100:
        return True
    return status >= 500 or status in (408, 429)


def _is_http_status(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 100 <= value <= 599


def extract_http_status(error: object) -> int | None:
    """Find an HTTP status on an exception or error-shaped mapping."""
    if error is None:
        return None

    def lookup(source: object, key: str) -> object:
        if isinstance(source, Mapping):
            return source.get(key)
        return getattr(source, key, None)

    for attr in ("status", "status_code", "http_status", "httpStatus"):
        value = lookup(error, attr)
        if _is_http_status(value):
            return value  # type: ignore[return-value]

    response = lookup(error, "response")
    if response is not None:
        value = lookup(response, "status_code")
        if _is_http_status(value):
            return value  # type: ignore[return-value]

    details = lookup(error, "details")
    if details is not None:
        for attr in ("httpStatus", "status"):
            value = lookup(details, attr)
            if _is_http_status(value):
                return value  # type: ignore[return-value]

    message = lookup(error, "message") if not isinstance(error, BaseException) else str(error)
    if isinstance(message, str):
        match = _STATUS_IN_MESSAGE.search(message)
        if match and _is_http_status(int(match.group(1))):
            return int(match.group(1))
    return None


def _status_to_key(status: int | None) -> str | None:
    if status is None:
        return None
    if status == 0:
        return "startupNetworkError"
    if status in (401, 403):
        return "startupTokenError"
    if status == 404:
        return "connectionFailed"
    if status == 408:
        return "timeout"
    if status == 429:
        return "rateLimited"
    if status == 431:
        return "headersTooLarge"
    if status >= 500:
        return "startupServerError"
    return None


def map_error_to_key(error: object, status: int | None = None, *, code: str = "") -> str:
    """Return the localization key for an error.

    Resolution order: ``REQUEST_FAILED`` by status, the code table, the
    status table, then message heuristics.
    """
    if status is None:
        status = extract_http_status(error)

    if not code:
        raw = error.get("code") if isinstance(error, Mapping) else getattr(error, "code", None)
        code = raw if isinstance(raw, str) else ""

    if code == REQUEST_FAILED:
        return _status_to_key(status) or "startupServerError"
    if code in _CODE_TO_KEY:
        return _CODE_TO_KEY[code]

    by_status = _status_to_key(status)
    if by_status:
        return by_status

    message = error.get("message") if isinstance(error, Mapping) else str(error) if error else ""
    text = str(message or "").lower()
    if "failed to fetch" in text or "connect" in text:
        return "startupNetworkError"
    if "timeout" in text or "timed out" in text:
        return "timeout"
    if "cors" in text:
        return "corsError"
    if "url" in text and "too" in text:
        return "urlTooLong"
    return "unknownErrorOccurred"
