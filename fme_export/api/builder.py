"""Request construction for the FME Flow API.

Pure functions: endpoint URLs, webhook query parameters, Task Manager
and schedule directives, and the webhook URL-length check.  The length
check serializes parameters with ``serialize_params``, the same function
that produces the URL actually requested, so the prediction and the real
call can never disagree.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from ipaddress import ip_address
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlsplit

from fme_export.api.errors import WEBHOOK_AUTH_ERROR, FmeFlowApiError
from fme_export.core.constants import (
    DEFAULT_MAX_URL_LENGTH,
    MAX_URL_LENGTH,
    PUBLISHED_PARAM_EXCLUDE_KEYS,
    REST_API_ROOT,
    SCHEDULE_PARAM_KEYS,
    SCHEDULE_SERVICE_MODE,
    SERVER_ROOT_SEGMENTS,
    SERVICE_DATA_DOWNLOAD,
    TM_TAG_MAX_LENGTH,
    UPLOAD_NAME_MAX_LENGTH,
    UPLOAD_NAMESPACE_MAX_LENGTH,
    WEBHOOK_EXCLUDE_KEYS,
)
from fme_export.models.jobs import (
    JobRequest,
    NMDirectives,
    PublishedParameter,
    ScheduleDirective,
    TMDirectives,
)
from fme_export.utils.helpers import (
    create_correlation_id,
    is_file_like,
    stringify_value,
    to_pos_int,
    to_trimmed_string,
    truncate,
)

if TYPE_CHECKING:
    from fme_export.api.registry import RequestConfig

logger = logging.getLogger("fme_export.api.builder")

_UNSAFE_UPLOAD_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_UNSAFE_NAMESPACE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------


def build_url(base: str, *segments: str) -> str:
    """Join *segments* onto *base*, encoding each path part.

    Segments may contain ``/``; every part is percent-encoded on its own
    and empty, ``.`` and ``..`` parts are dropped.
    """
    url = base.rstrip("/")
    parts: list[str] = []
    for segment in segments:
        for part in str(segment).split("/"):
            if part in ("", ".", ".."):
                continue
            parts.append(quote(part, safe=""))
    return "/".join([url, *parts]) if parts else url


def normalize_server_base(server_url: str) -> str:
    """Strip trailing slashes and API/REST root segments from *server_url*.

    ``https://host/fmerest/v3/`` and ``https://host/fmeserver`` both
    become ``https://host``.
    """
    url = server_url.strip().rstrip("/")
    while True:
        parts = urlsplit(url)
        path = parts.path.rstrip("/")
        segments = path.split("/")
        if len(segments) >= 2 and re.fullmatch(r"v\d+", segments[-1]) and segments[-2] == "fmerest":
            segments = segments[:-1]
        if segments and segments[-1].lower() in SERVER_ROOT_SEGMENTS:
            url = url[: len(url) - len(path)] + "/".join(segments[:-1])
            url = url.rstrip("/")
            continue
        return url


def build_service_url(server_url: str, service: str, repository: str, workspace: str) -> str:
    return build_url(normalize_server_base(server_url), service, repository, workspace)


def build_webhook_url(server_url: str, repository: str, workspace: str) -> str:
    return build_service_url(server_url, SERVICE_DATA_DOWNLOAD, repository, workspace)


def build_rest_url(server_url: str, *segments: str) -> str:
    return build_url(normalize_server_base(server_url), REST_API_ROOT, *segments)


# ---------------------------------------------------------------------------
# Query parameters
# ---------------------------------------------------------------------------


def build_params(
    parameters: Mapping[str, Any] | None,
    exclude_keys: Iterable[str] = (),
    with_webhook_defaults: bool = False,
) -> dict[str, str]:
    """Convert a form parameter map to query parameters.

    ``None`` values and excluded keys are dropped; files are represented
    by name.  With *with_webhook_defaults* the response options are
    fixed to JSON with results shown, and the service mode is ``sync``
    only when explicitly requested.
    """
    source = parameters or {}
    excluded = set(exclude_keys)
    params: dict[str, str] = {}
    for key, value in source.items():
        if value is None or key in excluded:
            continue
        params[key] = stringify_value(value)

    if with_webhook_defaults:
        response_format = str(source.get("opt_responseformat") or "").strip().lower()
        params["opt_responseformat"] = "xml" if response_format == "xml" else "json"

        show_result = source.get("opt_showresult")
        explicit_false = show_result is False or str(show_result).strip().lower() == "false"
        params["opt_showresult"] = "false" if explicit_false else "true"

        mode = str(source.get("opt_servicemode") or "").strip().lower()
        params["opt_servicemode"] = "sync" if mode == "sync" else "async"

    return params


def serialize_params(params: Mapping[str, str]) -> str:
    """Encode *params* as a query string, keys sorted."""
    return "&".join(f"{quote(k, safe='')}={quote(v, safe='')}" for k, v in sorted(params.items()))


def normalize_tm_tag(value: Any) -> str | None:
    tag = to_trimmed_string(value)
    return truncate(tag, TM_TAG_MAX_LENGTH) if tag else None


def append_webhook_tm_params(params: dict[str, str], source: Mapping[str, Any]) -> dict[str, str]:
    """Add normalized ``tm_ttc``/``tm_ttl``/``tm_tag`` values from *source*."""
    for key in ("tm_ttc", "tm_ttl"):
        number = to_pos_int(source.get(key))
        if number is not None:
            params[key] = str(number)
    tag = normalize_tm_tag(source.get("tm_tag"))
    if tag:
        params["tm_tag"] = tag
    return params


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WebhookArtifacts:
    """The webhook URL and its query, built once and used as-is."""

    base_url: str
    params: dict[str, str]
    full_url: str


def validate_webhook_base(url: str) -> None:
    """Reject webhook URLs that would leak a token.

    Raises:
        FmeFlowApiError: ``WEBHOOK_AUTH_ERROR`` with status ``0``.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    reason = ""
    if not host:
        reason = "missing host"
    elif scheme != "https" and not (scheme == "http" and _is_loopback(host)):
        reason = "https required"
    elif parts.username or parts.password:
        reason = "credentials in URL"
    elif parts.query or parts.fragment:
        reason = "query or fragment in base URL"
    if reason:
        logger.warning("Webhook URL rejected | reason=%s", reason)
        raise FmeFlowApiError(WEBHOOK_AUTH_ERROR, "startupTokenError", 0)


def create_webhook_artifacts(
    server_url: str,
    repository: str,
    workspace: str,
    parameters: Mapping[str, Any] | None = None,
    token: str | None = None,
) -> WebhookArtifacts:
    """Build the data download webhook URL for a job."""
    base_url = build_webhook_url(server_url, repository, workspace)
    validate_webhook_base(base_url)

    params = build_params(parameters, WEBHOOK_EXCLUDE_KEYS, with_webhook_defaults=True)
    if token:
        params["token"] = token
    append_webhook_tm_params(params, parameters or {})
    return WebhookArtifacts(base_url=base_url, params=params, full_url=f"{base_url}?{serialize_params(params)}")


def resolve_max_url_length(request_config: RequestConfig | None = None) -> int:
    """Return the transport URL limit, or the fixed default when unknown."""
    if request_config is not None and request_config.max_url_length > 0:
        return request_config.max_url_length
    return DEFAULT_MAX_URL_LENGTH


def is_webhook_url_too_long(
    server_url: str,
    repository: str,
    workspace: str,
    parameters: Mapping[str, Any] | None = None,
    max_len: int = MAX_URL_LENGTH,
    token: str | None = None,
) -> bool:
    """Return ``True`` if the exact webhook URL would exceed *max_len*."""
    artifacts = create_webhook_artifacts(server_url, repository, workspace, parameters, token)
    return max_len > 0 and len(artifacts.full_url) > max_len


# ---------------------------------------------------------------------------
# Job body
# ---------------------------------------------------------------------------


def build_tm_directives(parameters: Mapping[str, Any]) -> TMDirectives:
    rtc_raw = parameters.get("tm_rtc")
    rtc = None
    if isinstance(rtc_raw, bool):
        rtc = rtc_raw
    elif isinstance(rtc_raw, str) and rtc_raw.strip().lower() in ("true", "false"):
        rtc = rtc_raw.strip().lower() == "true"
    return TMDirectives(
        ttc=to_pos_int(parameters.get("tm_ttc")),
        ttl=to_pos_int(parameters.get("tm_ttl")),
        tag=normalize_tm_tag(parameters.get("tm_tag")),
        description=to_trimmed_string(parameters.get("tm_description")),
        rtc=rtc,
    )


def is_schedule_mode(parameters: Mapping[str, Any]) -> bool:
    return str(parameters.get("opt_servicemode") or "").strip().lower() == SCHEDULE_SERVICE_MODE


def build_nm_directives(parameters: Mapping[str, Any]) -> NMDirectives | None:
    """Return a schedule directive, or ``None`` unless schedule mode is complete."""
    if not is_schedule_mode(parameters):
        return None
    begin = to_trimmed_string(parameters.get("start"))
    name = to_trimmed_string(parameters.get("name"))
    category = to_trimmed_string(parameters.get("category"))
    if not (begin and name and category):
        return None
    directive = ScheduleDirective(
        begin=begin,
        schedule_name=name,
        schedule_category=category,
        schedule_trigger=to_trimmed_string(parameters.get("trigger")) or "runonce",
        schedule_description=to_trimmed_string(parameters.get("description")),
    )
    return NMDirectives(directives=[directive])


def format_job_params(parameters: Mapping[str, Any] | JobRequest | None) -> JobRequest:
    """Split a form parameter map into published parameters and directives.

    Input that is already a job body (has ``publishedParameters``) is
    returned as-is.
    """
    if isinstance(parameters, JobRequest):
        return parameters
    source = parameters or {}
    if "publishedParameters" in source:
        return JobRequest.from_dict(source)

    excluded = set(PUBLISHED_PARAM_EXCLUDE_KEYS)
    if is_schedule_mode(source):
        excluded.update(SCHEDULE_PARAM_KEYS)

    published = [
        PublishedParameter(name=key, value=_published_value(value))
        for key, value in source.items()
        if key not in excluded and value is not None
    ]
    tm = build_tm_directives(source)
    return JobRequest(
        published_parameters=published,
        tm_directives=None if tm.is_empty else tm,
        nm_directives=build_nm_directives(source),
    )


def _published_value(value: Any) -> Any:
    if is_file_like(value):
        return stringify_value(value)
    return value


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


def sanitize_upload_name(name: str | None) -> str:
    """Return a file name safe for the upload path."""
    raw = (name or "").strip()
    safe = truncate(_UNSAFE_UPLOAD_CHARS.sub("_", raw), UPLOAD_NAME_MAX_LENGTH)
    return safe or create_correlation_id("upload")


def sanitize_namespace(namespace: str | None) -> str:
    """Return an upload namespace, generating one when *namespace* is empty."""
    raw = (namespace or "").strip()
    safe = truncate(_UNSAFE_NAMESPACE_CHARS.sub("-", raw), UPLOAD_NAMESPACE_MAX_LENGTH)
    return safe or create_correlation_id("upload")


def _is_loopback(host: str) -> bool:
    if host.lower() == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False
