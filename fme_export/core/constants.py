"""Shared constants for the FME Flow export client.

Centralises endpoint roots, control-parameter key names, and limits that
are shared by the request builder, the token registry, the AOI pipeline,
and the client.  Names match the FME Flow wire format exactly.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Endpoint roots
# ---------------------------------------------------------------------------

REST_API_ROOT: str = "fmerest/v3"
"""Path of the REST API relative to the server base."""

SERVICE_DATA_DOWNLOAD: str = "fmedatadownload"
SERVICE_DATA_STREAMING: str = "fmedatastreaming"
SERVICE_DATA_UPLOAD: str = "fmedataupload"

SERVER_ROOT_SEGMENTS: tuple[str, ...] = ("fmerest", "fmeapiv4", "fmeserver")
"""Trailing path segments stripped from a configured server URL."""

FME_ENDPOINT_PATTERN: re.Pattern[str] = re.compile(
    r"/(fmerest|fmedatadownload|fmedataupload|fmejobsubmitter|fmedatastreaming)\b",
    re.IGNORECASE,
)
"""URL paths that carry FME token authentication."""

TEMP_RESOURCE_ROOT: str = "$(FME_SHAREDRESOURCE_TEMP)"
"""Shared-resource prefix used when an upload response omits its path."""

# ---------------------------------------------------------------------------
# URL length budget
# ---------------------------------------------------------------------------

MAX_URL_LENGTH: int = 4000
"""Floor applied to the transport URL-length limit during client setup."""

DEFAULT_MAX_URL_LENGTH: int = 1900
"""Limit used when the transport reports none."""

# ---------------------------------------------------------------------------
# Control parameter keys
# ---------------------------------------------------------------------------

TM_PARAM_KEYS: tuple[str, ...] = ("tm_ttc", "tm_ttl", "tm_tag", "tm_rtc", "tm_description")
TM_NUMERIC_PARAM_KEYS: tuple[str, ...] = ("tm_ttc", "tm_ttl")
TM_TAG_MAX_LENGTH: int = 128

OPT_PARAM_KEYS: tuple[str, ...] = (
    "opt_servicemode",
    "opt_responseformat",
    "opt_showresult",
    "opt_requesteremail",
)

SCHEDULE_PARAM_KEYS: tuple[str, ...] = ("start", "name", "category", "trigger", "description")
SCHEDULE_SERVICE_MODE: str = "schedule"
DEFAULT_SCHEDULE_TRIGGER: str = "runonce"

WEBHOOK_EXCLUDE_KEYS: frozenset[str] = frozenset(TM_PARAM_KEYS)
"""Keys never forwarded verbatim to the webhook; TM values are re-added normalized."""

PUBLISHED_PARAM_EXCLUDE_KEYS: frozenset[str] = frozenset(TM_PARAM_KEYS + OPT_PARAM_KEYS)
"""Keys never sent as published parameters of a REST job."""

WEBHOOK_LOG_WHITELIST: frozenset[str] = frozenset(
    ("opt_responseformat", "opt_showresult", "opt_servicemode")
)
"""Webhook query keys that are safe to log verbatim."""

# ---------------------------------------------------------------------------
# Geometry parameters
# ---------------------------------------------------------------------------

DEFAULT_AOI_PARAM_NAME: str = "AreaOfInterest"
EXTENT_PARAM_KEYS: tuple[str, ...] = ("MINX", "MINY", "MAXX", "MAXY")
AREA_PARAM_KEY: str = "AREA"
EXTENT_GEOJSON_PARAM_KEY: str = "ExtentGeoJson"
AOI_ERROR_MARKER: str = "__aoi_error__"

GEOMETRY_PARAM_KEYS: frozenset[str] = frozenset(
    (*EXTENT_PARAM_KEYS, AREA_PARAM_KEY, EXTENT_GEOJSON_PARAM_KEY, DEFAULT_AOI_PARAM_NAME)
)

# ---------------------------------------------------------------------------
# Spatial references
# ---------------------------------------------------------------------------

WKID_WGS84: int = 4326
WKID_WEB_MERCATOR: int = 3857
WEB_MERCATOR_WKIDS: frozenset[int] = frozenset((3857, 102100, 102113, 900913))
COORDINATE_TOLERANCE: float = 1e-9
WKT_DECIMALS: int = 12

# ---------------------------------------------------------------------------
# Upload naming
# ---------------------------------------------------------------------------

UPLOAD_NAME_MAX_LENGTH: int = 128
UPLOAD_NAMESPACE_MAX_LENGTH: int = 64

# ---------------------------------------------------------------------------
# Instrumentation
# ---------------------------------------------------------------------------

SLOW_REQUEST_THRESHOLD_MS: int = 1000
REDACTED_VALUE: str = "[TOKEN]"
SENSITIVE_QUERY_KEY_PATTERN: re.Pattern[str] = re.compile(
    r"token|auth|secret|key|password", re.IGNORECASE
)
