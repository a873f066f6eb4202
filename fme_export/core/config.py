"""Client and AOI configuration.

``ClientConfig`` describes one FME Flow connection (server, token,
repository, timeout).  It can be built from environment variables or from
a loosely-keyed mapping such as a stored widget configuration, which may
use camelCase or snake_case aliases for the same field.

Fail-fast validation:
    ``from_env()``, ``from_mapping()`` and ``validate_client_config()``
    raise ``ConfigValidationError`` (code ``INVALID_CONFIG``) when a
    required field is missing or a value is out of range, so a client is
    never constructed with a configuration it cannot use.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import urlsplit

from fme_export.core.constants import DEFAULT_AOI_PARAM_NAME
from fme_export.core.exceptions import ValidationError

_SERVER_URL_ALIASES = ("serverUrl", "server_url", "fmeServerUrl", "fme_server_url")
_TOKEN_ALIASES = ("token", "fmeServerToken", "fme_server_token", "fmw_server_token")
_REPOSITORY_ALIASES = ("repository", "repo")
_TIMEOUT_ALIASES = ("timeoutMs", "timeout_ms", "requestTimeout", "request_timeout")


class ConfigValidationError(ValidationError):
    """Raised when a configuration value is missing or out of range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        reason: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "INVALID_CONFIG"

    def __init__(self, key: str, value: object, reason: str) -> None:
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration {key}={value!r}: {reason}")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Immutable connection settings for one FME Flow server.

    Attributes:
        server_url: Server base URL, without trailing slash.
        token: FME Flow API token.
        repository: Default repository for workspace operations.
        timeout_ms: Request timeout in milliseconds (``None`` = transport default).
    """

    server_url: str
    token: str
    repository: str
    timeout_ms: int | None = None

    @property
    def timeout_seconds(self) -> float | None:
        """Return the timeout in seconds, or ``None`` when unset."""
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000.0

    def with_updates(self, **changes: Any) -> ClientConfig:
        """Return a validated copy with the given fields replaced."""
        return validate_client_config(replace(self, **changes))

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load and validate configuration from environment variables.

        Reads ``FME_SERVER_URL``, ``FME_SERVER_TOKEN``, ``FME_REPOSITORY``
        and ``FME_REQUEST_TIMEOUT_MS``.

        Raises:
            ConfigValidationError: If a required value is empty or the
                timeout is not a positive integer.
        """
        return cls.from_mapping(
            {
                "server_url": os.getenv("FME_SERVER_URL", ""),
                "token": os.getenv("FME_SERVER_TOKEN", ""),
                "repository": os.getenv("FME_REPOSITORY", ""),
                "timeout_ms": os.getenv("FME_REQUEST_TIMEOUT_MS") or None,
            }
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ClientConfig:
        """Build a validated config from a mapping that may use key aliases.

        Raises:
            ConfigValidationError: If a required value is missing.
        """
        config = cls(
            server_url=_first_string(raw, _SERVER_URL_ALIASES),
            token=_first_string(raw, _TOKEN_ALIASES),
            repository=_first_string(raw, _REPOSITORY_ALIASES),
            timeout_ms=_parse_timeout(_first_present(raw, _TIMEOUT_ALIASES)),
        )
        return validate_client_config(config)


@dataclass(frozen=True, slots=True)
class AoiSettings:
    """AOI handling settings.

    Attributes:
        aoi_param_name: Published parameter that receives the AOI polygon.
        max_area_m2: Hard upper bound for the AOI area (0 = unlimited).
        large_area_m2: Area above which a warning is raised (0 = never).
        geometry_service_url: Remote geometry service used as the last
            area-measurement fallback (empty = disabled).
    """

    aoi_param_name: str = DEFAULT_AOI_PARAM_NAME
    max_area_m2: float = 0.0
    large_area_m2: float = 0.0
    geometry_service_url: str = ""

    @classmethod
    def from_env(cls) -> AoiSettings:
        """Load and validate AOI settings from environment variables.

        Raises:
            ConfigValidationError: If an area limit is negative.
            ValueError: If a numeric variable cannot be parsed.
        """
        settings = cls(
            aoi_param_name=os.getenv("AOI_PARAM_NAME", DEFAULT_AOI_PARAM_NAME).strip()
            or DEFAULT_AOI_PARAM_NAME,
            max_area_m2=float(os.getenv("AOI_MAX_AREA_M2", "0")),
            large_area_m2=float(os.getenv("AOI_LARGE_AREA_M2", "0")),
            geometry_service_url=os.getenv("FME_GEOMETRY_SERVICE_URL", "").strip(),
        )
        _validate_aoi_settings(settings)
        return settings


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_client_config(config: ClientConfig) -> ClientConfig:
    """Validate *config* and return it with a normalized server URL.

    Raises:
        ConfigValidationError: On the first invalid field.
    """
    server_url = config.server_url.strip().rstrip("/")
    if not server_url:
        raise ConfigValidationError("server_url", config.server_url, "must not be empty")

    parts = urlsplit(server_url)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ConfigValidationError("server_url", config.server_url, "must be an http(s) URL")

    token = config.token.strip()
    if not token:
        raise ConfigValidationError("token", "", "must not be empty")

    repository = config.repository.strip()
    if not repository:
        raise ConfigValidationError("repository", config.repository, "must not be empty")

    if config.timeout_ms is not None and config.timeout_ms <= 0:
        raise ConfigValidationError("timeout_ms", config.timeout_ms, "must be > 0 (milliseconds)")

    return replace(config, server_url=server_url, token=token, repository=repository)


def _validate_aoi_settings(settings: AoiSettings) -> None:
    """Validate AOI limits.  Raises ``ConfigValidationError``."""
    if settings.max_area_m2 < 0:
        raise ConfigValidationError(
            "AOI_MAX_AREA_M2", settings.max_area_m2, "must be >= 0 (square metres)"
        )

    if settings.large_area_m2 < 0:
        raise ConfigValidationError(
            "AOI_LARGE_AREA_M2", settings.large_area_m2, "must be >= 0 (square metres)"
        )


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _first_string(raw: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    value = _first_present(raw, keys)
    return str(value).strip() if value is not None else ""


def _parse_timeout(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigValidationError("timeout_ms", value, "must be an integer")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError("timeout_ms", value, "must be an integer") from exc
    if not math.isfinite(number):
        raise ConfigValidationError("timeout_ms", value, "must be finite")
    return int(number)
