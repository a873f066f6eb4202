"""Tests for client and AOI configuration.

Covers:
- Required fields and URL normalization
- Loading from environment variables
- Alias keys in loosely-keyed mappings
- Fail-fast timeout and area-limit validation
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from fme_export.core.config import (
    AoiSettings,
    ClientConfig,
    ConfigValidationError,
    validate_client_config,
)


class TestValidateClientConfig:
    """Required fields and normalization."""

    def test_strips_trailing_slash_and_whitespace(self) -> None:
        cfg = validate_client_config(ClientConfig(" https://fme.example.com/ ", " tok ", " Repo "))
        assert cfg.server_url == "https://fme.example.com"
        assert cfg.token == "tok"
        assert cfg.repository == "Repo"

    @pytest.mark.parametrize(
        ("server_url", "token", "repository", "key"),
        [
            ("", "tok", "repo", "server_url"),
            ("ftp://fme.example.com", "tok", "repo", "server_url"),
            ("https://", "tok", "repo", "server_url"),
            ("https://fme.example.com", "  ", "repo", "token"),
            ("https://fme.example.com", "tok", "", "repository"),
        ],
    )
    def test_missing_field_rejected(self, server_url: str, token: str, repository: str, key: str) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_client_config(ClientConfig(server_url, token, repository))
        assert exc_info.value.key == key
        assert exc_info.value.code == "INVALID_CONFIG"

    def test_zero_timeout_rejected(self) -> None:
        with pytest.raises(ConfigValidationError, match="timeout_ms"):
            validate_client_config(ClientConfig("https://h", "t", "r", timeout_ms=0))

    def test_timeout_seconds(self) -> None:
        assert ClientConfig("https://h", "t", "r", timeout_ms=2500).timeout_seconds == 2.5
        assert ClientConfig("https://h", "t", "r").timeout_seconds is None

    def test_with_updates_revalidates(self) -> None:
        cfg = ClientConfig("https://h", "t", "r")
        assert cfg.with_updates(repository=" other ").repository == "other"
        with pytest.raises(ConfigValidationError):
            cfg.with_updates(token="")


class TestClientConfigFromMapping:
    """Alias keys used by stored configurations."""

    def test_camel_case_aliases(self) -> None:
        cfg = ClientConfig.from_mapping(
            {"fmeServerUrl": "https://fme.example.com/", "fmeServerToken": "abc", "repository": "R"}
        )
        assert cfg.server_url == "https://fme.example.com"
        assert cfg.token == "abc"

    def test_snake_case_aliases(self) -> None:
        cfg = ClientConfig.from_mapping(
            {"fme_server_url": "https://h", "fmw_server_token": "abc", "repo": "R", "request_timeout": "1500"}
        )
        assert cfg.repository == "R"
        assert cfg.timeout_ms == 1500

    def test_first_non_empty_alias_wins(self) -> None:
        cfg = ClientConfig.from_mapping({"serverUrl": "", "server_url": "https://h", "token": "t", "repo": "r"})
        assert cfg.server_url == "https://h"

    @pytest.mark.parametrize("timeout", ["abc", True, float("inf")])
    def test_invalid_timeout(self, timeout: object) -> None:
        with pytest.raises(ConfigValidationError):
            ClientConfig.from_mapping({"serverUrl": "https://h", "token": "t", "repo": "r", "timeoutMs": timeout})

    def test_missing_token(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            ClientConfig.from_mapping({"serverUrl": "https://h", "repo": "r"})
        assert exc_info.value.key == "token"


class TestClientConfigFromEnv:
    """Verify loading from environment variables."""

    def test_loads_from_environment(self) -> None:
        env = {
            "FME_SERVER_URL": "https://fme.example.com/",
            "FME_SERVER_TOKEN": "secret",
            "FME_REPOSITORY": "Exports",
            "FME_REQUEST_TIMEOUT_MS": "30000",
        }
        with patch.dict(os.environ, env, clear=False):
            cfg = ClientConfig.from_env()

        assert cfg.server_url == "https://fme.example.com"
        assert cfg.token == "secret"
        assert cfg.repository == "Exports"
        assert cfg.timeout_ms == 30000

    def test_missing_env_fails_fast(self) -> None:
        with patch.dict(os.environ, {}, clear=True), pytest.raises(ConfigValidationError):
            ClientConfig.from_env()


class TestAoiSettings:
    def test_defaults(self) -> None:
        settings = AoiSettings()
        assert settings.aoi_param_name == "AreaOfInterest"
        assert settings.max_area_m2 == 0.0
        assert settings.geometry_service_url == ""

    def test_from_env(self) -> None:
        env = {
            "AOI_PARAM_NAME": "Clip",
            "AOI_MAX_AREA_M2": "1e9",
            "AOI_LARGE_AREA_M2": "5e8",
            "FME_GEOMETRY_SERVICE_URL": " https://geo.example.com/Geometry/GeometryServer ",
        }
        with patch.dict(os.environ, env, clear=False):
            settings = AoiSettings.from_env()
        assert settings.aoi_param_name == "Clip"
        assert settings.max_area_m2 == 1e9
        assert settings.large_area_m2 == 5e8
        assert settings.geometry_service_url == "https://geo.example.com/Geometry/GeometryServer"

    def test_blank_param_name_uses_default(self) -> None:
        with patch.dict(os.environ, {"AOI_PARAM_NAME": "  "}, clear=False):
            assert AoiSettings.from_env().aoi_param_name == "AreaOfInterest"

    def test_negative_limit_rejected(self) -> None:
        with patch.dict(os.environ, {"AOI_MAX_AREA_M2": "-1"}, clear=False):
            with pytest.raises(ConfigValidationError, match="AOI_MAX_AREA_M2"):
                AoiSettings.from_env()
