"""Tests for request instrumentation.

Covers:
- URL sanitization (userinfo dropped, secret query values redacted)
- Parameter redaction and whitelisting
- Log levels for completed, slow, failed and aborted requests
"""

from __future__ import annotations

import logging
import os
from unittest.mock import AsyncMock, patch

import pytest

from fme_export.api.cancellation import RequestCancelled
from fme_export.api.instrument import (
    NetworkLogSettings,
    describe_body,
    instrumented_request,
    redact_params,
    sanitize_url,
)
from fme_export.api.transport import TransportResponse

URL = "https://fme.example.com/fmedatadownload/R/w.fmw?token=abc&FORMAT=DWG"


class TestSanitize:
    def test_redacts_token(self) -> None:
        assert sanitize_url(URL) == "https://fme.example.com/fmedatadownload/R/w.fmw?token=[TOKEN]&FORMAT=DWG"

    def test_drops_userinfo(self) -> None:
        assert sanitize_url("https://user:pw@h.example.com:8443/x") == "https://h.example.com:8443/x"

    def test_redact_params(self) -> None:
        params = {"fmetoken": "t", "api_key": "k", "FORMAT": "DWG"}
        assert redact_params(params) == {"fmetoken": "[TOKEN]", "api_key": "[TOKEN]", "FORMAT": "DWG"}

    def test_whitelist(self) -> None:
        params = {"opt_servicemode": "async", "token": "t", "AOI": "{}"}
        assert redact_params(params, ["opt_servicemode"]) == {"opt_servicemode": "async"}

    def test_describe_body(self) -> None:
        assert describe_body(b"1234", 10) == "<4 bytes>"
        assert describe_body({"token": "t"}, 100) == '{"token": "[TOKEN]"}'
        assert describe_body("x" * 20, 5) == "xxxxx..."


class TestSettings:
    def test_from_env(self) -> None:
        env = {"FME_NETWORK_LOG": "false", "FME_SLOW_REQUEST_MS": "250", "FME_BODY_PREVIEW_LIMIT": "64"}
        with patch.dict(os.environ, env, clear=False):
            settings = NetworkLogSettings.from_env()
        assert settings == NetworkLogSettings(enabled=False, slow_request_ms=250, body_preview_limit=64)


class TestInstrumentedRequest:
    @pytest.mark.asyncio()
    async def test_success_logged_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        execute = AsyncMock(return_value=TransportResponse(data={}, status=200))
        with caplog.at_level(logging.INFO, logger="fme_export.api.instrument"):
            response = await instrumented_request(execute, method="GET", url=URL, correlation_id="c1")
        assert response.status == 200
        assert "correlation_id=c1" in caplog.text
        assert "abc" not in caplog.text

    @pytest.mark.asyncio()
    async def test_slow_request_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        execute = AsyncMock(return_value=TransportResponse(data={}, status=200))
        settings = NetworkLogSettings(slow_request_ms=0)
        with caplog.at_level(logging.WARNING, logger="fme_export.api.instrument"):
            await instrumented_request(execute, method="GET", url=URL, correlation_id="c2", settings=settings)
        assert "FME request slow" in caplog.text

    @pytest.mark.asyncio()
    async def test_disabled_logs_nothing_on_success(self, caplog: pytest.LogCaptureFixture) -> None:
        execute = AsyncMock(return_value=TransportResponse(data={}, status=200))
        settings = NetworkLogSettings(enabled=False, slow_request_ms=60_000)
        with caplog.at_level(logging.INFO, logger="fme_export.api.instrument"):
            await instrumented_request(execute, method="GET", url=URL, correlation_id="c3", settings=settings)
        assert caplog.records == []

    @pytest.mark.asyncio()
    async def test_failure_logged_and_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        execute = AsyncMock(side_effect=RuntimeError("down"))
        with caplog.at_level(logging.ERROR, logger="fme_export.api.instrument"), pytest.raises(RuntimeError):
            await instrumented_request(execute, method="POST", url=URL, correlation_id="c4")
        assert "FME request failed" in caplog.text
        assert "error=RuntimeError" in caplog.text

    @pytest.mark.asyncio()
    async def test_abort_logged_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        execute = AsyncMock(side_effect=RequestCancelled("user"))
        with caplog.at_level(logging.INFO, logger="fme_export.api.instrument"), pytest.raises(RequestCancelled):
            await instrumented_request(execute, method="GET", url=URL, correlation_id="c5")
        assert "FME request aborted" in caplog.text
        assert all(record.levelno < logging.ERROR for record in caplog.records)
