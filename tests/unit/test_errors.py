"""Tests for client error helpers.

Covers:
- HTTP status extraction from exceptions, mappings and messages
- Retryable status classification
- Localization key resolution order
- make_flow_error() message keys
"""

from __future__ import annotations

import httpx
import pytest

from fme_export.api.errors import (
    CLIENT_DISPOSED,
    DATA_UPLOAD_ERROR,
    PASSTHROUGH_CODES,
    REQUEST_FAILED,
    REQUEST_TIMEOUT,
    URL_TOO_LONG,
    WEBHOOK_AUTH_ERROR,
    extract_http_status,
    is_retryable_status,
    make_flow_error,
    map_error_to_key,
)


class _StatusError(Exception):
    def __init__(self, status: object) -> None:
        super().__init__("failed")
        self.status = status


class TestExtractHttpStatus:
    def test_attribute(self) -> None:
        assert extract_http_status(_StatusError(404)) == 404

    def test_mapping_keys(self) -> None:
        assert extract_http_status({"httpStatus": 502}) == 502
        assert extract_http_status({"details": {"httpStatus": 401}}) == 401

    def test_httpx_response(self) -> None:
        request = httpx.Request("GET", "https://h")
        response = httpx.Response(503, request=request)
        exc = httpx.HTTPStatusError("bad", request=request, response=response)
        assert extract_http_status(exc) == 503

    def test_message_pattern(self) -> None:
        assert extract_http_status(RuntimeError("Request failed, status: 429")) == 429

    @pytest.mark.parametrize("value", [None, _StatusError(0), _StatusError(True), _StatusError("500"), {"status": 999}])
    def test_no_status(self, value: object) -> None:
        assert extract_http_status(value) is None


class TestRetryable:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [(None, True), (0, True), (408, True), (429, True), (500, True), (503, True), (400, False), (401, False), (404, False)],
    )
    def test_classification(self, status: int | None, expected: bool) -> None:
        assert is_retryable_status(status) is expected


class TestMapErrorToKey:
    @pytest.mark.parametrize(
        ("status", "key"),
        [
            (0, "startupNetworkError"),
            (401, "startupTokenError"),
            (403, "startupTokenError"),
            (404, "connectionFailed"),
            (408, "timeout"),
            (429, "rateLimited"),
            (500, "startupServerError"),
            (None, "startupServerError"),
        ],
    )
    def test_request_failed_uses_status(self, status: int | None, key: str) -> None:
        assert map_error_to_key({"code": REQUEST_FAILED}, status) == key

    def test_code_table(self) -> None:
        assert map_error_to_key({"code": URL_TOO_LONG}) == "urlTooLong"
        assert map_error_to_key({"code": REQUEST_TIMEOUT}) == "timeout"

    def test_status_when_code_unknown(self) -> None:
        assert map_error_to_key({"code": "SOMETHING"}, 429) == "rateLimited"

    @pytest.mark.parametrize(
        ("message", "key"),
        [
            ("Failed to fetch", "startupNetworkError"),
            ("connection reset", "startupNetworkError"),
            ("operation timed out", "timeout"),
            ("blocked by CORS policy", "corsError"),
            ("something odd", "unknownErrorOccurred"),
        ],
    )
    def test_message_heuristics(self, message: str, key: str) -> None:
        assert map_error_to_key(RuntimeError(message)) == key


class TestMakeFlowError:
    def test_message_is_key(self) -> None:
        exc = make_flow_error(REQUEST_FAILED, 401)
        assert exc.code == REQUEST_FAILED
        assert exc.message == "startupTokenError"
        assert exc.status == 401

    def test_upload_error_without_status(self) -> None:
        exc = make_flow_error(DATA_UPLOAD_ERROR)
        assert exc.status is None
        assert exc.retryable is True

    def test_passthrough_codes(self) -> None:
        assert {CLIENT_DISPOSED, REQUEST_TIMEOUT, URL_TOO_LONG, WEBHOOK_AUTH_ERROR} <= PASSTHROUGH_CODES
