"""Tests for FME Flow request construction.

Covers:
- Server base normalization and encoded URL joining
- Webhook query defaults and TM parameter normalization
- Exact webhook URL-length prediction
- Webhook base validation (https, credentials)
- REST job body formatting, including schedule mode
- Upload name and namespace sanitization
"""

from __future__ import annotations

import io

import pytest

from fme_export.api.builder import (
    build_nm_directives,
    build_params,
    build_rest_url,
    build_service_url,
    build_tm_directives,
    build_url,
    create_webhook_artifacts,
    format_job_params,
    is_schedule_mode,
    is_webhook_url_too_long,
    normalize_server_base,
    resolve_max_url_length,
    sanitize_namespace,
    sanitize_upload_name,
    serialize_params,
)
from fme_export.api.errors import WEBHOOK_AUTH_ERROR, FmeFlowApiError
from fme_export.api.registry import RequestConfig
from fme_export.models.jobs import JobRequest, PublishedParameter, TMDirectives

SERVER = "https://fme.example.com"


class TestUrls:
    @pytest.mark.parametrize(
        "url",
        [
            "https://fme.example.com",
            "https://fme.example.com/",
            "https://fme.example.com/fmerest/v3/",
            "https://fme.example.com/fmerest",
            "https://fme.example.com/fmeserver",
            "https://fme.example.com/fmeapiv4/fmerest/v3",
        ],
    )
    def test_normalize_server_base(self, url: str) -> None:
        assert normalize_server_base(url) == "https://fme.example.com"

    def test_normalize_keeps_context_path(self) -> None:
        assert normalize_server_base("https://h/gis/fmerest/v3") == "https://h/gis"

    def test_build_url_encodes_parts(self) -> None:
        assert build_url("https://h/", "repo name", "a/b", "..", "ws#1.fmw") == "https://h/repo%20name/a/b/ws%231.fmw"

    def test_rest_url(self) -> None:
        assert build_rest_url(f"{SERVER}/fmerest/v3", "repositories", "Exports") == (
            f"{SERVER}/fmerest/v3/repositories/Exports"
        )

    def test_service_url(self) -> None:
        assert build_service_url(SERVER, "fmedatastreaming", "Exports", "clip.fmw") == (
            f"{SERVER}/fmedatastreaming/Exports/clip.fmw"
        )


class TestBuildParams:
    def test_drops_none_and_excluded(self) -> None:
        params = build_params({"A": 1, "B": None, "tm_ttc": 5}, exclude_keys={"tm_ttc"})
        assert params == {"A": "1"}

    def test_webhook_defaults(self) -> None:
        params = build_params({}, with_webhook_defaults=True)
        assert params == {"opt_responseformat": "json", "opt_showresult": "true", "opt_servicemode": "async"}

    def test_explicit_sync_mode(self) -> None:
        assert build_params({"opt_servicemode": " SYNC "}, with_webhook_defaults=True)["opt_servicemode"] == "sync"

    @pytest.mark.parametrize("mode", ["schedule", "", "fast", None])
    def test_other_modes_become_async(self, mode: str | None) -> None:
        assert build_params({"opt_servicemode": mode}, with_webhook_defaults=True)["opt_servicemode"] == "async"

    def test_show_result_false_and_xml(self) -> None:
        params = build_params({"opt_showresult": False, "opt_responseformat": "XML"}, with_webhook_defaults=True)
        assert params["opt_showresult"] == "false"
        assert params["opt_responseformat"] == "xml"

    def test_serialize_sorted_and_encoded(self) -> None:
        assert serialize_params({"b": "x y", "a": "1&2"}) == "a=1%262&b=x%20y"


class TestWebhookArtifacts:
    def test_full_url(self) -> None:
        artifacts = create_webhook_artifacts(SERVER, "Exports", "clip.fmw", {"FORMAT": "DWG"}, "tok")
        assert artifacts.base_url == f"{SERVER}/fmedatadownload/Exports/clip.fmw"
        assert artifacts.full_url == (
            f"{SERVER}/fmedatadownload/Exports/clip.fmw?FORMAT=DWG&opt_responseformat=json"
            "&opt_servicemode=async&opt_showresult=true&token=tok"
        )

    def test_tm_params_normalized(self) -> None:
        artifacts = create_webhook_artifacts(
            SERVER,
            "Exports",
            "clip.fmw",
            {"tm_ttc": "30.7", "tm_ttl": -5, "tm_tag": "  " + "q" * 200, "tm_rtc": True},
        )
        assert artifacts.params["tm_ttc"] == "30"
        assert "tm_ttl" not in artifacts.params
        assert artifacts.params["tm_tag"] == "q" * 128
        assert "tm_rtc" not in artifacts.params

    def test_no_token_when_absent(self) -> None:
        assert "token" not in create_webhook_artifacts(SERVER, "R", "w.fmw").params

    @pytest.mark.parametrize(
        "server",
        ["http://fme.example.com", "https://user:pw@fme.example.com"],
    )
    def test_unsafe_base_rejected(self, server: str) -> None:
        with pytest.raises(FmeFlowApiError) as exc_info:
            create_webhook_artifacts(server, "R", "w.fmw")
        assert exc_info.value.code == WEBHOOK_AUTH_ERROR
        assert exc_info.value.status == 0

    @pytest.mark.parametrize("server", ["http://localhost:8080", "http://127.0.0.1"])
    def test_loopback_http_allowed(self, server: str) -> None:
        assert create_webhook_artifacts(server, "R", "w.fmw").base_url.startswith("http://")


class TestUrlLength:
    def test_short_limit(self) -> None:
        assert is_webhook_url_too_long(SERVER, "R", "w.fmw", {}, max_len=10)

    def test_default_limit(self) -> None:
        assert not is_webhook_url_too_long(SERVER, "R", "w.fmw", {"FORMAT": "DWG"}, max_len=4000)

    def test_long_parameter(self) -> None:
        assert is_webhook_url_too_long(SERVER, "R", "w.fmw", {"AOI": "x" * 5000}, max_len=4000)

    def test_prediction_matches_real_url(self) -> None:
        params = {"AOI": "y" * 100}
        length = len(create_webhook_artifacts(SERVER, "R", "w.fmw", params, "tok").full_url)
        assert not is_webhook_url_too_long(SERVER, "R", "w.fmw", params, max_len=length, token="tok")
        assert is_webhook_url_too_long(SERVER, "R", "w.fmw", params, max_len=length - 1, token="tok")

    def test_resolve_max_url_length(self) -> None:
        assert resolve_max_url_length(None) == 1900
        assert resolve_max_url_length(RequestConfig()) == 1900
        assert resolve_max_url_length(RequestConfig(max_url_length=4000)) == 4000


class TestJobBody:
    def test_published_parameters_exclude_control_keys(self) -> None:
        job = format_job_params(
            {"FORMAT": "DWG", "tm_ttl": 60, "opt_servicemode": "async", "opt_requesteremail": "a@b", "EMPTY": None}
        )
        assert [p.name for p in job.published_parameters] == ["FORMAT"]
        assert job.tm_directives == TMDirectives(ttl=60)
        assert job.nm_directives is None

    def test_file_value_sent_by_name(self) -> None:
        upload = io.BytesIO(b"x")
        upload.name = "/tmp/parcels.zip"
        job = format_job_params({"SOURCE": upload})
        assert job.parameter("SOURCE") == "parcels.zip"

    def test_schedule_mode(self) -> None:
        params = {
            "opt_servicemode": "schedule",
            "start": "2026-11-01 02:00:00",
            "name": "nightly",
            "category": "exports",
            "description": "  nightly export ",
            "FORMAT": "DWG",
        }
        assert is_schedule_mode(params)
        job = format_job_params(params)
        assert [p.name for p in job.published_parameters] == ["FORMAT"]
        body = job.to_dict()
        directive = body["NMDirectives"]["directives"][0]  # type: ignore[index]
        assert directive == {
            "name": "schedule",
            "begin": "2026-11-01 02:00:00",
            "scheduleName": "nightly",
            "scheduleCategory": "exports",
            "scheduleTrigger": "runonce",
            "scheduleDescription": "nightly export",
        }

    def test_schedule_keys_kept_outside_schedule_mode(self) -> None:
        job = format_job_params({"name": "layer", "start": "x"})
        assert job.parameter("name") == "layer"
        assert job.parameter("start") == "x"

    def test_incomplete_schedule_has_no_directive(self) -> None:
        assert build_nm_directives({"opt_servicemode": "schedule", "start": "x"}) is None

    def test_already_formatted_body_passthrough(self) -> None:
        body = {"publishedParameters": [{"name": "A", "value": "1"}]}
        assert format_job_params(body).parameter("A") == "1"
        request = JobRequest([PublishedParameter("B", 2)])
        assert format_job_params(request) is request

    @pytest.mark.parametrize(("raw", "expected"), [(True, True), ("false", False), ("TRUE", True), ("yes", None)])
    def test_rtc(self, raw: object, expected: bool | None) -> None:
        assert build_tm_directives({"tm_rtc": raw}).rtc is expected


class TestUploadNames:
    def test_upload_name(self) -> None:
        assert sanitize_upload_name("my parcels (v2).zip") == "my_parcels__v2_.zip"
        assert len(sanitize_upload_name("a" * 300)) == 128

    def test_upload_name_generated(self) -> None:
        assert sanitize_upload_name("  ").startswith("upload_")

    def test_namespace(self) -> None:
        assert sanitize_namespace("team/a b") == "team-a-b"
        assert sanitize_namespace(None).startswith("upload_")
