"""FME Flow API client.

``FmeFlowApiClient`` owns one ``ClientConfig`` and moves through three
states: ``uninitialized`` until its queued setup has run, ``ready``, and
``disposed`` once ``dispose()`` is called.  Setup (URL-length floor and
token interceptor for the server host) and teardown (token removal) run
on a per-client ``SerialTaskQueue``.  Construction and ``update_config``
start draining the queue in the background when an event loop is
running; every request drains it again first and retries a failed setup
once before failing with ``ARCGIS_MODULE_ERROR``.

Each request runs under a merged cancellation token: the caller's
``signal``, the configured timeout, and a per-request entry in the
client's ``AbortRegistry`` (aborted on dispose).  A caller cancellation
returns ``ApiResponse.aborted_response()``; a timeout raises
``REQUEST_TIMEOUT``; every other failure raises ``FmeFlowApiError``.

Usage::

    async with create_fme_flow_client(settings) as client:
        result = await client.submit_geometry_job("export.fmw", polygon, {"FORMAT": "DWG"})
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import mimetypes
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fme_export.api.builder import (
    append_webhook_tm_params,
    build_params,
    build_rest_url,
    build_service_url,
    build_url,
    create_webhook_artifacts,
    format_job_params,
    is_schedule_mode,
    normalize_server_base,
    resolve_max_url_length,
    sanitize_namespace,
    sanitize_upload_name,
)
from fme_export.api.cancellation import AbortRegistry, CancelToken, RequestCancelled, run_cancellable
from fme_export.api.errors import (
    ARCGIS_MODULE_ERROR,
    CLIENT_DISPOSED,
    CONNECTION_ERROR,
    CUSTOM_REQUEST_ERROR,
    DATA_DOWNLOAD_ERROR,
    DATA_STREAMING_ERROR,
    DATA_UPLOAD_ERROR,
    INVALID_CONFIG,
    INVALID_RESPONSE_FORMAT,
    JOB_CANCEL_ERROR,
    JOB_STATUS_ERROR,
    JOB_SUBMISSION_ERROR,
    PASSTHROUGH_CODES,
    REPOSITORIES_ERROR,
    REPOSITORY_ITEMS_ERROR,
    REPOSITORY_NOT_FOUND,
    REQUEST_FAILED,
    REQUEST_TIMEOUT,
    URL_TOO_LONG,
    WEBHOOK_AUTH_ERROR,
    WEBHOOK_NON_JSON,
    WORKSPACE_ITEM_ERROR,
    WORKSPACE_PARAMETER_ERROR,
    WORKSPACE_PARAMETERS_ERROR,
    FmeFlowApiError,
    extract_http_status,
    make_flow_error,
    map_error_to_key,
)
from fme_export.api.instrument import (
    NetworkLogSettings,
    instrumented_request,
    redact_params,
    sanitize_url,
)
from fme_export.api.queue import SerialTaskQueue
from fme_export.api.registry import RequestConfig, TokenRegistry, shared_token_registry
from fme_export.api.transport import HttpxTransport, RequestOptions, Transport, TransportError, TransportResponse
from fme_export.core.config import AoiSettings, ClientConfig, ConfigValidationError, validate_client_config
from fme_export.core.constants import (
    GEOMETRY_PARAM_KEYS,
    SERVICE_DATA_STREAMING,
    SERVICE_DATA_UPLOAD,
    TEMP_RESOURCE_ROOT,
    WEBHOOK_EXCLUDE_KEYS,
    WEBHOOK_LOG_WHITELIST,
)
from fme_export.geometry.aoi import attach_aoi, build_geometry_params, check_max_area, strip_aoi_error_marker
from fme_export.geometry.engines import GeometryEngines, default_engines
from fme_export.models.jobs import ApiResponse, JobRequest
from fme_export.models.responses import (
    JobResult,
    Repository,
    RepositoryItem,
    ServerInfo,
    UploadResult,
    WorkspaceParameter,
    parse_items,
    parse_model,
)
from fme_export.utils.helpers import create_correlation_id, extract_host, file_name_of

logger = logging.getLogger("fme_export.api.client")

_FILENAME_IN_DISPOSITION = re.compile(r"filename\*?=(?:UTF-8'')?\"?([^\";]+)\"?", re.IGNORECASE)


class ClientState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


@dataclass(frozen=True, slots=True)
class StreamingResult:
    """Payload of a data streaming call."""

    content: bytes
    content_type: str = ""
    file_name: str = ""


class FmeFlowApiClient:
    """Async client for one FME Flow server.

    Args:
        config: Connection settings; validated on construction.
        transport: Transport callable; defaults to ``HttpxTransport``
            bound to the registry's request configuration.
        registry: Token registry; defaults to the process-wide one.
        engines: Geometry capabilities for AOI jobs; defaults to the
            pyproj/shapely engines, created on first use.
        aoi_settings: AOI parameter name and area limits.
        network: Request logging settings.

    Raises:
        FmeFlowApiError: ``INVALID_CONFIG`` when *config* is incomplete.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Transport | None = None,
        registry: TokenRegistry | None = None,
        engines: GeometryEngines | None = None,
        aoi_settings: AoiSettings | None = None,
        network: NetworkLogSettings | None = None,
    ) -> None:
        self._config = _checked_config(config)
        self._registry = registry if registry is not None else shared_token_registry()
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport(self._registry.request_config)
        self._engines = engines
        self._owns_engines = engines is None
        self._aoi_settings = aoi_settings or AoiSettings()
        self._network = network or NetworkLogSettings()
        self._state = ClientState.UNINITIALIZED
        self._aborts = AbortRegistry()
        self._queue = SerialTaskQueue(name=extract_host(self._config.server_url))
        self._setup_task: asyncio.Task[None] | None = None
        self._teardown_task: asyncio.Task[None] | None = None
        self._queue_setup(self._config)
        self._start_setup()

    # -- properties --------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._state is ClientState.DISPOSED

    @property
    def request_config(self) -> RequestConfig:
        return self._registry.request_config

    @property
    def engines(self) -> GeometryEngines:
        if self._engines is None:
            self._engines = default_engines(self._aoi_settings.geometry_service_url)
        return self._engines

    # -- lifecycle ---------------------------------------------------------

    async def __aenter__(self) -> FmeFlowApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _queue_setup(self, config: ClientConfig) -> None:
        async def setup() -> None:
            self.request_config.apply_max_url_floor()
            self._registry.set_token(config.server_url, config.token, owner=self)
            if self._state is ClientState.UNINITIALIZED:
                self._state = ClientState.READY
            logger.debug("Client setup complete | host=%s", extract_host(config.server_url))

        self._queue.enqueue(setup, "setup")

    def _queue_teardown(self, server_url: str) -> None:
        async def teardown() -> None:
            self._registry.clear_token(server_url, owner=self)
            logger.debug("Client teardown complete | host=%s", extract_host(server_url))

        self._queue.enqueue(teardown, "teardown")

    def _start_setup(self) -> None:
        """Drain queued setup in the background when a loop is running.

        Without a running loop setup stays queued until the first request.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._setup_task = loop.create_task(self._drain_setup())

    async def _drain_setup(self) -> None:
        try:
            await self._queue.drain()
        except Exception as exc:
            logger.warning("Client setup failed | host=%s | error=%s", extract_host(self._config.server_url), exc)

    async def _ensure_setup(self) -> None:
        try:
            await self._queue.drain()
        except Exception:
            self._queue_setup(self._config)
            try:
                await self._queue.drain()
            except Exception as exc:
                raise make_flow_error(ARCGIS_MODULE_ERROR) from exc

    def update_config(self, config: ClientConfig) -> None:
        """Replace the configuration and queue setup for it.

        Raises:
            FmeFlowApiError: ``CLIENT_DISPOSED`` or ``INVALID_CONFIG``.
        """
        if self.disposed:
            raise make_flow_error(CLIENT_DISPOSED)
        checked = _checked_config(config)
        previous = self._config
        self._config = checked
        if extract_host(previous.server_url) != extract_host(checked.server_url):
            self._queue_teardown(previous.server_url)
        self._queue_setup(checked)
        self._start_setup()

    def dispose(self) -> None:
        """Abort in-flight requests and queue teardown.  Idempotent."""
        if self.disposed:
            return
        self._state = ClientState.DISPOSED
        try:
            aborted = self._aborts.abort_all("disposed")
            logger.debug("Client disposed | aborted=%d", aborted)
        finally:
            self._queue_teardown(self._config.server_url)
            self._schedule_teardown()

    def _schedule_teardown(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._drain_teardown())
            return
        self._teardown_task = loop.create_task(self._drain_teardown())

    async def _drain_teardown(self) -> None:
        try:
            await self._queue.drain()
        except Exception as exc:
            logger.warning("Client teardown incomplete | error=%s", exc)

    async def aclose(self) -> None:
        """Dispose, wait for teardown, and close owned resources."""
        self.dispose()
        if self._setup_task is not None:
            await self._setup_task
        if self._teardown_task is not None:
            await self._teardown_task
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()
        if self._owns_engines and self._engines is not None and self._engines.geometry_service is not None:
            await self._engines.geometry_service.aclose()

    # -- cancellation ------------------------------------------------------

    def create_abort_controller(self, key: str | None = None) -> CancelToken:
        """Return a token registered with this client; it is aborted on dispose."""
        return self._aborts.register(key or create_correlation_id("abort"))

    def abort(self, key: str, reason: str | None = None) -> bool:
        return self._aborts.abort(key, reason)

    def cancel_all_requests(self, reason: str = "cancelled") -> int:
        return self._aborts.abort_all(reason)

    # -- request pipeline --------------------------------------------------

    async def _send(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        form: dict[str, str] | None = None,
        response_type: str = "json",
        signal: CancelToken | None = None,
        timeout_ms: int | None = None,
        transport_name: str = "fme-rest",
    ) -> TransportResponse | None:
        """Send one request; ``None`` means the caller cancelled it."""
        if self.disposed:
            raise make_flow_error(CLIENT_DISPOSED)
        await self._ensure_setup()
        if self.disposed:
            raise make_flow_error(CLIENT_DISPOSED)

        config = self._config
        url = endpoint if endpoint.startswith(("http://", "https://")) else build_rest_url(config.server_url, endpoint)
        request_headers = {"Accept": "application/json"} if response_type == "json" else {}
        request_headers.update(headers or {})
        if extract_host(url) == extract_host(config.server_url):
            request_headers["Authorization"] = f"fmetoken token={config.token}"

        effective_timeout = timeout_ms if timeout_ms is not None else config.timeout_ms
        timeout_s = effective_timeout / 1000.0 if effective_timeout else None
        options = RequestOptions(
            method=method,
            headers=request_headers,
            query=dict(query or {}),
            body=body,
            form=form,
            response_type=response_type,
            timeout=timeout_s,
        )

        correlation_id = create_correlation_id("fme")
        token = self._aborts.register(correlation_id)

        async def send() -> TransportResponse:
            response = await self._transport(url, options)
            if response.status >= 400:
                msg = f"HTTP status: {response.status}"
                raise TransportError(msg, status=response.status, data=response.data, headers=response.headers)
            return response

        async def call(merged: CancelToken) -> TransportResponse:
            options.signal = merged
            return await instrumented_request(
                send,
                method=method,
                url=url,
                correlation_id=correlation_id,
                transport=transport_name,
                body=body if body is not None else form,
                settings=self._network,
            )

        try:
            return await run_cancellable(call, signal=signal, timeout=timeout_s, token=token)
        except RequestCancelled as exc:
            if exc.timed_out:
                raise FmeFlowApiError(REQUEST_TIMEOUT, "timeout", 408, correlation_id=correlation_id) from exc
            return None
        except FmeFlowApiError:
            raise
        except Exception as exc:
            raise _transport_failure(exc, correlation_id) from exc
        finally:
            self._aborts.release(correlation_id, token)

    async def _request(self, endpoint: str, **kwargs: Any) -> ApiResponse[Any]:
        """Send a request and normalize the response."""
        response = await self._send(endpoint, **kwargs)
        if response is None:
            return ApiResponse.aborted_response()
        if kwargs.get("response_type", "json") == "json" and response.data is None and response.text.strip():
            raise FmeFlowApiError(INVALID_RESPONSE_FORMAT, "startupTokenError", response.status)
        return ApiResponse(data=response.data, status=response.status, status_text=response.status_text)

    async def _call(self, code: str, endpoint: str, **kwargs: Any) -> ApiResponse[Any]:
        """``_request`` with failures renamed to the operation's *code*."""
        try:
            return await self._request(endpoint, **kwargs)
        except FmeFlowApiError as exc:
            if exc.code in PASSTHROUGH_CODES or exc.code == INVALID_RESPONSE_FORMAT:
                raise
            key = map_error_to_key({"code": exc.code}, exc.status)
            raise FmeFlowApiError(code, key, exc.status, correlation_id=exc.correlation_id) from exc

    def _resolve_repository(self, repository: str | None) -> str:
        return (repository or "").strip() or self._config.repository

    # -- REST reads --------------------------------------------------------

    async def test_connection(self, *, signal: CancelToken | None = None) -> ApiResponse[ServerInfo]:
        """GET ``info`` to check connectivity and read the server version."""
        response = await self._call(CONNECTION_ERROR, "info", signal=signal)
        return _typed(response, ServerInfo)

    async def validate_repository(
        self, repository: str | None = None, *, signal: CancelToken | None = None
    ) -> ApiResponse[Repository]:
        """Check that *repository* exists and is readable with the token.

        Raises:
            FmeFlowApiError: ``REPOSITORY_NOT_FOUND`` on 404.
        """
        target = self._resolve_repository(repository)
        try:
            response = await self._call(REPOSITORIES_ERROR, f"repositories/{target}", signal=signal)
        except FmeFlowApiError as exc:
            if exc.status == 404:
                raise FmeFlowApiError(REPOSITORY_NOT_FOUND, "connectionFailed", 404) from exc
            raise
        return _typed(response, Repository)

    async def get_repositories(self, *, signal: CancelToken | None = None) -> ApiResponse[list[Repository]]:
        response = await self._call(
            REPOSITORIES_ERROR, "repositories", query={"limit": "-1", "offset": "-1"}, signal=signal
        )
        if response.aborted:
            return response
        return ApiResponse(parse_items(Repository, response.data), response.status, response.status_text)

    async def get_repository_items(
        self,
        repository: str | None = None,
        item_type: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[list[RepositoryItem]]:
        query: dict[str, str] = {}
        if item_type:
            query["type"] = item_type
        if limit is not None:
            query["limit"] = str(limit)
        if offset is not None:
            query["offset"] = str(offset)
        target = self._resolve_repository(repository)
        response = await self._call(
            REPOSITORY_ITEMS_ERROR, f"repositories/{target}/items", query=query, signal=signal
        )
        if response.aborted:
            return response
        return ApiResponse(parse_items(RepositoryItem, response.data), response.status, response.status_text)

    async def get_workspace_item(
        self, workspace: str, repository: str | None = None, *, signal: CancelToken | None = None
    ) -> ApiResponse[dict[str, Any]]:
        target = self._resolve_repository(repository)
        return await self._call(WORKSPACE_ITEM_ERROR, f"repositories/{target}/items/{workspace}", signal=signal)

    async def get_workspace_parameters(
        self, workspace: str, repository: str | None = None, *, signal: CancelToken | None = None
    ) -> ApiResponse[list[WorkspaceParameter]]:
        target = self._resolve_repository(repository)
        response = await self._call(
            WORKSPACE_PARAMETERS_ERROR, f"repositories/{target}/items/{workspace}/parameters", signal=signal
        )
        if response.aborted:
            return response
        return ApiResponse(parse_items(WorkspaceParameter, response.data), response.status, response.status_text)

    async def get_workspace_parameter(
        self,
        workspace: str,
        parameter: str,
        repository: str | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[WorkspaceParameter]:
        target = self._resolve_repository(repository)
        response = await self._call(
            WORKSPACE_PARAMETER_ERROR,
            f"repositories/{target}/items/{workspace}/parameters/{parameter}",
            signal=signal,
        )
        return _typed(response, WorkspaceParameter)

    # -- jobs --------------------------------------------------------------

    async def submit_job(
        self,
        workspace: str,
        parameters: Mapping[str, Any] | JobRequest | None = None,
        repository: str | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[JobResult]:
        """POST the job to ``transformations/submit`` (asynchronous run)."""
        return await self._submit("submit", workspace, parameters, repository, signal)

    async def submit_sync_job(
        self,
        workspace: str,
        parameters: Mapping[str, Any] | JobRequest | None = None,
        repository: str | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[JobResult]:
        """POST the job to ``transformations/transact`` and wait for the result."""
        return await self._submit("transact", workspace, parameters, repository, signal)

    async def _submit(
        self,
        mode: str,
        workspace: str,
        parameters: Mapping[str, Any] | JobRequest | None,
        repository: str | None,
        signal: CancelToken | None,
    ) -> ApiResponse[JobResult]:
        target = self._resolve_repository(repository)
        job = format_job_params(parameters)
        response = await self._call(
            JOB_SUBMISSION_ERROR,
            f"transformations/{mode}/{target}/{workspace}",
            method="POST",
            body=job.to_dict(),
            headers={"Content-Type": "application/json"},
            signal=signal,
        )
        typed = _typed(response, JobResult)
        if not typed.aborted:
            logger.info(
                "Job submitted | mode=%s | repository=%s | workspace=%s | job_id=%s | parameters=%d",
                mode,
                target,
                workspace,
                typed.data.id if typed.data else None,
                len(job.published_parameters),
            )
        return typed

    async def to_fme_params(self, geometry: Any) -> dict[str, Any]:
        """Return extent, area and AOI job parameters for *geometry*.

        Raises:
            GeometryError: If *geometry* is not a polygon.
        """
        return await build_geometry_params(geometry, self.engines, self._aoi_settings)

    async def submit_geometry_job(
        self,
        workspace: str,
        geometry: Any,
        parameters: Mapping[str, Any] | None = None,
        repository: str | None = None,
        *,
        geometry_param_names: tuple[str, ...] = (),
        signal: CancelToken | None = None,
    ) -> ApiResponse[JobResult]:
        """Submit a job whose AOI parameters come from *geometry*.

        Caller values for geometry-derived keys win only when they are
        explicitly set (not ``None`` or blank).

        Raises:
            GeometryError: If *geometry* is not a polygon or its area
                exceeds the configured maximum.
        """
        derived, marker = strip_aoi_error_marker(await self.to_fme_params(geometry))
        if marker is not None:
            logger.warning("AOI serialization incomplete | workspace=%s | detail=%s", workspace, marker)
        check_max_area(float(derived.get("AREA") or 0.0), self._aoi_settings)

        aoi_key = self._aoi_settings.aoi_param_name
        merged = dict(derived)
        for key, value in (parameters or {}).items():
            if (key in GEOMETRY_PARAM_KEYS or key == aoi_key) and not _explicitly_set(value):
                continue
            merged[key] = value

        aoi_value = merged.get(aoi_key)
        if isinstance(aoi_value, str) and geometry_param_names:
            merged = attach_aoi(merged, aoi_value, aoi_key, geometry_param_names)

        return await self.submit_job(workspace, merged, repository, signal=signal)

    async def get_job_status(
        self, job_id: int | str, *, signal: CancelToken | None = None
    ) -> ApiResponse[JobResult]:
        response = await self._call(JOB_STATUS_ERROR, f"transformations/jobs/{job_id}", signal=signal)
        return _typed(response, JobResult)

    async def cancel_job(self, job_id: int | str, *, signal: CancelToken | None = None) -> ApiResponse[Any]:
        return await self._call(
            JOB_CANCEL_ERROR, f"transformations/jobs/{job_id}/cancel", method="POST", signal=signal
        )

    # -- webhooks ----------------------------------------------------------

    async def run_workspace(
        self,
        workspace: str,
        parameters: Mapping[str, Any] | None = None,
        repository: str | None = None,
        service: str = "download",
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[Any]:
        """Run *workspace* through the service its parameters call for.

        Schedule mode always goes through the REST submit endpoint;
        otherwise ``service`` picks ``"download"`` (webhook) or ``"stream"``.
        """
        params = parameters or {}
        if is_schedule_mode(params):
            return await self.submit_job(workspace, params, repository, signal=signal)
        if service == "stream":
            return await self.run_data_streaming(workspace, params, repository, signal=signal)
        if service == "download":
            return await self.run_data_download(workspace, params, repository, signal=signal)
        msg = f"Unknown service {service!r}; expected 'download' or 'stream'"
        raise ValueError(msg)

    async def run_data_download(
        self,
        workspace: str,
        parameters: Mapping[str, Any] | None = None,
        repository: str | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[Any]:
        """Invoke the data download webhook (GET).

        Raises:
            FmeFlowApiError: ``URL_TOO_LONG`` before sending when the URL
                exceeds the transport limit, ``WEBHOOK_AUTH_ERROR``,
                ``WEBHOOK_NON_JSON``, ``REQUEST_TIMEOUT`` or
                ``DATA_DOWNLOAD_ERROR``.
        """
        if self.disposed:
            raise make_flow_error(CLIENT_DISPOSED)
        await self._ensure_setup()

        target = self._resolve_repository(repository)
        artifacts = create_webhook_artifacts(
            self._config.server_url, target, workspace, parameters, self._config.token
        )
        max_len = resolve_max_url_length(self.request_config)
        if len(artifacts.full_url) > max_len:
            logger.warning("Webhook URL too long | length=%d | max=%d", len(artifacts.full_url), max_len)
            raise make_flow_error(URL_TOO_LONG, 0)

        logger.info(
            "Webhook call | url=%s | params=%s",
            sanitize_url(artifacts.base_url),
            redact_params(artifacts.params, WEBHOOK_LOG_WHITELIST),
        )
        try:
            response = await self._send(
                artifacts.full_url,
                headers={"Cache-Control": "no-cache"},
                signal=signal,
                transport_name="fme-webhook",
            )
        except FmeFlowApiError as exc:
            raise _webhook_failure(exc, DATA_DOWNLOAD_ERROR) from exc
        if response is None:
            return ApiResponse.aborted_response()
        return parse_webhook_response(response)

    async def run_data_streaming(
        self,
        workspace: str,
        parameters: Mapping[str, Any] | None = None,
        repository: str | None = None,
        *,
        signal: CancelToken | None = None,
    ) -> ApiResponse[StreamingResult]:
        """Invoke the data streaming service (POST) and return the raw payload."""
        target = self._resolve_repository(repository)
        url = build_service_url(self._config.server_url, SERVICE_DATA_STREAMING, target, workspace)
        form = append_webhook_tm_params(build_params(parameters, WEBHOOK_EXCLUDE_KEYS), parameters or {})
        try:
            response = await self._send(
                url,
                method="POST",
                form=form,
                response_type="blob",
                signal=signal,
                transport_name="fme-stream",
            )
        except FmeFlowApiError as exc:
            raise _webhook_failure(exc, DATA_STREAMING_ERROR) from exc
        if response is None:
            return ApiResponse.aborted_response()

        content = response.data if isinstance(response.data, (bytes, bytearray)) else b""
        result = StreamingResult(
            content=bytes(content),
            content_type=response.content_type,
            file_name=_disposition_file_name(response.headers),
        )
        return ApiResponse(result, response.status, response.status_text)

    # -- uploads and custom calls -----------------------------------------

    async def upload_to_temp(
        self,
        file: bytes | Path | Any,
        *,
        subfolder: str | None = None,
        repository: str | None = None,
        workspace: str | None = None,
        signal: CancelToken | None = None,
    ) -> ApiResponse[UploadResult]:
        """Upload *file* to temporary storage for use as a job input.

        The stored path is read from the response; when the response
        omits it the conventional temp-resource path is returned.

        Raises:
            FmeFlowApiError: ``DATA_UPLOAD_ERROR``.
        """
        if signal is not None and signal.cancelled:
            return ApiResponse.aborted_response()
        target_workspace = (workspace or "").strip()
        if not target_workspace:
            raise make_flow_error(DATA_UPLOAD_ERROR)

        content, name, content_type = await _read_upload(file)
        safe_name = sanitize_upload_name(name)
        namespace = sanitize_namespace(subfolder)
        target = self._resolve_repository(repository)
        url = build_url(
            normalize_server_base(self._config.server_url), SERVICE_DATA_UPLOAD, target, target_workspace, safe_name
        )
        response = await self._call(
            DATA_UPLOAD_ERROR,
            url,
            method="POST",
            query={"opt_fullpath": "true", "opt_responseformat": "json", "opt_namespace": namespace},
            headers={"Content-Type": content_type},
            body=content,
            signal=signal,
            transport_name="fme-upload",
        )
        if response.aborted:
            return response

        path = resolve_upload_path(response.data) or f"{TEMP_RESOURCE_ROOT}/{SERVICE_DATA_UPLOAD}/{namespace}/{safe_name}"
        logger.info("Upload stored | name=%s | bytes=%d | path=%s", safe_name, len(content), path)
        return ApiResponse(
            UploadResult(path=path, name=safe_name, size=len(content)), response.status, response.status_text
        )

    async def custom_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        *,
        content_type: str | None = None,
        signal: CancelToken | None = None,
    ) -> ApiResponse[Any]:
        """Call any REST endpoint relative to the REST root."""
        headers = {"Content-Type": content_type} if content_type else None
        return await self._call(
            CUSTOM_REQUEST_ERROR,
            endpoint.lstrip("/"),
            method=method.upper(),
            query=build_params(params),
            body=body,
            headers=headers,
            signal=signal,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_fme_flow_client(config: ClientConfig | Mapping[str, Any], **kwargs: Any) -> FmeFlowApiClient:
    """Build a client from a ``ClientConfig`` or an alias-keyed mapping.

    Raises:
        FmeFlowApiError: ``INVALID_CONFIG`` when a required field is missing.
    """
    if isinstance(config, Mapping):
        try:
            config = ClientConfig.from_mapping(config)
        except ConfigValidationError as exc:
            raise FmeFlowApiError(INVALID_CONFIG, "startupConfigError", 0) from exc
    return FmeFlowApiClient(config, **kwargs)


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def parse_webhook_response(response: TransportResponse) -> ApiResponse[Any]:
    """Validate a webhook response.

    A non-JSON content type means the server answered with a page (for
    example a sign-in page) instead of the service result, which is an
    authentication problem.  A JSON content type with a body that is not
    a JSON object or array is ``WEBHOOK_NON_JSON``.
    """
    status = response.status
    if status in (401, 403):
        raise FmeFlowApiError(WEBHOOK_AUTH_ERROR, "startupTokenError", status)
    content_type = response.content_type.lower()
    if content_type and "json" not in content_type:
        raise FmeFlowApiError(WEBHOOK_AUTH_ERROR, "startupTokenError", status)
    if not isinstance(response.data, (dict, list)):
        raise FmeFlowApiError(WEBHOOK_NON_JSON, "startupTokenError", status)
    return ApiResponse(data=response.data, status=status, status_text=response.status_text)


def resolve_upload_path(data: Any) -> str | None:
    """Find the stored file path in the known upload response shapes."""
    if not isinstance(data, Mapping):
        return None
    candidates: list[Any] = []
    file_info = data.get("file")
    if isinstance(file_info, Mapping):
        candidates.append(file_info.get("path"))
    candidates.append(data.get("path"))
    files = data.get("files")
    if isinstance(files, list) and files and isinstance(files[0], Mapping):
        candidates.append(files[0].get("path"))
    service = data.get("serviceResponse")
    if isinstance(service, Mapping) and isinstance(service.get("files"), Mapping):
        service_files = service["files"]
        entries = service_files.get("file")
        if isinstance(entries, list) and entries and isinstance(entries[0], Mapping):
            candidates.append(entries[0].get("path"))
        candidates.append(service_files.get("path"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _typed(response: ApiResponse[Any], model: type[Any]) -> ApiResponse[Any]:
    if response.aborted:
        return response
    parsed = parse_model(model, response.data)
    if parsed is None:
        raise FmeFlowApiError(INVALID_RESPONSE_FORMAT, "startupTokenError", response.status)
    return ApiResponse(parsed, response.status, response.status_text)


def _transport_failure(exc: Exception, correlation_id: str) -> FmeFlowApiError:
    if getattr(exc, "timed_out", False):
        return FmeFlowApiError(REQUEST_TIMEOUT, "timeout", 408, correlation_id=correlation_id)
    status = exc.status if isinstance(exc, TransportError) else extract_http_status(exc)
    code = INVALID_RESPONSE_FORMAT if isinstance(exc, json.JSONDecodeError) else REQUEST_FAILED
    return FmeFlowApiError(code, map_error_to_key(exc, status, code=code), status, correlation_id=correlation_id)


def _webhook_failure(exc: FmeFlowApiError, code: str) -> FmeFlowApiError:
    if exc.status in (401, 403):
        return FmeFlowApiError(WEBHOOK_AUTH_ERROR, "startupTokenError", exc.status)
    if exc.code in PASSTHROUGH_CODES or exc.code == INVALID_RESPONSE_FORMAT:
        return exc
    return make_flow_error(code, exc.status or 0)


def _checked_config(config: ClientConfig) -> ClientConfig:
    try:
        return validate_client_config(config)
    except ConfigValidationError as exc:
        raise FmeFlowApiError(INVALID_CONFIG, "startupConfigError", 0) from exc


def _explicitly_set(value: Any) -> bool:
    if value is None:
        return False
    return not (isinstance(value, str) and not value.strip())


def _disposition_file_name(headers: Mapping[str, str]) -> str:
    for key, value in headers.items():
        if key.lower() == "content-disposition":
            match = _FILENAME_IN_DISPOSITION.search(value)
            return match.group(1).strip() if match else ""
    return ""


async def _read_upload(file: Any) -> tuple[bytes, str, str]:
    """Return ``(content, name, content_type)`` for bytes, paths or file objects."""
    if isinstance(file, (bytes, bytearray)):
        return bytes(file), "", "application/octet-stream"
    if isinstance(file, Path):
        content = await asyncio.to_thread(file.read_bytes)
        name = file.name
    elif hasattr(file, "read"):
        raw = await asyncio.to_thread(file.read)
        content = raw.encode() if isinstance(raw, str) else bytes(raw)
        name = file_name_of(file)
    else:
        msg = f"Unsupported upload type: {type(file).__name__}"
        raise TypeError(msg)
    content_type = mimetypes.guess_type(name)[0] if name else None
    return content, name, content_type or "application/octet-stream"
