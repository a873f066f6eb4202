"""HTTP transport used by the client.

The client depends only on the ``Transport`` call signature
``(url, options) -> TransportResponse``; ``HttpxTransport`` is the
default implementation on ``httpx.AsyncClient``.  Tests and embedders can
inject any coroutine function with the same signature.

The transport applies the shared ``RequestConfig`` interceptors before
sending, so per-host token authentication reaches every request made
through it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from fme_export.api.cancellation import CancelToken
    from fme_export.api.registry import RequestConfig

logger = logging.getLogger("fme_export.api.transport")


@dataclass(slots=True)
class RequestOptions:
    """Options for one transport call.

    Attributes:
        method: HTTP method.
        headers: Request headers.
        query: Query parameters merged into the URL.
        body: JSON-serializable object, ``bytes``/``str`` content, or a
            readable file object.
        form: Form fields sent ``application/x-www-form-urlencoded``.
        response_type: ``"json"``, ``"blob"`` or ``"text"``.
        timeout: Seconds before the transport gives up.
        signal: Cancellation token for the call.
    """

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None
    form: dict[str, str] | None = None
    response_type: str = "json"
    timeout: float | None = None
    signal: CancelToken | None = None


@dataclass(frozen=True, slots=True)
class TransportResponse:
    data: Any
    status: int
    status_text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


class TransportError(Exception):
    """Raised by a transport for HTTP error statuses and network failures.

    Attributes:
        status: HTTP status (``0`` when no response was received).
        data: Decoded error body, if any.
        timed_out: ``True`` when the transport's own timeout elapsed.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        data: Any = None,
        headers: Mapping[str, str] | None = None,
        timed_out: bool = False,
    ) -> None:
        self.status = status
        self.data = data
        self.headers = dict(headers or {})
        self.timed_out = timed_out
        super().__init__(message)


Transport = Callable[[str, RequestOptions], Awaitable[TransportResponse]]


class HttpxTransport:
    """``Transport`` backed by a lazily created ``httpx.AsyncClient``.

    The owned client has no default timeout; a request is bounded only by
    ``RequestOptions.timeout``.
    """

    def __init__(
        self,
        request_config: RequestConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        follow_redirects: bool = True,
    ) -> None:
        self.request_config = request_config
        self._client = client
        self._owns_client = client is None
        self._follow_redirects = follow_redirects

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=self._follow_redirects, timeout=None)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __call__(self, url: str, options: RequestOptions) -> TransportResponse:
        headers = dict(options.headers)
        query = dict(options.query)
        if self.request_config is not None:
            self.request_config.intercept(url, headers, query)

        kwargs: dict[str, Any] = {}
        if options.form is not None:
            kwargs["data"] = options.form
        elif isinstance(options.body, (bytes, bytearray, str)):
            kwargs["content"] = options.body
        elif hasattr(options.body, "read"):
            kwargs["content"] = options.body.read()
        elif options.body is not None:
            kwargs["json"] = options.body

        timeout = options.timeout if options.timeout is not None else httpx.USE_CLIENT_DEFAULT
        try:
            response = await self.client.request(
                options.method,
                url,
                params=query or None,
                headers=headers,
                timeout=timeout,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            msg = f"Request timed out: {exc}"
            raise TransportError(msg, status=408, timed_out=True) from exc
        except httpx.HTTPError as exc:
            msg = f"Request failed: {exc}"
            raise TransportError(msg, status=0) from exc

        data, text = _decode(response, options.response_type)
        response_headers = dict(response.headers)
        if response.is_error:
            msg = f"HTTP status: {response.status_code}"
            raise TransportError(msg, status=response.status_code, data=data, headers=response_headers)

        return TransportResponse(
            data=data,
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=response_headers,
            text=text,
        )


def _decode(response: httpx.Response, response_type: str) -> tuple[Any, str]:
    if response_type == "blob":
        return response.content, ""
    text = response.text
    if response_type == "text":
        return text, text
    if not response.content:
        return None, ""
    try:
        return response.json(), text
    except ValueError:
        logger.debug("Response is not JSON | status=%d | length=%d", response.status_code, len(text))
        return None, text
