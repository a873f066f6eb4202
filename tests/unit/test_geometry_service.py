"""Tests for the remote geometry service client.

HTTP is served by ``httpx.MockTransport`` so request encoding and error
handling are checked without a network.

Covers:
- areasAndLengths form encoding (sr, polygons, units, token)
- Failures classified as unavailable (retryable), rejected or malformed
- geodesic_area() returns the first area or None
"""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from fme_export.geometry.service import (
    AreasAndLengthsParameters,
    GeometryServiceClient,
    GeometryServiceRejectedError,
    GeometryServiceResponseError,
    GeometryServiceUnavailableError,
)
from fme_export.models.geometry import Polygon

_URL = "https://geo.example.com/arcgis/rest/services/Utilities/Geometry/GeometryServer"


def _client(handler: object, token: str = "") -> GeometryServiceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))  # type: ignore[arg-type]
    return GeometryServiceClient(_URL + "/", token=token, client=http)


class TestAreasAndLengthsParameters:
    def test_to_form(self, mercator_rectangle: Polygon) -> None:
        form = AreasAndLengthsParameters(
            polygons=[mercator_rectangle], spatial_reference=mercator_rectangle.spatial_reference
        ).to_form()
        assert form["f"] == "json"
        assert json.loads(form["sr"]) == {"wkid": 102100, "latestWkid": 3857}
        assert json.loads(form["polygons"])[0]["rings"][0][2] == [10.0, 5.0]
        assert json.loads(form["areaUnit"]) == {"areaUnit": "esriSquareMeters"}
        assert form["lengthUnit"] == "9001"
        assert form["calculationType"] == "geodesic"


class TestGeometryServiceClient:
    @pytest.mark.asyncio()
    async def test_geodesic_area(self, wgs84_square: Polygon) -> None:
        seen: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"areas": [1234.5], "lengths": [4400.0]})

        service = _client(handler, token="geo-token")
        assert await service.geodesic_area(wgs84_square) == 1234.5
        assert seen["url"] == f"{_URL}/areasAndLengths"
        form = seen["form"]
        assert isinstance(form, dict)
        assert form["token"] == ["geo-token"]
        assert form["calculationType"] == ["geodesic"]
        await service.aclose()

    @pytest.mark.asyncio()
    async def test_empty_areas(self, wgs84_square: Polygon) -> None:
        service = _client(lambda request: httpx.Response(200, json={"areas": []}))
        assert await service.geodesic_area(wgs84_square) is None

    @pytest.mark.asyncio()
    async def test_error_payload(self, wgs84_square: Polygon) -> None:
        payload = {"error": {"code": 498, "message": "Invalid token"}}
        service = _client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(GeometryServiceRejectedError, match="Invalid token") as exc_info:
            await service.geodesic_area(wgs84_square)
        assert exc_info.value.status == 498
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio()
    async def test_http_error(self, wgs84_square: Polygon) -> None:
        service = _client(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(GeometryServiceUnavailableError) as exc_info:
            await service.geodesic_area(wgs84_square)
        assert exc_info.value.status == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio()
    async def test_client_error_status(self, wgs84_square: Polygon) -> None:
        service = _client(lambda request: httpx.Response(400, text="bad request"))
        with pytest.raises(GeometryServiceRejectedError) as exc_info:
            await service.geodesic_area(wgs84_square)
        assert exc_info.value.category == "permanent"

    @pytest.mark.asyncio()
    async def test_non_json(self, wgs84_square: Polygon) -> None:
        service = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GeometryServiceResponseError, match="non-JSON") as exc_info:
            await service.geodesic_area(wgs84_square)
        assert exc_info.value.category == "contract"

    @pytest.mark.asyncio()
    async def test_non_object_payload(self, wgs84_square: Polygon) -> None:
        service = _client(lambda request: httpx.Response(200, json=[1.0]))
        with pytest.raises(GeometryServiceResponseError):
            await service.geodesic_area(wgs84_square)

    @pytest.mark.asyncio()
    async def test_network_error(self, wgs84_square: Polygon) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        service = _client(handler)
        with pytest.raises(GeometryServiceUnavailableError):
            await service.geodesic_area(wgs84_square)
