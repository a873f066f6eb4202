"""Remote geometry service client.

Last-resort area measurement: posts the polygon to an ArcGIS geometry
service ``areasAndLengths`` operation and reads back geodesic areas in
square metres.  Used only when no local engine produced a value.

References:
    ArcGIS REST API, Geometry Service: Areas and Lengths
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

import httpx

from fme_export.core.exceptions import ContractError, FmeExportError, PermanentError, TransientError
from fme_export.models.geometry import Polygon, SpatialReference

logger = logging.getLogger("fme_export.geometry.service")

DEFAULT_TIMEOUT_S = 30.0


class GeometryServiceError(FmeExportError):
    """Base for geometry service failures."""

    default_stage = "geometry_service"
    default_code = "GEOMETRY_SERVICE_ERROR"


class GeometryServiceUnavailableError(GeometryServiceError, TransientError):
    """Network failure, throttling or a 5xx status; may succeed on retry."""


class GeometryServiceRejectedError(GeometryServiceError, PermanentError):
    """The service refused the request (4xx status or an ``error`` payload)."""


class GeometryServiceResponseError(GeometryServiceError, ContractError):
    """The response body is not a JSON object."""


@dataclass(frozen=True, slots=True)
class AreasAndLengthsParameters:
    """Request parameters for ``areasAndLengths``."""

    polygons: list[Polygon]
    spatial_reference: SpatialReference
    area_unit: str = "esriSquareMeters"
    length_unit: int = 9001
    calculation_type: str = "geodesic"
    extra: dict[str, str] = field(default_factory=dict)

    def to_form(self) -> dict[str, str]:
        """Encode as form fields (``f=json``)."""
        form = {
            "f": "json",
            "sr": json.dumps(self.spatial_reference.to_dict() or {"wkid": 4326}),
            "polygons": json.dumps([{"rings": p.to_json()["rings"]} for p in self.polygons]),
            "areaUnit": json.dumps({"areaUnit": self.area_unit}),
            "lengthUnit": str(self.length_unit),
            "calculationType": self.calculation_type,
        }
        form.update(self.extra)
        return form


class GeometryServiceClient:
    """Async client for one geometry service endpoint."""

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        timeout: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def areas_and_lengths(self, params: AreasAndLengthsParameters) -> list[float]:
        """Return the ``areas`` array for *params*.

        Raises:
            GeometryServiceUnavailableError: Network failure, 408, 429 or 5xx.
            GeometryServiceRejectedError: Other 4xx, or an ``error`` payload
                with such a code.
            GeometryServiceResponseError: Body that is not a JSON object.
        """
        form = params.to_form()
        if self._token:
            form["token"] = self._token

        endpoint = f"{self.url}/areasAndLengths"
        try:
            response = await self.client.post(endpoint, data=form)
        except httpx.HTTPError as exc:
            msg = f"Geometry service request failed: {exc}"
            raise GeometryServiceUnavailableError(msg) from exc

        status = response.status_code
        if response.is_error:
            msg = f"Geometry service returned HTTP {status}"
            raise _status_error(msg, status)
        try:
            payload = response.json()
        except ValueError as exc:
            msg = "Geometry service returned a non-JSON body"
            raise GeometryServiceResponseError(msg, status=status) from exc

        if not isinstance(payload, dict):
            msg = "Geometry service returned a non-object payload"
            raise GeometryServiceResponseError(msg, status=status)
        if "error" in payload:
            error = payload.get("error")
            if not isinstance(error, dict):
                error = {"message": str(error)}
            msg = f"Geometry service error: {error.get('message', 'unknown')}"
            code = error.get("code")
            raise _status_error(msg, code if isinstance(code, int) else None)

        areas = payload.get("areas")
        if not isinstance(areas, list):
            return []
        logger.debug("Geometry service areas | url=%s | count=%d", self.url, len(areas))
        return [float(a) for a in areas if isinstance(a, (int, float))]

    async def geodesic_area(self, polygon: Polygon) -> float | None:
        """Return the first geodesic area for *polygon*, or ``None`` if empty."""
        areas = await self.areas_and_lengths(
            AreasAndLengthsParameters(polygons=[polygon], spatial_reference=polygon.spatial_reference)
        )
        return areas[0] if areas else None


def _status_error(message: str, status: int | None) -> GeometryServiceError:
    """Classify a failure status: 408, 429 and 5xx are retryable."""
    if status is None or status in (408, 429) or status >= 500:
        return GeometryServiceUnavailableError(message, status=status)
    return GeometryServiceRejectedError(message, status=status)
