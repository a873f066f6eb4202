"""Geometry models for the area of interest.

A ``Polygon`` is the drawn AOI: a list of rings (outer ring first, then
holes) in an associated spatial reference.  The model does not enforce
ring closure or finiteness; the AOI pipeline validates those before the
polygon is used in a job.

Native JSON follows the Esri polygon layout
(``{"rings": [...], "spatialReference": {"wkid": ...}}``) because that is
what the FME Flow AOI parameter receives.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from fme_export.core.constants import WEB_MERCATOR_WKIDS, WKID_WEB_MERCATOR, WKID_WGS84

Coordinate = tuple[float, ...]
Ring = list[Coordinate]


@dataclass(frozen=True, slots=True)
class SpatialReference:
    """Spatial reference of a geometry.

    Attributes:
        wkid: Well-known id (e.g. 4326, 102100).
        latest_wkid: Latest well-known id, when the source reports one.
        wkt: Well-known text definition for custom references.
        geographic: Explicit flag that coordinates are WGS 84 lon/lat.
    """

    wkid: int | None = None
    latest_wkid: int | None = None
    wkt: str = ""
    geographic: bool = False

    @property
    def is_wgs84(self) -> bool:
        return self.geographic or WKID_WGS84 in (self.wkid, self.latest_wkid)

    @property
    def is_web_mercator(self) -> bool:
        return self.wkid in WEB_MERCATOR_WKIDS or self.latest_wkid in WEB_MERCATOR_WKIDS

    @property
    def epsg(self) -> int | None:
        """EPSG code usable by pyproj (Esri 102100 maps to 3857)."""
        if self.is_web_mercator:
            return WKID_WEB_MERCATOR
        return self.latest_wkid or self.wkid

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {}
        if self.wkid is not None:
            out["wkid"] = self.wkid
        if self.latest_wkid is not None:
            out["latestWkid"] = self.latest_wkid
        if self.wkt:
            out["wkt"] = self.wkt
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> SpatialReference:
        """Deserialise from an Esri ``spatialReference`` object.

        A missing reference means WGS 84.
        """
        if not data:
            return WGS84
        return cls(
            wkid=_optional_int(data.get("wkid")),
            latest_wkid=_optional_int(data.get("latestWkid")),
            wkt=str(data.get("wkt") or ""),
            geographic=bool(data.get("isWGS84") or data.get("isGeographic")),
        )


WGS84 = SpatialReference(wkid=WKID_WGS84)
WEB_MERCATOR = SpatialReference(wkid=102100, latest_wkid=WKID_WEB_MERCATOR)


@dataclass(frozen=True, slots=True)
class Extent:
    """Bounding box of a geometry in its own spatial reference."""

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    def to_geojson(self) -> dict[str, object]:
        """Return the extent as a closed GeoJSON polygon."""
        return {
            "type": "Polygon",
            "coordinates": [
                [
                    [self.xmin, self.ymin],
                    [self.xmax, self.ymin],
                    [self.xmax, self.ymax],
                    [self.xmin, self.ymax],
                    [self.xmin, self.ymin],
                ]
            ],
        }


@dataclass(frozen=True, slots=True)
class Polygon:
    """An AOI polygon.

    Attributes:
        rings: Outer ring followed by holes; each ring is a list of
            ``(x, y[, z])`` tuples.
        spatial_reference: Reference the coordinates are expressed in.
    """

    rings: list[Ring] = field(default_factory=list)
    spatial_reference: SpatialReference = WGS84

    @property
    def extent(self) -> Extent | None:
        """Bounding box of all finite coordinates, or ``None`` if there are none."""
        xs: list[float] = []
        ys: list[float] = []
        for ring in self.rings:
            for coord in ring:
                if len(coord) >= 2 and math.isfinite(coord[0]) and math.isfinite(coord[1]):
                    xs.append(coord[0])
                    ys.append(coord[1])
        if not xs:
            return None
        return Extent(min(xs), min(ys), max(xs), max(ys))

    def with_rings(self, rings: list[Ring], spatial_reference: SpatialReference | None = None) -> Polygon:
        return Polygon(rings=rings, spatial_reference=spatial_reference or self.spatial_reference)

    def to_json(self) -> dict[str, object]:
        """Serialise to Esri polygon JSON."""
        return {
            "rings": [[list(coord) for coord in ring] for ring in self.rings],
            "spatialReference": self.spatial_reference.to_dict(),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> Polygon:
        """Deserialise from Esri polygon JSON or a GeoJSON ``Polygon``.

        Raises:
            TypeError: If rings or coordinates have unexpected types.
        """
        if isinstance(data.get("geometry"), Mapping):
            data = data["geometry"]

        if "coordinates" in data and str(data.get("type", "")).lower() == "polygon":
            rings_raw = data.get("coordinates")
            spatial_reference = WGS84
        else:
            rings_raw = data.get("rings")
            spatial_reference = SpatialReference.from_dict(data.get("spatialReference"))

        if not isinstance(rings_raw, list):
            msg = f"rings must be a list, got {type(rings_raw).__name__}"
            raise TypeError(msg)

        return cls(
            rings=[_parse_ring(ring) for ring in rings_raw],
            spatial_reference=spatial_reference,
        )


@dataclass(frozen=True, slots=True)
class AoiRepresentations:
    """Best-effort serializations of one AOI polygon.

    Attributes:
        geojson: GeoJSON ``Polygon`` or ``None`` if no ring survived.
        wkt: WKT ``POLYGON`` text (``POLYGON EMPTY`` on failure).
        native_json: Esri polygon JSON with the spatial reference used.
        errors: Serialization failures keyed by format name.
    """

    geojson: dict[str, object] | None = None
    wkt: str = "POLYGON EMPTY"
    native_json: dict[str, object] | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def coerce_polygon(value: object) -> Polygon | None:
    """Return *value* as a ``Polygon`` if it is polygon-shaped, else ``None``."""
    if isinstance(value, Polygon):
        return value
    if not isinstance(value, Mapping):
        return None

    candidate: Mapping[str, Any] = value
    if isinstance(candidate.get("geometry"), Mapping):
        candidate = candidate["geometry"]

    declared = str(candidate.get("type", "")).lower()
    if declared and declared not in ("polygon", "esrigeometrypolygon"):
        return None
    if "rings" not in candidate and "coordinates" not in candidate:
        return None
    if "coordinates" in candidate and declared != "polygon":
        return None
    try:
        return Polygon.from_json(candidate)
    except (TypeError, ValueError):
        return None


def _parse_ring(raw: object) -> Ring:
    if not isinstance(raw, Sequence) or isinstance(raw, str):
        msg = f"ring must be a list, got {type(raw).__name__}"
        raise TypeError(msg)
    ring: Ring = []
    for coord in raw:
        if not isinstance(coord, Sequence) or isinstance(coord, str) or len(coord) < 2:
            msg = f"coordinate must be a list of at least 2 numbers, got {coord!r}"
            raise TypeError(msg)
        try:
            ring.append(tuple(float(v) for v in coord))
        except (TypeError, ValueError) as exc:
            msg = f"coordinate values must be numeric, got {coord!r}"
            raise TypeError(msg) from exc
    return ring


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None
