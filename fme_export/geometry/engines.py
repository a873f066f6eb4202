"""Geometry capability set consumed by the AOI pipeline.

The pipeline never loads geometry libraries itself.  It receives a
``GeometryEngines`` object whose fields are optional capabilities and
degrades when a capability is ``None``.  ``default_engines()`` builds a
capability set from pyproj (geodesic area, reprojection) and shapely
(planar area, simplify, simplicity, containment).

Capabilities on ``GeometryEngines.engine_async`` may return awaitables;
callers resolve them with ``resolve()``.

References:
    pyproj.Geod.polygon_area_perimeter  (ellipsoidal area, WGS 84)
    shapely.validation.make_valid       (topology repair)
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from fme_export.core.constants import WKID_WEB_MERCATOR, WKID_WGS84
from fme_export.models.geometry import WGS84, Polygon, Ring, SpatialReference

if TYPE_CHECKING:
    from fme_export.geometry.service import GeometryServiceClient

T = TypeVar("T")

AreaFn = Callable[[Polygon], float | Awaitable[float]]
PolygonFn = Callable[[Polygon], Polygon | None | Awaitable[Polygon | None]]
PredicateFn = Callable[[Polygon], bool | Awaitable[bool]]
ContainsFn = Callable[[Polygon, Polygon], bool | Awaitable[bool]]
ProjectFn = Callable[[Polygon, SpatialReference], Polygon | list[Polygon] | None]
NormalizeFn = Callable[[list[Polygon]], list[Polygon] | Awaitable[list[Polygon]]]

@dataclass(frozen=True, slots=True)
class GeometryEngine:
    """One geometry engine; any operation may be missing."""

    geodesic_area: AreaFn | None = None
    planar_area: AreaFn | None = None
    simplify: PolygonFn | None = None
    is_simple: PredicateFn | None = None
    contains: ContainsFn | None = None


@dataclass(frozen=True, slots=True)
class GeometryEngines:
    """Capability set injected into the AOI pipeline.

    Attributes:
        engine_async: Preferred engine; operations may be coroutines.
        engine: Synchronous engine variant, tried after the async one.
        project: Projects a polygon to a target reference.
        web_mercator_to_geographic: Web-Mercator-only conversion helper.
        normalize_central_meridian: Unwraps polygons crossing the antimeridian.
        geometry_service: Remote ``areasAndLengths`` fallback.
    """

    engine_async: GeometryEngine | None = None
    engine: GeometryEngine | None = None
    project: ProjectFn | None = None
    web_mercator_to_geographic: Callable[[Polygon], Polygon | None] | None = None
    normalize_central_meridian: NormalizeFn | None = None
    geometry_service: GeometryServiceClient | None = None

    @property
    def has_engine(self) -> bool:
        return self.engine_async is not None or self.engine is not None

    def first(self, capability: str) -> Callable[..., Any] | None:
        """Return *capability* from the async engine, else the sync engine."""
        for engine in (self.engine_async, self.engine):
            if engine is not None and getattr(engine, capability) is not None:
                return getattr(engine, capability)
        return None


NO_ENGINES = GeometryEngines()


async def resolve(value: T | Awaitable[T]) -> T:
    """Await *value* if it is awaitable, else return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Default pyproj / shapely implementations
# ---------------------------------------------------------------------------


def to_shapely(polygon: Polygon) -> Any:
    """Build a shapely polygon from the finite 2D coordinates of *polygon*."""
    from shapely.geometry import Polygon as ShapelyPolygon

    rings = [[(c[0], c[1]) for c in ring if _finite_xy(c)] for ring in polygon.rings]
    if not rings or len(rings[0]) < 3:
        return ShapelyPolygon()
    holes = [ring for ring in rings[1:] if len(ring) >= 3]
    return ShapelyPolygon(rings[0], holes=holes or None)


def from_shapely(shape: Any, spatial_reference: SpatialReference) -> Polygon | None:
    """Convert a shapely ``Polygon`` back to the model; other types yield ``None``."""
    if shape is None or shape.is_empty or shape.geom_type != "Polygon":
        return None
    rings: list[Ring] = [[(float(x), float(y)) for x, y, *_ in shape.exterior.coords]]
    rings.extend([(float(x), float(y)) for x, y, *_ in interior.coords] for interior in shape.interiors)
    return Polygon(rings=rings, spatial_reference=spatial_reference)


def geodesic_area_m2(polygon: Polygon) -> float:
    """Ellipsoidal area in square metres, holes subtracted.

    Web Mercator input is converted to lon/lat first; other projected
    references raise ``ValueError`` so the caller falls through to a
    planar measurement.
    """
    if polygon.spatial_reference.is_web_mercator:
        polygon = web_mercator_to_geographic(polygon)
    elif not polygon.spatial_reference.is_wgs84:
        msg = f"geodesic area needs geographic coordinates, got wkid={polygon.spatial_reference.wkid}"
        raise ValueError(msg)

    from pyproj import Geod

    geod = Geod(ellps="WGS84")
    total = 0.0
    for index, ring in enumerate(polygon.rings):
        coords = [c for c in ring if _finite_xy(c)]
        if len(coords) < 3:
            continue
        area, _perimeter = geod.polygon_area_perimeter([c[0] for c in coords], [c[1] for c in coords])
        total += abs(area) if index == 0 else -abs(area)
    return abs(total)


def planar_area(polygon: Polygon) -> float:
    """Planar area in the polygon's own units (square metres when projected)."""
    return float(to_shapely(polygon).area)


def simplify(polygon: Polygon) -> Polygon | None:
    """Repair topology with ``make_valid``; ``None`` if the result is not one polygon."""
    from shapely.validation import make_valid

    shape = to_shapely(polygon)
    if shape.is_empty:
        return None
    if not shape.is_valid:
        shape = make_valid(shape)
    return from_shapely(shape, polygon.spatial_reference)


def is_simple(polygon: Polygon) -> bool:
    shape = to_shapely(polygon)
    return bool(not shape.is_empty and shape.is_valid)


def contains(outer: Polygon, inner: Polygon) -> bool:
    return bool(to_shapely(outer).contains(to_shapely(inner)))


@functools.lru_cache(maxsize=16)
def _transformer(source_epsg: int, target_epsg: int) -> Any:
    from pyproj import Transformer

    return Transformer.from_crs(f"EPSG:{source_epsg}", f"EPSG:{target_epsg}", always_xy=True)


def _transform_rings(polygon: Polygon, transformer: Any, target: SpatialReference) -> Polygon:
    rings: list[Ring] = []
    for ring in polygon.rings:
        projected: Ring = []
        for coord in ring:
            x, y = transformer.transform(coord[0], coord[1])
            projected.append((float(x), float(y), *coord[2:]))
        rings.append(projected)
    return Polygon(rings=rings, spatial_reference=target)


def project(polygon: Polygon, target: SpatialReference) -> Polygon | None:
    """Reproject every ring with a pyproj ``Transformer``."""
    source_epsg = polygon.spatial_reference.epsg
    target_epsg = target.epsg or WKID_WGS84
    if source_epsg is None:
        return None
    return _transform_rings(polygon, _transformer(source_epsg, target_epsg), target)


def web_mercator_to_geographic(polygon: Polygon) -> Polygon:
    """Convert Web Mercator rings to WGS 84 lon/lat."""
    return _transform_rings(polygon, _transformer(WKID_WEB_MERCATOR, WKID_WGS84), WGS84)


def normalize_central_meridian(polygons: list[Polygon]) -> list[Polygon]:
    """Unwrap geographic rings that jump across the antimeridian.

    Longitudes that differ from the previous vertex by more than 180
    degrees are shifted by 360 so the ring stays continuous.
    """
    normalized: list[Polygon] = []
    for polygon in polygons:
        if not polygon.spatial_reference.is_wgs84:
            normalized.append(polygon)
            continue
        rings: list[Ring] = []
        for ring in polygon.rings:
            unwrapped: Ring = []
            offset = 0.0
            previous: float | None = None
            for coord in ring:
                lon = coord[0]
                if previous is not None and math.isfinite(lon) and math.isfinite(previous):
                    delta = lon - previous
                    if delta > 180:
                        offset -= 360
                    elif delta < -180:
                        offset += 360
                if math.isfinite(lon):
                    previous = lon
                unwrapped.append((lon + offset, *coord[1:]))
            rings.append(unwrapped)
        normalized.append(polygon.with_rings(rings))
    return normalized


def _threaded(fn: Callable[..., T]) -> Callable[..., Awaitable[T]]:
    async def runner(*args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    runner.__name__ = fn.__name__
    return runner


def default_engines(geometry_service_url: str = "") -> GeometryEngines:
    """Build the pyproj/shapely capability set.

    The async engine runs the same functions in a worker thread.  A
    geometry service client is attached only when a URL is given.
    """
    engine = GeometryEngine(
        geodesic_area=geodesic_area_m2,
        planar_area=planar_area,
        simplify=simplify,
        is_simple=is_simple,
        contains=contains,
    )
    engine_async = GeometryEngine(
        geodesic_area=_threaded(geodesic_area_m2),
        planar_area=_threaded(planar_area),
        simplify=_threaded(simplify),
        is_simple=_threaded(is_simple),
        contains=_threaded(contains),
    )

    service = None
    if geometry_service_url:
        from fme_export.geometry.service import GeometryServiceClient

        service = GeometryServiceClient(geometry_service_url)

    return GeometryEngines(
        engine_async=engine_async,
        engine=engine,
        project=project,
        web_mercator_to_geographic=web_mercator_to_geographic,
        normalize_central_meridian=normalize_central_meridian,
        geometry_service=service,
    )


def _finite_xy(coord: tuple[float, ...]) -> bool:
    return len(coord) >= 2 and math.isfinite(coord[0]) and math.isfinite(coord[1])
