"""AOI geometry pipeline.

Turns a drawn polygon into FME job parameters:

1. ``reproject_to_wgs84``: project to geographic coordinates when an
   engine can, otherwise keep the input.
2. ``validate_polygon``: ring structure, topology and area checks.
3. ``compute_area``: ranked measurement strategies, first positive wins.
4. ``serialize_polygon``: GeoJSON, WKT and native JSON, each best-effort.
5. ``build_geometry_params``: extent, area and AOI parameters for a job.

Reprojection, single measurement tiers and single serialization formats
never abort a job submission: they fall through to the next strategy or
return a sentinel (``0`` area, ``None`` GeoJSON, ``POLYGON EMPTY``).

References:
    RFC 7946 (GeoJSON), OGC 06-103r4 (WKT)
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from fme_export.core.config import AoiSettings
from fme_export.core.constants import (
    AOI_ERROR_MARKER,
    AREA_PARAM_KEY,
    COORDINATE_TOLERANCE,
    EXTENT_GEOJSON_PARAM_KEY,
    WKT_DECIMALS,
)
from fme_export.core.exceptions import ValidationError
from fme_export.geometry.engines import NO_ENGINES, AreaFn, GeometryEngines, resolve
from fme_export.models.geometry import (
    WGS84,
    AoiRepresentations,
    Coordinate,
    Polygon,
    Ring,
    coerce_polygon,
)

logger = logging.getLogger("fme_export.geometry.aoi")

# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

NO_GEOMETRY = "NO_GEOMETRY"
INVALID_GEOMETRY_TYPE = "INVALID_GEOMETRY_TYPE"
GEOMETRY_INVALID = "GEOMETRY_INVALID"
GEOMETRY_VALIDATION_ERROR = "GEOMETRY_VALIDATION_ERROR"
GEOMETRY_SERIALIZATION_FAILED = "GEOMETRY_SERIALIZATION_FAILED"
AREA_TOO_LARGE = "AREA_TOO_LARGE"

MIN_RING_COORDS = 4


class GeometryError(ValidationError):
    """Raised when an AOI cannot be used for a job."""

    default_stage = "aoi"
    default_code = GEOMETRY_INVALID


# ---------------------------------------------------------------------------
# Reprojection
# ---------------------------------------------------------------------------


def reproject_to_wgs84(geometry: Any, engines: GeometryEngines | None = None) -> Any:
    """Return *geometry* in WGS 84 if an engine can project it.

    Geographic input is returned as-is without touching any engine.
    Tries the projection capability first, then the web-Mercator helper;
    when neither is available or both fail the input is returned
    unchanged.  Never raises.
    """
    engines = engines or NO_ENGINES
    polygon = coerce_polygon(geometry)
    if polygon is None:
        return geometry
    if polygon.spatial_reference.is_wgs84:
        return geometry if isinstance(geometry, Polygon) else polygon

    if engines.project is not None:
        try:
            candidate = _first_polygon(engines.project(polygon, WGS84))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Projection failed | wkid=%s | error=%s", polygon.spatial_reference.wkid, exc)
        else:
            if candidate is not None:
                return candidate

    if engines.web_mercator_to_geographic is not None and polygon.spatial_reference.is_web_mercator:
        try:
            candidate = _first_polygon(engines.web_mercator_to_geographic(polygon))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Web Mercator conversion failed | error=%s", exc)
        else:
            if candidate is not None:
                return candidate

    logger.debug("Reprojection unavailable | wkid=%s", polygon.spatial_reference.wkid)
    return polygon


def _first_polygon(result: object) -> Polygon | None:
    if isinstance(result, list):
        result = result[0] if result else None
    if not isinstance(result, Polygon) or not result.rings:
        return None
    if not result.spatial_reference.is_wgs84:
        return result.with_rings(result.rings, WGS84)
    return result


# ---------------------------------------------------------------------------
# Area
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AreaStrategy:
    """One ranked way of measuring a polygon; ``None`` means no value."""

    name: str
    measure: Callable[[Polygon], Awaitable[float | None]]


def area_strategies(engines: GeometryEngines) -> list[AreaStrategy]:
    """Return the measurement strategies available in *engines*, best first."""
    strategies: list[AreaStrategy] = []
    for label, engine in (("async", engines.engine_async), ("sync", engines.engine)):
        if engine is None:
            continue
        if engine.geodesic_area is not None:
            strategies.append(AreaStrategy(f"{label}_geodesic", _geodesic(engine.geodesic_area)))
        if engine.planar_area is not None:
            strategies.append(AreaStrategy(f"{label}_planar", _planar(engine.planar_area)))
    if engines.geometry_service is not None:
        strategies.append(AreaStrategy("geometry_service", engines.geometry_service.geodesic_area))
    strategies.append(AreaStrategy("extent", _extent_area))
    return strategies


def _geodesic(fn: AreaFn) -> Callable[[Polygon], Awaitable[float | None]]:
    async def measure(polygon: Polygon) -> float | None:
        reference = polygon.spatial_reference
        if not (reference.is_wgs84 or reference.is_web_mercator):
            return None
        return await resolve(fn(polygon))

    return measure


def _planar(fn: AreaFn) -> Callable[[Polygon], Awaitable[float | None]]:
    async def measure(polygon: Polygon) -> float | None:
        return await resolve(fn(polygon))

    return measure


async def _extent_area(polygon: Polygon) -> float | None:
    extent = polygon.extent
    if extent is None:
        return None
    return abs(extent.width * extent.height)


async def compute_area(geometry: Any, engines: GeometryEngines | None = None) -> float:
    """Measure *geometry* in square metres.

    Returns ``0.0`` when the input is not a polygon or no strategy yields
    a positive finite value; callers treat ``0`` as "unknown", not as a
    legitimately empty area.  Never raises and never returns a negative
    or non-finite number.
    """
    engines = engines or NO_ENGINES
    polygon = coerce_polygon(geometry)
    if polygon is None:
        return 0.0

    polygon = await _normalize_central_meridian(polygon, engines)

    last_error: Exception | None = None
    for strategy in area_strategies(engines):
        value, error = await _attempt(strategy, polygon)
        if error is not None:
            last_error = error
            continue
        if value is not None:
            logger.debug("Area measured | strategy=%s | area_m2=%.3f", strategy.name, value)
            return value

    if last_error is not None:
        logger.debug("Area unavailable | last_error=%s", last_error)
    return 0.0


async def _attempt(strategy: AreaStrategy, polygon: Polygon) -> tuple[float | None, Exception | None]:
    try:
        raw = await strategy.measure(polygon)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Area strategy failed | strategy=%s | error=%s", strategy.name, exc)
        return None, exc
    return _usable_area(raw), None


def _usable_area(raw: object) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = abs(float(raw))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


async def _normalize_central_meridian(polygon: Polygon, engines: GeometryEngines) -> Polygon:
    if engines.normalize_central_meridian is None or not polygon.spatial_reference.is_wgs84:
        return polygon
    try:
        result = await resolve(engines.normalize_central_meridian([polygon]))
    except Exception as exc:  # noqa: BLE001
        logger.debug("Central meridian normalization failed | error=%s", exc)
        return polygon
    if isinstance(result, list) and result and isinstance(result[0], Polygon):
        return result[0]
    return polygon


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PolygonValidation:
    """Outcome of ``validate_polygon``.

    Attributes:
        valid: Whether the polygon may be submitted.
        polygon: The simplified polygon when valid.
        area_m2: Measured area when valid.
        error_code: Machine-readable failure code.
        message: Diagnostic detail for logs.
    """

    valid: bool
    polygon: Polygon | None = None
    area_m2: float = 0.0
    error_code: str | None = None
    message: str = ""

    def raise_for_error(self) -> None:
        """Raise ``GeometryError`` if the polygon is invalid."""
        if not self.valid:
            raise GeometryError(self.message, code=self.error_code or GEOMETRY_INVALID)


def ring_structure_problem(polygon: Polygon) -> str | None:
    """Return a description of the first ring defect, or ``None``."""
    if not polygon.rings:
        return "Polygon has no rings"
    for index, ring in enumerate(polygon.rings):
        if len(ring) < MIN_RING_COORDS:
            return f"Ring {index} has {len(ring)} coordinates, need at least {MIN_RING_COORDS}"
        if not all(_finite_xy(coord) for coord in ring):
            return f"Ring {index} contains non-finite coordinates"
        if not _same_point(ring[0], ring[-1]):
            return f"Ring {index} is not closed"
    return None


def _invalid(code: str, message: str) -> PolygonValidation:
    logger.info("Polygon rejected | code=%s | reason=%s", code, message)
    return PolygonValidation(valid=False, error_code=code, message=message)


async def validate_polygon(geometry: Any, engines: GeometryEngines | None = None) -> PolygonValidation:
    """Validate an AOI before it is attached to a job.

    Structural checks always run.  Topology checks (simplify, simplicity,
    holes inside the outer ring) run only when an engine is available;
    an exception raised by an engine yields ``GEOMETRY_VALIDATION_ERROR``.
    A polygon whose area measures as ``0`` is rejected as degenerate.
    """
    engines = engines or NO_ENGINES
    if geometry is None:
        return _invalid(NO_GEOMETRY, "No geometry provided")

    polygon = coerce_polygon(geometry)
    if polygon is None:
        return _invalid(INVALID_GEOMETRY_TYPE, f"Expected a polygon, got {type(geometry).__name__}")

    problem = ring_structure_problem(polygon)
    if problem is not None:
        return _invalid(GEOMETRY_INVALID, problem)

    checked = polygon
    if engines.has_engine:
        try:
            outcome = await _check_topology(polygon, engines)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Polygon topology check failed | error=%s", exc)
            return _invalid(GEOMETRY_VALIDATION_ERROR, str(exc))
        if isinstance(outcome, str):
            return _invalid(GEOMETRY_INVALID, outcome)
        checked = outcome

    area = await compute_area(checked, engines)
    if area <= 0:
        return _invalid(GEOMETRY_INVALID, "Polygon has no measurable area")

    return PolygonValidation(valid=True, polygon=checked, area_m2=area)


async def _check_topology(polygon: Polygon, engines: GeometryEngines) -> Polygon | str:
    """Return the simplified polygon, or a defect description."""
    simplify_fn = engines.first("simplify")
    is_simple_fn = engines.first("is_simple")
    contains_fn = engines.first("contains")

    simplified = polygon
    if simplify_fn is not None:
        result = await resolve(simplify_fn(polygon))
        if not isinstance(result, Polygon):
            return "Polygon could not be simplified to a single polygon"
        simplified = result

    if is_simple_fn is not None and not await resolve(is_simple_fn(simplified)):
        return "Polygon is not simple"

    if contains_fn is not None and len(simplified.rings) > 1:
        outer = simplified.with_rings([simplified.rings[0]])
        for index, hole in enumerate(simplified.rings[1:], start=1):
            if not await resolve(contains_fn(outer, simplified.with_rings([hole]))):
                return f"Hole {index} lies outside the outer ring"

    return simplified


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def normalize_ring(ring: Iterable[Coordinate]) -> Ring | None:
    """Drop non-finite coordinates and close the ring.

    Returns ``None`` when fewer than three usable coordinates remain.
    """
    coords = [coord for coord in ring if _finite_xy(coord)]
    if len(coords) < 3:
        return None
    if not _same_point(coords[0], coords[-1]):
        coords.append(coords[0])
    return coords


def _serializable_rings(polygon: Polygon) -> list[Ring]:
    rings = []
    for ring in polygon.rings:
        normalized = normalize_ring(ring)
        if normalized is not None and len(normalized) >= MIN_RING_COORDS:
            rings.append(normalized)
    return rings


def polygon_to_geojson(polygon: Polygon) -> dict[str, object] | None:
    """Return a GeoJSON ``Polygon`` or ``None`` if no ring survives."""
    rings = _serializable_rings(polygon)
    if not rings:
        return None
    return {"type": "Polygon", "coordinates": [[list(coord) for coord in ring] for ring in rings]}


def format_wkt_number(value: float) -> str:
    """Format a coordinate for WKT without exponent or trailing zeros."""
    text = repr(float(value))
    if "e" in text or "E" in text:
        text = f"{float(value):.{WKT_DECIMALS}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def polygon_to_wkt(polygon: Polygon) -> str:
    """Return ``POLYGON((x y, ...), ...)`` or ``POLYGON EMPTY``."""
    rings = _serializable_rings(polygon)
    if not rings:
        return "POLYGON EMPTY"
    parts = []
    for ring in rings:
        points = ", ".join(" ".join(format_wkt_number(v) for v in coord) for coord in ring)
        parts.append(f"({points})")
    return f"POLYGON({', '.join(parts)})"


def serialize_polygon(geometry: Any) -> AoiRepresentations:
    """Produce GeoJSON, WKT and native JSON independently.

    A failing format is recorded in ``errors`` and the others are still
    attempted.
    """
    polygon = coerce_polygon(geometry)
    if polygon is None:
        return AoiRepresentations(errors={"polygon": f"not a polygon: {type(geometry).__name__}"})

    errors: dict[str, str] = {}
    geojson: dict[str, object] | None = None
    wkt = "POLYGON EMPTY"
    native: dict[str, object] | None = None

    try:
        geojson = polygon_to_geojson(polygon)
    except Exception as exc:  # noqa: BLE001
        errors["geojson"] = str(exc)
    try:
        wkt = polygon_to_wkt(polygon)
    except Exception as exc:  # noqa: BLE001
        errors["wkt"] = str(exc)
    try:
        native = polygon.to_json()
    except Exception as exc:  # noqa: BLE001
        errors["native"] = str(exc)

    if errors:
        logger.debug("AOI serialization incomplete | failed=%s", ",".join(sorted(errors)))
    return AoiRepresentations(geojson=geojson, wkt=wkt, native_json=native, errors=errors)


# ---------------------------------------------------------------------------
# Job parameters
# ---------------------------------------------------------------------------


async def build_geometry_params(
    geometry: Any,
    engines: GeometryEngines | None = None,
    settings: AoiSettings | None = None,
) -> dict[str, Any]:
    """Run reproject, serialize and measure and return job parameters.

    Keys: ``MINX``, ``MINY``, ``MAXX``, ``MAXY``, ``AREA``, the AOI
    parameter (``AreaOfInterest`` by default) and ``ExtentGeoJson``.
    Serialization failures are reported under ``__aoi_error__``.

    Raises:
        GeometryError: If *geometry* is not a polygon.
    """
    settings = settings or AoiSettings()
    polygon = coerce_polygon(geometry)
    if polygon is None:
        msg = "Only polygon geometries are supported"
        raise GeometryError(msg, code=INVALID_GEOMETRY_TYPE)

    projected = reproject_to_wgs84(polygon, engines)
    representations = serialize_polygon(projected)
    area = await compute_area(projected, engines)

    params: dict[str, Any] = {}
    extent = projected.extent
    if extent is not None:
        params.update(MINX=extent.xmin, MINY=extent.ymin, MAXX=extent.xmax, MAXY=extent.ymax)
        params[EXTENT_GEOJSON_PARAM_KEY] = json.dumps(extent.to_geojson())
    params[AREA_PARAM_KEY] = area

    aoi_value = representations.native_json or representations.geojson
    if aoi_value is not None:
        params[settings.aoi_param_name] = json.dumps(aoi_value)
    if representations.errors or aoi_value is None:
        params[AOI_ERROR_MARKER] = json.dumps(
            {"code": GEOMETRY_SERIALIZATION_FAILED, "formats": representations.errors}
        )

    logger.info(
        "AOI parameters built | area_m2=%.2f | wkid=%s | rings=%d",
        area,
        projected.spatial_reference.wkid,
        len(projected.rings),
    )
    return params


def strip_aoi_error_marker(params: Mapping[str, Any]) -> tuple[dict[str, Any], str | None]:
    """Return *params* without the serialization marker, and the marker value."""
    cleaned = dict(params)
    marker = cleaned.pop(AOI_ERROR_MARKER, None)
    return cleaned, marker


def collect_geometry_param_names(parameters: Iterable[Any]) -> list[str]:
    """Return names of workspace parameters of type ``GEOMETRY``."""
    names: list[str] = []
    for param in parameters:
        if isinstance(param, Mapping):
            name, kind = param.get("name"), param.get("type")
        else:
            name, kind = getattr(param, "name", None), getattr(param, "type", None)
        if isinstance(name, str) and name and str(kind or "").upper() == "GEOMETRY":
            names.append(name)
    return names


def attach_aoi(
    params: Mapping[str, Any],
    aoi_value: str,
    param_name: str,
    extra_names: Iterable[str] = (),
) -> dict[str, Any]:
    """Return a copy of *params* with the AOI set on every geometry parameter."""
    out = dict(params)
    out[param_name] = aoi_value
    for name in extra_names:
        if name and name != param_name:
            out[name] = aoi_value
    return out


# ---------------------------------------------------------------------------
# Area limits
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AreaEvaluation:
    area_m2: float
    maximum_m2: float | None
    warning_threshold_m2: float | None
    exceeds_maximum: bool
    should_warn: bool


def evaluate_area(area_m2: float, settings: AoiSettings) -> AreaEvaluation:
    """Compare a measured area against the configured limits."""
    area = area_m2 if math.isfinite(area_m2) and area_m2 > 0 else 0.0
    maximum = settings.max_area_m2 if settings.max_area_m2 > 0 else None
    threshold = settings.large_area_m2 if settings.large_area_m2 > 0 else None
    exceeds = maximum is not None and area > maximum
    warn = not exceeds and threshold is not None and area > threshold
    return AreaEvaluation(
        area_m2=area,
        maximum_m2=maximum,
        warning_threshold_m2=threshold,
        exceeds_maximum=exceeds,
        should_warn=warn,
    )


def check_max_area(area_m2: float, settings: AoiSettings) -> AreaEvaluation:
    """Evaluate *area_m2* and raise when it exceeds the maximum.

    Raises:
        GeometryError: With code ``AREA_TOO_LARGE``.
    """
    evaluation = evaluate_area(area_m2, settings)
    if evaluation.exceeds_maximum:
        msg = f"Area {evaluation.area_m2:.0f} m2 exceeds maximum of {evaluation.maximum_m2:.0f} m2"
        raise GeometryError(msg, code=AREA_TOO_LARGE)
    if evaluation.should_warn:
        logger.warning(
            "Large AOI | area_m2=%.0f | threshold_m2=%.0f",
            evaluation.area_m2,
            evaluation.warning_threshold_m2,
        )
    return evaluation


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _finite_xy(coord: Coordinate) -> bool:
    return len(coord) >= 2 and math.isfinite(coord[0]) and math.isfinite(coord[1])


def _same_point(a: Coordinate, b: Coordinate) -> bool:
    return abs(a[0] - b[0]) <= COORDINATE_TOLERANCE and abs(a[1] - b[1]) <= COORDINATE_TOLERANCE
