"""Tests for the default pyproj/shapely geometry engines.

These run against the real libraries (no mocks) so the capability
functions are checked with actual geodesic and planar results.

Covers:
- Geodesic area in WGS 84 and Web Mercator, holes subtracted
- Planar area, simplify, simplicity and containment via shapely
- Reprojection via a cached pyproj Transformer
- Antimeridian unwrapping
- Capability lookup order on GeometryEngines
"""

from __future__ import annotations

import pytest

from fme_export.geometry.engines import (
    NO_ENGINES,
    GeometryEngine,
    GeometryEngines,
    _transformer,
    contains,
    default_engines,
    geodesic_area_m2,
    is_simple,
    normalize_central_meridian,
    planar_area,
    project,
    resolve,
    simplify,
    web_mercator_to_geographic,
)
from fme_export.models.geometry import WEB_MERCATOR, WGS84, Polygon, SpatialReference

_BOWTIE = Polygon(rings=[[(0.0, 0.0), (2.0, 2.0), (2.0, 0.0), (0.0, 2.0), (0.0, 0.0)]])
_SQUARE_4 = Polygon(
    rings=[[(0.0, 0.0), (4.0, 0.0), (4.0, 4.0), (0.0, 4.0), (0.0, 0.0)]],
    spatial_reference=SpatialReference(wkid=2193),
)


class TestGeodesicArea:
    def test_small_equatorial_square(self, wgs84_square: Polygon) -> None:
        # 0.01 deg x 0.01 deg at the equator is about 1113 m x 1106 m.
        assert geodesic_area_m2(wgs84_square) == pytest.approx(1.2309e6, rel=0.01)

    def test_hole_is_subtracted(self, wgs84_square: Polygon) -> None:
        hole = [(10.0025, 0.0025), (10.0075, 0.0025), (10.0075, 0.0075), (10.0025, 0.0075), (10.0025, 0.0025)]
        with_hole = wgs84_square.with_rings([wgs84_square.rings[0], hole])
        assert geodesic_area_m2(with_hole) == pytest.approx(geodesic_area_m2(wgs84_square) * 0.75, rel=0.01)

    def test_web_mercator_is_converted(self, wgs84_square: Polygon) -> None:
        mercator = project(wgs84_square, WEB_MERCATOR)
        assert mercator is not None
        assert geodesic_area_m2(mercator) == pytest.approx(geodesic_area_m2(wgs84_square), rel=1e-4)

    def test_other_projection_rejected(self) -> None:
        with pytest.raises(ValueError, match="geographic"):
            geodesic_area_m2(_SQUARE_4)


class TestShapelyCapabilities:
    def test_planar_area(self) -> None:
        assert planar_area(_SQUARE_4) == 16.0

    def test_simplify_valid_polygon(self) -> None:
        result = simplify(_SQUARE_4)
        assert result is not None
        assert result.spatial_reference == _SQUARE_4.spatial_reference
        assert planar_area(result) == 16.0

    def test_simplify_bowtie_is_not_single_polygon(self) -> None:
        assert simplify(_BOWTIE) is None

    def test_is_simple(self) -> None:
        assert is_simple(_SQUARE_4)
        assert not is_simple(_BOWTIE)

    def test_contains(self) -> None:
        inner = _SQUARE_4.with_rings([[(1.0, 1.0), (2.0, 1.0), (2.0, 2.0), (1.0, 1.0)]])
        outside = _SQUARE_4.with_rings([[(5.0, 5.0), (6.0, 5.0), (6.0, 6.0), (5.0, 5.0)]])
        assert contains(_SQUARE_4, inner)
        assert not contains(_SQUARE_4, outside)


class TestProjection:
    def test_wgs84_to_web_mercator(self, wgs84_square: Polygon) -> None:
        result = project(wgs84_square, WEB_MERCATOR)
        assert result is not None
        assert result.spatial_reference is WEB_MERCATOR
        assert result.rings[0][0][0] == pytest.approx(1113194.9079, rel=1e-6)

    def test_web_mercator_helper_matches_pyproj(self, mercator_rectangle: Polygon) -> None:
        helper = web_mercator_to_geographic(mercator_rectangle)
        via_pyproj = project(mercator_rectangle, WGS84)
        assert via_pyproj is not None
        assert helper.spatial_reference.is_wgs84
        for (hx, hy), (px, py, *_rest) in zip(
            [c[:2] for c in helper.rings[0]], via_pyproj.rings[0], strict=True
        ):
            assert hx == pytest.approx(px, abs=1e-9)
            assert hy == pytest.approx(py, abs=1e-9)

    def test_web_mercator_helper_uses_cached_transformer(self) -> None:
        edge = Polygon(
            rings=[[(20037508.342789244, 0.0), (0.0, 0.0), (0.0, 20037508.342789244), (20037508.342789244, 0.0)]],
            spatial_reference=SpatialReference(wkid=102100),
        )
        _transformer.cache_clear()
        result = web_mercator_to_geographic(edge)
        web_mercator_to_geographic(edge)

        assert result.spatial_reference is WGS84
        assert result.rings[0][0][0] == pytest.approx(180.0, abs=1e-9)
        assert result.rings[0][2][1] == pytest.approx(85.0511287798, abs=1e-6)
        assert _transformer.cache_info().misses == 1
        assert _transformer.cache_info().hits == 1

    def test_unknown_reference_returns_none(self) -> None:
        polygon = Polygon(rings=[[(0.0, 0.0)]], spatial_reference=SpatialReference(wkt="PROJCS[...]"))
        assert project(polygon, WGS84) is None


class TestCentralMeridian:
    def test_unwraps_antimeridian_crossing(self) -> None:
        polygon = Polygon(rings=[[(179.0, 0.0), (-179.0, 0.0), (-179.0, 1.0), (179.0, 1.0), (179.0, 0.0)]])
        [result] = normalize_central_meridian([polygon])
        assert [c[0] for c in result.rings[0]] == [179.0, 181.0, 181.0, 179.0, 179.0]

    def test_projected_polygon_untouched(self, mercator_rectangle: Polygon) -> None:
        assert normalize_central_meridian([mercator_rectangle]) == [mercator_rectangle]


class TestEngineSet:
    def test_no_engines(self) -> None:
        assert not NO_ENGINES.has_engine
        assert NO_ENGINES.first("simplify") is None

    def test_first_prefers_async_engine(self) -> None:
        async_fn = object()
        sync_fn = object()
        engines = GeometryEngines(
            engine_async=GeometryEngine(planar_area=async_fn),  # type: ignore[arg-type]
            engine=GeometryEngine(planar_area=sync_fn, simplify=sync_fn),  # type: ignore[arg-type]
        )
        assert engines.first("planar_area") is async_fn
        assert engines.first("simplify") is sync_fn

    def test_default_engines(self) -> None:
        engines = default_engines()
        assert engines.has_engine
        assert engines.project is project
        assert engines.geometry_service is None

    def test_default_engines_with_service(self) -> None:
        engines = default_engines("https://geo.example.com/GeometryServer")
        assert engines.geometry_service is not None

    @pytest.mark.asyncio()
    async def test_threaded_engine(self) -> None:
        engines = default_engines()
        assert engines.engine_async is not None
        assert engines.engine_async.planar_area is not None
        assert await resolve(engines.engine_async.planar_area(_SQUARE_4)) == 16.0

    @pytest.mark.asyncio()
    async def test_resolve_plain_value(self) -> None:
        assert await resolve(5) == 5
