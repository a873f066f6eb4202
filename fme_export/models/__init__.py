"""Data models.

- geometry: SpatialReference, Extent, Polygon, AoiRepresentations
- jobs: Task Manager / schedule directives, JobRequest, ApiResponse
- responses: pydantic models for server payloads
"""

from fme_export.models.geometry import (
    WEB_MERCATOR,
    WGS84,
    AoiRepresentations,
    Extent,
    Polygon,
    SpatialReference,
    coerce_polygon,
)
from fme_export.models.jobs import (
    ApiResponse,
    JobRequest,
    NMDirectives,
    PublishedParameter,
    ScheduleDirective,
    TMDirectives,
)

__all__ = [
    "WEB_MERCATOR",
    "WGS84",
    "AoiRepresentations",
    "ApiResponse",
    "Extent",
    "JobRequest",
    "NMDirectives",
    "Polygon",
    "PublishedParameter",
    "ScheduleDirective",
    "SpatialReference",
    "TMDirectives",
    "coerce_polygon",
]
