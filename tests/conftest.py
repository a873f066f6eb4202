"""Shared pytest fixtures for the FME export test suite."""

from __future__ import annotations

import pytest

from fme_export.api.registry import RequestConfig, TokenRegistry
from fme_export.core.config import ClientConfig
from fme_export.models.geometry import WEB_MERCATOR, Polygon

# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------

SERVER_URL = "https://fme.example.com"
TOKEN = "tok-1234567890"
REPOSITORY = "Exports"


@pytest.fixture()
def client_config() -> ClientConfig:
    """A valid client configuration with a 5 s timeout."""
    return ClientConfig(server_url=SERVER_URL, token=TOKEN, repository=REPOSITORY, timeout_ms=5000)


@pytest.fixture()
def registry() -> TokenRegistry:
    """A private token registry so tests never touch the shared one."""
    return TokenRegistry(RequestConfig())


# ---------------------------------------------------------------------------
# Geometry fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def wgs84_square() -> Polygon:
    """A 0.01 degree square near the equator (about 1.2 km²)."""
    return Polygon(rings=[[(10.0, 0.0), (10.01, 0.0), (10.01, 0.01), (10.0, 0.01), (10.0, 0.0)]])


@pytest.fixture()
def mercator_rectangle() -> Polygon:
    """A 10 x 5 rectangle in Web Mercator (extent area 50)."""
    return Polygon(
        rings=[[(0.0, 0.0), (10.0, 0.0), (10.0, 5.0), (0.0, 5.0), (0.0, 0.0)]],
        spatial_reference=WEB_MERCATOR,
    )
