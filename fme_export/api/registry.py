"""Per-host token registry and request interceptors.

The registry maps a lower-cased server host to its current FME token and
keeps one ``TokenInterceptor`` per host in a ``RequestConfig`` shared
with the transport.  Interceptors hold no token: they read the live value
from the registry on every request, so rotating a token needs no
re-registration.

Ownership: the most recent ``set_token`` caller owns a host entry.  A
``clear_token`` from a different owner is ignored, which lets an older
client be disposed without removing the token a newer client installed
for the same host.  Clearing by the current owner (or without an owner)
removes the token for every client on that host.
"""

from __future__ import annotations

import logging
import re
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import parse_qs, urlsplit

from fme_export.core.constants import FME_ENDPOINT_PATTERN, MAX_URL_LENGTH
from fme_export.utils.helpers import extract_host, mask_token

logger = logging.getLogger("fme_export.api.registry")


class Interceptor(Protocol):
    pattern: re.Pattern[str]

    def matches(self, url: str) -> bool: ...

    def before(self, url: str, headers: MutableMapping[str, str], query: MutableMapping[str, str]) -> None: ...


@dataclass(slots=True)
class RequestConfig:
    """Mutable request configuration shared by registry and transport.

    Attributes:
        max_url_length: Longest URL the transport may send (0 = unknown).
        interceptors: Hooks applied, in order, to matching requests.
    """

    max_url_length: int = 0
    interceptors: list[Interceptor] = field(default_factory=list)

    def apply_max_url_floor(self, floor: int = MAX_URL_LENGTH) -> None:
        """Raise ``max_url_length`` to at least *floor*."""
        if self.max_url_length < floor:
            self.max_url_length = floor

    def intercept(self, url: str, headers: MutableMapping[str, str], query: MutableMapping[str, str]) -> None:
        """Run every interceptor that matches *url*."""
        for interceptor in list(self.interceptors):
            if interceptor.matches(url):
                interceptor.before(url, headers, query)


def create_host_pattern(host: str) -> re.Pattern[str]:
    """Return a case-insensitive pattern anchored to ``scheme://host``."""
    return re.compile(rf"^https?://{re.escape(host)}(?=[:/?#]|$)", re.IGNORECASE)


def _same_pattern(a: re.Pattern[str], b: re.Pattern[str]) -> bool:
    return a.pattern == b.pattern and a.flags == b.flags


def interceptor_exists(interceptors: list[Interceptor], pattern: re.Pattern[str]) -> bool:
    return any(_same_pattern(i.pattern, pattern) for i in interceptors)


@dataclass(slots=True)
class TokenInterceptor:
    """Adds FME token authentication to requests for one host."""

    host: str
    pattern: re.Pattern[str]
    registry: TokenRegistry

    def matches(self, url: str) -> bool:
        if not self.pattern.match(url):
            return False
        return bool(FME_ENDPOINT_PATTERN.search(urlsplit(url).path))

    def before(self, url: str, headers: MutableMapping[str, str], query: MutableMapping[str, str]) -> None:
        token = self.registry.get_token(self.host)
        if not token:
            return
        if "fmetoken" not in query and not _url_has_token(url):
            query["fmetoken"] = token
        headers["Authorization"] = f"fmetoken token={token}"


class TokenRegistry:
    """Host to token mapping with interceptor installation.

    Args:
        request_config: Configuration whose ``interceptors`` list this
            registry manages.  A private one is created when omitted.
    """

    def __init__(self, request_config: RequestConfig | None = None) -> None:
        self.request_config = request_config if request_config is not None else RequestConfig()
        self._tokens: dict[str, tuple[str, object | None]] = {}

    def get_token(self, host_or_url: str) -> str | None:
        entry = self._tokens.get(extract_host(host_or_url))
        return entry[0] if entry else None

    def owner_of(self, host_or_url: str) -> object | None:
        entry = self._tokens.get(extract_host(host_or_url))
        return entry[1] if entry else None

    def set_token(self, host_or_url: str, token: str, owner: object | None = None) -> None:
        """Record *token* for the host and install its interceptor once.

        An empty token clears the host instead.
        """
        host = extract_host(host_or_url)
        if not host:
            return
        if not token:
            self.clear_token(host, owner)
            return
        self._tokens[host] = (token, owner)
        self.install(host)
        logger.debug("Token registered | host=%s | token=%s", host, mask_token(token))

    def clear_token(self, host_or_url: str, owner: object | None = None) -> bool:
        """Remove the host's token and interceptor.

        Returns ``False`` when there was nothing to clear or the entry is
        owned by someone other than *owner*.
        """
        host = extract_host(host_or_url)
        entry = self._tokens.get(host)
        if entry is None:
            return False
        if owner is not None and entry[1] is not None and entry[1] is not owner:
            logger.debug("Token clear skipped | host=%s | reason=newer owner", host)
            return False
        del self._tokens[host]
        self.remove(host)
        logger.debug("Token cleared | host=%s", host)
        return True

    def install(self, host: str) -> bool:
        """Add an interceptor for *host* unless one already exists."""
        pattern = create_host_pattern(host)
        interceptors = self.request_config.interceptors
        if interceptor_exists(interceptors, pattern):
            return False
        interceptors.append(TokenInterceptor(host=host, pattern=pattern, registry=self))
        return True

    def remove(self, host: str) -> int:
        """Remove every interceptor registered for *host*; return how many."""
        pattern = create_host_pattern(host)
        interceptors = self.request_config.interceptors
        kept = [i for i in interceptors if not _same_pattern(i.pattern, pattern)]
        removed = len(interceptors) - len(kept)
        interceptors[:] = kept
        return removed


_shared_registry: TokenRegistry | None = None


def shared_token_registry() -> TokenRegistry:
    """Return the process default registry, creating it on first use."""
    global _shared_registry
    if _shared_registry is None:
        _shared_registry = TokenRegistry()
    return _shared_registry


def _url_has_token(url: str) -> bool:
    """Return ``True`` when the URL already carries a token in its query."""
    query = parse_qs(urlsplit(url).query)
    return "token" in query or "fmetoken" in query
