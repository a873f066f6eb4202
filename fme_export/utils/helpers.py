"""Shared helper functions used by the request builder, registry and client.

Loose parameter maps arrive from form state, so values can be strings,
numbers, booleans, paths or file objects.  These helpers coerce them to
the exact string forms the FME Flow wire format expects.
"""

from __future__ import annotations

import json
import math
import os
import secrets
import time
from collections.abc import Mapping, Sequence
from pathlib import PurePath
from typing import Any
from urllib.parse import urlsplit


def to_pos_int(value: Any) -> int | None:
    """Coerce *value* to a non-negative integer, or ``None``.

    Accepts ints, floats and numeric strings.  Fractions are floored and
    ``0`` is kept.  Booleans, negatives, non-finite and non-numeric
    values yield ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return math.floor(number)


def to_trimmed_string(value: Any) -> str | None:
    """Return the trimmed string form of *value*, or ``None`` when empty."""
    if value is None:
        return None
    text = value.strip() if isinstance(value, str) else str(value).strip()
    return text or None


def truncate(text: str, limit: int) -> str:
    """Return *text* cut to at most *limit* characters."""
    return text[:limit] if len(text) > limit else text


def format_number(value: float | int) -> str:
    """Render a number the way the server expects (``1.0`` → ``"1"``)."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def is_file_like(value: Any) -> bool:
    """Return ``True`` for paths and objects that look like open files."""
    if isinstance(value, PurePath):
        return True
    return hasattr(value, "read") and isinstance(getattr(value, "name", None), str)


def file_name_of(value: Any) -> str:
    """Return the base name of a path or file object (empty when unknown)."""
    if isinstance(value, PurePath):
        return value.name
    name = getattr(value, "name", "")
    return os.path.basename(name) if isinstance(name, str) else ""


def stringify_value(value: Any) -> str:
    """Convert a form value to its query-string representation.

    Files are represented by name only, never by content.
    """
    if is_file_like(value):
        return file_name_of(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        trimmed = value.strip()
        return trimmed if trimmed else value
    if isinstance(value, Mapping):
        return json.dumps(value, separators=(",", ":"))
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return ",".join(stringify_value(item) for item in value)
    return str(value)


def extract_host(url_or_host: str) -> str:
    """Return the lower-cased host of a URL, or the input itself if it is a bare host."""
    text = (url_or_host or "").strip()
    if not text:
        return ""
    if "://" not in text:
        text = f"//{text}"
    try:
        host = urlsplit(text).hostname
    except ValueError:
        return ""
    return (host or "").lower()


def mask_token(token: str) -> str:
    """Return a redacted token suitable for logs."""
    if not token:
        return ""
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}***{token[-4:]}"


def create_correlation_id(prefix: str = "fme") -> str:
    """Return a short unique id such as ``fme_lz4k2x_9f3a1c``."""
    return f"{prefix}_{_base36(int(time.time() * 1000))}_{secrets.token_hex(3)}"


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))
