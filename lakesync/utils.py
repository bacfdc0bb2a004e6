"""Shared utility functions."""

import re
from datetime import datetime, timezone
from urllib.parse import urlparse

_INVALID_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def sanitize_identifier(raw: str, *, prefix: str = "_", fallback: str = "SYNC_RUN") -> str:
    """Turn an arbitrary string into an unquoted SQL identifier.

    Disallowed characters become ``_``, runs of ``_`` collapse to one and
    leading/trailing ``_`` are stripped. A result starting with a digit gets
    ``prefix``; an empty result becomes ``fallback``. Deterministic.
    """
    cleaned = _INVALID_IDENTIFIER_CHARS.sub("_", (raw or "").strip())
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned).strip("_")
    if not cleaned:
        return fallback
    if cleaned[0].isdigit():
        return f"{prefix}{cleaned}"
    return cleaned


def url_subpath(url: str) -> str:
    """Path of ``url`` below its bucket/container, without surrounding slashes.

    ``s3://bucket/exports/runs`` -> ``exports/runs``; ``s3://bucket`` -> ``""``.
    """
    return urlparse(url).path.strip("/")
