"""Canonical identifier helpers for OpenAlex works and authors."""

from __future__ import annotations

import re
from typing import Sequence, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")

_OPENALEX_HOSTS: frozenset[str] = frozenset({
    "openalex.org",
    "www.openalex.org",
    "api.openalex.org",
})

_RAW_DOI_RE = re.compile(r"^10\.\d{4,}")
_DOI_URL_RE = re.compile(r"(?:https?://)?(?:dx\.)?doi\.org/(10\.\d{4,}.+)$", re.IGNORECASE)
_NUMERIC_ID_RE = re.compile(r"^([A-Za-z])([1-9]\d*|0)$")


def normalize_id(value: str | None) -> str:
    """Return the canonical key for a bare id or an absolute OpenAlex URL.

    ``https://openalex.org/W123`` and ``W123`` both normalize to ``W123``.
    Strings that are neither are returned unchanged (trimmed); ``None`` and
    empty input give ``""``, which callers treat as "no identifier".
    """
    if not isinstance(value, str):
        return ""
    value = value.strip()
    if not value:
        return ""

    if value.lower().startswith(("http://", "https://")):
        parsed = urlparse(value)
        if parsed.hostname in _OPENALEX_HOSTS:
            segments = [segment for segment in parsed.path.split("/") if segment]
            return segments[-1] if segments else ""
    return value


def parse_doi(value: str | None) -> str | None:
    """Extract a DOI from a raw DOI or a doi.org / dx.doi.org URL.

    Returns the bare DOI (``10.1234/example``) or ``None`` if the input is
    not a DOI.
    """
    if not isinstance(value, str):
        return None
    trimmed = value.strip()

    if _RAW_DOI_RE.match(trimmed):
        return trimmed

    match = _DOI_URL_RE.search(trimmed)
    if match:
        return match.group(1)
    return None


def resolve_work_id(value: str | None) -> str:
    """Resolve user input to something the single-work endpoint accepts.

    DOIs are promoted to ``https://doi.org/<doi>``; everything else goes
    through :func:`normalize_id`.
    """
    doi = parse_doi(value)
    if doi:
        return f"https://doi.org/{doi}"
    return normalize_id(value)


def to_numeric_id(canonical: str) -> int:
    """Strip the entity prefix: ``W2741809807`` -> ``2741809807``."""
    match = _NUMERIC_ID_RE.match(canonical or "")
    if not match:
        raise ValueError(f"Not a numeric OpenAlex id: {canonical!r}")
    return int(match.group(2))


def from_numeric_id(number: int, prefix: str = "W") -> str:
    """Inverse of :func:`to_numeric_id`."""
    if number < 0:
        raise ValueError(f"OpenAlex ids are non-negative, got {number}")
    return f"{prefix}{number}"


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive lists of at most *size* elements."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]
