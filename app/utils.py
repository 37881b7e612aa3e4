"""Utility helpers for the CineTaste service."""

from __future__ import annotations

import re
from typing import Iterable

YEAR_SUFFIX_RE = re.compile(r"^\d{4}$")


def normalize_key(value: object) -> str:
    """Return the lookup key used to join titles against the catalog."""

    return str(value).strip().lower()


def format_title(slug: str) -> str:
    """Turn a slug such as ``the-matrix-1999`` into ``The Matrix (1999)``."""

    if not slug:
        return ""
    parts = slug.split("-")
    formatted: list[str] = []
    for index, part in enumerate(parts):
        if index == len(parts) - 1 and YEAR_SUFFIX_RE.match(part):
            formatted.append(f"({part})")
        else:
            formatted.append(part[:1].upper() + part[1:])
    return " ".join(formatted)


def split_csv(value: str | None, *, limit: int | None = None) -> list[str]:
    """Split a comma separated query value, dropping blanks and duplicates."""

    if not value:
        return []
    cleaned: list[str] = []
    for part in value.split(","):
        entry = part.strip()
        if entry and entry not in cleaned:
            cleaned.append(entry)
    if limit is not None:
        return cleaned[:limit]
    return cleaned


def chunked(items: Iterable, size: int) -> Iterable[list]:
    """Yield consecutive lists of at most ``size`` items."""

    if size < 1:
        raise ValueError("Chunk size must be positive")
    chunk: list = []
    for item in items:
        chunk.append(item)
        if len(chunk) == size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
