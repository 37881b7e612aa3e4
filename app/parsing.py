"""Extract film records and list totals from Letterboxd list pages.

The list pages are large and their markup shifts regularly, so extraction
works on the raw text: the body is split on the marker that opens each grid
item and every fragment is matched with a few small regular expressions.
No document tree is built.
"""

from __future__ import annotations

import logging
import re

from .models import UNRATED, FilmRecord, PageKind, Rated, RatingValue, watchlist_owner

logger = logging.getLogger(__name__)

GRID_ITEM_MARKER = '<li class="griditem'

FILM_ID_RE = re.compile(r'data-film-id="(\d+)"')
SLUG_RE = re.compile(r'data-item-slug="([^"]+)"')
RATING_RE = re.compile(r"\brated-(\d{1,2})\b")

WATCHED_COUNT_RE = re.compile(r'class="tooltip"[^>]*title="(.+?)films"')
WATCHLIST_COUNT_RE = re.compile(r'class="[^"]*js-watchlist-count[^"]*">([^<]+)<')

LEADING_DIGITS_RE = re.compile(r"\d+")
NBSP_VARIANTS = ("&nbsp;", "&#160;", "&#xa0;", "&#xA0;", "\u00a0", "\u202f")


def parse_films(
    html: str | None, username: str, *, kind: PageKind = "watched"
) -> list[FilmRecord]:
    """Return one record per well-formed grid item on the page."""

    if not html:
        return []

    is_watchlist = kind == "watchlist"
    owner = watchlist_owner(username) if is_watchlist else username
    films: list[FilmRecord] = []
    skipped = 0
    # The first fragment is the page chrome before the first grid item.
    for fragment in html.split(GRID_ITEM_MARKER)[1:]:
        id_match = FILM_ID_RE.search(fragment)
        slug_match = SLUG_RE.search(fragment)
        if id_match is None or slug_match is None:
            skipped += 1
            continue
        rating = UNRATED if is_watchlist else _parse_rating(fragment)
        films.append(
            FilmRecord(
                owner=owner,
                movie_id=int(id_match.group(1)),
                slug=slug_match.group(1),
                rating=rating,
                kind=kind,
            )
        )

    if skipped:
        logger.debug("Skipped %s malformed grid fragments for %s", skipped, owner)
    return films


def _parse_rating(fragment: str) -> RatingValue:
    match = RATING_RE.search(fragment)
    if match is None:
        return UNRATED
    half_stars = int(match.group(1))
    if not 1 <= half_stars <= 10:
        return UNRATED
    return Rated(half_stars / 2)


def normalize_count(raw: str) -> int | None:
    """Parse a count such as ``1,543 films`` into an integer."""

    cleaned = raw.replace(",", "")
    for variant in NBSP_VARIANTS:
        cleaned = cleaned.replace(variant, " ")
    match = LEADING_DIGITS_RE.match(cleaned.strip())
    if match is None:
        return None
    return int(match.group(0))


def extract_watched_count(html: str, fallback: int = 0) -> int:
    """Read the total watched count from the profile tooltip.

    When the tooltip is missing the number of records parsed from the first
    page is used instead, which under-counts users with more than one page.
    """

    return _extract_count(WATCHED_COUNT_RE, html, fallback, "watched")


def extract_watchlist_count(html: str, fallback: int = 0) -> int:
    """Read the total wish-list count from the watch-list counter."""

    return _extract_count(WATCHLIST_COUNT_RE, html, fallback, "watchlist")


def _extract_count(pattern: re.Pattern[str], html: str, fallback: int, label: str) -> int:
    match = pattern.search(html or "")
    count = normalize_count(match.group(1)) if match else None
    if count is None:
        logger.debug("No %s count found, falling back to %s page-one films", label, fallback)
        return fallback
    return count
