"""Utilities for collecting a user's films from Letterboxd list pages."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import time
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import httpx

from ..config import Settings
from ..models import FilmRecord, PageKind, PaginationTask, ScrapeResult
from ..parsing import extract_watched_count, extract_watchlist_count, parse_films
from ..utils import chunked

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

JSON_LD_RE = re.compile(
    r'<script type="application/ld\+json">(.*?)</script>', re.DOTALL
)
CDATA_OPEN_RE = re.compile(r"/\*\s*<!\[CDATA\[\s*\*/")
CDATA_CLOSE_RE = re.compile(r"/\*\s*\]\]>\s*\*/")


class NoFilmDataError(LookupError):
    """Raised when neither list of a user could be fetched at all."""


def page_count(count: int, page_size: int) -> int:
    """Return how many list pages hold ``count`` films."""

    if count <= 0:
        return 0
    return math.ceil(count / page_size)


def plan_pages(
    base_url: str, username: str, kind: PageKind, count: int, page_size: int
) -> list[PaginationTask]:
    """Return tasks for pages 2..N; page one is fetched before planning."""

    segment = "films" if kind == "watched" else "watchlist"
    return [
        PaginationTask(url=f"{base_url}/{username}/{segment}/page/{page}/", kind=kind)
        for page in range(2, page_count(count, page_size) + 1)
    ]


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``batch_size`` in flight.

    Groups run one after another in submission order; members of a group run
    concurrently. Results are returned grouped in submission order, and each
    worker owns its result until the whole group has finished.
    """

    results: list[R] = []
    for group in chunked(items, batch_size):
        results.extend(await asyncio.gather(*(worker(item) for item in group)))
    return results


class LetterboxdClient:
    """Fetches and parses public Letterboxd profile pages."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._base_url = settings.letterboxd_base_url

    def _headers(self) -> dict[str, str]:
        # Letterboxd rejects clients that do not look like a browser.
        return {"User-Agent": self._settings.scraper_user_agent}

    async def fetch_page(self, url: str) -> str | None:
        """Return the page body, or ``None`` on any network error or non-200."""

        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch %s: %s", url, exc)
            return None
        if response.status_code != 200:
            logger.warning("Fetching %s returned HTTP %s", url, response.status_code)
            return None
        return response.text

    async def scrape(self, username: str) -> ScrapeResult:
        """Collect every watched and wish-listed film for ``username``."""

        started = time.perf_counter()
        parse_seconds = 0.0
        films: list[FilmRecord] = []
        tasks: list[PaginationTask] = []
        watched_count = 0
        watchlist_count = 0

        watched_html, watchlist_html = await asyncio.gather(
            self.fetch_page(f"{self._base_url}/{username}/films/"),
            self.fetch_page(f"{self._base_url}/{username}/watchlist/"),
        )

        if watched_html is not None:
            parse_started = time.perf_counter()
            first_page = parse_films(watched_html, username)
            films.extend(first_page)
            watched_count = extract_watched_count(watched_html, fallback=len(first_page))
            parse_seconds += time.perf_counter() - parse_started
            tasks.extend(
                plan_pages(
                    self._base_url,
                    username,
                    "watched",
                    watched_count,
                    self._settings.watched_page_size,
                )
            )

        if watchlist_html is not None:
            parse_started = time.perf_counter()
            first_page = parse_films(watchlist_html, username, kind="watchlist")
            films.extend(first_page)
            watchlist_count = extract_watchlist_count(
                watchlist_html, fallback=len(first_page)
            )
            parse_seconds += time.perf_counter() - parse_started
            tasks.extend(
                plan_pages(
                    self._base_url,
                    username,
                    "watchlist",
                    watchlist_count,
                    self._settings.watchlist_page_size,
                )
            )

        if watched_html is None and watchlist_html is None:
            raise NoFilmDataError(f"No film data could be fetched for {username}")

        async def _fetch_and_parse(task: PaginationTask) -> tuple[list[FilmRecord], float]:
            html = await self.fetch_page(task.url)
            parse_started = time.perf_counter()
            page_films = parse_films(html, username, kind=task.kind)
            return page_films, time.perf_counter() - parse_started

        for page_films, seconds in await run_in_batches(
            tasks, _fetch_and_parse, self._settings.scrape_batch_size
        ):
            films.extend(page_films)
            parse_seconds += seconds

        elapsed = time.perf_counter() - started
        logger.info(
            "Scraped %s: %s watched, %s wish-listed, %s records from %s pages in %.2fs",
            username,
            watched_count,
            watchlist_count,
            len(films),
            len(tasks) + 2,
            elapsed,
        )
        return ScrapeResult(
            username=username,
            watched_count=watched_count,
            watchlist_count=watchlist_count,
            films=tuple(films),
            parse_seconds=parse_seconds,
            elapsed_seconds=elapsed,
        )

    async def fetch_poster(self, slug: str) -> str | None:
        """Return the poster image URL advertised on a film page."""

        html = await self.fetch_page(f"{self._base_url}/film/{slug}/")
        if html is None:
            return None
        return extract_json_ld_image(html)

    async def fetch_posters(self, slugs: Sequence[str]) -> dict[str, str]:
        """Look up posters for several slugs, skipping those without one."""

        async def _lookup(slug: str) -> tuple[str, str | None]:
            return slug, await self.fetch_poster(slug)

        found = await run_in_batches(slugs, _lookup, self._settings.scrape_batch_size)
        return {slug: image for slug, image in found if image}


def extract_json_ld_image(html: str) -> str | None:
    """Return the ``image`` field of the page's JSON-LD block."""

    match = JSON_LD_RE.search(html)
    if match is None:
        return None
    payload = CDATA_CLOSE_RE.sub("", CDATA_OPEN_RE.sub("", match.group(1))).strip()
    try:
        data: Any = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Unparseable JSON-LD block")
        return None
    if not isinstance(data, dict):
        return None
    image = data.get("image")
    return image if isinstance(image, str) and image else None
