"""Tests for the Letterboxd collection pipeline."""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.letterboxd import (
    LetterboxdClient,
    NoFilmDataError,
    extract_json_ld_image,
    page_count,
    plan_pages,
    run_in_batches,
)

BASE = "https://letterboxd.test"
PAGE_RE = re.compile(r"^/(?P<user>[^/]+)/(?P<kind>films|watchlist)/(?:page/(?P<page>\d+)/)?$")


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object pointing at the fake site."""

    base = {"LETTERBOXD_URL": BASE}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def grid(start: int, count: int, *, rating: int | None = None) -> str:
    rating_span = f'<span class="rating rated-{rating}"></span>' if rating else ""
    return "".join(
        f'<li class="griditem"><div data-film-id="{start + offset}" '
        f'data-item-slug="film-{start + offset}"></div>{rating_span}</li>'
        for offset in range(count)
    )


def watched_page(body: str, total: int | None) -> str:
    tooltip = (
        f'<span class="tooltip" title="{total:,}&nbsp;films">x</span>' if total is not None else ""
    )
    return f"<html><header>{tooltip}</header><ul>{body}</ul></html>"


def watchlist_page(body: str, total: int | None) -> str:
    counter = (
        f'<span class="js-watchlist-count">{total:,}</span>' if total is not None else ""
    )
    return f"<html><header>{counter}</header><ul>{body}</ul></html>"


class FakeSite:
    """Serves a user with ``watched`` films and ``wished`` wish-list films."""

    def __init__(
        self,
        watched: int,
        wished: int,
        *,
        failing: set[str] | None = None,
        show_counts: bool = True,
    ) -> None:
        self.watched = watched
        self.wished = wished
        self.failing = failing or set()
        self.show_counts = show_counts
        self.requests: list[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            return self._respond(request)
        finally:
            self.in_flight -= 1

    def _respond(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in self.failing:
            return httpx.Response(503, text="busy")
        match = PAGE_RE.match(path)
        if match is None:
            return httpx.Response(404, text="missing")
        page = int(match.group("page") or 1)
        if match.group("kind") == "films":
            size, total = 72, self.watched
        else:
            size, total = 28, self.wished
        start = (page - 1) * size
        count = max(0, min(size, total - start))
        offset = 0 if match.group("kind") == "films" else 100_000
        body = grid(offset + start, count, rating=8 if offset == 0 else None)
        shown = total if self.show_counts else None
        if match.group("kind") == "films":
            return httpx.Response(200, text=watched_page(body, shown))
        return httpx.Response(200, text=watchlist_page(body, shown))


@pytest.mark.parametrize(
    ("count", "page_size", "expected"),
    [(0, 72, 0), (72, 72, 1), (73, 72, 2), (28, 28, 1), (29, 28, 2), (-3, 28, 0)],
)
def test_page_count(count: int, page_size: int, expected: int) -> None:
    assert page_count(count, page_size) == expected


@pytest.mark.parametrize(
    ("kind", "count", "page_size", "expected"),
    [
        ("watched", 72, 72, 0),
        ("watched", 73, 72, 1),
        ("watchlist", 29, 28, 1),
        ("watchlist", 0, 28, 0),
        ("watched", 300, 72, 4),
    ],
)
def test_plan_pages_counts(kind: str, count: int, page_size: int, expected: int) -> None:
    tasks = plan_pages(BASE, "alice", kind, count, page_size)  # type: ignore[arg-type]

    assert len(tasks) == expected
    assert all(task.kind == kind for task in tasks)


def test_plan_pages_starts_at_page_two() -> None:
    tasks = plan_pages(BASE, "alice", "watchlist", 60, 28)

    assert [task.url for task in tasks] == [
        f"{BASE}/alice/watchlist/page/2/",
        f"{BASE}/alice/watchlist/page/3/",
    ]


@pytest.mark.anyio("asyncio")
async def test_run_in_batches_bounds_concurrency_and_keeps_group_order() -> None:
    in_flight = 0
    peak = 0
    started: list[int] = []

    async def worker(item: int) -> int:
        nonlocal in_flight, peak
        started.append(item)
        in_flight += 1
        peak = max(peak, in_flight)
        # Later items in a group finish first.
        await asyncio.sleep(0.001 * (5 - item % 5))
        in_flight -= 1
        return item * 10

    results = await run_in_batches(list(range(12)), worker, 5)

    assert peak <= 5
    assert sorted(results) == [item * 10 for item in range(12)]
    assert sorted(started[:5]) == [0, 1, 2, 3, 4]
    assert sorted(started[5:10]) == [5, 6, 7, 8, 9]


@pytest.mark.anyio("asyncio")
async def test_fetch_page_returns_none_on_error_status() -> None:
    transport = httpx.MockTransport(lambda _: httpx.Response(403, text="blocked"))
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        assert await client.fetch_page(f"{BASE}/alice/films/") is None


@pytest.mark.anyio("asyncio")
async def test_fetch_page_returns_none_on_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        assert await client.fetch_page(f"{BASE}/alice/films/") is None


@pytest.mark.anyio("asyncio")
async def test_fetch_page_sends_browser_user_agent() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["User-Agent"])
        return httpx.Response(200, text="ok")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = LetterboxdClient(build_settings(SCRAPER_USER_AGENT="Mozilla/5.0 test"), http_client)
        assert await client.fetch_page(f"{BASE}/alice/films/") == "ok"

    assert seen == ["Mozilla/5.0 test"]


@pytest.mark.anyio("asyncio")
async def test_scrape_collects_every_page_of_both_lists() -> None:
    site = FakeSite(watched=150, wished=60)
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        result = await client.scrape("alice")

    assert result.watched_count == 150
    assert result.watchlist_count == 60
    assert len(result.watched) == 150
    assert len(result.watchlist) == 60
    assert len({film.movie_id for film in result.films}) == 210
    assert all(film.rating_value == 4.0 for film in result.watched)
    assert all(film.owner == "watchlist_alice" for film in result.watchlist)
    # Pages 1-3 of the watched list and 1-3 of the wish-list.
    assert len(site.requests) == 6
    assert site.max_in_flight <= 5

    payload = result.to_payload()
    assert payload["total_films_retrieved"] == 210
    assert payload["films"][0] == {
        "username": "alice",
        "movie_id": 0,
        "title": "film-0",
        "rating": 4.0,
    }


@pytest.mark.anyio("asyncio")
async def test_scrape_limits_concurrent_requests_to_batch_size() -> None:
    site = FakeSite(watched=72 * 12, wished=0)
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(SCRAPE_BATCH_SIZE=3), http_client)
        result = await client.scrape("alice")

    assert len(result.films) == 72 * 12
    assert site.max_in_flight <= 3


@pytest.mark.anyio("asyncio")
async def test_failed_page_drops_only_its_records() -> None:
    site = FakeSite(watched=200, wished=0, failing={"/alice/films/page/2/"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        result = await client.scrape("alice")

    assert result.watched_count == 200
    assert len(result.watched) == 200 - 72


@pytest.mark.anyio("asyncio")
async def test_missing_count_falls_back_to_page_one_records() -> None:
    site = FakeSite(watched=150, wished=10, show_counts=False)
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        result = await client.scrape("alice")

    # The fallback only sees page one, so later pages are never requested.
    assert result.watched_count == 72
    assert len(result.watched) == 72
    assert result.watchlist_count == 10


@pytest.mark.anyio("asyncio")
async def test_scrape_keeps_watched_when_watchlist_fails() -> None:
    site = FakeSite(watched=10, wished=10, failing={"/alice/watchlist/"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        result = await client.scrape("alice")

    assert len(result.watched) == 10
    assert result.watchlist == ()
    assert result.watchlist_count == 0


@pytest.mark.anyio("asyncio")
async def test_scrape_raises_when_nothing_could_be_fetched() -> None:
    site = FakeSite(
        watched=10, wished=10, failing={"/alice/films/", "/alice/watchlist/"}
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        with pytest.raises(NoFilmDataError):
            await client.scrape("alice")


@pytest.mark.anyio("asyncio")
async def test_empty_but_reachable_profile_is_not_an_error() -> None:
    site = FakeSite(watched=0, wished=0)
    async with httpx.AsyncClient(transport=httpx.MockTransport(site)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        result = await client.scrape("alice")

    assert result.films == ()
    assert result.watched_count == 0


def test_extract_json_ld_image_strips_cdata_wrappers() -> None:
    html = (
        '<script type="application/ld+json">\n/* <![CDATA[ */\n'
        '{"@type": "Movie", "image": "https://a.ltrbxd.com/poster.jpg"}\n'
        "/* ]]> */\n</script>"
    )

    assert extract_json_ld_image(html) == "https://a.ltrbxd.com/poster.jpg"


def test_extract_json_ld_image_handles_missing_block() -> None:
    assert extract_json_ld_image("<html></html>") is None
    assert extract_json_ld_image('<script type="application/ld+json">{bad</script>') is None


@pytest.mark.anyio("asyncio")
async def test_fetch_posters_skips_missing_images() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/film/heat-1995/":
            return httpx.Response(
                200,
                text='<script type="application/ld+json">{"image": "https://img/heat.jpg"}</script>',
            )
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = LetterboxdClient(build_settings(), http_client)
        posters = await client.fetch_posters(["heat-1995", "unknown"])

    assert posters == {"heat-1995": "https://img/heat.jpg"}
