"""Entry point for the FastAPI-powered recommendation service."""

from __future__ import annotations

import logging
import re
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .catalog import CatalogHandle, CatalogLoadError, load_catalog
from .config import settings
from .models import (
    MovieMetadata,
    RecommendationPayload,
    RecommendationResponse,
    ScrapeResponse,
    ScrapeResult,
)
from .recommender import (
    MAX_RECOMMENDATIONS,
    collect_exclusions,
    get_recommendations,
    select_liked_films,
)
from .services.letterboxd import LetterboxdClient, NoFilmDataError
from .services.tmdb import TMDBClient, TMDBError
from .utils import split_csv

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
SLUG_RE = re.compile(r"^[a-z0-9-]+$")

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(20.0, connect=10.0),
            follow_redirects=True,
        )
    )
    fastapi_app.state.letterboxd_client = LetterboxdClient(settings, http_client)
    fastapi_app.state.tmdb_client = (
        TMDBClient(settings, http_client) if settings.tmdb_api_key else None
    )
    try:
        fastapi_app.state.catalog = load_catalog(
            settings.catalog_metadata_path, settings.catalog_vectors_path
        )
    except CatalogLoadError as exc:
        logger.warning("Catalog unavailable, recommendations disabled: %s", exc)
        fastapi_app.state.catalog = None

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Letterboxd-driven movie recommendations from taste embeddings",
        version=__version__,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_letterboxd_client(app: FastAPI) -> LetterboxdClient:
    client = getattr(app.state, "letterboxd_client", None)
    if not isinstance(client, LetterboxdClient):
        raise RuntimeError("Letterboxd client not initialised")
    return client


def get_catalog(app: FastAPI) -> CatalogHandle | None:
    catalog = getattr(app.state, "catalog", None)
    return catalog if isinstance(catalog, CatalogHandle) else None


def _require_username(username: str | None) -> str:
    cleaned = (username or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Missing username")
    if not USERNAME_RE.match(cleaned):
        raise HTTPException(status_code=400, detail="Invalid username")
    return cleaned


def _scrape_headers(result: ScrapeResult) -> dict[str, str]:
    ttl = settings.scrape_cache_seconds
    cpu_ms = result.parse_seconds * 1000
    net_ms = max(result.elapsed_seconds - result.parse_seconds, 0.0) * 1000
    return {
        "Cache-Control": f"public, s-maxage={ttl}, stale-while-revalidate={ttl // 2}",
        "Server-Timing": (
            f'cpu;dur={cpu_ms:.2f};desc="Parse CPU", '
            f'net;dur={net_ms:.2f};desc="Network Wait"'
        ),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    async def _scrape_or_raise(username: str) -> ScrapeResult:
        client = get_letterboxd_client(fastapi_app)
        try:
            return await client.scrape(username)
        except NoFilmDataError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        return {"status": "ok", "catalog_loaded": get_catalog(fastapi_app) is not None}

    @fastapi_app.get("/api/scrape", response_model=ScrapeResponse)
    async def scrape(response: Response, username: str | None = None) -> Any:
        username = _require_username(username)
        try:
            result = await _scrape_or_raise(username)
        except HTTPException:
            raise
        except Exception as exc:
            logger.exception("Scrape failed for %s", username)
            return JSONResponse({"error": str(exc)}, status_code=500)
        response.headers.update(_scrape_headers(result))
        return result.to_payload()

    @fastapi_app.get("/api/recommendations", response_model=RecommendationResponse)
    async def recommendations(
        username: str | None = None,
        alpha: float | None = Query(default=None),
        pop_factor: float | None = Query(default=None, alias="popFactor"),
        rating_power: float | None = Query(default=None, alias="ratingPower", gt=0),
        use_negatives: bool | None = Query(default=None, alias="useNegatives"),
        exclude_watchlist: bool = Query(default=True, alias="excludeWatchlist"),
        liked_quantile: float | None = Query(
            default=None, alias="likedQuantile", ge=0.0, le=1.0
        ),
        limit: int = Query(
            default=MAX_RECOMMENDATIONS, ge=1, le=MAX_RECOMMENDATIONS
        ),
    ) -> Any:
        username = _require_username(username)
        catalog = get_catalog(fastapi_app)
        if catalog is None:
            raise HTTPException(status_code=503, detail="Recommendation catalog not loaded")

        try:
            result = await _scrape_or_raise(username)
        except HTTPException:
            raise
        except Exception as exc:
            logger.exception("Scrape failed for %s", username)
            return JSONResponse({"error": str(exc)}, status_code=500)

        quantile = settings.liked_quantile if liked_quantile is None else liked_quantile
        liked, threshold = select_liked_films(result.watched, quantile)
        if not liked:
            raise HTTPException(status_code=404, detail=f"{username} has not rated any films")
        exclusions = collect_exclusions(result.films, include_watchlist=exclude_watchlist)

        entries = await run_in_threadpool(
            get_recommendations,
            catalog,
            liked,
            exclusions,
            alpha=settings.default_alpha if alpha is None else alpha,
            pop_factor=settings.default_pop_factor if pop_factor is None else pop_factor,
            rating_power=(
                settings.default_rating_power if rating_power is None else rating_power
            ),
            use_negatives=(
                settings.default_use_negatives if use_negatives is None else use_negatives
            ),
        )
        return RecommendationResponse(
            username=username,
            liked_count=len(liked),
            threshold=threshold,
            excluded_count=len(exclusions),
            recommendations=[
                RecommendationPayload(**entry.to_payload()) for entry in entries[:limit]
            ],
        )

    @fastapi_app.get("/api/get-movie-image")
    async def movie_image(slug: str | None = None, slugs: str | None = None) -> Any:
        client = get_letterboxd_client(fastapi_app)
        if slugs:
            requested = [
                entry
                for entry in split_csv(slugs, limit=settings.image_batch_limit)
                if SLUG_RE.match(entry)
            ]
            return await client.fetch_posters(requested)

        cleaned = (slug or "").strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Missing slug")
        if not SLUG_RE.match(cleaned):
            raise HTTPException(status_code=400, detail="Invalid slug")
        image = await client.fetch_poster(cleaned)
        if image is None:
            raise HTTPException(status_code=404, detail="Image not found")
        return {"image": image}

    @fastapi_app.get("/api/tmdb", response_model=MovieMetadata)
    async def tmdb_proxy(
        lookup_type: str | None = Query(default=None, alias="type"),
        tmdb_id: int | None = Query(default=None, alias="id", ge=1),
        query: str | None = None,
    ) -> Any:
        if lookup_type not in {"details", "search"}:
            raise HTTPException(status_code=400, detail="Missing type parameter")
        if lookup_type == "details" and tmdb_id is None:
            raise HTTPException(status_code=400, detail="Missing id parameter")
        if lookup_type == "search" and not (query or "").strip():
            raise HTTPException(status_code=400, detail="Missing query parameter")

        client = getattr(fastapi_app.state, "tmdb_client", None)
        if not isinstance(client, TMDBClient):
            raise HTTPException(status_code=503, detail="TMDB is not configured")

        try:
            if lookup_type == "details":
                metadata = await client.details(tmdb_id)  # type: ignore[arg-type]
            else:
                metadata = await client.search(query.strip())  # type: ignore[union-attr]
        except TMDBError as exc:
            status = 404 if exc.status_code == 404 else 502
            raise HTTPException(status_code=status, detail=str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("TMDB request failed: %s", exc)
            raise HTTPException(status_code=502, detail="TMDB unreachable") from exc
        if metadata is None:
            raise HTTPException(status_code=404, detail="No matching movie")
        return metadata


app = create_app()
