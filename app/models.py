"""Data models describing scraped films, recommendations and API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from .utils import format_title

WATCHLIST_PREFIX = "watchlist_"

PageKind = Literal["watched", "watchlist"]


@dataclass(frozen=True, slots=True)
class Rated:
    """A star rating in half-star steps between 0.5 and 5.0."""

    value: float


@dataclass(frozen=True, slots=True)
class Unrated:
    """Marker for films logged without a rating and for wish-list entries."""


UNRATED = Unrated()

RatingValue = Rated | Unrated


@dataclass(frozen=True, slots=True)
class FilmRecord:
    """A single film parsed from a list page.

    ``kind`` records which list the film came from. ``owner`` is only the
    display tag written to the scrape payload.
    """

    owner: str
    movie_id: int
    slug: str
    rating: RatingValue = UNRATED
    kind: PageKind = "watched"

    @property
    def is_watchlist(self) -> bool:
        return self.kind == "watchlist"

    @property
    def rating_value(self) -> float | None:
        if isinstance(self.rating, Rated):
            return self.rating.value
        return None

    def to_payload(self) -> dict[str, object]:
        return {
            "username": self.owner,
            "movie_id": self.movie_id,
            "title": self.slug,
            "rating": self.rating_value,
        }


def watchlist_owner(username: str) -> str:
    """Return the owner tag used for a user's wish-list records."""

    return f"{WATCHLIST_PREFIX}{username}"


@dataclass(frozen=True, slots=True)
class PaginationTask:
    """One remaining list page to fetch and parse."""

    url: str
    kind: PageKind


@dataclass(frozen=True, slots=True)
class ScrapeResult:
    """Aggregated films for a user across the watched and wish-list streams."""

    username: str
    watched_count: int
    watchlist_count: int
    films: tuple[FilmRecord, ...] = field(default_factory=tuple)
    parse_seconds: float = 0.0
    elapsed_seconds: float = 0.0

    @property
    def watched(self) -> tuple[FilmRecord, ...]:
        return tuple(film for film in self.films if not film.is_watchlist)

    @property
    def watchlist(self) -> tuple[FilmRecord, ...]:
        return tuple(film for film in self.films if film.is_watchlist)

    def to_payload(self) -> dict[str, object]:
        return {
            "username": self.username,
            "watched_count": self.watched_count,
            "watchlist_count": self.watchlist_count,
            "total_films_retrieved": len(self.films),
            "films": [film.to_payload() for film in self.films],
        }


@dataclass(frozen=True, slots=True)
class LikedFilm:
    """Input to profile construction: a catalog slug and its rating."""

    slug: str
    rating: float


@dataclass(frozen=True, slots=True)
class RecommendationEntry:
    """A ranked catalog entry with its score relative to the best match."""

    slug: str
    relative_score: int

    def to_payload(self) -> dict[str, object]:
        return {
            "slug": self.slug,
            "title": format_title(self.slug),
            "score": self.relative_score,
        }


class FilmPayload(BaseModel):
    """Serialized film record returned by the scrape endpoint."""

    username: str
    movie_id: int
    title: str
    rating: float | None = None


class ScrapeResponse(BaseModel):
    """Body returned by ``/api/scrape``."""

    username: str
    watched_count: int
    watchlist_count: int
    total_films_retrieved: int
    films: list[FilmPayload] = Field(default_factory=list)


class RecommendationPayload(BaseModel):
    slug: str
    title: str
    score: int = Field(ge=0, le=100)


class RecommendationResponse(BaseModel):
    """Body returned by ``/api/recommendations``."""

    username: str
    liked_count: int
    threshold: float
    excluded_count: int
    recommendations: list[RecommendationPayload] = Field(default_factory=list)


class MovieMetadata(BaseModel):
    """Normalized view of a TMDB movie used by the metadata proxy."""

    id: int
    title: str
    overview: str | None = None
    release_date: str | None = None
    poster: str | None = None
    backdrop: str | None = None
    logo: str | None = None
