"""Embedding based recommendation scoring.

A user profile is built from the embeddings of the films they liked, each
weighted by how niche the film is and how strongly it was rated. Every
catalog entry is then scored by cosine similarity to that profile, scaled by
a popularity term derived from the entry's raw embedding norm.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np

from .catalog import CatalogHandle
from .models import FilmRecord, LikedFilm, RecommendationEntry
from .utils import normalize_key

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 150
RARITY_EPSILON = 1e-6
DEGENERATE_NORM = 1e-9
NEUTRAL_RATING = 2.5
MAX_RATING = 5.0


def rating_intensity(rating: float, use_negatives: bool) -> tuple[float, float]:
    """Return ``(sign, intensity)`` for a star rating.

    Without negatives the intensity is ``rating / 5``. With negatives ratings
    below 2.5 push the profile away, a 0.5 being the strongest rejection.
    """

    if not use_negatives:
        return 1.0, rating / MAX_RATING
    if rating < NEUTRAL_RATING:
        return -1.0, (NEUTRAL_RATING - rating) / NEUTRAL_RATING
    return 1.0, (rating - NEUTRAL_RATING) / NEUTRAL_RATING


def resolve_liked(
    catalog: CatalogHandle, liked: Iterable[LikedFilm]
) -> tuple[list[int], list[float]]:
    indices: list[int] = []
    ratings: list[float] = []
    missed = 0
    for film in liked:
        position = catalog.lookup(film.slug)
        if position is None:
            missed += 1
            continue
        indices.append(position)
        ratings.append(float(film.rating))
    if missed:
        logger.debug("%s liked films are not in the catalog", missed)
    return indices, ratings


def build_user_profile(
    catalog: CatalogHandle,
    liked: Iterable[LikedFilm],
    *,
    alpha: float,
    rating_power: float,
    use_negatives: bool,
) -> np.ndarray | None:
    """Return the unit-length taste vector, or ``None`` if nothing resolved."""

    indices, ratings = resolve_liked(catalog, liked)
    if not indices:
        return None

    positions = np.asarray(indices, dtype=np.intp)
    norms = catalog.norms[positions]
    rarity_weights = 1.0 / (np.power(norms, alpha) + RARITY_EPSILON)

    signs = np.empty(len(ratings), dtype=np.float64)
    intensities = np.empty(len(ratings), dtype=np.float64)
    for offset, rating in enumerate(ratings):
        signs[offset], intensities[offset] = rating_intensity(rating, use_negatives)
    rating_weights = np.power(intensities, rating_power)

    total_weights = rarity_weights * rating_weights * signs
    weighted = catalog.vectors[positions].astype(np.float64) * total_weights[:, None]

    if use_negatives:
        # Summation lets liked and disliked films cancel each other out.
        profile = weighted.sum(axis=0)
    else:
        # Max pooling keeps the strongest signal per latent dimension.
        profile = weighted.max(axis=0)

    magnitude = float(np.linalg.norm(profile))
    if magnitude <= DEGENERATE_NORM:
        return np.zeros(catalog.dimension, dtype=np.float64)
    return profile / magnitude


def score_catalog(
    catalog: CatalogHandle,
    profile: np.ndarray,
    exclude_slugs: Iterable[str],
    *,
    pop_factor: float,
    limit: int = MAX_RECOMMENDATIONS,
) -> list[RecommendationEntry]:
    """Rank the catalog against a profile and rescale scores to 0-100."""

    eligible = np.ones(len(catalog), dtype=bool)
    for slug in exclude_slugs:
        position = catalog.lookup(slug)
        if position is not None:
            eligible[position] = False

    candidates = np.flatnonzero(eligible)
    if candidates.size == 0:
        return []

    similarity = catalog.vectors[candidates].astype(np.float64) @ profile
    popularity = np.power(catalog.norms[candidates], pop_factor)
    scores = similarity * popularity

    # Descending score, ties broken by catalog position.
    order = np.lexsort((candidates, -scores))[: min(limit, MAX_RECOMMENDATIONS)]
    top_scores = scores[order]
    top_positions = candidates[order]

    best = float(top_scores[0])
    if best > 0:
        relative = np.clip(np.floor(top_scores / best * 100 + 0.5), 0, 100).astype(int)
    else:
        relative = np.zeros(order.size, dtype=int)

    return [
        RecommendationEntry(slug=catalog.titles[position], relative_score=int(value))
        for position, value in zip(top_positions, relative)
    ]


def get_recommendations(
    catalog: CatalogHandle | None,
    liked: Sequence[LikedFilm],
    exclude_slugs: Iterable[str],
    *,
    alpha: float = 3.0,
    pop_factor: float = 0.4,
    rating_power: float = 2.0,
    use_negatives: bool = True,
) -> list[RecommendationEntry]:
    """Build a profile from ``liked`` and return the top catalog matches."""

    if catalog is None:
        return []
    profile = build_user_profile(
        catalog,
        liked,
        alpha=alpha,
        rating_power=rating_power,
        use_negatives=use_negatives,
    )
    if profile is None:
        logger.info("None of the %s liked films matched the catalog", len(liked))
        return []
    return score_catalog(catalog, profile, exclude_slugs, pop_factor=pop_factor)


def select_liked_films(
    films: Iterable[FilmRecord], quantile: float
) -> tuple[list[LikedFilm], float]:
    """Keep the user's top rated watched films.

    The threshold is the linear-interpolated ``quantile`` of the user's
    ratings; every rated film at or above it counts as liked.
    """

    rated = [
        (film.slug, film.rating_value)
        for film in films
        if not film.is_watchlist and film.rating_value is not None
    ]
    if not rated:
        return [], 0.0
    threshold = float(np.quantile([rating for _, rating in rated], quantile))
    liked = [
        LikedFilm(slug=slug, rating=rating)
        for slug, rating in rated
        if rating >= threshold
    ]
    return liked, threshold


def collect_exclusions(
    films: Iterable[FilmRecord], *, include_watchlist: bool
) -> set[str]:
    """Return normalized slugs the user should not be recommended again."""

    return {
        normalize_key(film.slug)
        for film in films
        if include_watchlist or not film.is_watchlist
    }
