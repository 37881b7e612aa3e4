"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import MovieMetadata

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"
LOGO_BASE_URL = "https://image.tmdb.org/t/p/w300"


class TMDBError(RuntimeError):
    """Raised when TMDB answers with an error status."""

    def __init__(self, status_code: int, message: str = "TMDB Error"):
        super().__init__(message)
        self.status_code = status_code


class TMDBClient:
    """Client proxying TMDB movie details and searches."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._base_url = str(settings.tmdb_api_url).rstrip("/")

    async def details(self, tmdb_id: int, *, with_logo: bool = True) -> MovieMetadata:
        """Return metadata for a TMDB movie id."""

        payload = await self._get(f"/movie/{tmdb_id}")
        metadata = self._to_metadata(payload)
        if with_logo:
            logo = await self._fetch_logo(tmdb_id)
            if logo:
                metadata = metadata.model_copy(update={"logo": logo})
        return metadata

    async def search(self, query: str) -> MovieMetadata | None:
        """Return the first search hit for ``query``."""

        payload = await self._get("/search/movie", query=query)
        results = payload.get("results") or []
        for candidate in results:
            if isinstance(candidate, dict) and candidate.get("id") is not None:
                return self._to_metadata(candidate)
        return None

    async def _get(self, path: str, **params: Any) -> dict[str, Any]:
        params["api_key"] = self._settings.tmdb_api_key
        response = await self._client.get(f"{self._base_url}{path}", params=params)
        if response.status_code >= 400:
            logger.warning(
                "TMDB request %s failed with %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise TMDBError(response.status_code)
        data = response.json()
        if not isinstance(data, dict):
            raise TMDBError(502, "Unexpected TMDB response structure")
        return data

    async def _fetch_logo(self, tmdb_id: int) -> str | None:
        try:
            payload = await self._get(
                f"/movie/{tmdb_id}/images", include_image_language="en,null"
            )
        except (TMDBError, httpx.HTTPError) as exc:
            logger.debug("TMDB logo lookup failed for %s: %s", tmdb_id, exc)
            return None
        logos = payload.get("logos") or []
        if not logos or not isinstance(logos[0], dict):
            return None
        return self._build_image_url(logos[0].get("file_path"), LOGO_BASE_URL)

    def _to_metadata(self, payload: dict[str, Any]) -> MovieMetadata:
        return MovieMetadata(
            id=int(payload["id"]),
            title=str(payload.get("title") or payload.get("name") or ""),
            overview=payload.get("overview") or None,
            release_date=payload.get("release_date") or None,
            poster=self._build_image_url(payload.get("poster_path"), POSTER_BASE_URL),
            backdrop=self._build_image_url(
                payload.get("backdrop_path"), BACKDROP_BASE_URL
            ),
        )

    @staticmethod
    def _build_image_url(path: str | None, base_url: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"
