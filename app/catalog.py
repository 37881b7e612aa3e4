"""Loading of the precomputed movie embedding catalog."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np

from .utils import normalize_key

logger = logging.getLogger(__name__)

VECTOR_DTYPE = np.dtype("<f4")


class CatalogLoadError(RuntimeError):
    """Raised when the catalog files are missing or inconsistent."""


@dataclass(frozen=True, eq=False)
class CatalogHandle:
    """Read-only embedding catalog.

    ``titles``, ``norms`` and the rows of ``vectors`` are index aligned and
    never reordered. The arrays are flagged read-only so the handle can be
    shared between concurrent requests without locking.
    """

    titles: tuple[str, ...]
    norms: np.ndarray
    vectors: np.ndarray
    index: Mapping[str, int]

    @classmethod
    def from_arrays(
        cls,
        titles: list[str] | tuple[str, ...],
        norms: Any,
        vectors: Any,
    ) -> "CatalogHandle":
        titles = tuple(str(title) for title in titles)
        norm_array = np.array(norms, dtype=np.float64)
        vector_array = np.array(vectors, dtype=np.float32)
        if vector_array.ndim != 2:
            raise CatalogLoadError("Catalog vectors must form a 2-D matrix")
        if vector_array.shape[0] != len(titles):
            raise CatalogLoadError(
                f"Catalog has {len(titles)} titles but {vector_array.shape[0]} vectors"
            )
        if norm_array.shape != (len(titles),):
            raise CatalogLoadError(
                f"Catalog has {len(titles)} titles but {norm_array.size} norms"
            )
        norm_array.setflags(write=False)
        vector_array.setflags(write=False)

        index: dict[str, int] = {}
        for position, title in enumerate(titles):
            # First occurrence wins when two titles normalize to the same key.
            index.setdefault(normalize_key(title), position)

        return cls(
            titles=titles,
            norms=norm_array,
            vectors=vector_array,
            index=MappingProxyType(index),
        )

    def __len__(self) -> int:
        return len(self.titles)

    @property
    def dimension(self) -> int:
        return int(self.vectors.shape[1])

    def lookup(self, title: str) -> int | None:
        """Return the catalog position for a title, ignoring case and padding."""

        return self.index.get(normalize_key(title))


def load_catalog(metadata_path: str | Path, vectors_path: str | Path) -> CatalogHandle:
    """Load the metadata document and the float32 vector blob."""

    metadata_path = Path(metadata_path)
    vectors_path = Path(vectors_path)
    try:
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise CatalogLoadError(f"Catalog metadata not found: {metadata_path}") from exc
    except json.JSONDecodeError as exc:
        raise CatalogLoadError(f"Catalog metadata is not valid JSON: {exc}") from exc

    if not isinstance(metadata, dict):
        raise CatalogLoadError("Catalog metadata must be a JSON object")
    try:
        titles = list(metadata["titles"])
        norms = list(metadata["norms"])
        vector_size = int(metadata["vectorSize"])
    except (KeyError, TypeError, ValueError) as exc:
        raise CatalogLoadError(f"Catalog metadata is incomplete: {exc}") from exc
    if vector_size <= 0:
        raise CatalogLoadError("Catalog vectorSize must be positive")

    try:
        flat = np.fromfile(vectors_path, dtype=VECTOR_DTYPE)
    except FileNotFoundError as exc:
        raise CatalogLoadError(f"Catalog vectors not found: {vectors_path}") from exc

    expected = len(titles) * vector_size
    if flat.size != expected:
        raise CatalogLoadError(
            f"Catalog blob holds {flat.size} floats, expected {expected}"
        )

    handle = CatalogHandle.from_arrays(
        titles, norms, flat.reshape(len(titles), vector_size)
    )
    logger.info(
        "Loaded catalog with %s films of dimension %s", len(handle), handle.dimension
    )
    return handle


def convert_json_catalog(
    source: str | Path,
    metadata_path: str | Path,
    vectors_path: str | Path,
) -> CatalogHandle:
    """Split a single-document JSON model into metadata and a binary blob."""

    try:
        data = json.loads(Path(source).read_text(encoding="utf-8"))
        titles = list(data["titles"])
        norms = list(data["norms"])
        vectors = list(data["vectors"])
    except (OSError, json.JSONDecodeError, KeyError, TypeError) as exc:
        raise CatalogLoadError(f"Cannot read JSON catalog {source}: {exc}") from exc

    if not vectors:
        raise CatalogLoadError("JSON catalog contains no vectors")
    vector_size = len(vectors[0])
    if any(len(vector) != vector_size for vector in vectors):
        raise CatalogLoadError("JSON catalog vectors have inconsistent dimensions")

    handle = CatalogHandle.from_arrays(titles, norms, vectors)
    Path(metadata_path).write_text(
        json.dumps(
            {"titles": list(handle.titles), "norms": norms, "vectorSize": vector_size}
        ),
        encoding="utf-8",
    )
    handle.vectors.astype(VECTOR_DTYPE).tofile(vectors_path)
    logger.info(
        "Converted %s films of dimension %s into %s and %s",
        len(handle),
        vector_size,
        metadata_path,
        vectors_path,
    )
    return handle
