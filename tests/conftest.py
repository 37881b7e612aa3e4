"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.catalog import CatalogHandle  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def make_catalog(size: int = 200, dimension: int = 8, seed: int = 7) -> CatalogHandle:
    """Return a random catalog with unit vectors and varied norms."""

    rng = np.random.default_rng(seed)
    vectors = rng.normal(size=(size, dimension))
    vectors /= np.linalg.norm(vectors, axis=1, keepdims=True)
    norms = rng.uniform(0.5, 3.0, size=size)
    titles = [f"film-{index}" for index in range(size)]
    return CatalogHandle.from_arrays(titles, norms, vectors)


@pytest.fixture
def catalog() -> CatalogHandle:
    return make_catalog()
