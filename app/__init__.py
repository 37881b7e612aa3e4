"""CineTaste web service: Letterboxd scraping and taste-vector recommendations.

Importing the package stays cheap. The FastAPI application and the settings
object are resolved from their modules the first time they are accessed.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "1.0.0"

_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "settings": "app.config",
    "get_settings": "app.config",
}

__all__ = ["__version__", *_EXPORTS]


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(import_module(module_name), name)
    globals()[name] = value
    return value
