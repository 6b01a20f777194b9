"""startune package."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("startune")
except PackageNotFoundError:  # pragma: no cover - fallback for source checkouts
    __version__ = "0.0.0"
