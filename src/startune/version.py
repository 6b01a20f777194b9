"""Project version source of truth."""

from __future__ import annotations

import platform

__all__ = ["PROJECT_NAME", "__version__", "build_help_epilog"]

# Manually updated for each release.
__version__ = "1.1.0"
PROJECT_NAME = "startune"


def build_help_epilog() -> str:
    return (
        f"Project: {PROJECT_NAME}\n"
        f"Platform: {platform.platform()}\n"
        f"Version: {__version__}"
    )
