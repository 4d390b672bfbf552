"""Package version and the default User-Agent derived from it."""

from __future__ import annotations

from typing import Tuple

# Bump this when publishing
__version__ = "0.3.0"


def version_tuple() -> Tuple[int, ...]:
    return tuple(int(p) for p in __version__.split(".") if p.isdigit())


def default_user_agent() -> str:
    return f"blobstore-py/{__version__}"


__all__ = ["__version__", "version_tuple", "default_user_agent"]
