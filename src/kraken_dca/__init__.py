# src/kraken_dca/__init__.py
"""
Root package of kraken_dca.

Only metadata lives here, no side-effect imports and no ENV reads.
"""
from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__: str = _pkg_version("kraken-dca")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__", "get_version"]


def get_version() -> str:
    """Return the installed package version."""
    return __version__
