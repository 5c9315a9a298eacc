# src/kraken_dca/utils/__init__.py

from .logging import configure_root, get_logger  # noqa: F401
