"""beatfeed - Content-acquisition scheduler for the beat marketplace storefront."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("beatfeed")
except PackageNotFoundError:
    __version__ = "0.0.0"  # Fallback for development
