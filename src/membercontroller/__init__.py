"""Grow consensus cluster membership one ready pod at a time."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

__version__: str
"""The version string of the member controller."""

try:
    __version__ = version("cluster-member-controller")
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"
