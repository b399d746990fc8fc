"""
docker-time-machine — track container image evolution through git history.

Rebuilds an image at successive commits, measures size, build time and layers,
computes deltas between neighbouring successful builds and bisects size or
build-time regressions.

Importing the package has no side effects (no config loading, no logging init).
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
