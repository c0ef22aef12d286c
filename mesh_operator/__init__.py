"""
.. include:: ../README.md
"""

__all__ = [
    "manifest",
    "labels",
    "cache",
    "prune",
    "hooks",
    "cluster",
    "exceptions",
    "config",
    "resource_diff",
]
