"""
forgecore.version — package version.

    from forgecore.version import __version__
"""

from __future__ import annotations

# Bump this when making a tagged release. Use semver (major.minor.patch).
__version__ = "0.1.0"

__all__ = ["__version__"]
