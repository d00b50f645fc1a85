"""
forgecore — execution core of a contract testing framework.

Runs compiled contract code against an in-memory ledger under a pluggable
interpreter backend, drives unit and fuzz tests written as contract functions,
and aggregates pass/fail outcomes.

This package exposes only lightweight metadata at import time. Import the
subpackages (`forgecore.runner`, `forgecore.runtime`, `forgecore.state`, ...)
explicitly.
"""

from .version import __version__

__all__ = ["__version__"]
