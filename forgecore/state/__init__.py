"""
forgecore.state — ledger state subsystem (accounts, journal, snapshots).

To keep import-time overhead low and avoid circulars, the common symbols are
lazily re-exported from their submodules on first access.

Submodules:
- accounts:   Account records (balance, nonce, code, storage)
- ledger:     LedgerState arena with journaled writes
- journal:    Append-only inverse log + snapshot markers
- snapshots:  StateDiff of mutations since a snapshot
"""

from __future__ import annotations

from importlib import import_module as _imp
from typing import Any, Dict, Tuple

# Map of public attributes → (submodule, symbol)
_exports: Dict[str, Tuple[str, str]] = {
    "Account": ("accounts", "Account"),
    "LedgerState": ("ledger", "LedgerState"),
    "Journal": ("journal", "Journal"),
    "StateDiff": ("snapshots", "StateDiff"),
    "diff_since": ("snapshots", "diff_since"),
}

__all__ = tuple(_exports.keys())


def __getattr__(name: str) -> Any:
    """
    Lazy attribute loader to avoid import-time dependency tangles.
    """
    if name in _exports:
        submod, symbol = _exports[name]
        mod = _imp(f"{__name__}.{submod}")
        return getattr(mod, symbol)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(list(globals().keys()) + list(__all__))
