"""
forgecore.fuzz — property-based testing of contract functions.

Submodules:
- strategies: boundary-biased, seed-deterministic argument generation
- shrink:     greedy minimization of a failing case
- engine:     the trial loop (FuzzEngine)
"""

from __future__ import annotations

from importlib import import_module as _imp
from typing import Any, Dict, Tuple

_exports: Dict[str, Tuple[str, str]] = {
    "FuzzEngine": ("engine", "FuzzEngine"),
    "FuzzOutcome": ("engine", "FuzzOutcome"),
    "ValueGenerator": ("strategies", "ValueGenerator"),
    "generate_cases": ("strategies", "generate_cases"),
    "iter_cases": ("strategies", "iter_cases"),
    "shrink_value": ("shrink", "shrink_value"),
    "minimize": ("shrink", "minimize"),
}

__all__ = tuple(_exports.keys())


def __getattr__(name: str) -> Any:
    if name in _exports:
        submod, symbol = _exports[name]
        return getattr(_imp(f"{__name__}.{submod}"), symbol)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(list(globals().keys()) + list(__all__))
