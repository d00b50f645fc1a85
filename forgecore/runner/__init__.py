"""
forgecore.runner — test discovery, execution and result aggregation.

    from forgecore.runner import TestRunner
    report = TestRunner(config).run(artifact)

Submodules:
- discovery: TestSpecs from an ABI (test*, testFail*, setUp, failed)
- runner:    TestRunner (per-test ledgers, worker pool, ordered results)
- report:    TestResult, SuiteReport
"""

from __future__ import annotations

from importlib import import_module as _imp
from typing import Any, Dict, Tuple

_exports: Dict[str, Tuple[str, str]] = {
    "TestRunner": ("runner", "TestRunner"),
    "TestResult": ("report", "TestResult"),
    "SuiteReport": ("report", "SuiteReport"),
    "discover": ("discovery", "discover"),
}

__all__ = tuple(_exports.keys())


def __getattr__(name: str) -> Any:
    if name in _exports:
        submod, symbol = _exports[name]
        return getattr(_imp(f"{__name__}.{submod}"), symbol)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover
    return sorted(list(globals().keys()) + list(__all__))
