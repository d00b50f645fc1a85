"""
forgecore.runner.discovery — find test functions in a contract ABI.

Conventions:
  test*       a test; it passes when the call succeeds
  testFail*   a test that passes when the call fails
  parameters  make a test a fuzz test; without them it is a unit test
  setUp()     runs before every test, on that test's own ledger
  failed()    optional bool view consulted after a successful test call; true
              means an assertion helper recorded a failure without reverting

Discovery order is ABI order; reports keep it.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from forgecore.abi.selectors import function_selector
from forgecore.config import FuzzConfig
from forgecore.types.testing import TestKind, TestSpec

TEST_PREFIX = "test"
FAIL_PREFIX = "testFail"
SETUP_SIGNATURE = "setUp()"
FAILED_SIGNATURE = "failed()"


def _signature(entry: Mapping[str, Any]) -> str:
    sig = entry.get("signature")
    if sig:
        return str(sig)
    types = ",".join(p["type"] for p in entry.get("inputs", ()))
    return f"{entry['name']}({types})"


def has_function(abi: Sequence[Mapping[str, Any]], signature: str) -> bool:
    return any(e.get("type", "function") == "function" and _signature(e) == signature
               for e in abi)


def discover(abi: Sequence[Mapping[str, Any]], *, match: Optional[str] = None,
             fuzz: Optional[FuzzConfig] = None) -> List[TestSpec]:
    """TestSpecs for every test function in `abi`, optionally filtered by a name regex."""
    pattern = re.compile(match) if match else None
    specs: List[TestSpec] = []
    seen: Dict[str, int] = {}
    for entry in abi:
        if entry.get("type", "function") != "function":
            continue
        name = str(entry["name"])
        if not name.startswith(TEST_PREFIX):
            continue
        if pattern is not None and not pattern.search(name):
            continue
        sig = _signature(entry)
        if sig in seen:
            continue
        seen[sig] = len(specs)
        params = tuple(
            (p.get("name") or f"arg{i}", p["type"]) for i, p in enumerate(entry.get("inputs", ()))
        )
        kind = TestKind.FUZZ if params else TestKind.UNIT
        specs.append(TestSpec(
            name=name,
            signature=sig,
            selector=function_selector(sig),
            params=params,
            kind=kind,
            expect_fail=name.startswith(FAIL_PREFIX),
            fuzz=fuzz if kind is TestKind.FUZZ else None,
        ))
    return specs


__all__ = ["discover", "has_function", "TEST_PREFIX", "FAIL_PREFIX",
           "SETUP_SIGNATURE", "FAILED_SIGNATURE"]
