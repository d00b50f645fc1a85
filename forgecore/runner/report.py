"""
forgecore.runner.report — per-test results and the suite report.

Both are plain data for a reporting layer to format; `to_dict()` gives a
JSON-safe rendering (hex for bytes, lowercase status strings).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from forgecore.types.events import LogEvent
from forgecore.types.status import TestStatus
from forgecore.types.testing import Counterexample, GasStats, TestKind
from forgecore.version import __version__


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    name: str
    status: TestStatus
    kind: TestKind = TestKind.UNIT
    reason: Optional[str] = None
    gas: GasStats = field(default_factory=GasStats)
    counterexample: Optional[Counterexample] = None
    logs: Tuple[LogEvent, ...] = ()
    seed: Optional[int] = None
    runs: int = 0
    error: Optional[Dict[str, Any]] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is TestStatus.PASS

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": str(self.status),
            "kind": str(self.kind),
            "reason": self.reason,
            "gas": self.gas.to_dict(),
            "logs": [ev.to_dict() for ev in self.logs],
            "duration": round(self.duration, 6),
        }
        if self.kind is TestKind.FUZZ:
            d["seed"] = hex(self.seed) if self.seed is not None else None
            d["runs"] = self.runs
        if self.counterexample is not None:
            d["counterexample"] = self.counterexample.to_dict()
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class SuiteReport:
    contract: str
    results: List[TestResult] = field(default_factory=list)
    duration: float = 0.0

    def _count(self, status: TestStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def passed(self) -> int:
        return self._count(TestStatus.PASS)

    @property
    def failed(self) -> int:
        return self._count(TestStatus.FAIL)

    @property
    def errored(self) -> int:
        return self._count(TestStatus.ERROR)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    def get(self, name: str) -> Optional[TestResult]:
        for r in self.results:
            if r.name == name:
                return r
        return None

    def summary(self) -> str:
        return (f"{self.contract}: {self.passed} passed, {self.failed} failed, "
                f"{self.errored} errored in {self.duration:.3f}s")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract": self.contract,
            "forgecore": __version__,
            "passed": self.passed,
            "failed": self.failed,
            "errored": self.errored,
            "ok": self.ok,
            "duration": round(self.duration, 6),
            "results": [r.to_dict() for r in self.results],
        }


__all__ = ["TestResult", "SuiteReport"]
