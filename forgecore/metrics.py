"""
forgecore.metrics — Prometheus counters & histograms for test execution.

Design goals
------------
* Centralized registry: a private `CollectorRegistry` so embedding forgecore never
  collides with an application's default registry; callers can inject their own via
  `set_registry()` and render with `generate_latest_text()`.
* Simple helpers: `observe_test(...)`, `observe_trial(...)`, `observe_call(...)` cover
  the runner, the fuzz engine and the orchestrator.

Exposed metrics (names are prefixed with `forgecore_`):
  - tests_total{status}            : Counter — finished tests by status
  - fuzz_trials_total{outcome}     : Counter — fuzz trials by outcome
  - call_gas_used{status}          : Histogram — gas used per top-level call
  - test_seconds{kind}             : Histogram — wall time per test

Labels:
  - status  ∈ {pass, fail, error} for tests; {success, revert, oog, invalid, halt} for calls
  - outcome ∈ {pass, fail, reject}
  - kind    ∈ {unit, fuzz}
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Histogram, generate_latest)

# ------------------------------ configuration -------------------------------

_PREFIX = "forgecore_"


def _buckets_from_env(name: str, default: Iterable[float]) -> Iterable[float]:
    raw = os.getenv(name)
    if not raw:
        return default
    out = []
    for tok in raw.split(","):
        tok = tok.strip()
        if not tok:
            continue
        try:
            out.append(float(tok))
        except ValueError:
            continue
    return out or default


_CALL_GAS_BUCKETS = tuple(_buckets_from_env(
    "FORGECORE_METRICS_GAS_BUCKETS",
    (1_000, 5_000, 10_000, 25_000, 50_000, 100_000, 250_000, 500_000,
     1_000_000, 5_000_000, 30_000_000),
))
_TEST_SECONDS_BUCKETS = tuple(_buckets_from_env(
    "FORGECORE_METRICS_TEST_SECONDS_BUCKETS",
    (0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
))


# ------------------------------ registry & ctor ------------------------------

_lock = threading.Lock()
_registry: Optional[CollectorRegistry] = None

TESTS_TOTAL: Counter
FUZZ_TRIALS_TOTAL: Counter
CALL_GAS_USED: Histogram
TEST_SECONDS: Histogram


def _build_metrics(reg: CollectorRegistry) -> None:
    global TESTS_TOTAL, FUZZ_TRIALS_TOTAL, CALL_GAS_USED, TEST_SECONDS

    TESTS_TOTAL = Counter(
        _PREFIX + "tests_total",
        "Tests finished (by status).",
        labelnames=("status",),
        registry=reg,
    )
    FUZZ_TRIALS_TOTAL = Counter(
        _PREFIX + "fuzz_trials_total",
        "Fuzz trials executed (by outcome).",
        labelnames=("outcome",),
        registry=reg,
    )
    CALL_GAS_USED = Histogram(
        _PREFIX + "call_gas_used",
        "Gas used per top-level call.",
        labelnames=("status",),
        buckets=_CALL_GAS_BUCKETS,
        registry=reg,
    )
    TEST_SECONDS = Histogram(
        _PREFIX + "test_seconds",
        "Wall time per test, setUp included.",
        labelnames=("kind",),
        buckets=_TEST_SECONDS_BUCKETS,
        registry=reg,
    )


def set_registry(registry: CollectorRegistry) -> None:
    """
    Inject a custom CollectorRegistry. Must be called before the first metric is
    recorded; later calls are ignored.
    """
    global _registry
    with _lock:
        if _registry is not None:
            return
        _registry = registry
        _build_metrics(registry)


def get_registry() -> CollectorRegistry:
    """
    Return the metrics registry, creating one on first use.
    """
    global _registry
    with _lock:
        if _registry is None:
            _registry = CollectorRegistry()
            _build_metrics(_registry)
        return _registry


# ------------------------------ helpers -------------------------------------

def observe_test(*, status: str, kind: str, seconds: float) -> None:
    """
    Record one finished test.

    Args:
        status: 'pass' | 'fail' | 'error'
        kind:   'unit' | 'fuzz'
        seconds: wall time including setUp
    """
    get_registry()
    TESTS_TOTAL.labels(status=status).inc()
    TEST_SECONDS.labels(kind=kind).observe(max(0.0, float(seconds)))


def observe_trial(*, outcome: str) -> None:
    get_registry()
    FUZZ_TRIALS_TOTAL.labels(outcome=outcome).inc()


def observe_call(*, status: str, gas_used: int) -> None:
    get_registry()
    if gas_used >= 0:
        CALL_GAS_USED.labels(status=status).observe(float(gas_used))


@dataclass
class _TimerCtx:
    t0: float
    elapsed: float = 0.0

    def stop(self) -> float:
        self.elapsed = max(0.0, time.perf_counter() - self.t0)
        return self.elapsed

    def __enter__(self) -> "_TimerCtx":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def timer() -> _TimerCtx:
    """
    Wall-clock timer used around a test:

        with timer() as t:
            ...
        observe_test(status="pass", kind="unit", seconds=t.elapsed)
    """
    return _TimerCtx(t0=time.perf_counter())


# ------------------------------ exposition ----------------------------------

def generate_latest_text() -> bytes:
    """
    Return Prometheus exposition format for the current registry.
    """
    return generate_latest(get_registry())


def sample_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Current value of one sample (0.0 if absent); handy in tests and reports."""
    v = get_registry().get_sample_value(_PREFIX + name, labels or {})
    return float(v or 0.0)


__all__ = [
    "get_registry",
    "set_registry",
    "generate_latest_text",
    "sample_value",
    "observe_test",
    "observe_trial",
    "observe_call",
    "timer",
    "TESTS_TOTAL",
    "FUZZ_TRIALS_TOTAL",
    "CALL_GAS_USED",
    "TEST_SECONDS",
    "CONTENT_TYPE_LATEST",
]
