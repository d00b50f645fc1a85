"""
forgecore.runner.runner — run every test of a compiled test contract.

    runner = TestRunner(load_config())
    report = runner.run(artifact)            # SuiteReport, discovery order

Flow
----
1. Build the base ledger: the fixture (forked) or an empty ledger with the
   configured block env; fund the sender.
2. Deploy the artifact once from the sender.
3. For each discovered test, on its own fork of the deployed ledger:
   setUp() (when present), then one call (unit) or the fuzz loop (fuzz), then
   the optional failed() check. testFail* inverts the outcome.

Tests run on a thread pool of `config.workers`; each worker owns its forked
ledger and Host, and results are collected in submission order. An error in
one test (integrity violation, backend crash, exhausted fuzzer) becomes that
test's ERROR result and never reaches its siblings.
"""

from __future__ import annotations

import concurrent.futures as _futures
import logging
from dataclasses import replace
from typing import List, Optional

from forgecore.abi.codec import decode_args
from forgecore.abi.selectors import function_selector
from forgecore.abi.types import ValidationError
from forgecore.config import RunConfig, validate
from forgecore.errors import ExecError
from forgecore.fuzz.engine import FuzzEngine
from forgecore.metrics import observe_test, timer
from forgecore.runtime.executor import Artifact, Executor, get_backend
from forgecore.runtime.orchestrator import Orchestrator
from forgecore.state.ledger import LedgerState
from forgecore.types.address import to_hex
from forgecore.types.result import ExecutionResult
from forgecore.types.status import TestStatus
from forgecore.types.testing import GasStats, TestKind, TestSpec

from .discovery import FAILED_SIGNATURE, SETUP_SIGNATURE, discover, has_function
from .report import SuiteReport, TestResult

log = logging.getLogger(__name__)

_SETUP = function_selector(SETUP_SIGNATURE)
_FAILED = function_selector(FAILED_SIGNATURE)


class TestRunner:
    __test__ = False

    def __init__(self, config: Optional[RunConfig] = None,
                 backend: Optional[Executor] = None) -> None:
        self.config = validate(config or RunConfig())
        self.backend = backend if backend is not None else get_backend(self.config.backend)
        self.orchestrator = Orchestrator(self.backend, self.config)
        self.fuzzer = FuzzEngine(self.orchestrator, self.config.fuzz)

    # ------------------------------------------------------------------ #
    # Suite
    # ------------------------------------------------------------------ #

    def run(self, artifact: Artifact, fixture: Optional[LedgerState] = None) -> SuiteReport:
        cfg = self.config
        specs = discover(artifact.abi, match=cfg.match, fuzz=cfg.fuzz)
        report = SuiteReport(contract=artifact.name)
        log.info("running %d tests of %s on %s", len(specs), artifact.name, self.backend.name)

        with timer() as total:
            base = fixture.fork() if fixture is not None else LedgerState(env=cfg.block_env())
            if base.balance(cfg.sender) == 0:
                base.set_balance(cfg.sender, cfg.initial_balance)

            deployed = self.orchestrator.deploy(base, cfg.sender, artifact.bytecode)
            if not deployed.is_success or deployed.created is None:
                reason = f"deployment failed: {deployed.reason or deployed.status}"
                log.warning("%s: %s", artifact.name, reason)
                report.results = [TestResult(name=s.name, status=TestStatus.ERROR, kind=s.kind,
                                             reason=reason) for s in specs]
                for s in specs:
                    observe_test(status=str(TestStatus.ERROR), kind=str(s.kind), seconds=0.0)
            else:
                target = deployed.created
                has_setup = has_function(artifact.abi, SETUP_SIGNATURE)
                has_failed = has_function(artifact.abi, FAILED_SIGNATURE)
                report.results = self._run_all(base, target, specs, has_setup, has_failed)

        report.duration = total.elapsed
        log.info("%s", report.summary())
        return report

    def _run_all(self, base: LedgerState, target: bytes, specs: List[TestSpec],
                 has_setup: bool, has_failed: bool) -> List[TestResult]:
        def job(spec: TestSpec) -> TestResult:
            return self.run_test(base.fork(), target, spec, has_setup=has_setup,
                                 has_failed=has_failed)

        if self.config.workers == 1 or len(specs) <= 1:
            return [job(s) for s in specs]
        # Thread pool with deterministic join order
        with _futures.ThreadPoolExecutor(max_workers=self.config.workers) as ex:
            futs = [ex.submit(job, s) for s in specs]
            return [fut.result() for fut in futs]

    # ------------------------------------------------------------------ #
    # One test
    # ------------------------------------------------------------------ #

    def run_test(self, ledger: LedgerState, target: bytes, spec: TestSpec, *,
                 has_setup: bool = False, has_failed: bool = False) -> TestResult:
        """Run `spec` against `ledger`, which must be private to this test."""
        with timer() as t:
            try:
                result = self._run_test(ledger, target, spec, has_setup, has_failed)
            except ExecError as e:
                log.warning("test %s errored: %s", spec.name, e)
                result = TestResult(name=spec.name, status=TestStatus.ERROR, kind=spec.kind,
                                    reason=e.message, error=e.to_dict())
            except Exception as e:
                log.exception("test %s crashed", spec.name)
                result = TestResult(name=spec.name, status=TestStatus.ERROR, kind=spec.kind,
                                    reason=f"{type(e).__name__}: {e}",
                                    error={"code": "INTERNAL", "message": str(e)})
        observe_test(status=str(result.status), kind=str(spec.kind), seconds=t.elapsed)
        log.info("%s %s", str(result.status).upper(), spec.name)
        return replace(result, duration=t.elapsed)

    def _run_test(self, ledger: LedgerState, target: bytes, spec: TestSpec,
                  has_setup: bool, has_failed: bool) -> TestResult:
        sender = self.config.sender
        if has_setup:
            res = self.orchestrator.call(ledger, sender, target, _SETUP)
            if not res.is_success:
                reason = f"setUp() failed: {res.reason or res.status}"
                log.warning("%s: %s", spec.name, reason)
                return TestResult(name=spec.name, status=TestStatus.FAIL, kind=spec.kind,
                                  reason=reason, gas=GasStats.single(res.gas_used))

        def check(led: LedgerState, res: ExecutionResult) -> bool:
            return self._passed(led, target, spec, res, has_failed)

        if spec.kind is TestKind.FUZZ:
            out = self.fuzzer.run(ledger, target, spec, sender=sender, check=check)
            reason = None
            if out.status is not TestStatus.PASS:
                reason = self._failure_reason(spec, out.result)
            return TestResult(name=spec.name, status=out.status, kind=spec.kind, reason=reason,
                              gas=out.gas, counterexample=out.counterexample,
                              logs=out.result.logs if out.result is not None else (),
                              seed=out.seed, runs=out.runs)

        res = self.orchestrator.call(ledger, sender, target, spec.selector)
        passed = check(ledger, res)
        log.debug("%s -> %s gas=%d", spec.name, res.status, res.gas_used)
        return TestResult(name=spec.name,
                          status=TestStatus.PASS if passed else TestStatus.FAIL,
                          kind=spec.kind,
                          reason=None if passed else self._failure_reason(spec, res),
                          gas=GasStats.single(res.gas_used), logs=res.logs)

    # ------------------------------------------------------------------ #
    # Outcome
    # ------------------------------------------------------------------ #

    def _passed(self, ledger: LedgerState, target: bytes, spec: TestSpec,
                res: ExecutionResult, has_failed: bool) -> bool:
        ok = res.is_success and not (has_failed and self._failed_flag(ledger, target))
        return ok != spec.expect_fail

    def _failed_flag(self, ledger: LedgerState, target: bytes) -> bool:
        res = self.orchestrator.call(ledger, self.config.sender, target, _FAILED)
        if not res.is_success:
            return True
        try:
            (flag,) = decode_args(("bool",), res.output)
        except ValidationError:
            log.warning("failed() on %s returned malformed data", to_hex(target))
            return True
        return bool(flag)

    @staticmethod
    def _failure_reason(spec: TestSpec, res: Optional[ExecutionResult]) -> str:
        if spec.expect_fail:
            return "expected failure, but the test succeeded"
        if res is None:
            return "test failed"
        if res.is_success:
            return "assertion failed (failed() returned true)"
        return res.reason or str(res.status)


__all__ = ["TestRunner"]
