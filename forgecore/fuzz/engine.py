"""
forgecore.fuzz.engine — run a fuzz test: generate, execute, classify, shrink.

Trial loop
----------
    seed -> Random(seed) -> FuzzCase stream
    for each case:
        snapshot ledger -> call test(args) -> classify -> revert to snapshot

Every trial starts from the same state (the state handed to `run`, usually the
test contract right after `setUp`), because the ledger is reverted after each
trial. A trial is:

* reject : the input tripped `assume(false)`; not counted toward `runs`
* pass   : the test call behaved as the test expects
* fail   : it did not; the case is minimized and reported as a Counterexample

Budgets: `runs` passing-or-failing trials, `max_rejects` *consecutive*
rejects (then `FuzzExhausted`), and an optional wall-clock `time_budget_s`
after which no new trial starts and the trials so far are reported.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from forgecore.abi.codec import encode_args
from forgecore.abi.types import parse_type
from forgecore.config import FuzzConfig
from forgecore.errors import FuzzExhausted
from forgecore.host.cheatcodes import CheatState
from forgecore.metrics import observe_trial
from forgecore.state.ledger import LedgerState
from forgecore.types.address import to_address
from forgecore.types.result import ExecutionResult
from forgecore.types.status import TestStatus
from forgecore.types.testing import Counterexample, FuzzCase, GasStats, TestSpec

from .shrink import minimize
from .strategies import default_addresses, iter_cases

log = logging.getLogger(__name__)

# check(ledger, result) -> True when the trial passed; runs before the revert.
TrialCheck = Callable[[LedgerState, ExecutionResult], bool]

PASS, FAIL, REJECT = "pass", "fail", "reject"


@dataclass(frozen=True)
class FuzzOutcome:
    status: TestStatus
    seed: int
    runs: int
    rejects: int
    gas: GasStats
    counterexample: Optional[Counterexample] = None
    result: Optional[ExecutionResult] = None
    timed_out: bool = False

    @property
    def reason(self) -> Optional[str]:
        if self.result is None:
            return None
        return self.result.reason or None


def new_seed() -> int:
    return random.SystemRandom().getrandbits(64)


class FuzzEngine:
    """
    Parameters
    ----------
    orchestrator : Orchestrator
        Runs each trial's top-level call.
    config : FuzzConfig, optional
        Defaults for tests whose TestSpec carries no fuzz config of its own.
    """

    def __init__(self, orchestrator: Any, config: Optional[FuzzConfig] = None) -> None:
        self.orchestrator = orchestrator
        self.config = config or FuzzConfig()

    # ------------------------------------------------------------------ #
    # Single trial
    # ------------------------------------------------------------------ #

    def trial(self, ledger: LedgerState, target: bytes, spec: TestSpec, args: Tuple[Any, ...],
              *, sender: bytes, check: TrialCheck) -> Tuple[str, ExecutionResult]:
        """Run one case and undo everything it did to `ledger`."""
        data = spec.selector + encode_args(spec.types, args)
        cheats = CheatState()
        sid = ledger.snapshot()
        try:
            res = self.orchestrator.call(ledger, sender, target, data, cheats=cheats)
            if cheats.rejected:
                return REJECT, res
            return (PASS if check(ledger, res) else FAIL), res
        finally:
            ledger.revert(sid)
            ledger.release(sid)

    # ------------------------------------------------------------------ #
    # Whole test
    # ------------------------------------------------------------------ #

    def run(self, ledger: LedgerState, target: bytes, spec: TestSpec, *, sender: bytes,
            check: Optional[TrialCheck] = None,
            addresses: Sequence[bytes] = ()) -> FuzzOutcome:
        cfg = spec.fuzz or self.config
        target, sender = to_address(target), to_address(sender)
        if check is None:
            check = lambda _ledger, res: res.is_success != spec.expect_fail  # noqa: E731
        seed = cfg.seed if cfg.seed is not None else new_seed()
        deadline = None if cfg.time_budget_s is None else time.monotonic() + cfg.time_budget_s
        pool = tuple(addresses) or default_addresses(target, sender)

        gas: List[int] = []
        runs = rejects = streak = 0
        timed_out = False
        cases = iter_cases(spec, random.Random(seed), addresses=pool, config=cfg)

        while runs < cfg.runs:
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                log.info("fuzz %s: time budget spent after %d runs", spec.name, runs)
                break
            case = next(cases)
            outcome, res = self.trial(ledger, target, spec, case.args, sender=sender, check=check)
            observe_trial(outcome=outcome)
            log.debug("fuzz %s trial %d -> %s (gas=%d)", spec.name, case.index, outcome,
                      res.gas_used)

            if outcome == REJECT:
                rejects += 1
                streak += 1
                if streak >= cfg.max_rejects:
                    raise FuzzExhausted(
                        f"{spec.name}: {streak} consecutive inputs rejected",
                        rejects=rejects, runs=runs)
                continue
            streak = 0
            runs += 1
            gas.append(res.gas_used)

            if outcome == FAIL:
                log.info("fuzz %s failed at trial %d (seed=%#x); shrinking", spec.name,
                         case.index, seed)
                cex, failing = self._shrink(ledger, target, spec, case, res, seed,
                                            sender=sender, check=check, config=cfg)
                return FuzzOutcome(status=TestStatus.FAIL, seed=seed, runs=runs, rejects=rejects,
                                   gas=GasStats.from_samples(gas), counterexample=cex,
                                   result=failing)

        return FuzzOutcome(status=TestStatus.PASS, seed=seed, runs=runs, rejects=rejects,
                           gas=GasStats.from_samples(gas), timed_out=timed_out)

    def _shrink(self, ledger: LedgerState, target: bytes, spec: TestSpec, case: FuzzCase,
                res: ExecutionResult, seed: int, *, sender: bytes, check: TrialCheck,
                config: FuzzConfig) -> Tuple[Counterexample, ExecutionResult]:
        types = [parse_type(t) for t in spec.types]
        bounds = [config.bounds_for(spec.name, name) for name in spec.param_names]

        def still_fails(args: Tuple[Any, ...]) -> bool:
            outcome, _ = self.trial(ledger, target, spec, args, sender=sender, check=check)
            return outcome == FAIL

        shrunk = minimize(case, types, still_fails, budget=config.max_shrink_iters, bounds=bounds)
        final = shrunk.case
        if final.args != case.args:
            # re-run the minimal case so the reported result belongs to it
            _, failing = self.trial(ledger, target, spec, final.args, sender=sender, check=check)
        else:
            failing = res
        cex = Counterexample(args=final.args, seed=seed, index=case.index,
                             shrink_steps=shrunk.steps,
                             calldata=spec.selector + encode_args(spec.types, final.args))
        return cex, failing


__all__ = ["FuzzEngine", "FuzzOutcome", "TrialCheck", "new_seed"]
