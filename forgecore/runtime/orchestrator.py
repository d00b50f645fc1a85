"""
forgecore.runtime.orchestrator — drive one top-level call through a backend.

`invoke` runs a top-level call against a ledger and returns its
ExecutionResult. `run_frame` runs a single (possibly nested) frame and is what
`Host.call` / `Host.create` recurse into, so every frame goes through the same
sequence:

    depth check -> cheat-code interception -> prank / expectation pickup
    -> mocked-revert interception -> snapshot -> value transfer
    -> backend execution -> integrity check -> expectation resolution
    -> commit or revert

A failing nested frame never raises into its parent: halts (revert, OOG,
invalid instruction, static violation, insufficient balance, depth) become a
non-success result and the frame's snapshot is reverted, which undoes every
mutation of the frame and of everything it called. OOG and invalid-instruction
halts consume the frame's whole gas allowance.

Only `IntegrityError` (a backend broke the host contract) and `BackendError`
(an unexpected exception escaped a backend) propagate; both abort the current
top-level invocation and nothing else.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import replace
from typing import Optional

from forgecore.abi.errors import decode_revert_reason, encode_error_string
from forgecore.config import RunConfig
from forgecore.errors import (BackendError, DepthExceeded, ExecError, ExecHalt, IntegrityError,
                              error_to_status)
from forgecore.gas.table import GasTable, load_gas_table
from forgecore.host.adapter import ActiveFrame, Host
from forgecore.host.cheatcodes import (CHEATCODE_ADDRESS, CheatState,
                                       ExpectedRevert, dispatch)
from forgecore.metrics import observe_call
from forgecore.state.ledger import LedgerState
from forgecore.state.snapshots import diff_since
from forgecore.types.address import create_address, to_address, to_hex
from forgecore.types.frame import CallFrame, CallKind
from forgecore.types.result import ExecutionResult
from forgecore.types.status import Status

from .executor import Executor, get_backend

log = logging.getLogger(__name__)

# Python frames consumed per nested call frame (backend + host + orchestrator).
_PY_FRAMES_PER_CALL = 40
_recursion_lock = threading.Lock()


def _ensure_recursion_headroom(max_depth: int) -> None:
    need = max_depth * _PY_FRAMES_PER_CALL + 1_000
    with _recursion_lock:
        if sys.getrecursionlimit() < need:
            sys.setrecursionlimit(need)


def _halt_reason(h: ExecHalt, status: Status) -> str:
    if status is Status.REVERT:
        return decode_revert_reason(h.output) or h.message
    return h.code.lower().replace("_", "-")


def _halt_result(h: ExecHalt, *, gas_used: int = 0) -> ExecutionResult:
    status = Status.from_str(error_to_status(h))
    return ExecutionResult.halt(status, reason=_halt_reason(h, status), gas_used=gas_used,
                                output=h.output if status is Status.REVERT else b"")


class Orchestrator:
    """
    Parameters
    ----------
    backend : Executor, optional
        Interpreter to run contract code with; defaults to `config.backend`.
    config : RunConfig, optional
        Limits, gas table and self-destruct policy. Defaults to `RunConfig()`.
    gas_table : GasTable, optional
        Overrides the table named by `config.gas_table_path`.
    """

    def __init__(self, backend: Optional[Executor] = None, config: Optional[RunConfig] = None,
                 *, gas_table: Optional[GasTable] = None) -> None:
        self.config = config or RunConfig()
        self.backend = backend if backend is not None else get_backend(self.config.backend)
        self.gas_table = gas_table or load_gas_table(self.config.gas_table_path)
        _ensure_recursion_headroom(self.config.max_call_depth)

    # ------------------------------------------------------------------ #
    # Top level
    # ------------------------------------------------------------------ #

    def new_host(self, ledger: LedgerState, cheats: Optional[CheatState] = None) -> Host:
        return Host(ledger, self, cheats=cheats if cheats is not None else CheatState(),
                    gas_table=self.gas_table,
                    selfdestruct_policy=self.config.selfdestruct_policy)

    def invoke(self, ledger: LedgerState, frame: CallFrame, *,
               cheats: Optional[CheatState] = None) -> ExecutionResult:
        """
        Run a top-level call. On success the mutations stay in `ledger` and the
        result carries the surviving logs and the StateDiff; on any halt the
        ledger is left exactly as it was.
        """
        host = self.new_host(ledger, cheats)
        host.cheats.reset()
        if frame.gas_limit == 0:
            frame = replace(frame, gas_limit=self.config.gas_limit)

        sid = ledger.snapshot()
        try:
            ledger.set_env("origin", frame.caller)
            result = self.run_frame(host, frame)
            if result.is_success:
                try:
                    host.finalize()
                except ExecHalt as h:
                    log.debug("finalize failed: %s", h.message)
                    result = _halt_result(h, gas_used=result.gas_used)
            if result.is_success:
                result = result.with_changes(diff=diff_since(ledger, sid),
                                             logs=tuple(ledger.take_logs()))
            else:
                ledger.revert(sid)
                ledger.take_logs()
        except BaseException:
            if ledger.journal.is_live(sid):
                ledger.revert(sid)
            ledger.take_logs()
            raise
        finally:
            if ledger.journal.is_live(sid):
                ledger.commit(sid)

        observe_call(status=str(result.status), gas_used=result.gas_used)
        log.debug("invoke %s -> %s status=%s gas=%d", to_hex(frame.caller),
                  to_hex(frame.callee), result.status, result.gas_used)
        return result

    def call(self, ledger: LedgerState, sender: bytes, to: bytes, data: bytes = b"", *,
             value: int = 0, gas_limit: Optional[int] = None,
             cheats: Optional[CheatState] = None) -> ExecutionResult:
        frame = CallFrame(caller=to_address(sender), callee=to_address(to), input=data,
                          value=value, gas_limit=gas_limit or self.config.gas_limit)
        return self.invoke(ledger, frame, cheats=cheats)

    def deploy(self, ledger: LedgerState, sender: bytes, init_code: bytes, *, value: int = 0,
               gas_limit: Optional[int] = None,
               cheats: Optional[CheatState] = None) -> ExecutionResult:
        """
        Deploy `init_code` from `sender`. The sender's nonce is consumed even when
        the deployment fails; `result.created` holds the address on success.
        """
        sender = to_address(sender)
        addr = create_address(sender, ledger.increment_nonce(sender))
        frame = CallFrame(caller=sender, callee=addr, input=init_code, value=value,
                          gas_limit=gas_limit or self.config.gas_limit, kind=CallKind.CREATE)
        return self.invoke(ledger, frame, cheats=cheats)

    # ------------------------------------------------------------------ #
    # One frame
    # ------------------------------------------------------------------ #

    def run_frame(self, host: Host, frame: CallFrame) -> ExecutionResult:
        limit = self.config.max_call_depth
        if frame.depth >= limit:
            log.debug("depth limit %d reached at %s", limit, to_hex(frame.callee))
            return _halt_result(DepthExceeded(depth=frame.depth, limit=limit))

        if frame.callee == CHEATCODE_ADDRESS and frame.kind is not CallKind.CREATE:
            cost = self.gas_table.cheatcode
            if cost > frame.gas_limit:
                return ExecutionResult.halt(Status.OOG, reason="out-of-gas",
                                            gas_used=frame.gas_limit)
            return dispatch(host, frame).with_changes(gas_used=cost)

        cheats = host.cheats
        parent_depth = frame.depth - 1
        if frame.kind is not CallKind.DELEGATECALL:
            sender = cheats.take_prank(parent_depth)
            if sender is not None:
                frame = replace(frame, caller=sender)
        expected = cheats.take_expected_revert(parent_depth)

        mocked = cheats.mocked_revert(frame.code_address or frame.callee, frame.input)
        if mocked is not None:
            result = ExecutionResult.halt(Status.REVERT, reason=decode_revert_reason(mocked),
                                          output=mocked)
            return self._resolve_expected(expected, result)

        return self._execute(host, frame, expected)

    def _execute(self, host: Host, frame: CallFrame,
                 expected: Optional[ExpectedRevert]) -> ExecutionResult:
        ledger = host.ledger
        sid = ledger.snapshot()
        active = host.push_frame(frame, sid)
        settled = False
        try:
            result = self._run_backend(host, active)
            self._check_integrity(host, active)
            final = self._resolve_expected(expected, result)
            if result.is_success and final.is_success:
                logs = tuple(ledger.logs[active.log_start:])
                final = final.with_changes(logs=logs, diff=diff_since(ledger, sid))
                ledger.commit(sid)
            else:
                ledger.revert(sid)
                ledger.release(sid)
            settled = True
            return final
        finally:
            if not settled and ledger.journal.is_live(sid):
                ledger.revert(sid)
                ledger.release(sid)
            host.pop_frame(active)

    def _run_backend(self, host: Host, active: ActiveFrame) -> ExecutionResult:
        frame, meter, ledger = active.frame, active.meter, host.ledger
        try:
            if frame.is_create:
                if ledger.code(frame.callee) or ledger.nonce(frame.callee):
                    return ExecutionResult.halt(Status.HALT, reason="create-collision",
                                                gas_used=frame.gas_limit)
                ledger.set_nonce(frame.callee, 1)
            if frame.value and frame.kind is not CallKind.DELEGATECALL:
                ledger.transfer(frame.caller, frame.callee, frame.value)

            if not host.frame_code():
                result = ExecutionResult.success()
            else:
                result = self.backend.execute(host, frame, frame.gas_limit)
                if result.logs and result.logs != tuple(ledger.logs[active.log_start:]):
                    raise IntegrityError("backend reported logs the host never recorded",
                                         data={"backend": self.backend.name})

            if frame.is_create and result.is_success:
                meter.debit(self.gas_table.deposit_cost(len(result.output)), reason="code deposit")
                ledger.set_code(frame.callee, result.output)
                result = result.with_changes(output=b"", created=frame.callee)
        except ExecHalt as h:
            result = _halt_result(h)
        except ExecError:
            raise
        except Exception as e:
            log.warning("backend %s raised %s at depth %d", self.backend.name,
                        type(e).__name__, frame.depth)
            raise BackendError(f"{type(e).__name__}: {e}", backend=self.backend.name) from e

        if result.status.consumes_all_gas:
            meter.burn_all()
        return result.with_changes(gas_used=meter.used)

    @staticmethod
    def _check_integrity(host: Host, active: ActiveFrame) -> None:
        if host.active is not active:
            raise IntegrityError("frame stack out of order after backend returned",
                                 data={"depth": active.frame.depth})
        if not host.ledger.journal.is_live(active.sid):
            raise IntegrityError("frame snapshot invalidated by backend",
                                 data={"snapshot": active.sid, "depth": active.frame.depth})

    @staticmethod
    def _resolve_expected(expected: Optional[ExpectedRevert],
                          result: ExecutionResult) -> ExecutionResult:
        if expected is None:
            return result
        if result.is_success:
            reason = "call did not revert as expected"
            return ExecutionResult.halt(Status.REVERT, reason=reason,
                                        output=encode_error_string(reason),
                                        gas_used=result.gas_used)
        if result.status is Status.REVERT and expected.matches(result.output):
            return ExecutionResult.success(gas_used=result.gas_used)
        reason = f"reverted with unexpected data: {result.reason or result.status}"
        return ExecutionResult.halt(Status.REVERT, reason=reason,
                                    output=encode_error_string(reason), gas_used=result.gas_used)


__all__ = ["Orchestrator"]
