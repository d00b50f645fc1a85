"""
forgecore.host.adapter — the callback surface interpreter backends execute against.

A backend never touches the ledger directly. Every state-affecting operation
(storage, balances, code, logs, nested calls, contract creation,
self-destruct, snapshots) goes through one `Host`, which:

* charges gas for the operation from the current frame's `GasMeter`,
* enforces static-call read-only semantics,
* records every write in the ledger journal against the open frame, so the
  orchestrator can undo the frame precisely if it halts.

The Host keeps a stack of active frames that mirrors the call stack. The
orchestrator pushes a frame (with its snapshot id and gas meter) before
running a backend and pops it afterwards; backends only ever see the top.

Gas for nested calls follows EIP-150: the caller forwards at most all but 1/64
of what it has left, and a call carrying value adds a stipend on top. Unused
forwarded gas is handed back to the caller when the child returns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from forgecore.config import SELFDESTRUCT_POLICIES
from forgecore.errors import IntegrityError, Revert, StaticViolation
from forgecore.gas.meter import GasMeter
from forgecore.gas.table import DEFAULT_GAS_TABLE, GasTable, callable_gas
from forgecore.state.accounts import compute_code_hash
from forgecore.state.ledger import LedgerState
from forgecore.types.address import create_address, to_address, to_hex
from forgecore.types.context import BlockEnv
from forgecore.types.events import LogEvent
from forgecore.types.frame import CallFrame, CallKind
from forgecore.types.result import ExecutionResult

from .cheatcodes import CheatState

if TYPE_CHECKING:  # pragma: no cover
    from forgecore.runtime.orchestrator import Orchestrator

log = logging.getLogger(__name__)


@dataclass
class ActiveFrame:
    frame: CallFrame
    meter: GasMeter
    sid: int
    log_start: int


@dataclass
class Host:
    """
    Host state for one top-level invocation. Not thread-safe; one Host (and
    one LedgerState) per concurrently running test.
    """
    ledger: LedgerState
    orchestrator: "Orchestrator"
    cheats: CheatState = field(default_factory=CheatState)
    gas_table: GasTable = DEFAULT_GAS_TABLE
    selfdestruct_policy: str = "immediate"
    _frames: List[ActiveFrame] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.selfdestruct_policy not in SELFDESTRUCT_POLICIES:
            raise ValueError(f"unknown selfdestruct policy {self.selfdestruct_policy!r}")

    # ------------------------------------------------------------------ #
    # Frame stack (driven by the orchestrator)
    # ------------------------------------------------------------------ #

    def push_frame(self, frame: CallFrame, sid: int) -> ActiveFrame:
        active = ActiveFrame(frame=frame, meter=GasMeter(frame.gas_limit), sid=sid,
                             log_start=len(self.ledger.logs))
        self._frames.append(active)
        return active

    def pop_frame(self, active: ActiveFrame) -> None:
        if self._frames and self._frames[-1] is active:
            self._frames.pop()
            return
        raise IntegrityError("frame stack out of order",
                             data={"depth": active.frame.depth, "open": len(self._frames)})

    @property
    def active(self) -> ActiveFrame:
        if not self._frames:
            raise IntegrityError("no active frame")
        return self._frames[-1]

    @property
    def frame(self) -> CallFrame:
        return self.active.frame

    @property
    def depth(self) -> int:
        return len(self._frames)

    # ------------------------------------------------------------------ #
    # Gas & environment
    # ------------------------------------------------------------------ #

    def use_gas(self, amount: int, reason: Optional[str] = None) -> None:
        self.active.meter.debit(amount, reason=reason)

    def gas_left(self) -> int:
        return self.active.meter.remaining

    def env(self) -> BlockEnv:
        return self.ledger.env

    def frame_code(self) -> bytes:
        """Code the current frame executes: init code for CREATE."""
        f = self.frame
        if f.is_create:
            return f.input
        return self.ledger.code(f.code_address or f.callee)

    def calldata(self) -> bytes:
        f = self.frame
        return b"" if f.is_create else f.input

    def _require_writable(self, op: str) -> None:
        if self.frame.is_static:
            raise StaticViolation(op=op)

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #

    def sload(self, key: int) -> int:
        self.use_gas(self.gas_table.sload, reason="sload")
        return self.ledger.sload(self.frame.callee, key)

    def sstore(self, key: int, value: int) -> None:
        self._require_writable("SSTORE")
        addr = self.frame.callee
        self.use_gas(self.gas_table.sstore_cost(self.ledger.sload(addr, key), value),
                     reason="sstore")
        self.ledger.sstore(addr, key, value)

    # ------------------------------------------------------------------ #
    # Accounts
    # ------------------------------------------------------------------ #

    def balance(self, address: bytes) -> int:
        self.use_gas(self.gas_table.balance, reason="balance")
        return self.ledger.balance(to_address(address))

    def code(self, address: bytes) -> bytes:
        self.use_gas(self.gas_table.code, reason="code")
        return self.ledger.code(to_address(address))

    def code_hash(self, address: bytes) -> bytes:
        self.use_gas(self.gas_table.code, reason="codehash")
        addr = to_address(address)
        if not self.ledger.exists(addr):
            return b"\x00" * 32
        return compute_code_hash(self.ledger.code(addr))

    def nonce(self, address: bytes) -> int:
        return self.ledger.nonce(to_address(address))

    def transfer(self, to: bytes, amount: int) -> None:
        """Send value with only the stipend forwarded; reverts the caller on failure."""
        res = self.call(to, b"", value=amount, gas=0)
        if not res.is_success:
            raise Revert(f"transfer to {to_hex(to_address(to))} failed: {res.reason}",
                         output=res.output)

    # ------------------------------------------------------------------ #
    # Logs
    # ------------------------------------------------------------------ #

    def emit_log(self, topics: Sequence[bytes], data: bytes = b"") -> LogEvent:
        self._require_writable("LOG")
        data = bytes(data)
        self.use_gas(self.gas_table.log_cost(len(topics), len(data)), reason="log")
        ev = LogEvent(self.frame.callee, list(topics), data)
        self.ledger.append_log(ev)
        return ev

    # ------------------------------------------------------------------ #
    # Nested calls
    # ------------------------------------------------------------------ #

    def call(self, to: bytes, data: bytes = b"", *, value: int = 0, gas: Optional[int] = None,
             kind: CallKind = CallKind.CALL) -> ExecutionResult:
        """
        Open a nested frame and run it to completion. Never raises for a
        failing child: the failure is in the returned result and the child's
        mutations are already undone.
        """
        parent = self.frame
        to = to_address(to)
        if kind is CallKind.CREATE:
            raise ValueError("use Host.create for contract creation")
        if kind is not CallKind.CALL:
            value = 0
        if value and parent.is_static:
            raise StaticViolation(op="CALL")

        self.use_gas(self.gas_table.call_cost(value), reason="call")
        meter = self.active.meter
        forward = callable_gas(meter.remaining, gas)
        meter.debit(forward)
        limit = forward + (self.gas_table.call_stipend if value else 0)

        if kind is CallKind.DELEGATECALL:
            child = parent.child(input=data, gas_limit=limit, kind=kind, code_address=to)
        else:
            child = parent.child(caller=parent.callee, callee=to, input=data, value=value,
                                 gas_limit=limit, kind=kind, code_address=None)
        result = self.orchestrator.run_frame(self, child)
        meter.reclaim(min(limit - result.gas_used, forward))
        return result

    def create(self, init_code: bytes, *, value: int = 0,
               gas: Optional[int] = None) -> ExecutionResult:
        """Deploy `init_code` from the current contract; `result.created` holds the address."""
        self._require_writable("CREATE")
        parent = self.frame
        self.use_gas(self.gas_table.create, reason="create")
        creator = parent.callee
        addr = create_address(creator, self.ledger.increment_nonce(creator))

        meter = self.active.meter
        forward = callable_gas(meter.remaining, gas)
        meter.debit(forward)
        child = CallFrame(caller=creator, callee=addr, input=bytes(init_code), value=value,
                          gas_limit=forward, kind=CallKind.CREATE, depth=parent.depth + 1)
        result = self.orchestrator.run_frame(self, child)
        meter.reclaim(forward - result.gas_used)
        return result

    # ------------------------------------------------------------------ #
    # Self-destruct
    # ------------------------------------------------------------------ #

    def selfdestruct(self, beneficiary: bytes) -> None:
        """
        Zero the current contract's code and storage. The balance moves to
        `beneficiary` now (`immediate`) or when the top-level call finishes
        (`deferred`); a contract naming itself as beneficiary burns it.
        """
        self._require_writable("SELFDESTRUCT")
        self.use_gas(self.gas_table.selfdestruct, reason="selfdestruct")
        addr = self.frame.callee
        beneficiary = to_address(beneficiary)
        self.ledger.set_code(addr, b"")
        self.ledger.clear_storage(addr)
        if self.selfdestruct_policy == "immediate":
            self._sweep(addr, beneficiary)
        else:
            self.ledger.schedule_destruct(addr, beneficiary)
        log.debug("selfdestruct %s -> %s (%s)", to_hex(addr), to_hex(beneficiary),
                  self.selfdestruct_policy)

    def _sweep(self, addr: bytes, beneficiary: bytes) -> None:
        bal = self.ledger.balance(addr)
        if beneficiary == addr:
            self.ledger.set_balance(addr, 0)
        else:
            self.ledger.transfer(addr, beneficiary, bal)

    def finalize(self) -> None:
        """Settle deferred self-destructs at the end of a successful top-level call."""
        pending, self.ledger.pending_destructs = self.ledger.pending_destructs, []
        for addr, beneficiary in pending:
            self._sweep(addr, beneficiary)

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #

    def snapshot(self) -> int:
        return self.ledger.snapshot()

    def owns_snapshot(self, sid: int) -> bool:
        """True if `sid` is live and was taken inside the current frame."""
        return self.ledger.journal.is_live(sid) and sid > self.active.sid

    def revert(self, sid: int) -> None:
        """
        Undo everything since snapshot `sid`. Only snapshots taken inside the
        current frame may be reverted to; anything else is a backend bug.
        """
        if not self.owns_snapshot(sid):
            raise IntegrityError(
                f"snapshot {sid} is not owned by the current frame",
                data={"snapshot": sid, "frame_snapshot": self.active.sid},
            )
        self.ledger.revert(sid)


__all__ = ["Host", "ActiveFrame"]
