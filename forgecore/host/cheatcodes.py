"""
forgecore.host.cheatcodes — out-of-band test operations behind a sentinel address.

Calls whose target is `CHEATCODE_ADDRESS` never reach a backend: the call
orchestrator hands the frame to `dispatch`, which decodes the 4-byte selector,
looks it up in a table and runs the matching handler against the Host. Backends
need no special casing; a contract uses cheat codes exactly like a call to any
other contract.

Handlers run in the context of the *calling* frame: ledger writes they make are
journaled under the caller's snapshot, so a reverted caller undoes them (block
env changes from warp/roll included).

Supported cheat codes
---------------------
  warp(uint256)                        block timestamp
  roll(uint256)                        block number
  chainId(uint256)                     chain id
  fee(uint256)                         base fee
  coinbase(address)                    block coinbase
  store(address,bytes32,bytes32)       write a storage slot
  load(address,bytes32)                read a storage slot -> bytes32
  deal(address,uint256)                set a balance
  etch(address,bytes)                  set code
  getNonce(address)                    -> uint64
  setNonce(address,uint64)             set a nonce
  prank(address)                       forge msg.sender of the next call
  startPrank(address) / stopPrank()    forge msg.sender until stopped
  expectRevert() / expectRevert(bytes) next call must revert (with data)
  assume(bool)                         reject the current fuzz input
  mockCallRevert(address,bytes,bytes)  calls running address's code with calldata prefix revert
  clearMockedCalls()                   drop all mocks
  snapshot()                           -> uint256 snapshot id
  revertTo(uint256)                    -> bool, revert to a snapshot

Pranks and expected reverts belong to the frame that set them: they apply to
the next call opened *from that frame*, never to calls made further down.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from eth_hash.auto import keccak

from forgecore.abi.codec import decode_args, encode_args
from forgecore.abi.errors import decode_error_string, encode_error_string
from forgecore.abi.selectors import function_selector
from forgecore.abi.types import ValidationError
from forgecore.errors import ExecHalt, Revert
from forgecore.types.address import to_address, to_hex
from forgecore.types.frame import CallFrame
from forgecore.types.result import ExecutionResult
from forgecore.types.status import Status

if TYPE_CHECKING:  # pragma: no cover
    from .adapter import Host

log = logging.getLogger(__name__)

CHEATCODE_ADDRESS: bytes = keccak(b"hevm cheat code")[12:]

# Revert payload of a rejected `assume`.
ASSUME_MAGIC: bytes = b"FORGECORE::ASSUME"


# ---------------------------------------------------------------------------
# Per-invocation cheat state
# ---------------------------------------------------------------------------


@dataclass
class Prank:
    sender: bytes
    depth: int          # depth of the frame that set it
    persistent: bool = False


@dataclass
class ExpectedRevert:
    data: Optional[bytes]
    depth: int

    def matches(self, output: bytes) -> bool:
        if self.data is None:
            return True
        if output == self.data:
            return True
        reason = decode_error_string(output)
        return reason is not None and reason.encode("utf-8") == self.data


@dataclass
class MockedRevert:
    address: bytes
    calldata: bytes
    revert_data: bytes


@dataclass
class CheatState:
    """
    Cheat-code state of one top-level invocation. `reset()` returns it to the
    pristine state; the orchestrator does so at the start of every invocation.
    """
    prank: Optional[Prank] = None
    expected_revert: Optional[ExpectedRevert] = None
    mocked_reverts: List[MockedRevert] = field(default_factory=list)
    rejected: bool = False

    def reset(self) -> None:
        self.prank = None
        self.expected_revert = None
        self.mocked_reverts = []
        self.rejected = False

    def take_prank(self, parent_depth: int) -> Optional[bytes]:
        """The forged sender for a call opened from `parent_depth`, if any."""
        p = self.prank
        if p is None or p.depth != parent_depth:
            return None
        if not p.persistent:
            self.prank = None
        return p.sender

    def take_expected_revert(self, parent_depth: int) -> Optional[ExpectedRevert]:
        e = self.expected_revert
        if e is None or e.depth != parent_depth:
            return None
        self.expected_revert = None
        return e

    def mocked_revert(self, address: bytes, calldata: bytes) -> Optional[bytes]:
        for m in self.mocked_reverts:
            if m.address == address and calldata.startswith(m.calldata):
                return m.revert_data
        return None


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

Handler = Callable[..., Any]


@dataclass(frozen=True)
class CheatCode:
    signature: str
    params: Tuple[str, ...]
    returns: Tuple[str, ...]
    handler: Handler


CHEATCODES: Dict[bytes, CheatCode] = {}


def cheatcode(signature: str, *, returns: Tuple[str, ...] = ()) -> Callable[[Handler], Handler]:
    """Register `fn(host, frame, *args)` as the handler of `signature`."""
    def deco(fn: Handler) -> Handler:
        body = signature[signature.index("(") + 1:-1]
        params = tuple(p for p in body.split(",") if p)
        CHEATCODES[function_selector(signature)] = CheatCode(signature, params, returns, fn)
        return fn
    return deco


def _word(b: bytes) -> int:
    return int.from_bytes(b, "big")


# ---- environment -----------------------------------------------------------


@cheatcode("warp(uint256)")
def _warp(host: "Host", frame: CallFrame, ts: int) -> None:
    host.ledger.set_env("timestamp", ts)


@cheatcode("roll(uint256)")
def _roll(host: "Host", frame: CallFrame, number: int) -> None:
    host.ledger.set_env("number", number)


@cheatcode("chainId(uint256)")
def _chain_id(host: "Host", frame: CallFrame, chain_id: int) -> None:
    if chain_id == 0:
        raise Revert("chain id must be non-zero", output=encode_error_string("chain id must be non-zero"))
    host.ledger.set_env("chain_id", chain_id)


@cheatcode("fee(uint256)")
def _fee(host: "Host", frame: CallFrame, base_fee: int) -> None:
    host.ledger.set_env("base_fee", base_fee)


@cheatcode("coinbase(address)")
def _coinbase(host: "Host", frame: CallFrame, who: bytes) -> None:
    host.ledger.set_env("coinbase", who)


# ---- accounts --------------------------------------------------------------


@cheatcode("store(address,bytes32,bytes32)")
def _store(host: "Host", frame: CallFrame, who: bytes, slot: bytes, value: bytes) -> None:
    host.ledger.sstore(who, _word(slot), _word(value))


@cheatcode("load(address,bytes32)", returns=("bytes32",))
def _load(host: "Host", frame: CallFrame, who: bytes, slot: bytes) -> Tuple[bytes]:
    return (host.ledger.sload(who, _word(slot)).to_bytes(32, "big"),)


@cheatcode("deal(address,uint256)")
def _deal(host: "Host", frame: CallFrame, who: bytes, amount: int) -> None:
    host.ledger.set_balance(who, amount)


@cheatcode("etch(address,bytes)")
def _etch(host: "Host", frame: CallFrame, who: bytes, code: bytes) -> None:
    host.ledger.set_code(who, code)


@cheatcode("getNonce(address)", returns=("uint64",))
def _get_nonce(host: "Host", frame: CallFrame, who: bytes) -> Tuple[int]:
    return (host.ledger.nonce(who),)


@cheatcode("setNonce(address,uint64)")
def _set_nonce(host: "Host", frame: CallFrame, who: bytes, nonce: int) -> None:
    host.ledger.set_nonce(who, nonce)


# ---- caller forging & expectations ------------------------------------------


@cheatcode("prank(address)")
def _prank(host: "Host", frame: CallFrame, sender: bytes) -> None:
    host.cheats.prank = Prank(sender=sender, depth=frame.depth - 1)


@cheatcode("startPrank(address)")
def _start_prank(host: "Host", frame: CallFrame, sender: bytes) -> None:
    host.cheats.prank = Prank(sender=sender, depth=frame.depth - 1, persistent=True)


@cheatcode("stopPrank()")
def _stop_prank(host: "Host", frame: CallFrame) -> None:
    host.cheats.prank = None


@cheatcode("expectRevert()")
def _expect_revert(host: "Host", frame: CallFrame) -> None:
    host.cheats.expected_revert = ExpectedRevert(data=None, depth=frame.depth - 1)


@cheatcode("expectRevert(bytes)")
def _expect_revert_data(host: "Host", frame: CallFrame, data: bytes) -> None:
    host.cheats.expected_revert = ExpectedRevert(data=data, depth=frame.depth - 1)


@cheatcode("assume(bool)")
def _assume(host: "Host", frame: CallFrame, ok: bool) -> None:
    if not ok:
        host.cheats.rejected = True
        raise Revert("assumption rejected", output=ASSUME_MAGIC)


@cheatcode("mockCallRevert(address,bytes,bytes)")
def _mock_call_revert(host: "Host", frame: CallFrame, who: bytes, calldata: bytes,
                      revert_data: bytes) -> None:
    host.cheats.mocked_reverts.append(MockedRevert(who, calldata, revert_data))


@cheatcode("clearMockedCalls()")
def _clear_mocked_calls(host: "Host", frame: CallFrame) -> None:
    host.cheats.mocked_reverts = []


# ---- snapshots -------------------------------------------------------------


@cheatcode("snapshot()", returns=("uint256",))
def _snapshot(host: "Host", frame: CallFrame) -> Tuple[int]:
    return (host.snapshot(),)


@cheatcode("revertTo(uint256)", returns=("bool",))
def _revert_to(host: "Host", frame: CallFrame, sid: int) -> Tuple[bool]:
    if not host.owns_snapshot(sid):
        return (False,)
    host.revert(sid)
    return (True,)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _revert_result(reason: str) -> ExecutionResult:
    return ExecutionResult.halt(Status.REVERT, reason=reason, output=encode_error_string(reason))


def dispatch(host: "Host", frame: CallFrame) -> ExecutionResult:
    """
    Run the cheat code addressed by `frame.input`. Never touches the backend;
    halts raised by a handler become non-success results.
    """
    entry = CHEATCODES.get(bytes(frame.input[:4]))
    if entry is None:
        log.debug("unknown cheat code selector 0x%s", frame.input[:4].hex())
        return _revert_result("unknown cheat code")
    try:
        args = decode_args(entry.params, frame.input[4:])
    except ValidationError as e:
        return _revert_result(f"invalid arguments for {entry.signature}: {e}")
    log.debug("cheat %s from %s", entry.signature, to_hex(frame.caller))
    try:
        out = entry.handler(host, frame, *args)
    except ExecHalt as h:
        return ExecutionResult.halt(Status.from_str(h.status), reason=h.message, output=h.output)
    return ExecutionResult.success(encode_args(entry.returns, out or ()))


__all__ = [
    "CHEATCODE_ADDRESS",
    "ASSUME_MAGIC",
    "CHEATCODES",
    "CheatCode",
    "CheatState",
    "Prank",
    "ExpectedRevert",
    "MockedRevert",
    "cheatcode",
    "dispatch",
]
