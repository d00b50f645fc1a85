"""
forgecore.runtime.pycontext — what a Python contract sees while it runs.

Python contracts are plain source files whose entry points are marked with
`@external`; the `pyvm` backend injects `external` into the contract namespace
and passes each entry point a `Context` as its first argument:

    @external("deposit(uint256)", returns=("uint256",), payable=True)
    def deposit(ctx, amount):
        ctx.require(ctx.value == amount, "value mismatch")
        bal = ctx.sload(ctx.slot("balances", ctx.caller)) + amount
        ctx.sstore(ctx.slot("balances", ctx.caller), bal)
        ctx.emit("Deposit(address,uint256)", ctx.caller, data=amount)
        return bal

Everything on `Context` goes through the Host, so gas, static-call rules and
snapshot/revert apply exactly as for any other backend. `ctx.vm` wraps the
cheat codes as ordinary methods (`ctx.vm.warp(...)`, `ctx.vm.prank(...)`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence, Tuple, Union

from eth_hash.auto import keccak

from forgecore.abi.codec import decode_args, encode_args, encode_call
from forgecore.abi.errors import encode_error_string
from forgecore.abi.selectors import event_topic
from forgecore.errors import Revert
from forgecore.host.cheatcodes import CHEATCODE_ADDRESS
from forgecore.types.address import to_address
from forgecore.types.frame import CallFrame, CallKind
from forgecore.types.result import ExecutionResult

if TYPE_CHECKING:  # pragma: no cover
    from forgecore.host.adapter import Host

Word = Union[int, bytes]


class StopExecution(BaseException):
    """
    Ends the current frame successfully with `output`. Derives from
    BaseException so `except Exception` in contract code does not catch it.
    """

    def __init__(self, output: bytes = b"") -> None:
        super().__init__("stop")
        self.output = bytes(output)


# ---------------------------------------------------------------------------
# @external
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class External:
    signature: str
    returns: Tuple[str, ...] = ()
    payable: bool = False


def external(signature: Optional[str] = None, *, returns: Sequence[str] = (),
             payable: bool = False) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a contract function as callable; `signature` defaults to `name()`."""
    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        fn.__pyvm_external__ = External(signature or f"{fn.__name__}()",  # type: ignore[attr-defined]
                                        tuple(returns), payable)
        return fn
    return deco


def _word(v: Word) -> int:
    if isinstance(v, (bytes, bytearray)):
        return int.from_bytes(bytes(v).rjust(32, b"\x00")[-32:], "big")
    return int(v)


def _word_bytes(v: Word) -> bytes:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).rjust(32, b"\x00")
    return int(v).to_bytes(32, "big")


def _unwrap(values: Tuple[Any, ...]) -> Any:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class Context:
    def __init__(self, host: "Host", frame: CallFrame) -> None:
        self._host = host
        self.address: bytes = frame.callee
        self.caller: bytes = frame.caller
        self.value: int = frame.value
        self.data: bytes = host.calldata()
        self.static: bool = frame.is_static
        self.vm = CheatHelper(self)

    # ---- environment ----

    @property
    def origin(self) -> bytes:
        return self._host.env().origin

    @property
    def timestamp(self) -> int:
        return self._host.env().timestamp

    @property
    def number(self) -> int:
        return self._host.env().number

    @property
    def chain_id(self) -> int:
        return self._host.env().chain_id

    @property
    def coinbase(self) -> bytes:
        return self._host.env().coinbase

    @property
    def base_fee(self) -> int:
        return self._host.env().base_fee

    def gas_left(self) -> int:
        return self._host.gas_left()

    def use_gas(self, amount: int) -> None:
        self._host.use_gas(amount, reason="contract")

    # ---- storage ----

    def sload(self, key: Word) -> int:
        return self._host.sload(_word(key))

    def sstore(self, key: Word, value: Word) -> None:
        self._host.sstore(_word(key), _word(value))

    @staticmethod
    def slot(name: str, *keys: Word) -> int:
        """Storage slot of a named variable, or of mapping entries under it."""
        h = keccak(name.encode("utf-8"))
        for k in keys:
            h = keccak(_word_bytes(k) + h)
        return int.from_bytes(h, "big")

    # ---- accounts ----

    def balance(self, address: Optional[bytes] = None) -> int:
        return self._host.balance(self.address if address is None else address)

    def code(self, address: bytes) -> bytes:
        return self._host.code(address)

    def code_size(self, address: bytes) -> int:
        return len(self._host.code(address))

    def code_hash(self, address: bytes) -> bytes:
        """keccak256 of the account's code; 32 zero bytes for an account that does not exist."""
        return self._host.code_hash(address)

    def nonce(self, address: Optional[bytes] = None) -> int:
        return self._host.nonce(self.address if address is None else address)

    def transfer(self, to: bytes, amount: int) -> None:
        self._host.transfer(to, amount)

    # ---- logs ----

    def log(self, topics: Sequence[Word], data: bytes = b"") -> None:
        self._host.emit_log([_word_bytes(t) for t in topics], data)

    def emit(self, event: str, *indexed: Any, data: Any = b"") -> None:
        """Emit `event` with its signature topic; ints/addresses in `data` are word-encoded."""
        if isinstance(data, (int, bytes, bytearray)) and not isinstance(data, bool):
            payload = _word_bytes(data) if isinstance(data, int) else bytes(data)
        else:
            payload = b"".join(_word_bytes(d) for d in data)
        self.log([event_topic(event), *indexed], payload)

    # ---- calls ----

    def try_call(self, to: bytes, data: bytes = b"", *, value: int = 0,
                 gas: Optional[int] = None, kind: CallKind = CallKind.CALL) -> ExecutionResult:
        """Nested call that reports failure in the result instead of raising."""
        return self._host.call(to_address(to), data, value=value, gas=gas, kind=kind)

    def call(self, to: bytes, data: bytes = b"", *, value: int = 0,
             gas: Optional[int] = None) -> bytes:
        """Nested call; a failing callee reverts this frame with the callee's revert data."""
        return self._bubble(self.try_call(to, data, value=value, gas=gas))

    def staticcall(self, to: bytes, data: bytes = b"", *, gas: Optional[int] = None) -> bytes:
        return self._bubble(self.try_call(to, data, gas=gas, kind=CallKind.STATICCALL))

    def delegatecall(self, to: bytes, data: bytes = b"", *, gas: Optional[int] = None) -> bytes:
        return self._bubble(self.try_call(to, data, gas=gas, kind=CallKind.DELEGATECALL))

    def call_fn(self, to: bytes, signature: str, *args: Any, value: int = 0,
                gas: Optional[int] = None, returns: Sequence[str] = (),
                static: bool = False) -> Any:
        """ABI-encode a call to `signature`, run it and decode `returns`."""
        data = encode_call(signature, args)
        if static:
            out = self.staticcall(to, data, gas=gas)
        else:
            out = self.call(to, data, value=value, gas=gas)
        return _unwrap(decode_args(tuple(returns), out)) if returns else None

    @staticmethod
    def encode_call(signature: str, *args: Any) -> bytes:
        """Calldata for `signature` applied to `args`."""
        return encode_call(signature, args)

    @staticmethod
    def _bubble(res: ExecutionResult) -> bytes:
        if not res.is_success:
            raise Revert(res.reason or str(res.status), output=res.output)
        return res.output

    def create(self, code: bytes, *, value: int = 0, gas: Optional[int] = None) -> bytes:
        res = self._host.create(code, value=value, gas=gas)
        if not res.is_success or res.created is None:
            raise Revert(f"create failed: {res.reason or res.status}", output=res.output)
        return res.created

    # ---- termination ----

    def selfdestruct(self, beneficiary: bytes) -> None:
        self._host.selfdestruct(to_address(beneficiary))
        raise StopExecution()

    @staticmethod
    def stop(output: bytes = b"") -> None:
        raise StopExecution(output)

    @staticmethod
    def revert(reason: str = "", *, data: Optional[bytes] = None) -> None:
        raise Revert(reason or "reverted",
                     output=data if data is not None else
                     (encode_error_string(reason) if reason else b""))

    def require(self, cond: Any, reason: str = "") -> None:
        if not cond:
            self.revert(reason)


# ---------------------------------------------------------------------------
# Cheat codes as methods
# ---------------------------------------------------------------------------


class CheatHelper:
    def __init__(self, ctx: Context) -> None:
        self._ctx = ctx

    def _cheat(self, signature: str, *args: Any, returns: Sequence[str] = ()) -> Any:
        return self._ctx.call_fn(CHEATCODE_ADDRESS, signature, *args, returns=returns)

    def warp(self, timestamp: int) -> None:
        self._cheat("warp(uint256)", timestamp)

    def roll(self, number: int) -> None:
        self._cheat("roll(uint256)", number)

    def chain_id(self, chain_id: int) -> None:
        self._cheat("chainId(uint256)", chain_id)

    def fee(self, base_fee: int) -> None:
        self._cheat("fee(uint256)", base_fee)

    def coinbase(self, who: bytes) -> None:
        self._cheat("coinbase(address)", who)

    def store(self, who: bytes, slot: Word, value: Word) -> None:
        self._cheat("store(address,bytes32,bytes32)", who, _word_bytes(slot), _word_bytes(value))

    def load(self, who: bytes, slot: Word) -> int:
        return _word(self._cheat("load(address,bytes32)", who, _word_bytes(slot),
                                 returns=("bytes32",)))

    def deal(self, who: bytes, amount: int) -> None:
        self._cheat("deal(address,uint256)", who, amount)

    def etch(self, who: bytes, code: bytes) -> None:
        self._cheat("etch(address,bytes)", who, code)

    def get_nonce(self, who: bytes) -> int:
        return self._cheat("getNonce(address)", who, returns=("uint64",))

    def set_nonce(self, who: bytes, nonce: int) -> None:
        self._cheat("setNonce(address,uint64)", who, nonce)

    def prank(self, sender: bytes) -> None:
        self._cheat("prank(address)", sender)

    def start_prank(self, sender: bytes) -> None:
        self._cheat("startPrank(address)", sender)

    def stop_prank(self) -> None:
        self._cheat("stopPrank()")

    def expect_revert(self, data: Optional[Union[bytes, str]] = None) -> None:
        if data is None:
            self._cheat("expectRevert()")
        else:
            self._cheat("expectRevert(bytes)",
                        data.encode("utf-8") if isinstance(data, str) else data)

    def assume(self, cond: Any) -> None:
        self._cheat("assume(bool)", bool(cond))

    def mock_call_revert(self, who: bytes, calldata: bytes, revert_data: bytes) -> None:
        self._cheat("mockCallRevert(address,bytes,bytes)", who, calldata, revert_data)

    def clear_mocked_calls(self) -> None:
        self._cheat("clearMockedCalls()")

    def snapshot(self) -> int:
        return self._cheat("snapshot()", returns=("uint256",))

    def revert_to(self, sid: int) -> bool:
        return self._cheat("revertTo(uint256)", sid, returns=("bool",))


__all__ = [
    "Context",
    "CheatHelper",
    "External",
    "StopExecution",
    "external",
]
