"""
forgecore.errors — exceptions for the execution core.

Failures are communicated via *typed exceptions*. Execution halts are converted
into `ExecutionResult` values by the call orchestrator; everything else is
either fatal for one test invocation or (for configuration problems) fatal for
the whole run before any test starts.

Hierarchy
---------
ExecError (base)
 ├─ ExecHalt            : expected halt of a call frame (becomes an ExecutionResult)
 │   ├─ Revert              : explicit revert, may carry return data
 │   ├─ OOG                 : out of gas in the current frame
 │   ├─ InvalidOpcode       : backend hit an invalid/undefined instruction
 │   ├─ StaticViolation     : state write attempted inside a static frame
 │   ├─ InsufficientBalance : value transfer exceeds the sender's balance
 │   ├─ BalanceOverflow     : credit would exceed u256
 │   └─ DepthExceeded       : call depth limit reached
 ├─ IntegrityError      : backend left the host in an inconsistent state
 ├─ BackendError        : unexpected exception escaped a backend
 ├─ FuzzExhausted       : too many consecutive rejected fuzz inputs
 └─ ConfigError         : invalid configuration, rejected before execution
     └─ UnknownBackend  : backend name not registered

These classes avoid importing other forgecore modules so that low-level modules
(gas meter, journal) can use them without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ExecError(Exception):
    """
    Base execution error.

    Attributes:
        message: Human-readable explanation.
        code:    Stable machine code string (e.g., 'OUT_OF_GAS', 'REVERT').
        data:    Optional structured details (kept JSON-serializable).
    """
    message: str = "execution error"
    code: str = "EXEC_ERROR"
    data: Optional[Dict[str, Any]] = field(default=None)

    def __str__(self) -> str:  # pragma: no cover - trivial
        if self.data:
            return f"{self.code}: {self.message} ({self.data})"
        return f"{self.code}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict for reports."""
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out


# -------- execution halts ----------------------------------------------------


class ExecHalt(ExecError):
    """
    A frame stopped without success. Never escapes the orchestrator: it is
    folded into an ExecutionResult and the frame's mutations are reverted.

    `status` names the ExecutionResult status the halt maps to; `output` is the
    revert data handed back to the caller (empty for non-revert halts).
    """
    status: str = "halt"

    def __init__(self, message: str = "halted", *, code: str = "HALT",
                 output: bytes = b"", data: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=code, data=data)
        self.output = bytes(output)


class Revert(ExecHalt):
    """
    Contract-triggered revert.

    Usage:
        raise Revert("require failed", output=encode_error_string("insufficient"))
    """
    status = "revert"

    def __init__(self, message: str = "reverted", *, output: bytes = b"",
                 data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="REVERT", output=output, data=data)


class OOG(ExecHalt):
    """
    Out-of-gas during execution.

    Typical triggers:
      - GasMeter debit would underflow
      - a host operation costs more than the frame has left
    """
    status = "oog"

    def __init__(self, message: str = "out of gas", *, data: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="OUT_OF_GAS", data=data)


class InvalidOpcode(ExecHalt):
    status = "invalid"

    def __init__(self, message: str = "invalid opcode", *, op: Optional[str] = None,
                 data: Optional[Dict[str, Any]] = None):
        d: Dict[str, Any] = dict(data or {})
        if op is not None:
            d.setdefault("op", op)
        super().__init__(message, code="INVALID_OPCODE", data=d or None)


class StaticViolation(ExecHalt):
    """State modification attempted inside a STATICCALL frame."""

    def __init__(self, message: str = "state modification in static call", *,
                 op: Optional[str] = None):
        super().__init__(message, code="STATIC_VIOLATION",
                         data={"op": op} if op else None)


class InsufficientBalance(ExecHalt):
    """Raised when a debit would make an account balance negative."""

    def __init__(self, message: str = "insufficient balance", *,
                 address: Optional[str] = None, balance: Optional[int] = None,
                 amount: Optional[int] = None):
        d: Dict[str, Any] = {}
        if address is not None:
            d["address"] = address
        if balance is not None:
            d["balance"] = balance
        if amount is not None:
            d["amount"] = amount
        super().__init__(message, code="INSUFFICIENT_BALANCE", data=d or None)


class BalanceOverflow(ExecHalt):
    """A credit would push a balance past the u256 range."""

    def __init__(self, message: str = "balance overflow", *, address: Optional[str] = None):
        super().__init__(message, code="BALANCE_OVERFLOW",
                         data={"address": address} if address else None)


class DepthExceeded(ExecHalt):
    def __init__(self, message: str = "call depth exceeded", *, depth: Optional[int] = None,
                 limit: Optional[int] = None):
        d: Dict[str, Any] = {}
        if depth is not None:
            d["depth"] = depth
        if limit is not None:
            d["limit"] = limit
        super().__init__(message, code="DEPTH_EXCEEDED", data=d or None)


# -------- invocation-fatal errors -------------------------------------------


class IntegrityError(ExecError):
    """
    A backend broke the host contract, e.g. reverted to a snapshot it never
    took or left snapshots open past its frame. Fatal for one test invocation.
    """
    def __init__(self, message: str = "backend integrity violation", *,
                 data: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INTEGRITY", data=data)


class BackendError(ExecError):
    """Unexpected exception raised inside an interpreter backend."""

    def __init__(self, message: str = "backend failure", *, backend: Optional[str] = None,
                 data: Optional[Dict[str, Any]] = None):
        d: Dict[str, Any] = dict(data or {})
        if backend is not None:
            d.setdefault("backend", backend)
        super().__init__(message=message, code="BACKEND_ERROR", data=d or None)


class FuzzExhausted(ExecError):
    """
    Too many consecutive inputs were rejected by `assume`. The property was
    never adequately exercised; reported as an error, not a failure.
    """
    def __init__(self, message: str = "too many rejected inputs", *,
                 rejects: Optional[int] = None, runs: Optional[int] = None):
        d: Dict[str, Any] = {}
        if rejects is not None:
            d["rejects"] = rejects
        if runs is not None:
            d["runs_completed"] = runs
        super().__init__(message=message, code="FUZZ_EXHAUSTED", data=d or None)


class ConfigError(ExecError):
    """Invalid caller-supplied configuration; raised before any execution begins."""

    def __init__(self, message: str = "invalid configuration", *, key: Optional[str] = None,
                 data: Optional[Dict[str, Any]] = None):
        d: Dict[str, Any] = dict(data or {})
        if key is not None:
            d.setdefault("key", key)
        super().__init__(message=message, code="CONFIG", data=d or None)


class UnknownBackend(ConfigError):
    def __init__(self, name: str, *, available: Optional[list] = None):
        super().__init__(f"unknown backend {name!r}", key="backend",
                         data={"available": sorted(available or [])})


# -------- helper utilities ---------------------------------------------------


def error_to_status(err: BaseException) -> str:
    """
    Map an exception to a canonical status string:
    halts map to their result status, everything else to "error".
    """
    if isinstance(err, ExecHalt):
        return err.status
    return "error"


__all__ = [
    "ExecError",
    "ExecHalt",
    "Revert",
    "OOG",
    "InvalidOpcode",
    "StaticViolation",
    "InsufficientBalance",
    "BalanceOverflow",
    "DepthExceeded",
    "IntegrityError",
    "BackendError",
    "FuzzExhausted",
    "ConfigError",
    "UnknownBackend",
    "error_to_status",
]
