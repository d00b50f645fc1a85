"""
forgecore.types.frame — call frames.

A `CallFrame` describes one (possibly nested) invocation: who calls whom, with
what input and value, under which gas limit and call kind. Frames form a
depth-bounded stack inside a single top-level call; depth 0 is the top-level
call itself.

Kinds
-----
* CALL         : ordinary message call; may transfer value
* STATICCALL   : read-only call; any state write halts the frame
* DELEGATECALL : runs `code_address`'s code against the caller's storage/identity
* CREATE       : runs init code; its output becomes the new account's code
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from .address import to_address, to_hex


class CallKind(str, Enum):
    CALL = "call"
    STATICCALL = "staticcall"
    DELEGATECALL = "delegatecall"
    CREATE = "create"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


@dataclass(frozen=True)
class CallFrame:
    caller: bytes
    callee: bytes
    input: bytes = b""
    value: int = 0
    gas_limit: int = 0
    kind: CallKind = CallKind.CALL
    depth: int = 0
    # Code to run when it differs from the callee's own (DELEGATECALL).
    code_address: Optional[bytes] = None
    # Inherited: a frame opened from a static frame is static too.
    static: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "caller", to_address(self.caller))
        object.__setattr__(self, "callee", to_address(self.callee))
        object.__setattr__(self, "input", bytes(self.input))
        if self.code_address is not None:
            object.__setattr__(self, "code_address", to_address(self.code_address))
        if self.value < 0:
            raise ValueError("value must be >= 0")
        if self.gas_limit < 0:
            raise ValueError("gas_limit must be >= 0")
        if self.depth < 0:
            raise ValueError("depth must be >= 0")

    @property
    def is_static(self) -> bool:
        return self.static or self.kind is CallKind.STATICCALL

    @property
    def is_create(self) -> bool:
        return self.kind is CallKind.CREATE

    @property
    def selector(self) -> bytes:
        return self.input[:4]

    def child(self, **changes: Any) -> "CallFrame":
        """A frame one level deeper, inheriting the static flag."""
        changes.setdefault("depth", self.depth + 1)
        changes.setdefault("static", self.is_static)
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caller": to_hex(self.caller),
            "callee": to_hex(self.callee),
            "input": to_hex(self.input),
            "value": self.value,
            "gasLimit": self.gas_limit,
            "kind": str(self.kind),
            "depth": self.depth,
            "codeAddress": to_hex(self.code_address),
            "static": self.is_static,
        }


__all__ = ["CallKind", "CallFrame"]
