"""
Revert payload helpers.

Contracts revert with one of three payload shapes:

- Error(string)   selector 0x08c379a0 — `require(cond, "reason")`
- Panic(uint256)  selector 0x4e487b71 — compiler-inserted checks
- anything else   custom errors / raw bytes

`decode_revert_reason` turns any of them into a short human-readable string
for reports; it never raises.
"""

from __future__ import annotations

from typing import Dict, Optional

from .codec import decode_args, encode_args
from .types import ValidationError

__all__ = [
    "ERROR_SELECTOR",
    "PANIC_SELECTOR",
    "PANIC_CODES",
    "encode_error_string",
    "encode_panic",
    "decode_error_string",
    "decode_revert_reason",
]

ERROR_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")

PANIC_CODES: Dict[int, str] = {
    0x00: "generic panic",
    0x01: "assertion failed",
    0x11: "arithmetic underflow or overflow",
    0x12: "division or modulo by zero",
    0x21: "enum conversion out of range",
    0x22: "invalid storage byte array",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized function",
}


def encode_error_string(reason: str) -> bytes:
    return ERROR_SELECTOR + encode_args(["string"], [reason])


def encode_panic(code: int) -> bytes:
    return PANIC_SELECTOR + encode_args(["uint256"], [code])


def decode_error_string(data: bytes) -> Optional[str]:
    """The reason of an Error(string) payload, or None for any other shape."""
    if len(data) < 4 or bytes(data[:4]) != ERROR_SELECTOR:
        return None
    try:
        (reason,) = decode_args(["string"], bytes(data[4:]))
    except ValidationError:
        return None
    return reason


def decode_revert_reason(data: bytes) -> str:
    data = bytes(data or b"")
    if not data:
        return ""
    reason = decode_error_string(data)
    if reason is not None:
        return reason
    if data[:4] == PANIC_SELECTOR:
        try:
            (code,) = decode_args(["uint256"], data[4:])
        except ValidationError:
            return "0x" + data.hex()
        return f"panic: {PANIC_CODES.get(code, 'unknown')} (0x{code:02x})"
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return "0x" + data.hex()
    if text.isprintable():
        return text
    return "0x" + data.hex()
