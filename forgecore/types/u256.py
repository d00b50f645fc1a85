"""
forgecore.types.u256 — fixed-width unsigned word helpers.

Balances, storage keys/values and gas quantities are Python ints constrained to
the 256-bit unsigned range. Python's ints are unbounded, so explicit checks stand
in for the machine's fixed width: overflow during a balance credit is an error,
never a silent truncation.

Exports
-------
* Constants: `U256_MAX`, `U64_MAX`, `WORD_BYTES`
* Predicates: `is_u256(n)`, `is_u64(n)`
* Checked math: `checked_add(a, b, cap=...)`, `checked_sub(a, b)`
* Saturating math: `saturating_add`, `saturating_sub`
* Word codec: `word_to_bytes(n)`, `bytes_to_word(b)`
* Signed views: `to_signed(n)`, `from_signed(n)`
"""

from __future__ import annotations

# ------------------------------- constants -----------------------------------

U256_MAX: int = (1 << 256) - 1
"""Maximum 256-bit unsigned integer."""

U64_MAX: int = (1 << 64) - 1
WORD_BYTES: int = 32


# --------------------------------- utils -------------------------------------


def is_u256(n: int) -> bool:
    """Return True iff 0 <= n <= U256_MAX."""
    return isinstance(n, int) and not isinstance(n, bool) and 0 <= n <= U256_MAX


def is_u64(n: int) -> bool:
    return isinstance(n, int) and not isinstance(n, bool) and 0 <= n <= U64_MAX


def _ensure_nonneg_int(n: int) -> int:
    if not isinstance(n, int):
        raise TypeError(f"expected int, got {type(n).__name__}")
    if n < 0:
        raise ValueError("value must be non-negative")
    return n


# ------------------------------ arithmetic -----------------------------------


def checked_add(a: int, b: int, *, cap: int = U256_MAX) -> int:
    """
    Checked addition. Raises OverflowError if result exceeds `cap`.
    """
    _ensure_nonneg_int(a)
    _ensure_nonneg_int(b)
    s = a + b
    if s > cap:
        raise OverflowError(f"addition overflow: {a} + {b} > cap {cap}")
    return s


def checked_sub(a: int, b: int) -> int:
    """
    Checked subtraction. Raises ValueError if result would be negative.
    """
    _ensure_nonneg_int(a)
    _ensure_nonneg_int(b)
    if b > a:
        raise ValueError(f"subtraction underflow: {a} - {b} < 0")
    return a - b


def saturating_add(a: int, b: int, *, cap: int = U256_MAX) -> int:
    """Saturating addition. Returns min(a + b, cap)."""
    _ensure_nonneg_int(a)
    _ensure_nonneg_int(b)
    s = a + b
    return cap if s > cap else s


def saturating_sub(a: int, b: int) -> int:
    """Saturating subtraction. Returns max(a - b, 0)."""
    _ensure_nonneg_int(a)
    _ensure_nonneg_int(b)
    return a - b if a >= b else 0


# ------------------------------ word codec -----------------------------------


def word_to_bytes(n: int) -> bytes:
    """Big-endian 32-byte encoding of a u256."""
    if not is_u256(n):
        raise OverflowError(f"value out of u256 range: {n}")
    return n.to_bytes(WORD_BYTES, "big")


def bytes_to_word(b: bytes) -> int:
    """Interpret up to 32 bytes as a big-endian u256 (right-padded like calldata)."""
    if len(b) > WORD_BYTES:
        raise ValueError(f"word longer than {WORD_BYTES} bytes")
    return int.from_bytes(bytes(b).ljust(WORD_BYTES, b"\x00"), "big")


def to_signed(n: int, bits: int = 256) -> int:
    """Two's-complement view of an unsigned `bits`-wide value."""
    if n >= 1 << (bits - 1):
        return n - (1 << bits)
    return n


def from_signed(n: int, bits: int = 256) -> int:
    """Unsigned `bits`-wide encoding of a signed value."""
    return n & ((1 << bits) - 1)


__all__ = [
    "U256_MAX",
    "U64_MAX",
    "WORD_BYTES",
    "is_u256",
    "is_u64",
    "checked_add",
    "checked_sub",
    "saturating_add",
    "saturating_sub",
    "word_to_bytes",
    "bytes_to_word",
    "to_signed",
    "from_signed",
]
