"""
forgecore.state.accounts — Account records.

An Account holds:

- balance:  u256 currency amount
- nonce:    u64 transaction/creation counter
- code:     runtime code bytes (empty for externally owned accounts)
- storage:  mapping u256 key -> u256 value; an absent key reads as zero

Storage is kept canonical: writing zero removes the key, so two accounts with
the same visible contents compare equal. All arithmetic is range-checked; a
credit that would overflow u256 raises `BalanceOverflow` rather than wrapping.

Accounts are plain records. Journaling lives one layer up, in
`forgecore.state.ledger`, which is the only writer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from eth_hash.auto import keccak

from forgecore.errors import BalanceOverflow, InsufficientBalance
from forgecore.types.address import hex_to_bytes
from forgecore.types.u256 import U256_MAX, U64_MAX, is_u256, is_u64

EMPTY_CODE_HASH: bytes = keccak(b"")


def _ensure_u256(name: str, value: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be int")
    if not is_u256(value):
        raise ValueError(f"{name} out of u256 range: {value}")
    return value


def compute_code_hash(code: bytes) -> bytes:
    """Keccak-256 of the code; EMPTY_CODE_HASH for empty code."""
    if not code:
        return EMPTY_CODE_HASH
    return keccak(bytes(code))


@dataclass(slots=True)
class Account:
    """
    A minimal, deterministic account record.

    Invariants:
    - balance is u256, nonce is u64
    - storage never holds zero values
    """
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: Dict[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.balance = _ensure_u256("balance", int(self.balance))
        if not is_u64(int(self.nonce)):
            raise ValueError(f"nonce out of u64 range: {self.nonce}")
        self.nonce = int(self.nonce)
        self.code = bytes(self.code)
        self.storage = {
            _ensure_u256("storage key", int(k)): _ensure_u256("storage value", int(v))
            for k, v in self.storage.items()
            if int(v) != 0
        }

    # ----------------------- field operations ------------------------------ #

    @property
    def code_hash(self) -> bytes:
        return compute_code_hash(self.code)

    @property
    def has_code(self) -> bool:
        return len(self.code) > 0

    def is_empty(self) -> bool:
        """No balance, no nonce, no code, no storage."""
        return self.balance == 0 and self.nonce == 0 and not self.code and not self.storage

    def credit(self, amount: int, *, address: str = "") -> None:
        amt = _ensure_u256("amount", int(amount))
        new = self.balance + amt
        if new > U256_MAX:
            raise BalanceOverflow(address=address or None)
        self.balance = new

    def debit(self, amount: int, *, address: str = "") -> None:
        amt = _ensure_u256("amount", int(amount))
        if self.balance < amt:
            raise InsufficientBalance(address=address or None, balance=self.balance, amount=amt)
        self.balance -= amt

    def set_nonce(self, value: int) -> None:
        if not is_u64(int(value)):
            raise ValueError(f"nonce out of u64 range: {value}")
        self.nonce = int(value)

    def sload(self, key: int) -> int:
        return self.storage.get(key, 0)

    def sstore(self, key: int, value: int) -> None:
        _ensure_u256("storage key", key)
        _ensure_u256("storage value", value)
        if value == 0:
            self.storage.pop(key, None)
        else:
            self.storage[key] = value

    def copy(self) -> "Account":
        return Account(balance=self.balance, nonce=self.nonce, code=self.code,
                       storage=dict(self.storage))

    # ----------------------- (de)serialization ----------------------------- #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "nonce": self.nonce,
            "code": "0x" + self.code.hex(),
            "storage": {hex(k): hex(v) for k, v in sorted(self.storage.items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        try:
            storage_raw = data.get("storage") or {}
            storage = {_as_int(k): _as_int(v) for k, v in storage_raw.items()}
            code = data.get("code") or b""
            return cls(
                balance=_as_int(data.get("balance", 0)),
                nonce=_as_int(data.get("nonce", 0)),
                code=hex_to_bytes(code) if isinstance(code, str) else bytes(code),
                storage=storage,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"bad account dict: {e}") from e


def _as_int(v: Any) -> int:
    if isinstance(v, bool):
        raise TypeError("bool is not a number")
    if isinstance(v, int):
        return v
    if isinstance(v, str):
        s = v.strip()
        return int(s, 16) if s.lower().startswith("0x") else int(s)
    if isinstance(v, (bytes, bytearray)):
        return int.from_bytes(v, "big")
    raise TypeError(f"cannot interpret {type(v).__name__} as int")


__all__ = [
    "Account",
    "EMPTY_CODE_HASH",
    "compute_code_hash",
]
