"""
forgecore.types.context — the block environment seen by executing contracts.

`BlockEnv` is the "scratch area" of the ledger: block timestamp/number, chain
id, coinbase, gas price and the transaction origin. Cheat codes (warp, roll,
chainId, fee) change it mid-run, so unlike the other value types it is mutable;
the ledger journals every change so snapshot/revert covers it too.

Conventions
-----------
* `timestamp` is Unix time in seconds (int).
* `coinbase` and `origin` are raw 20-byte addresses.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict

from .address import ZERO_ADDRESS, to_address, to_hex
from .u256 import is_u256

ENV_FIELDS = ("timestamp", "number", "chain_id", "coinbase", "gas_price", "base_fee", "origin")


@dataclass
class BlockEnv:
    """
    Environment for executing one top-level call.

    Attributes:
        timestamp: int >= 0 — Unix seconds
        number:    int >= 0 — block number
        chain_id:  int >= 1 — chain id
        coinbase:  bytes     — block beneficiary
        gas_price: int >= 0  — effective gas price
        base_fee:  int >= 0  — protocol base fee
        origin:    bytes     — tx.origin of the top-level call
    """
    timestamp: int = 1
    number: int = 1
    chain_id: int = 31337
    coinbase: bytes = ZERO_ADDRESS
    gas_price: int = 0
    base_fee: int = 0
    origin: bytes = ZERO_ADDRESS

    def __post_init__(self) -> None:
        for name in ("timestamp", "number", "gas_price", "base_fee"):
            v = getattr(self, name)
            if not is_u256(v):
                raise ValueError(f"{name} must be a u256, got {v!r}")
        if not is_u256(self.chain_id) or self.chain_id == 0:
            raise ValueError("chain_id must be >= 1")
        self.coinbase = to_address(self.coinbase)
        self.origin = to_address(self.origin)

    def copy(self) -> "BlockEnv":
        return BlockEnv(**{f.name: getattr(self, f.name) for f in fields(self)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "number": self.number,
            "chainId": self.chain_id,
            "coinbase": to_hex(self.coinbase),
            "gasPrice": self.gas_price,
            "baseFee": self.base_fee,
            "origin": to_hex(self.origin),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BlockEnv":
        return cls(
            timestamp=int(d.get("timestamp", 1)),
            number=int(d.get("number", d.get("height", 1))),
            chain_id=int(d.get("chainId") or d.get("chain_id") or 31337),
            coinbase=d.get("coinbase", ZERO_ADDRESS),
            gas_price=int(d.get("gasPrice", d.get("gas_price", 0))),
            base_fee=int(d.get("baseFee", d.get("base_fee", 0))),
            origin=d.get("origin", ZERO_ADDRESS),
        )


__all__ = ["BlockEnv", "ENV_FIELDS"]
