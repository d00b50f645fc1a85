"""
forgecore.gas.meter — GasMeter (debit/reclaim), OOG semantics.

Each call frame owns one GasMeter holding the gas forwarded to it. It supports:
- deterministic debits that raise OOG when insufficient gas remains,
- reclaiming the unused part of gas forwarded to a nested frame, and
- burning the whole allowance (OOG / invalid instruction semantics).

Gas is never refunded beyond what the frame was given: the meter's `used` is
always within [0, limit].
"""

from __future__ import annotations

from typing import Optional

from forgecore.errors import OOG
from forgecore.types.u256 import is_u256


class GasMeter:
    """
    Deterministic per-frame gas meter.

    Parameters
    ----------
    limit : int
        Gas made available to the frame. Must be a u256.
    """

    __slots__ = ("_limit", "_used")

    def __init__(self, limit: int) -> None:
        lim = int(limit)
        if not is_u256(lim):
            raise ValueError("gas limit must be a non-negative u256")
        self._limit: int = lim
        self._used: int = 0

    # --------------------------- properties ---------------------------------

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self._limit - self._used

    # --------------------------- operations ---------------------------------

    def debit(self, amount: int, *, reason: Optional[str] = None) -> None:
        """
        Consume `amount` gas. On OOG the whole allowance is burnt before
        raising, so the frame reports `limit` as used.
        """
        amt = int(amount)
        if amt < 0:
            raise ValueError("gas amount must be non-negative")
        if amt > self.remaining:
            self._used = self._limit
            msg = "out of gas"
            if reason:
                msg = f"{msg}: {reason}"
            raise OOG(msg, data={"needed": amt, "limit": self._limit})
        self._used += amt

    def reclaim(self, amount: int) -> None:
        """Give back gas that was debited for a nested frame but not used."""
        amt = int(amount)
        if amt < 0 or amt > self._used:
            raise ValueError(f"cannot reclaim {amt} gas (used={self._used})")
        self._used -= amt

    def burn_all(self) -> None:
        self._used = self._limit

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"GasMeter(limit={self._limit}, used={self._used}, remaining={self.remaining})"


__all__ = ["GasMeter"]
