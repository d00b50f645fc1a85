"""
forgecore.gas.table — flat gas costs for host operations.

Overview
--------
Backends meter their own instructions, but every ledger-affecting operation
goes through the Host, and the Host charges for it from this table. Costs are
flat per operation (no warm/cold distinction); logs and deployed code add a
per-byte component.

A table can be loaded from a YAML (or JSON, which is a YAML subset) file whose
root mapping uses the field names below; missing keys keep their defaults:

    sload: 800
    sstore_set: 20000
    log_data_per_byte: 8

Determinism notes
-----------------
* Unknown keys, negative costs and non-int costs are rejected.
* Precedence is *last-wins*: defaults < file contents < explicit overrides.
* The returned `GasTable` is immutable.

Usage
-----
    from forgecore.gas.table import load_gas_table
    table = load_gas_table()
    table.log_cost(topics=2, data_len=64)
    callable_gas(remaining=100_000, requested=None)   # all but 1/64
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from forgecore.types.u256 import is_u256

# Fraction of the remaining gas a caller keeps back when forwarding (EIP-150).
CALL_RESERVE_DIVISOR = 64


# ------------------------------ datatypes ------------------------------------

@dataclass(frozen=True)
class GasTable:
    """
    Immutable container of host-operation gas costs.
    """
    sload: int = 800
    sstore_set: int = 20_000       # zero -> non-zero
    sstore_reset: int = 5_000      # non-zero -> other value (incl. zero)
    sstore_noop: int = 800         # value unchanged
    balance: int = 700
    code: int = 700
    call: int = 700
    call_value: int = 9_000        # surcharge for a non-zero value transfer
    call_stipend: int = 2_300      # free gas handed to a callee receiving value
    create: int = 32_000
    code_deposit_per_byte: int = 200
    log: int = 375
    log_topic: int = 375
    log_data_per_byte: int = 8
    selfdestruct: int = 5_000
    cheatcode: int = 0

    def __post_init__(self) -> None:
        for f in fields(self):
            v = getattr(self, f.name)
            if isinstance(v, bool) or not isinstance(v, int):
                raise TypeError(f"{f.name}: cost must be int")
            if not is_u256(v):
                raise ValueError(f"{f.name}: cost must be a non-negative u256")

    # ---------- lookup ----------

    def sstore_cost(self, current: int, new: int) -> int:
        if current == new:
            return self.sstore_noop
        if current == 0:
            return self.sstore_set
        return self.sstore_reset

    def log_cost(self, topics: int, data_len: int) -> int:
        return self.log + self.log_topic * topics + self.log_data_per_byte * data_len

    def call_cost(self, value: int) -> int:
        return self.call + (self.call_value if value else 0)

    def deposit_cost(self, code_len: int) -> int:
        return self.code_deposit_per_byte * code_len

    # ---------- conversions ----------

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GasTable":
        known = {f.name for f in fields(cls)}
        unknown = sorted(str(k) for k in data if k not in known)
        if unknown:
            raise KeyError(f"unknown gas table keys: {unknown}")
        return replace(cls(), **{str(k): v for k, v in data.items()})


DEFAULT_GAS_TABLE = GasTable()


# ------------------------------ helpers --------------------------------------

def callable_gas(remaining: int, requested: Optional[int] = None) -> int:
    """
    Gas a caller may forward to a nested frame: at most all but 1/64 of what it
    has left, further capped by an explicit request.
    """
    cap = remaining - remaining // CALL_RESERVE_DIVISOR
    if requested is None:
        return cap
    return min(int(requested), cap)


def _load_file(path: Path) -> Dict[str, Any]:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path.name}: root must be a mapping")
    return loaded


# ------------------------------ public API -----------------------------------

@lru_cache(maxsize=8)
def _load_cached(path: Optional[str]) -> GasTable:
    if path is None:
        return DEFAULT_GAS_TABLE
    return GasTable.from_mapping(_load_file(Path(path)))


def load_gas_table(
    path: Optional[str | Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
) -> GasTable:
    """
    Load and validate a `GasTable`.

    Parameters
    ----------
    path:
        Optional YAML/JSON file with per-operation costs. If None the in-code
        defaults are used.
    overrides:
        Optional mapping applied with highest precedence.
    """
    table = _load_cached(str(path) if path is not None else None)
    if overrides:
        merged = table.to_dict()
        merged.update({str(k): v for k, v in overrides.items()})
        table = GasTable.from_mapping(merged)
    return table


__all__ = [
    "GasTable",
    "DEFAULT_GAS_TABLE",
    "CALL_RESERVE_DIVISOR",
    "callable_gas",
    "load_gas_table",
]
