"""
forgecore.state.snapshots — pending-mutation diffs since a snapshot.

A successful frame reports the set of storage/balance/nonce/code mutations it
applied. This module computes that set from the journal: the *first* inverse
entry recorded for a given field since the snapshot carries its value before
the frame, and the live ledger carries its value after. Fields whose before and
after values agree (written and then restored) are dropped, so the diff is
canonical regardless of how many intermediate writes happened.

Design notes
------------
Snapshots are *markers*, not copies (see `forgecore.state.journal`). Computing
a diff is O(entries since the marker) and never copies account storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Set, Tuple

from forgecore.types.address import to_hex

from .journal import (AccountCreated, BalanceChanged, CodeChanged,
                      NonceChanged, StorageChanged, StorageCleared)
from .ledger import LedgerState

Change = Tuple[int, int]  # (before, after)


@dataclass
class StateDiff:
    """
    A canonical diff of ledger mutations.

    - balances: addr -> (before, after)
    - nonces:   addr -> (before, after)
    - storage:  (addr, key) -> (before, after)
    - code:     addr -> new code
    - created:  addresses that did not exist at the snapshot
    """
    balances: Dict[bytes, Change] = field(default_factory=dict)
    nonces: Dict[bytes, Change] = field(default_factory=dict)
    storage: Dict[Tuple[bytes, int], Change] = field(default_factory=dict)
    code: Dict[bytes, bytes] = field(default_factory=dict)
    created: Set[bytes] = field(default_factory=set)

    def is_empty(self) -> bool:
        return not (self.balances or self.nonces or self.storage or self.code or self.created)

    def items_count(self) -> int:
        return (len(self.balances) + len(self.nonces) + len(self.storage)
                + len(self.code) + len(self.created))

    def touched(self) -> Set[bytes]:
        out: Set[bytes] = set(self.balances) | set(self.nonces) | set(self.code) | self.created
        out.update(addr for addr, _ in self.storage)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balances": {to_hex(a): list(c) for a, c in sorted(self.balances.items())},
            "nonces": {to_hex(a): list(c) for a, c in sorted(self.nonces.items())},
            "storage": {
                f"{to_hex(a)}:{hex(k)}": list(c) for (a, k), c in sorted(self.storage.items())
            },
            "code": {to_hex(a): to_hex(c) for a, c in sorted(self.code.items())},
            "created": sorted(to_hex(a) for a in self.created),
        }


def diff_since(ledger: LedgerState, sid: int) -> StateDiff:
    """
    Compute the mutations applied to `ledger` since snapshot `sid`.

    Raises
    ------
    IntegrityError
        If `sid` is not a live snapshot of the ledger's journal.
    """
    bal_before: Dict[bytes, int] = {}
    nonce_before: Dict[bytes, int] = {}
    code_before: Dict[bytes, bytes] = {}
    slot_before: Dict[Tuple[bytes, int], int] = {}
    created: Set[bytes] = set()

    for entry in ledger.journal.entries_since(sid):
        if isinstance(entry, AccountCreated):
            created.add(entry.address)
        elif isinstance(entry, BalanceChanged):
            bal_before.setdefault(entry.address, entry.prev)
        elif isinstance(entry, NonceChanged):
            nonce_before.setdefault(entry.address, entry.prev)
        elif isinstance(entry, CodeChanged):
            code_before.setdefault(entry.address, entry.prev)
        elif isinstance(entry, StorageChanged):
            slot_before.setdefault((entry.address, entry.key), entry.prev)
        elif isinstance(entry, StorageCleared):
            for k, v in entry.prev:
                slot_before.setdefault((entry.address, k), v)

    out = StateDiff()
    for addr, before in bal_before.items():
        after = ledger.balance(addr)
        if before != after:
            out.balances[addr] = (before, after)
    for addr, before in nonce_before.items():
        after = ledger.nonce(addr)
        if before != after:
            out.nonces[addr] = (before, after)
    for addr, before_code in code_before.items():
        after_code = ledger.code(addr)
        if before_code != after_code:
            out.code[addr] = after_code
    for (addr, key), before in slot_before.items():
        after = ledger.sload(addr, key)
        if before != after:
            out.storage[(addr, key)] = (before, after)
    out.created = {a for a in created if ledger.exists(a)}
    return out


__all__ = ["StateDiff", "Change", "diff_since"]
