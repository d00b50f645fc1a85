"""
forgecore.state.journal — append-only mutation log with snapshot markers.

Every ledger write appends one *inverse entry* describing how to undo it
(the prior value of a storage slot, balance, nonce, code, env field, or the
fact that an account was freshly created). Snapshots are markers into this
log:

    j = Journal()
    sid = j.snapshot()          # marker at the current log length
    ... ledger writes append entries ...
    j.revert(ledger, sid)       # pop entries back to the marker, undoing each

Reverting replays the inverse of every truncated entry in reverse order, so a
partially applied nested call, including value transfers and code deployed by
nested creation, is fully undone in O(mutations since the snapshot). No state
is ever copied.

Stack discipline
----------------
Markers form a stack. Reverting to S drops every marker taken after S; S
itself stays valid, so it may be reverted to again. `commit(S)` drops S and
everything above it while keeping the entries, so an enclosing snapshot can
still undo them. Reverting to an unknown or dropped marker raises
`IntegrityError`: it means a backend broke the host contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Tuple

from forgecore.errors import IntegrityError

if TYPE_CHECKING:  # pragma: no cover
    from .ledger import LedgerState


# =============================================================================
# Inverse entries
# =============================================================================


@dataclass(frozen=True)
class Entry:
    """Base class; subclasses restore exactly one field."""

    def undo(self, ledger: "LedgerState") -> None:  # pragma: no cover - abstract
        raise NotImplementedError


@dataclass(frozen=True)
class AccountCreated(Entry):
    address: bytes

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts.pop(self.address, None)


@dataclass(frozen=True)
class BalanceChanged(Entry):
    address: bytes
    prev: int

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts[self.address].balance = self.prev


@dataclass(frozen=True)
class NonceChanged(Entry):
    address: bytes
    prev: int

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts[self.address].nonce = self.prev


@dataclass(frozen=True)
class CodeChanged(Entry):
    address: bytes
    prev: bytes

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts[self.address].code = self.prev


@dataclass(frozen=True)
class StorageChanged(Entry):
    address: bytes
    key: int
    prev: int

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts[self.address].sstore(self.key, self.prev)


@dataclass(frozen=True)
class StorageCleared(Entry):
    """Whole-storage wipe (self-destruct); keeps the full prior mapping."""
    address: bytes
    prev: Tuple[Tuple[int, int], ...]

    def undo(self, ledger: "LedgerState") -> None:
        ledger.accounts[self.address].storage = dict(self.prev)


@dataclass(frozen=True)
class EnvChanged(Entry):
    name: str
    prev: Any

    def undo(self, ledger: "LedgerState") -> None:
        setattr(ledger.env, self.name, self.prev)


@dataclass(frozen=True)
class GlobalNonceBumped(Entry):
    prev: int

    def undo(self, ledger: "LedgerState") -> None:
        ledger.global_nonce = self.prev


@dataclass(frozen=True)
class LogAppended(Entry):
    """Position of the log; logs already handed over by `take_logs` are untouched."""
    index: int

    def undo(self, ledger: "LedgerState") -> None:
        del ledger.logs[self.index:]


@dataclass(frozen=True)
class DestructScheduled(Entry):
    index: int

    def undo(self, ledger: "LedgerState") -> None:
        del ledger.pending_destructs[self.index:]


# =============================================================================
# Journal
# =============================================================================


class Journal:
    """
    Append-only inverse log plus a stack of (snapshot id, log position) markers.

    Snapshot ids are monotonically increasing ints and are never reused within
    one journal, so a stale id can always be told apart from a live one.
    """

    __slots__ = ("_entries", "_markers", "_next_id")

    def __init__(self) -> None:
        self._entries: List[Entry] = []
        self._markers: List[Tuple[int, int]] = []
        self._next_id = 1

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #

    def record(self, entry: Entry) -> None:
        # With no live snapshot nothing can ever undo the write.
        if self._markers:
            self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def entries_since(self, sid: int) -> Iterator[Entry]:
        """Entries appended after snapshot `sid`, oldest first."""
        pos = self._position(sid)
        return iter(self._entries[pos:])

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #

    def snapshot(self) -> int:
        """Take a snapshot; returns its id."""
        sid = self._next_id
        self._next_id += 1
        self._markers.append((sid, len(self._entries)))
        return sid

    def is_live(self, sid: int) -> bool:
        return self._index_of(sid) is not None

    def depth(self) -> int:
        """Number of live snapshot markers."""
        return len(self._markers)

    def top(self) -> Optional[int]:
        return self._markers[-1][0] if self._markers else None

    def revert(self, ledger: "LedgerState", sid: int) -> int:
        """
        Undo every entry recorded after snapshot `sid` (newest first) and drop
        all markers taken after it. Returns the number of entries undone.
        """
        idx = self._require(sid)
        pos = self._markers[idx][1]
        undone = 0
        while len(self._entries) > pos:
            self._entries.pop().undo(ledger)
            undone += 1
        del self._markers[idx + 1:]
        return undone

    def commit(self, sid: int) -> None:
        """
        Drop marker `sid` (and any taken after it) but keep the entries so an
        enclosing snapshot can still undo them.
        """
        idx = self._require(sid)
        del self._markers[idx:]
        if not self._markers:
            # Nothing can revert past this point any more.
            self._entries.clear()

    def release(self, sid: int) -> None:
        """Drop marker `sid` after a revert, keeping the (now shorter) log."""
        idx = self._require(sid)
        del self._markers[idx:]
        if not self._markers:
            self._entries.clear()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _index_of(self, sid: int) -> Optional[int]:
        for i in range(len(self._markers) - 1, -1, -1):
            if self._markers[i][0] == sid:
                return i
        return None

    def _require(self, sid: int) -> int:
        idx = self._index_of(sid)
        if idx is None:
            raise IntegrityError(
                f"unknown or invalidated snapshot {sid}",
                data={"snapshot": sid, "live": [m[0] for m in self._markers]},
            )
        return idx

    def _position(self, sid: int) -> int:
        return self._markers[self._require(sid)][1]


__all__ = [
    "Journal",
    "Entry",
    "AccountCreated",
    "BalanceChanged",
    "NonceChanged",
    "CodeChanged",
    "StorageChanged",
    "StorageCleared",
    "EnvChanged",
    "GlobalNonceBumped",
    "LogAppended",
    "DestructScheduled",
]
