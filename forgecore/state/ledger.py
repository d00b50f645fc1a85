"""
forgecore.state.ledger — in-memory ledger state with journaled writes.

`LedgerState` is the arena of Account records keyed by 20-byte address, plus
the block environment scratch area and a monotonically increasing global
nonce. Every mutator records an inverse entry in the ledger's `Journal` before
changing anything, which is what makes snapshot/revert exact.

Balance operations follow a check-then-apply order: `transfer` validates both
the debit and the credit before touching either account, so a failed transfer
leaves both balances unchanged.

One LedgerState belongs to exactly one thread for its whole life. Use `fork()`
to derive an independent copy (e.g. one per test or per worker).

Typical usage
-------------
    ledger = LedgerState()
    ledger.set_balance(alice, 10**18)
    sid = ledger.journal.snapshot()
    ledger.transfer(alice, bob, 5)
    ledger.revert(sid)              # alice and bob back to their prior balances
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from eth_hash.auto import keccak

from forgecore.errors import BalanceOverflow, InsufficientBalance
from forgecore.types.address import to_address, to_hex
from forgecore.types.context import ENV_FIELDS, BlockEnv
from forgecore.types.events import LogEvent
from forgecore.types.u256 import U256_MAX, is_u256, word_to_bytes

from .accounts import Account
from .journal import (AccountCreated, BalanceChanged, CodeChanged,
                      DestructScheduled, EnvChanged, GlobalNonceBumped,
                      Journal, LogAppended, NonceChanged, StorageChanged,
                      StorageCleared)


class LedgerState:
    """
    Parameters
    ----------
    accounts : Mapping[bytes, Account], optional
        Initial accounts (copied).
    env : BlockEnv, optional
        Initial block environment (copied).
    """

    def __init__(self, accounts: Optional[Mapping[bytes, Account]] = None,
                 env: Optional[BlockEnv] = None, *, global_nonce: int = 0) -> None:
        self.accounts: Dict[bytes, Account] = {
            to_address(a): acc.copy() for a, acc in (accounts or {}).items()
        }
        self.env: BlockEnv = env.copy() if env is not None else BlockEnv()
        self.global_nonce: int = int(global_nonce)
        self.journal = Journal()
        # Transient per top-level call; journaled so reverted frames drop theirs.
        self.logs: List[LogEvent] = []
        self.pending_destructs: List[Tuple[bytes, bytes]] = []

    # --------------------------------------------------------------------- #
    # Reads
    # --------------------------------------------------------------------- #

    def get_account(self, address: bytes) -> Optional[Account]:
        """Read-only lookup; does not create. Do not mutate the result."""
        return self.accounts.get(address)

    def exists(self, address: bytes) -> bool:
        return address in self.accounts

    def balance(self, address: bytes) -> int:
        acc = self.accounts.get(address)
        return acc.balance if acc is not None else 0

    def nonce(self, address: bytes) -> int:
        acc = self.accounts.get(address)
        return acc.nonce if acc is not None else 0

    def code(self, address: bytes) -> bytes:
        acc = self.accounts.get(address)
        return acc.code if acc is not None else b""

    def sload(self, address: bytes, key: int) -> int:
        acc = self.accounts.get(address)
        return acc.sload(key) if acc is not None else 0

    # --------------------------------------------------------------------- #
    # Writes (journaled)
    # --------------------------------------------------------------------- #

    def touch(self, address: bytes) -> Account:
        """Return the account at `address`, creating it lazily (journaled)."""
        acc = self.accounts.get(address)
        if acc is None:
            acc = Account()
            self.accounts[address] = acc
            self.journal.record(AccountCreated(address))
        return acc

    def set_balance(self, address: bytes, value: int) -> None:
        if not is_u256(value):
            raise ValueError(f"balance out of u256 range: {value}")
        acc = self.touch(address)
        self.journal.record(BalanceChanged(address, acc.balance))
        acc.balance = value

    def credit(self, address: bytes, amount: int) -> None:
        acc = self.touch(address)
        if acc.balance + amount > U256_MAX:
            raise BalanceOverflow(address=to_hex(address))
        self.journal.record(BalanceChanged(address, acc.balance))
        acc.credit(amount, address=to_hex(address))

    def debit(self, address: bytes, amount: int) -> None:
        bal = self.balance(address)
        if bal < amount:
            raise InsufficientBalance(address=to_hex(address), balance=bal, amount=amount)
        acc = self.touch(address)
        self.journal.record(BalanceChanged(address, acc.balance))
        acc.debit(amount, address=to_hex(address))

    def transfer(self, sender: bytes, recipient: bytes, amount: int) -> None:
        """
        Move `amount` from sender to recipient. Validates both sides first, so on
        InsufficientBalance/BalanceOverflow neither balance has changed.
        """
        if amount < 0:
            raise ValueError("amount must be >= 0")
        if amount == 0:
            return
        bal = self.balance(sender)
        if bal < amount:
            raise InsufficientBalance(address=to_hex(sender), balance=bal, amount=amount)
        if sender == recipient:
            return
        if self.balance(recipient) + amount > U256_MAX:
            raise BalanceOverflow(address=to_hex(recipient))
        self.debit(sender, amount)
        self.credit(recipient, amount)

    def set_nonce(self, address: bytes, value: int) -> None:
        acc = self.touch(address)
        self.journal.record(NonceChanged(address, acc.nonce))
        acc.set_nonce(value)

    def increment_nonce(self, address: bytes) -> int:
        """Bump the account nonce; returns the value *before* the bump."""
        prev = self.nonce(address)
        self.set_nonce(address, prev + 1)
        return prev

    def set_code(self, address: bytes, code: bytes) -> None:
        acc = self.touch(address)
        self.journal.record(CodeChanged(address, acc.code))
        acc.code = bytes(code)

    def sstore(self, address: bytes, key: int, value: int) -> int:
        """Write a storage slot; returns the previous value."""
        acc = self.touch(address)
        prev = acc.sload(key)
        if prev == value:
            return prev
        self.journal.record(StorageChanged(address, key, prev))
        acc.sstore(key, value)
        return prev

    def clear_storage(self, address: bytes) -> None:
        acc = self.accounts.get(address)
        if acc is None or not acc.storage:
            return
        self.journal.record(StorageCleared(address, tuple(sorted(acc.storage.items()))))
        acc.storage = {}

    def set_env(self, name: str, value: Any) -> None:
        if name not in ENV_FIELDS:
            raise KeyError(f"unknown env field {name!r}")
        if name in ("coinbase", "origin"):
            value = to_address(value)
        elif not is_u256(value):
            raise ValueError(f"{name} must be a u256, got {value!r}")
        self.journal.record(EnvChanged(name, getattr(self.env, name)))
        setattr(self.env, name, value)

    def next_global_nonce(self) -> int:
        prev = self.global_nonce
        self.journal.record(GlobalNonceBumped(prev))
        self.global_nonce = prev + 1
        return prev

    def append_log(self, log: LogEvent) -> None:
        self.journal.record(LogAppended(len(self.logs)))
        self.logs.append(log)

    def schedule_destruct(self, address: bytes, beneficiary: bytes) -> None:
        self.journal.record(DestructScheduled(len(self.pending_destructs)))
        self.pending_destructs.append((address, beneficiary))

    # --------------------------------------------------------------------- #
    # Snapshots (delegates to the journal)
    # --------------------------------------------------------------------- #

    def snapshot(self) -> int:
        return self.journal.snapshot()

    def revert(self, sid: int) -> int:
        return self.journal.revert(self, sid)

    def commit(self, sid: int) -> None:
        self.journal.commit(sid)

    def release(self, sid: int) -> None:
        self.journal.release(sid)

    # --------------------------------------------------------------------- #
    # Lifecycle & introspection
    # --------------------------------------------------------------------- #

    def fork(self) -> "LedgerState":
        """Independent copy of accounts, env and global nonce (no journal, no logs)."""
        return LedgerState(self.accounts, self.env, global_nonce=self.global_nonce)

    def take_logs(self) -> List[LogEvent]:
        """Hand over and reset the logs collected for the current top-level call."""
        out, self.logs = self.logs, []
        return out

    def iter_accounts(self) -> Iterator[Tuple[bytes, Account]]:
        for addr in sorted(self.accounts):
            yield addr, self.accounts[addr]

    def canonical_bytes(self) -> bytes:
        """
        Canonical serialization of the full state: accounts sorted by address
        (balance, nonce, code hash, sorted non-zero storage), then the env and
        the global nonce. Two ledgers are identical iff these bytes are.
        """
        buf = bytearray()
        for addr, acc in self.iter_accounts():
            buf += addr
            buf += word_to_bytes(acc.balance)
            buf += acc.nonce.to_bytes(8, "big")
            buf += acc.code_hash
            buf += len(acc.storage).to_bytes(4, "big")
            for k in sorted(acc.storage):
                buf += word_to_bytes(k) + word_to_bytes(acc.storage[k])
        for name in ENV_FIELDS:
            v = getattr(self.env, name)
            buf += v if isinstance(v, bytes) else word_to_bytes(v)
        buf += self.global_nonce.to_bytes(8, "big")
        return bytes(buf)

    def digest(self) -> bytes:
        return keccak(self.canonical_bytes())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": {to_hex(a): acc.to_dict() for a, acc in self.iter_accounts()},
            "env": self.env.to_dict(),
            "globalNonce": self.global_nonce,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerState":
        accounts = {
            to_address(a): Account.from_dict(v) for a, v in (data.get("accounts") or {}).items()
        }
        env = BlockEnv.from_dict(data.get("env") or {})
        return cls(accounts, env, global_nonce=int(data.get("globalNonce", 0)))

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (f"LedgerState(accounts={len(self.accounts)}, "
                f"snapshots={self.journal.depth()}, pending={len(self.journal)})")


__all__ = ["LedgerState"]
