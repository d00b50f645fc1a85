from __future__ import annotations

from typing import List, Tuple

import pytest
from hypothesis import given, settings, strategies as st

from forgecore.errors import IntegrityError, InsufficientBalance
from forgecore.state.ledger import LedgerState
from forgecore.state.snapshots import diff_since
from forgecore.types.address import to_address
from forgecore.types.events import LogEvent

A = to_address("0x" + "aa" * 20)
B = to_address("0x" + "bb" * 20)
C = to_address("0x" + "cc" * 20)
ADDRS = (A, B, C)


def _ledger() -> LedgerState:
    led = LedgerState()
    led.set_balance(A, 1_000)
    led.sstore(A, 1, 11)
    led.set_code(B, b"code-b")
    return led


# ===================================================
# Basic snapshot / revert / commit
# ===================================================

def test_revert_restores_every_kind_of_write():
    led = _ledger()
    before = led.digest()
    sid = led.snapshot()

    led.set_balance(B, 5)
    led.transfer(A, C, 100)
    led.increment_nonce(A)
    led.set_code(C, b"new")
    led.sstore(A, 1, 0)
    led.sstore(B, 7, 70)
    led.clear_storage(B)
    led.set_env("timestamp", 999)
    led.next_global_nonce()
    led.append_log(LogEvent(A, [1], b"x"))
    led.schedule_destruct(B, C)

    assert led.revert(sid) > 0
    assert led.digest() == before
    assert led.logs == []
    assert led.pending_destructs == []
    assert not led.exists(C)


def test_revert_keeps_the_snapshot_live_and_reusable():
    led = _ledger()
    sid = led.snapshot()
    led.sstore(A, 1, 12)
    led.revert(sid)
    assert led.journal.is_live(sid)
    led.sstore(A, 1, 13)
    led.revert(sid)
    assert led.sload(A, 1) == 11


def test_nested_revert_inside_committed_child():
    led = _ledger()
    outer = led.snapshot()
    led.sstore(A, 1, 20)

    inner = led.snapshot()
    led.sstore(A, 2, 30)
    led.commit(inner)
    assert not led.journal.is_live(inner)
    assert led.sload(A, 2) == 30

    led.revert(outer)
    assert led.sload(A, 1) == 11
    assert led.sload(A, 2) == 0


def test_revert_of_outer_drops_inner_markers():
    led = _ledger()
    outer = led.snapshot()
    inner = led.snapshot()
    led.sstore(A, 1, 1)
    led.revert(outer)
    assert led.journal.is_live(outer)
    assert not led.journal.is_live(inner)
    with pytest.raises(IntegrityError):
        led.revert(inner)


def test_commit_of_last_marker_clears_entries():
    led = _ledger()
    sid = led.snapshot()
    led.sstore(A, 1, 2)
    assert len(led.journal) == 1
    led.commit(sid)
    assert len(led.journal) == 0
    assert led.journal.depth() == 0


def test_writes_without_snapshot_are_not_journaled():
    led = _ledger()
    led.sstore(A, 5, 5)
    assert len(led.journal) == 0


def test_unknown_snapshot_raises_integrity_error():
    led = _ledger()
    with pytest.raises(IntegrityError) as ei:
        led.revert(42)
    assert ei.value.code == "INTEGRITY"
    sid = led.snapshot()
    led.release(sid)
    with pytest.raises(IntegrityError):
        led.commit(sid)


def test_snapshot_ids_are_never_reused():
    led = _ledger()
    a = led.snapshot()
    led.release(a)
    b = led.snapshot()
    assert b > a


def test_failed_transfer_changes_nothing():
    led = _ledger()
    before = led.digest()
    sid = led.snapshot()
    with pytest.raises(InsufficientBalance):
        led.transfer(B, A, 1)
    led.revert(sid)
    assert led.digest() == before


# ===================================================
# Diffs
# ===================================================

def test_diff_since_reports_net_changes_only():
    led = _ledger()
    sid = led.snapshot()
    led.sstore(A, 1, 99)
    led.sstore(A, 1, 11)           # restored: not in the diff
    led.sstore(A, 3, 33)
    led.transfer(A, C, 10)

    d = diff_since(led, sid)
    assert d.storage == {(A, 3): (0, 33)}
    assert d.balances == {A: (1_000, 990), C: (0, 10)}
    assert d.created == {C}
    assert d.touched() == {A, C}
    assert not d.is_empty()


def test_fork_is_independent():
    led = _ledger()
    child = led.fork()
    child.sstore(A, 1, 0)
    child.set_balance(B, 1)
    assert led.sload(A, 1) == 11
    assert led.balance(B) == 0
    assert child.journal.depth() == 0


def test_to_dict_round_trip_preserves_digest():
    led = _ledger()
    led.set_env("number", 77)
    again = LedgerState.from_dict(led.to_dict())
    assert again.digest() == led.digest()


# ===================================================
# Property: any write sequence is undone by revert
# ===================================================

_ops = st.one_of(
    st.tuples(st.just("sstore"), st.sampled_from(ADDRS), st.integers(0, 3), st.integers(0, 2**256 - 1)),
    st.tuples(st.just("balance"), st.sampled_from(ADDRS), st.integers(0, 2**128)),
    st.tuples(st.just("nonce"), st.sampled_from(ADDRS)),
    st.tuples(st.just("code"), st.sampled_from(ADDRS), st.binary(max_size=8)),
    st.tuples(st.just("clear"), st.sampled_from(ADDRS)),
    st.tuples(st.just("log"), st.sampled_from(ADDRS), st.binary(max_size=4)),
    st.tuples(st.just("snap")),
    st.tuples(st.just("commit")),
)


def _apply(led: LedgerState, ops: List[Tuple], inner: List[int]) -> None:
    for op in ops:
        kind = op[0]
        if kind == "sstore":
            led.sstore(op[1], op[2], op[3])
        elif kind == "balance":
            led.set_balance(op[1], op[2])
        elif kind == "nonce":
            led.increment_nonce(op[1])
        elif kind == "code":
            led.set_code(op[1], op[2])
        elif kind == "clear":
            led.clear_storage(op[1])
        elif kind == "log":
            led.append_log(LogEvent(op[1], [], op[2]))
        elif kind == "snap":
            inner.append(led.snapshot())
        elif kind == "commit" and inner:
            led.commit(inner.pop())


@settings(max_examples=150, deadline=None)
@given(st.lists(_ops, max_size=40))
def test_revert_restores_digest_for_any_write_sequence(ops):
    led = _ledger()
    before = led.digest()
    sid = led.snapshot()
    _apply(led, ops, [])
    led.revert(sid)
    assert led.digest() == before
    assert led.logs == []
    assert led.journal.depth() == 1
