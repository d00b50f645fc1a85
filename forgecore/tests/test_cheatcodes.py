from __future__ import annotations

import pytest

from forgecore.abi.codec import decode_args, encode_call
from forgecore.abi.errors import encode_error_string
from forgecore.host.cheatcodes import (ASSUME_MAGIC, CHEATCODE_ADDRESS, CheatState,
                                       ExpectedRevert, MockedRevert, Prank)
from forgecore.types.address import to_address
from forgecore.types.status import Status

from conftest import ALICE, BOB, COUNTER, FORGED, PRANKER

CHEATS = '''
NAME = "Cheats"
FORGED = 0xF00D


@external("envAfterWarp(uint256,uint256)", returns=("uint256", "uint256"))
def env_after_warp(ctx, ts, number):
    ctx.vm.warp(ts)
    ctx.vm.roll(number)
    return ctx.timestamp, ctx.number


@external("warpThenRevert(uint256)")
def warp_then_revert(ctx, ts):
    ctx.vm.warp(ts)
    ctx.revert("undo")


@external("badChainId()")
def bad_chain_id(ctx):
    ctx.vm.chain_id(0)


@external("storeLoad(address,uint256,uint256)", returns=("uint256",))
def store_load(ctx, who, slot, value):
    ctx.vm.store(who, slot, value)
    return ctx.vm.load(who, slot)


@external("dealAndNonce(address)", returns=("uint256", "uint64"))
def deal_and_nonce(ctx, who):
    ctx.vm.deal(who, 1234)
    ctx.vm.set_nonce(who, 9)
    return ctx.balance(who), ctx.vm.get_nonce(who)


@external("snapshotRoundTrip()", returns=("uint256", "bool", "bool"))
def snapshot_round_trip(ctx):
    ctx.sstore(0, 1)
    sid = ctx.vm.snapshot()
    ctx.sstore(0, 2)
    ok = ctx.vm.revert_to(sid)
    bogus = ctx.vm.revert_to(sid + 1000)
    return ctx.sload(0), ok, bogus


@external("mockedCall(address)", returns=("bool", "string", "bool"))
def mocked_call(ctx, target):
    data = ctx.encode_call("get()")
    ctx.vm.mock_call_revert(target, data, b"mocked")
    first = ctx.try_call(target, data)
    ctx.vm.clear_mocked_calls()
    second = ctx.try_call(target, data)
    return first.is_success, first.reason, second.is_success


@external("mockedDelegatecall(address)")
def mocked_delegatecall(ctx, target):
    data = ctx.encode_call("get()")
    ctx.vm.mock_call_revert(target, data, b"mocked")
    ctx.delegatecall(target, data)


@external("expectRevert(address,string)", returns=("bool", "string"))
def expect_revert(ctx, target, reason):
    if reason:
        ctx.vm.expect_revert(reason)
    else:
        ctx.vm.expect_revert()
    res = ctx.try_call(target, ctx.encode_call("setThenRevert(uint256)", 1))
    return res.is_success, res.reason


@external("expectRevertButSucceeds(address)", returns=("bool", "string"))
def expect_revert_but_succeeds(ctx, target):
    ctx.vm.expect_revert()
    res = ctx.try_call(target, ctx.encode_call("set(uint256)", 4))
    return res.is_success, res.reason


@external("startStop(address)", returns=("address", "address", "address"))
def start_stop(ctx, target):
    ctx.vm.start_prank(FORGED)
    a = ctx.call_fn(target, "whoami()", returns=("address",))
    b = ctx.call_fn(target, "whoami()", returns=("address",))
    ctx.vm.stop_prank()
    c = ctx.call_fn(target, "whoami()", returns=("address",))
    return a, b, c
'''


@pytest.fixture
def env(make_chain):
    chain = make_chain("pyvm")
    cheats = chain.deploy(CHEATS)
    counter = chain.deploy(COUNTER["pyvm"])
    return chain, cheats, counter


def _returns(res, *types):
    assert res.is_success, res.reason
    return decode_args(types, res.output)


# ===================================================
# Environment
# ===================================================

def test_warp_and_roll_are_visible_and_persist(env):
    chain, cheats, _ = env
    res = chain.call(cheats, "envAfterWarp(uint256,uint256)", 1_700_000_000, 42)
    assert _returns(res, "uint256", "uint256") == (1_700_000_000, 42)
    assert chain.ledger.env.timestamp == 1_700_000_000
    assert chain.ledger.env.number == 42


def test_cheat_writes_are_undone_with_the_caller(env):
    chain, cheats, _ = env
    ts = chain.ledger.env.timestamp
    res = chain.call(cheats, "warpThenRevert(uint256)", 99)
    assert res.status is Status.REVERT
    assert res.reason == "undo"
    assert chain.ledger.env.timestamp == ts


def test_failing_cheat_reverts_the_caller(env):
    chain, cheats, _ = env
    res = chain.call(cheats, "badChainId()")
    assert res.status is Status.REVERT
    assert res.reason == "chain id must be non-zero"


# ===================================================
# Accounts
# ===================================================

def test_store_and_load_other_accounts(env):
    chain, cheats, counter = env
    res = chain.call(cheats, "storeLoad(address,uint256,uint256)", counter, 0, 77)
    assert _returns(res, "uint256") == (77,)
    assert chain.call(counter, "get()").output == (77).to_bytes(32, "big")


def test_deal_and_nonce(env):
    chain, cheats, _ = env
    res = chain.call(cheats, "dealAndNonce(address)", BOB)
    assert _returns(res, "uint256", "uint64") == (1234, 9)
    assert chain.ledger.balance(BOB) == 1234
    assert chain.ledger.nonce(BOB) == 9


# ===================================================
# Snapshots
# ===================================================

def test_snapshot_and_revert_to_inside_a_frame(env):
    chain, cheats, _ = env
    res = chain.call(cheats, "snapshotRoundTrip()")
    assert _returns(res, "uint256", "bool", "bool") == (1, True, False)
    assert chain.ledger.sload(cheats, 0) == 1
    assert chain.ledger.journal.depth() == 0


# ===================================================
# Mocks and expectations
# ===================================================

def test_mocked_revert_and_clear(env):
    chain, cheats, counter = env
    res = chain.call(cheats, "mockedCall(address)", counter)
    assert _returns(res, "bool", "string", "bool") == (False, "mocked", True)


def test_mocked_revert_intercepts_delegatecall_into_the_mocked_code(env):
    chain, cheats, counter = env
    res = chain.call(cheats, "mockedDelegatecall(address)", counter)
    assert res.status is Status.REVERT
    assert res.reason == "mocked"


@pytest.mark.parametrize("reason,expected", [
    ("", (True, "")),
    ("nope", (True, "")),
    ("other", (False, "reverted with unexpected data: nope")),
])
def test_expect_revert(env, reason, expected):
    chain, cheats, counter = env
    res = chain.call(cheats, "expectRevert(address,string)", counter, reason)
    assert _returns(res, "bool", "string") == expected
    assert chain.ledger.sload(counter, 0) == 0
    assert res.logs == ()


def test_expect_revert_on_a_successful_call(env):
    chain, cheats, counter = env
    res = chain.call(cheats, "expectRevertButSucceeds(address)", counter)
    assert _returns(res, "bool", "string") == (False, "call did not revert as expected")
    assert chain.ledger.sload(counter, 0) == 0


# ===================================================
# Pranks
# ===================================================

def test_prank_applies_to_the_next_call_only(make_chain, backend_name):
    chain = make_chain(backend_name)
    counter = chain.deploy(COUNTER[backend_name])
    pranker = chain.deploy(PRANKER[backend_name])
    res = chain.call(pranker, "check(address)", counter)
    assert _returns(res, "address", "address") == (FORGED, pranker)


def test_start_prank_persists_until_stopped(env):
    chain, cheats, counter = env
    res = chain.call(cheats, "startStop(address)", counter)
    assert _returns(res, "address", "address", "address") == (FORGED, FORGED, cheats)


def test_cheat_state_does_not_leak_between_invocations(env):
    chain, cheats, counter = env
    cheat_state = CheatState(prank=Prank(sender=FORGED, depth=-1))
    res = chain.orch.call(chain.ledger, ALICE, counter, encode_call("whoami()", []),
                          cheats=cheat_state)
    assert _returns(res, "address") == (ALICE,)
    assert cheat_state.prank is None


# ===================================================
# Cheat state unit behavior
# ===================================================

def test_take_prank_matches_the_setting_depth():
    st = CheatState(prank=Prank(sender=FORGED, depth=2))
    assert st.take_prank(1) is None
    assert st.take_prank(2) == FORGED
    assert st.take_prank(2) is None

    st.prank = Prank(sender=FORGED, depth=0, persistent=True)
    assert st.take_prank(0) == FORGED
    assert st.take_prank(0) == FORGED


def test_expected_revert_matching():
    exp = ExpectedRevert(data=b"nope", depth=0)
    assert exp.matches(b"nope")
    assert exp.matches(encode_error_string("nope"))
    assert not exp.matches(encode_error_string("nah"))
    assert ExpectedRevert(data=None, depth=0).matches(b"")


def test_mock_prefix_matching():
    target = to_address("0x" + "12" * 20)
    st = CheatState(mocked_reverts=[MockedRevert(target, b"\x01\x02", b"bad")])
    assert st.mocked_revert(target, b"\x01\x02\x03") == b"bad"
    assert st.mocked_revert(target, b"\x01") is None
    assert st.mocked_revert(BOB, b"\x01\x02") is None


def test_assume_marks_rejection_at_top_level(env):
    chain, _, _ = env
    st = CheatState()
    res = chain.orch.call(chain.ledger, ALICE, CHEATCODE_ADDRESS,
                          encode_call("assume(bool)", [False]), cheats=st)
    assert res.status is Status.REVERT
    assert res.output == ASSUME_MAGIC
    assert st.rejected
