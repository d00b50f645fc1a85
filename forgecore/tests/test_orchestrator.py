from __future__ import annotations

import pytest

from forgecore.abi.codec import encode_call
from forgecore.abi.selectors import event_topic
from forgecore.config import RunConfig
from forgecore.errors import BackendError, IntegrityError
from forgecore.host.cheatcodes import CHEATCODE_ADDRESS
from forgecore.runtime.executor import Artifact, available_backends, get_backend, register_backend
from forgecore.runtime.orchestrator import Orchestrator
from forgecore.state.ledger import LedgerState
from forgecore.types.address import to_address
from forgecore.types.events import LogEvent
from forgecore.types.frame import CallFrame, CallKind
from forgecore.types.result import ExecutionResult
from forgecore.types.status import Status

from conftest import ALICE, ALICE_FUNDS, BOB, COUNTER, RECURSOR

WORD = lambda n: n.to_bytes(32, "big")  # noqa: E731


# ===================================================
# Success and revert at the top level
# ===================================================

def test_successful_call_persists_and_reports_logs_and_diff(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    res = chain.call(counter, "set(uint256)", 5)

    assert res.status is Status.SUCCESS
    assert res.logs == (LogEvent(counter, [event_topic("Set(uint256)")], WORD(5)),)
    assert res.diff.storage == {(counter, 0): (0, 5)}
    assert 0 < res.gas_used <= chain.config.gas_limit
    assert chain.ledger.sload(counter, 0) == 5

    out = chain.call(counter, "get()")
    assert out.output == WORD(5)
    assert out.logs == ()


def test_reverted_call_leaves_no_trace(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    chain.call(counter, "set(uint256)", 3)
    before = chain.ledger.digest()

    res = chain.call(counter, "setThenRevert(uint256)", 9)

    assert res.status is Status.REVERT
    assert res.reason == "nope"
    assert res.logs == ()
    assert res.diff is None
    assert chain.ledger.digest() == before
    assert chain.ledger.journal.depth() == 0
    assert chain.ledger.logs == []


def test_nested_failure_is_isolated_from_the_caller(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    proxy = chain.deploy(contracts["proxy"])

    res = chain.call(proxy, "forward(address,uint256)", counter, 9)

    assert res.is_success
    assert res.output == WORD(0)                   # the child failed
    assert chain.ledger.sload(proxy, 1) == 9       # the caller's own write survived
    assert chain.ledger.sload(counter, 0) == 0     # the child's write did not
    assert res.logs == ()                          # nor did its log


def test_value_transfer(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    res = chain.call(counter, "deposit()", value=100)
    assert res.is_success
    assert chain.ledger.balance(counter) == 100
    assert chain.ledger.balance(ALICE) == ALICE_FUNDS - 100
    assert res.diff.balances[counter] == (0, 100)


def test_insufficient_balance_halts_without_mutation(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    before = chain.ledger.digest()
    res = chain.call(counter, "deposit()", sender=BOB, value=1)
    assert res.status is Status.HALT
    assert res.reason == "insufficient-balance"
    assert chain.ledger.digest() == before


def test_out_of_gas_burns_the_limit(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    before = chain.ledger.digest()
    res = chain.call(counter, "set(uint256)", 1, gas_limit=5_000)
    assert res.status is Status.OOG
    assert res.reason == "out-of-gas"
    assert res.gas_used == 5_000
    assert chain.ledger.digest() == before


def test_static_frame_rejects_writes(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    frame = CallFrame(caller=ALICE, callee=counter, input=encode_call("set(uint256)", [1]),
                      gas_limit=1_000_000, kind=CallKind.STATICCALL)
    res = chain.orch.invoke(chain.ledger, frame)
    assert res.status is Status.HALT
    assert res.reason == "static-violation"
    assert chain.ledger.sload(counter, 0) == 0

    frame = CallFrame(caller=ALICE, callee=counter, input=encode_call("get()", []),
                      gas_limit=1_000_000, kind=CallKind.STATICCALL)
    assert chain.orch.invoke(chain.ledger, frame).is_success


def test_call_to_account_without_code_succeeds(chain):
    res = chain.call(BOB, "anything()", value=7)
    assert res.is_success
    assert res.output == b""
    assert chain.ledger.balance(BOB) == 7


def test_origin_is_the_top_level_caller(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    chain.call(counter, "get()")
    assert chain.ledger.env.origin == ALICE


def test_nested_out_of_gas_is_recoverable(chain, contracts):
    guard = chain.deploy(contracts["guard"])
    res = chain.call(guard, "guarded(address)", guard)

    assert res.is_success
    assert res.output == WORD(0)                   # the child ran out of gas
    assert chain.ledger.sload(guard, 0) == 0       # its write was undone
    assert chain.ledger.sload(guard, 1) == 1       # the caller's writes before
    assert chain.ledger.sload(guard, 2) == 2       # and after the call survived
    assert 50_000 < res.gas_used < 1_000_000       # only the capped forward was burnt


# ===================================================
# Depth
# ===================================================

@pytest.mark.parametrize("depth,n,expected", [(8, 20, 13), (1, 3, 3), (64, 10, 0)])
def test_depth_limit_is_reported_to_the_caller(make_chain, backend_name, depth, n, expected):
    chain = make_chain(backend_name, max_call_depth=depth)
    rec = chain.deploy(RECURSOR[backend_name])
    res = chain.call(rec, "recurse(uint256)", n)
    assert res.is_success
    assert res.output == WORD(expected)


def test_default_depth_limit_stops_recursion_cleanly(make_chain, backend_name):
    chain = make_chain(backend_name)
    n = 1100
    assert chain.config.max_call_depth == 1024
    rec = chain.deploy(RECURSOR[backend_name])
    res = chain.call(rec, "recurse(uint256)", n)

    assert res.is_success, res.reason
    # the frame that saw its child fail returns its own n
    stopped_at = int.from_bytes(res.output, "big")
    assert n - chain.config.max_call_depth < stopped_at < n
    assert chain.ledger.journal.depth() == 0


def test_top_level_call_beyond_depth_is_a_halt(chain, contracts):
    counter = chain.deploy(contracts["counter"])
    frame = CallFrame(caller=ALICE, callee=counter, input=encode_call("get()", []),
                      gas_limit=100_000, depth=chain.config.max_call_depth)
    res = chain.orch.invoke(chain.ledger, frame)
    assert res.status is Status.HALT
    assert res.reason == "depth-exceeded"


# ===================================================
# Deployment
# ===================================================

def test_deploy_runs_constructor_and_installs_code(chain, contracts):
    art = chain.backend.compile(contracts["destructible"])
    res = chain.orch.deploy(chain.ledger, ALICE, art.bytecode)
    assert res.is_success
    addr = res.created
    assert chain.ledger.sload(addr, 0) == 7
    assert chain.ledger.code(addr)
    assert chain.ledger.nonce(addr) == 1
    assert chain.ledger.nonce(ALICE) == 1
    assert addr in res.diff.created


def test_failed_deploy_still_consumes_the_nonce(chain):
    res = chain.orch.deploy(chain.ledger, BOB, b"irrelevant", value=1)
    assert res.status is Status.HALT
    assert res.created is None
    assert chain.ledger.nonce(BOB) == 1


# ===================================================
# Determinism
# ===================================================

def test_identical_sequences_give_identical_results(make_chain, backend_name):
    def run():
        c = make_chain(backend_name)
        counter = c.deploy(COUNTER[backend_name])
        results = [
            c.call(counter, "set(uint256)", 11),
            c.call(counter, "setThenRevert(uint256)", 12),
            c.call(counter, "get()"),
            c.call(counter, "set(uint256)", 1, gas_limit=3_000),
        ]
        return [r.fingerprint() for r in results], c.ledger.digest()

    assert run() == run()


# ===================================================
# Cheat codes at the top level
# ===================================================

def test_top_level_cheat_call(chain):
    res = chain.orch.call(chain.ledger, ALICE, CHEATCODE_ADDRESS,
                          encode_call("warp(uint256)", [12345]))
    assert res.is_success
    assert res.gas_used == 0
    assert chain.ledger.env.timestamp == 12345

    res = chain.orch.call(chain.ledger, ALICE, CHEATCODE_ADDRESS, b"\xde\xad\xbe\xef")
    assert res.status is Status.REVERT
    assert res.reason == "unknown cheat code"


# ===================================================
# Backend contract violations
# ===================================================

class _Crashing:
    name = "crashing"

    def compile(self, source, name=None):
        return Artifact(name=name or "X", bytecode=source.encode(), backend=self.name)

    def execute(self, host, frame, gas_limit):
        host.sstore(1, 1)
        raise RuntimeError("boom")


class _SnapshotThief(_Crashing):
    name = "thief"

    def execute(self, host, frame, gas_limit):
        host.sstore(1, 1)
        host.revert(host.active.sid)
        return ExecutionResult.success()


class _PhantomLogs(_Crashing):
    name = "phantom"

    def execute(self, host, frame, gas_limit):
        return ExecutionResult.success(logs=[LogEvent(frame.callee, [], b"never recorded")])


TARGET = to_address("0x" + "77" * 20)


def _ledger_with_code() -> LedgerState:
    led = LedgerState()
    led.set_code(TARGET, b"\x01")
    return led


@pytest.mark.parametrize("backend,exc", [
    (_Crashing(), BackendError),
    (_SnapshotThief(), IntegrityError),
    (_PhantomLogs(), IntegrityError),
])
def test_backend_violations_abort_the_invocation(backend, exc):
    led = _ledger_with_code()
    before = led.digest()
    orch = Orchestrator(backend, RunConfig())
    with pytest.raises(exc):
        orch.call(led, ALICE, TARGET, b"")
    assert led.digest() == before
    assert led.journal.depth() == 0


def test_backend_registry():
    register_backend("crashing", _Crashing, replace=True)
    assert "crashing" in available_backends()
    assert {"pyvm", "stackvm"} <= set(available_backends())
    assert get_backend("crashing").name == "crashing"
    with pytest.raises(ValueError):
        register_backend("crashing", _Crashing)
