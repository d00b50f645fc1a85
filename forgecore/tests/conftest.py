"""
Shared fixtures for the forgecore test-suite.

Contracts used across modules live here in both bundled backend formats
(Python source for `pyvm`, text assembly for `stackvm`) with the same ABI, so
tests parametrized over `backend_name` exercise identical behavior on both.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

import pytest

from forgecore.abi.codec import encode_call
from forgecore.config import FuzzConfig, Limits, RunConfig
from forgecore.runtime.orchestrator import Orchestrator
from forgecore.state.ledger import LedgerState
from forgecore.types.address import to_address
from forgecore.types.result import ExecutionResult

BACKENDS = ("pyvm", "stackvm")

ALICE = to_address("0x00000000000000000000000000000000000a11ce")
BOB = to_address("0x0000000000000000000000000000000000000b0b")
FORGED = to_address("0x000000000000000000000000000000000000f00d")

ALICE_FUNDS = 10**24


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

COUNTER = {
    "pyvm": '''
NAME = "Counter"
COUNT = 0


@external("set(uint256)")
def set_count(ctx, v):
    ctx.sstore(COUNT, v)
    ctx.emit("Set(uint256)", data=v)


@external("get()", returns=("uint256",))
def get(ctx):
    return ctx.sload(COUNT)


@external("setThenRevert(uint256)")
def set_then_revert(ctx, v):
    ctx.sstore(COUNT, v)
    ctx.emit("Set(uint256)", data=v)
    ctx.revert("nope")


@external("whoami()", returns=("address",))
def whoami(ctx):
    return ctx.caller


@external("deposit()", payable=True)
def deposit(ctx):
    pass
''',
    "stackvm": '''
.name Counter
.function set(uint256 v)
.function get() -> uint256
.function setThenRevert(uint256 v)
.function whoami() -> address
.function deposit()
.runtime
    SELECTOR
    DUP
    PUSH @set(uint256)
    EQ
    JUMPI set
    DUP
    PUSH @get()
    EQ
    JUMPI get
    DUP
    PUSH @setThenRevert(uint256)
    EQ
    JUMPI set_then_revert
    DUP
    PUSH @whoami()
    EQ
    JUMPI whoami
    DUP
    PUSH @deposit()
    EQ
    JUMPI deposit
    REVERT "unknown selector"
set:
    CALLDATALOAD 4
    DUP
    PUSH 0
    SSTORE              ; slot 0 = v
    PUSH #Set(uint256)
    SWAP
    LOG 1
    STOP
get:
    PUSH 0
    SLOAD
    RETURN 1
set_then_revert:
    CALLDATALOAD 4
    DUP
    PUSH 0
    SSTORE
    PUSH #Set(uint256)
    SWAP
    LOG 1
    REVERT "nope"
whoami:
    CALLER
    RETURN 1
deposit:
    STOP
''',
}

PROXY = {
    "pyvm": '''
NAME = "Proxy"


@external("forward(address,uint256)", returns=("bool",))
def forward(ctx, target, v):
    ctx.sstore(1, v)
    res = ctx.try_call(target, ctx.encode_call("setThenRevert(uint256)", v))
    return res.is_success
''',
    "stackvm": '''
.name Proxy
.function forward(address target, uint256 v) -> bool
.runtime
    SELECTOR
    PUSH @forward(address,uint256)
    EQ
    JUMPI forward
    REVERT "unknown selector"
forward:
    CALLDATALOAD 36
    DUP
    PUSH 1
    SSTORE              ; slot 1 = v
    PUSH 0              ; gas: all
    PUSH 0              ; value
    CALLDATALOAD 4      ; target
    CALL setThenRevert(uint256)
    RETURN 1
''',
}

RECURSOR = {
    "pyvm": '''
NAME = "Recursor"


@external("recurse(uint256)", returns=("uint256",))
def recurse(ctx, n):
    if n == 0:
        return 0
    res = ctx.try_call(ctx.address, ctx.encode_call("recurse(uint256)", n - 1))
    if not res.is_success:
        return n
    return int.from_bytes(res.output[:32], "big")
''',
    "stackvm": '''
.name Recursor
.function recurse(uint256 n) -> uint256
.runtime
    CALLDATALOAD 4      ; n
    DUP
    ISZERO
    JUMPI done
    DUP
    PUSH 1
    SUB                 ; n - 1
    PUSH 0
    PUSH 0
    ADDRESS
    CALL recurse(uint256)
    JUMPI inner_ok
    RETURN 1            ; the child failed: report n
inner_ok:
    RETURNWORD 0
    RETURN 1
done:
    RETURN 1
''',
}

GUARD = {
    "pyvm": '''
NAME = "Guard"


@external("spin()")
def spin(ctx):
    ctx.sstore(0, 1)
    while True:
        pass


@external("guarded(address)", returns=("bool",))
def guarded(ctx, target):
    ctx.sstore(1, 1)
    res = ctx.try_call(target, ctx.encode_call("spin()"), gas=50_000)
    ctx.sstore(2, 2)
    return res.is_success
''',
    "stackvm": '''
.name Guard
.function spin()
.function guarded(address target) -> bool
.runtime
    SELECTOR
    DUP
    PUSH @spin()
    EQ
    JUMPI spin
    PUSH @guarded(address)
    EQ
    JUMPI guarded
    REVERT "unknown selector"
spin:
    PUSH 1
    PUSH 0
    SSTORE              ; slot 0 = 1
loop:
    JUMP loop
guarded:
    PUSH 1
    PUSH 1
    SSTORE              ; slot 1 = 1
    PUSH 50000          ; gas
    PUSH 0              ; value
    CALLDATALOAD 4      ; target
    CALL spin()
    PUSH 2
    PUSH 2
    SSTORE              ; slot 2 = 2
    RETURN 1
''',
}

PRANKER = {
    "pyvm": '''
NAME = "Pranker"
FORGED = 0xF00D


@external("check(address)", returns=("address", "address"))
def check(ctx, target):
    ctx.vm.prank(FORGED)
    first = ctx.call_fn(target, "whoami()", returns=("address",))
    second = ctx.call_fn(target, "whoami()", returns=("address",))
    return first, second
''',
    "stackvm": '''
.name Pranker
.function check(address target) -> address,address
.runtime
    PUSH 0xf00d
    PUSH 0
    PUSH 0
    PUSH 0x7109709ECfa91a80626fF3989D68f67F5b1DD12D
    CALL prank(address)
    POP
    PUSH 0
    PUSH 0
    CALLDATALOAD 4
    CALL whoami()
    POP
    RETURNWORD 0
    PUSH 0
    PUSH 0
    CALLDATALOAD 4
    CALL whoami()
    POP
    RETURNWORD 0
    RETURN 2
''',
}

DESTRUCTIBLE = {
    "pyvm": '''
NAME = "Destructible"


def constructor(ctx):
    ctx.sstore(0, 7)


@external("deposit()", payable=True)
def deposit(ctx):
    pass


@external("destroy(address)")
def destroy(ctx, to):
    ctx.selfdestruct(to)
''',
    "stackvm": '''
.name Destructible
.function deposit()
.function destroy(address to)
    PUSH 7
    PUSH 0
    SSTORE
.runtime
    SELECTOR
    DUP
    PUSH @deposit()
    EQ
    JUMPI deposit
    PUSH @destroy(address)
    EQ
    JUMPI destroy
    REVERT "unknown selector"
deposit:
    STOP
destroy:
    CALLDATALOAD 4
    SELFDESTRUCT
''',
}


# ---------------------------------------------------------------------------
# Chain helper
# ---------------------------------------------------------------------------


class Chain:
    """One ledger plus an orchestrator, with the sender funded."""

    def __init__(self, backend: str, **config: Any) -> None:
        depth = config.pop("max_call_depth", 1024)
        gas = config.pop("gas_limit", 30_000_000)
        self.config = RunConfig(backend=backend, limits=Limits(gas_limit=gas, max_call_depth=depth),
                                **config)
        self.orch = Orchestrator(config=self.config)
        self.ledger = LedgerState(env=self.config.block_env())
        self.ledger.set_balance(ALICE, ALICE_FUNDS)

    @property
    def backend(self):
        return self.orch.backend

    def deploy(self, source: str, *, sender: bytes = ALICE, value: int = 0) -> bytes:
        art = self.backend.compile(source)
        res = self.orch.deploy(self.ledger, sender, art.bytecode, value=value)
        assert res.is_success, res.reason
        assert res.created is not None
        return res.created

    def call(self, to: bytes, signature: str, *args: Any, sender: bytes = ALICE,
             value: int = 0, gas_limit: Optional[int] = None) -> ExecutionResult:
        return self.orch.call(self.ledger, sender, to, encode_call(signature, args),
                              value=value, gas_limit=gas_limit)


@pytest.fixture(params=BACKENDS)
def backend_name(request) -> str:
    return request.param


@pytest.fixture
def make_chain() -> Callable[..., Chain]:
    return Chain


@pytest.fixture
def chain(backend_name) -> Chain:
    return Chain(backend_name)


@pytest.fixture
def contracts(backend_name) -> Dict[str, str]:
    return {
        "counter": COUNTER[backend_name],
        "proxy": PROXY[backend_name],
        "recursor": RECURSOR[backend_name],
        "pranker": PRANKER[backend_name],
        "destructible": DESTRUCTIBLE[backend_name],
        "guard": GUARD[backend_name],
    }


@pytest.fixture
def fuzz_config() -> FuzzConfig:
    return FuzzConfig(runs=64, seed=0x5EED, max_shrink_iters=256)
