from __future__ import annotations

import ast
import sys

import pytest
from eth_hash.auto import keccak

from forgecore.abi.codec import decode_args
from forgecore.abi.errors import encode_panic
from forgecore.abi.selectors import function_selector
from forgecore.runtime.executor import CompileError
from forgecore.runtime.pycontext import Context
from forgecore.runtime.pyvm import CALL_BASE_GAS, CALLDATA_BYTE_GAS, PyVM
from forgecore.runtime.validate import MAX_SOURCE_BYTES, validate_source
from forgecore.state.accounts import EMPTY_CODE_HASH
from forgecore.types.address import to_address
from forgecore.types.status import Status

from conftest import ALICE, BOB, COUNTER

EDGE = '''
NAME = "Edge"
hits = 0


def constructor(ctx):
    ctx.sstore(0, ctx.caller)


def receive(ctx):
    ctx.sstore(1, ctx.sload(1) + 1)


def fallback(ctx):
    ctx.sstore(2, ctx.sload(2) + 1)


@external("bareAssert()")
def bare_assert(ctx):
    assert False


@external("assertMsg()")
def assert_msg(ctx):
    assert 1 == 2, "math broke"


@external("divide(uint256,uint256)", returns=("uint256",))
def divide(ctx, a, b):
    return a // b


@external("boom()")
def boom(ctx):
    raise ValueError("bad")


@external("sneaky()")
def sneaky(ctx):
    open("/etc/passwd")


@external("rawRevert()")
def raw_revert(ctx):
    ctx.revert(data=b"raw")


@external("bumpGlobal()", returns=("uint256",))
def bump_global(ctx):
    global hits
    hits += 1
    return hits


@external("spin(uint256)", returns=("uint256",))
def spin(ctx, n):
    total = 0
    for i in range(n):
        total += i
    return total


@external("swallow()")
def swallow(ctx):
    try:
        while True:
            pass
    except Exception:
        pass


@external("pair()", returns=("uint256", "bool"))
def pair(ctx):
    return 5, True
'''


@pytest.fixture
def chain(make_chain):
    return make_chain("pyvm")


@pytest.fixture
def edge(chain):
    return chain.deploy(EDGE)


# ===================================================
# Build step
# ===================================================

def test_compile_reads_name_and_externals():
    art = PyVM().compile(EDGE)
    assert art.name == "Edge"
    assert art.backend == "pyvm"
    names = [e["name"] for e in art.abi]
    assert names == sorted(names)
    assert art.function("divide")["inputs"] == [{"name": "a", "type": "uint256"},
                                               {"name": "b", "type": "uint256"}]
    assert art.function("pair")["outputs"] == [{"name": "", "type": "uint256"},
                                              {"name": "", "type": "bool"}]
    assert art.function("spin")["selector"] == function_selector("spin(uint256)")


@pytest.mark.parametrize("src", [
    "def broken(:\n    pass\n",
    '@external("f(uint256)")\ndef f(ctx):\n    pass\n',
    '@external("f(uint7)")\ndef f(ctx, x):\n    pass\n',
    '@external("g()", returns=("uint9",))\ndef g(ctx):\n    pass\n',
    "import os\n",
    "undefined_name + 1\n",
])
def test_bad_source_is_a_compile_error(src):
    with pytest.raises(CompileError):
        PyVM().compile(src)


def test_constructor_runs_with_the_deployer_as_caller(chain, edge):
    assert chain.ledger.sload(edge, 0) == int.from_bytes(ALICE, "big")
    assert chain.ledger.code(edge) == EDGE.encode("utf-8")


# ===================================================
# Routing
# ===================================================

def test_return_values_are_abi_encoded(chain, edge):
    res = chain.call(edge, "divide(uint256,uint256)", 7, 2)
    assert decode_args(["uint256"], res.output) == (3,)
    res = chain.call(edge, "pair()")
    assert decode_args(["uint256", "bool"], res.output) == (5, True)


def test_short_calldata_goes_to_receive(chain, edge):
    res = chain.orch.call(chain.ledger, ALICE, edge, b"", value=3)
    assert res.is_success
    assert chain.ledger.sload(edge, 1) == 1
    assert chain.ledger.balance(edge) == 3


def test_unknown_selector_goes_to_fallback(chain, edge):
    res = chain.call(edge, "whatever(uint256)", 1)
    assert res.is_success
    assert chain.ledger.sload(edge, 2) == 1


def test_without_fallback_unknown_selector_reverts(chain):
    counter = chain.deploy(COUNTER["pyvm"])
    res = chain.call(counter, "whatever()")
    assert res.status is Status.REVERT
    assert res.reason == f"unknown selector 0x{function_selector('whatever()').hex()}"

    res = chain.orch.call(chain.ledger, ALICE, counter, b"\x01")
    assert res.reason == "no receive or fallback function"


def test_value_to_non_payable_function_reverts(chain, edge):
    res = chain.call(edge, "pair()", value=1)
    assert res.status is Status.REVERT
    assert res.reason == "pair() is not payable"
    assert chain.ledger.balance(edge) == 0


def test_malformed_calldata_reverts(chain, edge):
    data = function_selector("divide(uint256,uint256)") + b"\x00" * 3
    res = chain.orch.call(chain.ledger, ALICE, edge, data)
    assert res.status is Status.REVERT
    assert res.reason.startswith("invalid calldata for divide(uint256,uint256)")


# ===================================================
# Exception mapping
# ===================================================

@pytest.mark.parametrize("sig,args,reason,output", [
    ("bareAssert()", (), "panic: assertion failed (0x01)", encode_panic(0x01)),
    ("assertMsg()", (), "math broke", None),
    ("divide(uint256,uint256)", (1, 0), "panic: division or modulo by zero (0x12)",
     encode_panic(0x12)),
    ("boom()", (), "ValueError: bad", None),
    ("sneaky()", (), "NameError: name 'open' is not defined", None),
    ("rawRevert()", (), "raw", b"raw"),
])
def test_contract_exceptions_become_reverts(chain, edge, sig, args, reason, output):
    res = chain.call(edge, sig, *args)
    assert res.status is Status.REVERT
    assert res.reason == reason
    if output is not None:
        assert res.output == output


# ===================================================
# Determinism and gas
# ===================================================

def test_each_call_gets_a_fresh_namespace(chain, edge):
    for _ in range(3):
        res = chain.call(edge, "bumpGlobal()")
        assert decode_args(["uint256"], res.output) == (1,)


def test_gas_grows_with_executed_lines(chain, edge):
    small = chain.call(edge, "spin(uint256)", 1)
    large = chain.call(edge, "spin(uint256)", 50)
    assert small.is_success and large.is_success
    assert small.gas_used > CALL_BASE_GAS + 36 * CALLDATA_BYTE_GAS
    assert large.gas_used > small.gas_used
    assert chain.call(edge, "spin(uint256)", 50).gas_used == large.gas_used


@pytest.mark.parametrize("sig,args", [("spin(uint256)", (10**6,)), ("swallow()", ())])
def test_runaway_code_runs_out_of_gas(chain, edge, sig, args):
    before = sys.gettrace()
    res = chain.call(edge, sig, *args, gas_limit=50_000)
    assert res.status is Status.OOG
    assert res.gas_used == 50_000
    assert sys.gettrace() is before


def test_storage_slot_helper():
    a = Context.slot("balances", ALICE)
    assert a == Context.slot("balances", ALICE)
    assert a != Context.slot("balances", BOB)
    assert a != Context.slot("allowances", ALICE)
    assert Context.slot("x") != Context.slot("y")


HASHER = '''
NAME = "Hasher"


@external("codeHash(address)", returns=("bytes32",))
def code_hash(ctx, who):
    return ctx.code_hash(who)
'''


def test_code_hash(chain):
    counter = chain.deploy(COUNTER["pyvm"])
    hasher = chain.deploy(HASHER)
    res = chain.call(hasher, "codeHash(address)", counter)
    assert decode_args(["bytes32"], res.output) == (keccak(chain.ledger.code(counter)),)
    res = chain.call(hasher, "codeHash(address)", to_address("0x" + "ee" * 20))
    assert decode_args(["bytes32"], res.output) == (b"\x00" * 32,)
    res = chain.call(hasher, "codeHash(address)", ALICE)
    assert decode_args(["bytes32"], res.output) == (EMPTY_CODE_HASH,)


# ===================================================
# Source validation
# ===================================================

_FN = '@external("f()")\ndef f(ctx):\n    {}\n'


@pytest.mark.parametrize("src,needle", [
    ("X = ().__class__.__base__.__subclasses__()\n", "'__subclasses__'"),
    (_FN.format("return ctx._host"), "'_host'"),
    (_FN.format('return f"{ctx.__class__}"'), "'__class__'"),
    (_FN.format('return "{0.__class__}".format(ctx)'), "'format'"),
    ("def gen():\n    yield 1\n\n\n" + _FN.format("return gen().gi_frame.f_back"), "'f_back'"),
    ("B = __builtins__\n", "'__builtins__'"),
    ("from os import path\n", "imports are not allowed"),
    ("async def f(ctx):\n    pass\n", "AsyncFunctionDef"),
    ("def _helper(ctx):\n    pass\n", "'_helper'"),
])
def test_source_validation_rejects_sandbox_escapes(src, needle):
    with pytest.raises(CompileError) as ei:
        PyVM().compile(src)
    assert needle in str(ei.value)


def test_source_size_is_capped():
    with pytest.raises(CompileError, match="too large"):
        PyVM().compile("x = 1\n" * (MAX_SOURCE_BYTES // 6 + 1))


def test_validation_keeps_the_usual_constructs():
    tree = validate_source(EDGE)
    assert any(isinstance(n, ast.Global) for n in ast.walk(tree))
    assert any(isinstance(n, ast.Try) for n in ast.walk(tree))
    assert any(isinstance(n, ast.Raise) for n in ast.walk(tree))
