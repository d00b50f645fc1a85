from __future__ import annotations

import pytest

from forgecore.abi.codec import decode_args, decode_call, encode_args, encode_call
from forgecore.abi.errors import (ERROR_SELECTOR, decode_error_string, decode_revert_reason,
                                  encode_error_string, encode_panic)
from forgecore.abi.selectors import canonicalize, event_topic, function_selector
from forgecore.abi.types import ABITypeError, ValidationError, parse_signature, parse_type


# ===================================================
# Selectors
# ===================================================

def test_known_selectors():
    assert function_selector("transfer(address,uint256)").hex() == "a9059cbb"
    assert ERROR_SELECTOR.hex() == "08c379a0"
    assert function_selector("Error(string)") == ERROR_SELECTOR
    assert event_topic("Transfer(address,address,uint256)").hex() == (
        "ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")


def test_signatures_are_canonicalized():
    assert canonicalize("f( uint , int[] )") == "f(uint256,int256[])"
    assert function_selector("f(uint)") == function_selector("f(uint256)")
    name, types = parse_signature("g(bytes32,address[2])")
    assert name == "g"
    assert [t.name for t in types] == ["bytes32", "address[2]"]


# ===================================================
# Codec
# ===================================================

def test_static_head_layout():
    data = encode_args(["uint256", "bool", "address"], [5, True, b"\x11" * 20])
    assert len(data) == 96
    assert data[31] == 5
    assert data[63] == 1
    assert data[76:96] == b"\x11" * 20


def test_dynamic_values_go_to_the_tail():
    data = encode_args(["uint8", "string"], [1, "hi"])
    assert int.from_bytes(data[32:64], "big") == 64       # offset of the string body
    assert int.from_bytes(data[64:96], "big") == 2        # its length
    assert data[96:98] == b"hi"
    assert decode_args(["uint8", "string"], data) == (1, "hi")


def test_nested_arrays_and_signed_ints():
    types = ["int16[]", "bytes", "uint8[2][]"]
    values = ((-1, 300, -32768), b"\x01\x02", ((1, 2), (3, 4)))
    assert decode_args(types, encode_args(types, values)) == values


def test_call_round_trip_checks_selector():
    data = encode_call("set(uint256)", [7])
    assert data[:4] == function_selector("set(uint256)")
    assert decode_call("set(uint256)", data) == (7,)
    with pytest.raises(ValidationError):
        decode_call("get()", data)


@pytest.mark.parametrize("types,values", [
    (["uint8"], [256]),
    (["int8"], [-129]),
    (["bool"], [2]),
    (["bytes4"], [b"\x00" * 3]),
    (["string"], [b"raw"]),
    (["uint256[2]"], [(1,)]),
])
def test_encode_rejects_out_of_range(types, values):
    with pytest.raises(ValidationError):
        encode_args(types, values)


def test_decode_is_strict_about_bounds():
    with pytest.raises(ValidationError):
        decode_args(["uint256"], b"\x00" * 31)
    with pytest.raises(ValidationError):
        decode_args(["bool"], (2).to_bytes(32, "big"))
    with pytest.raises(ValidationError):
        decode_args(["address"], b"\xff" * 32)
    bad_offset = (1 << 20).to_bytes(32, "big")
    with pytest.raises(ValidationError):
        decode_args(["bytes"], bad_offset)


def test_parse_type_rejects_garbage():
    with pytest.raises(ABITypeError):
        parse_type("uint7")
    with pytest.raises(ABITypeError):
        parse_type("")


# ===================================================
# Revert data
# ===================================================

def test_error_string_round_trip():
    data = encode_error_string("nope")
    assert data[:4] == ERROR_SELECTOR
    assert decode_error_string(data) == "nope"
    assert decode_revert_reason(data) == "nope"


def test_revert_reason_shapes():
    assert decode_revert_reason(b"") == ""
    assert decode_revert_reason(encode_panic(0x12)) == "panic: division or modulo by zero (0x12)"
    assert decode_revert_reason(encode_panic(0x99)) == "panic: unknown (0x99)"
    assert decode_revert_reason(b"plain text") == "plain text"
    assert decode_revert_reason(b"\x00\xff") == "0x00ff"
    assert decode_error_string(b"\x00\x01") is None
