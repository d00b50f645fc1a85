"""
Head/tail ABI encoding (Ethereum contract ABI) for call arguments.

Layout
------
Every value occupies one 32-byte head slot. Static values live in the head;
dynamic ones (bytes, string, T[], and T[k] of dynamic T) put an offset in the
head and their body in the tail:

- uintN / address / bool : left-padded big-endian word
- intN                   : two's-complement word
- bytesN                 : right-padded word
- bytes / string         : word(len) || data right-padded to 32
- T[]                    : word(count) || encode_tuple(T * count)
- T[k]                   : encode_tuple(T * k)   (inline when T is static)

Top-level:
- encode_args(types, values)              -> bytes
- decode_args(types, data)                -> tuple
- encode_call(signature, values)          -> selector || args
- decode_call(signature, calldata)        -> tuple (selector checked)

Decoding is strict about bounds: offsets or lengths pointing outside the
buffer raise `ValidationError`.
"""

from __future__ import annotations

from typing import Any, List, Sequence, Tuple, Union

from forgecore.types.u256 import WORD_BYTES

from .selectors import function_selector
from .types import (ABIType, AddressType, ArrayType, BoolType, BytesType,
                    FixedBytesType, IntType, StringType, UIntType,
                    ValidationError, parse_signature, parse_type)

__all__ = [
    "encode_value",
    "encode_args",
    "decode_args",
    "encode_call",
    "decode_call",
]

TypeLike = Union[str, ABIType]


def _as_type(t: TypeLike) -> ABIType:
    return parse_type(t) if isinstance(t, str) else t


def _word(n: int) -> bytes:
    return n.to_bytes(WORD_BYTES, "big")


def _pad_right(b: bytes) -> bytes:
    rem = len(b) % WORD_BYTES
    return b + b"\x00" * ((WORD_BYTES - rem) % WORD_BYTES)


def _head_size(t: ABIType) -> int:
    if isinstance(t, ArrayType) and t.length is not None and not t.dynamic:
        return t.length * _head_size(t.elem)
    return WORD_BYTES


# ──────────────────────────────────────────────────────────────────────────────
# Encoding
# ──────────────────────────────────────────────────────────────────────────────


def encode_value(t: TypeLike, value: Any) -> bytes:
    """Encode one value in its standalone form (static word(s) or dynamic body)."""
    typ = _as_type(t)
    v = typ.validate(value)
    if isinstance(typ, UIntType):
        return _word(v)
    if isinstance(typ, IntType):
        return _word(v & ((1 << 256) - 1))
    if isinstance(typ, AddressType):
        return v.rjust(WORD_BYTES, b"\x00")
    if isinstance(typ, BoolType):
        return _word(1 if v else 0)
    if isinstance(typ, FixedBytesType):
        return v.ljust(WORD_BYTES, b"\x00")
    if isinstance(typ, BytesType):
        return _word(len(v)) + _pad_right(v)
    if isinstance(typ, StringType):
        raw = v.encode("utf-8")
        return _word(len(raw)) + _pad_right(raw)
    if isinstance(typ, ArrayType):
        body = _encode_tuple([typ.elem] * len(v), v)
        if typ.length is None:
            return _word(len(v)) + body
        return body
    raise ValidationError(f"cannot encode type {typ!r}")


def _encode_tuple(types: Sequence[ABIType], values: Sequence[Any]) -> bytes:
    head_len = sum(_head_size(t) for t in types)
    heads: List[bytes] = []
    tails: List[bytes] = []
    tail_len = 0
    for t, v in zip(types, values):
        if t.dynamic:
            heads.append(_word(head_len + tail_len))
            enc = encode_value(t, v)
            tails.append(enc)
            tail_len += len(enc)
        else:
            heads.append(encode_value(t, v))
    return b"".join(heads) + b"".join(tails)


def encode_args(types: Sequence[TypeLike], values: Sequence[Any]) -> bytes:
    tys = [_as_type(t) for t in types]
    if len(tys) != len(values):
        raise ValidationError(f"expected {len(tys)} values, got {len(values)}")
    return _encode_tuple(tys, list(values))


def encode_call(signature: str, values: Sequence[Any] = ()) -> bytes:
    _, types = parse_signature(signature)
    return function_selector(signature) + encode_args(types, values)


# ──────────────────────────────────────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────────────────────────────────────


def _read_word(data: bytes, offset: int) -> int:
    end = offset + WORD_BYTES
    if offset < 0 or end > len(data):
        raise ValidationError("truncated payload")
    return int.from_bytes(data[offset:end], "big")


def _read_bytes(data: bytes, offset: int) -> bytes:
    n = _read_word(data, offset)
    start = offset + WORD_BYTES
    if start + n > len(data):
        raise ValidationError("dynamic length out of bounds")
    return bytes(data[start:start + n])


def _decode_at(typ: ABIType, data: bytes, offset: int) -> Any:
    """Decode the body of `typ` starting at `offset` (already resolved)."""
    if isinstance(typ, UIntType):
        v = _read_word(data, offset)
        if v > typ.max_value:
            raise ValidationError(f"{typ.name} value out of range")
        return v
    if isinstance(typ, IntType):
        raw = _read_word(data, offset)
        v = raw - (1 << 256) if raw >> 255 else raw
        if not typ.min_value <= v <= typ.max_value:
            raise ValidationError(f"{typ.name} value out of range")
        return v
    if isinstance(typ, AddressType):
        v = _read_word(data, offset)
        if v >> 160:
            raise ValidationError("address has dirty high bits")
        return v.to_bytes(20, "big")
    if isinstance(typ, BoolType):
        v = _read_word(data, offset)
        if v > 1:
            raise ValidationError("bool must be 0 or 1")
        return bool(v)
    if isinstance(typ, FixedBytesType):
        _read_word(data, offset)
        return bytes(data[offset:offset + typ.size])
    if isinstance(typ, BytesType):
        return _read_bytes(data, offset)
    if isinstance(typ, StringType):
        try:
            return _read_bytes(data, offset).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"invalid utf-8 string: {e}") from e
    if isinstance(typ, ArrayType):
        if typ.length is None:
            count = _read_word(data, offset)
            if count > len(data):
                raise ValidationError("array length out of bounds")
            return _decode_tuple([typ.elem] * count, data, offset + WORD_BYTES)
        return _decode_tuple([typ.elem] * typ.length, data, offset)
    raise ValidationError(f"cannot decode type {typ!r}")


def _decode_tuple(types: Sequence[ABIType], data: bytes, base: int) -> Tuple[Any, ...]:
    out: List[Any] = []
    pos = base
    for t in types:
        if t.dynamic:
            rel = _read_word(data, pos)
            if base + rel > len(data):
                raise ValidationError("offset out of bounds")
            out.append(_decode_at(t, data, base + rel))
        else:
            out.append(_decode_at(t, data, pos))
        pos += _head_size(t)
    return tuple(out)


def decode_args(types: Sequence[TypeLike], data: bytes) -> Tuple[Any, ...]:
    return _decode_tuple([_as_type(t) for t in types], bytes(data), 0)


def decode_call(signature: str, calldata: bytes) -> Tuple[Any, ...]:
    sel = function_selector(signature)
    if bytes(calldata[:4]) != sel:
        raise ValidationError(f"selector mismatch for {signature}")
    _, types = parse_signature(signature)
    return decode_args(types, bytes(calldata[4:]))
