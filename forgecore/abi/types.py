"""
ABI type definitions and validation for forgecore.

Supported textual types (the subset test functions take as parameters):
  - uintN / intN  (N in 8..256, multiple of 8; bare "uint"/"int" = 256)
  - address       (20 raw bytes; hex strings and ints accepted on input)
  - bool
  - bytesN        (1 <= N <= 32, fixed)
  - bytes, string (dynamic)
  - T[] and T[k]  (arrays of any of the above, nestable)

Utilities here *only* coerce/validate Python values; the on-wire head/tail
encoding lives in forgecore.abi.codec.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from forgecore.types.address import to_address

__all__ = [
    "ABITypeError",
    "ValidationError",
    "UIntType",
    "IntType",
    "AddressType",
    "BoolType",
    "FixedBytesType",
    "BytesType",
    "StringType",
    "ArrayType",
    "ABIType",
    "parse_type",
    "parse_signature",
    "canonical_signature",
]

# ──────────────────────────────────────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────────────────────────────────────


class ABITypeError(TypeError):
    """Raised when an ABI type spec is malformed or unsupported."""


class ValidationError(ValueError):
    """Raised when a Python value does not conform to an ABI type."""


# ──────────────────────────────────────────────────────────────────────────────
# Type specs
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class UIntType:
    bits: int = 256
    dynamic = False

    @property
    def name(self) -> str:
        return f"uint{self.bits}"

    @property
    def min_value(self) -> int:
        return 0

    @property
    def max_value(self) -> int:
        return (1 << self.bits) - 1

    def validate(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{self.name} must be a Python int")
        if not 0 <= value <= self.max_value:
            raise ValidationError(f"{self.name} out of range [0, {self.max_value}]")
        return int(value)


@dataclass(frozen=True)
class IntType:
    bits: int = 256
    dynamic = False

    @property
    def name(self) -> str:
        return f"int{self.bits}"

    @property
    def min_value(self) -> int:
        return -(1 << (self.bits - 1))

    @property
    def max_value(self) -> int:
        return (1 << (self.bits - 1)) - 1

    def validate(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{self.name} must be a Python int")
        if not self.min_value <= value <= self.max_value:
            raise ValidationError(
                f"{self.name} out of range [{self.min_value}, {self.max_value}]")
        return int(value)


@dataclass(frozen=True)
class AddressType:
    dynamic = False

    @property
    def name(self) -> str:
        return "address"

    def validate(self, value: Any) -> bytes:
        try:
            return to_address(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"invalid address: {e}") from e


@dataclass(frozen=True)
class BoolType:
    dynamic = False

    @property
    def name(self) -> str:
        return "bool"

    def validate(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if value in (0, 1):
            return bool(value)
        raise ValidationError("bool must be True/False")


@dataclass(frozen=True)
class FixedBytesType:
    size: int
    dynamic = False

    def __post_init__(self) -> None:
        if not 1 <= self.size <= 32:
            raise ABITypeError("bytesN length must be in 1..32")

    @property
    def name(self) -> str:
        return f"bytes{self.size}"

    def validate(self, value: Any) -> bytes:
        b = _coerce_bytes(value)
        if len(b) != self.size:
            raise ValidationError(f"{self.name} needs exactly {self.size} bytes, got {len(b)}")
        return b


@dataclass(frozen=True)
class BytesType:
    dynamic = True

    @property
    def name(self) -> str:
        return "bytes"

    def validate(self, value: Any) -> bytes:
        return _coerce_bytes(value)


@dataclass(frozen=True)
class StringType:
    dynamic = True

    @property
    def name(self) -> str:
        return "string"

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError("string must be a Python str")
        return value


@dataclass(frozen=True)
class ArrayType:
    elem: "ABIType"
    length: Optional[int] = None  # None = dynamic T[]

    def __post_init__(self) -> None:
        if self.length is not None and self.length < 0:
            raise ABITypeError("array length must be >= 0")

    @property
    def name(self) -> str:
        return f"{self.elem.name}[{'' if self.length is None else self.length}]"

    @property
    def dynamic(self) -> bool:
        return self.length is None or self.elem.dynamic

    def validate(self, value: Any) -> Tuple[Any, ...]:
        if isinstance(value, (str, bytes, bytearray)) or not hasattr(value, "__iter__"):
            raise ValidationError(f"{self.name} expects a list/tuple")
        items = tuple(value)
        if self.length is not None and len(items) != self.length:
            raise ValidationError(f"{self.name} expects {self.length} items, got {len(items)}")
        return tuple(self.elem.validate(v) for v in items)


ABIType = Any  # one of the dataclasses above


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:])
        except ValueError as e:
            raise ValidationError(f"invalid hex: {e}") from e
    raise ValidationError("bytes must be bytes, bytearray, or 0x-hex string")


# ──────────────────────────────────────────────────────────────────────────────
# Parser for textual type specs (e.g., "uint256", "bytes32", "address[]")
# ──────────────────────────────────────────────────────────────────────────────


def parse_type(spec: str) -> ABIType:
    """
    Parse a textual type spec into a type object with .validate() and .name.
    Array suffixes are peeled right to left, so "uint8[2][]" is a dynamic
    array of uint8[2].
    """
    if not isinstance(spec, str) or not spec.strip():
        raise ABITypeError("type spec must be a non-empty string")
    s = spec.strip()

    if s.endswith("]"):
        open_at = s.rfind("[")
        if open_at <= 0:
            raise ABITypeError(f"malformed array type: {spec!r}")
        inner, size = s[:open_at], s[open_at + 1:-1].strip()
        if size == "":
            return ArrayType(parse_type(inner))
        if not size.isdigit():
            raise ABITypeError(f"invalid array length in {spec!r}")
        return ArrayType(parse_type(inner), int(size))

    if s == "bool":
        return BoolType()
    if s == "address":
        return AddressType()
    if s == "string":
        return StringType()
    if s == "bytes":
        return BytesType()
    if s == "uint":
        return UIntType(256)
    if s == "int":
        return IntType(256)

    if s.startswith("uint"):
        return UIntType(_parse_bits(s[4:], spec))
    if s.startswith("int"):
        return IntType(_parse_bits(s[3:], spec))
    if s.startswith("bytes"):
        try:
            n = int(s[5:])
        except ValueError as e:
            raise ABITypeError("invalid bytesN length") from e
        return FixedBytesType(n)

    raise ABITypeError(f"unsupported type spec: {spec!r}")


def _parse_bits(text: str, spec: str) -> int:
    try:
        bits = int(text)
    except ValueError as e:
        raise ABITypeError(f"invalid bit width in {spec!r}") from e
    if bits <= 0 or bits > 256 or bits % 8:
        raise ABITypeError("bit width must be a multiple of 8 in 8..256")
    return bits


# ──────────────────────────────────────────────────────────────────────────────
# Function signatures
# ──────────────────────────────────────────────────────────────────────────────


def parse_signature(sig: str) -> Tuple[str, List[ABIType]]:
    """
    Split "name(t1,t2,...)" into (name, [types]).

    >>> parse_signature("transfer(address,uint256)")[0]
    'transfer'
    """
    s = sig.replace(" ", "")
    open_at = s.find("(")
    if open_at <= 0 or not s.endswith(")"):
        raise ABITypeError(f"malformed function signature: {sig!r}")
    name, body = s[:open_at], s[open_at + 1:-1]
    if not body:
        return name, []
    return name, [parse_type(p) for p in body.split(",")]


def canonical_signature(name: str, types: List[ABIType]) -> str:
    return f"{name}({','.join(t.name for t in types)})"
