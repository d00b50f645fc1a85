"""
forgecore.fuzz.strategies — deterministic, boundary-biased argument generation.

Every value comes from a single `random.Random(seed)`, so the same seed and
the same test signature always produce the same sequence of FuzzCases.

Generation policy
-----------------
* Integers: about half the draws pick a boundary value (lo, lo+1, hi, hi-1,
  plus 0 / 1 / -1 where they lie inside the range), the rest are uniform over
  the range. The range is the type's range narrowed by any configured bounds.
* address: half the draws come from a small dictionary (the zero address, the
  contract under test, the sender); the rest are uniform 20-byte values. The
  cheat-code address is never produced.
* bool: fair coin.
* bytesN: all-zero and all-0xff special cases, otherwise uniform.
* bytes / string: short lengths (0, 1, 32, or uniform up to MAX_DYNAMIC_LEN).
* T[] / T[k]: element-wise; dynamic arrays have up to MAX_ARRAY_LEN items.
"""

from __future__ import annotations

import random
import string
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from forgecore.abi.types import (AddressType, ArrayType, BoolType, BytesType,
                                 FixedBytesType, IntType, StringType, UIntType,
                                 parse_type)
from forgecore.config import FuzzConfig
from forgecore.host.cheatcodes import CHEATCODE_ADDRESS
from forgecore.types.address import ZERO_ADDRESS
from forgecore.types.testing import FuzzCase, TestSpec

MAX_DYNAMIC_LEN = 64
MAX_ARRAY_LEN = 4
BOUNDARY_BIAS = 0.5

_ALPHABET = string.ascii_letters + string.digits + " _-"


def _rand_bytes(rng: random.Random, n: int) -> bytes:
    if n == 0:
        return b""
    return rng.getrandbits(8 * n).to_bytes(n, "big")


def value_range(typ: Any, bounds: Optional[Tuple[int, int]] = None) -> Tuple[int, int]:
    """Inclusive range of an integer type, narrowed by `bounds`."""
    lo, hi = typ.min_value, typ.max_value
    if bounds is not None:
        lo, hi = max(lo, bounds[0]), min(hi, bounds[1])
        if lo > hi:
            raise ValueError(f"bounds {bounds} do not intersect the range of {typ.name}")
    return lo, hi


class ValueGenerator:
    """
    Draws values for one ABI type.

    Parameters
    ----------
    typ : ABI type object (from `parse_type`)
    bounds : optional inclusive (lo, hi) for integer types
    addresses : dictionary of interesting addresses
    """

    def __init__(self, typ: Any, *, bounds: Optional[Tuple[int, int]] = None,
                 addresses: Sequence[bytes] = ()) -> None:
        self.typ = typ
        self.bounds = bounds
        self.addresses = tuple(a for a in addresses if a != CHEATCODE_ADDRESS)
        self._range = value_range(typ, bounds) if isinstance(typ, (UIntType, IntType)) else None
        self._elem: Optional[ValueGenerator] = None
        if isinstance(typ, ArrayType):
            self._elem = ValueGenerator(typ.elem, bounds=bounds, addresses=self.addresses)

    def boundaries(self) -> List[int]:
        assert self._range is not None
        lo, hi = self._range
        picks = [lo, lo + 1, hi, hi - 1, 0, 1, -1]
        out: List[int] = []
        for v in picks:
            if lo <= v <= hi and v not in out:
                out.append(v)
        return out

    def generate(self, rng: random.Random) -> Any:
        t = self.typ
        if isinstance(t, (UIntType, IntType)):
            if rng.random() < BOUNDARY_BIAS:
                return rng.choice(self.boundaries())
            lo, hi = self._range  # type: ignore[misc]
            return rng.randint(lo, hi)
        if isinstance(t, BoolType):
            return rng.random() < 0.5
        if isinstance(t, AddressType):
            if self.addresses and rng.random() < BOUNDARY_BIAS:
                return rng.choice(self.addresses)
            addr = _rand_bytes(rng, 20)
            if addr == CHEATCODE_ADDRESS:
                addr = addr[:-1] + bytes([addr[-1] ^ 1])
            return addr
        if isinstance(t, FixedBytesType):
            r = rng.random()
            if r < 0.15:
                return b"\x00" * t.size
            if r < 0.25:
                return b"\xff" * t.size
            return _rand_bytes(rng, t.size)
        if isinstance(t, BytesType):
            return _rand_bytes(rng, self._length(rng, MAX_DYNAMIC_LEN))
        if isinstance(t, StringType):
            n = self._length(rng, MAX_DYNAMIC_LEN)
            return "".join(rng.choice(_ALPHABET) for _ in range(n))
        if isinstance(t, ArrayType):
            assert self._elem is not None
            n = t.length if t.length is not None else rng.randint(0, MAX_ARRAY_LEN)
            return tuple(self._elem.generate(rng) for _ in range(n))
        raise TypeError(f"no generator for ABI type {t.name}")

    @staticmethod
    def _length(rng: random.Random, cap: int) -> int:
        r = rng.random()
        if r < 0.15:
            return 0
        if r < 0.25:
            return 1
        if r < 0.35:
            return 32
        return rng.randint(0, cap)


# ---------------------------------------------------------------------------
# Cases for a test
# ---------------------------------------------------------------------------


def generators_for(spec: TestSpec, addresses: Sequence[bytes] = (), *,
                   config: Optional[FuzzConfig] = None) -> List[ValueGenerator]:
    """
    One generator per parameter of `spec`, honoring configured bounds.

    Bounds come from `config` when given (the fuzz config actually in force
    for the run), otherwise from the spec's own fuzz config.
    """
    cfg = config if config is not None else spec.fuzz
    gens: List[ValueGenerator] = []
    for name, tname in spec.params:
        bounds = cfg.bounds_for(spec.name, name) if cfg is not None else None
        gens.append(ValueGenerator(parse_type(tname), bounds=bounds, addresses=addresses))
    return gens


def iter_cases(spec: TestSpec, rng: random.Random, *, addresses: Sequence[bytes] = (),
               config: Optional[FuzzConfig] = None) -> Iterator[FuzzCase]:
    """Endless stream of FuzzCases drawn from `rng`; trial indices start at 0."""
    gens = generators_for(spec, addresses, config=config)
    index = 0
    while True:
        yield FuzzCase(args=tuple(g.generate(rng) for g in gens), index=index)
        index += 1


def generate_cases(spec: TestSpec, seed: int, n: int, *, addresses: Sequence[bytes] = (),
                   config: Optional[FuzzConfig] = None) -> List[FuzzCase]:
    """The first `n` cases for `spec` under `seed`."""
    it = iter_cases(spec, random.Random(seed), addresses=addresses, config=config)
    return [next(it) for _ in range(n)]


def default_addresses(target: bytes, sender: bytes) -> Tuple[bytes, ...]:
    return (ZERO_ADDRESS, target, sender)


__all__ = [
    "ValueGenerator",
    "value_range",
    "generators_for",
    "iter_cases",
    "generate_cases",
    "default_addresses",
    "MAX_DYNAMIC_LEN",
    "MAX_ARRAY_LEN",
]
