"""
forgecore.fuzz.shrink — minimize a failing FuzzCase.

`shrink_value` yields candidates that are strictly simpler than a value, the
canonical one first (0, False, the zero address, empty). `minimize` runs a
greedy search: first every parameter replaced by its canonical value at once,
then one parameter at a time, restarting after each accepted step. A candidate
is accepted only after the predicate re-executed it and saw it fail, so the
reported case is always a verified reproducer. The search stops when a full
pass accepts nothing or the evaluation budget is spent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from forgecore.abi.types import (AddressType, ArrayType, BoolType, BytesType,
                                 FixedBytesType, IntType, StringType, UIntType)
from forgecore.types.address import ZERO_ADDRESS
from forgecore.types.testing import FuzzCase, ShrinkCandidate

from .strategies import value_range

log = logging.getLogger(__name__)

Predicate = Callable[[Tuple[Any, ...]], bool]


def canonical(typ: Any, bounds: Optional[Tuple[int, int]] = None) -> Any:
    """The simplest value of `typ` (inside `bounds` for integers)."""
    if isinstance(typ, (UIntType, IntType)):
        lo, hi = value_range(typ, bounds)
        return min(max(0, lo), hi)
    if isinstance(typ, BoolType):
        return False
    if isinstance(typ, AddressType):
        return ZERO_ADDRESS
    if isinstance(typ, FixedBytesType):
        return b"\x00" * typ.size
    if isinstance(typ, BytesType):
        return b""
    if isinstance(typ, StringType):
        return ""
    if isinstance(typ, ArrayType):
        if typ.length is None:
            return ()
        return tuple(canonical(typ.elem, bounds) for _ in range(typ.length))
    raise TypeError(f"no canonical value for ABI type {typ.name}")


def _int_candidates(typ: Any, value: int, bounds: Optional[Tuple[int, int]]) -> Iterator[int]:
    lo, hi = value_range(typ, bounds)
    target = min(max(0, lo), hi)
    if value == target:
        return
    yield target
    if value < 0 and -value <= hi:
        yield -value
    # halve the distance to the target, then step by one
    yield target + (value - target) // 2 if value > target else target - (target - value) // 2
    yield value - 1 if value > target else value + 1


def shrink_value(typ: Any, value: Any, bounds: Optional[Tuple[int, int]] = None) -> Iterator[Any]:
    """Yield distinct candidates simpler than `value`, simplest first."""
    seen: List[Any] = [value]

    def fresh(c: Any) -> bool:
        if c in seen:
            return False
        seen.append(c)
        return True

    if isinstance(typ, (UIntType, IntType)):
        lo, hi = value_range(typ, bounds)
        for c in _int_candidates(typ, value, bounds):
            if lo <= c <= hi and fresh(c):
                yield c
        return
    if isinstance(typ, BoolType):
        if value:
            yield False
        return
    if isinstance(typ, (AddressType, FixedBytesType)):
        c = canonical(typ)
        if fresh(c):
            yield c
        return
    if isinstance(typ, (BytesType, StringType)):
        n = len(value)
        for c in (value[:0], value[:n // 2], value[:n - 1]):
            if len(c) < n and fresh(c):
                yield c
        if isinstance(typ, BytesType) and fresh(b"\x00" * n):
            yield b"\x00" * n
        return
    if isinstance(typ, ArrayType):
        items = tuple(value)
        n = len(items)
        if typ.length is None:
            for c in (items[:0], items[:n // 2], items[:n - 1]):
                if len(c) < n and fresh(c):
                    yield c
        for i, item in enumerate(items):
            for sub in shrink_value(typ.elem, item, bounds):
                c = items[:i] + (sub,) + items[i + 1:]
                if fresh(c):
                    yield c
                break
        return
    raise TypeError(f"cannot shrink ABI type {typ.name}")


@dataclass(frozen=True)
class ShrinkResult:
    best: ShrinkCandidate
    steps: int
    evaluations: int

    @property
    def case(self) -> FuzzCase:
        return self.best.case


def minimize(case: FuzzCase, types: Sequence[Any], predicate: Predicate, *, budget: int,
             bounds: Sequence[Optional[Tuple[int, int]]] = ()) -> ShrinkResult:
    """
    Greedily minimize `case`, a case already observed to fail.

    `predicate(args)` re-executes the test and returns True when it still
    fails. At most `budget` predicate calls are made.
    """
    bnds: List[Optional[Tuple[int, int]]] = list(bounds) + [None] * (len(types) - len(bounds))
    current = list(case.args)
    steps = 0
    evals = 0

    def attempt(args: List[Any]) -> bool:
        nonlocal evals
        evals += 1
        return predicate(tuple(args))

    if budget > 0:
        all_canon = [canonical(t, b) for t, b in zip(types, bnds)]
        if all_canon != current and attempt(all_canon):
            current = all_canon
            steps += 1

    improved = True
    while improved and evals < budget:
        improved = False
        for i, t in enumerate(types):
            for cand in shrink_value(t, current[i], bnds[i]):
                if evals >= budget:
                    break
                trial = current[:i] + [cand] + current[i + 1:]
                if attempt(trial):
                    current = trial
                    steps += 1
                    improved = True
                    break
            if improved or evals >= budget:
                break

    log.debug("shrink: %d steps in %d evaluations", steps, evals)
    best = ShrinkCandidate(case=FuzzCase(args=tuple(current), index=case.index), fails=True)
    return ShrinkResult(best=best, steps=steps, evaluations=evals)


__all__ = ["canonical", "shrink_value", "minimize", "ShrinkResult", "Predicate"]
