"""
forgecore.types.testing — test descriptions and fuzz value types.

* TestKind / TestSpec : one discovered test function and how to run it
* FuzzCase            : a generated argument tuple plus its trial index
* ShrinkCandidate     : a FuzzCase paired with its re-executed "still fails" result
* GasStats            : gas distribution across the calls of one test
* Counterexample      : minimal failing input of a fuzz test, with its seed

All of these are immutable; none is persisted beyond the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Tuple

from .address import to_hex

if TYPE_CHECKING:  # pragma: no cover
    from forgecore.config import FuzzConfig


class TestKind(str, Enum):
    UNIT = "unit"
    FUZZ = "fuzz"

    __test__ = False

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


@dataclass(frozen=True)
class TestSpec:
    """
    A test function discovered from a contract ABI.

    `params` holds (name, type) pairs; parameters without a declared name are
    named arg0, arg1, ...
    """
    __test__ = False

    name: str
    signature: str
    selector: bytes
    params: Tuple[Tuple[str, str], ...] = ()
    kind: TestKind = TestKind.UNIT
    expect_fail: bool = False
    fuzz: Optional["FuzzConfig"] = None

    @property
    def types(self) -> Tuple[str, ...]:
        return tuple(t for _, t in self.params)

    @property
    def param_names(self) -> Tuple[str, ...]:
        return tuple(n for n, _ in self.params)


@dataclass(frozen=True)
class FuzzCase:
    args: Tuple[Any, ...]
    index: int


@dataclass(frozen=True)
class ShrinkCandidate:
    case: FuzzCase
    fails: bool


def _render(v: Any) -> Any:
    if isinstance(v, (bytes, bytearray)):
        return to_hex(bytes(v))
    if isinstance(v, (tuple, list)):
        return [_render(x) for x in v]
    return v


@dataclass(frozen=True)
class Counterexample:
    args: Tuple[Any, ...]
    seed: int
    index: int
    shrink_steps: int = 0
    calldata: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "args": [_render(a) for a in self.args],
            "seed": hex(self.seed),
            "trial": self.index,
            "shrinkSteps": self.shrink_steps,
            "calldata": to_hex(self.calldata),
        }


@dataclass(frozen=True)
class GasStats:
    min: int = 0
    mean: int = 0
    max: int = 0
    runs: int = 0

    @classmethod
    def single(cls, gas: int) -> "GasStats":
        return cls(min=gas, mean=gas, max=gas, runs=1)

    @classmethod
    def from_samples(cls, samples: Iterable[int]) -> "GasStats":
        xs = list(samples)
        if not xs:
            return cls()
        return cls(min=min(xs), mean=sum(xs) // len(xs), max=max(xs), runs=len(xs))

    def to_dict(self) -> Dict[str, int]:
        return {"min": self.min, "mean": self.mean, "max": self.max, "runs": self.runs}


__all__ = [
    "TestKind",
    "TestSpec",
    "FuzzCase",
    "ShrinkCandidate",
    "Counterexample",
    "GasStats",
]
