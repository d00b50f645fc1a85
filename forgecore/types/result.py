"""
forgecore.types.result — ExecutionResult container.

`ExecutionResult` is the canonical return object of one call frame, and (once
aggregated) of a top-level call. It is immutable and serializable to
JSON-friendly structures.

Fields
------
* status   : Status — SUCCESS / REVERT / OOG / INVALID / HALT
* output   : bytes  — return data on success, revert data otherwise
* gas_used : int    — gas consumed by the frame (including nested frames)
* logs     : tuple[LogEvent, ...] — emitted logs that survived, in order
* diff     : Optional[StateDiff]  — mutations applied (success only)
* reason   : str    — human-readable halt explanation ("" on success)
* created  : Optional[bytes] — new contract address for CREATE frames
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Tuple

from .address import to_hex
from .events import LogEvent
from .status import Status

if TYPE_CHECKING:  # pragma: no cover
    from ..state.snapshots import StateDiff


@dataclass(frozen=True)
class ExecutionResult:
    status: Status
    output: bytes = b""
    gas_used: int = 0
    logs: Tuple[LogEvent, ...] = ()
    diff: Optional["StateDiff"] = field(default=None, compare=False)
    reason: str = ""
    created: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.gas_used < 0:
            raise ValueError("gas_used must be >= 0")
        if not isinstance(self.logs, tuple):
            object.__setattr__(self, "logs", tuple(self.logs))
        for i, ev in enumerate(self.logs):
            if not isinstance(ev, LogEvent):
                raise TypeError(f"logs[{i}] is not a LogEvent (got {type(ev).__name__})")
        object.__setattr__(self, "output", bytes(self.output))

    # ----------------------------- constructors ------------------------------

    @classmethod
    def success(cls, output: bytes = b"", *, gas_used: int = 0,
                logs: Iterable[LogEvent] = ()) -> "ExecutionResult":
        return cls(status=Status.SUCCESS, output=output, gas_used=gas_used, logs=tuple(logs))

    @classmethod
    def halt(cls, status: Status, *, reason: str = "", output: bytes = b"",
             gas_used: int = 0) -> "ExecutionResult":
        if status is Status.SUCCESS:
            raise ValueError("halt() requires a non-success status")
        return cls(status=status, output=output, gas_used=gas_used, reason=reason)

    # ----------------------------- conveniences ------------------------------

    @property
    def is_success(self) -> bool:
        return self.status.is_success

    def with_changes(self, **changes: Any) -> "ExecutionResult":
        d = {
            "status": self.status,
            "output": self.output,
            "gas_used": self.gas_used,
            "logs": self.logs,
            "diff": self.diff,
            "reason": self.reason,
            "created": self.created,
        }
        d.update(changes)
        return ExecutionResult(**d)

    def fingerprint(self) -> Tuple[Any, ...]:
        """Status, gas and logs: the parts two identical runs must agree on."""
        return (self.status, self.output, self.gas_used, self.logs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": str(self.status),
            "output": to_hex(self.output),
            "gasUsed": self.gas_used,
            "logs": [ev.to_dict() for ev in self.logs],
            "reason": self.reason or None,
            "created": to_hex(self.created),
            "mutations": self.diff.items_count() if self.diff is not None else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        return (
            f"ExecutionResult(status={self.status.code}, gas_used={self.gas_used}, "
            f"logs={len(self.logs)}, output=0x{self.output.hex()[:16]}, reason={self.reason!r})"
        )


__all__ = ["ExecutionResult"]
