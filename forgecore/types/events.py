"""
forgecore.types.events — emitted log records.

`LogEvent` is the compact, immutable container the host records for every log a
contract emits. Logs emitted inside a frame that later reverts are dropped by
the journal; the ones that survive are returned on the ExecutionResult so that
downstream assertion helpers can inspect them.

Conventions
-----------
* `address` is the 20-byte emitter address.
* `topics` are an ordered tuple of 32-byte words (at most four).
* `data` is an arbitrary byte string payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple

from .address import HexLike, hex_to_bytes, to_address, to_hex

MAX_TOPICS = 4


def _normalize_topic(t: HexLike | int) -> bytes:
    if isinstance(t, int) and not isinstance(t, bool):
        return t.to_bytes(32, "big")
    b = hex_to_bytes(t)
    if len(b) > 32:
        raise ValueError(f"topic longer than 32 bytes: {len(b)}")
    return b.rjust(32, b"\x00")


@dataclass(frozen=True)
class LogEvent:
    """
    A single log emitted during execution.

    Attributes:
        address: bytes — emitter address (20 bytes)
        topics:  tuple[bytes, ...] — ordered 32-byte topics
        data:    bytes — unstructured payload
    """

    address: bytes
    topics: Tuple[bytes, ...]
    data: bytes

    def __init__(self, address: HexLike, topics: Sequence[HexLike | int] = (), data: HexLike = b""):
        if len(topics) > MAX_TOPICS:
            raise ValueError(f"at most {MAX_TOPICS} topics allowed, got {len(topics)}")
        object.__setattr__(self, "address", to_address(address))
        object.__setattr__(self, "topics", tuple(_normalize_topic(t) for t in topics))
        object.__setattr__(self, "data", hex_to_bytes(data))

    def has_topic(self, topic: HexLike | int) -> bool:
        """True if `topic` appears anywhere in this log's topic list."""
        return _normalize_topic(topic) in self.topics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": to_hex(self.address),
            "topics": [to_hex(t) for t in self.topics],
            "data": to_hex(self.data),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LogEvent":
        topics = d.get("topics", [])
        if not isinstance(topics, (tuple, list)):
            raise TypeError("topics must be a list/tuple")
        return cls(address=d["address"], topics=list(topics), data=d.get("data", b""))

    def __repr__(self) -> str:  # pragma: no cover - cosmetic
        ts = ", ".join(t.hex()[:10] + "…" for t in self.topics)
        data_h = self.data.hex()
        if len(data_h) > 16:
            data_h = data_h[:16] + "…"
        return f"LogEvent(address=0x{self.address.hex()[:8]}…, topics=[{ts}], data=0x{data_h})"


__all__ = ["LogEvent", "MAX_TOPICS"]
