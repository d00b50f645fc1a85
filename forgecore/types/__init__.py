"""
forgecore.types — value types shared across the execution core.

Public surface (re-exported):
    Status, TestStatus            : Enums — call outcome / test outcome
    LogEvent                      : Dataclass — (address, topics, data)
    BlockEnv                      : Dataclass — block environment (ledger scratch area)
    CallKind, CallFrame           : Call frame description
    ExecutionResult               : Result of one call frame
    U256_MAX, ZERO_ADDRESS        : Common constants
"""

from __future__ import annotations

from .address import ZERO_ADDRESS, to_address, to_hex
from .context import BlockEnv
from .events import LogEvent
from .frame import CallFrame, CallKind
from .result import ExecutionResult
from .status import Status, TestStatus
from .u256 import U256_MAX

__all__ = [
    "Status",
    "TestStatus",
    "LogEvent",
    "BlockEnv",
    "CallKind",
    "CallFrame",
    "ExecutionResult",
    "U256_MAX",
    "ZERO_ADDRESS",
    "to_address",
    "to_hex",
]
