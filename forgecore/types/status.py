"""
forgecore.types.status — canonical call outcome and test status enums.

Status models the *logical* outcome of one call frame:
  - SUCCESS : frame completed; its mutations are kept
  - REVERT  : explicit revert; mutations undone, revert data returned
  - OOG     : out of gas; all frame gas consumed, mutations undone
  - INVALID : invalid instruction; all frame gas consumed, mutations undone
  - HALT    : any other controlled halt (depth exceeded, insufficient balance,
              static violation); mutations undone

TestStatus models the outcome of one test function: PASS / FAIL / ERROR.

String forms:
  - str(Status.SUCCESS) -> "success"   (good for logs/metrics)
  - Status.SUCCESS.code  -> "SUCCESS"  (good for reports)
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Status(str, Enum):
    SUCCESS = "success"
    REVERT = "revert"
    OOG = "oog"
    INVALID = "invalid"
    HALT = "halt"

    @property
    def code(self) -> str:
        """Uppercase code form, e.g., 'SUCCESS' / 'REVERT' / 'OOG'."""
        return self.value.upper()

    @property
    def is_success(self) -> bool:
        return self is Status.SUCCESS

    @property
    def consumes_all_gas(self) -> bool:
        """OOG and invalid-instruction halts burn the frame's whole allowance."""
        return self in (Status.OOG, Status.INVALID)

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value

    @classmethod
    def from_str(cls, s: str, *, default: Optional["Status"] = None) -> "Status":
        """
        Parse a status from a string (case/format-insensitive).

        Accepts the enum values plus "ok", "out_of_gas", "out-of-gas", "invalid_opcode".
        """
        norm = (s or "").strip().lower().replace("-", "_")
        aliases = {
            "ok": cls.SUCCESS,
            "out_of_gas": cls.OOG,
            "outofgas": cls.OOG,
            "invalid_opcode": cls.INVALID,
        }
        if norm in aliases:
            return aliases[norm]
        try:
            return cls(norm)
        except ValueError:
            if default is not None:
                return default
            raise ValueError(f"unknown Status: {s!r}") from None


class TestStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"

    __test__ = False  # keep pytest from collecting this enum

    @property
    def code(self) -> str:
        return self.value.upper()

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


__all__ = ["Status", "TestStatus"]
