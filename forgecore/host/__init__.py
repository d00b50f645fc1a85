"""
forgecore.host — Host adapter and cheat-code dispatch.

    Host           : callback surface backends execute against (storage, balances,
                     code, logs, nested calls, snapshots)
    CheatState     : per-invocation cheat-code state (prank, expected revert, mocks)
    dispatch       : run the cheat code addressed by a frame
"""

from __future__ import annotations

from .adapter import ActiveFrame, Host
from .cheatcodes import (ASSUME_MAGIC, CHEATCODE_ADDRESS, CHEATCODES, CheatState,
                         dispatch)

__all__ = [
    "Host",
    "ActiveFrame",
    "CheatState",
    "CHEATCODE_ADDRESS",
    "CHEATCODES",
    "ASSUME_MAGIC",
    "dispatch",
]
