"""
forgecore.abi
=============

Public ABI surface for forgecore.

This package provides:
  • Type parsing for ABI parameter types and function signatures.
  • Head/tail encoder/decoder for call arguments and return values.
  • Keccak function selectors and event topics.
  • Revert payload helpers (Error(string), Panic(uint256)).
"""

from __future__ import annotations

from .codec import *  # noqa: F401,F403
from .errors import *  # noqa: F401,F403
from .selectors import *  # noqa: F401,F403
from .types import *  # noqa: F401,F403
from .codec import __all__ as _all_codec
from .errors import __all__ as _all_errors
from .selectors import __all__ as _all_selectors
from .types import __all__ as _all_types

__all__ = tuple(
    dict.fromkeys(  # preserve order, dedupe
        (*_all_types, *_all_codec, *_all_selectors, *_all_errors)
    )
)
