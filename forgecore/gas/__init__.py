"""
forgecore.gas — gas accounting package.

Submodules
----------
- table.py : flat host-operation gas costs + EIP-150 forwarding rule
- meter.py : per-frame GasMeter, OOG semantics

Exposes a small surface via lazy re-exports.

Example
-------
    from forgecore.gas import GasMeter, load_gas_table
"""

from __future__ import annotations

import importlib
from typing import Any, Dict, Tuple

# Public re-exports (attr_name -> (module_name, attr_name_in_module))
_EXPORTS: Dict[str, Tuple[str, str]] = {
    "load_gas_table": ("table", "load_gas_table"),
    "GasTable": ("table", "GasTable"),
    "DEFAULT_GAS_TABLE": ("table", "DEFAULT_GAS_TABLE"),
    "callable_gas": ("table", "callable_gas"),
    "GasMeter": ("meter", "GasMeter"),
}

__all__ = tuple(_EXPORTS.keys())


def __getattr__(name: str) -> Any:  # PEP 562 lazy attribute loading
    try:
        module_name, attr_name = _EXPORTS[name]
    except KeyError as e:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from e
    mod = importlib.import_module(f"{__name__}.{module_name}")
    return getattr(mod, attr_name)


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(__all__))
