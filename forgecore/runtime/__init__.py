"""
forgecore.runtime — call orchestration and interpreter backends.

This package drives contract code through a pluggable interpreter while the
Host owns every piece of ledger state:

Submodules (thin overview)
--------------------------
- executor     : the Executor contract, Artifact, and the backend registry
- orchestrator : top-level invoke/call/deploy and per-frame execution
- pycontext    : Context handed to Python contracts (`pyvm`)
- pyvm         : backend running contracts written as Python source
- stackvm      : backend running a small text-assembly stack machine

Re-exports
----------
    from forgecore.runtime import Orchestrator, get_backend
    from forgecore.runtime import PyVM, StackVM, external

These are lazily loaded; importing this package does not import a backend
until the attribute is first accessed.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict, Tuple

from ..version import __version__ as __version__  # re-export

# Submodules available for "from forgecore.runtime import pyvm" style imports.
__all__ = (
    "executor",
    "orchestrator",
    "pycontext",
    "pyvm",
    "stackvm",
)

# Lazy symbol re-exports: name -> (module, attribute)
_EXPORTS: Dict[str, Tuple[str, str]] = {
    "Executor": ("executor", "Executor"),
    "Artifact": ("executor", "Artifact"),
    "CompileError": ("executor", "CompileError"),
    "register_backend": ("executor", "register_backend"),
    "get_backend": ("executor", "get_backend"),
    "available_backends": ("executor", "available_backends"),
    "Orchestrator": ("orchestrator", "Orchestrator"),
    "Context": ("pycontext", "Context"),
    "external": ("pycontext", "external"),
    "PyVM": ("pyvm", "PyVM"),
    "StackVM": ("stackvm", "StackVM"),
}


def __getattr__(name: str) -> Any:  # PEP 562 lazy attribute access
    if name in __all__:
        return import_module(f".{name}", __name__)
    target = _EXPORTS.get(name)
    if target:
        mod, attr = target
        return getattr(import_module(f".{mod}", __name__), attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(__all__) + list(_EXPORTS) + ["__version__"])
