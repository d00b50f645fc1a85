"""
forgecore.runtime.executor — the Executor contract and the backend registry.

Every interpreter backend is a standalone object satisfying `Executor`:

    name: str
    execute(host, frame, gas_limit) -> ExecutionResult
    compile(source, name=None) -> Artifact

`execute` runs the code of `frame` to completion using only the Host's callback
surface. It may return a non-success ExecutionResult or raise any `ExecHalt`;
the orchestrator treats both the same way and undoes the frame's mutations.
A backend must never keep ledger data of its own between calls.

`compile` is the build step collaborator: it turns source text into deployable
bytecode plus an ABI listing the functions the code exposes.

Backends are selected by name at configuration time:

    register_backend("mine", MyBackend)
    backend = get_backend("mine")
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from importlib import import_module
from typing import (TYPE_CHECKING, Any, Callable, Dict, List, Optional,
                    Protocol, Tuple, runtime_checkable)

from forgecore.abi.selectors import function_selector
from forgecore.abi.types import ABITypeError, parse_type
from forgecore.errors import UnknownBackend
from forgecore.types.frame import CallFrame
from forgecore.types.result import ExecutionResult

if TYPE_CHECKING:  # pragma: no cover
    from forgecore.host.adapter import Host


# --------------------------------------------------------------------------------------
# Contract
# --------------------------------------------------------------------------------------

class CompileError(ValueError):
    """Source rejected by a backend's build step."""


@runtime_checkable
class Executor(Protocol):
    name: str

    def execute(self, host: "Host", frame: CallFrame, gas_limit: int) -> ExecutionResult:
        ...

    def compile(self, source: str, name: Optional[str] = None) -> "Artifact":
        ...


@dataclass(frozen=True)
class Artifact:
    """
    Compiled contract. `bytecode` is the deployment (init) code; `abi` entries
    are dicts with type, name, inputs, outputs, signature and selector.
    """
    name: str
    bytecode: bytes
    abi: Tuple[Dict[str, Any], ...] = ()
    backend: str = ""

    def functions(self) -> List[Dict[str, Any]]:
        return [e for e in self.abi if e.get("type") == "function"]

    def function(self, name: str) -> Optional[Dict[str, Any]]:
        for e in self.functions():
            if e["name"] == name:
                return e
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "backend": self.backend,
            "bytecode": "0x" + self.bytecode.hex(),
            "abi": [{k: v for k, v in e.items() if k != "selector"} for e in self.abi],
        }


def abi_entry(name: str, inputs: List[Tuple[str, str]], outputs: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """Build one ABI function entry from (param name, type) pairs."""
    signature = f"{name}({','.join(t for _, t in inputs)})"
    try:
        for t in outputs:
            parse_type(t)
        selector = function_selector(signature)
    except ABITypeError as e:
        raise CompileError(f"{signature}: {e}") from e
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "signature": signature,
        "selector": selector,
    }


# --------------------------------------------------------------------------------------
# Registry
# --------------------------------------------------------------------------------------

BackendFactory = Callable[[], Executor]

_BUILTIN: Dict[str, Tuple[str, str]] = {
    "pyvm": ("forgecore.runtime.pyvm", "PyVM"),
    "stackvm": ("forgecore.runtime.stackvm", "StackVM"),
}


@dataclass
class _Registry:
    factories: Dict[str, BackendFactory] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)


_registry = _Registry()


def register_backend(name: str, factory: BackendFactory, *, replace: bool = False) -> None:
    """Make `factory` selectable as backend `name`."""
    with _registry.lock:
        if name in _registry.factories and not replace:
            raise ValueError(f"backend {name!r} already registered")
        _registry.factories[name] = factory


def available_backends() -> List[str]:
    with _registry.lock:
        return sorted(set(_registry.factories) | set(_BUILTIN))


def get_backend(name: str) -> Executor:
    """Instantiate the backend registered as `name`."""
    with _registry.lock:
        factory = _registry.factories.get(name)
    if factory is None:
        if name not in _BUILTIN:
            raise UnknownBackend(name, available=available_backends())
        mod_name, attr = _BUILTIN[name]
        factory = getattr(import_module(mod_name), attr)
    backend = factory()
    if not isinstance(backend, Executor):
        raise TypeError(f"backend {name!r} does not implement the Executor contract")
    return backend


__all__ = [
    "Executor",
    "CompileError",
    "Artifact",
    "abi_entry",
    "register_backend",
    "available_backends",
    "get_backend",
]
