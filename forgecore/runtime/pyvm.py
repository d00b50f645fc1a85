"""
forgecore.runtime.pyvm — backend that runs contracts written in Python.

Code format
-----------
A contract's code is its UTF-8 Python source. Deployment runs the source's
optional `constructor(ctx)` and installs the same source as runtime code.
Calls are routed by the 4-byte selector of each `@external` signature; calldata
shorter than a selector goes to `receive(ctx)` (falling back to
`fallback(ctx)`), unknown selectors to `fallback(ctx)`.

Determinism & gas
-----------------
* Every call executes the source in a fresh namespace, so module globals never
  carry state between calls; persistent state lives in storage only.
* Contracts see a whitelisted set of builtins (no imports, no I/O), and the
  source is checked by `forgecore.runtime.validate` before it is compiled.
* Gas: a base cost per call plus a per-byte calldata cost, `LINE_GAS` per
  executed source line (metered with `sys.settrace`, per thread), plus
  whatever the Host charges for each operation.

Errors raised by contract code map to reverts:
    AssertionError     -> Error(message), or Panic(0x01) without a message
    ZeroDivisionError  -> Panic(0x12)
    any other Exception -> Error("<Type>: <message>")
"""

from __future__ import annotations

import builtins
import inspect
import logging
import sys
from dataclasses import dataclass
from functools import lru_cache
from types import CodeType, FrameType
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_hash.auto import keccak

from forgecore.abi.codec import decode_args, encode_args
from forgecore.abi.errors import encode_error_string, encode_panic
from forgecore.abi.selectors import function_selector
from forgecore.abi.types import ABITypeError, ValidationError, parse_signature
from forgecore.errors import OOG, ExecError, InvalidOpcode, Revert
from forgecore.types.frame import CallFrame
from forgecore.types.result import ExecutionResult

from .executor import Artifact, CompileError, abi_entry
from .pycontext import Context, External, StopExecution, external
from .validate import validate_source

log = logging.getLogger(__name__)

CALL_BASE_GAS = 100
CALLDATA_BYTE_GAS = 4
LINE_GAS = 3

_FILENAME_PREFIX = "<pyvm:"

_SAFE_BUILTINS: Dict[str, Any] = {
    name: getattr(builtins, name)
    for name in (
        "abs", "all", "any", "bool", "bytearray", "bytes", "chr", "dict", "divmod",
        "enumerate", "filter", "hex", "int", "isinstance", "iter", "len", "list", "map",
        "max", "min", "next", "ord", "pow", "range", "reversed", "set", "sorted", "str",
        "sum", "tuple", "zip", "__build_class__",
        "Exception", "ArithmeticError", "AssertionError", "IndexError", "KeyError",
        "TypeError", "ValueError", "ZeroDivisionError",
    )
}


# --------------------------------------------------------------------------------------
# Loading
# --------------------------------------------------------------------------------------

@lru_cache(maxsize=256)
def _compile_source(code: bytes) -> CodeType:
    try:
        text = code.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CompileError(f"pyvm code is not UTF-8: {e}") from e
    name = f"{_FILENAME_PREFIX}{keccak(code)[:4].hex()}>"
    tree = validate_source(text, filename=name)
    try:
        return compile(tree, name, "exec")
    except SyntaxError as e:
        raise CompileError(f"pyvm syntax error at line {e.lineno}: {e.msg}") from e


@dataclass
class _Entry:
    fn: Callable[..., Any]
    meta: External
    types: Tuple[Any, ...]


def _namespace(code: CodeType) -> Dict[str, Any]:
    ns: Dict[str, Any] = {"__builtins__": _SAFE_BUILTINS, "__name__": "contract",
                          "external": external}
    exec(code, ns)
    return ns


def _externals(ns: Dict[str, Any]) -> Dict[bytes, _Entry]:
    table: Dict[bytes, _Entry] = {}
    for obj in ns.values():
        meta = getattr(obj, "__pyvm_external__", None)
        if isinstance(meta, External):
            try:
                _, types = parse_signature(meta.signature)
                selector = function_selector(meta.signature)
            except ABITypeError as e:
                raise CompileError(f"@external({meta.signature!r}): {e}") from e
            table[selector] = _Entry(obj, meta, tuple(types))
    return table


# --------------------------------------------------------------------------------------
# Line metering
# --------------------------------------------------------------------------------------

class _LineMeter:
    def __init__(self, charge: Callable[[int], None]) -> None:
        self._charge = charge
        self.halt: Optional[OOG] = None

    def global_trace(self, frame: FrameType, event: str, arg: Any):
        if frame.f_code.co_filename.startswith(_FILENAME_PREFIX):
            return self.local_trace
        return None

    def local_trace(self, frame: FrameType, event: str, arg: Any):
        if event == "line":
            try:
                self._charge(LINE_GAS)
            except OOG as e:
                self.halt = e
                raise
        return self.local_trace


# --------------------------------------------------------------------------------------
# Backend
# --------------------------------------------------------------------------------------

class PyVM:
    name = "pyvm"

    # ---- build step ----

    def compile(self, source: str, name: Optional[str] = None) -> Artifact:
        code = source.encode("utf-8")
        program = _compile_source(code)
        try:
            ns = _namespace(program)
        except Exception as e:
            raise CompileError(f"pyvm module failed to load: {type(e).__name__}: {e}") from e
        abi: List[Dict[str, Any]] = []
        for entry in _externals(ns).values():
            fname, types = parse_signature(entry.meta.signature)
            params = list(inspect.signature(entry.fn).parameters)[1:]
            if len(params) != len(types):
                raise CompileError(
                    f"{entry.meta.signature}: function takes {len(params)} arguments "
                    f"besides ctx, signature declares {len(types)}")
            abi.append(abi_entry(fname, [(p, t.name) for p, t in zip(params, types)],
                                 entry.meta.returns))
        abi.sort(key=lambda e: e["name"])
        return Artifact(name=name or ns.get("NAME", "Contract"), bytecode=code,
                        abi=tuple(abi), backend=self.name)

    # ---- execution ----

    def execute(self, host, frame: CallFrame, gas_limit: int) -> ExecutionResult:
        code = host.frame_code()
        data = host.calldata()
        host.use_gas(CALL_BASE_GAS + CALLDATA_BYTE_GAS * len(data), reason="pyvm call")
        try:
            program = _compile_source(code)
        except CompileError as e:
            raise InvalidOpcode(str(e)) from e

        meter = _LineMeter(lambda n: host.use_gas(n, reason="line"))
        prev = sys.gettrace()
        sys.settrace(meter.global_trace)
        try:
            output = self._run(program, Context(host, frame), frame, data)
        except StopExecution as stop:
            output = stop.output
        except ExecError:
            raise
        except AssertionError as e:
            msg = str(e)
            raise Revert(msg or "assertion failed",
                         output=encode_error_string(msg) if msg else encode_panic(0x01)) from e
        except ZeroDivisionError as e:
            raise Revert("division by zero", output=encode_panic(0x12)) from e
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            raise Revert(reason, output=encode_error_string(reason)) from e
        finally:
            sys.settrace(prev)
        if meter.halt is not None:
            # contract code swallowed the out-of-gas exception
            raise meter.halt
        return ExecutionResult.success(output)

    def _run(self, program: CodeType, ctx: Context, frame: CallFrame, data: bytes) -> bytes:
        ns = _namespace(program)
        if frame.is_create:
            ctor = ns.get("constructor")
            if callable(ctor):
                ctor(ctx)
            return frame.input

        if len(data) < 4:
            special = ns.get("receive") or ns.get("fallback")
            if not callable(special):
                raise Revert("no receive or fallback function",
                             output=encode_error_string("no receive or fallback function"))
            special(ctx)
            return b""

        entry = _externals(ns).get(data[:4])
        if entry is None:
            fb = ns.get("fallback")
            if not callable(fb):
                reason = f"unknown selector 0x{data[:4].hex()}"
                raise Revert(reason, output=encode_error_string(reason))
            fb(ctx)
            return b""
        if frame.value and not entry.meta.payable:
            reason = f"{entry.meta.signature} is not payable"
            raise Revert(reason, output=encode_error_string(reason))
        try:
            args = decode_args(entry.types, data[4:])
        except ValidationError as e:
            reason = f"invalid calldata for {entry.meta.signature}: {e}"
            raise Revert(reason, output=encode_error_string(reason)) from e

        out = entry.fn(ctx, *args)
        returns = entry.meta.returns
        if not returns:
            return b""
        values = out if len(returns) > 1 else (out,)
        return encode_args(returns, values)


__all__ = ["PyVM", "CALL_BASE_GAS", "CALLDATA_BYTE_GAS", "LINE_GAS"]
