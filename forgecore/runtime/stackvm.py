"""
forgecore.runtime.stackvm — a small text-assembly stack machine backend.

Source format
-------------
    .name Counter                       ; contract name (optional)
    .function increment() -> uint256    ; ABI entry: signature [-> return types]
    .function add(uint256 x, uint256 y) -> uint256

        PUSH 1                          ; constructor section (optional)
        PUSH 0
        SSTORE
    .runtime                            ; everything below is the runtime code
        SELECTOR
        DUP
        PUSH @increment()
        EQ
        JUMPI increment
        REVERT "unknown selector"
    increment:
        PUSH 0
        SLOAD
        ...

Deploying runs the constructor section and installs the directives plus the
runtime section as the account's code. Without a `.runtime` line the whole
body is runtime code and the constructor is empty.

Machine
-------
* Words are u256; arithmetic wraps modulo 2**256 and DIV/MOD by zero yield 0.
* Binary ops pop `b` (top) then `a` and push `a OP b`: `PUSH 10 PUSH 3 SUB` is 7.
* The stack holds at most 1024 words; overflow/underflow is an invalid
  instruction, and so is an unknown opcode or jump label.
* Gas is charged *before* each instruction, via the Host.

Instructions
------------
  PUSH v            v is decimal, 0x-hex, @sig (its 4-byte selector) or
                    #sig (the 32-byte topic of event sig)
  POP | DUP [n] | SWAP [n]
  ADD SUB MUL DIV MOD EXP | LT GT EQ ISZERO | AND OR XOR NOT
  JUMP label | JUMPI label          JUMPI pops the condition
  CALLDATALOAD [off]                offset from the stack unless given
  CALLDATASIZE | SELECTOR
  CALLER CALLVALUE ADDRESS ORIGIN SELFBALANCE TIMESTAMP NUMBER CHAINID GAS
  BALANCE | EXTCODESIZE             pop an address
  SLOAD                             pop key, push value
  SSTORE                            pop key, then value
  LOG n                             pop the data word, then n topics
  CALL [sig]                        pop to, value, gas (0 = all), then sig's args;
                                    push 1 on success, 0 on failure
  STATICCALL [sig] | DELEGATECALL [sig]   as CALL without the value
  RETURNWORD [i] | RETURNDATASIZE   read the last call's return data
  RETURN [n]                        return n words (the top of stack is the last)
  REVERT ["reason"]                 revert, with Error(reason) data if given
  STOP | INVALID | SELFDESTRUCT     SELFDESTRUCT pops the beneficiary
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from forgecore.abi.codec import encode_args
from forgecore.abi.errors import encode_error_string
from forgecore.abi.selectors import event_topic, function_selector
from forgecore.abi.types import (AddressType, BoolType, FixedBytesType, IntType,
                                 UIntType, parse_signature)
from forgecore.errors import InvalidOpcode, Revert
from forgecore.types.address import address_to_int, to_address
from forgecore.types.frame import CallFrame, CallKind
from forgecore.types.result import ExecutionResult
from forgecore.types.u256 import U256_MAX, to_signed

from .executor import Artifact, CompileError, abi_entry
from .pycontext import StopExecution

STACK_LIMIT = 1024

OP_GAS: Dict[str, int] = {
    "STOP": 0, "RETURN": 0, "REVERT": 0, "INVALID": 0,
    "ADD": 3, "SUB": 3, "LT": 3, "GT": 3, "EQ": 3, "ISZERO": 3,
    "AND": 3, "OR": 3, "XOR": 3, "NOT": 3,
    "MUL": 5, "DIV": 5, "MOD": 5, "EXP": 10,
    "PUSH": 3, "POP": 2, "DUP": 3, "SWAP": 3,
    "JUMP": 8, "JUMPI": 10,
    "CALLDATALOAD": 3, "CALLDATASIZE": 2, "SELECTOR": 3,
    "CALLER": 2, "CALLVALUE": 2, "ADDRESS": 2, "ORIGIN": 2, "SELFBALANCE": 5,
    "TIMESTAMP": 2, "NUMBER": 2, "CHAINID": 2, "GAS": 2,
    "BALANCE": 0, "EXTCODESIZE": 0, "SLOAD": 0, "SSTORE": 0, "LOG": 0,
    "CALL": 0, "STATICCALL": 0, "DELEGATECALL": 0, "SELFDESTRUCT": 0,
    "RETURNWORD": 3, "RETURNDATASIZE": 2,
}
EXP_BYTE_GAS = 50

_FUNCTION_RE = re.compile(r"^\.function\s+(\w+)\s*\((.*?)\)\s*(?:->\s*(.+))?$")
_LABEL_RE = re.compile(r"^([A-Za-z_][\w.]*):\s*(.*)$")


# --------------------------------------------------------------------------------------
# Parsing
# --------------------------------------------------------------------------------------

@dataclass(frozen=True)
class Instr:
    op: str
    args: Tuple[str, ...]
    line: int


@dataclass
class Section:
    code: List[Instr] = field(default_factory=list)
    labels: Dict[str, int] = field(default_factory=dict)


@dataclass
class Program:
    name: str
    functions: List[Dict[str, Any]]
    init: Section
    runtime: Section
    runtime_code: bytes


def _strip_comment(line: str) -> str:
    quoted = False
    for i, ch in enumerate(line):
        if ch == '"':
            quoted = not quoted
        elif ch == ";" and not quoted:
            return line[:i]
    return line


def _parse_function(line: str, lineno: int) -> Dict[str, Any]:
    m = _FUNCTION_RE.match(line)
    if not m:
        raise CompileError(f"line {lineno}: malformed .function directive")
    name, params_raw, returns_raw = m.group(1), m.group(2).strip(), m.group(3)
    inputs: List[Tuple[str, str]] = []
    if params_raw:
        for i, p in enumerate(params_raw.split(",")):
            parts = p.split()
            if not parts or len(parts) > 2:
                raise CompileError(f"line {lineno}: bad parameter {p.strip()!r}")
            inputs.append((parts[1] if len(parts) == 2 else f"arg{i}", parts[0]))
    outputs = tuple(t.strip() for t in returns_raw.split(",")) if returns_raw else ()
    try:
        return abi_entry(name, inputs, outputs)
    except ValueError as e:
        raise CompileError(f"line {lineno}: {e}") from e


def _tokenize(text: str, lineno: int) -> List[str]:
    try:
        return shlex.split(text, posix=True)
    except ValueError as e:
        raise CompileError(f"line {lineno}: {e}") from e


@lru_cache(maxsize=256)
def parse(code: bytes) -> Program:
    try:
        lines = code.decode("utf-8").splitlines()
    except UnicodeDecodeError as e:
        raise CompileError(f"stackvm code is not UTF-8: {e}") from e

    name = "Contract"
    functions: List[Dict[str, Any]] = []
    header: List[str] = []
    body_lines: List[str] = []
    init, runtime = Section(), Section()
    current = init
    has_runtime = False

    for lineno, raw in enumerate(lines, 1):
        text = _strip_comment(raw).strip()
        if not text:
            continue
        if text.startswith("."):
            directive = text.split()[0]
            if directive == ".name":
                name = text[len(".name"):].strip() or name
                header.append(text)
            elif directive == ".function":
                functions.append(_parse_function(text, lineno))
                header.append(text)
            elif directive == ".runtime":
                if has_runtime:
                    raise CompileError(f"line {lineno}: duplicate .runtime")
                has_runtime = True
                current = runtime
            else:
                raise CompileError(f"line {lineno}: unknown directive {directive}")
            continue

        if has_runtime:
            body_lines.append(raw)
        m = _LABEL_RE.match(text)
        if m:
            label, text = m.group(1), m.group(2).strip()
            if label in current.labels:
                raise CompileError(f"line {lineno}: duplicate label {label!r}")
            current.labels[label] = len(current.code)
            if not text:
                continue
        tokens = _tokenize(text, lineno)
        op = tokens[0].upper()
        if op not in OP_GAS:
            raise CompileError(f"line {lineno}: unknown instruction {tokens[0]!r}")
        current.code.append(Instr(op, tuple(tokens[1:]), lineno))

    if not has_runtime:
        # the whole body is runtime code
        init, runtime = Section(), init
        runtime_code = code
    else:
        runtime_code = "\n".join(header + [".runtime"] + body_lines).encode("utf-8") + b"\n"

    for section in (init, runtime):
        for ins in section.code:
            if ins.op in ("JUMP", "JUMPI"):
                if len(ins.args) != 1 or ins.args[0] not in section.labels:
                    raise CompileError(f"line {ins.line}: unknown jump label {ins.args}")
    return Program(name, functions, init, runtime, runtime_code)


def _immediate(token: str) -> int:
    if token.startswith("@"):
        return int.from_bytes(function_selector(token[1:]), "big")
    if token.startswith("#"):
        return int.from_bytes(event_topic(token[1:]), "big")
    try:
        v = int(token, 0)
    except ValueError as e:
        raise InvalidOpcode(f"bad immediate {token!r}") from e
    if not 0 <= v <= U256_MAX:
        raise InvalidOpcode(f"immediate out of range: {token}")
    return v


def _word_to_arg(typ: Any, w: int) -> Any:
    if isinstance(typ, AddressType):
        return to_address(w)
    if isinstance(typ, BoolType):
        return w != 0
    if isinstance(typ, FixedBytesType):
        return w.to_bytes(32, "big")[:typ.size]
    if isinstance(typ, IntType):
        return to_signed(w & ((1 << typ.bits) - 1), typ.bits)
    if isinstance(typ, UIntType):
        return w & typ.max_value
    raise InvalidOpcode(f"stackvm calls cannot pass {typ.name} arguments")


# --------------------------------------------------------------------------------------
# Machine
# --------------------------------------------------------------------------------------

class _Machine:
    def __init__(self, host, frame: CallFrame, section: Section) -> None:
        self.host = host
        self.frame = frame
        self.section = section
        self.stack: List[int] = []
        self.return_data = b""

    # stack helpers
    def push(self, v: int) -> None:
        if len(self.stack) >= STACK_LIMIT:
            raise InvalidOpcode("stack overflow")
        self.stack.append(v & U256_MAX)

    def pop(self) -> int:
        if not self.stack:
            raise InvalidOpcode("stack underflow")
        return self.stack.pop()

    def _n(self, ins: Instr, default: int) -> int:
        if not ins.args:
            return default
        try:
            n = int(ins.args[0], 0)
        except ValueError as e:
            raise InvalidOpcode(f"line {ins.line}: bad count {ins.args[0]!r}") from e
        if n < 0:
            raise InvalidOpcode(f"line {ins.line}: negative count")
        return n

    def run(self) -> bytes:
        host, code, labels = self.host, self.section.code, self.section.labels
        pc = 0
        while pc < len(code):
            ins = code[pc]
            pc += 1
            op, args = ins.op, ins.args
            host.use_gas(OP_GAS[op], reason=op)

            if op == "PUSH":
                if len(args) != 1:
                    raise InvalidOpcode(f"line {ins.line}: PUSH expects one immediate")
                self.push(_immediate(args[0]))
            elif op == "POP":
                self.pop()
            elif op == "DUP":
                n = self._n(ins, 1)
                if n < 1 or n > len(self.stack):
                    raise InvalidOpcode("stack underflow")
                self.push(self.stack[-n])
            elif op == "SWAP":
                n = self._n(ins, 1)
                if n < 1 or n >= len(self.stack):
                    raise InvalidOpcode("stack underflow")
                self.stack[-1], self.stack[-1 - n] = self.stack[-1 - n], self.stack[-1]

            elif op in ("ADD", "SUB", "MUL", "DIV", "MOD", "EXP",
                        "LT", "GT", "EQ", "AND", "OR", "XOR"):
                b = self.pop()
                a = self.pop()
                if op == "ADD":
                    r = a + b
                elif op == "SUB":
                    r = a - b
                elif op == "MUL":
                    r = a * b
                elif op == "DIV":
                    r = 0 if b == 0 else a // b
                elif op == "MOD":
                    r = 0 if b == 0 else a % b
                elif op == "EXP":
                    host.use_gas(EXP_BYTE_GAS * ((b.bit_length() + 7) // 8), reason="EXP")
                    r = pow(a, b, 1 << 256)
                elif op == "LT":
                    r = int(a < b)
                elif op == "GT":
                    r = int(a > b)
                elif op == "EQ":
                    r = int(a == b)
                elif op == "AND":
                    r = a & b
                elif op == "OR":
                    r = a | b
                else:
                    r = a ^ b
                self.push(r)
            elif op == "ISZERO":
                self.push(int(self.pop() == 0))
            elif op == "NOT":
                self.push(~self.pop())

            elif op == "JUMP":
                pc = labels[args[0]]
            elif op == "JUMPI":
                if self.pop():
                    pc = labels[args[0]]

            elif op == "CALLDATALOAD":
                off = self._n(ins, 0) if args else self.pop()
                data = host.calldata()
                self.push(int.from_bytes(data[off:off + 32].ljust(32, b"\x00"), "big"))
            elif op == "CALLDATASIZE":
                self.push(len(host.calldata()))
            elif op == "SELECTOR":
                data = host.calldata()
                self.push(int.from_bytes(data[:4], "big") if len(data) >= 4 else 0)
            elif op == "CALLER":
                self.push(address_to_int(self.frame.caller))
            elif op == "CALLVALUE":
                self.push(self.frame.value)
            elif op == "ADDRESS":
                self.push(address_to_int(self.frame.callee))
            elif op == "ORIGIN":
                self.push(address_to_int(host.env().origin))
            elif op == "SELFBALANCE":
                self.push(host.ledger.balance(self.frame.callee))
            elif op == "TIMESTAMP":
                self.push(host.env().timestamp)
            elif op == "NUMBER":
                self.push(host.env().number)
            elif op == "CHAINID":
                self.push(host.env().chain_id)
            elif op == "GAS":
                self.push(host.gas_left())
            elif op == "BALANCE":
                self.push(host.balance(to_address(self.pop())))
            elif op == "EXTCODESIZE":
                self.push(len(host.code(to_address(self.pop()))))

            elif op == "SLOAD":
                self.push(host.sload(self.pop()))
            elif op == "SSTORE":
                key = self.pop()
                host.sstore(key, self.pop())
            elif op == "LOG":
                n = self._n(ins, 0)
                if n > 4:
                    raise InvalidOpcode(f"line {ins.line}: LOG takes at most 4 topics")
                data = self.pop().to_bytes(32, "big")
                topics = [self.pop().to_bytes(32, "big") for _ in range(n)]
                host.emit_log(topics, data)

            elif op in ("CALL", "STATICCALL", "DELEGATECALL"):
                self._call(op, args)
            elif op == "RETURNWORD":
                i = self._n(ins, 0)
                chunk = self.return_data[32 * i:32 * i + 32]
                self.push(int.from_bytes(chunk.ljust(32, b"\x00"), "big"))
            elif op == "RETURNDATASIZE":
                self.push(len(self.return_data))

            elif op == "RETURN":
                n = self._n(ins, 0)
                words = [self.pop() for _ in range(n)]
                return b"".join(w.to_bytes(32, "big") for w in reversed(words))
            elif op == "REVERT":
                reason = args[0] if args else ""
                raise Revert(reason or "reverted",
                             output=encode_error_string(reason) if args else b"")
            elif op == "STOP":
                return b""
            elif op == "INVALID":
                raise InvalidOpcode(op="INVALID")
            elif op == "SELFDESTRUCT":
                host.selfdestruct(to_address(self.pop()))
                raise StopExecution()
            else:  # pragma: no cover - parse() rejects unknown ops
                raise InvalidOpcode(op=op)
        return b""

    def _call(self, op: str, args: Tuple[str, ...]) -> None:
        to = to_address(self.pop())
        value = self.pop() if op == "CALL" else 0
        gas = self.pop()
        data = b""
        if args:
            sig = args[0]
            _, types = parse_signature(sig)
            words = [self.pop() for _ in types]
            words.reverse()
            values = [_word_to_arg(t, w) for t, w in zip(types, words)]
            data = function_selector(sig) + encode_args(types, values)
        kind = {"CALL": CallKind.CALL, "STATICCALL": CallKind.STATICCALL,
                "DELEGATECALL": CallKind.DELEGATECALL}[op]
        res = self.host.call(to, data, value=value, gas=gas or None, kind=kind)
        self.return_data = res.output
        self.push(1 if res.is_success else 0)


# --------------------------------------------------------------------------------------
# Backend
# --------------------------------------------------------------------------------------

class StackVM:
    name = "stackvm"

    def compile(self, source: str, name: Optional[str] = None) -> Artifact:
        code = source.encode("utf-8")
        prog = parse(code)
        abi = tuple(sorted(prog.functions, key=lambda e: e["name"]))
        return Artifact(name=name or prog.name, bytecode=code, abi=abi, backend=self.name)

    def execute(self, host, frame: CallFrame, gas_limit: int) -> ExecutionResult:
        try:
            prog = parse(host.frame_code())
        except CompileError as e:
            raise InvalidOpcode(str(e)) from e
        section = prog.init if frame.is_create else prog.runtime
        try:
            output = _Machine(host, frame, section).run()
        except StopExecution as stop:
            output = stop.output
        if frame.is_create:
            return ExecutionResult.success(prog.runtime_code)
        return ExecutionResult.success(output)


__all__ = ["StackVM", "parse", "Program", "Instr", "OP_GAS", "STACK_LIMIT"]
