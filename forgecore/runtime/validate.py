"""
forgecore.runtime.validate — static checks on Python contract source.

Runs before a pyvm contract is compiled. The restricted builtins dict limits
what names a contract can reach; this pass closes the routes around it that
go through attributes instead of names.

Rejected
--------
* `import` / `from ... import` of any module.
* Attribute access to private or dunder attributes (`x._y`, `().__class__`).
* Frame, code and traceback introspection attributes (`gi_frame`, `f_globals`,
  `f_back`, `tb_frame`, ...), which lead back to unrestricted globals.
* `str.format` / `format_map`, whose field syntax reads attributes by name.
* Dunder names (`__builtins__`, `__import__`, ...) and private top-level
  function names.
* async functions, `await`, `async for` / `async with`.
* Oversized sources and ASTs (`MAX_SOURCE_BYTES`, `MAX_AST_NODES`).

Everything else, including `global`, `try`, `raise` and decorators, is allowed.
The checks are syntactic; nothing is executed here.
"""

from __future__ import annotations

import ast
from typing import FrozenSet, Tuple

from .executor import CompileError

MAX_SOURCE_BYTES = 64 * 1024
MAX_AST_NODES = 20_000

INTROSPECTION_ATTRS: FrozenSet[str] = frozenset({
    "gi_frame", "gi_code", "gi_yieldfrom",
    "cr_frame", "cr_code", "cr_await",
    "ag_frame", "ag_code", "ag_await",
    "f_back", "f_globals", "f_locals", "f_builtins", "f_code",
    "tb_frame", "tb_next",
    "format", "format_map",
    "mro",
})

_FORBIDDEN_NODES: Tuple[type, ...] = (
    ast.Import,
    ast.ImportFrom,
    ast.AsyncFunctionDef,
    ast.AsyncFor,
    ast.AsyncWith,
    ast.Await,
)


class _Validator(ast.NodeVisitor):
    def __init__(self, *, filename: str) -> None:
        self.filename = filename
        self.node_count = 0

    def _reject(self, node: ast.AST, what: str) -> None:
        line = getattr(node, "lineno", None)
        where = f" at line {line}" if line is not None else ""
        raise CompileError(f"pyvm {self.filename}: {what}{where}")

    def generic_visit(self, node: ast.AST) -> None:
        self.node_count += 1
        if self.node_count > MAX_AST_NODES:
            raise CompileError(f"pyvm {self.filename}: AST too large (limit {MAX_AST_NODES} nodes)")
        if isinstance(node, _FORBIDDEN_NODES):
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                self._reject(node, "imports are not allowed")
            self._reject(node, f"disallowed syntax {type(node).__name__}")
        super().generic_visit(node)

    def visit_Module(self, node: ast.Module) -> None:
        for stmt in node.body:
            if isinstance(stmt, ast.FunctionDef) and stmt.name.startswith("_"):
                self._reject(stmt, f"function name {stmt.name!r} must not start with underscore")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._reject(node, f"access to private attribute {node.attr!r}")
        if node.attr in INTROSPECTION_ATTRS:
            self._reject(node, f"access to attribute {node.attr!r}")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"use of dunder name {node.id!r}")
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        a = node.args
        for arg in (*a.posonlyargs, *a.args, *a.kwonlyargs, a.vararg, a.kwarg):
            if arg is not None and arg.arg.startswith("__"):
                self._reject(node, f"dunder parameter {arg.arg!r}")
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        for name in node.names:
            if name.startswith("__"):
                self._reject(node, f"global dunder name {name!r}")
        self.generic_visit(node)


def validate_source(source: str, *, filename: str = "<contract>") -> ast.Module:
    """
    Parse and validate contract source. Returns the AST on success.

    Raises:
        CompileError: syntax errors and rejected constructs alike.
    """
    size = len(source.encode("utf-8"))
    if size > MAX_SOURCE_BYTES:
        raise CompileError(f"pyvm source too large: {size} bytes (limit {MAX_SOURCE_BYTES})")
    try:
        tree = ast.parse(source, filename=filename, mode="exec")
    except SyntaxError as e:
        raise CompileError(f"pyvm syntax error at line {e.lineno}: {e.msg}") from e
    _Validator(filename=filename).visit(tree)
    return tree


__all__ = ["validate_source", "MAX_SOURCE_BYTES", "MAX_AST_NODES", "INTROSPECTION_ATTRS"]
