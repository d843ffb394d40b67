"""Expression interpreter collaborator.

``function`` actions hand an expression and a variable mapping to an
interpreter and write back whatever value it returns. The built-in
``python`` interpreter accepts a restricted subset of Python: arithmetic,
comparisons, boolean logic, conditional expressions, assignments and calls to
a fixed table of numeric helpers. Statements may be separated by newlines or
semicolons; the value of the last expression is the result.
"""

from __future__ import annotations

import ast
import math
from typing import Any, Callable, Dict, MutableMapping, Optional, Protocol

import numpy as np

from ..errors import DefinitionError, EvalError

_RESULT = "_result"

_ALLOWED_NODES = (
    ast.Module,
    ast.Expr,
    ast.Assign,
    ast.AugAssign,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.Name,
    ast.Load,
    ast.Store,
    ast.Constant,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)


class Interpreter(Protocol):
    def compile(self, expr: str) -> Any: ...

    def evaluate(self, code: Any, variables: MutableMapping[str, Any]) -> Any: ...


def _functions(rng: np.random.Generator) -> Dict[str, Callable[..., Any]]:
    return {
        "abs": abs,
        "min": min,
        "max": max,
        "round": round,
        "int": int,
        "float": float,
        "bool": bool,
        "str": str,
        "len": len,
        "sqrt": math.sqrt,
        "exp": math.exp,
        "log": math.log,
        "sin": math.sin,
        "cos": math.cos,
        "tan": math.tan,
        "floor": math.floor,
        "ceil": math.ceil,
        "pow": pow,
        "clip": lambda x, lo, hi: float(np.clip(x, lo, hi)),
        "rand": lambda: float(rng.random()),
        "randint": lambda lo, hi: int(rng.integers(lo, hi + 1)),
        "choice": lambda *xs: xs[int(rng.integers(len(xs)))],
    }


class PythonInterpreter:
    """Evaluate restricted Python expressions."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.functions = _functions(np.random.default_rng(seed))

    def compile(self, expr: str) -> Any:
        """Validate ``expr`` and return a code object.

        Raises
        ------
        DefinitionError
            If ``expr`` is not valid or uses unsupported constructs.
        """

        try:
            tree = ast.parse(expr.strip(), mode="exec")
        except SyntaxError as exc:
            raise DefinitionError(f"invalid expression {expr!r}: {exc.msg}") from None
        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise DefinitionError(
                    f"unsupported construct {type(node).__name__} in {expr!r}"
                )
            if isinstance(node, ast.Name) and node.id.startswith("_"):
                raise DefinitionError(f"invalid name {node.id!r} in {expr!r}")
            if isinstance(node, ast.Call) and not (
                isinstance(node.func, ast.Name) and node.func.id in self.functions
            ):
                raise DefinitionError(f"unknown function call in {expr!r}")
            if isinstance(node, ast.Assign) and not all(
                isinstance(t, ast.Name) for t in node.targets
            ):
                raise DefinitionError(f"only plain names can be assigned in {expr!r}")
        if tree.body and isinstance(tree.body[-1], ast.Expr):
            last = tree.body[-1]
            tree.body[-1] = ast.Assign(
                targets=[ast.Name(id=_RESULT, ctx=ast.Store())], value=last.value
            )
            ast.copy_location(tree.body[-1], last)
            ast.fix_missing_locations(tree)
        return compile(tree, "<expression>", "exec")

    def evaluate(self, code: Any, variables: MutableMapping[str, Any]) -> Any:
        """Run ``code`` against ``variables`` and return the last value.

        Assignments are written back into ``variables``.
        """

        if isinstance(code, str):
            code = self.compile(code)
        scope: Dict[str, Any] = dict(variables)
        scope.pop(_RESULT, None)
        try:
            exec(code, {"__builtins__": {}, **self.functions}, scope)
        except (ArithmeticError, NameError, TypeError, ValueError) as exc:
            raise EvalError(f"{type(exc).__name__}: {exc}") from exc
        result = scope.pop(_RESULT, None)
        for key, value in scope.items():
            variables[key] = value
        return result


_INTERPRETERS: Dict[str, Callable[[], Interpreter]] = {"python": PythonInterpreter}


def register_interpreter(name: str, factory: Callable[[], Interpreter]) -> None:
    _INTERPRETERS[name] = factory


def get_interpreter(name: str) -> Interpreter:
    try:
        return _INTERPRETERS[name]()
    except KeyError:
        raise DefinitionError(f"unknown interpreter '{name}'") from None
