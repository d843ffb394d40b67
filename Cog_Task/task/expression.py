"""Constructor expressions used in task descriptions.

A tree is written as nested constructor calls::

    seq([wait(0.5), timeout(0.5, fixation)])
    par([clock(step: 1, out_tic: tic)], mode = any)

Arguments may be positional or keyword (``name: value`` or ``name = value``).
Values are numbers, quoted strings, ``true``/``false``/``null``, lists
``[...]``, maps ``{key: value}`` and further calls. A bare identifier is a
call without arguments.
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from ..errors import DefinitionError

TOKEN = re.compile(
    r"""
    \s*(?:
      (?P<NUM>-?\d+(?:\.\d*)?(?:[eE][-+]?\d+)?|-?\.\d+(?:[eE][-+]?\d+)?) |
      (?P<STR>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*') |
      (?P<ID>[A-Za-z_][A-Za-z0-9_]*) |
      (?P<SYM>[()\[\]{},:=])
    )
    """,
    re.VERBOSE,
)

KEYWORDS = {"true": True, "false": False, "null": None}

Token = Tuple[str, str]


@dataclass
class Call:
    """One constructor invocation."""

    name: str
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)

    @property
    def bare(self) -> bool:
        return not self.args and not self.kwargs


def tokenize(text: str) -> List[Token]:
    pos = 0
    tokens: List[Token] = []
    text = text.rstrip()
    while pos < len(text):
        m = TOKEN.match(text, pos)
        if not m or m.end() == pos:
            raise DefinitionError(f"bad token near {text[pos:pos + 20]!r}")
        pos = m.end()
        kind = m.lastgroup
        tokens.append((kind, m.group(kind)))
    tokens.append(("EOF", ""))
    return tokens


class Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.toks = tokenize(text)
        self.i = 0

    def peek(self, ahead: int = 0) -> Token:
        return self.toks[min(self.i + ahead, len(self.toks) - 1)]

    def eat(self, kind: str, val: str | None = None) -> Token:
        t = self.toks[self.i]
        if t[0] != kind or (val is not None and t[1] != val):
            want = val or kind
            raise DefinitionError(f"expected {want!r}, got {t[1] or 'end of input'!r} in {self.text!r}")
        self.i += 1
        return t

    def _is(self, kind: str, val: str | None = None) -> bool:
        t = self.peek()
        return t[0] == kind and (val is None or t[1] == val)

    # ------------------------------------------------------------------
    def parse(self) -> Any:
        value = self.value()
        self.eat("EOF")
        return value

    def value(self) -> Any:
        kind, text = self.peek()
        if kind == "NUM":
            self.i += 1
            return float(text) if any(c in text for c in ".eE") else int(text)
        if kind == "STR":
            self.i += 1
            try:
                return ast.literal_eval(text)
            except (SyntaxError, ValueError) as exc:
                raise DefinitionError(f"malformed string {text}: {exc}") from exc
        if kind == "ID":
            if text.lower() in KEYWORDS and not self._call_follows():
                self.i += 1
                return KEYWORDS[text.lower()]
            return self.call()
        if self._is("SYM", "["):
            return self.array()
        if self._is("SYM", "{"):
            return self.mapping()
        raise DefinitionError(f"unexpected {text or 'end of input'!r} in {self.text!r}")

    def _call_follows(self) -> bool:
        nxt = self.peek(1)
        return nxt == ("SYM", "(")

    def call(self) -> Call:
        name = self.eat("ID")[1]
        node = Call(name)
        if not self._is("SYM", "("):
            return node
        self.eat("SYM", "(")
        while not self._is("SYM", ")"):
            kind, text = self.peek()
            sep = self.peek(1)
            if kind == "ID" and sep[0] == "SYM" and sep[1] in (":", "="):
                self.i += 2
                if text in node.kwargs:
                    raise DefinitionError(f"{name}: duplicate argument {text!r}")
                node.kwargs[text] = self.value()
            else:
                if node.kwargs:
                    raise DefinitionError(f"{name}: positional argument after keyword argument")
                node.args.append(self.value())
            if not self._is("SYM", ")"):
                self.eat("SYM", ",")
        self.eat("SYM", ")")
        return node

    def array(self) -> List[Any]:
        self.eat("SYM", "[")
        items: List[Any] = []
        while not self._is("SYM", "]"):
            items.append(self.value())
            if not self._is("SYM", "]"):
                self.eat("SYM", ",")
        self.eat("SYM", "]")
        return items

    def mapping(self) -> Dict[Any, Any]:
        self.eat("SYM", "{")
        out: Dict[Any, Any] = {}
        while not self._is("SYM", "}"):
            kind, text = self.peek()
            if kind == "NUM":
                key: Any = self.value()
            elif kind == "STR":
                key = self.value()
            else:
                key = self.eat("ID")[1]
            self.eat("SYM", ":")
            out[key] = self.value()
            if not self._is("SYM", "}"):
                self.eat("SYM", ",")
        self.eat("SYM", "}")
        return out


def parse_expression(text: str) -> Any:
    """Parse ``text`` into nested :class:`Call` objects and plain values."""

    if not text or not text.strip():
        raise DefinitionError("empty tree expression")
    return Parser(text).parse()
