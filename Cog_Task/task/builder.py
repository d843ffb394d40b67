"""Turn a tree description into a validated :class:`~Cog_Task.engine.tree.Tree`.

Nodes are placed in preorder: a constructor reserves its own arena slot
before building its children, so indices follow declaration order.
Templates are expanded into a separate tree and grafted in.
"""

from __future__ import annotations

import inspect
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ..config import Config
from ..engine.actions import lookup
from ..engine.tree import Tree
from ..errors import DefinitionError, TemplateRecursionError
from .expression import Call, parse_expression

logger = logging.getLogger(__name__)

SIGNAL_PREFIXES = ("in_", "out_", "lo_", "sig_")
RESOURCE_FIELDS = ("src", "init_src", "mask")
PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

Node = Union[str, Dict[str, Any], Call]


def as_call(node: Node) -> Call:
    """Normalise the three accepted node spellings to a :class:`Call`.

    A mapping node has exactly one key, the constructor name. A list value
    becomes the first positional argument, a mapping value the keyword
    arguments and any other value the single positional argument.
    """

    if isinstance(node, Call):
        return node
    if isinstance(node, str):
        parsed = parse_expression(node)
        if not isinstance(parsed, Call):
            raise DefinitionError(f"expected an action, got {parsed!r}")
        return parsed
    if isinstance(node, dict):
        if len(node) != 1:
            raise DefinitionError(
                f"an action mapping needs exactly one constructor key, got {sorted(node)}"
            )
        ((name, body),) = node.items()
        if body is None:
            return Call(str(name))
        if isinstance(body, dict):
            return Call(str(name), kwargs={str(k): v for k, v in body.items()})
        return Call(str(name), args=[body])
    raise DefinitionError(f"expected an action, got {node!r}")


def substitute(text: str, params: Mapping[str, Any]) -> str:
    """Replace ``${key}`` placeholders; unknown keys are an error."""

    def repl(m: re.Match) -> str:
        key = m.group(1)
        if key not in params:
            raise DefinitionError(f"template parameter '{key}' is not defined")
        return str(params[key])

    return PLACEHOLDER.sub(repl, text)


class TreeBuilder:
    """Build trees for one block.

    Parameters
    ----------
    signals:
        Name to id table used for signal fields given by name.
    root_dir:
        Directory template ``src`` paths are resolved against.
    max_depth:
        Template nesting limit; defaults to ``Config.template_depth``.
    defaults:
        Values injected into constructors that accept a field but were not
        given one, e.g. the block's ``interpreter``.
    """

    def __init__(
        self,
        signals: Optional[Mapping[str, int]] = None,
        *,
        root_dir: Optional[Path] = None,
        max_depth: Optional[int] = None,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.signals = dict(signals or {})
        self.root_dir = Path(root_dir) if root_dir is not None else Path.cwd()
        self.max_depth = Config.template_depth if max_depth is None else max_depth
        self.defaults = {k: v for k, v in (defaults or {}).items() if v is not None}

    def build(self, node: Node) -> Tree:
        tree = Tree()
        root = self._node(tree, node, 0)
        tree.set_root(root)
        return tree

    # ------------------------------------------------------------------
    def _node(self, tree: Tree, node: Node, depth: int) -> int:
        call = as_call(node)
        if call.name == "template":
            return self._template(tree, call, depth)
        cls = lookup(call.name)
        signature = inspect.signature(cls.__init__)
        try:
            bound = signature.bind(None, *call.args, **call.kwargs)
        except TypeError as exc:
            raise DefinitionError(f"{call.name}: {exc}") from None
        arguments: Dict[str, Any] = {}
        for key, value in list(bound.arguments.items())[1:]:
            if key == "common" or key == "kwargs":
                arguments.update(value)
            else:
                arguments[key] = value
        for key, value in self.defaults.items():
            if key in signature.parameters and arguments.get(key) is None:
                arguments[key] = value

        index = tree.reserve()
        children: List[int] = []
        for field in cls.CHILDREN:
            if field not in arguments:
                continue
            value = arguments[field]
            if isinstance(value, list):
                built = [self._node(tree, item, depth) for item in value]
                children.extend(built)
                arguments[field] = built
            else:
                built_one = self._node(tree, value, depth)
                children.append(built_one)
                arguments[field] = built_one

        for key, value in arguments.items():
            if key in cls.CHILDREN:
                continue
            value = self._plain(call.name, key, value)
            if key.startswith(SIGNAL_PREFIXES):
                value = self._signals(call.name, key, value)
            elif key in RESOURCE_FIELDS and isinstance(value, str):
                value = self._resource(value)
            arguments[key] = value

        try:
            action = cls(**arguments)
        except TypeError as exc:
            raise DefinitionError(f"{call.name}: {exc}") from None
        except ValueError as exc:
            raise DefinitionError(f"{call.name}: {exc}") from exc
        tree.place(index, action, children)
        return index

    def _plain(self, name: str, key: str, value: Any) -> Any:
        """Turn bare identifiers into text and reject nested actions."""

        if isinstance(value, Call):
            if not value.bare:
                raise DefinitionError(f"{name}: `{key}` cannot hold an action")
            return value.name
        if isinstance(value, list):
            return [self._plain(name, key, v) for v in value]
        if isinstance(value, dict):
            return {
                self._plain(name, key, k): self._plain(name, key, v)
                for k, v in value.items()
            }
        return value

    def _resource(self, src: str) -> str:
        path = Path(src)
        if not path.is_absolute() and (self.root_dir / path).exists():
            return str(self.root_dir / path)
        return src

    def _signals(self, name: str, key: str, value: Any) -> Any:
        if isinstance(value, list):
            return [self._signal(name, key, v) for v in value]
        if isinstance(value, dict):
            return {self._signal(name, key, k): v for k, v in value.items()}
        return self._signal(name, key, value)

    def _signal(self, name: str, key: str, value: Any) -> Any:
        if isinstance(value, str):
            if value.isdigit():
                return int(value)
            try:
                return self.signals[value]
            except KeyError:
                raise DefinitionError(
                    f"{name}: `{key}` refers to undeclared signal '{value}'"
                ) from None
        return value

    # ------------------------------------------------------------------
    def _template(self, tree: Tree, call: Call, depth: int) -> int:
        if depth >= self.max_depth:
            src = call.kwargs.get("src", call.args[0] if call.args else "?")
            raise TemplateRecursionError(str(src), self.max_depth)
        args = list(call.args)
        src = call.kwargs["src"] if "src" in call.kwargs else (args.pop(0) if args else None)
        if "params" in call.kwargs:
            params = call.kwargs["params"]
        else:
            params = args.pop(0) if args else {}
        extra = set(call.kwargs) - {"src", "params"}
        if not src or extra or args:
            raise DefinitionError("template: expected `template(src, params)`")
        src = self._plain("template", "src", src)
        params = self._plain("template", "params", params or {})
        if not isinstance(params, dict):
            raise DefinitionError("template: `params` must be a mapping")

        path = self.root_dir / str(src)
        try:
            text = path.read_text()
        except OSError as exc:
            raise DefinitionError(f"template: cannot read {path}: {exc}") from exc
        text = substitute(text, params)
        if path.suffix in (".yaml", ".yml", ".json"):
            try:
                body: Node = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise DefinitionError(f"template: {path} is not valid YAML: {exc}") from exc
        else:
            body = text

        logger.debug("expanding template %s at depth %d", src, depth + 1)
        sub = Tree()
        sub.set_root(self._node(sub, body, depth + 1))
        return tree.graft(sub)


def build_tree(
    node: Node,
    signals: Optional[Mapping[str, int]] = None,
    *,
    root_dir: Optional[Path] = None,
) -> Tree:
    """Build (but do not validate) the tree described by ``node``."""

    return TreeBuilder(signals, root_dir=root_dir).build(node)
