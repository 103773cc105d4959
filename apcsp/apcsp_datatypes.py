"""
Defines the core data types for the CSP pseudocode runtime.

This module provides the AST node model consumed by the evaluator, the
program container, the internal return signal, and the plugin descriptor
used to hand host functions and variables to an interpreter.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

# Runtime values are plain Python objects: int/float, bool, str and list.
Value = Union[int, float, bool, str, list]


class NodeKind(enum.Enum):
    """Closed set of node kinds; values are the parser's tag strings."""
    PASS = "pass"
    ASSIGNMENT = "assignment"
    EVAL = "eval"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    MOD = "mod"
    AND = "AND"
    OR = "OR"
    NEGATE = "negate"
    NOT = "NOT"
    RELATION = "relation"
    IDENTIFIER = "identifier"
    LIST_ELEMENT = "listelement"
    LIST = "list"
    FUNCTION_CALL = "function_call"
    BLOCK = "block"
    REPEAT = "repeat"
    TIMES = "times"
    UNTIL = "until"
    IF = "if"
    FOREACH = "foreach"
    RETURN = "return"
    PROCEDURE = "procedure"

    @classmethod
    def from_tag(cls, tag: str) -> 'NodeKind':
        try:
            return cls(tag)
        except ValueError:
            raise ValueError(f"Unknown node type: {tag!r}") from None


BINARY_OPERATORS = frozenset({
    NodeKind.ADD, NodeKind.SUB, NodeKind.MUL, NodeKind.DIV, NodeKind.MOD,
    NodeKind.AND, NodeKind.OR,
})

RELATIONS = ("==", "!=", "<", "<=", ">", ">=")


@dataclass(frozen=True)
class SourceSpan:
    """Start and end of a node in the source text (1-based, as the parser reports)."""
    start_line: int
    start_col: int
    end_line: Optional[int] = None
    end_col: Optional[int] = None

    def describe(self) -> str:
        return f"line {self.start_line}, col {self.start_col}"


@dataclass(frozen=True)
class Node:
    """An immutable AST node.

    `args` holds the kind-specific payload: a literal, a name, another Node,
    or a tuple of those. The evaluator never mutates nodes.
    """
    kind: NodeKind
    args: Any = None
    span: Optional[SourceSpan] = field(default=None, compare=False)

    def __repr__(self) -> str:
        return f"Node({self.kind.value}, {self.args!r})"


@dataclass(frozen=True)
class Program:
    """A parsed program: top-level statements plus procedure declarations."""
    statements: Tuple[Node, ...] = ()
    functions: Tuple[Node, ...] = ()
    # Source text, when known; only used to show context in error messages.
    source: Optional[str] = field(default=None, compare=False)


class ReturnSignal:
    """Marks a `RETURN` unwinding towards the enclosing procedure call.

    This is an internal control-flow value; it is never stored in a variable
    and never handed to host code.
    """
    __slots__ = ("value",)

    def __init__(self, value: Any = None):
        self.value = value

    def __repr__(self) -> str:
        return f"ReturnSignal({self.value!r})"


@dataclass
class Plugin:
    """A set of host functions and host variables offered to programs."""
    functions: Dict[str, Callable] = field(default_factory=dict)
    vars: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, Any]]) -> 'Plugin':
        """Builds a plugin from `(category, mapping)` pairs, e.g. `[('functions', {...})]`."""
        plugin = cls()
        for category, mapping in pairs:
            match category:
                case 'functions':
                    plugin.functions.update(mapping)
                case 'vars':
                    plugin.vars.update(mapping)
                case _:
                    raise ValueError(f"Unknown plugin category: {category!r}")
        return plugin


def merge_plugins(*plugins: Plugin) -> Plugin:
    """Merges plugins key by key; for a given name the last plugin wins."""
    merged = Plugin()
    for plugin in plugins:
        merged.functions.update(plugin.functions)
        merged.vars.update(plugin.vars)
    return merged


def identifier_name(node: Any) -> str:
    """Gets the name held by an identifier node."""
    if isinstance(node, Node) and node.kind is NodeKind.IDENTIFIER and isinstance(node.args, str):
        return node.args
    # Imported here because apcsp_errors imports SourceSpan from this module.
    from apcsp.apcsp_errors import InvalidOperation
    raise InvalidOperation(f"Not an identifier: {node!r}", getattr(node, 'span', None))
