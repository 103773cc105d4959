"""
Transforms the external parser's JSON-like output into the typed AST in
apcsp_datatypes.

The parser produces nodes shaped like
`{"type": ..., "args": ..., "location": {"start": {"line", "column"}, "end": {...}}}`
with every statement wrapped in a `{"type": "statement"}` node.
"""
from typing import Any, Callable, Optional

from apcsp.apcsp_datatypes import BINARY_OPERATORS, RELATIONS, Node, NodeKind, Program, SourceSpan
from apcsp.apcsp_errors import InvalidOperation, ParseDelegationError


def span_from_location(location: Any) -> Optional[SourceSpan]:
    if not isinstance(location, dict):
        return None
    start = location.get('start') or {}
    end = location.get('end') or {}
    line = start.get('line'); col = start.get('column')
    if line is None or col is None:
        return None
    return SourceSpan(line, col, end.get('line'), end.get('column'))


class CspTransformer:
    def transform_program(self, parsed: dict, source: Optional[str] = None) -> Program:
        statements = tuple(self.transform_statement(s) for s in parsed.get('statements') or ())
        functions = tuple(self.transform_procedure(f) for f in parsed.get('functions') or ())
        return Program(statements=statements, functions=functions, source=source)

    def transform_statement(self, node: Any) -> Node:
        # Unwrap {"type": "statement"}, keeping the wrapper's location if the inner node has none.
        if isinstance(node, dict) and node.get('type') == 'statement':
            inner = node.get('args')
            if not isinstance(inner, dict):
                raise InvalidOperation(f"{inner!r} is not a statement", span_from_location(node.get('location')))
            if 'location' not in inner and 'location' in node:
                inner = dict(inner, location=node['location'])
            return self.transform(inner)
        return self.transform(node)

    def transform_procedure(self, node: dict) -> Node:
        span = span_from_location(node.get('location'))
        args = node.get('args') or []
        if len(args) != 3:
            raise InvalidOperation("A procedure needs a name, parameters and a body", span)
        name, params, body = args
        params = tuple(self.transform(p) for p in (params or ()))
        return Node(NodeKind.PROCEDURE, (self.transform(name), params, self.transform(body)), span)

    def transform(self, node: Any) -> Any:
        # Primitives are already in final form
        if not isinstance(node, dict):
            return node

        tag = node.get('type')
        span = span_from_location(node.get('location'))
        try:
            kind = NodeKind.from_tag(tag)
        except ValueError:
            raise InvalidOperation(f"Unknown node type {tag!r}", span) from None
        args = node.get('args')

        match kind:
            case NodeKind.PASS:
                payload = None
            case NodeKind.IDENTIFIER:
                payload = args
            case NodeKind.EVAL | NodeKind.NEGATE | NodeKind.NOT | NodeKind.TIMES | NodeKind.UNTIL:
                payload = self.transform(args)
            case NodeKind.RETURN:
                payload = None if args is None else self.transform(args)
            case NodeKind.RELATION:
                op, left, right = args
                if op not in RELATIONS:
                    raise InvalidOperation(f"Unknown relation {op!r}", span)
                payload = (op, self.transform(left), self.transform(right))
            case NodeKind.LIST:
                payload = tuple(self.transform(a) for a in (args or ()))
            case NodeKind.BLOCK:
                payload = tuple(self.transform_statement(s) for s in (args or ()))
            case NodeKind.FUNCTION_CALL:
                name, call_args = args
                payload = (self.transform(name), tuple(self.transform(a) for a in (call_args or ())))
            case NodeKind.IF:
                payload = tuple(
                    (None if cond is None else self.transform(cond), self.transform(block))
                    for cond, block in args
                )
            case NodeKind.PROCEDURE:
                return self.transform_procedure(node)
            case _:
                # assignment, binary operators, listelement, repeat, foreach
                payload = tuple(self.transform(a) for a in args)
                if kind in BINARY_OPERATORS and len(payload) != 2:
                    raise InvalidOperation(f"{tag} needs two operands, got {len(payload)}", span)
        return Node(kind, payload, span)


def _location_of(error: Exception):
    location = getattr(error, 'location', None)
    if location is None and error.args and isinstance(error.args[0], dict):
        location = error.args[0].get('location')
    span = span_from_location(location) if isinstance(location, dict) else None
    if span is None and location is not None:
        # Objects with .start.line / .start.column attributes
        start = getattr(location, 'start', None)
        line = getattr(start, 'line', None); col = getattr(start, 'column', None)
        return line, col
    if span is None:
        return None, None
    return span.start_line, span.start_col


def parse_program(source: str, parser: Callable[[str], dict], transformer: Optional[CspTransformer] = None) -> Program:
    """Parses `source` with an external parser and transforms the result.

    Parser failures are re-raised as ParseDelegationError with the parser's
    own message and line/column.
    """
    parse = getattr(parser, 'parse', parser)
    try:
        parsed = parse(source)
    except Exception as e:
        line, col = _location_of(e)
        message = getattr(e, 'message', None) or str(e)
        raise ParseDelegationError(message, line, col) from e
    return (transformer or CspTransformer()).transform_program(parsed, source)
