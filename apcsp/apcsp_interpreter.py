"""
The core CSP pseudocode interpreter: the Evaluator walks the AST, one handler
per node kind, against a ScopeStack and a FunctionRegistry.
"""
import logging
import math
import operator
import sys
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from apcsp.apcsp_datatypes import Node, NodeKind, ReturnSignal, identifier_name
from apcsp.apcsp_errors import (
    InvalidOperation, InvalidRepeatCount, OperandTypeError, UndefinedList, UndefinedVariable
)
from apcsp.apcsp_functions import FunctionRegistry
from apcsp.apcsp_printer import Printer
from apcsp.apcsp_scope import ScopeStack

logger = logging.getLogger(__name__)

Checkpoint = Callable[[Node], Awaitable[None]]

_RELATIONS = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}

_SYMBOLS = {
    NodeKind.ADD: '+',
    NodeKind.SUB: '-',
    NodeKind.MUL: '*',
    NodeKind.DIV: '/',
    NodeKind.MOD: 'MOD',
}


def is_number(value: Any) -> bool:
    # Booleans count as numbers: TRUE + 1 is 2.
    return isinstance(value, (int, float))


def _is_nan(value) -> bool:
    return isinstance(value, float) and math.isnan(value)


def as_float(value) -> float:
    """Converts a number to float; integers past the float range become infinities."""
    try:
        return float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf


def clamp(value):
    # Integer results are kept exact only while a float could hold them.
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) > sys.float_info.max:
        return math.inf if value > 0 else -math.inf
    return value


def divide(left, right):
    """Floating division; division by zero gives an infinity or NaN instead of raising."""
    if right == 0:
        if left == 0 or _is_nan(left):
            return math.nan
        sign = (1 if left > 0 else -1) * math.copysign(1, right)
        return math.copysign(math.inf, sign)
    return left / right


def modulo(left, right):
    """Remainder taking the sign of the dividend (-7 MOD 3 is -1); by zero gives NaN."""
    if right == 0 or (isinstance(left, float) and math.isinf(left)):
        return math.nan
    if isinstance(right, float) and math.isinf(right):
        return left
    if isinstance(left, int) and isinstance(right, int):
        remainder = abs(left) % abs(right)
        return -remainder if left < 0 else remainder
    return math.fmod(left, right)


_ARITHMETIC = {
    NodeKind.ADD: operator.add,
    NodeKind.SUB: operator.sub,
    NodeKind.MUL: operator.mul,
    NodeKind.DIV: divide,
    NodeKind.MOD: modulo,
}


def arithmetic(kind: NodeKind, left, right):
    """Applies a numeric operator with float semantics at the edges of the float range."""
    apply = _ARITHMETIC[kind]
    try:
        result = apply(left, right)
    except OverflowError:
        # A huge integer met a float, or a quotient left the float range.
        result = apply(as_float(left), as_float(right))
    return clamp(result)


class Evaluator:
    """The CSP pseudocode execution engine."""
    def __init__(self, scopes: Optional[ScopeStack] = None,
                 functions: Optional[FunctionRegistry] = None,
                 checkpoint: Optional[Checkpoint] = None):
        self.scopes = scopes if scopes is not None else ScopeStack()
        self.functions = functions if functions is not None else FunctionRegistry(self.scopes)
        self.functions.evaluator = self
        # Awaited before every statement in a block; the controller suspends here.
        self.checkpoint = checkpoint
        # The statement currently executing, used to locate errors without a span.
        self.current_node: Optional[Node] = None
        self.printer = Printer()
        self._statement_handlers = self._create_statement_handlers()
        self._expression_handlers = self._create_expression_handlers()

    def _create_statement_handlers(self):
        return {
            NodeKind.PASS: self._do_pass,
            NodeKind.ASSIGNMENT: self._do_assignment,
            NodeKind.BLOCK: self._do_block,
            NodeKind.REPEAT: self._do_repeat,
            NodeKind.IF: self._do_if,
            NodeKind.FOREACH: self._do_foreach,
            NodeKind.RETURN: self._do_return,
        }

    def _create_expression_handlers(self):
        return {
            NodeKind.EVAL: self._eval_wrapper,
            NodeKind.ADD: self._eval_binary,
            NodeKind.SUB: self._eval_binary,
            NodeKind.MUL: self._eval_binary,
            NodeKind.DIV: self._eval_binary,
            NodeKind.MOD: self._eval_binary,
            NodeKind.AND: self._eval_binary,
            NodeKind.OR: self._eval_binary,
            NodeKind.NEGATE: self._eval_negate,
            NodeKind.NOT: self._eval_not,
            NodeKind.RELATION: self._eval_relation,
            NodeKind.IDENTIFIER: self._eval_identifier,
            NodeKind.LIST_ELEMENT: self._eval_list_element,
            NodeKind.LIST: self._eval_list,
            NodeKind.FUNCTION_CALL: self._eval_function_call,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def declare_procedures(self, declarations: Iterable[Node]):
        """Adds every PROCEDURE declaration to the function registry."""
        for decl in declarations:
            if not isinstance(decl, Node) or decl.kind is not NodeKind.PROCEDURE:
                raise InvalidOperation(f"Not a procedure declaration: {decl!r}", getattr(decl, 'span', None))
            name_node, param_nodes, body = decl.args
            params = [identifier_name(p) for p in (param_nodes or ())]
            self.functions.declare(identifier_name(name_node), params, body)

    async def execute(self, node: Node) -> Optional[ReturnSignal]:
        """Executes one statement. Returns a ReturnSignal if a RETURN was reached."""
        if not isinstance(node, Node):
            raise InvalidOperation(f"{node!r} is not a statement")
        self.current_node = node
        handler = self._statement_handlers.get(node.kind)
        if handler is not None:
            return await handler(node)
        if node.kind in self._expression_handlers:
            # An expression used as a statement, e.g. a bare procedure call.
            await self.evaluate(node)
            return None
        raise InvalidOperation(f"NO HANDLER: {node.kind.value}", node.span)

    async def evaluate(self, node: Any) -> Any:
        """Evaluates an expression node to a value."""
        if not isinstance(node, Node):
            # Literals are already in final form.
            if isinstance(node, (bool, int, float, str)):
                return node
            raise InvalidOperation(f"Cannot evaluate {node!r}")
        handler = self._expression_handlers.get(node.kind)
        if handler is None:
            raise InvalidOperation(f"Cannot evaluate {node.kind.value}", node.span)
        return await handler(node)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def _do_pass(self, node: Node):
        return None

    async def _do_assignment(self, node: Node):
        target, value_node = node.args
        match target.kind:
            case NodeKind.IDENTIFIER:
                value = await self.evaluate(value_node)
                self.scopes.resolve_or_create(identifier_name(target)).set(value)
            case NodeKind.LIST_ELEMENT:
                list_node, index_node = target.args
                index = await self.evaluate(index_node)
                value = await self.evaluate(value_node)
                ref = self.scopes.resolve_element(identifier_name(list_node), index, create=True, span=target.span)
                ref.set(value)
            case _:
                raise InvalidOperation(f"Cannot assign to {target.kind.value}", target.span)
        return None

    async def _do_block(self, node: Node) -> Optional[ReturnSignal]:
        for statement in node.args or ():
            if self.checkpoint is not None:
                await self.checkpoint(statement)
            result = await self.execute(statement)
            if isinstance(result, ReturnSignal):
                return result
        return None

    async def _do_repeat(self, node: Node) -> Optional[ReturnSignal]:
        header, body = node.args
        match header.kind:
            case NodeKind.TIMES:
                count = await self.evaluate(header.args)
                if not is_number(count) or (isinstance(count, float) and math.isnan(count)):
                    raise OperandTypeError(f"REPEAT needs a number of times, not {self.printer.pformat(count)}", header.span)
                if count < 0:
                    raise InvalidRepeatCount(count, header.span)
                i = 0
                while i < count:
                    result = await self.execute(body)
                    if isinstance(result, ReturnSignal):
                        return result
                    i += 1
                return None
            case NodeKind.UNTIL:
                condition = header.args
                done = await self.evaluate(condition)
                while not done:
                    result = await self.execute(body)
                    if isinstance(result, ReturnSignal):
                        return result
                    done = await self.evaluate(condition)
                return None
            case _:
                raise InvalidOperation("Unknown repeat type", node.span)

    async def _do_if(self, node: Node) -> Optional[ReturnSignal]:
        for condition, block in node.args:
            # A missing condition is the ELSE branch.
            if condition is None or await self.evaluate(condition):
                return await self.execute(block)
        return None

    async def _do_foreach(self, node: Node) -> Optional[ReturnSignal]:
        iter_node, list_node, body = node.args
        name = identifier_name(iter_node)
        items = await self.evaluate(list_node)
        if not isinstance(items, list):
            raise OperandTypeError(f"FOR EACH needs a list, not {self.printer.pformat(items)}", list_node.span if isinstance(list_node, Node) else node.span)
        for item in items:
            self.scopes.resolve_or_create(name).set(item)
            result = await self.execute(body)
            if isinstance(result, ReturnSignal):
                return result
        return None

    async def _do_return(self, node: Node) -> ReturnSignal:
        if node.args is None:
            return ReturnSignal()
        return ReturnSignal(await self.evaluate(node.args))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    async def _eval_wrapper(self, node: Node):
        inner = node.args
        if isinstance(inner, Node):
            return await self.evaluate(inner)
        if isinstance(inner, (bool, int, float, str)):
            return inner
        raise InvalidOperation(f"Cannot evaluate {inner!r}", node.span)

    async def _eval_binary(self, node: Node):
        left_node, right_node = node.args
        # Both sides are always evaluated, including for AND/OR.
        left = await self.evaluate(left_node)
        right = await self.evaluate(right_node)

        match node.kind:
            case NodeKind.AND:
                return bool(left) and bool(right)
            case NodeKind.OR:
                return bool(left) or bool(right)
            case NodeKind.ADD if isinstance(left, str) or isinstance(right, str):
                return self.printer.pformat(left) + self.printer.pformat(right)

        if not (is_number(left) and is_number(right)):
            raise OperandTypeError(
                f"Cannot apply {_SYMBOLS[node.kind]} to {self.printer.pformat(left)} "
                f"and {self.printer.pformat(right)}",
                node.span,
            )
        if node.kind not in _ARITHMETIC:
            raise InvalidOperation(f"Unknown operator {node.kind.value}", node.span)
        return arithmetic(node.kind, left, right)

    async def _eval_negate(self, node: Node):
        value = await self.evaluate(node.args)
        if not is_number(value):
            raise OperandTypeError(f"Cannot negate {self.printer.pformat(value)}", node.span)
        return -value

    async def _eval_not(self, node: Node):
        return not await self.evaluate(node.args)

    async def _eval_relation(self, node: Node):
        op, left_node, right_node = node.args
        compare = _RELATIONS.get(op)
        if compare is None:
            raise InvalidOperation(f"Unknown relation {op!r}", node.span)
        left = await self.evaluate(left_node)
        right = await self.evaluate(right_node)
        try:
            return compare(left, right)
        except TypeError:
            raise OperandTypeError(
                f"Cannot compare {self.printer.pformat(left)} {op} {self.printer.pformat(right)}",
                node.span,
            ) from None

    async def _eval_identifier(self, node: Node):
        name = identifier_name(node)
        ref = self.scopes.resolve(name)
        if ref is None:
            raise UndefinedVariable(name, node.span)
        return ref.get()

    async def _eval_list_element(self, node: Node):
        list_node, index_node = node.args
        name = identifier_name(list_node)
        index = await self.evaluate(index_node)
        ref = self.scopes.resolve_element(name, index, create=False, span=node.span)
        if ref is None:
            raise UndefinedList(name, node.span)
        return ref.get()

    async def _eval_list(self, node: Node) -> list:
        results = []
        for expr in node.args or ():
            results.append(await self.evaluate(expr))
        return results

    async def _eval_function_call(self, node: Node):
        name_node, arg_nodes = node.args
        name = identifier_name(name_node)
        # Arguments are evaluated left to right in the caller's frame.
        args: List[Any] = []
        for expr in arg_nodes or ():
            args.append(await self.evaluate(expr))
        return await self.functions.call(name, args, node)
