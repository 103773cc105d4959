"""Small constructors for building ASTs in tests without a parser."""
import asyncio

from apcsp.apcsp_datatypes import Node, NodeKind as K, Program, SourceSpan


def at(line, col=1):
    return SourceSpan(line, col, line, col + 1)


def lit(value, line=None):
    return Node(K.EVAL, value, at(line) if line else None)


def expr(x):
    return x if isinstance(x, Node) else lit(x)


def ident(name, line=None):
    return Node(K.IDENTIFIER, name, at(line) if line else None)


def elem(name, index, line=None):
    return Node(K.LIST_ELEMENT, (ident(name), expr(index)), at(line) if line else None)


def lst(*items):
    return Node(K.LIST, tuple(expr(i) for i in items))


def assign(target, value, line=None):
    if isinstance(target, str):
        target = ident(target)
    return Node(K.ASSIGNMENT, (target, expr(value)), at(line) if line else None)


def binop(kind, left, right, line=None):
    return Node(kind, (expr(left), expr(right)), at(line) if line else None)


def add(l, r, line=None): return binop(K.ADD, l, r, line)
def sub(l, r, line=None): return binop(K.SUB, l, r, line)
def mul(l, r, line=None): return binop(K.MUL, l, r, line)
def div(l, r, line=None): return binop(K.DIV, l, r, line)
def mod(l, r, line=None): return binop(K.MOD, l, r, line)
def and_(l, r): return binop(K.AND, l, r)
def or_(l, r): return binop(K.OR, l, r)
def neg(x): return Node(K.NEGATE, expr(x))
def not_(x): return Node(K.NOT, expr(x))


def rel(op, left, right, line=None):
    return Node(K.RELATION, (op, expr(left), expr(right)), at(line) if line else None)


def call(name, *args, line=None):
    return Node(K.FUNCTION_CALL, (ident(name), tuple(expr(a) for a in args)), at(line) if line else None)


def block(*statements):
    return Node(K.BLOCK, tuple(statements))


def repeat_times(count, *body, line=None):
    return Node(K.REPEAT, (Node(K.TIMES, expr(count), at(line) if line else None), block(*body)), at(line) if line else None)


def repeat_until(condition, *body):
    return Node(K.REPEAT, (Node(K.UNTIL, expr(condition)), block(*body)))


def if_(*branches):
    """Each branch is `(condition_or_None, [statements])`."""
    return Node(K.IF, tuple((None if c is None else expr(c), block(*body)) for c, body in branches))


def foreach(name, source, *body):
    return Node(K.FOREACH, (ident(name), expr(source), block(*body)))


def ret(value=None, line=None):
    return Node(K.RETURN, None if value is None else expr(value), at(line) if line else None)


def proc(name, params, *body):
    return Node(K.PROCEDURE, (ident(name), tuple(ident(p) for p in params), block(*body)))


def program(*statements, functions=(), source=None):
    return Program(statements=tuple(statements), functions=tuple(functions), source=source)


async def wait_until(predicate, timeout=2.0):
    """Polls `predicate` on the event loop until it is true."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_poll(), timeout)
