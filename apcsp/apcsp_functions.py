"""
The function registry: one namespace, living in the global frame, that holds
both host-provided builtins and the program's own procedures.
"""
import copy
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TYPE_CHECKING

from apcsp.apcsp_datatypes import Node, Plugin, ReturnSignal, merge_plugins
from apcsp.apcsp_errors import (
    ArityMismatch, EvaluationError, HostFunctionError, RunStopped, UnknownFunction
)
from apcsp.apcsp_scope import ScopeStack

if TYPE_CHECKING:
    from apcsp.apcsp_interpreter import Evaluator

logger = logging.getLogger(__name__)


class NativeFunction:
    """A host callable taking the ordered list of argument values."""
    def __init__(self, name: str, func: Callable):
        self.name = name
        self.func = func
        try:
            self.wants_registry = 'registry' in inspect.signature(func).parameters
        except (TypeError, ValueError):
            self.wants_registry = False

    def __repr__(self) -> str:
        return f"<NativeFunction {self.name}>"


class UserProcedure:
    """A PROCEDURE declared in the program: formal parameter names and a body."""
    def __init__(self, name: str, params: Sequence[str], body: Node):
        self.name = name
        self.params = tuple(params)
        self.body = body

    def __repr__(self) -> str:
        return f"<UserProcedure {self.name}({', '.join(self.params)})>"


class FunctionRegistry:
    """Maps names to NativeFunction or UserProcedure entries."""
    def __init__(self, scopes: ScopeStack):
        self.scopes = scopes
        self.entries: Dict[str, Any] = {}
        # Set by the Evaluator that owns this registry; runs procedure bodies.
        self.evaluator: Optional['Evaluator'] = None

    def __contains__(self, name: str) -> bool:
        return name in self.entries

    def names(self) -> List[str]:
        return list(self.entries.keys())

    def install(self, plugins: Iterable[Plugin]):
        """Merges plugins into the global frame, key by key; last writer wins."""
        merged = merge_plugins(*plugins)
        for name, func in merged.functions.items():
            self.entries[name] = NativeFunction(name, func)
        for name, value in merged.vars.items():
            # Each run mutates its own copy, never the plugin's starting value.
            self.scopes.globals.vars[name] = copy.deepcopy(value)
        logger.debug("installed %d host functions and %d host variables",
                     len(merged.functions), len(merged.vars))

    def declare(self, name: str, formal_params: Sequence[str], body: Node):
        self.entries[name] = UserProcedure(name, formal_params, body)
        logger.debug("declared procedure %s(%s)", name, ", ".join(formal_params))

    async def call(self, name: str, args: List[Any], call_node: Optional[Node] = None) -> Any:
        """Invokes `name` with already-evaluated arguments."""
        span = call_node.span if call_node is not None else None
        entry = self.entries.get(name)
        match entry:
            case UserProcedure():
                return await self._call_procedure(entry, args, span)
            case NativeFunction():
                return await self._call_native(entry, args, span)
            case _:
                raise UnknownFunction(name, span)

    async def _call_procedure(self, proc: UserProcedure, args: List[Any], span) -> Any:
        if len(args) != len(proc.params):
            raise ArityMismatch(proc.name, len(proc.params), len(args), span)
        if self.evaluator is None:
            raise RuntimeError("FunctionRegistry is not attached to an Evaluator")

        frame = self.scopes.push(f"{proc.name}()")
        for param, value in zip(proc.params, args):
            frame.vars[param] = value

        result = await self.evaluator.execute(proc.body)

        # Only reached on normal completion; a failing body leaves its frame
        # on the stack for the error report.
        self.scopes.pop()
        if isinstance(result, ReturnSignal):
            return result.value
        return None

    async def _call_native(self, native: NativeFunction, args: List[Any], span) -> Any:
        kwargs = {'registry': self} if native.wants_registry else {}
        try:
            result = native.func(list(args), **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except EvaluationError as e:
            if e.span is None:
                e.span = span
            raise
        except RunStopped:
            raise
        except Exception as e:
            raise HostFunctionError(f"{native.name}: {e}", span) from e
        return result
