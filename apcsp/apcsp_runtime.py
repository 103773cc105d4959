# apcsp_runtime.py

import asyncio
import inspect
import logging
import math
import os
import random
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from apcsp.apcsp_datatypes import Node, Plugin, Program, ReturnSignal, SourceSpan, merge_plugins
from apcsp.apcsp_errors import HostFunctionError, NotRunning, RunStopped
from apcsp.apcsp_functions import FunctionRegistry
from apcsp.apcsp_interpreter import Evaluator, is_number
from apcsp.apcsp_printer import Printer
from apcsp.apcsp_scope import ScopeStack

logger = logging.getLogger(__name__)

DEFAULT_MAX_SPEED = 2000

# ===================================================================
# 1. Configuration
# ===================================================================


def _env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("ignoring %s=%r: not an integer", name, raw)
        return None


@dataclass
class RunConfig:
    """Interpreter settings; unset fields fall back to APCSP_* environment variables."""
    speed: Optional[int] = None
    max_speed: int = DEFAULT_MAX_SPEED
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> 'RunConfig':
        max_speed = _env_int("APCSP_MAX_SPEED")
        return cls(
            speed=_env_int("APCSP_SPEED"),
            max_speed=max_speed if max_speed and max_speed >= 1 else DEFAULT_MAX_SPEED,
            seed=_env_int("APCSP_SEED"),
        )


# ===================================================================
# 2. Console and core builtins
# ===================================================================


class Console:
    """Collects DISPLAY output and answers INPUT prompts for one interpreter."""
    def __init__(self, input_provider: Optional[Callable] = None):
        self.input_provider = input_provider
        self.printer = Printer()
        self.text = ""
        self.last_display: Optional[str] = None
        self.side_effects: List[Dict] = []

    def clear(self):
        self.text = ""
        self.last_display = None
        self.side_effects = []

    def display(self, *values):
        message = " ".join(self.printer.pformat(v) for v in values)
        self.last_display = message
        # Every DISPLAY is followed by a space, so consecutive calls share a line.
        self.text += message + " "
        self.side_effects.append({'topics': ['stdout'], 'message': message})

    async def prompt(self, message: Optional[str] = None) -> Optional[str]:
        if self.input_provider is None:
            raise HostFunctionError("INPUT is not available in this environment.")
        if not message and self.last_display:
            message = self.last_display
        answer = self.input_provider(message)
        if inspect.isawaitable(answer):
            answer = await answer
        return answer


def _to_number(text: str):
    """Converts an INPUT answer to a number when it reads as one."""
    stripped = text.strip()
    if not stripped:
        return text
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        value = float(stripped)
    except ValueError:
        return text
    return value


def _whole(value) -> Optional[int]:
    if isinstance(value, bool) or not is_number(value):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        return int(value)
    return value


class CoreLib:
    """Python implementations of the builtins every program can call."""
    def __init__(self, console: Console, rng: Optional[random.Random] = None):
        self.console = console
        self.random = rng or random.Random()

    def as_plugin(self) -> Plugin:
        """Exposes every `_name` method as the builtin `NAME`."""
        functions = {}
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                functions[name[1:].upper()] = member
        return Plugin(functions=functions)

    def _display(self, params):
        self.console.display(*params)

    async def _input(self, params):
        got = await self.console.prompt(params[0] if params else None)
        if got is None:
            raise HostFunctionError("CANCELED")
        return _to_number(got)

    def _random(self, params):
        if len(params) < 2 or not is_number(params[0]) or not is_number(params[1]):
            raise HostFunctionError("RANDOM requires two numbers to specify a range to choose from.")
        low, high = params[0], params[1]
        if high < low:
            raise HostFunctionError("RANDOM requires the first number to be no larger than the second.")
        span = high - low + 1
        return math.floor(self.random.random() * span + low)

    def _length(self, params):
        if not params or not isinstance(params[0], list):
            raise HostFunctionError("LENGTH requires a list to inspect.")
        return len(params[0])

    def _append(self, params):
        if not params or not isinstance(params[0], list):
            raise HostFunctionError("APPEND requires a list to append to.")
        if len(params) < 2:
            raise HostFunctionError("Nothing to APPEND.")
        params[0].append(params[1])

    def _insert(self, params):
        if not params or not isinstance(params[0], list):
            raise HostFunctionError("INSERT requires a list to insert into.")
        if len(params) < 2 or not is_number(params[1]):
            raise HostFunctionError("INSERT requires an index to insert at.")
        index = _whole(params[1])
        if index is None or index < 1 or index > len(params[0]) + 1:
            raise HostFunctionError("INSERT requires a valid location to insert at.")
        if len(params) < 3:
            raise HostFunctionError("INSERT requires something to insert.")
        params[0].insert(index - 1, params[2])

    def _remove(self, params):
        if not params or not isinstance(params[0], list):
            raise HostFunctionError("REMOVE requires a list to remove from.")
        if len(params) < 2 or not is_number(params[1]):
            raise HostFunctionError("REMOVE requires an index to remove.")
        index = _whole(params[1])
        if index is None or index < 1 or index > len(params[0]):
            raise HostFunctionError("REMOVE requires a valid location to remove from.")
        del params[0][index - 1]


# Editor snippets for the language's own keywords.
LANGUAGE_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("<-", "<-"),
    ("IF", "IF ( )\n{\n\n}"),
    ("ELSE", "ELSE\n{\n\n}"),
    ("NOT", "NOT"),
    ("AND", "AND"),
    ("OR", "OR"),
    ("REPEAT TIMES", "REPEAT _ TIMES\n{\n\n}"),
    ("REPEAT UNTIL", "REPEAT UNTIL ( )\n{\n\n}"),
    ("FOR EACH", "FOR EACH item IN list\n{\n\n}"),
    ("PROCEDURE", "PROCEDURE name ( )\n{\n\n}"),
)


# ===================================================================
# 3. Execution
# ===================================================================


class RunState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


_ACTIVE_STATES = (RunState.RUNNING, RunState.PAUSED, RunState.STOPPING)


@dataclass
class ExecutionResult:
    """The structured result of one run."""
    status: Literal['completed', 'failed', 'stopped']
    value: Any = None
    error: Optional[BaseException] = None
    error_message: Optional[str] = None
    error_span: Optional[SourceSpan] = None
    call_stack: List[str] = field(default_factory=list)
    output: str = ""
    side_effects: List[Dict] = field(default_factory=list)
    source: Optional[str] = None

    def format_error(self) -> str:
        """Formats the error with its location, source context and call stack."""
        if self.status != 'failed':
            return ""
        kind = getattr(self.error, 'kind', type(self.error).__name__ if self.error else "Error")
        msg = f"{kind}: {self.error_message or 'Unknown error'}"
        if self.error_span is not None:
            msg = f"Error on {self.error_span.describe()}: {msg}"
            context = _source_context(self.source, self.error_span.start_line, self.error_span.start_col)
            if context:
                msg = f"{msg}\n{context}"
        if len(self.call_stack) > 1:
            msg = f"{msg}\nCall stack: {' > '.join(self.call_stack)}"
        return msg


def _source_context(source: Optional[str], line: int, col: Optional[int], radius: int = 2) -> str:
    if not source:
        return ""
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        ln = str(i).rjust(width)
        out.append(f"{prefix} {ln} | {lines[i - 1]}")
        if i == line and col is not None:
            caret = " " * max(col - 1, 0)
            out.append(f"  {' ' * width} | {caret}^")
    return "\n".join(out)


class Interpreter:
    """Runs a parsed Program continuously or one statement at a time.

    Suspension only happens at statement boundaries: before each top-level
    statement and before each statement of a block. `request_step`,
    `request_continue` and `request_stop` wake a suspended run directly.
    """
    def __init__(self, *, speed: Optional[int] = None, max_speed: Optional[int] = None,
                 seed: Optional[int] = None, input_provider: Optional[Callable] = None,
                 on_suspend: Optional[Callable] = None, config: Optional[RunConfig] = None):
        config = config or RunConfig.from_env()
        self.max_speed = max_speed if max_speed is not None else config.max_speed
        self.console = Console(input_provider)
        self.corelib = CoreLib(self.console, random.Random(seed if seed is not None else config.seed))
        self.on_suspend = on_suspend
        self.printer = Printer()

        self.program: Optional[Program] = None
        self.evaluator: Optional[Evaluator] = None
        self.last_result: Optional[ExecutionResult] = None
        self.current_node: Optional[Node] = None

        self._state = RunState.IDLE
        self._speed: Optional[int] = None
        self._stepping = False
        self._step_pending = False
        self._stop_requested = False
        # Created per run so an interpreter can be reused across event loops.
        self._signal: Optional[asyncio.Event] = None
        self._finished: Optional[asyncio.Event] = None

        initial_speed = speed if speed is not None else config.speed
        if initial_speed is not None:
            self.set_speed(initial_speed)

    # --- State ---

    @property
    def state(self) -> RunState:
        return self._state

    def current_run_state(self) -> RunState:
        return self._state

    @property
    def stepping(self) -> bool:
        return self._stepping

    @property
    def running(self) -> bool:
        return self._state in _ACTIVE_STATES

    @property
    def speed(self) -> Optional[int]:
        return self._speed

    def _set_state(self, state: RunState):
        if state is not self._state:
            logger.debug("run state %s -> %s", self._state.value, state.value)
            self._state = state

    def set_speed(self, count: int):
        """Sets the delay between statements (milliseconds) when running continuously."""
        self._speed = min(max(count, 1), self.max_speed)

    def snapshot(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Frame labels and variables of the current (or last) run, global frame first."""
        if self.evaluator is None:
            return []
        return self.evaluator.scopes.snapshot()

    def globals(self) -> Dict[str, Any]:
        if self.evaluator is None:
            return {}
        return dict(self.evaluator.scopes.globals.vars)

    def format_stack(self) -> str:
        return self.printer.pformat_stack(self.snapshot())

    @staticmethod
    def keywords(plugins: Sequence[Plugin] = ()) -> List[Tuple[str, str]]:
        """Keyword entries for editor assistance, as `(label, snippet)` pairs.

        Language keywords come first, then every host variable, then every
        host function (shown as `NAME()`).
        """
        merged = merge_plugins(CoreLib(Console()).as_plugin(), *plugins)
        words = list(LANGUAGE_KEYWORDS)
        for name in merged.vars:
            words.append((name, name))
        for name in merged.functions:
            words.append((f"{name}()", f"{name}()"))
        return words

    # --- Control requests ---

    def request_step(self):
        if self._state not in (RunState.RUNNING, RunState.PAUSED):
            raise NotRunning()
        self._stepping = True
        self._step_pending = True
        self._signal.set()

    def request_continue(self):
        if self._state not in (RunState.RUNNING, RunState.PAUSED):
            raise NotRunning()
        self._stepping = False
        self._step_pending = False
        self._signal.set()

    async def request_stop(self) -> RunState:
        """Asks the run to stop at its next statement boundary and waits until it has."""
        if self._state not in _ACTIVE_STATES:
            return self._state
        logger.debug("stop requested")
        self._stop_requested = True
        self._set_state(RunState.STOPPING)
        self._signal.set()
        await self._finished.wait()
        return self._state

    # --- Running ---

    async def start(self, program: Program, plugins: Iterable[Plugin] = (),
                    single_step: bool = False) -> ExecutionResult:
        """Runs `program` from a fresh global frame and reports how the run ended."""
        if self.running:
            await self.request_stop()

        self.program = program
        self.console.clear()
        self.current_node = None
        self._stepping = single_step
        self._step_pending = False
        self._stop_requested = False
        self._signal = asyncio.Event()
        self._finished = asyncio.Event()

        scopes = ScopeStack()
        functions = FunctionRegistry(scopes)
        self.evaluator = Evaluator(scopes, functions, checkpoint=self._checkpoint)
        self._set_state(RunState.RUNNING)
        logger.debug("starting run: %d statements, %d procedures, single_step=%s",
                     len(program.statements), len(program.functions), single_step)
        try:
            result = await self._run(program, [self.corelib.as_plugin(), *plugins])
        except asyncio.CancelledError:
            self._stepping = False
            self._set_state(RunState.STOPPED)
            raise
        finally:
            self._finished.set()
        self.last_result = result
        return result

    async def _run(self, program: Program, plugins: List[Plugin]) -> ExecutionResult:
        value = None
        try:
            self.evaluator.functions.install(plugins)
            self.evaluator.declare_procedures(program.functions)
            for statement in program.statements:
                await self._checkpoint(statement)
                signal = await self.evaluator.execute(statement)
                if isinstance(signal, ReturnSignal):
                    # A top-level RETURN ends the run normally.
                    value = signal.value
                    break
        except RunStopped:
            return self._finish('stopped')
        except Exception as e:
            # Stop wins over an error from the statement that was in flight.
            if self._stop_requested:
                logger.debug("discarding %s raised while stopping", type(e).__name__)
                return self._finish('stopped')
            return self._finish('failed', error=e)
        if self._stop_requested:
            return self._finish('stopped')
        return self._finish('completed', value=value)

    def _finish(self, status: str, value: Any = None, error: Optional[BaseException] = None) -> ExecutionResult:
        self._stepping = False
        result = ExecutionResult(
            status=status,
            value=value,
            output=self.console.text,
            side_effects=list(self.console.side_effects),
            source=self.program.source if self.program else None,
        )
        if error is not None:
            span = getattr(error, 'span', None)
            if span is None and self.evaluator.current_node is not None:
                span = self.evaluator.current_node.span
            result.error = error
            result.error_message = getattr(error, 'message', None) or str(error) or type(error).__name__
            result.error_span = span
            result.call_stack = [label for label, _ in self.snapshot()]
            logger.debug("run failed: %s", result.error_message)
        match status:
            case 'completed':
                self._set_state(RunState.COMPLETED)
            case 'stopped':
                self._set_state(RunState.STOPPED)
            case 'failed':
                self._set_state(RunState.FAILED)
        return result

    async def _checkpoint(self, node: Node):
        """Statement boundary: honour stop, single-step and speed before `node` runs."""
        self.current_node = node
        waited = False
        while True:
            if self._stop_requested:
                raise RunStopped()
            if self._stepping:
                if self._step_pending:
                    self._step_pending = False
                    break
                self._set_state(RunState.PAUSED)
                await self._notify_suspend(node)
                await self._wait(None)
                waited = True
                continue
            if self._speed is not None and not waited:
                await self._notify_suspend(node)
                await self._wait(self._speed / 1000)
                waited = True
                continue
            break
        if self._state is RunState.PAUSED:
            self._set_state(RunState.RUNNING)
        if not waited:
            # Let other tasks (a stop request, a UI) run between statements.
            await asyncio.sleep(0)

    async def _wait(self, timeout: Optional[float]):
        self._signal.clear()
        try:
            await asyncio.wait_for(self._signal.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _notify_suspend(self, node: Node):
        if self.on_suspend is None:
            return
        result = self.on_suspend(node, self)
        if inspect.isawaitable(result):
            await result
