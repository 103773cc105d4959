import logging

from apcsp.apcsp_datatypes import Node, NodeKind, Plugin, Program, ReturnSignal, SourceSpan, merge_plugins
from apcsp.apcsp_errors import (
    ArityMismatch, EvaluationError, HostFunctionError, IndexOutOfRange, InvalidOperation,
    InvalidRepeatCount, NotRunning, OperandTypeError, ParseDelegationError, UndefinedList,
    UndefinedVariable, UnknownFunction
)
from apcsp.apcsp_interpreter import Evaluator
from apcsp.apcsp_runtime import ExecutionResult, Interpreter, RunConfig, RunState
from apcsp.apcsp_serialize import load_program, loads_program
from apcsp.apcsp_transformer import CspTransformer, parse_program

logging.getLogger(__name__).addHandler(logging.NullHandler())
