"""
Error taxonomy for the CSP pseudocode runtime.

Every error raised while evaluating a program derives from EvaluationError
and carries the source span of the node that caused it.
"""

from typing import Optional

from apcsp.apcsp_datatypes import SourceSpan


class EvaluationError(Exception):
    """Base class for errors raised while a program runs."""
    kind = "EvaluationError"

    def __init__(self, message: str, span: Optional[SourceSpan] = None):
        super().__init__(message)
        self.message = message
        self.span = span

    def __str__(self) -> str:
        if self.span is not None:
            return f"{self.message} at {self.span.describe()}"
        return self.message


class UndefinedVariable(EvaluationError):
    kind = "UndefinedVariable"

    def __init__(self, name: str, span: Optional[SourceSpan] = None):
        super().__init__(f"No such variable {name}", span)
        self.name = name


class UndefinedList(EvaluationError):
    kind = "UndefinedList"

    def __init__(self, name: str, span: Optional[SourceSpan] = None):
        super().__init__(f"No such list {name}", span)
        self.name = name


class UnknownFunction(EvaluationError):
    kind = "UnknownFunction"

    def __init__(self, name: str, span: Optional[SourceSpan] = None):
        super().__init__(f"No such procedure {name}", span)
        self.name = name


class ArityMismatch(EvaluationError):
    kind = "ArityMismatch"

    def __init__(self, name: str, expected: int, got: int, span: Optional[SourceSpan] = None):
        super().__init__(
            f"Number of actual and formal parameters differ in call to {name} "
            f"(expected {expected}, got {got})",
            span,
        )
        self.name = name
        self.expected = expected
        self.got = got


class InvalidRepeatCount(EvaluationError):
    kind = "InvalidRepeatCount"

    def __init__(self, count, span: Optional[SourceSpan] = None):
        super().__init__(f"Invalid repeat limit {count}", span)
        self.count = count


class InvalidOperation(EvaluationError):
    """A node the evaluator cannot handle; a parser/evaluator contract violation."""
    kind = "InvalidOperation"


class HostFunctionError(EvaluationError):
    """A builtin rejected its arguments or could not complete."""
    kind = "HostFunctionError"


class IndexOutOfRange(EvaluationError):
    kind = "IndexOutOfRange"


class OperandTypeError(EvaluationError):
    """An operator was applied to values it does not support."""
    kind = "OperandTypeError"


class ParseDelegationError(Exception):
    """A failure reported by the external parser, with its location."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        self.message = message
        self.line = line
        self.col = col
        if line is not None:
            message = f"{message} line: {line} column: {col}"
        super().__init__(message)


class NotRunning(Exception):
    """Step or continue was requested while no program is running."""

    def __init__(self, message: str = "Not Running"):
        super().__init__(message)


class RunStopped(Exception):
    """Raised at a statement boundary once a stop has been requested."""

    def __init__(self):
        super().__init__("STOPPED")
