"""
The two-tier variable store: a stack of frames where a name is looked up in
the current frame and then in the global frame (frame 0), and nowhere else.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from apcsp.apcsp_errors import IndexOutOfRange, InvalidOperation, OperandTypeError

logger = logging.getLogger(__name__)

GLOBAL_LABEL = "Global"


class ScopeFrame:
    """One scope's variables, plus the label shown in a stack display."""
    def __init__(self, label: str):
        self.label = label
        self.vars: Dict[str, Any] = {}

    def __contains__(self, name: str) -> bool:
        return name in self.vars

    def __repr__(self) -> str:
        keys = ', '.join(self.vars.keys())
        return f"<ScopeFrame {self.label} vars=[{keys}]>"


class VariableRef:
    """Accessor bound to one name in one frame.

    Do not keep a ref across a frame push/pop; resolve again instead.
    """
    __slots__ = ("frame", "name")

    def __init__(self, frame: ScopeFrame, name: str):
        self.frame = frame
        self.name = name

    def get(self) -> Any:
        return self.frame.vars[self.name]

    def set(self, value: Any):
        self.frame.vars[self.name] = value


class ElementRef:
    """Accessor for one element of a list variable.

    `index` is already 0-based; the 1-based surface index is translated once,
    when the ref is built, so reads and writes agree on which slot they touch.
    """
    __slots__ = ("var", "index", "span")

    def __init__(self, var: VariableRef, index: int, span=None):
        self.var = var
        self.index = index
        self.span = span

    def _list(self) -> list:
        lst = self.var.get()
        if not isinstance(lst, list):
            raise OperandTypeError(f"{self.var.name} is not a list", self.span)
        return lst

    def get(self) -> Any:
        lst = self._list()
        if not 0 <= self.index < len(lst):
            raise IndexOutOfRange(
                f"Index {self.index + 1} is outside list {self.var.name} of length {len(lst)}",
                self.span,
            )
        return lst[self.index]

    def set(self, value: Any):
        lst = self._list()
        # Writing one past the end appends, so a fresh list can be filled from index 1.
        if self.index == len(lst):
            lst.append(value)
            return
        if not 0 <= self.index < len(lst):
            raise IndexOutOfRange(
                f"Index {self.index + 1} is outside list {self.var.name} of length {len(lst)}",
                self.span,
            )
        lst[self.index] = value


def to_list_index(index: Any, span=None) -> int:
    """Translates a 1-based surface index into a 0-based Python index."""
    if isinstance(index, bool) or not isinstance(index, (int, float)):
        raise IndexOutOfRange(f"{index!r} is not a valid list index", span)
    if isinstance(index, float):
        if not index.is_integer():
            raise IndexOutOfRange(f"{index!r} is not a valid list index", span)
        index = int(index)
    return index - 1


class ScopeStack:
    """The frame stack for one run. Frame 0 holds the globals and is never popped."""
    def __init__(self):
        self.frames: List[ScopeFrame] = [ScopeFrame(GLOBAL_LABEL)]

    @property
    def globals(self) -> ScopeFrame:
        return self.frames[0]

    @property
    def current(self) -> ScopeFrame:
        return self.frames[-1]

    @property
    def depth(self) -> int:
        return len(self.frames)

    def push(self, label: str) -> ScopeFrame:
        frame = ScopeFrame(label)
        self.frames.append(frame)
        return frame

    def pop(self) -> ScopeFrame:
        if len(self.frames) == 1:
            raise InvalidOperation("The global frame cannot be popped")
        return self.frames.pop()

    def _find(self, name: str) -> Optional[ScopeFrame]:
        # Current frame first, then the global frame; no other frame is visible.
        if name in self.current.vars:
            return self.current
        if name in self.globals.vars:
            return self.globals
        return None

    def resolve(self, name: str) -> Optional[VariableRef]:
        frame = self._find(name)
        if frame is None:
            return None
        return VariableRef(frame, name)

    def resolve_or_create(self, name: str, initial: Any = None) -> VariableRef:
        frame = self._find(name)
        if frame is None:
            frame = self.current
            frame.vars[name] = initial
            logger.debug("created variable %s in frame %s", name, frame.label)
        return VariableRef(frame, name)

    def resolve_element(self, name: str, index: Any, create: bool = False, span=None) -> Optional[ElementRef]:
        """Finds a list variable with the usual two-tier search, then selects an element.

        With `create`, a missing list variable is created in the current frame
        holding an empty list.
        """
        # A bad index fails before a missing list gets created.
        position = to_list_index(index, span)
        if create:
            var = self.resolve_or_create(name, [])
        else:
            var = self.resolve(name)
            if var is None:
                return None
        return ElementRef(var, position, span)

    def snapshot(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Frame labels and a shallow copy of their variables, bottom frame first."""
        return [(f.label, dict(f.vars)) for f in self.frames]
