"""
A printer for CSP pseudocode values and call stack snapshots.
"""
import math


class Printer:
    """Formats runtime values the way the language shows them to students."""

    def __init__(self, indent_width=2, quote_strings=False):
        self._indent_char = " " * indent_width
        self._quote_strings = quote_strings
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, list):
            return self._pformat_list
        if isinstance(obj, str):
            return self._pformat_str
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_float,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
        }

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_float(self, obj, level):
        if math.isnan(obj):
            return "NaN"
        if math.isinf(obj):
            return "Infinity" if obj > 0 else "-Infinity"
        # Whole numbers print without a trailing '.0' (4 / 2 shows as 2).
        if obj.is_integer():
            return str(int(obj))
        return repr(obj)

    def _pformat_str(self, obj, level):
        if self._quote_strings:
            return f'"{obj}"'
        return obj

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, level):
        return 'none'

    def _pformat_list(self, obj, level):
        return "[" + ", ".join(self.pformat(item, level + 1) for item in obj) + "]"

    def pformat_stack(self, snapshot) -> str:
        """Formats `(label, vars)` frames, innermost frame first, like a call stack view."""
        quoting = Printer(quote_strings=True)
        lines = []
        for label, variables in reversed(list(snapshot)):
            lines.append(f"{label}:")
            for name, value in variables.items():
                lines.append(f"{self._indent_char}{name} = {quoting.pformat(value)}")
        return "\n".join(lines)
