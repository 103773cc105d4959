import math

import pytest

from apcsp.apcsp_printer import Printer


@pytest.mark.parametrize("value, expected", [
    (3, "3"),
    (2.0, "2"),
    (2.5, "2.5"),
    (math.inf, "Infinity"),
    (-math.inf, "-Infinity"),
    (math.nan, "NaN"),
    (True, "true"),
    (False, "false"),
    (None, "none"),
    ("text", "text"),
    ([1, "a", [2.0, False]], "[1, a, [2, false]]"),
    ([], "[]"),
])
def test_pformat(value, expected):
    assert Printer().pformat(value) == expected


def test_quoted_strings():
    assert Printer(quote_strings=True).pformat(["a", 1]) == '["a", 1]'


def test_pformat_stack_innermost_first():
    snapshot = [("Global", {"x": 1, "name": "bo"}), ("F()", {"n": [1, 2]})]
    assert Printer(indent_width=4).pformat_stack(snapshot) == (
        "F():\n"
        "    n = [1, 2]\n"
        "Global:\n"
        "    x = 1\n"
        '    name = "bo"'
    )
