import pytest

from apcsp.apcsp_errors import IndexOutOfRange, InvalidOperation, OperandTypeError
from apcsp.apcsp_scope import GLOBAL_LABEL, ScopeStack, to_list_index


def test_resolve_missing_name_returns_none():
    scopes = ScopeStack()
    assert scopes.resolve("x") is None


def test_resolve_or_create_creates_in_current_frame():
    scopes = ScopeStack()
    scopes.push("F()")
    ref = scopes.resolve_or_create("x", 5)
    assert ref.get() == 5
    assert "x" in scopes.current
    assert "x" not in scopes.globals
    scopes.pop()
    # The local disappears with its frame
    assert scopes.resolve("x") is None


def test_lookup_is_current_frame_then_global_only():
    scopes = ScopeStack()
    scopes.resolve_or_create("g", 1)
    scopes.push("CALLER()")
    scopes.resolve_or_create("local", 2)
    scopes.push("CALLEE()")
    # Globals are visible from any frame
    assert scopes.resolve("g").get() == 1
    # The caller's locals are not
    assert scopes.resolve("local") is None


def test_local_shadows_global_and_writes_reach_global_when_not_shadowed():
    scopes = ScopeStack()
    scopes.resolve_or_create("g", 1)
    scopes.push("F()")
    scopes.resolve_or_create("g").set(10)
    scopes.pop()
    assert scopes.globals.vars["g"] == 10

    scopes.push("G()")
    scopes.current.vars["g"] = "local"
    assert scopes.resolve("g").get() == "local"
    scopes.resolve("g").set("changed")
    scopes.pop()
    assert scopes.globals.vars["g"] == 10


def test_global_frame_cannot_be_popped():
    scopes = ScopeStack()
    with pytest.raises(InvalidOperation):
        scopes.pop()
    assert scopes.depth == 1
    assert scopes.globals.label == GLOBAL_LABEL


def test_element_write_creates_empty_list_and_appends_at_length_plus_one():
    scopes = ScopeStack()
    ref = scopes.resolve_element("items", 1, create=True)
    ref.set("a")
    assert scopes.globals.vars["items"] == ["a"]
    scopes.resolve_element("items", 1, create=True).set("b")
    assert scopes.globals.vars["items"] == ["b"]


def test_element_missing_list_without_create_is_none():
    scopes = ScopeStack()
    assert scopes.resolve_element("items", 1) is None


@pytest.mark.parametrize("index", [0, 4, -1])
def test_element_read_out_of_range(index):
    scopes = ScopeStack()
    scopes.resolve_or_create("items", [10, 20, 30])
    with pytest.raises(IndexOutOfRange):
        scopes.resolve_element("items", index).get()


def test_element_write_beyond_length_plus_one_fails():
    scopes = ScopeStack()
    scopes.resolve_or_create("items", [10])
    with pytest.raises(IndexOutOfRange):
        scopes.resolve_element("items", 3, create=True).set(1)


def test_element_of_non_list_is_type_error():
    scopes = ScopeStack()
    scopes.resolve_or_create("n", 3)
    with pytest.raises(OperandTypeError):
        scopes.resolve_element("n", 1).get()


def test_to_list_index_translates_once():
    assert to_list_index(1) == 0
    assert to_list_index(3.0) == 2
    with pytest.raises(IndexOutOfRange):
        to_list_index(1.5)
    with pytest.raises(IndexOutOfRange):
        to_list_index("1")
    with pytest.raises(IndexOutOfRange):
        to_list_index(True)


def test_snapshot_lists_frames_bottom_first():
    scopes = ScopeStack()
    scopes.resolve_or_create("g", 1)
    scopes.push("F()")
    scopes.resolve_or_create("a", 2)
    snap = scopes.snapshot()
    assert snap == [("Global", {"g": 1}), ("F()", {"a": 2})]


@pytest.mark.parametrize("index", [0.5, "1", True])
def test_bad_index_does_not_create_the_list(index):
    scopes = ScopeStack()
    with pytest.raises(IndexOutOfRange):
        scopes.resolve_element("fresh", index, create=True)
    assert scopes.resolve("fresh") is None
    assert scopes.snapshot() == [("Global", {})]
