import asyncio

import pytest

from apcsp.apcsp_datatypes import Node, NodeKind as K, Plugin, SourceSpan
from apcsp.apcsp_errors import InvalidOperation, NotRunning, UndefinedVariable
from apcsp.apcsp_runtime import Interpreter, RunConfig, RunState

from program_builders import (
    add, assign, at, call, ident, lit, lst, proc, program, repeat_until, ret, wait_until
)


def make_interpreter(**kwargs):
    kwargs.setdefault("config", RunConfig())
    return Interpreter(**kwargs)


def forever():
    return repeat_until(False, assign("n", add(ident("n"), 1)))


@pytest.mark.asyncio
async def test_completed_run_reports_value_and_state():
    interp = make_interpreter()
    assert interp.state is RunState.IDLE
    res = await interp.start(program(assign("x", 2), ret(add(ident("x"), 1))))
    assert res.status == "completed"
    assert res.value == 3
    assert interp.current_run_state() is RunState.COMPLETED
    assert not interp.running
    assert interp.last_result is res


@pytest.mark.asyncio
async def test_failed_run_formats_error_with_source_and_stack():
    source = "PROCEDURE F ()\n{\n  RETURN nope\n}\nx <- F ()\n"
    missing = Node(K.IDENTIFIER, "nope", SourceSpan(3, 10, 3, 14))
    prog = program(
        assign("x", call("F", line=5), line=5),
        functions=[proc("F", [], Node(K.RETURN, missing, at(3, 3)))],
        source=source,
    )
    interp = make_interpreter()
    res = await interp.start(prog)

    assert res.status == "failed"
    assert interp.state is RunState.FAILED
    assert isinstance(res.error, UndefinedVariable)
    msg = res.format_error()
    assert msg.startswith("Error on line 3, col 10: UndefinedVariable: No such variable nope")
    assert "> 3 |   RETURN nope" in msg
    assert "^" in msg
    assert "Call stack: Global > F()" in msg


@pytest.mark.asyncio
async def test_error_without_span_falls_back_to_current_statement():
    interp = make_interpreter()
    res = await interp.start(program(assign("x", lit([1, 2]), line=4)))
    assert isinstance(res.error, InvalidOperation)
    assert res.error_span.start_line == 4


@pytest.mark.asyncio
async def test_output_so_far_is_kept_on_failure():
    interp = make_interpreter()
    res = await interp.start(program(call("DISPLAY", "before"), ret(ident("nope"))))
    assert res.status == "failed"
    assert res.output == "before "
    assert res.side_effects == [{'topics': ['stdout'], 'message': 'before'}]


@pytest.mark.asyncio
async def test_single_step_pauses_before_each_statement():
    interp = make_interpreter()
    prog = program(assign("a", 1), assign("b", 2), ret(add(ident("a"), ident("b"))))
    task = asyncio.create_task(interp.start(prog, single_step=True))

    await wait_until(lambda: interp.state is RunState.PAUSED)
    assert interp.stepping
    assert interp.globals() == {}

    interp.request_step()
    await wait_until(lambda: "a" in interp.globals() and interp.state is RunState.PAUSED)
    assert "b" not in interp.globals()

    interp.request_continue()
    res = await task
    assert res.status == "completed"
    assert res.value == 3
    assert not interp.stepping


@pytest.mark.asyncio
async def test_step_and_continue_require_a_run():
    interp = make_interpreter()
    with pytest.raises(NotRunning):
        interp.request_step()
    with pytest.raises(NotRunning):
        interp.request_continue()
    await interp.start(program(assign("x", 1)))
    with pytest.raises(NotRunning, match="Not Running"):
        interp.request_step()


@pytest.mark.asyncio
async def test_stop_interrupts_a_continuous_infinite_loop():
    interp = make_interpreter()
    task = asyncio.create_task(interp.start(program(assign("n", 0), forever())))
    await wait_until(lambda: interp.globals().get("n", 0) > 10)

    state = await interp.request_stop()
    assert state is RunState.STOPPED
    res = await task
    assert res.status == "stopped"


@pytest.mark.asyncio
async def test_stop_while_paused():
    interp = make_interpreter()
    task = asyncio.create_task(interp.start(program(assign("x", 1)), single_step=True))
    await wait_until(lambda: interp.state is RunState.PAUSED)
    assert await interp.request_stop() is RunState.STOPPED
    res = await task
    assert res.status == "stopped"
    assert interp.globals() == {}


@pytest.mark.asyncio
async def test_stop_wins_over_error_from_statement_in_flight():
    interp = make_interpreter()
    pending = []

    async def explode(params):
        pending.append(asyncio.ensure_future(interp.request_stop()))
        await asyncio.sleep(0)
        raise ValueError("too late")

    res = await interp.start(program(call("EXPLODE")), [Plugin(functions={"EXPLODE": explode})])
    await asyncio.gather(*pending)
    assert res.status == "stopped"
    assert res.error is None
    assert interp.state is RunState.STOPPED


@pytest.mark.asyncio
async def test_request_stop_when_idle_returns_current_state():
    interp = make_interpreter()
    assert await interp.request_stop() is RunState.IDLE


def test_set_speed_clamps():
    interp = make_interpreter()
    assert interp.speed is None
    interp.set_speed(0)
    assert interp.speed == 1
    interp.set_speed(10 ** 6)
    assert interp.speed == 2000
    interp.set_speed(250)
    assert interp.speed == 250
    assert make_interpreter(max_speed=50, speed=100).speed == 50


@pytest.mark.asyncio
async def test_speed_delay_calls_on_suspend_at_each_boundary():
    seen = []
    interp = make_interpreter(speed=1, on_suspend=lambda node, it: seen.append(node.kind))
    res = await interp.start(program(assign("a", 1), assign("b", 2), ret(ident("b"))))
    assert res.value == 2
    assert seen == [K.ASSIGNMENT, K.ASSIGNMENT, K.RETURN]


@pytest.mark.asyncio
async def test_continue_with_speed_after_stepping():
    interp = make_interpreter(speed=1)
    task = asyncio.create_task(interp.start(program(assign("a", 1), assign("b", 2)), single_step=True))
    await wait_until(lambda: interp.state is RunState.PAUSED)
    interp.request_continue()
    res = await task
    assert res.status == "completed"
    assert interp.globals() == {"a": 1, "b": 2}


@pytest.mark.asyncio
async def test_rerun_is_deterministic_and_starts_fresh():
    interp = make_interpreter()
    prog = program(
        call("DISPLAY", "hi"),
        assign("xs", lst(1, 2)),
        call("APPEND", ident("xs"), 3),
        call("DISPLAY", ident("xs")),
    )
    first = await interp.start(prog)
    first_globals = interp.globals()
    second = await interp.start(prog)
    assert first.output == second.output == "hi [1, 2, 3] "
    assert interp.globals() == first_globals == {"xs": [1, 2, 3]}


@pytest.mark.asyncio
async def test_seeded_random_repeats():
    prog = program(ret(lst(call("RANDOM", 1, 100), call("RANDOM", 1, 100), call("RANDOM", 1, 100))))
    a = await make_interpreter(seed=7).start(prog)
    b = await make_interpreter(seed=7).start(prog)
    assert a.value == b.value
    assert all(1 <= v <= 100 for v in a.value)


@pytest.mark.asyncio
async def test_start_while_running_stops_previous_run():
    interp = make_interpreter()
    first = asyncio.create_task(interp.start(program(assign("n", 0), forever())))
    await wait_until(lambda: interp.globals().get("n", 0) > 3)

    res = await interp.start(program(ret("second")))
    assert res.value == "second"
    assert (await first).status == "stopped"
    assert "n" not in interp.globals()


@pytest.mark.asyncio
async def test_cancelling_the_run_task_marks_it_stopped():
    interp = make_interpreter()
    task = asyncio.create_task(interp.start(program(assign("n", 0), forever())))
    await wait_until(lambda: interp.globals().get("n", 0) > 3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert interp.state is RunState.STOPPED


@pytest.mark.asyncio
async def test_stack_snapshot_inside_a_procedure():
    interp = make_interpreter()
    captured = {}

    def spy(params):
        captured["snapshot"] = interp.snapshot()
        captured["text"] = interp.format_stack()

    prog = program(
        assign("g", "top"),
        call("P", 5),
        functions=[proc("P", ["n"], assign("local", lst(1)), call("SPY"))],
    )
    res = await interp.start(prog, [Plugin(functions={"SPY": spy})])
    assert res.status == "completed"
    assert [label for label, _ in captured["snapshot"]] == ["Global", "P()"]
    assert captured["text"].splitlines() == [
        "P():",
        "  n = 5",
        "  local = [1]",
        "Global:",
        '  g = "top"',
    ]


def test_keywords_lists_language_host_vars_and_functions():
    plugin = Plugin(functions={"MOVE": lambda p: None}, vars={"north": "north"})
    words = Interpreter.keywords([plugin])
    labels = [label for label, _ in words]
    assert labels[0] == "<-"
    assert ("north", "north") in words
    assert ("MOVE()", "MOVE()") in words
    assert ("DISPLAY()", "DISPLAY()") in words
    assert labels.index("north") < labels.index("MOVE()")


@pytest.mark.asyncio
async def test_plugin_vars_are_globals():
    interp = make_interpreter()
    res = await interp.start(program(ret(ident("north"))), [Plugin(vars={"north": "N"})])
    assert res.value == "N"


def test_run_config_from_env(monkeypatch):
    monkeypatch.setenv("APCSP_SPEED", "5")
    monkeypatch.setenv("APCSP_MAX_SPEED", "100")
    monkeypatch.setenv("APCSP_SEED", "3")
    cfg = RunConfig.from_env()
    assert (cfg.speed, cfg.max_speed, cfg.seed) == (5, 100, 3)
    assert Interpreter().speed == 5

    monkeypatch.setenv("APCSP_SPEED", "fast")
    monkeypatch.delenv("APCSP_MAX_SPEED")
    cfg = RunConfig.from_env()
    assert cfg.speed is None
    assert cfg.max_speed == 2000


@pytest.mark.asyncio
async def test_plugin_vars_start_fresh_on_every_run():
    interp = make_interpreter()
    plugin = Plugin(vars={"items": [1, 2]})
    prog = program(call("APPEND", ident("items"), 3), call("DISPLAY", ident("items")))
    first = await interp.start(prog, [plugin])
    second = await interp.start(prog, [plugin])
    assert first.output == second.output == "[1, 2, 3] "
    assert plugin.vars["items"] == [1, 2]
