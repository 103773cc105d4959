import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from apcsp.apcsp_printer import Printer
from apcsp.apcsp_runtime import Interpreter, RunState
from apcsp.apcsp_serialize import load_program

STEP_HELP = "Enter: step, c: continue, v: show variables, q: stop"


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def input_provider(prompt):
    """Answers INPUT; an empty read (Ctrl+D) cancels."""
    raw = await ainput(f"{prompt} " if prompt else "? ")
    if raw == "":
        return None
    return raw.rstrip("\n")


def create_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apcsp",
        description="Run a parsed CSP pseudocode program (JSON or YAML parser output).",
    )
    parser.add_argument("program", help="path to the parser-output document")
    parser.add_argument("--step", action="store_true", help="single-step through the program")
    parser.add_argument("--speed", type=int, default=None, help="delay between statements in milliseconds")
    parser.add_argument("--seed", type=int, default=None, help="seed for RANDOM")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("APCSP_LOG_LEVEL", "WARNING"),
        help="logging level (default: $APCSP_LOG_LEVEL or WARNING)",
    )
    return parser


async def _drive_steps(interp: Interpreter, task: asyncio.Task, paused: asyncio.Event):
    """Reads step commands whenever the run pauses, until it ends."""
    print(STEP_HELP)
    while True:
        waiter = asyncio.ensure_future(paused.wait())
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            waiter.cancel()
            return
        paused.clear()
        node = interp.current_node
        if node is not None and node.span is not None:
            print(f"-- paused before {node.span.describe()}")
        while interp.state is RunState.PAUSED:
            cmd = (await ainput("step> ")).strip().lower()
            match cmd:
                case "" | "s":
                    interp.request_step()
                case "c":
                    interp.request_continue()
                case "q":
                    await interp.request_stop()
                case "v":
                    print(interp.format_stack())
                case _:
                    print(STEP_HELP)
            if cmd in ("", "s", "c", "q"):
                break


async def run_program_file(file_path: str, step: bool = False, speed=None, seed=None) -> int:
    """Run a program document and return the process exit status."""
    p = Path(file_path)
    try:
        program = load_program(p)
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: cannot load {file_path}: {e}", file=sys.stderr)
        return 1

    paused = asyncio.Event()

    def on_suspend(node, interp):
        if interp.stepping:
            paused.set()

    interp = Interpreter(speed=speed, seed=seed, input_provider=input_provider, on_suspend=on_suspend)
    task = asyncio.create_task(interp.start(program, single_step=step))
    if step:
        await _drive_steps(interp, task, paused)
    result = await task

    if result.output:
        print(result.output.rstrip())
    match result.status:
        case 'failed':
            print(result.format_error(), file=sys.stderr)
            return 1
        case 'stopped':
            print("Stopped.", file=sys.stderr)
            return 0
    if result.value is not None:
        print(Printer().pformat(result.value))
    return 0


def main(argv=None) -> int:
    args = create_arg_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    return asyncio.run(run_program_file(args.program, step=args.step, speed=args.speed, seed=args.seed))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
