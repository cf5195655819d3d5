"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides tape machine execution, fault reporting, logging initialization,
a tape view for debugging and an interactive step debugger.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections import deque
from collections.abc import Callable, Sequence
from enum import Enum
from pathlib import Path
from typing import Any

from config import ConfigError, load_config
from isa import Instr, Token, lex, minify, mnemonic
from parser import ParseError, parse, render_error

LOGFILE = "processor.log"
TAPE_CELLS = 32000


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.

    In debug mode a compact format without timestamp is used, e.g.:
        DEBUG root:processor.py:310 Jump forward from 4 to 12
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    # First record is left unindented, later ones get 4 spaces.
    class _IndentOnceFormatter(logging.Formatter):
        def __init__(self, fmt: str | None = None):
            super().__init__(fmt)
            self._seen_first = False

        def format(self, record: logging.LogRecord) -> str:
            s = super().format(record)
            if not self._seen_first:
                self._seen_first = True
                return s
            return "    " + s

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    if debug:
        fh.setFormatter(_IndentOnceFormatter(file_fmt))
    else:
        fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


class FaultKind(Enum):
    """How a fault affects the run."""

    FATAL = "fatal"  # run aborted
    RETRY = "retry"  # instruction re-executed on next step
    NOTICE = "notice"  # reported, instruction consumed
    PAUSE = "pause"  # breakpoint, driver should stop stepping


class MachineFault(Exception):
    """Raised by the machine for every fault, tagged with its kind."""

    def __init__(self, message: str, kind: FaultKind, span: int | None = None) -> None:
        """Create a fault; `span` is the source offset of the faulting token."""
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.span = span

    @property
    def fatal(self) -> bool:
        return self.kind is FaultKind.FATAL


class NoInputError(EOFError):
    """Raised by an input handler when no byte is available right now."""

    pass


class BufferedInput:
    """Input handler serving bytes from a pre-staged buffer."""

    def __init__(self, data: str | bytes = "") -> None:
        self.buffer: deque[int] = deque()
        self.feed(data)

    def feed(self, data: str | bytes) -> None:
        """Append more input."""
        if isinstance(data, str):
            self.buffer.extend(ord(ch) & 0xFF for ch in data)
        else:
            self.buffer.extend(data)

    def __len__(self) -> int:
        return len(self.buffer)

    def __call__(self) -> int:
        if not self.buffer:
            err = "No input found"
            raise NoInputError(err)
        return self.buffer.popleft()


class OutputCollector:
    """Output handler accumulating emitted bytes."""

    def __init__(self) -> None:
        self.buffer: list[int] = []

    def __call__(self, value: int) -> None:
        ch = value & 0xFF
        self.buffer.append(ch)

    @property
    def text(self) -> str:
        return "".join(chr(v) for v in self.buffer)


class Datapath:
    """Datapath (tape + data pointer + program counter) for the machine."""

    program: tuple[Token, ...]
    code: str
    tape_cells: int
    tape: bytearray
    pointer: int
    pc: int

    def __init__(self, program: Sequence[Token], code: str = "", tape_cells: int = TAPE_CELLS) -> None:
        """Allocate a zeroed tape and point PC and data pointer at 0."""
        self.program = tuple(program)
        self.code = code
        self.tape_cells = int(tape_cells)
        if self.tape_cells <= 0:
            err = "tape_cells must be positive"
            raise ValueError(err)
        self.tape = bytearray(self.tape_cells)
        self.pointer = 0
        self.pc = 0
        logging.debug("Datapath: %d tokens, tape of %d cells", len(self.program), self.tape_cells)

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.tape_cells:
            err = f"Pointer out of tape bounds: {index}"
            raise MachineFault(err, FaultKind.FATAL)

    def read_cell(self) -> int:
        """Read the current cell."""
        self._check_index(self.pointer)
        return self.tape[self.pointer]

    def write_cell(self, value: int) -> None:
        """Write the current cell, wrapping to a byte."""
        self._check_index(self.pointer)
        self.tape[self.pointer] = int(value) & 0xFF

    def set_cell(self, index: int, value: int) -> None:
        """Overwrite any cell between steps; `value` is clamped to 0..255."""
        self._check_index(index)
        self.tape[index] = max(0, min(255, int(value)))
        logging.debug("set_cell: tape[%d] = %d", index, self.tape[index])

    def cell_inc(self) -> None:
        self.write_cell(self.read_cell() + 1)

    def cell_dec(self) -> None:
        self.write_cell(self.read_cell() + 255)

    def move_right(self) -> None:
        self.pointer += 1

    def move_left(self) -> None:
        if self.pointer == 0:
            err = "Cannot wrap left"
            raise MachineFault(err, FaultKind.NOTICE)
        self.pointer -= 1

    def find_loop_end(self, start: int) -> int:
        """Return the index of the ']' matching the '[' at `start`."""
        level = 0
        for i in range(start + 1, len(self.program)):
            instr = self.program[i].instr
            if instr is Instr.LOOP_START:
                level += 1
            elif instr is Instr.LOOP_END:
                if level == 0:
                    return i
                level -= 1
        err = "Reached end of code while searching ']'"
        raise MachineFault(err, FaultKind.FATAL, self.program[start].offset)

    def find_loop_start(self, end: int) -> int:
        """Return the index of the '[' matching the ']' at `end`."""
        level = 0
        for i in range(end - 1, -1, -1):
            instr = self.program[i].instr
            if instr is Instr.LOOP_END:
                level += 1
            elif instr is Instr.LOOP_START:
                if level == 0:
                    return i
                level -= 1
        err = "Reached start of code while searching '['"
        raise MachineFault(err, FaultKind.FATAL, self.program[end].offset)


class ControlUnit:
    """Control unit executing one instruction of the Datapath per step."""

    dp: Datapath

    def __init__(
        self,
        dp: Datapath,
        out_handler: Callable[[int], Any],
        in_handler: Callable[[], int],
        error_handler: Callable[[str], Any] | None = None,
        breakpoints: bool = False,
        lenient_log: bool = False,
    ) -> None:
        """Create a ControlUnit bound to `dp` and its I/O collaborators.

        Without `error_handler` faults from step() are raised to the caller.
        """
        self.dp = dp
        self.out_handler = out_handler
        self.in_handler = in_handler
        self.error_handler = error_handler
        self.breakpoints = breakpoints
        self.lenient_log = lenient_log
        self.steps = 0
        self.reached_end = False
        self.fault: MachineFault | None = None

    @property
    def faulted(self) -> bool:
        return self.fault is not None

    def _log_step(self, index: int, instr: Instr) -> None:
        if self.lenient_log:
            return
        dp = self.dp
        cell = dp.tape[dp.pointer] if 0 <= dp.pointer < dp.tape_cells else -1
        logging.debug(
            "STEP: %6d PC: %5d PTR: %5d CELL: %3d\tINSTR: %s",
            self.steps,
            index,
            dp.pointer,
            cell,
            mnemonic(instr),
        )

    def _read_input(self, index: int | None) -> None:
        dp = self.dp
        try:
            value = self.in_handler()
        except Exception as e:
            if index is not None:
                dp.pc -= 1
                logging.debug("IN: no data -> retrying next step")
            err = str(e) or "No input available"
            raise MachineFault(err, FaultKind.RETRY) from e
        dp.write_cell(value)
        logging.debug("IN: got %s", value)

    def _exec(self, instr: Instr, index: int | None) -> None:  # noqa: C901
        """Dispatch one instruction; `index` is None outside program flow."""
        dp = self.dp

        if instr is Instr.INC:
            dp.cell_inc()
            return

        if instr is Instr.DEC:
            dp.cell_dec()
            return

        if instr is Instr.RIGHT:
            dp.move_right()
            return

        if instr is Instr.LEFT:
            dp.move_left()
            return

        if instr is Instr.OUT:
            value = dp.read_cell()
            logging.debug("OUT: %d", value)
            self.out_handler(value)
            return

        if instr is Instr.IN:
            self._read_input(index)
            return

        if instr in (Instr.LOOP_START, Instr.LOOP_END, Instr.BREAKPOINT) and index is None:
            err = f"Cannot execute '{instr.value}' outside a program"
            raise MachineFault(err, FaultKind.NOTICE)

        if instr is Instr.LOOP_START:
            if dp.read_cell() == 0:
                target = dp.find_loop_end(index) + 1
                logging.debug("Jump forward from %d to %d", index, target)
                dp.pc = target
            return

        if instr is Instr.LOOP_END:
            if dp.read_cell() != 0:
                target = dp.find_loop_start(index) + 1
                logging.debug("Jump back from %d to %d", index, target)
                dp.pc = target
            return

        if instr is Instr.BREAKPOINT:
            if self.breakpoints:
                err = "Breakpoint reached"
                raise MachineFault(err, FaultKind.PAUSE)
            return

        err = f"Unhandled instruction: {instr}"
        raise MachineFault(err, FaultKind.FATAL)

    def _report(self, fault: MachineFault) -> MachineFault:
        logging.debug("Fault (%s) at offset %s: %s", fault.kind.value, fault.span, fault.message)
        if fault.fatal:
            self.fault = fault
        if self.error_handler is None:
            raise fault
        self.error_handler(fault.message)
        return fault

    def step(self) -> MachineFault | None:
        """Execute the instruction at PC and advance.

        Returns None on success (including end of program) or the fault
        handed to the error handler. Once a fatal fault has stopped the
        machine every further call returns that fault.
        """
        dp = self.dp
        if self.fault is not None:
            logging.debug("step ignored, machine faulted: %s", self.fault.message)
            return self.fault
        if dp.pc >= len(dp.program):
            if not self.reached_end:
                logging.debug("End of program reached after %d steps", self.steps)
            self.reached_end = True
            return None

        index = dp.pc
        tok = dp.program[index]
        self._log_step(index, tok.instr)
        dp.pc += 1
        self.steps += 1
        try:
            self._exec(tok.instr, index)
        except MachineFault as fault:
            if fault.span is None:
                fault.span = tok.offset
            return self._report(fault)
        finally:
            if dp.pc >= len(dp.program) and self.fault is None:
                self.reached_end = True
        return None

    def execute(self, symbol: Instr | str) -> MachineFault | None:
        """Run one instruction directly, without touching the program counter.

        Faults are never raised here: they are logged and returned.
        """
        try:
            instr = symbol if isinstance(symbol, Instr) else Instr(symbol)
        except ValueError:
            fault = MachineFault(f"Unknown instruction: {symbol!r}", FaultKind.NOTICE)
            logging.debug("execute: %s", fault.message)
            return fault
        try:
            self._exec(instr, None)
        except MachineFault as fault:
            logging.debug("execute(%s) ignored fault: %s", instr.value, fault.message)
            return fault
        return None

    def run(
        self,
        speed: int = 0,
        max_steps: int | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> str:
        """Call step() on a cadence until something stops the run.

        `speed` is 1..100 (one step every 1/(speed*10) s) or 0 for no delay.
        Returns one of: finished, faulted, paused, blocked, limit.
        """
        interval = 1.0 / (speed * 10) if speed > 0 else 0.0
        count = 0
        while not self.reached_end:
            if self.fault is not None:
                return "faulted"
            if max_steps is not None and count >= max_steps:
                return "limit"
            try:
                fault = self.step()
            except MachineFault as e:
                fault = e
            count += 1
            if fault is not None:
                if fault.kind is FaultKind.FATAL:
                    return "faulted"
                if fault.kind is FaultKind.PAUSE:
                    return "paused"
                if fault.kind is FaultKind.RETRY:
                    return "blocked"
            if interval:
                sleep(interval)
        return "finished"


# ---------- Public API ----------
def load_program(source: str, config: dict[str, Any] | None = None) -> tuple[str, list[Token]]:
    """Minify (if enabled), lex and validate `source`.

    Returns (source_as_run, tokens). Raises ParseError for unbalanced brackets.
    """
    cfg = load_config(config)
    breakpoints = cfg["enable_breakpoints"]
    if cfg["minify"]:
        source = minify(source, breakpoints)
    tokens = lex(source, breakpoints)
    parse(tokens)
    return source, tokens


def build_machine(
    source: str,
    cfg: dict[str, Any],
    stdin: BufferedInput,
    out: OutputCollector,
    error_handler: Callable[[str], Any] | None = None,
) -> ControlUnit:
    """Load `source` and wire a fresh Datapath + ControlUnit."""
    code, tokens = load_program(source, cfg)
    dp = Datapath(tokens, code=code, tape_cells=cfg["tape_cells"])
    return ControlUnit(
        dp,
        out,
        stdin,
        error_handler=error_handler,
        breakpoints=cfg["enable_breakpoints"],
        lenient_log=cfg["lenient_log"],
    )


def run_source(
    source: str,
    config: dict[str, Any] | None = None,
    stdin: str | bytes = "",
    error_handler: Callable[[str], Any] | None = None,
) -> tuple[str, int, str]:
    """Run a program to completion and return (stdout, steps, state).

    Breakpoints are logged and skipped. State is one of finished, faulted,
    blocked (waiting for input that will never come) or limit.
    """
    cfg = load_config(config)
    out = OutputCollector()
    cu = build_machine(source, cfg, BufferedInput(stdin), out, error_handler or _log_fault)

    state = "limit"
    while cu.steps < cfg["step_limit"]:
        state = cu.run(max_steps=cfg["step_limit"] - cu.steps)
        if state != "paused":
            break
        logging.debug("Breakpoint at PC %d ignored in batch run", cu.dp.pc - 1)
        state = "finished" if cu.reached_end else "limit"
    return out.text, cu.steps, state


def _log_fault(message: str) -> None:
    logging.debug("fault: %s", message)


def render_tape(dp: Datapath, ascii_view: bool = False, width: int = 10) -> str:
    """Draw a window of cells around the data pointer with a caret under it."""
    width = min(width, dp.tape_cells)
    if dp.pointer < 5:
        start = 0
    elif dp.pointer > dp.tape_cells - width:
        start = dp.tape_cells - width
    else:
        start = dp.pointer - 5
    cells = range(start, start + width)

    def show(v: int) -> str:
        if ascii_view and 32 <= v < 127:
            return repr(chr(v))
        return str(v)

    border = "-" * (width * 10 + 1)
    lines = [
        border,
        "|" + "".join(f"{i:^9}|" for i in cells),
        border,
        "|" + "".join(f"{show(dp.tape[i]):^9}|" for i in cells),
        border,
    ]
    if start <= dp.pointer < start + width:
        lines.append(" " * (5 + (dp.pointer - start) * 10) + "^")
    else:
        lines.append(f"pointer at {dp.pointer}")
    return "\n".join(lines)


def render_code(dp: Datapath) -> str:
    """Show the source line of the next instruction with a caret under it."""
    if dp.pc >= len(dp.program):
        return ""
    offset = dp.program[dp.pc].offset
    line_start = dp.code.rfind("\n", 0, offset) + 1
    line_end = dp.code.find("\n", offset)
    if line_end == -1:
        line_end = len(dp.code)
    return f"{dp.code[line_start:line_end]}\n{' ' * (offset - line_start)}^"


def render_position(cu: ControlUnit) -> str:
    """Describe PC, the next instruction and the machine state."""
    dp = cu.dp
    if cu.faulted:
        status = "faulted"
    elif cu.reached_end:
        status = "finished"
    else:
        status = "ready"
    head = f"PC: {dp.pc}/{len(dp.program)} PTR: {dp.pointer} STEPS: {cu.steps} [{status}]"
    if dp.pc < len(dp.program):
        tok = dp.program[dp.pc]
        head += f" next: {mnemonic(tok.instr)} @ {tok.offset}"
    return head


DEBUGGER_HELP = """commands:
   s / <enter> => step
   c           => continue
   + - < > .   => execute instruction directly
   set I V     => tape[I] = V
   i TEXT      => append input
   r           => restart
   q           => quit"""


def debug_session(
    source: str,
    cfg: dict[str, Any],
    stdin: str = "",
    read_command: Callable[[str], str] = input,
    write: Callable[[str], Any] = print,
) -> str:
    """Interactive step debugger. Returns the program output."""
    speed = 100 if cfg["direct_start"] else cfg["speed"]

    def fresh() -> tuple[ControlUnit, BufferedInput, OutputCollector]:
        inp = BufferedInput(stdin)
        out = OutputCollector()
        cu = build_machine(source, cfg, inp, out, lambda msg: write(f"error: {msg}"))
        return cu, inp, out

    cu, inp, out = fresh()
    if cfg["start_super_speed"]:
        write(f"stopped: {cu.run(speed=0)}")
    elif cfg["direct_start"]:
        write(f"stopped: {cu.run(speed=speed)}")

    write(DEBUGGER_HELP)
    while True:
        write(render_tape(cu.dp, ascii_view=cfg["ascii_view"]))
        write(render_code(cu.dp))
        write(render_position(cu))
        write(f"output: {out.text!r}")
        try:
            line = read_command(">> ").strip()
        except EOFError:
            break
        if line == "q":
            break
        if line in ("", "s"):
            cu.step()
        elif line == "c":
            write(f"stopped: {cu.run(speed=speed)}")
        elif line == "r":
            cu, inp, out = fresh()
        elif line in ("+", "-", "<", ">", "."):
            fault = cu.execute(line)
            if fault is not None:
                logging.debug("debugger: %s", fault.message)
        elif line.startswith("i "):
            inp.feed(line[2:])
        elif line.startswith("set "):
            parts = line.split()
            try:
                cu.dp.set_cell(int(parts[1]), int(parts[2]))
            except (IndexError, ValueError):
                write("usage: set INDEX VALUE")
            except MachineFault as e:
                write(f"error: {e.message}")
        else:
            write(DEBUGGER_HELP)
    return out.text


# ---------- CLI ----------
def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: run a program file or debug it step by step."""
    ap = argparse.ArgumentParser(description="Tape machine runner for eight-symbol programs.")
    ap.add_argument("program", help="program source file")
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--input", help="input text served to ',' byte by byte", default=None)
    ap.add_argument("--input-file", help="file whose content is served to ','", default=None)
    ap.add_argument("--step", action="store_true", help="start the interactive step debugger")

    help_debug = "enable debug logging to logfile (detailed per-step state)."
    help_logfile = "path to processor log"
    help_console = "also echo logs to console (only when --debug)"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=LOGFILE, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args(argv)

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    program_path = Path(args.program)
    if not program_path.exists():
        print("Program file not found:", args.program, file=sys.stderr)
        return 2
    source = program_path.read_text(encoding="utf-8")

    stdin = args.input or ""
    if args.input_file:
        input_path = Path(args.input_file)
        if not input_path.exists():
            print("Input file not found:", args.input_file, file=sys.stderr)
            return 2
        stdin += input_path.read_text(encoding="utf-8")

    shown = minify(source, cfg["enable_breakpoints"]) if cfg["minify"] else source
    try:
        if args.step:
            debug_session(source, cfg, stdin)
            return 0
        out, steps, state = run_source(
            source, cfg, stdin, error_handler=lambda msg: print(f"error: {msg}", file=sys.stderr)
        )
    except ParseError as e:
        print(render_error(shown, e.message, e.span), file=sys.stderr)
        return 1

    sys.stdout.write(out)
    sys.stdout.write("\n")
    sys.stdout.write(f"STEPS: {steps}\n")
    sys.stdout.write(f"STATE: {state}\n")
    return 1 if state == "faulted" else 0


if __name__ == "__main__":
    sys.exit(main())
