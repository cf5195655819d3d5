"""Module: validate bracket structure of a token stream and build a nested AST.

This module contains:
- parse(tokens) -> nested AST (tokens and loop bodies)
- render_error(...) -> the user-facing diagnostic for a ParseError
- a small CLI that prints the AST of a file or its diagnostic
"""

from __future__ import annotations

# ruff: noqa: A005
import sys
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any, Union

from isa import Instr, Token, lex

RED = "\x1b[1;31m"
RESET = "\x1b[1;0m"

Node = Union[Token, list[Any]]


class ParseError(SyntaxError):
    """Raised when brackets are unbalanced."""

    def __init__(self, message: str, span: int) -> None:
        """Create a ParseError pointing at source offset `span`."""
        super().__init__(message)
        self.message = message
        self.span = span


def parse(tokens: Sequence[Token]) -> list[Node]:
    """Parse a flat token stream into a nested AST.

    Each `[ ... ]` becomes a nested list holding the loop body; the brackets
    themselves are not kept. Raises ParseError on unbalanced brackets.
    """
    root: list[Node] = []
    body = root
    # bodies of the enclosing loops, innermost last
    open_bodies: list[list[Node]] = []
    for tok in tokens:
        if tok.instr is Instr.LOOP_START:
            child: list[Node] = []
            body.append(child)
            open_bodies.append(body)
            body = child
            continue
        if tok.instr is Instr.LOOP_END:
            if not open_bodies:
                err = "No matching `[` found"
                raise ParseError(err, tok.offset)
            body = open_bodies.pop()
            continue
        body.append(tok)

    if open_bodies:
        # no closing bracket to point at, use the last token
        err = "No matching `]` found"
        raise ParseError(err, tokens[-1].offset)
    return root


def ast_to_data(ast: Sequence[Node]) -> list[Any]:
    """Convert an AST into nested lists of symbol characters."""
    data: list[Any] = []
    pending: list[tuple[Iterator[Node], list[Any]]] = [(iter(ast), data)]
    while pending:
        nodes, dest = pending[-1]
        for node in nodes:
            if isinstance(node, list):
                child: list[Any] = []
                dest.append(child)
                pending.append((iter(node), child))
                break
            dest.append(node.symbol)
        else:
            pending.pop()
    return data


def render_error(source: str, message: str, span: int, color: bool = True) -> str:
    """Render a diagnostic: message, offending line and a caret under `span`.

    line index = number of newlines before `span`; column = span minus the
    index of the preceding newline (0 when there is none).
    """
    line_idx = 0
    last_newline_idx = 0
    for i, ch in enumerate(source):
        if i == span:
            break
        if ch == "\n":
            line_idx += 1
            last_newline_idx = i

    lines = source.split("\n")
    line = lines[line_idx] if line_idx < len(lines) else ""
    line_prefix = f"{line_idx + 1} | "
    line_span = span - last_newline_idx

    red, reset = (RED, RESET) if color else ("", "")
    return "\n".join(
        [
            f"{red}error: {message}{reset}",
            f"{line_prefix}{line}",
            f"{' ' * (len(line_prefix) + line_span)}{red}^{reset}",
        ]
    )


def validate(source: str, breakpoints: bool = False) -> list[Node]:
    """Lex and parse `source`, returning the AST or raising ParseError."""
    return parse(lex(source, breakpoints))


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: print the AST of a file or its diagnostic."""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: [filename]", file=sys.stderr)
        return 1

    path = Path(args[0])
    if not path.exists():
        print(f"error: Source file not found: {path}", file=sys.stderr)
        return 1
    source = path.read_text(encoding="utf-8")
    try:
        ast = validate(source)
    except ParseError as e:
        print(render_error(source, e.message, e.span), file=sys.stderr)
        return 1

    print(ast_to_data(ast))
    return 0


# --- CLI ---
if __name__ == "__main__":
    sys.exit(main())
