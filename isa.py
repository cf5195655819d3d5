"""ISA: instruction symbols, tokens and the lexer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Instr(Enum):
    """Keeps every instruction symbol of the language."""

    INC = "+"  # tape[ptr] += 1
    DEC = "-"  # tape[ptr] -= 1
    RIGHT = ">"  # ptr += 1
    LEFT = "<"  # ptr -= 1
    OUT = "."  # emit tape[ptr]
    IN = ","  # tape[ptr] = input byte
    LOOP_START = "["
    LOOP_END = "]"

    BREAKPOINT = "•"  # optional, only lexed when breakpoints are enabled


CANONICAL_SYMBOLS = frozenset("+-><.,[]")
BREAKPOINT_SYMBOL = Instr.BREAKPOINT.value


@dataclass(frozen=True)
class Token:
    """One instruction with its offset in the original, unfiltered source."""

    instr: Instr
    offset: int

    @property
    def symbol(self) -> str:
        return self.instr.value


def symbol_set(breakpoints: bool = False) -> frozenset[str]:
    """Return the characters the lexer keeps."""
    if breakpoints:
        return CANONICAL_SYMBOLS | {BREAKPOINT_SYMBOL}
    return CANONICAL_SYMBOLS


def lex(source: str, breakpoints: bool = False) -> list[Token]:
    """Scan source once and keep only instruction characters.

    Every other character is dropped without error. Offsets point into
    `source` as given, not into the filtered stream.
    """
    keep = symbol_set(breakpoints)
    tokens: list[Token] = []
    for offset, ch in enumerate(source):
        if ch in keep:
            tokens.append(Token(Instr(ch), offset))
    return tokens


def minify(source: str, breakpoints: bool = False) -> str:
    """Strip comments and whitespace, i.e. everything the lexer would drop."""
    return "".join(tok.symbol for tok in lex(source, breakpoints))


def mnemonic(instr: Instr) -> str:
    """Get instruction mnemonic."""
    return f"{instr.name} '{instr.value}'"
