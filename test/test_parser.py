"""Structural parser, diagnostics and parser CLI tests."""

from __future__ import annotations

from parser import RED, RESET, ParseError, ast_to_data, main, parse, render_error, validate
from pathlib import Path
from typing import Any

import pytest

from isa import lex
from processor import run_source


def test_balanced_program_builds_nested_ast(hello_world: str) -> None:
    ast = validate(hello_world)
    data = ast_to_data(ast)
    assert data[:8] == ["+"] * 8
    assert isinstance(data[8], list)
    # the outer loop holds the inner loop as a single element
    assert data[8][:5] == [">", "+", "+", "+", "+"]
    assert isinstance(data[8][5], list)


def test_ast_keeps_tokens_with_offsets() -> None:
    ast = parse(lex("+ [-]"))
    assert ast[0].offset == 0
    assert ast[1][0].offset == 3


def test_extra_close_bracket_points_at_it() -> None:
    with pytest.raises(ParseError) as exc:
        validate("+[-]]+")
    assert exc.value.message == "No matching `[` found"
    assert exc.value.span == 4


def test_extra_open_bracket_points_at_last_token() -> None:
    with pytest.raises(ParseError) as exc:
        validate("[[-]+ trailing comment")
    assert exc.value.message == "No matching `]` found"
    assert exc.value.span == 4


def test_parse_error_is_a_syntax_error() -> None:
    with pytest.raises(SyntaxError):
        validate("]")


def test_deeply_nested_balanced_program_validates_and_runs() -> None:
    depth = 2000
    src = "+" + "[" * depth + "-" + "]" * depth + "."
    ast = validate(src)
    assert len(ast) == 3
    node = ast[1]
    for _ in range(depth - 1):
        assert len(node) == 1
        node = node[0]
    assert [t.symbol for t in node] == ["-"]
    data = ast_to_data(ast)
    assert data[0] == "+" and data[2] == "."

    assert run_source(src) == ("\x00", 1 + depth + 1 + depth + 1, "finished")


def test_deep_unclosed_loop_points_at_last_token() -> None:
    src = "[" * 1500 + "+"
    with pytest.raises(ParseError) as exc:
        validate(src)
    assert exc.value.message == "No matching `]` found"
    assert exc.value.span == 1500

def test_render_error_first_line() -> None:
    text = render_error("++]", "No matching `[` found", 2, color=False)
    assert text == "error: No matching `[` found\n1 | ++]\n      ^"


def test_render_error_later_line_counts_from_newline() -> None:
    src = "+\n+\n-]"
    text = render_error(src, "No matching `[` found", 5, color=False)
    lines = text.split("\n")
    assert lines[1] == "3 | -]"
    # prefix "3 | " plus span (5) minus index of the preceding newline (3)
    assert lines[2] == " " * 6 + "^"


def test_render_error_colors() -> None:
    text = render_error("]", "oops", 0)
    assert text.startswith(f"{RED}error: oops{RESET}\n")
    assert text.endswith(f"{RED}^{RESET}")


def test_cli_usage_without_argument(capsys: Any) -> None:
    assert main([]) == 1
    assert capsys.readouterr().err.strip() == "Usage: [filename]"


def test_cli_prints_ast(tmp_path: Path, capsys: Any) -> None:
    src = tmp_path / "prog.bf"
    src.write_text("+[-].", encoding="utf-8")
    assert main([str(src)]) == 0
    assert capsys.readouterr().out.strip() == "['+', ['-'], '.']"


def test_cli_prints_diagnostic(tmp_path: Path, capsys: Any) -> None:
    src = tmp_path / "bad.bf"
    src.write_text("+\n[", encoding="utf-8")
    assert main([str(src)]) == 1
    err = capsys.readouterr().err
    assert "No matching `]` found" in err
    assert "2 | [" in err


def test_cli_missing_file(tmp_path: Path, capsys: Any) -> None:
    assert main([str(tmp_path / "nope.bf")]) == 1
    assert "not found" in capsys.readouterr().err
