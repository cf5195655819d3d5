"""Golden record regeneration tests."""

from __future__ import annotations

from pathlib import Path

import yaml

import generate_golden_fields
from generate_golden_fields import build_golden_fields


def test_fields_for_runnable_program() -> None:
    fields = build_golden_fields({"in_source": ",[.,]", "in_stdin": "hi"})
    assert fields == {
        "out_ast": [",", [".", ","]],
        "out_stdout": "hi",
        "steps": 7,
        "state": "blocked",
    }


def test_fields_for_parse_error() -> None:
    fields = build_golden_fields({"in_source": "+]"})
    assert fields == {
        "out_error": "No matching `[` found",
        "out_diagnostic": "error: No matching `[` found\n1 | +]\n     ^",
    }


def test_main_rewrites_record(tmp_path: Path) -> None:
    p = tmp_path / "rec.yaml"
    p.write_text('in_source: "a+b."\nin_config:\n  minify: true\n', encoding="utf-8")
    generate_golden_fields.main(str(p))
    doc = yaml.safe_load(p.read_text(encoding="utf-8"))
    assert doc["out"]["out_ast"] == ["+", "."]
    assert doc["out"]["out_stdout"] == "\x01"
    assert doc["out"]["steps"] == 2
    assert doc["out"]["state"] == "finished"
