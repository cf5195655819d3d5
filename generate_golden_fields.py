#!/usr/bin/env python3
"""
Fill the expectation fields of a golden YAML record from its source.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

from __future__ import annotations

import os
import sys
from typing import Any

import yaml
from parser import ParseError, ast_to_data, render_error, validate

from config import load_config
from isa import minify
from processor import run_source


def build_golden_fields(doc: dict[str, Any]) -> dict[str, Any]:
    """Compute out_* fields for a golden record (ast or diagnostic, run results)."""
    src = doc.get("in_source", "")
    cfg = load_config(doc.get("in_config") or {})
    stdin = doc.get("in_stdin", "")
    fields: dict[str, Any] = {}

    breakpoints = cfg["enable_breakpoints"]
    shown = minify(src, breakpoints) if cfg["minify"] else src
    try:
        ast = validate(shown, breakpoints)
    except ParseError as e:
        fields["out_error"] = e.message
        fields["out_diagnostic"] = render_error(shown, e.message, e.span, color=False)
        return fields
    fields["out_ast"] = ast_to_data(ast)

    out, steps, state = run_source(src, cfg, stdin)
    fields["out_stdout"] = out
    fields["steps"] = steps
    fields["state"] = state
    return fields


def main(path):
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)

    if not doc or "in_source" not in doc:
        print("No 'in_source' found in YAML, nothing to run")
        sys.exit(2)

    target = doc.setdefault("out", {})
    target.update(build_golden_fields(doc))

    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with {', '.join(target)}.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
