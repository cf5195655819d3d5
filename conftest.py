"""Shared pytest setup: golden YAML parametrization and machine fixtures."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
import yaml

from isa import lex
from processor import BufferedInput, ControlUnit, Datapath, OutputCollector

HELLO_WORLD = (
    "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]>>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)


def pytest_configure(config: Any) -> None:
    """Register the golden_test marker."""
    config.addinivalue_line(
        "markers",
        "golden_test(pattern): parameterize test with YAML files matching pattern",
    )


def _golden_patterns(node: Any) -> Iterator[str]:
    for m in node.iter_markers(name="golden_test"):
        yield m.args[0] if m.args else "golden/*.yaml"


def _load_golden(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        msg = f"{path} does not contain a mapping"
        raise TypeError(msg)
    data.setdefault("__name__", path.name)
    return data


def pytest_generate_tests(metafunc: Any) -> None:
    """Parametrize the `golden` argument from YAML records."""
    if "golden" not in metafunc.fixturenames:
        return

    root = Path(metafunc.config.rootpath)
    files: list[Path] = []
    for pat in list(_golden_patterns(metafunc.definition)) or ["golden/*.yaml"]:
        files.extend(sorted(root.glob(pat)))

    metafunc.parametrize("golden", [_load_golden(p) for p in files], ids=[p.name for p in files])


@pytest.fixture
def hello_world() -> str:
    return HELLO_WORLD


@pytest.fixture
def make_machine() -> Callable[..., tuple[ControlUnit, OutputCollector, BufferedInput]]:
    """Build (control unit, output, input) for a source string."""

    def _make(
        source: str,
        stdin: str = "",
        tape_cells: int = 32000,
        breakpoints: bool = False,
        error_handler: Callable[[str], Any] | None = None,
    ) -> tuple[ControlUnit, OutputCollector, BufferedInput]:
        dp = Datapath(lex(source, breakpoints), code=source, tape_cells=tape_cells)
        out = OutputCollector()
        inp = BufferedInput(stdin)
        cu = ControlUnit(dp, out, inp, error_handler=error_handler, breakpoints=breakpoints)
        return cu, out, inp

    return _make
