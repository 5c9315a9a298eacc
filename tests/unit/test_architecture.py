"""
Layering rules:
- core/domain imports neither core/infrastructure nor app/cli
- core/application imports neither core/infrastructure nor app/cli
"""
import ast
from pathlib import Path

import pytest

import kraken_dca

SRC = Path(kraken_dca.__file__).resolve().parent
PKG = "kraken_dca"

OUTER_LAYERS = (f"{PKG}.core.infrastructure", f"{PKG}.app", f"{PKG}.cli")


def _imports(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    out: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            out.update(a.name for a in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            out.add(node.module)
    return out


def _violations(layer: Path) -> list[str]:
    bad = []
    for path in sorted(layer.rglob("*.py")):
        for imported in _imports(path):
            if any(imported == p or imported.startswith(p + ".") for p in OUTER_LAYERS):
                bad.append(f"{path.relative_to(SRC)} -> {imported}")
    return bad


@pytest.mark.parametrize("layer", ["core/domain", "core/application"])
def test_inner_layers_do_not_import_outer_layers(layer):
    assert _violations(SRC / layer) == []
