"""
Packaging sanity: the app/ namespace package must be discoverable on install.
"""

from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def test_find_packages_uses_namespaces_option():
    with PYPROJECT.open("rb") as f:
        find = tomllib.load(f)["tool"]["setuptools"]["packages"]["find"]

    assert find["namespaces"] is True
    assert "namespace" not in find
    assert find["include"] == ["app*"]
