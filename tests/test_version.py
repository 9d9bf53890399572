import tomllib
from pathlib import Path

import gitsim

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def test_package_version_matches_pyproject() -> None:
    with PYPROJECT.open("rb") as handle:
        project = tomllib.load(handle)["project"]
    assert gitsim.__version__ == project["version"]


def test_version_resolves_from_installed_metadata_outside_checkout(monkeypatch) -> None:
    monkeypatch.setattr(gitsim, "_source_tree_version", lambda: None)
    monkeypatch.setattr(gitsim, "version", lambda name: "9.9.9")
    assert gitsim._resolve_version() == "9.9.9"


def test_version_falls_back_when_not_installed(monkeypatch) -> None:
    def missing(name: str) -> str:
        raise gitsim.PackageNotFoundError(name)

    monkeypatch.setattr(gitsim, "_source_tree_version", lambda: None)
    monkeypatch.setattr(gitsim, "version", missing)
    assert gitsim._resolve_version() == "0+unknown"
