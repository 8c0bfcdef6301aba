from pathlib import Path

import pytest
from _pytest.doctest import DoctestModule

ROOT = Path(__file__).resolve().parent
PACKAGE = ROOT / "src" / "workpool"

DOCTEST_MODULES = {
    PACKAGE / "config.py",
    PACKAGE / "creator.py",
    PACKAGE / "git.py",
    PACKAGE / "locks.py",
    PACKAGE / "log.py",
    PACKAGE / "models.py",
    PACKAGE / "paths.py",
    PACKAGE / "registry.py",
    PACKAGE / "vcs.py",
}


def pytest_collect_file(
    parent: pytest.Collector, file_path: Path
) -> DoctestModule | None:
    path = file_path if isinstance(file_path, Path) else Path(str(file_path))
    if path in DOCTEST_MODULES:
        return DoctestModule.from_parent(parent, path=path)
    return None
