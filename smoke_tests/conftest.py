"""Fixtures for the smoke tests: package paths and a mypy runner."""

import os
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Tuple

import pytest


PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"
PACKAGE_DIR = SRC_DIR / "rabbit_messaging"

MypyRunner = Callable[..., Tuple[int, str]]


@pytest.fixture
def src_dir() -> Path:
    return SRC_DIR


@pytest.fixture
def package_dir() -> Path:
    return PACKAGE_DIR


@pytest.fixture
def run_mypy(tmp_path: Path) -> MypyRunner:
    """Return a callable running mypy on paths; it yields (returncode, output).

    ``src`` is put on MYPYPATH so client code resolves ``rabbit_messaging``
    from the source tree rather than from an installed copy.
    """
    version = subprocess.run(
        [sys.executable, "-m", "mypy", "--version"], capture_output=True, text=True
    )
    if version.returncode != 0:
        pytest.fail(f"mypy is not installed; install the test extra.\n{version.stderr}")

    def run(*paths: Path) -> Tuple[int, str]:
        command: List[str] = [
            sys.executable,
            "-m",
            "mypy",
            "--cache-dir",
            str(tmp_path / ".mypy_cache"),
            *(str(path) for path in paths),
        ]
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
            env={**os.environ, "MYPYPATH": str(SRC_DIR)},
        )
        return result.returncode, result.stdout + result.stderr

    return run
