from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"
HAS_GIT = shutil.which("git") is not None


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "requires_git: marks tests that run the real git executable",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests that need git when it is not installed."""
    if HAS_GIT:
        return
    skip_git = pytest.mark.skip(reason="git executable not available")
    for item in items:
        if "requires_git" in item.keywords:
            item.add_marker(skip_git)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("GITCHAIN_CONFIG", str(cfg_path))
    for key in list(os.environ):
        if key.startswith("GITCHAIN_") and key != "GITCHAIN_CONFIG":
            monkeypatch.delenv(key, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import gitchain.commands.repo as repo_commands
    import gitchain.core.console as core_console
    import gitchain.core.decorators as decorators
    import gitchain.main as gitchain_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(gitchain_main, "console", test_console)
    monkeypatch.setattr(repo_commands, "console", test_console)
    monkeypatch.setattr(decorators, "console", test_console)
    return test_console
