"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from taskdown.app import build_runtime
from taskdown.configuration import load_runtime_configuration
from taskdown.storage import LocalStore


@pytest.fixture
def store(tmp_path: Path):
    local = LocalStore(tmp_path / "state" / "taskdown.db")
    local.initialize()
    yield local
    local.close()


@pytest_asyncio.fixture
async def make_runtime(tmp_path: Path):
    """Build runtimes against a temporary data dir; closes them afterwards."""
    runtimes = []

    def _make(overrides: str = "", server=None):
        data_dir = tmp_path / "home"
        (data_dir / "config").mkdir(parents=True, exist_ok=True)
        if overrides:
            (data_dir / "config" / "50-test.yml").write_text(overrides, encoding="utf-8")
        bundle = load_runtime_configuration(data_dir)
        runtime = build_runtime(bundle, transport=server.transport() if server else None)
        runtimes.append(runtime)
        return runtime

    yield _make
    for runtime in runtimes:
        await runtime.aclose()
