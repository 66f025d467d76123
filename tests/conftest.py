from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import List

import pytest

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    _ = config
    run_slow = os.getenv("RUN_SLOW_TESTS", "") or os.getenv("SHADER_REDUCER_RUN_SLOW", "")
    if str(run_slow).strip().lower() in {"1", "true", "yes"}:
        return
    skip_slow = pytest.mark.skip(reason="set RUN_SLOW_TESTS=1 to run slow tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def shader(tmp_path: Path) -> Path:
    source_dir = tmp_path / "input"
    source_dir.mkdir()
    shutil.copyfile(FIXTURES / "sample.frag", source_dir / "sample.frag")
    shutil.copyfile(FIXTURES / "sample.json", source_dir / "sample.json")
    return source_dir / "sample.frag"


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def fake_renderer_command() -> List[str]:
    return [sys.executable, str(FIXTURES / "fake_get_image.py"), "{shader}", "--output", "{image}"]


@pytest.fixture
def fake_validator_command() -> List[str]:
    return [sys.executable, str(FIXTURES / "fake_validator.py"), "{shader}"]
