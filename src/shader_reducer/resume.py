"""Recovering reduction progress from the working directory listing.

Step artifacts are named ``<base>_<NNN>_<tag>.frag``. The set of artifacts on
disk is the only record of progress; the ``REDUCTION_INCOMPLETE`` marker says
whether the last run over the directory terminated normally.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .program import SHADER_EXTENSION
from .schemas import StepOutcome

REDUCTION_INCOMPLETE = "REDUCTION_INCOMPLETE"
STEP_INDEX_WIDTH = 3
FINAL_SUFFIX = "reduced_final"


def step_prefix(base_name: str, index: int, outcome: Optional[StepOutcome] = None) -> str:
    if index < 0:
        raise ValueError(f"step index must be non-negative, got {index}")
    prefix = f"{base_name}_{index:0{STEP_INDEX_WIDTH}d}"
    if outcome is not None:
        prefix += f"_{outcome.value}"
    return prefix


def step_filename(base_name: str, index: int, outcome: StepOutcome) -> str:
    return step_prefix(base_name, index, outcome) + SHADER_EXTENSION


def final_prefix(base_name: str) -> str:
    return f"{base_name}_{FINAL_SUFFIX}"


def _step_pattern(base_name: str) -> "re.Pattern[str]":
    tags = "|".join(outcome.value for outcome in StepOutcome)
    return re.compile(
        "^" + re.escape(base_name) + r"_(\d+)_(" + tags + ")" + re.escape(SHADER_EXTENSION) + "$"
    )


def iter_steps(work_dir: Path, base_name: str) -> Iterator[Tuple[int, StepOutcome, Path]]:
    if not work_dir.is_dir():
        return
    pattern = _step_pattern(base_name)
    found = []
    for path in work_dir.iterdir():
        match = pattern.match(path.name)
        if match:
            found.append((int(match.group(1)), StepOutcome(match.group(2)), path))
    yield from sorted(found, key=lambda step: (step[0], step[2].name))


def latest_successful_step(work_dir: Path, base_name: str) -> Optional[int]:
    indices = [
        index
        for index, outcome, _ in iter_steps(work_dir, base_name)
        if outcome == StepOutcome.SUCCESS
    ]
    return max(indices) if indices else None


def latest_any_step(work_dir: Path, base_name: str) -> Optional[int]:
    indices = [index for index, _, _ in iter_steps(work_dir, base_name)]
    return max(indices) if indices else None


def marker_path(work_dir: Path) -> Path:
    return work_dir / REDUCTION_INCOMPLETE


def has_marker(work_dir: Path) -> bool:
    return marker_path(work_dir).exists()


def place_marker(work_dir: Path) -> None:
    marker_path(work_dir).touch()


def clear_marker(work_dir: Path) -> None:
    marker_path(work_dir).unlink(missing_ok=True)


@dataclass(frozen=True)
class ResumePoint:
    starting_shader: Path
    next_step: int
    resumed: bool


def resume_point(fragment_shader: Path, work_dir: Path, continuing: bool) -> ResumePoint:
    if not continuing:
        return ResumePoint(starting_shader=fragment_shader, next_step=1, resumed=False)
    base_name = fragment_shader.stem
    latest_success = latest_successful_step(work_dir, base_name)
    latest_any = latest_any_step(work_dir, base_name) or 0
    if latest_success is None:
        starting = fragment_shader
    else:
        starting = work_dir / step_filename(base_name, latest_success, StepOutcome.SUCCESS)
    return ResumePoint(starting_shader=starting, next_step=latest_any + 1, resumed=True)
