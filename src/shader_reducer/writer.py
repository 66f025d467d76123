from __future__ import annotations

import traceback
from pathlib import Path

from .program import write_program
from .resume import final_prefix, step_prefix
from .schemas import ArtifactRecord, StepOutcome
from .state import ReductionState
from .utils import ensure_dir, hash_bytes


class ReductionStateFileWriter:
    def __init__(self, work_dir: Path) -> None:
        self.work_dir = work_dir
        ensure_dir(work_dir)

    def _record(self, path: Path, kind: str) -> ArtifactRecord:
        data = path.read_bytes()
        return ArtifactRecord(
            path=str(path), content_hash=hash_bytes(data), bytes=len(data), kind=kind
        )

    def write_step(
        self, base_name: str, index: int, outcome: StepOutcome, state: ReductionState
    ) -> ArtifactRecord:
        prefix = self.work_dir / step_prefix(base_name, index, outcome)
        shader_path = write_program(state.program, prefix)
        return self._record(shader_path, f"step_{outcome.value}")

    def write_final(self, base_name: str, state: ReductionState) -> ArtifactRecord:
        shader_path = write_program(state.program, self.work_dir / final_prefix(base_name))
        return self._record(shader_path, "final")

    def write_exception(self, base_name: str, exc: BaseException) -> ArtifactRecord:
        path = self.work_dir / f"{base_name}_exception.txt"
        text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        path.write_text(text, encoding="utf-8")
        return self._record(path, "exception")
