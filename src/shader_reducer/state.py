from __future__ import annotations

from dataclasses import dataclass

from .program import ShaderProgram


@dataclass(frozen=True)
class ReductionState:
    program: ShaderProgram
    is_initial: bool = False

    @classmethod
    def initial(cls, program: ShaderProgram) -> "ReductionState":
        return cls(program=program, is_initial=True)

    def advance(self, program: ShaderProgram) -> "ReductionState":
        return ReductionState(program=program, is_initial=False)
