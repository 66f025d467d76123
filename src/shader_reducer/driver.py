"""The reduction control loop.

One step at a time the driver picks an opportunity, applies it to a copy of
the current program, asks the judge about the candidate and records the
verdict as a step artifact. Progress lives only in those artifacts plus the
``REDUCTION_INCOMPLETE`` marker, which stays in place until the loop
terminates normally.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Set

from .errors import (
    FatalReductionError,
    InitialProgramNotInterestingError,
    OracleUnavailableError,
)
from .judges import Candidate, FileJudge
from .opportunities import ReductionOpportunityContext, find_opportunities, select_opportunity
from .program import write_program
from .resume import clear_marker, place_marker
from .schemas import ArtifactRecord, StepOutcome, StepRecord
from .state import ReductionState
from .writer import ReductionStateFileWriter

logger = logging.getLogger(__name__)


class DriverState(str, Enum):
    RUNNING = "RUNNING"
    EXHAUSTED = "EXHAUSTED"
    BUDGET_REACHED = "BUDGET_REACHED"
    FATAL = "FATAL"
    DONE = "DONE"


@dataclass
class ReductionResult:
    reason: DriverState
    final_state: ReductionState
    final_artifact: ArtifactRecord
    first_step: int
    next_step: int
    steps: List[StepRecord] = field(default_factory=list)

    @property
    def steps_taken(self) -> int:
        return self.next_step - self.first_step


class ReductionDriver:
    def __init__(
        self,
        context: ReductionOpportunityContext,
        judge: FileJudge,
        writer: ReductionStateFileWriter,
        initial_state: ReductionState,
        keep_rejected: bool = True,
        stop_on_error: bool = False,
    ) -> None:
        self.context = context
        self.judge = judge
        self.writer = writer
        self.current = initial_state
        self.keep_rejected = keep_rejected
        self.stop_on_error = stop_on_error
        self.status = DriverState.RUNNING
        self.steps: List[StepRecord] = []

    @property
    def work_dir(self) -> Path:
        return self.writer.work_dir

    def _is_interesting(self, state: ReductionState, base_name: str) -> bool:
        with tempfile.TemporaryDirectory(prefix="candidate_") as scratch:
            scratch_dir = Path(scratch)
            shader_path = write_program(state.program, scratch_dir / base_name)
            return self.judge.is_interesting(
                Candidate(program=state.program, shader_path=shader_path, scratch_dir=scratch_dir)
            )

    def _record(
        self,
        base_name: str,
        index: int,
        outcome: StepOutcome,
        state: ReductionState,
        opportunity: str,
    ) -> None:
        artifact = self.writer.write_step(base_name, index, outcome, state)
        self.steps.append(
            StepRecord(index=index, outcome=outcome, artifact=artifact, opportunity=opportunity)
        )

    def _check_initial_state(self, base_name: str) -> None:
        if not self.current.is_initial:
            return
        if not self._is_interesting(self.current, base_name):
            raise InitialProgramNotInterestingError(
                f"the starting shader {base_name} does not exhibit the property being reduced"
            )
        logger.info("starting shader %s is interesting", base_name)

    def _step(self, base_name: str, index: int, rejected: Set[str]) -> None:
        opportunities = [
            op
            for op in find_opportunities(self.current.program, self.context)
            if op.key not in rejected
        ]
        if not opportunities:
            self.status = DriverState.EXHAUSTED
            return
        opportunity = select_opportunity(opportunities, self.context)
        candidate = self.current.advance(opportunity.apply(self.current.program, self.context))
        try:
            interesting = self._is_interesting(candidate, base_name)
        except OracleUnavailableError as exc:
            self._record(base_name, index, StepOutcome.ERROR, candidate, opportunity.key)
            if self.stop_on_error:
                raise FatalReductionError(f"step {index}: {exc}") from exc
            logger.warning("step %d: oracle failure treated as rejection: %s", index, exc)
            rejected.add(opportunity.key)
            return
        if interesting:
            self._record(base_name, index, StepOutcome.SUCCESS, candidate, opportunity.key)
            self.current = candidate
            rejected.clear()
            logger.debug("step %d: accepted %s", index, opportunity.key)
        else:
            if self.keep_rejected:
                self._record(base_name, index, StepOutcome.FAILURE, candidate, opportunity.key)
            rejected.add(opportunity.key)
            logger.debug("step %d: rejected %s", index, opportunity.key)

    def do_reduction(
        self, base_name: str, first_step: int, step_limit: int
    ) -> ReductionResult:
        if first_step < 1:
            raise ValueError("the first reduction step is 1; step 0 is the starting shader")
        place_marker(self.work_dir)
        logger.info(
            "reducing %s from step %d (limit %d, seed %d)",
            base_name,
            first_step,
            step_limit,
            self.context.random.seed,
        )
        index = first_step
        rejected: Set[str] = set()
        try:
            self._check_initial_state(base_name)
            while self.status == DriverState.RUNNING:
                if index > step_limit:
                    self.status = DriverState.BUDGET_REACHED
                    break
                self._step(base_name, index, rejected)
                if self.status == DriverState.RUNNING:
                    index += 1
            final_artifact = self.writer.write_final(base_name, self.current)
        except BaseException:
            self.status = DriverState.FATAL
            raise
        reason = self.status
        clear_marker(self.work_dir)
        self.status = DriverState.DONE
        logger.info(
            "reduction of %s finished (%s) after %d steps",
            base_name,
            reason.value,
            index - first_step,
        )
        return ReductionResult(
            reason=reason,
            final_state=self.current,
            final_artifact=final_artifact,
            first_step=first_step,
            next_step=index,
            steps=list(self.steps),
        )

