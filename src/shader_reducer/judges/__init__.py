from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Pattern

from ..config import ReducerSettings, ReductionKind
from ..dispatch import ShaderDispatcher
from ..errors import UsageError
from .compare import ExactImageComparator, HistogramImageComparator
from .judges import (
    AlwaysReduceJudge,
    Candidate,
    FileJudge,
    FuzzingJudge,
    ImageJudge,
    NoImageJudge,
    ValidatorErrorJudge,
)

CORPUS_DIRNAME = "corpus"


def compile_error_pattern(error_string: Optional[str]) -> Optional[Pattern[str]]:
    if not error_string:
        return None
    try:
        return re.compile(".*" + error_string + ".*", re.DOTALL)
    except re.error as exc:
        raise UsageError(f"invalid error string {error_string!r}: {exc}") from exc


def build_judge(
    settings: ReducerSettings,
    dispatcher: ShaderDispatcher,
    work_dir: Path,
    reference_image: Optional[Path] = None,
) -> FileJudge:
    kind = settings.reduction_kind
    reference = reference_image or settings.reference_image
    pattern = compile_error_pattern(settings.error_string)
    if kind == ReductionKind.NO_IMAGE:
        return NoImageJudge(dispatcher, pattern, skip_render=settings.skip_render)
    if kind == ReductionKind.ALWAYS_REDUCE:
        return AlwaysReduceJudge()
    if kind == ReductionKind.FUZZ:
        return FuzzingJudge(dispatcher, work_dir / CORPUS_DIRNAME)
    if kind == ReductionKind.VALIDATOR_ERROR:
        if pattern is None:
            raise UsageError("validator_error reduction requires an error string")
        return ValidatorErrorJudge(dispatcher, pattern)
    if reference is None:
        raise UsageError(f"Reduction kind {kind.value} requires a reference image")
    if kind == ReductionKind.IDENTICAL:
        return ImageJudge(dispatcher, reference, ExactImageComparator(identical=True))
    if kind == ReductionKind.NOT_IDENTICAL:
        return ImageJudge(dispatcher, reference, ExactImageComparator(identical=False))
    if kind == ReductionKind.BELOW_THRESHOLD:
        return ImageJudge(
            dispatcher, reference, HistogramImageComparator(settings.threshold, above=False)
        )
    if kind == ReductionKind.ABOVE_THRESHOLD:
        return ImageJudge(
            dispatcher, reference, HistogramImageComparator(settings.threshold, above=True)
        )
    raise UsageError(f"Unsupported reduction kind: {kind}")


__all__ = [
    "AlwaysReduceJudge",
    "Candidate",
    "FileJudge",
    "FuzzingJudge",
    "ImageJudge",
    "NoImageJudge",
    "ValidatorErrorJudge",
    "build_judge",
    "compile_error_pattern",
]
