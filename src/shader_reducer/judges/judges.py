from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Pattern, Protocol

from ..dispatch import ImageJobStatus, RenderOutcome, ShaderDispatcher
from ..program import ShaderProgram
from ..utils import ensure_dir, hash_bytes, stable_hash, write_json
from .compare import ImageComparator

logger = logging.getLogger(__name__)

_VOLATILE_RE = re.compile(r"0x[0-9a-fA-F]+|\d+")


@dataclass(frozen=True)
class Candidate:
    program: ShaderProgram
    shader_path: Path
    scratch_dir: Path

    @property
    def image_path(self) -> Path:
        return self.scratch_dir / "image.png"


class FileJudge(Protocol):
    def is_interesting(self, candidate: Candidate) -> bool:
        ...


def _matches(pattern: Optional[Pattern[str]], text: str) -> bool:
    return pattern is None or pattern.fullmatch(text) is not None


class AlwaysReduceJudge:
    def is_interesting(self, candidate: Candidate) -> bool:
        return True


class NoImageJudge:
    def __init__(
        self,
        dispatcher: ShaderDispatcher,
        pattern: Optional[Pattern[str]] = None,
        skip_render: bool = False,
    ) -> None:
        self.dispatcher = dispatcher
        self.pattern = pattern
        self.skip_render = skip_render

    def is_interesting(self, candidate: Candidate) -> bool:
        outcome = self.dispatcher.render(
            candidate.shader_path, candidate.image_path, skip_render=self.skip_render
        )
        if outcome.produced_image:
            return False
        if self.skip_render and outcome.status in {ImageJobStatus.SUCCESS, ImageJobStatus.SKIPPED}:
            return False
        return _matches(self.pattern, outcome.log)


class ImageJudge:
    def __init__(
        self,
        dispatcher: ShaderDispatcher,
        reference_image: Path,
        comparator: ImageComparator,
    ) -> None:
        self.dispatcher = dispatcher
        self.reference_image = reference_image
        self.comparator = comparator

    def is_interesting(self, candidate: Candidate) -> bool:
        outcome = self.dispatcher.render(candidate.shader_path, candidate.image_path)
        if not outcome.produced_image or outcome.image_path is None:
            logger.debug("candidate produced no image: %s", outcome.status.value)
            return False
        return self.comparator.accepts(outcome.image_path, self.reference_image)


class ValidatorErrorJudge:
    def __init__(self, dispatcher: ShaderDispatcher, pattern: Pattern[str]) -> None:
        self.dispatcher = dispatcher
        self.pattern = pattern

    def is_interesting(self, candidate: Candidate) -> bool:
        outcome = self.dispatcher.validate(candidate.shader_path)
        return outcome.failed and _matches(self.pattern, outcome.output)


def outcome_fingerprint(outcome: RenderOutcome) -> str:
    image_hash = None
    if outcome.produced_image and outcome.image_path is not None:
        image_hash = hash_bytes(outcome.image_path.read_bytes())
    return stable_hash(
        {
            "status": outcome.status.value,
            "image": image_hash,
            "log": _VOLATILE_RE.sub("N", outcome.log) if image_hash is None else "",
        }
    )


class FuzzingJudge:
    def __init__(self, dispatcher: ShaderDispatcher, corpus_dir: Path) -> None:
        self.dispatcher = dispatcher
        self.corpus_dir = corpus_dir
        ensure_dir(corpus_dir)

    def is_interesting(self, candidate: Candidate) -> bool:
        outcome = self.dispatcher.render(candidate.shader_path, candidate.image_path)
        fingerprint = outcome_fingerprint(outcome)
        record_path = self.corpus_dir / f"{fingerprint}.json"
        if record_path.exists():
            return False
        shutil.copyfile(candidate.shader_path, self.corpus_dir / f"{fingerprint}.frag")
        if outcome.produced_image and outcome.image_path is not None:
            shutil.copyfile(outcome.image_path, self.corpus_dir / f"{fingerprint}.png")
        write_json(
            record_path,
            {"fingerprint": fingerprint, "status": outcome.status.value, "log": outcome.log},
        )
        logger.info("new behaviour %s added to corpus", fingerprint[:12])
        return True
