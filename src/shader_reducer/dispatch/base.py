from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel


class ImageJobStatus(str, Enum):
    SUCCESS = "SUCCESS"
    COMPILE_ERROR = "COMPILE_ERROR"
    LINK_ERROR = "LINK_ERROR"
    CRASH = "CRASH"
    NONDET = "NONDET"
    TIMEOUT = "TIMEOUT"
    SKIPPED = "SKIPPED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class RenderOutcome(BaseModel):
    status: ImageJobStatus
    image_path: Optional[Path] = None
    log: str = ""

    @property
    def produced_image(self) -> bool:
        return (
            self.status == ImageJobStatus.SUCCESS
            and self.image_path is not None
            and self.image_path.is_file()
        )


class ValidationOutcome(BaseModel):
    exit_code: int
    output: str = ""

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


class ShaderDispatcher(Protocol):
    def render(
        self, shader_path: Path, image_path: Path, skip_render: bool = False
    ) -> RenderOutcome:
        ...

    def validate(self, shader_path: Path) -> ValidationOutcome:
        ...


def classify_failure(returncode: int, log: str) -> ImageJobStatus:
    lowered = log.lower()
    if "compile error" in lowered or "compilation failed" in lowered:
        return ImageJobStatus.COMPILE_ERROR
    if "link error" in lowered or "linking failed" in lowered:
        return ImageJobStatus.LINK_ERROR
    if "nondet" in lowered:
        return ImageJobStatus.NONDET
    if returncode < 0:
        return ImageJobStatus.CRASH
    return ImageJobStatus.UNEXPECTED_ERROR
