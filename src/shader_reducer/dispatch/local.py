from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List

from ..errors import OracleUnavailableError, RenderTimeoutError
from .base import ImageJobStatus, RenderOutcome, ValidationOutcome, classify_failure

logger = logging.getLogger(__name__)


def _expand(template: List[str], shader_path: Path, image_path: Path | None = None) -> List[str]:
    expanded: List[str] = []
    for part in template:
        part = part.replace("{shader}", str(shader_path))
        if image_path is not None:
            part = part.replace("{image}", str(image_path))
        expanded.append(part)
    return expanded


class LocalShaderDispatcher:
    def __init__(
        self,
        render_command: List[str],
        validator_command: List[str],
        use_software_renderer: bool = False,
        timeout_s: float = 30.0,
    ) -> None:
        self.render_command = list(render_command)
        self.validator_command = list(validator_command)
        self.use_software_renderer = use_software_renderer
        self.timeout_s = timeout_s

    def _run(self, command: List[str]) -> subprocess.CompletedProcess[str]:
        logger.debug("running %s", " ".join(command))
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            raise RenderTimeoutError(
                f"{command[0]} did not finish within {self.timeout_s}s"
            ) from exc
        except OSError as exc:
            raise OracleUnavailableError(f"could not run {command[0]}: {exc}") from exc

    def render(
        self, shader_path: Path, image_path: Path, skip_render: bool = False
    ) -> RenderOutcome:
        command = _expand(self.render_command, shader_path, image_path)
        if self.use_software_renderer:
            command.append("--swiftshader")
        if skip_render:
            command.append("--skip_render")
        proc = self._run(command)
        log = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode == 0:
            if skip_render:
                return RenderOutcome(status=ImageJobStatus.SKIPPED, log=log)
            if image_path.is_file():
                return RenderOutcome(status=ImageJobStatus.SUCCESS, image_path=image_path, log=log)
            return RenderOutcome(status=ImageJobStatus.UNEXPECTED_ERROR, log=log)
        return RenderOutcome(status=classify_failure(proc.returncode, log), log=log)

    def validate(self, shader_path: Path) -> ValidationOutcome:
        proc = self._run(_expand(self.validator_command, shader_path))
        return ValidationOutcome(
            exit_code=proc.returncode, output=(proc.stdout or "") + (proc.stderr or "")
        )
