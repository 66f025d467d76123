from __future__ import annotations

import logging
import random
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import UsageError
from .resume import REDUCTION_INCOMPLETE, has_marker, latest_any_step
from .utils import read_json

logger = logging.getLogger(__name__)

LOCAL_SERVER_VALUES = {"", "."}


class ReductionKind(str, Enum):
    NO_IMAGE = "no_image"
    NOT_IDENTICAL = "not_identical"
    IDENTICAL = "identical"
    BELOW_THRESHOLD = "below_threshold"
    ABOVE_THRESHOLD = "above_threshold"
    VALIDATOR_ERROR = "validator_error"
    ALWAYS_REDUCE = "always_reduce"
    FUZZ = "fuzz"

    @classmethod
    def parse(cls, value: str) -> "ReductionKind":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UsageError(f"unknown reduction kind argument found: {value}") from None


IMAGE_KINDS = {
    ReductionKind.NOT_IDENTICAL,
    ReductionKind.IDENTICAL,
    ReductionKind.BELOW_THRESHOLD,
    ReductionKind.ABOVE_THRESHOLD,
}


def _random_seed() -> int:
    return random.randint(0, 2**31 - 1)


class ReducerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SHADER_REDUCER_")

    reduction_kind: ReductionKind = ReductionKind.NO_IMAGE
    reference_image: Optional[Path] = None
    threshold: float = Field(default=100.0, ge=0.0)
    timeout: int = Field(default=30, gt=0)
    max_steps: int = Field(default=250, ge=0)
    retry_limit: int = Field(default=2, ge=0)
    verbose: bool = False
    skip_render: bool = False
    seed: int = Field(default_factory=_random_seed)
    error_string: Optional[str] = None
    server: Optional[str] = None
    token: Optional[str] = None
    reduce_everywhere: bool = False
    stop_on_error: bool = False
    swiftshader: bool = False
    continue_previous_reduction: bool = False
    keep_rejected: bool = True
    render_command: List[str] = Field(
        default_factory=lambda: ["get_image", "{shader}", "--output", "{image}"]
    )
    validator_command: List[str] = Field(default_factory=lambda: ["glslangValidator", "{shader}"])

    @property
    def uses_server(self) -> bool:
        return self.server is not None and self.server not in LOCAL_SERVER_VALUES


def load_settings(config: Optional[Path] = None, **overrides: Any) -> ReducerSettings:
    data: Dict[str, Any] = {}
    if config is not None:
        try:
            loaded = read_json(config)
        except orjson.JSONDecodeError as exc:
            raise UsageError(f"config file {config} is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise UsageError(f"config file {config} must hold a JSON object")
        data.update(loaded)
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return ReducerSettings(**data)
    except ValidationError as exc:
        raise UsageError(str(exc)) from exc


def check_usage(settings: ReducerSettings, fragment_shader: Path, work_dir: Path) -> None:
    kind = settings.reduction_kind
    if kind == ReductionKind.VALIDATOR_ERROR and not settings.error_string:
        raise UsageError(
            f"If reduction kind is {kind.value} then --error-string must be provided."
        )
    if kind in IMAGE_KINDS and settings.reference_image is None:
        raise UsageError(f"Reduction kind {kind.value} requires --reference-image.")
    if settings.uses_server and not settings.token:
        raise UsageError("If --server is used then --token is required")
    if not settings.uses_server and settings.token:
        logger.warning("--token ignored, as it is used without --server")
    if settings.uses_server and settings.swiftshader:
        logger.warning("--swiftshader ignored, as --server is being used")

    if not fragment_shader.is_file():
        raise UsageError(f"shader file {fragment_shader} does not exist")
    sidecar = fragment_shader.with_suffix(".json")
    if not sidecar.is_file():
        raise UsageError(f"metadata file {sidecar} does not exist")
    if settings.reference_image is not None and not settings.reference_image.is_file():
        raise UsageError(f"reference image {settings.reference_image} does not exist")
    if settings.continue_previous_reduction:
        if not has_marker(work_dir):
            raise UsageError(
                "cannot continue previous reduction: "
                f"no {REDUCTION_INCOMPLETE} marker in {work_dir}"
            )
        return
    if has_marker(work_dir) or latest_any_step(work_dir, fragment_shader.stem) is not None:
        raise UsageError(
            f"{work_dir} already holds a reduction of {fragment_shader.stem}; "
            "use --continue-previous-reduction or a clean output directory"
        )
