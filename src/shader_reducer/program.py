from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List

from .errors import UsageError
from .utils import read_json, write_json, write_text

SHADER_EXTENSION = ".frag"
METADATA_EXTENSION = ".json"

_VERSION_RE = re.compile(r"^\s*#\s*version\s+(\d+)(?:\s+(es|core|compatibility))?\s*$", re.M)


@dataclass(frozen=True)
class ShadingLanguageVersion:
    number: int = 100
    profile: str = ""

    @property
    def supports_unsigned_ints(self) -> bool:
        return self.number >= 130

    @classmethod
    def from_source(cls, text: str) -> "ShadingLanguageVersion":
        match = _VERSION_RE.search(text)
        if match is None:
            return cls()
        return cls(number=int(match.group(1)), profile=match.group(2) or "")

    def __str__(self) -> str:
        return f"{self.number} {self.profile}".strip()


@dataclass(frozen=True)
class ShaderProgram:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: ShadingLanguageVersion = field(default_factory=ShadingLanguageVersion)

    @classmethod
    def from_text(cls, text: str, metadata: Dict[str, Any] | None = None) -> "ShaderProgram":
        return cls(
            text=text,
            metadata=dict(metadata or {}),
            version=ShadingLanguageVersion.from_source(text),
        )

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines()

    def with_lines(self, lines: List[str]) -> "ShaderProgram":
        text = "\n".join(lines)
        if lines:
            text += "\n"
        return replace(self, text=text)


def load_program(shader_path: Path) -> ShaderProgram:
    sidecar = shader_path.with_suffix(METADATA_EXTENSION)
    if not sidecar.is_file():
        raise UsageError(f"metadata file {sidecar} does not exist")
    metadata = read_json(sidecar)
    if not isinstance(metadata, dict):
        raise UsageError(f"metadata file {sidecar} must hold a JSON object")
    return ShaderProgram.from_text(shader_path.read_text(encoding="utf-8"), metadata)


def write_program(program: ShaderProgram, prefix: Path) -> Path:
    shader_path = prefix.with_name(prefix.name + SHADER_EXTENSION)
    write_text(shader_path, program.text)
    write_json(prefix.with_name(prefix.name + METADATA_EXTENSION), program.metadata)
    return shader_path
