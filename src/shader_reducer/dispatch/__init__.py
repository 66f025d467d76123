from __future__ import annotations

from ..config import ReducerSettings
from ..errors import UsageError
from .base import ImageJobStatus, RenderOutcome, ShaderDispatcher, ValidationOutcome
from .local import LocalShaderDispatcher
from .remote import JobCounter, RemoteShaderDispatcher


def build_dispatcher(settings: ReducerSettings) -> ShaderDispatcher:
    if settings.uses_server:
        if settings.server is None or not settings.token:
            raise UsageError("If --server is used then --token is required")
        return RemoteShaderDispatcher.for_server(
            settings.server,
            settings.token,
            retry_limit=settings.retry_limit,
            timeout_s=float(settings.timeout),
        )
    return LocalShaderDispatcher(
        settings.render_command,
        settings.validator_command,
        use_software_renderer=settings.swiftshader,
        timeout_s=float(settings.timeout),
    )


__all__ = [
    "ImageJobStatus",
    "JobCounter",
    "LocalShaderDispatcher",
    "RemoteShaderDispatcher",
    "RenderOutcome",
    "ShaderDispatcher",
    "ValidationOutcome",
    "build_dispatcher",
]
