from __future__ import annotations

import base64
import io
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Callable, Dict, List

import orjson
import pytest
from PIL import Image

from shader_reducer.config import ReducerSettings
from shader_reducer.dispatch import (
    ImageJobStatus,
    JobCounter,
    LocalShaderDispatcher,
    RemoteShaderDispatcher,
    build_dispatcher,
)
from shader_reducer.errors import OracleUnavailableError, RenderTimeoutError, UsageError


def _shader(tmp_path: Path, body: str = "void main() {}\n") -> Path:
    path = tmp_path / "shader.frag"
    path.write_text("#version 300 es\n" + body, encoding="utf-8")
    (tmp_path / "shader.json").write_text('{"u": 1}', encoding="utf-8")
    return path


def _local(render: List[str], validator: List[str], **kwargs: Any) -> LocalShaderDispatcher:
    return LocalShaderDispatcher(render, validator, **kwargs)


def test_local_render_success(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command)
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.status == ImageJobStatus.SUCCESS
    assert outcome.produced_image
    with Image.open(tmp_path / "out.png") as image:
        assert image.convert("RGBA").getpixel((0, 0)) == (255, 0, 0, 255)


def test_local_render_software_renderer(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command, use_software_renderer=True)
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.produced_image
    with Image.open(tmp_path / "out.png") as image:
        assert image.convert("RGBA").getpixel((0, 0)) == (0, 255, 0, 255)


def test_local_render_failures(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command)
    compile_error = dispatcher.render(_shader(tmp_path, "#error\n"), tmp_path / "a.png")
    assert compile_error.status == ImageJobStatus.COMPILE_ERROR
    assert "compile error" in compile_error.log
    assert not compile_error.produced_image
    crash = dispatcher.render(_shader(tmp_path, "// CRASH\n"), tmp_path / "b.png")
    assert crash.status == ImageJobStatus.UNEXPECTED_ERROR
    assert "driver crashed" in crash.log


def test_local_skip_render(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command)
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png", skip_render=True)
    assert outcome.status == ImageJobStatus.SKIPPED
    assert not (tmp_path / "out.png").exists()


def test_local_timeout_is_an_oracle_failure(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command, timeout_s=0.5)
    with pytest.raises(RenderTimeoutError):
        dispatcher.render(_shader(tmp_path, "// HANG\n"), tmp_path / "out.png")


def test_local_missing_tool(tmp_path: Path) -> None:
    dispatcher = _local([str(tmp_path / "no-such-tool"), "{shader}"], ["no-such-validator"])
    with pytest.raises(OracleUnavailableError):
        dispatcher.render(_shader(tmp_path), tmp_path / "out.png")


def test_local_validator(
    tmp_path: Path, fake_renderer_command: List[str], fake_validator_command: List[str]
) -> None:
    dispatcher = _local(fake_renderer_command, fake_validator_command)
    clean = dispatcher.validate(_shader(tmp_path))
    assert not clean.failed
    broken = dispatcher.validate(_shader(tmp_path, "float x = undefined_y;\n"))
    assert broken.failed
    assert "undeclared identifier" in broken.output


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def read(self) -> bytes:
        return self._body


def _serve(
    monkeypatch: pytest.MonkeyPatch, handler: Callable[[Dict[str, Any]], Any]
) -> List[Dict[str, Any]]:
    requests: List[Dict[str, Any]] = []

    def urlopen(request: urllib.request.Request, timeout: float = 0) -> _Response:
        payload = orjson.loads(request.data)
        requests.append(payload)
        return _Response(orjson.dumps(handler(payload)))

    monkeypatch.setattr(urllib.request, "urlopen", urlopen)
    return requests


def _png_b64() -> str:
    buffer = io.BytesIO()
    Image.new("RGBA", (2, 2), (0, 0, 255, 255)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def test_remote_render_decodes_image(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    png = _png_b64()
    requests = _serve(
        monkeypatch, lambda job: {"jobId": job["jobId"], "status": "SUCCESS", "png": png}
    )
    dispatcher = RemoteShaderDispatcher.for_server("http://host:8080/", "tok")
    assert dispatcher.url == "http://host:8080/manageAPI"
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.produced_image
    assert requests[0]["token"] == "tok"
    assert requests[0]["metadata"] == {"u": 1}
    assert requests[0]["skipRender"] is False
    assert "#version 300 es" in requests[0]["fragmentSource"]


def test_remote_skipped_status_is_reported(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _serve(monkeypatch, lambda job: {"jobId": job["jobId"], "status": "SKIPPED"})
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok")
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.status == ImageJobStatus.SKIPPED
    assert not outcome.produced_image


def test_remote_unknown_status(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, lambda job: {"jobId": job["jobId"], "status": "MELTED", "log": "x"})
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok")
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.status == ImageJobStatus.UNEXPECTED_ERROR
    assert outcome.log == "x"


def test_remote_retries_then_fails_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    job_ids: List[int] = []

    def urlopen(request: urllib.request.Request, timeout: float = 0) -> _Response:
        job_ids.append(orjson.loads(request.data)["jobId"])
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(urllib.request, "urlopen", urlopen)
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok", retry_limit=2)
    with pytest.raises(OracleUnavailableError):
        dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert job_ids == [0, 1, 2]


def test_remote_mismatched_job_id_is_retried(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    requests = _serve(
        monkeypatch,
        lambda job: {"jobId": job["jobId"] + (100 if job["jobId"] == 0 else 0), "status": "CRASH"},
    )
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok", retry_limit=1)
    outcome = dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert outcome.status == ImageJobStatus.CRASH
    assert [request["jobId"] for request in requests] == [0, 1]


def test_remote_validate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    requests = _serve(
        monkeypatch,
        lambda job: {"jobId": job["jobId"], "status": "COMPILE_ERROR", "log": "bad"},
    )
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok")
    outcome = dispatcher.validate(_shader(tmp_path))
    assert outcome.failed
    assert outcome.output == "bad"
    assert requests[0]["validateOnly"] is True


def test_job_counter_is_shared() -> None:
    counter = JobCounter(start=5)
    first = RemoteShaderDispatcher("http://a", "t", job_counter=counter)
    second = RemoteShaderDispatcher("http://b", "t", job_counter=counter)
    assert first.job_counter.next_id() == 5
    assert second.job_counter.next_id() == 6


def test_build_dispatcher_picks_backend() -> None:
    local = build_dispatcher(ReducerSettings(seed=0, server="."))
    assert isinstance(local, LocalShaderDispatcher)
    remote = build_dispatcher(ReducerSettings(seed=0, server="http://host", token="t"))
    assert isinstance(remote, RemoteShaderDispatcher)
    swift = build_dispatcher(
        ReducerSettings(seed=0, swiftshader=True, render_command=[sys.executable, "{shader}"])
    )
    assert isinstance(swift, LocalShaderDispatcher)
    assert swift.use_software_renderer


@pytest.mark.parametrize("png", ["not base64 at all!", "iVBORw0KGgo"])
def test_remote_undecodable_image_is_an_oracle_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, png: str
) -> None:
    _serve(monkeypatch, lambda job: {"jobId": job["jobId"], "status": "SUCCESS", "png": png})
    dispatcher = RemoteShaderDispatcher("http://host/manageAPI", "tok")
    with pytest.raises(OracleUnavailableError):
        dispatcher.render(_shader(tmp_path), tmp_path / "out.png")
    assert not (tmp_path / "out.png").exists()


def test_build_dispatcher_needs_token_for_server() -> None:
    with pytest.raises(UsageError):
        build_dispatcher(ReducerSettings(seed=0, server="http://host"))
