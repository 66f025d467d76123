from __future__ import annotations

import base64
import binascii
import itertools
import logging
import threading
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional

import orjson

from ..errors import OracleUnavailableError
from ..program import METADATA_EXTENSION
from ..utils import read_json
from .base import ImageJobStatus, RenderOutcome, ValidationOutcome

logger = logging.getLogger(__name__)

MANAGE_ENDPOINT = "/manageAPI"


class JobCounter:
    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)


class RemoteShaderDispatcher:
    def __init__(
        self,
        url: str,
        token: str,
        job_counter: Optional[JobCounter] = None,
        retry_limit: int = 2,
        timeout_s: float = 30.0,
    ) -> None:
        self.url = url
        self.token = token
        self.job_counter = job_counter or JobCounter()
        self.retry_limit = retry_limit
        self.timeout_s = timeout_s

    @classmethod
    def for_server(
        cls, server: str, token: str, retry_limit: int = 2, timeout_s: float = 30.0
    ) -> "RemoteShaderDispatcher":
        return cls(
            server.rstrip("/") + MANAGE_ENDPOINT,
            token,
            retry_limit=retry_limit,
            timeout_s=timeout_s,
        )

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = urllib.request.Request(
            self.url,
            data=orjson.dumps(payload),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(request, timeout=self.timeout_s) as response:
            body = response.read()
        data = orjson.loads(body)
        if not isinstance(data, dict):
            raise ValueError("server response is not a JSON object")
        if data.get("jobId") != payload["jobId"]:
            raise ValueError(
                f"response for job {data.get('jobId')} does not match job {payload['jobId']}"
            )
        return data

    def _submit(self, job: Dict[str, Any]) -> Dict[str, Any]:
        last_error: Optional[Exception] = None
        for attempt in range(self.retry_limit + 1):
            payload = dict(job, jobId=self.job_counter.next_id(), token=self.token)
            try:
                return self._post(payload)
            except (urllib.error.URLError, OSError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "job %s failed (attempt %d of %d): %s",
                    payload["jobId"],
                    attempt + 1,
                    self.retry_limit + 1,
                    exc,
                )
        raise OracleUnavailableError(
            f"server at {self.url} gave no usable result after {self.retry_limit + 1} attempts"
        ) from last_error

    def _job(self, shader_path: Path, **extra: Any) -> Dict[str, Any]:
        sidecar = shader_path.with_suffix(METADATA_EXTENSION)
        return {
            "fragmentSource": shader_path.read_text(encoding="utf-8"),
            "metadata": read_json(sidecar) if sidecar.is_file() else {},
            **extra,
        }

    def render(
        self, shader_path: Path, image_path: Path, skip_render: bool = False
    ) -> RenderOutcome:
        response = self._submit(self._job(shader_path, skipRender=skip_render))
        try:
            status = ImageJobStatus(response.get("status", ImageJobStatus.UNEXPECTED_ERROR.value))
        except ValueError:
            status = ImageJobStatus.UNEXPECTED_ERROR
        log = str(response.get("log", ""))
        png = response.get("png")
        if status == ImageJobStatus.SUCCESS and isinstance(png, str):
            try:
                image = base64.b64decode(png, validate=True)
            except binascii.Error as exc:
                raise OracleUnavailableError(
                    f"server at {self.url} returned an undecodable image: {exc}"
                ) from exc
            image_path.write_bytes(image)
            return RenderOutcome(status=status, image_path=image_path, log=log)
        return RenderOutcome(status=status, log=log)

    def validate(self, shader_path: Path) -> ValidationOutcome:
        response = self._submit(self._job(shader_path, validateOnly=True))
        status = response.get("status")
        return ValidationOutcome(
            exit_code=0 if status == ImageJobStatus.SUCCESS.value else 1,
            output=str(response.get("log", "")),
        )
