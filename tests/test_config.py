from __future__ import annotations

import logging
from pathlib import Path

import pytest

from shader_reducer.config import ReducerSettings, ReductionKind, check_usage, load_settings
from shader_reducer.errors import UsageError
from shader_reducer.resume import place_marker
from shader_reducer.utils import write_json


def test_reduction_kind_parse() -> None:
    assert ReductionKind.parse("NO_IMAGE") == ReductionKind.NO_IMAGE
    assert ReductionKind.parse(" fuzz ") == ReductionKind.FUZZ
    with pytest.raises(UsageError):
        ReductionKind.parse("shrink")


def test_defaults() -> None:
    settings = ReducerSettings()
    assert settings.reduction_kind == ReductionKind.NO_IMAGE
    assert settings.timeout == 30
    assert settings.max_steps == 250
    assert settings.retry_limit == 2
    assert settings.keep_rejected
    assert not settings.uses_server
    assert 0 <= settings.seed < 2**31


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHADER_REDUCER_MAX_STEPS", "12")
    monkeypatch.setenv("SHADER_REDUCER_REDUCE_EVERYWHERE", "true")
    settings = load_settings()
    assert settings.max_steps == 12
    assert settings.reduce_everywhere


def test_load_settings_merges_config_and_overrides(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    write_json(config, {"threshold": 5.5, "seed": 9, "max_steps": 3})
    settings = load_settings(config, max_steps=7, seed=None)
    assert settings.threshold == 5.5
    assert settings.seed == 9
    assert settings.max_steps == 7


def test_invalid_values_are_usage_errors(tmp_path: Path) -> None:
    with pytest.raises(UsageError):
        load_settings(threshold=-1.0)
    with pytest.raises(UsageError):
        load_settings(timeout=0)
    config = tmp_path / "config.json"
    write_json(config, [1, 2, 3])
    with pytest.raises(UsageError):
        load_settings(config)


def test_server_values() -> None:
    assert not ReducerSettings(server="").uses_server
    assert not ReducerSettings(server=".").uses_server
    assert ReducerSettings(server="http://host").uses_server


def test_check_usage_accepts_valid_run(shader: Path, work_dir: Path) -> None:
    check_usage(ReducerSettings(), shader, work_dir)


@pytest.mark.parametrize(
    "overrides",
    [
        {"reduction_kind": ReductionKind.VALIDATOR_ERROR},
        {"reduction_kind": ReductionKind.IDENTICAL},
        {"reduction_kind": ReductionKind.BELOW_THRESHOLD},
        {"server": "http://host"},
        {"reference_image": Path("missing.png")},
        {"continue_previous_reduction": True},
    ],
)
def test_check_usage_rejects(overrides: dict, shader: Path, work_dir: Path) -> None:
    with pytest.raises(UsageError):
        check_usage(ReducerSettings(**overrides), shader, work_dir)


def test_check_usage_needs_shader_and_metadata(shader: Path, work_dir: Path) -> None:
    with pytest.raises(UsageError):
        check_usage(ReducerSettings(), shader.with_name("other.frag"), work_dir)
    shader.with_suffix(".json").unlink()
    with pytest.raises(UsageError):
        check_usage(ReducerSettings(), shader, work_dir)


def test_check_usage_allows_continuing_with_marker(shader: Path, work_dir: Path) -> None:
    work_dir.mkdir()
    place_marker(work_dir)
    check_usage(ReducerSettings(continue_previous_reduction=True), shader, work_dir)


def test_check_usage_warnings(
    shader: Path, work_dir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="shader_reducer.config"):
        check_usage(ReducerSettings(token="abc"), shader, work_dir)
        check_usage(
            ReducerSettings(server="http://host", token="abc", swiftshader=True), shader, work_dir
        )
    assert "--token ignored" in caplog.text
    assert "--swiftshader ignored" in caplog.text


def test_malformed_config_is_a_usage_error(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    config.write_text('{"max_steps": 3,', encoding="utf-8")
    with pytest.raises(UsageError, match="not valid JSON"):
        load_settings(config)


def test_check_usage_rejects_fresh_run_over_earlier_steps(shader: Path, work_dir: Path) -> None:
    work_dir.mkdir()
    (work_dir / "sample_002_failure.frag").write_text("", encoding="utf-8")
    with pytest.raises(UsageError, match="continue-previous-reduction"):
        check_usage(ReducerSettings(), shader, work_dir)
    check_usage(ReducerSettings(), shader, work_dir.parent / "other")
