from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from seed_toolkit.errors import EXIT_BLOCKED, EXIT_FATAL, HygieneError
from seed_toolkit.pipeline.manifest import (
    ManifestBuilder,
    ManifestWriter,
    RunStatus,
    StepStatus,
    execute_with_manifest,
    iso_utc,
    manifest_filename,
    status_for_error,
)


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(milliseconds=250)
        return current


def _builder(**kwargs) -> ManifestBuilder:
    return ManifestBuilder("run-1", "seed", clock=TickingClock(), **kwargs)


def test_steps_append_in_close_order() -> None:
    builder = _builder()
    builder.start_step("VALIDATE_INPUT").succeed("ok", platforms=2)
    builder.start_step("LOAD_FIXTURES").skip("not needed")

    document = builder.finalize(RunStatus.SUCCESS, 0)

    assert [step.name for step in document.steps] == ["VALIDATE_INPUT", "LOAD_FIXTURES"]
    assert [step.step_id for step in document.steps] == ["01-validate_input", "02-load_fixtures"]
    assert document.steps[0].metrics == {"platforms": 2}
    assert document.steps[1].status is StepStatus.SKIPPED
    assert document.steps[0].duration_ms == 250


def test_step_cannot_close_twice() -> None:
    builder = _builder()
    handle = builder.start_step("EXECUTE")
    handle.succeed("done")

    with pytest.raises(RuntimeError):
        handle.fail("again")


def test_only_one_step_open_at_a_time() -> None:
    builder = _builder()
    builder.start_step("EXECUTE")

    with pytest.raises(RuntimeError):
        builder.start_step("VERIFY")


def test_finalize_fails_open_step_and_freezes() -> None:
    builder = _builder()
    builder.start_step("EXECUTE")

    document = builder.finalize(RunStatus.FAILED, 1)

    assert document.steps[-1].status is StepStatus.FAILED
    assert builder.finalized
    with pytest.raises(RuntimeError):
        builder.add_warning("late")
    with pytest.raises(RuntimeError):
        builder.start_step("VERIFY")


def test_args_are_redacted_and_summaries_scrubbed() -> None:
    builder = _builder(args={"apiToken": "abc", "scenario": "baseline"})
    builder.start_step("EXECUTE").succeed("connected to postgres://user:pw@db/app")

    document = builder.finalize(RunStatus.SUCCESS, 0).to_dict()

    assert document["invocation"]["args"] == {"apiToken": "[REDACTED]", "scenario": "baseline"}
    assert "pw@" not in document["steps"][0]["summary"]
    assert document["runtime"]["toolkitVersion"]


def test_status_for_error_mapping() -> None:
    assert status_for_error(HygieneError("REAL_TENANT_BLOCKED", "no")) == (
        RunStatus.BLOCKED,
        EXIT_BLOCKED,
    )
    assert status_for_error(KeyError("x")) == (RunStatus.FAILED, EXIT_FATAL)


def test_execute_with_manifest_records_unexpected_errors() -> None:
    def body(builder: ManifestBuilder):
        builder.start_step("EXECUTE")
        raise ZeroDivisionError("division by zero")

    result = execute_with_manifest(_builder(), body)

    assert result.status is RunStatus.FAILED
    assert result.exit_code == EXIT_FATAL
    assert result.manifest_path is None
    assert result.manifest.errors[0]["code"] == "ZeroDivisionError"


def test_writer_persists_under_default_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    document = _builder().finalize(RunStatus.SUCCESS, 0)

    path = ManifestWriter().write(document)

    assert path == tmp_path / "toolkit-manifests" / "run-1_seed_20250101T120000Z.manifest.json"
    assert path.name == manifest_filename(document)
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["status"] == "SUCCESS"
    assert payload["invocation"]["commandName"] == "seed"
    assert not list(path.parent.glob("*.tmp"))


def test_writer_is_best_effort_on_policy_violation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    document = _builder().finalize(RunStatus.SUCCESS, 0)

    assert ManifestWriter(tmp_path / "outside").write(document) is None
    assert not (tmp_path / "outside").exists()


def test_writer_skips_oversized_manifest(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    args = {f"arg{index}": "x" * 900 for index in range(400)}
    document = _builder(args=args).finalize(RunStatus.SUCCESS, 0)

    assert ManifestWriter().write(document) is None
    assert not (tmp_path / "toolkit-manifests").exists()


def test_run_statuses_are_the_three_pipeline_outcomes() -> None:
    assert {status.value for status in RunStatus} == {"SUCCESS", "FAILED", "BLOCKED"}


def test_iso_utc_normalises_offsets_to_z() -> None:
    plus_two = timezone(timedelta(hours=2))

    assert iso_utc(datetime(2025, 1, 1, 2, 0, tzinfo=plus_two)) == "2025-01-01T00:00:00.000Z"
