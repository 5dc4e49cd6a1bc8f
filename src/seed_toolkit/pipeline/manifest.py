"""Run manifests: the append-only audit record of one toolkit command.

A :class:`ManifestBuilder` collects steps strictly in the order they close and
freezes into a :class:`ManifestDocument` once. :class:`ManifestWriter`
persists documents best-effort under the manifest path policy.
"""

from __future__ import annotations

import json
import logging
import os
import platform as _platform
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from seed_toolkit import __version__
from seed_toolkit.errors import (
    EXIT_FATAL,
    ErrorKind,
    OutputPathPolicyError,
    ToolkitError,
)
from seed_toolkit.utils.io import write_text_atomic
from seed_toolkit.utils.paths import resolve_output_dir
from seed_toolkit.utils.redact import (
    MAX_SUMMARY,
    redact_args,
    sanitize_error,
    scrub_message,
    truncate,
)

MANIFEST_SCHEMA_VERSION = "1.0.0"
MAX_MANIFEST_SIZE = 256 * 1024

Clock = Callable[[], datetime]
PathLike = Union[str, Path]

_LOGGER = logging.getLogger("seed_toolkit.manifest")


class StepStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    BLOCKED = "BLOCKED"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def _duration_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


@dataclass(frozen=True)
class ManifestStep:
    step_id: str
    name: str
    started_at: datetime
    finished_at: datetime
    status: StepStatus
    summary: str
    metrics: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def duration_ms(self) -> int:
        return _duration_ms(self.started_at, self.finished_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "name": self.name,
            "startedAt": iso_utc(self.started_at),
            "finishedAt": iso_utc(self.finished_at),
            "durationMs": self.duration_ms,
            "status": self.status.value,
            "summary": self.summary,
            "metrics": self.metrics,
            "error": self.error,
        }


@dataclass(frozen=True)
class ManifestDocument:
    run_id: str
    command_name: str
    started_at: datetime
    finished_at: datetime
    status: RunStatus
    exit_code: int
    execution_mode: str
    args: Dict[str, Any]
    flags: Dict[str, Any]
    tenant_id: Optional[str]
    steps: Tuple[ManifestStep, ...]
    writes_planned: Optional[Dict[str, Any]]
    writes_applied: Optional[Dict[str, Any]]
    warnings: Tuple[str, ...]
    errors: Tuple[Dict[str, Any], ...]
    inputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> int:
        return _duration_ms(self.started_at, self.finished_at)

    def step(self, name: str) -> Optional[ManifestStep]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": MANIFEST_SCHEMA_VERSION,
            "runId": self.run_id,
            "startedAt": iso_utc(self.started_at),
            "finishedAt": iso_utc(self.finished_at),
            "durationMs": self.duration_ms,
            "status": self.status.value,
            "exitCode": self.exit_code,
            "executionMode": self.execution_mode,
            "runtime": {
                "toolkitVersion": __version__,
                "pythonVersion": _platform.python_version(),
                "os": sys.platform,
                "pid": os.getpid(),
            },
            "invocation": {
                "commandName": self.command_name,
                "args": self.args,
                "flags": self.flags,
            },
            "tenant": {"tenantId": self.tenant_id},
            "inputs": self.inputs,
            "steps": [step.to_dict() for step in self.steps],
            "results": {
                "writesPlanned": self.writes_planned,
                "writesApplied": self.writes_applied,
                "warnings": list(self.warnings),
                "errors": list(self.errors),
            },
        }


class StepHandle:
    def __init__(self, builder: "ManifestBuilder", name: str, started_at: datetime):
        self._builder = builder
        self.name = name
        self.started_at = started_at
        self.closed = False

    def close(
        self,
        status: StepStatus,
        summary: str,
        *,
        metrics: Optional[Mapping[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> ManifestStep:
        if self.closed:
            raise RuntimeError(f"Step {self.name} is already closed.")
        self.closed = True
        return self._builder._append(self, status, summary, metrics, error)

    def succeed(self, summary: str, **metrics: Any) -> ManifestStep:
        return self.close(StepStatus.SUCCESS, summary, metrics=metrics or None)

    def skip(self, summary: str) -> ManifestStep:
        return self.close(StepStatus.SKIPPED, summary)

    def fail(self, summary: str, error: Optional[BaseException] = None) -> ManifestStep:
        return self.close(StepStatus.FAILED, summary, error=error)


class ManifestBuilder:
    def __init__(
        self,
        run_id: str,
        command_name: str,
        *,
        args: Optional[Mapping[str, Any]] = None,
        flags: Optional[Mapping[str, Any]] = None,
        tenant_id: Optional[str] = None,
        execution_mode: str = "CLI",
        clock: Clock = utc_now,
    ):
        self.run_id = run_id
        self.command_name = command_name
        self.args = redact_args(args or {})
        self.flags = redact_args(flags or {})
        self.tenant_id = tenant_id
        self.execution_mode = execution_mode
        self._clock = clock
        self.started_at = clock()
        self._steps: List[ManifestStep] = []
        self._open: Optional[StepHandle] = None
        self._warnings: List[str] = []
        self._errors: List[Dict[str, Any]] = []
        self._inputs: Dict[str, Any] = {}
        self._writes_planned: Optional[Dict[str, Any]] = None
        self._writes_applied: Optional[Dict[str, Any]] = None
        self._document: Optional[ManifestDocument] = None

    @property
    def steps(self) -> Tuple[ManifestStep, ...]:
        return tuple(self._steps)

    @property
    def finalized(self) -> bool:
        return self._document is not None

    def start_step(self, name: str) -> StepHandle:
        self._check_open()
        if self._open is not None and not self._open.closed:
            raise RuntimeError(
                f"Cannot start {name} while {self._open.name} is still open."
            )
        self._open = StepHandle(self, name, self._clock())
        return self._open

    def add_warning(self, message: str) -> None:
        self._check_open()
        self._warnings.append(truncate(scrub_message(message), MAX_SUMMARY))

    def add_error(self, error: BaseException) -> None:
        self._check_open()
        self._errors.append(_step_error(error))

    def set_input(self, key: str, value: Any) -> None:
        self._check_open()
        self._inputs[key] = value

    def set_writes(
        self,
        *,
        planned: Optional[Mapping[str, Any]] = None,
        applied: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._check_open()
        if planned is not None:
            self._writes_planned = json.loads(json.dumps(dict(planned)))
        if applied is not None:
            self._writes_applied = json.loads(json.dumps(dict(applied)))

    def finalize(self, status: RunStatus, exit_code: int) -> ManifestDocument:
        self._check_open()
        if self._open is not None and not self._open.closed:
            self._open.fail("Step did not complete.")
        self._document = ManifestDocument(
            run_id=self.run_id,
            command_name=self.command_name,
            started_at=self.started_at,
            finished_at=self._clock(),
            status=status,
            exit_code=exit_code,
            execution_mode=self.execution_mode,
            args=self.args,
            flags=self.flags,
            tenant_id=self.tenant_id,
            steps=tuple(self._steps),
            writes_planned=self._writes_planned,
            writes_applied=self._writes_applied,
            warnings=tuple(self._warnings),
            errors=tuple(self._errors),
            inputs=dict(self._inputs),
        )
        return self._document

    def _append(
        self,
        handle: StepHandle,
        status: StepStatus,
        summary: str,
        metrics: Optional[Mapping[str, Any]],
        error: Optional[BaseException],
    ) -> ManifestStep:
        self._check_open()
        step = ManifestStep(
            step_id=f"{len(self._steps) + 1:02d}-{handle.name.lower()}",
            name=handle.name,
            started_at=handle.started_at,
            finished_at=self._clock(),
            status=status,
            summary=truncate(scrub_message(summary), MAX_SUMMARY),
            metrics=dict(metrics) if metrics else None,
            error=_step_error(error) if error is not None else None,
        )
        self._steps.append(step)
        return step

    def _check_open(self) -> None:
        if self._document is not None:
            raise RuntimeError("Manifest is finalized; it can no longer change.")


def _step_error(error: BaseException) -> Dict[str, Any]:
    sanitized = sanitize_error(error)
    sanitized["isRecoverable"] = bool(getattr(error, "is_recoverable", False))
    return sanitized


def manifest_filename(document: ManifestDocument) -> str:
    stamp = document.started_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{document.run_id}_{document.command_name}_{stamp}.manifest.json"


class ManifestWriter:
    """Persist manifests; failures are logged and never raised."""

    def __init__(
        self,
        output_dir: Optional[PathLike] = None,
        *,
        allowed_roots: Iterable[PathLike] = (),
        logger: Optional[logging.Logger] = None,
    ):
        self.output_dir = output_dir
        self.allowed_roots = tuple(allowed_roots)
        self.logger = logger or _LOGGER

    def write(self, document: ManifestDocument) -> Optional[Path]:
        try:
            directory = resolve_output_dir(
                "manifest", self.output_dir, allowed_roots=self.allowed_roots
            )
        except OutputPathPolicyError as exc:
            self.logger.warning("Manifest not written: %s", exc.message)
            return None

        payload = json.dumps(document.to_dict(), indent=2, sort_keys=True) + "\n"
        size = len(payload.encode("utf-8"))
        if size > MAX_MANIFEST_SIZE:
            self.logger.warning(
                "Manifest not written: %d bytes exceeds limit of %d",
                size,
                MAX_MANIFEST_SIZE,
            )
            return None

        target = directory / manifest_filename(document)
        try:
            write_text_atomic(target, payload)
        except OSError as exc:
            self.logger.warning("Manifest not written to %s: %s", target, exc)
            return None
        return target


def status_for_error(error: BaseException) -> Tuple[RunStatus, int]:
    if isinstance(error, ToolkitError):
        if error.kind == ErrorKind.SECURITY:
            return RunStatus.BLOCKED, error.exit_code
        return RunStatus.FAILED, error.exit_code
    return RunStatus.FAILED, EXIT_FATAL


@dataclass(frozen=True)
class PipelineResult:
    manifest: ManifestDocument
    manifest_path: Optional[Path] = None

    @property
    def status(self) -> RunStatus:
        return self.manifest.status

    @property
    def exit_code(self) -> int:
        return self.manifest.exit_code


def execute_with_manifest(
    builder: ManifestBuilder,
    body: Callable[[ManifestBuilder], Tuple[RunStatus, int]],
    writer: Optional[ManifestWriter] = None,
    logger: Optional[logging.Logger] = None,
) -> PipelineResult:
    """Run ``body`` and always finalize (and optionally persist) the manifest.

    ``body`` returns the final status and exit code. A :class:`ToolkitError`
    escaping it maps through :func:`status_for_error`; anything else is
    recorded as a sanitized error with a generic fatal exit code.
    """
    log = logger or _LOGGER
    try:
        status, exit_code = body(builder)
    except Exception as exc:  # noqa: BLE001
        status, exit_code = status_for_error(exc)
        builder.add_error(exc)
        if isinstance(exc, ToolkitError):
            log.error("%s failed: %s", builder.command_name, exc)
        else:
            log.exception("%s crashed", builder.command_name)

    document = builder.finalize(status, exit_code)
    path = writer.write(document) if writer is not None else None
    if path is not None:
        log.info("Manifest written to %s", path)
    return PipelineResult(manifest=document, manifest_path=path)


__all__ = [
    "MANIFEST_SCHEMA_VERSION",
    "MAX_MANIFEST_SIZE",
    "ManifestBuilder",
    "ManifestDocument",
    "ManifestStep",
    "ManifestWriter",
    "PipelineResult",
    "RunStatus",
    "StepHandle",
    "StepStatus",
    "execute_with_manifest",
    "iso_utc",
    "manifest_filename",
    "status_for_error",
    "utc_now",
]
