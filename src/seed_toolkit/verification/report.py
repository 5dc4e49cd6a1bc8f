from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Union

import polars as pl

from seed_toolkit.errors import ReportWriteError
from seed_toolkit.utils.io import write_canonical_json_atomic, write_csv_atomic
from seed_toolkit.utils.paths import resolve_output_dir
from seed_toolkit.verification.models import VerificationResult

RUN_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")

PathLike = Union[str, Path]

_LOGGER = logging.getLogger("seed_toolkit.report")


def report_filename(run_id: str) -> str:
    return f"verify-{run_id}.json"


class ReportWriter:
    def __init__(
        self,
        allowed_roots: Iterable[PathLike] = (),
        logger: Optional[logging.Logger] = None,
    ):
        self.allowed_roots = tuple(allowed_roots)
        self.logger = logger or _LOGGER

    def write_report(
        self, result: VerificationResult, output_dir: Optional[PathLike] = None
    ) -> Path:
        """Write ``verify-{runId}.json`` as canonical JSON via ``{path}.tmp``."""
        run_id = result.meta.run_id
        if not RUN_ID_RE.match(run_id or ""):
            raise ReportWriteError(
                "INVALID_RUN_ID",
                f"Security Violation: runId {run_id!r} must match {RUN_ID_RE.pattern}",
            )

        directory = resolve_output_dir(
            "report", output_dir, allowed_roots=self.allowed_roots
        )
        target = directory / report_filename(run_id)
        write_canonical_json_atomic(target, result.to_dict())

        self.logger.info("Verification report written to %s", target)
        return target

    def write_checks_csv(self, result: VerificationResult, report_path: Path) -> Path:
        """Write a flat per-check CSV next to an already written report."""
        frame = pl.DataFrame(
            [
                {
                    "rule_id": check.rule_id,
                    "name": check.name,
                    "status": check.status.value,
                    "severity": check.severity.value,
                    "message": check.message,
                }
                for check in result.results
            ],
            schema={
                "rule_id": pl.Utf8,
                "name": pl.Utf8,
                "status": pl.Utf8,
                "severity": pl.Utf8,
                "message": pl.Utf8,
            },
        )
        target = report_path.with_name(report_path.name.replace(".json", ".checks.csv"))
        write_csv_atomic(target, frame)
        return target


__all__ = ["RUN_ID_RE", "ReportWriter", "report_filename"]
