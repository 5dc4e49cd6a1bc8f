from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    INFO = "INFO"


class Severity(str, Enum):
    FAIL = "FAIL"
    WARN = "WARN"
    INFO = "INFO"


@dataclass(frozen=True)
class VerificationCheck:
    rule_id: str
    name: str
    status: CheckStatus
    severity: Severity
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ruleId": self.rule_id,
            "name": self.name,
            "status": self.status.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class VerificationSummary:
    status: CheckStatus
    total_checks: int
    passed: int
    failed: int
    warnings: int
    duration_ms: int

    @classmethod
    def from_checks(
        cls, checks: Sequence[VerificationCheck], duration_ms: int
    ) -> "VerificationSummary":
        failed = sum(1 for check in checks if check.status == CheckStatus.FAIL)
        warnings = sum(1 for check in checks if check.status == CheckStatus.WARN)
        passed = sum(1 for check in checks if check.status == CheckStatus.PASS)
        if failed:
            status = CheckStatus.FAIL
        elif warnings:
            status = CheckStatus.WARN
        else:
            status = CheckStatus.PASS
        return cls(status, len(checks), passed, failed, warnings, duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "totalChecks": self.total_checks,
            "passed": self.passed,
            "failed": self.failed,
            "warnings": self.warnings,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class VerificationMeta:
    version: str
    generator: str
    created_at: str
    run_id: str
    scenario_id: str
    tenant_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generator": self.generator,
            "createdAt": self.created_at,
            "runId": self.run_id,
            "scenarioId": self.scenario_id,
            "tenantId": self.tenant_id,
        }


@dataclass(frozen=True)
class VerificationResult:
    meta: VerificationMeta
    summary: VerificationSummary
    results: Tuple[VerificationCheck, ...]
    provenance: Dict[str, Any] = field(
        default_factory=lambda: {"isMockData": True, "sourcePrefix": "toolkit:"}
    )

    @property
    def status(self) -> CheckStatus:
        return self.summary.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "summary": self.summary.to_dict(),
            "results": [check.to_dict() for check in self.results],
            "provenance": dict(self.provenance),
        }


__all__ = [
    "CheckStatus",
    "Severity",
    "VerificationCheck",
    "VerificationMeta",
    "VerificationResult",
    "VerificationSummary",
]
