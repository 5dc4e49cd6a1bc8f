from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from seed_toolkit.errors import ErrorKind, ScenarioError
from seed_toolkit.pipeline.manifest import iso_utc, utc_now
from seed_toolkit.scenarios.loader import ScenarioLoader
from seed_toolkit.scenarios.validator import DEFAULT_DAYS, DETERMINISTIC_ANCHOR
from seed_toolkit.store import MOCK_SOURCE_PREFIX
from seed_toolkit.utils.logging import bind
from seed_toolkit.verification.models import (
    CheckStatus,
    Severity,
    VerificationCheck,
    VerificationMeta,
    VerificationResult,
    VerificationSummary,
)
from seed_toolkit.verification.repository import VerificationRepository
from seed_toolkit.verification.rules import (
    ANOMALY_RULES,
    BIZ_RULES,
    RuleDescriptor,
    evaluate,
)

RESULT_VERSION = "1.0.0"
GENERATOR = "seed-toolkit-verify"

_LOGGER = logging.getLogger("seed_toolkit.verify")


def _integrity_check(
    rule_id: str, name: str, failed: bool, message: str, details: Optional[dict] = None
) -> VerificationCheck:
    return VerificationCheck(
        rule_id=rule_id,
        name=name,
        status=CheckStatus.FAIL if failed else CheckStatus.PASS,
        severity=Severity.FAIL,
        message=message,
        details=details,
    )


def _rule_eval_error(exc: BaseException) -> VerificationCheck:
    return VerificationCheck(
        rule_id="SYS-ERR",
        name="RULE_EVAL_ERROR",
        status=CheckStatus.FAIL,
        severity=Severity.FAIL,
        message=f"Rule evaluation crashed: {exc}",
    )


class VerificationService:
    """Re-audit seeded data for one scenario and tenant without writing anything."""

    def __init__(
        self,
        repository: VerificationRepository,
        scenarios: ScenarioLoader,
        *,
        business_rules: Sequence[RuleDescriptor] = BIZ_RULES,
        anomaly_rules: Sequence[RuleDescriptor] = ANOMALY_RULES,
        logger: Optional[logging.Logger] = None,
    ):
        self.repository = repository
        self.scenarios = scenarios
        self.business_rules = list(business_rules)
        self.anomaly_rules = list(anomaly_rules)
        self.logger = logger or _LOGGER

    def window_for(self, scenario_id: str) -> tuple[datetime, datetime]:
        spec = self._load(scenario_id)
        anchor = spec.anchor_datetime() or DETERMINISTIC_ANCHOR
        return anchor - timedelta(days=spec.days or DEFAULT_DAYS), anchor

    def verify_scenario(
        self,
        scenario_id: str,
        tenant_id: str,
        run_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> VerificationResult:
        started = time.monotonic()
        log = bind(self.logger, tenant=tenant_id, scenario=scenario_id)
        log.info("Starting verification%s", " (dry run)" if dry_run else "")

        window_start, window_end = self.window_for(scenario_id)
        log.info("Date window: %s - %s", iso_utc(window_start), iso_utc(window_end))

        checks: List[VerificationCheck] = []

        drift = self.repository.count_drift_metrics(tenant_id, window_start, window_end)
        checks.append(
            _integrity_check(
                "INT-003",
                "DATE_WINDOW_MATCH",
                drift > 0,
                f"Found {drift} metrics outside window" if drift else "All data within window",
                {
                    "driftCount": drift,
                    "windowStart": iso_utc(window_start),
                    "windowEnd": iso_utc(window_end),
                }
                if drift
                else None,
            )
        )

        mistagged = self.repository.check_mock_flag_consistency(tenant_id)
        checks.append(
            _integrity_check(
                "INT-004",
                "MOCK_FLAG_CONSISTENCY",
                mistagged > 0,
                f"Found {mistagged} records with toolkit source but isMockData=false"
                if mistagged
                else "All toolkit records have isMockData=true",
                {"count": mistagged} if mistagged else None,
            )
        )

        count = self.repository.count_metrics(tenant_id, window_start, window_end)
        checks.append(
            _integrity_check(
                "INT-001",
                "ROW_COUNT_MATCH",
                count == 0,
                f"Found {count} metrics" if count else "No metrics found for scenario",
                {"count": count} if count else {"count": 0, "expected": ">0"},
            )
        )

        try:
            aggregates = self.repository.get_aggregates(tenant_id, window_start, window_end)
        except Exception as exc:  # noqa: BLE001
            log.exception("Aggregate query failed")
            checks.append(_rule_eval_error(exc))
            aggregates = []
        else:
            if not aggregates and count:
                log.warning("Metrics found but aggregates returned empty")

        for aggregate in aggregates:
            try:
                evaluated = evaluate(aggregate, self.business_rules)
                evaluated.extend(evaluate(aggregate, self.anomaly_rules))
            except Exception as exc:  # noqa: BLE001
                log.exception("Rule evaluation failed")
                checks.append(_rule_eval_error(exc))
                continue
            checks.extend(evaluated)

        summary = VerificationSummary.from_checks(
            checks, int((time.monotonic() - started) * 1000)
        )
        log.info(
            "Verification %s: %d passed, %d failed, %d warnings",
            summary.status.value,
            summary.passed,
            summary.failed,
            summary.warnings,
        )
        return VerificationResult(
            meta=VerificationMeta(
                version=RESULT_VERSION,
                generator=GENERATOR,
                created_at=iso_utc(utc_now()),
                run_id=run_id or "unknown",
                scenario_id=scenario_id,
                tenant_id=tenant_id,
            ),
            summary=summary,
            results=tuple(checks),
            provenance={"isMockData": True, "sourcePrefix": MOCK_SOURCE_PREFIX},
        )

    def _load(self, scenario_id: str):
        try:
            return self.scenarios.load(scenario_id)
        except ScenarioError as exc:
            self.logger.error("Failed to load scenario: %s", exc)
            if exc.kind == ErrorKind.SECURITY:
                raise
            raise ScenarioError(
                "SCENARIO_NOT_FOUND",
                f"Scenario {scenario_id} not found or invalid: {exc.message}",
                kind=ErrorKind.NOT_FOUND,
            ) from exc


__all__ = ["GENERATOR", "RESULT_VERSION", "VerificationService"]
