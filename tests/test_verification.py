from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

from seed_toolkit.errors import EXIT_BLOCKED, EXIT_VALIDATION, ScenarioError
from seed_toolkit.scenarios.loader import ScenarioLoader
from seed_toolkit.store import MetricFilter
from seed_toolkit.verification.models import CheckStatus
from seed_toolkit.verification.repository import VerificationRepository
from seed_toolkit.verification.service import VerificationService


class RecordingStore:
    """Answers reads from canned values and records every filter it sees."""

    def __init__(self, *, in_window=0, drift=0, mistagged=0, groups=None):
        self.in_window = in_window
        self.drift = drift
        self.mistagged = mistagged
        self.groups = groups or []
        self.filters: List[MetricFilter] = []

    def count_metrics(self, metric_filter: MetricFilter) -> int:
        self.filters.append(metric_filter)
        if not metric_filter.is_mock_data:
            return self.mistagged
        if metric_filter.outside_window:
            return self.drift
        return self.in_window

    def group_metrics(self, metric_filter: MetricFilter) -> List[Dict[str, Any]]:
        self.filters.append(metric_filter)
        return list(self.groups)


class BrokenStore(RecordingStore):
    def group_metrics(self, metric_filter: MetricFilter) -> List[Dict[str, Any]]:
        raise ConnectionError("connection reset")


HEALTHY = {
    "campaign_id": "cmp_1",
    "platform": "google_ads",
    "impressions": 10_000,
    "clicks": 300,
    "spend": 150.0,
    "conversions": 12,
    "revenue": 900.0,
}


def _service(store: RecordingStore) -> VerificationService:
    return VerificationService(VerificationRepository(store), ScenarioLoader())


def _ids(result) -> List[str]:
    return [check.rule_id for check in result.results]


def test_healthy_data_passes() -> None:
    store = RecordingStore(in_window=180, groups=[HEALTHY])

    result = _service(store).verify_scenario("baseline", "tenant-a", run_id="run-1")

    assert result.status is CheckStatus.PASS
    assert _ids(result)[:3] == ["INT-003", "INT-004", "INT-001"]
    assert len(result.results) == 3 + 5
    assert result.summary.passed == 8
    assert result.meta.run_id == "run-1"
    assert result.provenance == {"isMockData": True, "sourcePrefix": "toolkit:"}


def test_every_query_is_tenant_and_provenance_scoped() -> None:
    store = RecordingStore(in_window=1, groups=[HEALTHY])

    _service(store).verify_scenario("baseline", "tenant-a")

    assert store.filters
    assert all(f.tenant_id == "tenant-a" for f in store.filters)
    assert all(f.source_prefix == "toolkit:" for f in store.filters)
    mock_flags = [f.is_mock_data for f in store.filters]
    assert mock_flags.count(False) == 1


def test_window_uses_anchor_and_days() -> None:
    store = RecordingStore(in_window=1)
    service = _service(store)

    start, end = service.window_for("growth-campaign")
    service.verify_scenario("growth-campaign", "tenant-a")

    assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert (end - start).days == 60
    window_filters = [f for f in store.filters if f.date_gte is not None]
    assert {(f.date_gte, f.date_lte) for f in window_filters} == {(start, end)}


def test_no_rows_fails_row_count() -> None:
    result = _service(RecordingStore()).verify_scenario("baseline", "tenant-a")

    row_count = result.results[2]
    assert row_count.rule_id == "INT-001"
    assert row_count.status is CheckStatus.FAIL
    assert row_count.details == {"count": 0, "expected": ">0"}
    assert result.status is CheckStatus.FAIL
    assert result.meta.run_id == "unknown"


def test_drift_and_mistagged_rows_fail() -> None:
    store = RecordingStore(in_window=10, drift=4, mistagged=2, groups=[HEALTHY])

    result = _service(store).verify_scenario("baseline", "tenant-a")

    drift, flags = result.results[0], result.results[1]
    assert drift.status is CheckStatus.FAIL
    assert drift.message == "Found 4 metrics outside window"
    assert drift.details["windowEnd"] == "2025-01-01T00:00:00.000Z"
    assert flags.status is CheckStatus.FAIL
    assert flags.details == {"count": 2}
    assert result.summary.failed == 2


def test_business_warning_makes_overall_warn() -> None:
    losing = dict(HEALTHY, revenue=100.0)
    result = _service(RecordingStore(in_window=5, groups=[losing])).verify_scenario(
        "baseline", "tenant-a"
    )

    assert result.status is CheckStatus.WARN
    assert result.summary.warnings == 1


def test_repository_crash_becomes_system_check() -> None:
    result = _service(BrokenStore(in_window=5)).verify_scenario("baseline", "tenant-a")

    assert result.results[-1].rule_id == "SYS-ERR"
    assert result.results[-1].message == "Rule evaluation crashed: connection reset"
    assert result.status is CheckStatus.FAIL


def test_malformed_aggregate_does_not_hide_later_aggregates() -> None:
    broken = dict(HEALTHY, campaign_id="cmp_0", revenue=None)
    store = RecordingStore(in_window=5, groups=[broken, HEALTHY])

    result = _service(store).verify_scenario("baseline", "tenant-a")

    ids = _ids(result)
    assert ids[3:] == ["BIZ-001", "BIZ-002", "BIZ-003", "ANOM-001", "ANOM-002"] * 2
    assert "SYS-ERR" not in ids
    assert [check.status for check in result.results[-5:]] == [CheckStatus.PASS] * 5
    assert result.status is CheckStatus.FAIL


def test_evaluator_crash_is_contained_per_aggregate(monkeypatch) -> None:
    from seed_toolkit.verification import service as service_module

    real_evaluate = service_module.evaluate

    def flaky_evaluate(aggregate, rules):
        if aggregate["campaign_id"] == "cmp_0":
            raise RuntimeError("bad aggregate")
        return real_evaluate(aggregate, rules)

    monkeypatch.setattr(service_module, "evaluate", flaky_evaluate)
    first = dict(HEALTHY, campaign_id="cmp_0")
    store = RecordingStore(in_window=5, groups=[first, HEALTHY])

    result = _service(store).verify_scenario("baseline", "tenant-a")

    ids = _ids(result)
    assert ids[3] == "SYS-ERR"
    assert result.results[3].message == "Rule evaluation crashed: bad aggregate"
    assert ids[4:] == ["BIZ-001", "BIZ-002", "BIZ-003", "ANOM-001", "ANOM-002"]


def test_unknown_scenario_is_not_found() -> None:
    with pytest.raises(ScenarioError) as exc:
        _service(RecordingStore()).verify_scenario("nope", "tenant-a")

    assert exc.value.code == "SCENARIO_NOT_FOUND"
    assert exc.value.exit_code == EXIT_VALIDATION


def test_traversal_in_scenario_stays_a_security_error() -> None:
    with pytest.raises(ScenarioError) as exc:
        _service(RecordingStore()).verify_scenario("../secret", "tenant-a")

    assert exc.value.exit_code == EXIT_BLOCKED


def test_result_serializes() -> None:
    result = _service(RecordingStore(in_window=1, groups=[HEALTHY])).verify_scenario(
        "baseline", "tenant-a", run_id="r1"
    )

    data = result.to_dict()

    assert set(data) == {"meta", "summary", "results", "provenance"}
    assert data["meta"]["generator"] == "seed-toolkit-verify"
    assert data["summary"]["totalChecks"] == len(data["results"])
