from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Protocol

from seed_toolkit.store import MOCK_SOURCE_PREFIX, MetricFilter


class MetricReader(Protocol):
    def count_metrics(self, metric_filter: MetricFilter) -> int: ...

    def group_metrics(self, metric_filter: MetricFilter) -> List[Dict[str, Any]]: ...


class VerificationRepository:
    """Read-only provenance queries over the metric store.

    Every query is scoped to one tenant and to rows whose source starts with
    the toolkit prefix. All but the consistency check also require
    ``is_mock_data``.
    """

    def __init__(self, store: MetricReader, source_prefix: str = MOCK_SOURCE_PREFIX):
        self.store = store
        self.source_prefix = source_prefix

    def count_metrics(self, tenant_id: str, start: datetime, end: datetime) -> int:
        return self.store.count_metrics(
            MetricFilter(
                tenant_id=tenant_id,
                is_mock_data=True,
                source_prefix=self.source_prefix,
                date_gte=start,
                date_lte=end,
            )
        )

    def count_drift_metrics(self, tenant_id: str, start: datetime, end: datetime) -> int:
        return self.store.count_metrics(
            MetricFilter(
                tenant_id=tenant_id,
                is_mock_data=True,
                source_prefix=self.source_prefix,
                date_gte=start,
                date_lte=end,
                outside_window=True,
            )
        )

    def check_mock_flag_consistency(self, tenant_id: str) -> int:
        return self.store.count_metrics(
            MetricFilter(
                tenant_id=tenant_id,
                is_mock_data=False,
                source_prefix=self.source_prefix,
            )
        )

    def get_aggregates(
        self, tenant_id: str, start: datetime, end: datetime
    ) -> List[Dict[str, Any]]:
        return self.store.group_metrics(
            MetricFilter(
                tenant_id=tenant_id,
                is_mock_data=True,
                source_prefix=self.source_prefix,
                date_gte=start,
                date_lte=end,
            )
        )


__all__ = ["MetricReader", "VerificationRepository"]
