from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("duckdb")
pl = pytest.importorskip("polars")

from seed_toolkit.store import (  # noqa: E402
    METRIC_COLUMNS,
    CampaignRecord,
    MetricFilter,
    MetricStore,
    campaign_id_for,
)


DATES = (datetime(2024, 12, 30), datetime(2024, 12, 31), datetime(2025, 1, 1))


def _rows(tenant: str, platform: str, source: str, *, mock: bool = True):
    days = len(DATES)
    return pl.DataFrame(
        {
            "tenant_id": [tenant] * days,
            "campaign_id": [campaign_id_for(tenant, f"unified-x-{platform}")] * days,
            "platform": [platform] * days,
            "date": list(DATES),
            "impressions": [1000] * days,
            "clicks": [50] * days,
            "spend": [25.0] * days,
            "conversions": [5] * days,
            "revenue": [100.0] * days,
            "ctr": [5.0] * days,
            "cpc": [0.5] * days,
            "cvr": [10.0] * days,
            "roas": [4.0] * days,
            "is_mock_data": [mock] * days,
            "source": [source] * days,
        }
    ).select(list(METRIC_COLUMNS))


@pytest.fixture()
def store():
    store = MetricStore.open(None)
    yield store
    store.close()


def test_counts_are_scoped_by_tenant_and_provenance(store: MetricStore) -> None:
    store.create_metrics(_rows("t1", "tiktok", "toolkit:unified:baseline:42"))
    store.create_metrics(_rows("t2", "tiktok", "toolkit:unified:baseline:42"))
    store.create_metrics(_rows("t1", "shopee", "import:csv"))

    assert store.count_metrics(MetricFilter("t1")) == 3
    assert store.count_metrics(MetricFilter("t1", source_prefix=None)) == 6
    assert store.count_metrics(MetricFilter("t1", platforms=("shopee",), source_prefix=None)) == 3


def test_exact_source_does_not_match_longer_seed(store: MetricStore) -> None:
    store.create_metrics(_rows("t1", "tiktok", "toolkit:unified:baseline:420"))

    assert store.count_metrics(MetricFilter("t1", source="toolkit:unified:baseline:42")) == 0
    assert store.count_metrics(MetricFilter("t1", source="toolkit:unified:baseline:420")) == 3


def test_window_and_its_negation(store: MetricStore) -> None:
    store.create_metrics(_rows("t1", "tiktok", "toolkit:a"))
    window = dict(
        date_gte=datetime(2024, 12, 31, tzinfo=timezone.utc),
        date_lte=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )

    assert store.count_metrics(MetricFilter("t1", **window)) == 2
    assert store.count_metrics(MetricFilter("t1", outside_window=True, **window)) == 1


def test_group_metrics_sums_per_campaign(store: MetricStore) -> None:
    store.create_metrics(_rows("t1", "tiktok", "toolkit:a"))
    store.create_metrics(_rows("t1", "shopee", "toolkit:a"))

    groups = store.group_metrics(MetricFilter("t1"))

    assert len(groups) == 2
    assert {group["platform"] for group in groups} == {"tiktok", "shopee"}
    assert all(group["impressions"] == 3000 for group in groups)
    assert all(group["spend"] == pytest.approx(75.0) for group in groups)


def test_has_real_data(store: MetricStore) -> None:
    assert not store.has_real_data("t1")

    store.create_campaign(
        CampaignRecord("t1", "tiktok", "unified-baseline-42-tiktok-0", "Mock", "toolkit:a")
    )
    store.create_metrics(_rows("t1", "tiktok", "toolkit:a"))
    assert not store.has_real_data("t1")

    store.create_metrics(_rows("t1", "tiktok", "crm", mock=False))
    assert store.has_real_data("t1")
    assert not store.has_real_data("t2")


def test_transaction_rolls_back_on_error(store: MetricStore) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.create_metrics(_rows("t1", "tiktok", "toolkit:a"))
            raise RuntimeError("abort")

    assert store.count_metrics(MetricFilter("t1")) == 0


def test_delete_mock_metrics_leaves_other_rows(store: MetricStore) -> None:
    store.create_metrics(_rows("t1", "tiktok", "toolkit:a"))
    store.create_metrics(_rows("t1", "tiktok", "toolkit:b"))
    store.create_metrics(_rows("t1", "tiktok", "toolkit:a", mock=False))

    removed = store.delete_mock_metrics("t1", "toolkit:a", "tiktok")

    assert removed == 3
    assert store.count_metrics(MetricFilter("t1", source_prefix=None)) == 3
    assert store.count_metrics(MetricFilter("t1", is_mock_data=False, source_prefix=None)) == 3


def test_campaign_id_is_deterministic() -> None:
    assert campaign_id_for("t1", "x") == campaign_id_for("t1", "x")
    assert campaign_id_for("t1", "x") != campaign_id_for("t2", "x")
    assert campaign_id_for("t1", "x").startswith("cmp_")
