from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("polars")

from seed_toolkit.generate.platforms import (  # noqa: E402
    SEEDABLE_PLATFORMS,
    normalize_platform,
    parse_platform_csv,
)
from seed_toolkit.generate.simulator import (  # noqa: E402
    DAILY_COLUMNS,
    AdSimulator,
    date_range,
    derive_platform_seed,
    derive_run_seed,
)

ANCHOR = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _frame(trend: str = "STABLE", seed: int = 1234, platform: str = "google_ads"):
    return AdSimulator().generate_range(
        platform=platform,
        anchor=ANCHOR,
        days=30,
        trend=trend,
        base_impressions=10_000,
        seed=seed,
    )


def test_date_range_ends_on_anchor_day() -> None:
    days = date_range(datetime(2025, 1, 1, 15, 30, tzinfo=timezone.utc), 3)

    assert days == [datetime(2024, 12, 30), datetime(2024, 12, 31), datetime(2025, 1, 1)]


def test_date_range_rejects_empty_window() -> None:
    with pytest.raises(ValueError):
        date_range(ANCHOR, 0)


def test_same_seed_reproduces_frame() -> None:
    assert _frame().equals(_frame())
    assert not _frame(seed=1).equals(_frame(seed=2))


@pytest.mark.parametrize("trend", ["STABLE", "GROWTH", "DECLINE", "SPIKE"])
def test_funnel_is_consistent(trend: str) -> None:
    frame = _frame(trend=trend)

    assert frame.columns == list(DAILY_COLUMNS)
    assert frame.height == 30
    rows = frame.to_dicts()
    for row in rows:
        assert 0 <= row["clicks"] <= row["impressions"]
        assert 0 <= row["conversions"] <= row["clicks"]
        assert row["spend"] >= 0
        assert row["revenue"] >= 0


def test_growth_trend_rises_over_window() -> None:
    impressions = _frame(trend="GROWTH")["impressions"].to_list()

    assert sum(impressions[-7:]) > sum(impressions[:7])


def test_unknown_platform_has_no_profile() -> None:
    with pytest.raises(ValueError):
        _frame(platform="instagram")


def test_run_and_platform_seeds_are_stable() -> None:
    run_seed = derive_run_seed("tenant-a", "baseline", 42)

    assert run_seed == derive_run_seed("tenant-a", "baseline", 42)
    assert run_seed != derive_run_seed("tenant-b", "baseline", 42)
    assert derive_platform_seed(run_seed, "tiktok") != derive_platform_seed(run_seed, "shopee")


def test_empty_platform_list_selects_all_seedable() -> None:
    selection = parse_platform_csv(" , ")

    assert selection.ok
    assert selection.platforms == SEEDABLE_PLATFORMS


def test_platform_aliases_are_sorted_and_deduplicated() -> None:
    selection = parse_platform_csv("tt, google, Google-Ads,fb")

    assert selection.platforms == ("facebook", "google_ads", "tiktok")


def test_non_seedable_and_unknown_platforms_are_reported() -> None:
    selection = parse_platform_csv("ig,google_ads,myspace")

    assert not selection.ok
    assert selection.invalid == ("myspace",)
    assert selection.non_seedable == ("instagram",)
    message = selection.error_message()
    assert message.startswith("invalid tokens: myspace; non-seedable: instagram.")
    assert "Allowed seedable platforms: facebook, google_ads" in message


def test_normalize_platform() -> None:
    assert normalize_platform(" LINE ") == "line_ads"
    assert normalize_platform("google ads") == "google_ads"
