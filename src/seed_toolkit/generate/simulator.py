"""Deterministic daily ad-metric simulation.

Each day runs the same chain: base impressions, platform multiplier, weekend
seasonality, trend, noise and finally the click/conversion funnel. All
randomness comes from the ``random.Random`` handed in, so a fixed seed always
reproduces the same frame.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

import polars as pl

from seed_toolkit.generate.platforms import PLATFORM_PROFILES, PlatformProfile
from seed_toolkit.utils.rand import chance, derive_seed, make_rng, seed_to_int, uniform

TRENDS = ("STABLE", "GROWTH", "DECLINE", "SPIKE")

MAX_GROWTH_RATE = 0.5
MAX_DECLINE_RATE = 0.4
SPIKE_PROBABILITY = 0.05
SPIKE_MULTIPLIER = 5.0
NOISE_VARIANCE = 0.1

DAILY_COLUMNS = (
    "date",
    "impressions",
    "clicks",
    "spend",
    "conversions",
    "revenue",
    "ctr",
    "cpc",
    "cvr",
    "roas",
)


def derive_run_seed(tenant_id: str, scenario_id: str, seed: int) -> str:
    return derive_seed(tenant_id, scenario_id, seed)


def derive_platform_seed(run_seed: str, platform: str) -> int:
    return seed_to_int(derive_seed(run_seed, platform))


def date_range(anchor: datetime, days: int) -> List[datetime]:
    """Return ``days`` midnights ending at the anchor's date, oldest first."""
    if days < 1:
        raise ValueError("days must be >= 1")
    end = anchor.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    start = end - timedelta(days=days - 1)
    return [start + timedelta(days=offset) for offset in range(days)]


def _ratio(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


class AdSimulator:
    def __init__(self, profiles: Optional[Mapping[str, PlatformProfile]] = None):
        self.profiles = dict(profiles or PLATFORM_PROFILES)

    def profile(self, platform: str) -> PlatformProfile:
        try:
            return self.profiles[platform]
        except KeyError as exc:
            raise ValueError(f"No simulation profile for platform {platform}") from exc

    def daily_metrics(
        self,
        rng: random.Random,
        *,
        date: datetime,
        platform: str,
        trend: str,
        base_impressions: int,
        day_index: int = 0,
        total_days: int = 30,
    ) -> Dict[str, object]:
        profile = self.profile(platform)
        volume = base_impressions * profile.impression_multiplier
        if date.weekday() >= 5:
            volume *= profile.weekend_factor
        volume *= self._trend_multiplier(rng, trend, day_index, total_days)
        volume *= uniform(rng, 1 - NOISE_VARIANCE, 1 + NOISE_VARIANCE, 4)
        impressions = max(0, int(volume))

        ctr = uniform(rng, *profile.ctr, 4)
        cpc = uniform(rng, *profile.cpc, 2)
        cvr = uniform(rng, *profile.cvr, 4)
        aov = uniform(rng, *profile.aov, 2)

        clicks = min(int(impressions * ctr), impressions)
        spend = clicks * cpc
        conversions = min(int(clicks * cvr), clicks)
        revenue = conversions * aov

        return {
            "date": date,
            "impressions": impressions,
            "clicks": clicks,
            "spend": round(spend, 2),
            "conversions": conversions,
            "revenue": round(revenue, 2),
            "ctr": round(_ratio(clicks, impressions) * 100, 2),
            "cpc": round(_ratio(spend, clicks), 2),
            "cvr": round(_ratio(conversions, clicks) * 100, 2),
            "roas": round(_ratio(revenue, spend), 2),
        }

    def generate_range(
        self,
        *,
        platform: str,
        anchor: datetime,
        days: int,
        trend: str,
        base_impressions: int,
        seed: int,
    ) -> pl.DataFrame:
        rng = make_rng(seed)
        dates = date_range(anchor, days)
        rows = [
            self.daily_metrics(
                rng,
                date=day,
                platform=platform,
                trend=trend,
                base_impressions=base_impressions,
                day_index=index,
                total_days=len(dates),
            )
            for index, day in enumerate(dates)
        ]
        return pl.DataFrame(rows).select(list(DAILY_COLUMNS))

    @staticmethod
    def _trend_multiplier(
        rng: random.Random, trend: str, day_index: int, total_days: int
    ) -> float:
        progress = _ratio(day_index, max(total_days - 1, 1))
        if trend == "GROWTH":
            return 1.0 + progress * MAX_GROWTH_RATE
        if trend == "DECLINE":
            return 1.0 - progress * MAX_DECLINE_RATE
        if trend == "SPIKE":
            return SPIKE_MULTIPLIER if chance(rng, SPIKE_PROBABILITY) else 1.0
        return 1.0


__all__ = [
    "AdSimulator",
    "DAILY_COLUMNS",
    "TRENDS",
    "date_range",
    "derive_platform_seed",
    "derive_run_seed",
]
