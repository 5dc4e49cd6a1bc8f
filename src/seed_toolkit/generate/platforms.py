from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class Platform(str, Enum):
    GOOGLE_ADS = "google_ads"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    LINE_ADS = "line_ads"
    SHOPEE = "shopee"
    LAZADA = "lazada"
    GOOGLE_ANALYTICS = "google_analytics"


@dataclass(frozen=True)
class PlatformProfile:
    ctr: Tuple[float, float]
    cpc: Tuple[float, float]
    cvr: Tuple[float, float]
    aov: Tuple[float, float]
    impression_multiplier: float
    weekend_factor: float


PLATFORM_PROFILES: Dict[str, PlatformProfile] = {
    Platform.GOOGLE_ADS.value: PlatformProfile(
        ctr=(0.015, 0.045), cpc=(0.5, 3.5), cvr=(0.02, 0.08), aov=(50, 200),
        impression_multiplier=1.0, weekend_factor=0.7,
    ),
    Platform.FACEBOOK.value: PlatformProfile(
        ctr=(0.008, 0.025), cpc=(0.3, 2.0), cvr=(0.015, 0.06), aov=(40, 150),
        impression_multiplier=2.5, weekend_factor=1.2,
    ),
    Platform.TIKTOK.value: PlatformProfile(
        ctr=(0.005, 0.03), cpc=(0.2, 1.5), cvr=(0.01, 0.04), aov=(30, 100),
        impression_multiplier=3.0, weekend_factor=1.3,
    ),
    Platform.LINE_ADS.value: PlatformProfile(
        ctr=(0.01, 0.03), cpc=(1.0, 5.0), cvr=(0.03, 0.10), aov=(100, 500),
        impression_multiplier=0.8, weekend_factor=0.9,
    ),
    Platform.SHOPEE.value: PlatformProfile(
        ctr=(0.02, 0.06), cpc=(0.5, 3.0), cvr=(0.05, 0.15), aov=(50, 300),
        impression_multiplier=1.2, weekend_factor=1.5,
    ),
    Platform.LAZADA.value: PlatformProfile(
        ctr=(0.02, 0.05), cpc=(0.5, 2.5), cvr=(0.04, 0.12), aov=(50, 250),
        impression_multiplier=1.1, weekend_factor=1.4,
    ),
}

# Only platforms with a simulation profile can be seeded.
SEEDABLE_PLATFORMS: Tuple[str, ...] = tuple(sorted(PLATFORM_PROFILES))

PLATFORM_ALIASES: Dict[str, str] = {
    "google": Platform.GOOGLE_ADS.value,
    "gads": Platform.GOOGLE_ADS.value,
    "adwords": Platform.GOOGLE_ADS.value,
    "fb": Platform.FACEBOOK.value,
    "meta": Platform.FACEBOOK.value,
    "ig": Platform.INSTAGRAM.value,
    "tt": Platform.TIKTOK.value,
    "line": Platform.LINE_ADS.value,
    "ga": Platform.GOOGLE_ANALYTICS.value,
    "ga4": Platform.GOOGLE_ANALYTICS.value,
}


def normalize_platform(token: str) -> str:
    cleaned = token.strip().lower().replace("-", "_").replace(" ", "_")
    return PLATFORM_ALIASES.get(cleaned, cleaned)


@dataclass(frozen=True)
class PlatformSelection:
    platforms: Tuple[str, ...]
    invalid: Tuple[str, ...]
    non_seedable: Tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not self.invalid and not self.non_seedable

    def error_message(self) -> str:
        parts: List[str] = []
        if self.invalid:
            parts.append(f"invalid tokens: {', '.join(self.invalid)}")
        if self.non_seedable:
            parts.append(f"non-seedable: {', '.join(self.non_seedable)}")
        return (
            "; ".join(parts)
            + ". Allowed seedable platforms: "
            + ", ".join(SEEDABLE_PLATFORMS)
        )


def parse_platform_csv(csv: str) -> PlatformSelection:
    """Split a comma list into seedable platforms, unknown tokens and the rest.

    An empty list selects every seedable platform. Duplicates collapse and the
    result is sorted so processing order never depends on input order.
    """
    tokens = [token for token in (csv or "").split(",") if token.strip()]
    if not tokens:
        return PlatformSelection(SEEDABLE_PLATFORMS, (), ())

    known = {platform.value for platform in Platform}
    platforms: set[str] = set()
    invalid: List[str] = []
    non_seedable: List[str] = []
    for token in tokens:
        normalized = normalize_platform(token)
        if normalized not in known:
            invalid.append(token.strip())
        elif normalized not in PLATFORM_PROFILES:
            non_seedable.append(normalized)
        else:
            platforms.add(normalized)
    return PlatformSelection(
        tuple(sorted(platforms)),
        tuple(dict.fromkeys(invalid)),
        tuple(dict.fromkeys(non_seedable)),
    )


__all__ = [
    "PLATFORM_ALIASES",
    "PLATFORM_PROFILES",
    "Platform",
    "PlatformProfile",
    "PlatformSelection",
    "SEEDABLE_PLATFORMS",
    "normalize_platform",
    "parse_platform_csv",
]
