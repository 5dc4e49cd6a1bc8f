from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Tuple

SCHEMA_VERSION = "1.0.0"
VALID_TRENDS = ("STABLE", "GROWTH", "DECLINE", "SPIKE")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z$")
DEFAULT_DAYS = 30
MAX_DAYS = 365
MAX_BASE_IMPRESSIONS = 1_000_000

# Window anchor for scenarios that do not pin a dateAnchor.
DETERMINISTIC_ANCHOR = datetime(2025, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class ScenarioValidationError:
    field: str
    code: str
    message: str
    is_recoverable: bool = True


@dataclass(frozen=True)
class ScenarioValidationResult:
    scenario_id: str
    errors: Tuple[ScenarioValidationError, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class ScenarioSpec:
    schema_version: str
    scenario_id: str
    name: str
    trend: str
    days: Optional[int] = None
    base_impressions: Optional[int] = None
    date_anchor: Optional[str] = None
    aliases: Tuple[str, ...] = field(default_factory=tuple)
    description: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], scenario_id: str) -> "ScenarioSpec":
        """Build a spec from an already validated mapping."""
        base = raw.get("baseImpressions")
        description = raw.get("description")
        return cls(
            schema_version=raw["schemaVersion"],
            scenario_id=scenario_id,
            name=str(raw["name"]),
            trend=raw["trend"],
            days=raw.get("days"),
            base_impressions=int(base) if base is not None else None,
            date_anchor=raw.get("dateAnchor"),
            aliases=tuple(raw.get("aliases") or ()),
            description=str(description) if description is not None else None,
        )

    def anchor_datetime(self) -> Optional[datetime]:
        if self.date_anchor is None:
            return None
        return parse_iso_utc(self.date_anchor)

    def to_dict(self) -> dict:
        data: dict = {
            "schemaVersion": self.schema_version,
            "scenarioId": self.scenario_id,
            "name": self.name,
            "trend": self.trend,
            "aliases": list(self.aliases),
        }
        if self.days is not None:
            data["days"] = self.days
        if self.base_impressions is not None:
            data["baseImpressions"] = self.base_impressions
        if self.date_anchor is not None:
            data["dateAnchor"] = self.date_anchor
        if self.description is not None:
            data["description"] = self.description
        return data


def parse_iso_utc(value: str) -> datetime:
    if not ISO_DATE_RE.match(value):
        raise ValueError(f"Not an ISO-8601 UTC timestamp: {value}")
    head, _, _ = value.rstrip("Z").partition(".")
    return datetime.strptime(head, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)


def _parses_as_utc(value: str) -> bool:
    try:
        parse_iso_utc(value)
    except ValueError:
        return False
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_scenario_spec(raw: Any, scenario_id: str) -> ScenarioValidationResult:
    """Collect every field violation in ``raw``; never stops at the first one."""
    errors: List[ScenarioValidationError] = []
    spec: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

    schema_version = spec.get("schemaVersion")
    if not schema_version:
        errors.append(
            ScenarioValidationError(
                "schemaVersion",
                "MISSING_SCHEMA_VERSION",
                f'Field "schemaVersion" is required (must be "{SCHEMA_VERSION}")',
            )
        )
    elif schema_version != SCHEMA_VERSION:
        errors.append(
            ScenarioValidationError(
                "schemaVersion",
                "UNSUPPORTED_SCHEMA_VERSION",
                f'Unsupported schemaVersion "{schema_version}". Expected "{SCHEMA_VERSION}"',
            )
        )

    if not spec.get("name"):
        errors.append(
            ScenarioValidationError("name", "MISSING_NAME", 'Field "name" is required')
        )

    trend = spec.get("trend")
    if not trend:
        errors.append(
            ScenarioValidationError("trend", "MISSING_TREND", 'Field "trend" is required')
        )
    elif trend not in VALID_TRENDS:
        errors.append(
            ScenarioValidationError(
                "trend",
                "INVALID_TREND",
                f'Invalid trend "{trend}". Allowed: {", ".join(VALID_TRENDS)}',
            )
        )

    if "baseImpressions" in spec:
        base = spec["baseImpressions"]
        if not _is_number(base) or base <= 0 or base > MAX_BASE_IMPRESSIONS:
            errors.append(
                ScenarioValidationError(
                    "baseImpressions",
                    "INVALID_BASE_IMPRESSIONS",
                    "baseImpressions must be a number between 1 and 1,000,000",
                )
            )

    if "days" in spec:
        days = spec["days"]
        if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= MAX_DAYS:
            errors.append(
                ScenarioValidationError(
                    "days", "INVALID_DAYS", "days must be a whole number between 1 and 365"
                )
            )

    if "dateAnchor" in spec:
        anchor = spec["dateAnchor"]
        if not isinstance(anchor, str) or not _parses_as_utc(anchor):
            errors.append(
                ScenarioValidationError(
                    "dateAnchor",
                    "INVALID_DATE_ANCHOR",
                    "dateAnchor must be a valid ISO 8601 UTC string (e.g. 2025-01-01T00:00:00Z)",
                )
            )

    if "aliases" in spec:
        aliases = spec["aliases"]
        if not isinstance(aliases, list) or not all(isinstance(a, str) for a in aliases):
            errors.append(
                ScenarioValidationError(
                    "aliases", "INVALID_ALIASES", "aliases must be an array of strings"
                )
            )

    return ScenarioValidationResult(scenario_id=scenario_id, errors=tuple(errors))


__all__ = [
    "DEFAULT_DAYS",
    "DETERMINISTIC_ANCHOR",
    "SCHEMA_VERSION",
    "ScenarioSpec",
    "ScenarioValidationError",
    "ScenarioValidationResult",
    "VALID_TRENDS",
    "parse_iso_utc",
    "validate_scenario_spec",
]
