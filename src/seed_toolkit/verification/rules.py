"""Declarative alert rules and the evaluator that interprets them.

A rule is data: an id, a severity, a list of conditions combined with AND and
a message template. Conditions compare one metric against a constant
(``value``) or another metric (``value_of``). Metrics may be raw aggregate
fields or derived ratios (``roas``, ``ctr``, ``cpc``, ``cvr``).
"""

from __future__ import annotations

import operator
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from seed_toolkit.verification.models import CheckStatus, Severity, VerificationCheck

CATALOG_PATH = Path(__file__).resolve().parent / "catalog.yaml"

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    op: Literal["<", "<=", ">", ">=", "==", "!="]
    value: Optional[float] = None
    value_of: Optional[str] = None

    @model_validator(mode="after")
    def _one_operand(self) -> "Condition":
        if (self.value is None) == (self.value_of is None):
            raise ValueError("exactly one of value or value_of is required")
        return self

    def holds(self, values: Mapping[str, Any]) -> bool:
        actual = _lookup(values, self.metric)
        expected = _lookup(values, self.value_of) if self.value_of else self.value
        return _OPERATORS[self.op](actual, expected)


class RuleDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    rule_id: str = Field(alias="ruleId")
    name: str
    severity: Severity
    when: List[Condition] = Field(min_length=1)
    message: str

    def triggered(self, values: Mapping[str, Any]) -> bool:
        return all(condition.holds(values) for condition in self.when)

    def render(self, values: Mapping[str, Any]) -> str:
        return self.message.format_map(values)


def _lookup(values: Mapping[str, Any], metric: str) -> Any:
    if metric not in values or values[metric] is None:
        raise KeyError(f"metric {metric!r} missing from aggregate")
    return values[metric]


def _ratio(numerator: Any, denominator: Any) -> Optional[float]:
    if numerator is None or denominator is None:
        return None
    try:
        numerator, denominator = float(numerator), float(denominator)
    except (TypeError, ValueError):
        return None
    if not denominator:
        return 0.0
    return numerator / denominator


def derive_metrics(aggregate: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the aggregate plus any derived ratios its fields allow.

    A ratio whose inputs are missing or non-numeric is set to ``None`` so the
    rules that read it fail individually.
    """
    values = dict(aggregate)
    if "revenue" in values and "spend" in values:
        values.setdefault("roas", _ratio(values["revenue"], values["spend"]))
    if "clicks" in values and "impressions" in values:
        values.setdefault("ctr", _ratio(values["clicks"], values["impressions"]))
    if "spend" in values and "clicks" in values:
        values.setdefault("cpc", _ratio(values["spend"], values["clicks"]))
    if "conversions" in values and "clicks" in values:
        values.setdefault("cvr", _ratio(values["conversions"], values["clicks"]))
    return values


def evaluate(
    aggregate: Mapping[str, Any], rules: Sequence[RuleDescriptor]
) -> List[VerificationCheck]:
    """Evaluate every rule against one aggregate; one check per rule."""
    checks: List[VerificationCheck] = []
    for rule in rules:
        try:
            values = derive_metrics(aggregate)
            triggered = rule.triggered(values)
            message = rule.render(values) if triggered else None
        except Exception as exc:  # noqa: BLE001
            checks.append(
                VerificationCheck(
                    rule_id=rule.rule_id,
                    name=rule.name,
                    status=CheckStatus.FAIL,
                    severity=Severity.FAIL,
                    message=f"Evaluation Error: {exc}",
                )
            )
            continue

        if triggered:
            checks.append(
                VerificationCheck(
                    rule_id=rule.rule_id,
                    name=rule.name,
                    status=(
                        CheckStatus.FAIL
                        if rule.severity == Severity.FAIL
                        else CheckStatus.WARN
                    ),
                    severity=rule.severity,
                    message=message or rule.name,
                    details=dict(aggregate),
                )
            )
        else:
            checks.append(
                VerificationCheck(
                    rule_id=rule.rule_id,
                    name=rule.name,
                    status=CheckStatus.PASS,
                    severity=rule.severity,
                    message=f"Rule {rule.name} not triggered",
                )
            )
    return checks


def load_rule_catalog(path: Path) -> Dict[str, List[RuleDescriptor]]:
    with Path(path).open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Rule catalog {path} must map catalog names to rule lists.")
    return {
        str(name): [RuleDescriptor.model_validate(entry) for entry in entries or []]
        for name, entries in loaded.items()
    }


_BUILTIN = load_rule_catalog(CATALOG_PATH)
BIZ_RULES: List[RuleDescriptor] = _BUILTIN["business"]
ANOMALY_RULES: List[RuleDescriptor] = _BUILTIN["anomaly"]


__all__ = [
    "ANOMALY_RULES",
    "BIZ_RULES",
    "CATALOG_PATH",
    "Condition",
    "RuleDescriptor",
    "derive_metrics",
    "evaluate",
    "load_rule_catalog",
]
