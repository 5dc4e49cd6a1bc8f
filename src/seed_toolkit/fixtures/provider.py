"""Golden fixtures: expected generation shapes guarded by a checksum."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from seed_toolkit import __version__
from seed_toolkit.errors import ErrorKind, FixtureError
from seed_toolkit.utils.hashing import checksum
from seed_toolkit.utils.io import write_text_atomic
from seed_toolkit.utils.paths import is_within, resolve_output_dir

FIXTURE_SCHEMA_VERSION = "1.0.0"
MAX_FIXTURE_SIZE = 256 * 1024
MAX_ROWS = 1000

PACKAGED_GOLDEN_DIR = Path(__file__).resolve().parent / "golden"

PathLike = Union[str, Path]


@dataclass(frozen=True)
class GoldenFixture:
    schema_version: str
    scenario_id: str
    checksum: str
    shape: Dict[str, Any]
    samples: List[Any] = field(default_factory=list)
    path: Optional[Path] = None

    @property
    def total_metric_rows(self) -> int:
        return int(self.shape.get("totalMetricRows", 0))

    @property
    def total_campaigns(self) -> int:
        return int(self.shape.get("totalCampaigns", 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "scenarioId": self.scenario_id,
            "checksum": self.checksum,
            "shape": self.shape,
            "samples": list(self.samples),
        }


def fixture_filename(scenario_id: str, seed: int) -> str:
    return f"{scenario_id}_seed{seed}.fixture.json"


def compute_shape(
    metric_rows_by_platform: Mapping[str, int], campaigns_per_platform: int = 1
) -> Dict[str, Any]:
    per_platform = {
        platform: {"campaigns": campaigns_per_platform, "metricRows": int(rows)}
        for platform, rows in sorted(metric_rows_by_platform.items())
    }
    return {
        "totalCampaigns": campaigns_per_platform * len(per_platform),
        "totalMetricRows": sum(entry["metricRows"] for entry in per_platform.values()),
        "perPlatform": per_platform,
    }


def diff_shapes(generated: Mapping[str, Any], expected: Mapping[str, Any]) -> List[str]:
    """Describe every field where two shapes disagree, in a stable order."""
    diffs: List[str] = []
    for key in ("totalCampaigns", "totalMetricRows"):
        if generated.get(key) != expected.get(key):
            diffs.append(
                f"{key}: generated {generated.get(key)} != fixture {expected.get(key)}"
            )

    generated_platforms = generated.get("perPlatform") or {}
    expected_platforms = expected.get("perPlatform") or {}
    for platform in sorted(set(generated_platforms) | set(expected_platforms)):
        if platform not in expected_platforms:
            diffs.append(f"perPlatform.{platform}: not in fixture")
            continue
        if platform not in generated_platforms:
            diffs.append(f"perPlatform.{platform}: not generated")
            continue
        ours = generated_platforms[platform] or {}
        theirs = expected_platforms[platform] or {}
        for key in sorted(set(ours) | set(theirs)):
            if ours.get(key) != theirs.get(key):
                diffs.append(
                    f"perPlatform.{platform}.{key}: generated {ours.get(key)} "
                    f"!= fixture {theirs.get(key)}"
                )
    return diffs


def build_fixture(
    scenario_id: str,
    seed: int,
    shape: Mapping[str, Any],
    samples: Sequence[Any] = (),
    platforms: Iterable[str] = (),
) -> Dict[str, Any]:
    shape_dict = json.loads(json.dumps(dict(shape)))
    return {
        "schemaVersion": FIXTURE_SCHEMA_VERSION,
        "scenarioId": scenario_id,
        "checksum": checksum(shape_dict),
        "shape": shape_dict,
        "samples": list(samples),
        "generatedWith": {
            "toolkitVersion": __version__,
            "seed": seed,
            "platforms": sorted(platforms),
            "createdAt": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        },
    }


def _security(code: str, message: str) -> FixtureError:
    return FixtureError(code, message, kind=ErrorKind.SECURITY)


def _input(code: str, message: str) -> FixtureError:
    return FixtureError(code, message, kind=ErrorKind.INPUT)


class FixtureProvider:
    def __init__(
        self,
        base_dir: Optional[PathLike] = None,
        allowed_roots: Iterable[PathLike] = (),
    ):
        self.base_dir = Path(base_dir).resolve() if base_dir else PACKAGED_GOLDEN_DIR
        self.allowed_roots = tuple(allowed_roots)

    def load_fixture(self, scenario_id: str, seed: int) -> GoldenFixture:
        """Load and verify ``{scenario_id}_seed{seed}.fixture.json``.

        Checks run in a fixed order (containment, existence, size, parse,
        schema version, scenario id, row cap, checksum) so the size guard
        fires before any attempt to parse an oversized file.
        """
        filename = fixture_filename(scenario_id, seed)
        file_path = (self.base_dir / filename).resolve()

        if not is_within(self.base_dir, file_path):
            raise _security("PATH_TRAVERSAL", "Fixture path traversal violation")

        if not file_path.is_file():
            raise FixtureError(
                "FIXTURE_NOT_FOUND",
                f"Fixture file not found: {filename} (searched {self.base_dir})",
                kind=ErrorKind.NOT_FOUND,
            )

        if file_path.stat().st_size > MAX_FIXTURE_SIZE:
            raise _security(
                "FIXTURE_TOO_LARGE",
                f"Fixture exceeds size limit ({MAX_FIXTURE_SIZE} bytes)",
            )

        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise _input("PARSE_ERROR", f"Invalid JSON in fixture: {exc}") from exc
        if not isinstance(raw, dict):
            raise _input("PARSE_ERROR", "Fixture must be a JSON object")

        if raw.get("schemaVersion") != FIXTURE_SCHEMA_VERSION:
            raise _input(
                "UNSUPPORTED_SCHEMA_VERSION",
                f'Unsupported fixture schemaVersion "{raw.get("schemaVersion")}"',
            )

        if raw.get("scenarioId") != scenario_id:
            raise _input(
                "INVALID_SCENARIO_ID",
                f'Fixture scenarioId "{raw.get("scenarioId")}" does not match '
                f'request "{scenario_id}"',
            )

        shape = raw.get("shape")
        total_rows = shape.get("totalMetricRows") if isinstance(shape, dict) else None
        if isinstance(total_rows, (int, float)) and total_rows > MAX_ROWS:
            raise _input(
                "FIXTURE_ROW_LIMIT",
                f"Fixture has too many rows ({total_rows} > {MAX_ROWS})",
            )

        computed = checksum(shape)
        if computed != raw.get("checksum"):
            raise _input(
                "CHECKSUM_MISMATCH",
                f"Fixture integrity check failed. Stored: {raw.get('checksum')}, "
                f"Computed: {computed}",
            )

        return GoldenFixture(
            schema_version=raw["schemaVersion"],
            scenario_id=raw["scenarioId"],
            checksum=raw["checksum"],
            shape=shape,
            samples=list(raw.get("samples") or []),
            path=file_path,
        )

    def write_fixture(
        self,
        document: Mapping[str, Any],
        seed: int,
        output_dir: Optional[PathLike] = None,
    ) -> Path:
        target_dir = resolve_output_dir(
            "fixture", output_dir, allowed_roots=self.allowed_roots
        )
        payload = json.dumps(document, indent=2, sort_keys=True) + "\n"
        if len(payload.encode("utf-8")) > MAX_FIXTURE_SIZE:
            raise _security(
                "FIXTURE_TOO_LARGE",
                f"Fixture exceeds size limit ({MAX_FIXTURE_SIZE} bytes)",
            )
        target = target_dir / fixture_filename(document["scenarioId"], seed)
        write_text_atomic(target, payload)
        return target


__all__ = [
    "FIXTURE_SCHEMA_VERSION",
    "FixtureProvider",
    "GoldenFixture",
    "MAX_FIXTURE_SIZE",
    "MAX_ROWS",
    "PACKAGED_GOLDEN_DIR",
    "build_fixture",
    "compute_shape",
    "diff_shapes",
    "fixture_filename",
]
