from __future__ import annotations

import json
from pathlib import Path

import pytest

from seed_toolkit.errors import EXIT_BLOCKED, EXIT_VALIDATION, ScenarioError
from seed_toolkit.scenarios.loader import MAX_FILE_SIZE, ScenarioLoader
from seed_toolkit.scenarios.validator import validate_scenario_spec

VALID_YAML = """\
schemaVersion: "1.0.0"
name: Test scenario
trend: GROWTH
days: 14
dateAnchor: "2025-03-01T00:00:00Z"
aliases: [alpha, beta]
"""


def _write(base: Path, name: str, content: str) -> Path:
    path = base / name
    path.write_text(content, encoding="utf-8")
    return path


def test_loads_yaml_by_file_stem(tmp_path: Path) -> None:
    _write(tmp_path, "steady-growth.yaml", VALID_YAML)

    spec = ScenarioLoader(tmp_path).load("steady-growth")

    assert spec.scenario_id == "steady-growth"
    assert spec.trend == "GROWTH"
    assert spec.days == 14
    assert spec.date_anchor == "2025-03-01T00:00:00Z"
    assert spec.aliases == ("alpha", "beta")


def test_unquoted_anchor_stays_a_string(tmp_path: Path) -> None:
    _write(tmp_path, "unquoted.yml", VALID_YAML.replace('"2025-03-01T00:00:00Z"', "2025-03-01T00:00:00Z"))

    spec = ScenarioLoader(tmp_path).load("unquoted")

    assert spec.date_anchor == "2025-03-01T00:00:00Z"


def test_loads_json_scenario(tmp_path: Path) -> None:
    payload = {"schemaVersion": "1.0.0", "name": "Json", "trend": "STABLE"}
    _write(tmp_path, "json-one.json", json.dumps(payload))

    spec = ScenarioLoader(tmp_path).load("json-one")

    assert spec.name == "Json"
    assert spec.days is None


def test_alias_resolves_and_skips_malformed_files(tmp_path: Path) -> None:
    _write(tmp_path, "aaa-broken.yaml", "schemaVersion: [unclosed")
    _write(tmp_path, "target.yaml", VALID_YAML)

    spec = ScenarioLoader(tmp_path).load("beta")

    assert spec.scenario_id == "target"


def test_path_separator_is_a_traversal_violation(tmp_path: Path) -> None:
    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("../etc/passwd")

    assert exc.value.code == "PATH_TRAVERSAL"
    assert exc.value.exit_code == EXIT_BLOCKED


@pytest.mark.parametrize("name", ["Upper", "double--dash", "under_score", ""])
def test_bad_name_format_is_input_error(tmp_path: Path, name: str) -> None:
    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load(name)

    assert exc.value.code == "INVALID_SCENARIO_ID"
    assert exc.value.exit_code == EXIT_VALIDATION


def test_missing_scenario_is_not_found(tmp_path: Path) -> None:
    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("nothing-here")

    assert exc.value.code == "SCENARIO_NOT_FOUND"
    assert exc.value.exit_code == EXIT_VALIDATION


def test_oversized_file_is_blocked(tmp_path: Path) -> None:
    _write(tmp_path, "huge.yaml", VALID_YAML + "#" * MAX_FILE_SIZE)

    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("huge")

    assert exc.value.code == "FILE_TOO_LARGE"
    assert exc.value.exit_code == EXIT_BLOCKED


def test_multi_document_yaml_is_rejected(tmp_path: Path) -> None:
    _write(tmp_path, "multi.yaml", "---\n" + VALID_YAML + "---\nname: second\n")

    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("multi")

    assert exc.value.code == "MULTI_DOCUMENT_NOT_ALLOWED"


def test_leading_document_marker_is_allowed(tmp_path: Path) -> None:
    _write(tmp_path, "leading.yaml", "---\n" + VALID_YAML)

    assert ScenarioLoader(tmp_path).load("leading").name == "Test scenario"


@pytest.mark.parametrize("content", ["- just\n- a list\n", "plain string\n", "null\n"])
def test_non_object_document_is_parse_error(tmp_path: Path, content: str) -> None:
    _write(tmp_path, "notobj.yaml", content)

    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("notobj")

    assert exc.value.code == "PARSE_ERROR"


def test_validation_reports_first_code_and_all_messages(tmp_path: Path) -> None:
    _write(tmp_path, "invalid.yaml", "name: x\ntrend: SIDEWAYS\ndays: 400\n")

    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("invalid")

    assert exc.value.code == "MISSING_SCHEMA_VERSION"
    assert "INVALID_TREND" in exc.value.message
    assert "INVALID_DAYS" in exc.value.message
    assert exc.value.exit_code == EXIT_VALIDATION


def test_calendar_invalid_anchor_is_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "bad-date.yaml",
        VALID_YAML.replace("2025-03-01T00:00:00Z", "2025-02-30T00:00:00Z"),
    )

    with pytest.raises(ScenarioError) as exc:
        ScenarioLoader(tmp_path).load("bad-date")

    assert exc.value.code == "INVALID_DATE_ANCHOR"
    assert exc.value.exit_code == EXIT_VALIDATION


def test_validator_collects_every_error_and_is_repeatable() -> None:
    raw = {
        "schemaVersion": "2.0.0",
        "trend": "UP",
        "baseImpressions": 0,
        "days": True,
        "dateAnchor": "2025-01-01",
        "aliases": ["ok", 3],
    }

    first = validate_scenario_spec(raw, "x")
    second = validate_scenario_spec(raw, "x")

    assert [err.code for err in first.errors] == [
        "UNSUPPORTED_SCHEMA_VERSION",
        "MISSING_NAME",
        "INVALID_TREND",
        "INVALID_BASE_IMPRESSIONS",
        "INVALID_DAYS",
        "INVALID_DATE_ANCHOR",
        "INVALID_ALIASES",
    ]
    assert first == second


def test_list_available_scenarios_skips_invalid_and_sorts(tmp_path: Path) -> None:
    _write(tmp_path, "zeta.yaml", VALID_YAML)
    _write(tmp_path, "alpha.json", json.dumps({"schemaVersion": "1.0.0", "name": "A", "trend": "SPIKE"}))
    _write(tmp_path, "broken.yaml", "name: missing fields\n")
    _write(tmp_path, "notes.txt", "ignored")

    options = ScenarioLoader(tmp_path).list_available_scenarios()

    assert [option.scenario_id for option in options] == ["alpha", "zeta"]
    assert options[1].aliases == ("alpha", "beta")


def test_symlink_escaping_base_dir_is_ignored(tmp_path: Path) -> None:
    base = tmp_path / "definitions"
    base.mkdir()
    outside = _write(tmp_path, "outside.yaml", VALID_YAML)
    try:
        (base / "linked.yaml").symlink_to(outside)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks unavailable")
    loader = ScenarioLoader(base)

    assert loader.list_available_scenarios() == []
    with pytest.raises(ScenarioError) as exc:
        loader.load("beta")
    assert exc.value.code == "SCENARIO_NOT_FOUND"

    with pytest.raises(ScenarioError) as exc:
        loader.load("linked")
    assert exc.value.code == "SCENARIO_NOT_FOUND"


def test_packaged_definitions_are_valid() -> None:
    loader = ScenarioLoader()

    ids = [option.scenario_id for option in loader.list_available_scenarios()]

    assert "baseline" in ids
    assert loader.load("default").scenario_id == "baseline"
