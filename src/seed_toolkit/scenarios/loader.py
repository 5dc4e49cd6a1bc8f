from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union

import yaml

from seed_toolkit.errors import ErrorKind, ScenarioError
from seed_toolkit.scenarios.validator import ScenarioSpec, validate_scenario_spec
from seed_toolkit.utils.paths import is_within

MAX_FILE_SIZE = 64 * 1024
ALLOWED_EXTENSIONS = (".yaml", ".yml", ".json")
NAME_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_LEADING_SEPARATOR_RE = re.compile(r"^---\s*\r?\n")
_DOCUMENT_SEPARATOR_RE = re.compile(r"\r?\n---\s*(\r?\n|$)")

PACKAGED_DEFINITIONS_DIR = Path(__file__).resolve().parent / "definitions"

_LOGGER = logging.getLogger("seed_toolkit.scenarios")


class _ScenarioYamlLoader(yaml.SafeLoader):
    """Safe loader that leaves timestamps as plain strings."""


_ScenarioYamlLoader.yaml_implicit_resolvers = {
    key: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag != "tag:yaml.org,2002:timestamp"
    ]
    for key, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class ScenarioOption:
    scenario_id: str
    name: str
    aliases: Tuple[str, ...]


def _security(code: str, message: str) -> ScenarioError:
    return ScenarioError(code, message, kind=ErrorKind.SECURITY)


def _input(code: str, message: str) -> ScenarioError:
    return ScenarioError(code, message, kind=ErrorKind.INPUT)


class ScenarioLoader:
    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_dir = Path(base_dir).resolve() if base_dir else PACKAGED_DEFINITIONS_DIR
        self.logger = logger or _LOGGER

    def load(self, name_or_id: str) -> ScenarioSpec:
        """Load a scenario by file stem, falling back to an alias scan."""
        if not NAME_RE.match(name_or_id or ""):
            if "/" in name_or_id or "\\" in name_or_id:
                raise _security(
                    "PATH_TRAVERSAL",
                    f'Path traversal detected in scenario name "{name_or_id}"',
                )
            raise _input(
                "INVALID_SCENARIO_ID",
                f'Invalid scenario name format "{name_or_id}". Must match {NAME_RE.pattern}',
            )

        file_path = self._find_file(name_or_id)
        if file_path is not None:
            return self._load_from_file(file_path)

        for candidate_path in self._scenario_files():
            try:
                candidate = self._load_from_file(candidate_path)
            except ScenarioError as exc:
                self.logger.debug("Skipping %s during alias scan: %s", candidate_path, exc)
                continue
            if name_or_id in candidate.aliases:
                self.logger.warning(
                    'Scenario alias "%s" resolved to "%s".',
                    name_or_id,
                    candidate.scenario_id,
                )
                return candidate

        raise ScenarioError(
            "SCENARIO_NOT_FOUND",
            f'Scenario "{name_or_id}" not found in {self.base_dir} '
            f"(checked {', '.join(ALLOWED_EXTENSIONS)} and aliases)",
            kind=ErrorKind.NOT_FOUND,
        )

    def list_available_scenarios(self) -> List[ScenarioOption]:
        options: List[ScenarioOption] = []
        for file_path in self._scenario_files():
            try:
                scenario = self._load_from_file(file_path)
            except ScenarioError as exc:
                self.logger.debug("Skipping invalid scenario %s: %s", file_path, exc)
                continue
            options.append(
                ScenarioOption(scenario.scenario_id, scenario.name, scenario.aliases)
            )
        return sorted(options, key=lambda option: option.scenario_id)

    def _find_file(self, name: str) -> Optional[Path]:
        for ext in ALLOWED_EXTENSIONS:
            candidate = (self.base_dir / f"{name}{ext}").resolve()
            if candidate.is_file() and is_within(self.base_dir, candidate):
                return candidate
        return None

    def _scenario_files(self) -> List[Path]:
        if not self.base_dir.is_dir():
            return []
        return sorted(
            path.resolve()
            for path in self.base_dir.iterdir()
            if path.is_file() and path.suffix.lower() in ALLOWED_EXTENSIONS
        )

    def _load_from_file(self, file_path: Path) -> ScenarioSpec:
        if not is_within(self.base_dir, file_path):
            raise _security("PATH_TRAVERSAL", "Resolved path outside base directory")

        if file_path.stat().st_size > MAX_FILE_SIZE:
            raise _security(
                "FILE_TOO_LARGE",
                f"Scenario file exceeds size limit ({MAX_FILE_SIZE} bytes)",
            )

        ext = file_path.suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise _security("DISALLOWED_EXTENSION", f"Extension {ext} not allowed")

        try:
            raw_content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise _input("PARSE_ERROR", f"Parse error: {exc}") from exc
        body = _LEADING_SEPARATOR_RE.sub("", raw_content, count=1)
        if _DOCUMENT_SEPARATOR_RE.search(body):
            raise _input("MULTI_DOCUMENT_NOT_ALLOWED", "Multi-document YAML is not allowed")

        parsed = self._parse(raw_content, ext)
        if not isinstance(parsed, dict):
            raise _input("PARSE_ERROR", "File structure is invalid (not an object)")

        scenario_id = file_path.stem
        validation = validate_scenario_spec(parsed, scenario_id)
        if not validation.valid:
            messages = "; ".join(f"{err.code}: {err.message}" for err in validation.errors)
            error = _input(validation.errors[0].code, f"Validation failed: {messages}")
            error.details["errors"] = [err.code for err in validation.errors]
            raise error

        return ScenarioSpec.from_mapping(parsed, scenario_id)

    @staticmethod
    def _parse(raw_content: str, ext: str) -> Any:
        try:
            if ext == ".json":
                return json.loads(raw_content)
            return yaml.load(raw_content, Loader=_ScenarioYamlLoader)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise _input("PARSE_ERROR", f"Parse error: {exc}") from exc


__all__ = [
    "ALLOWED_EXTENSIONS",
    "MAX_FILE_SIZE",
    "PACKAGED_DEFINITIONS_DIR",
    "ScenarioLoader",
    "ScenarioOption",
]
