"""Seed pipeline: VALIDATE_INPUT, LOAD_SCENARIO, LOAD_FIXTURES, EXECUTE, VERIFY.

Every step lands in the run manifest in execution order, including steps the
selected mode skips. GENERATED simulates rows, FIXTURE trusts a verified
golden fixture and bypasses generation, HYBRID generates and then requires the
generated shape to match the fixture exactly.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import duckdb
import polars as pl

from seed_toolkit.config import SEED_MODES
from seed_toolkit.errors import (
    EXIT_BLOCKED,
    EXIT_SUCCESS,
    EXIT_VALIDATION,
    ErrorKind,
    HygieneError,
    ToolkitError,
)
from seed_toolkit.fixtures.provider import (
    FixtureProvider,
    GoldenFixture,
    compute_shape,
    diff_shapes,
)
from seed_toolkit.generate.platforms import parse_platform_csv
from seed_toolkit.generate.simulator import (
    AdSimulator,
    derive_platform_seed,
    derive_run_seed,
)
from seed_toolkit.pipeline.manifest import (
    Clock,
    ManifestBuilder,
    ManifestWriter,
    PipelineResult,
    RunStatus,
    execute_with_manifest,
    status_for_error,
    utc_now,
)
from seed_toolkit.scenarios.loader import ScenarioLoader
from seed_toolkit.scenarios.validator import (
    DEFAULT_DAYS,
    DETERMINISTIC_ANCHOR,
    ScenarioSpec,
)
from seed_toolkit.store import (
    CampaignRecord,
    MOCK_SOURCE_PREFIX,
    MetricFilter,
    MetricStore,
)
from seed_toolkit.utils.hashing import compute_file_hash
from seed_toolkit.utils.logging import bind

WRITE_ENTITIES = ["Campaign", "Metric"]
SHAPE_MISMATCH = "generated shape does not match fixture shape"

_LOGGER = logging.getLogger("seed_toolkit.seed")


@dataclass(frozen=True)
class SeedParams:
    tenant_id: str
    scenario: str
    mode: str = "GENERATED"
    seed: int = 42
    days: Optional[int] = None
    platforms: str = ""
    base_impressions: Optional[int] = None
    dry_run: bool = False
    allow_real_tenant: bool = False
    run_id: Optional[str] = None


@dataclass(frozen=True)
class RunPlan:
    scenario: ScenarioSpec
    platforms: Tuple[str, ...]
    days: int
    anchor: datetime
    base_impressions: int
    seed: int
    run_seed: str
    source: str

    @property
    def planned_rows(self) -> int:
        return self.days * len(self.platforms)

    def external_id(self, platform: str) -> str:
        return f"unified-{self.scenario.scenario_id}-{self.seed}-{platform}-0"


def source_tag(scenario_id: str, seed: int) -> str:
    return f"{MOCK_SOURCE_PREFIX}unified:{scenario_id}:{seed}"


class SeedPipeline:
    def __init__(
        self,
        scenarios: ScenarioLoader,
        fixtures: FixtureProvider,
        store: MetricStore,
        *,
        simulator: Optional[AdSimulator] = None,
        writer: Optional[ManifestWriter] = None,
        logger: Optional[logging.Logger] = None,
        default_base_impressions: int = 10000,
        default_days: int = DEFAULT_DAYS,
        clock: Clock = utc_now,
    ):
        self.scenarios = scenarios
        self.fixtures = fixtures
        self.store = store
        self.simulator = simulator or AdSimulator()
        self.writer = writer
        self.logger = logger or _LOGGER
        self.default_base_impressions = default_base_impressions
        self.default_days = default_days
        self.clock = clock

    def run(self, params: SeedParams) -> PipelineResult:
        builder = ManifestBuilder(
            params.run_id or uuid.uuid4().hex[:12],
            "seed",
            args={
                "tenant": params.tenant_id,
                "scenario": params.scenario,
                "mode": params.mode,
                "seed": params.seed,
                "days": params.days,
                "platforms": params.platforms,
            },
            flags={
                "dryRun": params.dry_run,
                "allowRealTenant": params.allow_real_tenant,
            },
            tenant_id=params.tenant_id,
            clock=self.clock,
        )
        log = bind(
            self.logger,
            tenant=params.tenant_id,
            scenario=params.scenario,
            run=builder.run_id,
        )
        return execute_with_manifest(
            builder,
            lambda manifest: self._run_steps(manifest, params, log),
            self.writer,
            self.logger,
        )

    def plan(
        self, scenario: ScenarioSpec, params: SeedParams, platforms: Tuple[str, ...]
    ) -> RunPlan:
        days = params.days or scenario.days or self.default_days
        return RunPlan(
            scenario=scenario,
            platforms=tuple(sorted(platforms)),
            days=days,
            anchor=scenario.anchor_datetime() or DETERMINISTIC_ANCHOR,
            base_impressions=(
                params.base_impressions
                or scenario.base_impressions
                or self.default_base_impressions
            ),
            seed=params.seed,
            run_seed=derive_run_seed(params.tenant_id, scenario.scenario_id, params.seed),
            source=source_tag(scenario.scenario_id, params.seed),
        )

    def generate(self, plan: RunPlan) -> Dict[str, pl.DataFrame]:
        """Simulate one daily frame per platform, in sorted platform order."""
        return {
            platform: self.simulator.generate_range(
                platform=platform,
                anchor=plan.anchor,
                days=plan.days,
                trend=plan.scenario.trend,
                base_impressions=plan.base_impressions,
                seed=derive_platform_seed(plan.run_seed, platform),
            )
            for platform in plan.platforms
        }

    def _run_steps(
        self,
        builder: ManifestBuilder,
        params: SeedParams,
        log: logging.LoggerAdapter,
    ) -> Tuple[RunStatus, int]:
        mode = (params.mode or "").upper()
        builder.set_writes(
            applied={"entities": WRITE_ENTITIES, "actualCounts": {"totalRows": 0, "platforms": 0}}
        )

        # VALIDATE_INPUT
        step = builder.start_step("VALIDATE_INPUT")
        problem = self._validate_input(params, mode)
        if problem is not None:
            step.fail(problem.message, problem)
            builder.add_error(problem)
            log.error("Input rejected: %s", problem.message)
            return RunStatus.BLOCKED, EXIT_BLOCKED
        selection = parse_platform_csv(params.platforms)
        if not params.dry_run and self.store.has_real_data(params.tenant_id):
            message = f"Tenant {params.tenant_id} holds non-mock data"
            if not params.allow_real_tenant:
                error = HygieneError(
                    "REAL_TENANT_BLOCKED",
                    f"{message}; refusing to seed without allow_real_tenant.",
                )
                step.fail(error.message, error)
                builder.add_error(error)
                log.error(error.message)
                return RunStatus.BLOCKED, EXIT_BLOCKED
            builder.add_warning(f"{message}; seeding anyway (allow_real_tenant).")
            log.warning("%s; continuing because allow_real_tenant is set", message)
        step.succeed(
            f"Mode {mode}; platforms: {', '.join(selection.platforms)}",
            platforms=list(selection.platforms),
        )

        # LOAD_SCENARIO
        step = builder.start_step("LOAD_SCENARIO")
        try:
            scenario = self.scenarios.load(params.scenario)
        except ToolkitError as exc:
            step.fail(exc.message, exc)
            builder.add_error(exc)
            log.error("Scenario load failed: %s", exc)
            return status_for_error(exc)
        builder.set_input("scenarioId", scenario.scenario_id)
        plan = self.plan(scenario, params, selection.platforms)
        step.succeed(
            f"Loaded scenario {scenario.scenario_id} ({scenario.trend}, {plan.days} days)"
        )

        # LOAD_FIXTURES
        step = builder.start_step("LOAD_FIXTURES")
        fixture: Optional[GoldenFixture] = None
        if mode == "GENERATED":
            step.skip("Fixtures not used in GENERATED mode")
        else:
            try:
                fixture = self.fixtures.load_fixture(scenario.scenario_id, params.seed)
            except ToolkitError as exc:
                step.fail(exc.message, exc)
                builder.add_error(exc)
                log.error("Fixture load failed: %s", exc)
                return status_for_error(exc)
            builder.set_input("fixtureChecksum", fixture.checksum)
            if fixture.path is not None:
                builder.set_input("fixtureFileSha256", compute_file_hash(fixture.path))
            step.succeed(
                f"Fixture verified ({fixture.total_metric_rows} rows, {fixture.checksum})"
            )

        # EXECUTE
        step = builder.start_step("EXECUTE")
        if mode == "FIXTURE" and fixture is not None:
            fixture_platforms = sorted((fixture.shape.get("perPlatform") or {}).keys())
            builder.set_writes(
                planned={
                    "entities": WRITE_ENTITIES,
                    "estimatedCounts": {
                        "totalRows": fixture.total_metric_rows,
                        "platforms": len(fixture_platforms),
                    },
                }
            )
            step.succeed(
                "Fixture loaded and verified (Generation bypassed)",
                recordsAffectedEstimate=fixture.total_metric_rows,
                recordsAffectedActual=0,
            )
            log.info("Fixture mode: generation bypassed")
            return RunStatus.SUCCESS, EXIT_SUCCESS

        builder.set_writes(
            planned={
                "entities": WRITE_ENTITIES,
                "estimatedCounts": {
                    "totalRows": plan.planned_rows,
                    "platforms": len(plan.platforms),
                },
            }
        )
        frames = self.generate(plan)

        if mode == "HYBRID" and fixture is not None:
            generated_shape = compute_shape({p: f.height for p, f in frames.items()})
            diffs = diff_shapes(generated_shape, fixture.shape)
            if diffs:
                message = f"Hybrid verification failed: {SHAPE_MISMATCH}. " + "; ".join(diffs)
                error = ToolkitError("SHAPE_MISMATCH", message, kind=ErrorKind.INPUT)
                step.fail(message, error)
                builder.add_error(error)
                log.error(message)
                return RunStatus.FAILED, EXIT_VALIDATION

        applied = 0
        if not params.dry_run:
            try:
                applied = self._write(params.tenant_id, plan, frames, log)
            except duckdb.Error as exc:
                step.fail(f"Database write failed: {exc}", exc)
                raise
        builder.set_writes(
            applied={
                "entities": WRITE_ENTITIES,
                "actualCounts": {
                    "totalRows": applied,
                    "platforms": 0 if params.dry_run else len(plan.platforms),
                },
            }
        )
        step.succeed(
            f"Generated {plan.planned_rows} rows for {len(plan.platforms)} platforms"
            + (" (dry run)" if params.dry_run else ""),
            recordsAffectedEstimate=plan.planned_rows,
            recordsAffectedActual=applied,
            entitiesTouched=[] if params.dry_run else WRITE_ENTITIES,
        )

        # VERIFY
        step = builder.start_step("VERIFY")
        if params.dry_run:
            step.succeed(
                f"Dry-run planned rows: {plan.planned_rows}. "
                f"No database writes applied. Source: {plan.source}"
            )
            return RunStatus.SUCCESS, EXIT_SUCCESS

        stored = self.store.count_metrics(
            MetricFilter(
                tenant_id=params.tenant_id,
                source=plan.source,
                platforms=plan.platforms,
            )
        )
        if stored != applied:
            error = ToolkitError(
                "VERIFY_COUNT_MISMATCH",
                f"Stored {stored} rows for {plan.source}, expected {applied}",
            )
            step.fail(error.message, error)
            builder.add_error(error)
            return RunStatus.FAILED, error.exit_code
        step.succeed(f"Total rows created: {applied}. Source: {plan.source}")
        log.info("Seeded %d rows from %s", applied, plan.source)
        return RunStatus.SUCCESS, EXIT_SUCCESS

    def _validate_input(self, params: SeedParams, mode: str) -> Optional[ToolkitError]:
        if not params.tenant_id or not params.tenant_id.strip():
            return ToolkitError("MISSING_TENANT", "A tenant id is required", kind=ErrorKind.SECURITY)
        if mode not in SEED_MODES:
            return ToolkitError(
                "INVALID_MODE",
                f"Unknown mode {params.mode}. Allowed: {', '.join(SEED_MODES)}",
                kind=ErrorKind.SECURITY,
            )
        if params.days is not None and not 1 <= params.days <= 365:
            return ToolkitError(
                "INVALID_DAYS", "days must be between 1 and 365", kind=ErrorKind.SECURITY
            )
        selection = parse_platform_csv(params.platforms)
        if not selection.ok:
            return ToolkitError(
                "INVALID_PLATFORMS",
                selection.error_message(),
                kind=ErrorKind.SECURITY,
                details={
                    "invalid": list(selection.invalid),
                    "nonSeedable": list(selection.non_seedable),
                },
            )
        return None

    def _write(
        self,
        tenant_id: str,
        plan: RunPlan,
        frames: Dict[str, pl.DataFrame],
        log: logging.LoggerAdapter,
    ) -> int:
        written = 0
        for platform, frame in frames.items():
            campaign = CampaignRecord(
                tenant_id=tenant_id,
                platform=platform,
                external_id=plan.external_id(platform),
                name=f"{plan.scenario.name} ({platform})",
                source=plan.source,
            )
            rows = frame.with_columns(
                pl.lit(tenant_id).alias("tenant_id"),
                pl.lit(campaign.campaign_id).alias("campaign_id"),
                pl.lit(platform).alias("platform"),
                pl.lit(True).alias("is_mock_data"),
                pl.lit(plan.source).alias("source"),
            )
            with self.store.transaction():
                removed = self.store.delete_mock_metrics(tenant_id, plan.source, platform)
                self.store.delete_campaign(campaign.campaign_id)
                self.store.create_campaign(campaign)
                written += self.store.create_metrics(rows)
            if removed:
                log.info("Replaced %d existing %s rows", removed, platform)
        return written


__all__ = [
    "RunPlan",
    "SHAPE_MISMATCH",
    "SeedParams",
    "SeedPipeline",
    "source_tag",
]
