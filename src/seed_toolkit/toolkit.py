"""Composition root: builds every component from an :class:`AppConfig`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from seed_toolkit.config import AppConfig
from seed_toolkit.fixtures.provider import FixtureProvider
from seed_toolkit.generate.simulator import AdSimulator
from seed_toolkit.pipeline.executor import CommandExecutor
from seed_toolkit.pipeline.manifest import ManifestWriter
from seed_toolkit.pipeline.seed import SeedPipeline
from seed_toolkit.scenarios.loader import ScenarioLoader
from seed_toolkit.store import MetricStore
from seed_toolkit.verification.report import ReportWriter
from seed_toolkit.verification.repository import VerificationRepository
from seed_toolkit.verification.service import VerificationService


@dataclass
class Toolkit:
    config: AppConfig
    store: MetricStore
    scenarios: ScenarioLoader
    fixtures: FixtureProvider
    manifests: ManifestWriter
    reports: ReportWriter
    executor: CommandExecutor
    seeder: SeedPipeline
    verifier: VerificationService

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        logger: Optional[logging.Logger] = None,
        *,
        in_memory: bool = False,
    ) -> "Toolkit":
        log = logger or logging.getLogger("seed_toolkit")
        paths = config.paths
        roots = tuple(paths.allowed_output_roots)

        store = MetricStore.open(None if in_memory else Path(paths.database))
        scenarios = ScenarioLoader(paths.scenarios, logger=log)
        fixtures = FixtureProvider(paths.fixtures, allowed_roots=roots)
        manifests = ManifestWriter(paths.manifests, allowed_roots=roots, logger=log)
        reports = ReportWriter(allowed_roots=roots, logger=log)
        executor = CommandExecutor(config.executor.max_concurrent_commands, logger=log)
        seeder = SeedPipeline(
            scenarios,
            fixtures,
            store,
            simulator=AdSimulator(),
            writer=manifests,
            logger=log,
            default_base_impressions=config.seed.base_impressions,
            default_days=config.seed.days,
        )
        verifier = VerificationService(
            VerificationRepository(store), scenarios, logger=log
        )
        return cls(
            config=config,
            store=store,
            scenarios=scenarios,
            fixtures=fixtures,
            manifests=manifests,
            reports=reports,
            executor=executor,
            seeder=seeder,
            verifier=verifier,
        )

    def close(self) -> None:
        self.store.close()


__all__ = ["Toolkit"]
