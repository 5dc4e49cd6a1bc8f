from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, cast

import typer

from seed_toolkit import __version__
from seed_toolkit.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from seed_toolkit.errors import (
    EXIT_BLOCKED,
    EXIT_FATAL,
    EXIT_SUCCESS,
    EXIT_VERIFY_FAIL,
    ToolkitError,
)
from seed_toolkit.fixtures.provider import build_fixture, compute_shape
from seed_toolkit.generate.platforms import parse_platform_csv
from seed_toolkit.pipeline.seed import SeedParams
from seed_toolkit.toolkit import Toolkit
from seed_toolkit.utils.logging import init_logger, run_context
from seed_toolkit.utils.redact import scrub_message
from seed_toolkit.verification.models import CheckStatus

app = typer.Typer(
    add_completion=False,
    help="Seed and verify deterministic mock ad metrics.",
)


def _version_callback(ctx: typer.Context, value: Optional[bool]) -> Optional[bool]:
    if not value or ctx.resilient_parsing:
        return value
    typer.echo(__version__)
    raise typer.Exit()


def _echo(message: str, err: bool = False) -> None:
    typer.echo(scrub_message(message), err=err)


def _config(ctx: typer.Context) -> AppConfig:
    ctx_obj = ctx.obj or {}
    config = cast(Optional[AppConfig], ctx_obj.get("config"))
    if config is None:
        config = load_config(
            default_path=DEFAULT_CONFIG_PATH,
            override_yaml_path_or_none=None,
            env=os.environ,
            cli_overrides={},
        )
    return config


def _toolkit(ctx: typer.Context, *, in_memory: bool = False) -> Toolkit:
    ctx_obj = ctx.ensure_object(dict)
    toolkit = Toolkit.from_config(
        _config(ctx), ctx_obj.get("logger"), in_memory=in_memory
    )
    ctx.call_on_close(toolkit.close)
    return toolkit


def _fail(exc: ToolkitError, logger=None) -> typer.Exit:
    _echo(f"Error: {exc}", err=True)
    if logger:
        logger.error("%s", exc)
    return typer.Exit(code=exc.exit_code)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        expose_value=False,
        is_flag=True,
        flag_value=True,
        is_eager=True,
        help="Show the application version and exit.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to an alternate YAML configuration file.",
        is_flag=False,
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Override the DuckDB metrics database path.",
        is_flag=False,
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override the log level (DEBUG, INFO, WARNING, ERROR).",
        is_flag=False,
    ),
) -> None:
    override_path = config_path if config_path else None
    cli_overrides: dict[str, object] = {}
    if db_path is not None:
        cli_overrides["paths.database"] = str(db_path)
    if log_level is not None:
        cli_overrides["logging.level"] = log_level

    config = load_config(
        default_path=DEFAULT_CONFIG_PATH,
        override_yaml_path_or_none=override_path,
        env=os.environ,
        cli_overrides=cli_overrides,
    )
    context_obj = ctx.ensure_object(dict)
    context_obj["config"] = config

    logger = init_logger("seed_toolkit", config.logging.level, config.logging.env)
    context_obj["logger"] = logger

    if ctx.invoked_subcommand is not None:
        run_cm = run_context(logger)
        run_id = run_cm.__enter__()
        context_obj["run_id"] = run_id

        def _close() -> None:
            run_cm.__exit__(None, None, None)

        ctx.call_on_close(_close)

    if ctx.invoked_subcommand is None:
        typer.echo(
            "Usage: seedkit [OPTIONS] COMMAND [ARGS]...\n\nUse 'seedkit --help' for more information."
        )
        raise typer.Exit()


@app.command("init")
def init_cmd(ctx: typer.Context) -> None:
    """Scaffold output directories and a local copy of the default config."""
    ctx_obj = ctx.obj or {}
    logger = ctx_obj.get("logger")
    config = _config(ctx)

    created_items: list[tuple[str, Path]] = []

    for raw in (config.paths.manifests, config.paths.reports):
        dir_path = Path(raw)
        if not dir_path.exists():
            dir_path.mkdir(parents=True, exist_ok=True)
            created_items.append(("directory", dir_path))

    db_dir = Path(config.paths.database).parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)
        created_items.append(("directory", db_dir))

    target_config_path = Path("configs") / "default.yaml"
    if not target_config_path.exists():
        target_config_path.parent.mkdir(parents=True, exist_ok=True)
        target_config_path.write_text(
            DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"),
            encoding="utf-8",
        )
        created_items.append(("file", target_config_path))

    if created_items:
        for item_type, path in created_items:
            label = "directory" if item_type == "directory" else "file"
            typer.echo(f"Created {label}: {path}")
            if logger:
                logger.info("Created %s %s", label, path)
    else:
        typer.echo("Toolkit directories already initialized.")
        if logger:
            logger.info("Toolkit directories already initialized.")


@app.command("scenarios")
def scenarios_cmd(ctx: typer.Context) -> None:
    """List valid scenario definitions."""
    toolkit = _toolkit(ctx, in_memory=True)
    options = toolkit.scenarios.list_available_scenarios()
    if not options:
        typer.echo(f"No scenarios found in {toolkit.scenarios.base_dir}")
        return
    for option in options:
        aliases = f" (aliases: {', '.join(option.aliases)})" if option.aliases else ""
        typer.echo(f"{option.scenario_id}\t{option.name}{aliases}")


@app.command("seed")
def seed_cmd(
    ctx: typer.Context,
    scenario: str = typer.Argument(..., help="Scenario id or alias."),
    tenant: str = typer.Option(..., "--tenant", help="Tenant to seed.", is_flag=False),
    mode: Optional[str] = typer.Option(
        None, "--mode", help="GENERATED, FIXTURE or HYBRID.", is_flag=False
    ),
    seed: Optional[int] = typer.Option(
        None, "--seed", help="Deterministic seed.", is_flag=False
    ),
    days: Optional[int] = typer.Option(
        None, "--days", help="Override the scenario day count.", is_flag=False
    ),
    platforms: Optional[str] = typer.Option(
        None,
        "--platforms",
        help="Comma-separated platforms; empty seeds every seedable platform.",
        is_flag=False,
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Plan and report without writing rows."
    ),
    allow_real_tenant: bool = typer.Option(
        False,
        "--allow-real-tenant",
        help="Seed even when the tenant already holds non-mock data.",
    ),
) -> None:
    """Seed mock metrics for a scenario and write a run manifest."""
    ctx_obj = ctx.obj or {}
    logger = ctx_obj.get("logger")
    toolkit = _toolkit(ctx)
    defaults = toolkit.config.seed
    params = SeedParams(
        tenant_id=tenant,
        scenario=scenario,
        mode=(mode or defaults.mode).upper(),
        seed=defaults.seed if seed is None else seed,
        days=days,
        platforms=defaults.platforms if platforms is None else platforms,
        dry_run=dry_run,
        allow_real_tenant=allow_real_tenant or defaults.allow_real_tenant,
        run_id=ctx_obj.get("run_id"),
    )

    try:
        result = toolkit.executor.execute("seed", toolkit.seeder.run, params)
    except ToolkitError as exc:
        raise _fail(exc, logger) from exc

    for step in result.manifest.steps:
        typer.echo(f"[{step.status.value:<7}] {step.name}: {scrub_message(step.summary)}")
    for warning in result.manifest.warnings:
        _echo(f"WARNING: {warning}")
    for error in result.manifest.errors:
        _echo(f"ERROR {error['code']}: {error['message']}", err=True)
    _echo(f"Status: {result.status.value} (exit {result.exit_code})")
    if result.manifest_path is not None:
        typer.echo(f"Manifest written to {result.manifest_path}")

    if result.exit_code != EXIT_SUCCESS:
        raise typer.Exit(code=result.exit_code)


@app.command("verify")
def verify_cmd(
    ctx: typer.Context,
    scenario: str = typer.Argument(..., help="Scenario id or alias."),
    tenant: str = typer.Option(..., "--tenant", help="Tenant to verify.", is_flag=False),
    run_id: Optional[str] = typer.Option(
        None, "--run-id", help="Run id used to name the report.", is_flag=False
    ),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", help="Report directory (must be allow-listed).", is_flag=False
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the result without writing a report."
    ),
) -> None:
    """Re-audit seeded data and write a canonical verification report."""
    ctx_obj = ctx.obj or {}
    logger = ctx_obj.get("logger")
    toolkit = _toolkit(ctx)
    effective_run_id = run_id or ctx_obj.get("run_id")

    try:
        result = toolkit.executor.execute(
            "verify",
            toolkit.verifier.verify_scenario,
            scenario,
            tenant,
            run_id=effective_run_id,
            dry_run=dry_run,
        )
        for check in result.results:
            typer.echo(
                f"[{check.status.value:<4}] {check.rule_id} {check.name}: "
                f"{scrub_message(check.message)}"
            )
        summary = result.summary
        typer.echo(
            f"Status: {summary.status.value} ({summary.passed} passed, "
            f"{summary.failed} failed, {summary.warnings} warnings)"
        )
        if not dry_run:
            report_dir = output_dir if output_dir is not None else toolkit.config.paths.reports
            report_path = toolkit.reports.write_report(result, report_dir)
            checks_path = toolkit.reports.write_checks_csv(result, report_path)
            typer.echo(f"Report written to {report_path}")
            typer.echo(f"Checks written to {checks_path}")
    except ToolkitError as exc:
        raise _fail(exc, logger) from exc
    except OSError as exc:
        _echo(f"Unable to write verification report: {exc}", err=True)
        if logger:
            logger.error("Report write failed: %s", exc)
        raise typer.Exit(code=EXIT_FATAL) from exc

    if result.status == CheckStatus.FAIL:
        raise typer.Exit(code=EXIT_VERIFY_FAIL)


@app.command("make-fixture")
def make_fixture_cmd(
    ctx: typer.Context,
    scenario: str = typer.Argument(..., help="Scenario id or alias."),
    tenant: str = typer.Option(
        "fixture", "--tenant", help="Tenant used to derive the run seed.", is_flag=False
    ),
    seed: Optional[int] = typer.Option(None, "--seed", is_flag=False),
    days: Optional[int] = typer.Option(None, "--days", is_flag=False),
    platforms: Optional[str] = typer.Option(None, "--platforms", is_flag=False),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", help="Fixture directory (must be allow-listed).", is_flag=False
    ),
    samples: int = typer.Option(
        1, "--samples", help="Sample rows kept per platform.", is_flag=False
    ),
) -> None:
    """Generate a golden fixture from a dry simulation of a scenario."""
    ctx_obj = ctx.obj or {}
    logger = ctx_obj.get("logger")
    toolkit = _toolkit(ctx, in_memory=True)
    defaults = toolkit.config.seed
    effective_seed = defaults.seed if seed is None else seed

    selection = parse_platform_csv(defaults.platforms if platforms is None else platforms)
    if not selection.ok:
        _echo(f"Error: {selection.error_message()}", err=True)
        raise typer.Exit(code=EXIT_BLOCKED)

    try:
        spec = toolkit.scenarios.load(scenario)
        params = SeedParams(
            tenant_id=tenant, scenario=spec.scenario_id, seed=effective_seed, days=days
        )
        plan = toolkit.seeder.plan(spec, params, selection.platforms)
        frames = toolkit.seeder.generate(plan)
        shape = compute_shape({platform: frame.height for platform, frame in frames.items()})
        sample_rows = []
        for platform, frame in frames.items():
            for row in frame.head(max(samples, 0)).to_dicts():
                row["platform"] = platform
                row["date"] = row["date"].strftime("%Y-%m-%d")
                sample_rows.append(row)
        document = build_fixture(
            spec.scenario_id, effective_seed, shape, sample_rows, plan.platforms
        )
        path = toolkit.fixtures.write_fixture(document, effective_seed, output_dir)
    except ToolkitError as exc:
        raise _fail(exc, logger) from exc

    typer.echo(f"Fixture written to {path} ({document['checksum']})")
    if logger:
        logger.info("Fixture written to %s", path)


__all__ = ["app"]
