"""Command line entry point for the WordPress → Strapi/Supabase migration.

Why:
    Operators run the migration stage by stage against the live WordPress
    database. The CLI wires settings, the legacy source, the destination
    writers and the persisted mapping table together, then hands control to
    the stage runner.
"""
from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path

import click
import psycopg

from gps_migration.pipeline.config import MigrationSettings, load_environment
from gps_migration.pipeline.context import StageContext
from gps_migration.pipeline.errors import ConfigurationError
from gps_migration.pipeline.mappings import IdMappingStore
from gps_migration.pipeline.orchestrator import STAGE_NAMES, run_stages, select_stages
from gps_migration.pipeline.results import StageOutcome, format_result, write_report
from gps_migration.pipeline.source import WordPressSource
from gps_migration.pipeline.writers.content import StrapiClient
from gps_migration.pipeline.writers.identity import ClerkClient
from gps_migration.pipeline.writers.transactional import TransactionalWriter


logger = logging.getLogger("gps_migration.tools.run_migration")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _print_summary(outcomes: list[StageOutcome], elapsed: float) -> None:
    click.echo("\n=== Migration summary ===")
    for outcome in outcomes:
        mark = "✓" if outcome.success else "✗"
        click.echo(f"{mark} {outcome.name} ({outcome.duration:.1f}s)")
        if outcome.error:
            click.echo(f"    error: {outcome.error}")
        for result in outcome.results:
            for line in format_result(result):
                click.echo(f"  {line}")
    click.echo(f"Total time: {elapsed:.1f}s")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--dry-run", is_flag=True, default=False, help="Read and normalize only; write export files, no destination writes.")
@click.option("--step", type=click.Choice(STAGE_NAMES), default=None, help="Run a single stage.")
@click.option("--from", "start", type=click.Choice(STAGE_NAMES), default=None, help="Resume: run this stage and every later one.")
@click.option("--export-only", is_flag=True, default=False, help="Write `<stage>-export.json` files and stop.")
@click.option("--since", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Only migrate orders created on or after this date.")
@click.option("--db-dsn", type=str, default=None, help="Transactional store DSN (overrides SUPABASE_DB_URL).")
@click.option("--output-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Directory for mappings, exports and reports.")
@click.option("--batch-size", type=int, default=None, help="Checkpoint mappings every N records.")
@click.option("--reset-mappings", is_flag=True, default=False, help="Start from an empty mapping table.")
def cli(
    dry_run: bool,
    step: str | None,
    start: str | None,
    export_only: bool,
    since: datetime | None,
    db_dsn: str | None,
    output_dir: Path | None,
    batch_size: int | None,
    reset_mappings: bool,
) -> None:
    """Migrate GPS Dental data from WordPress into Strapi and Supabase.

    Behaviour:
        - Stages run in order: users, events, event-schedules, seminars,
          orders, credits. `--step` runs one of them, `--from` resumes.
        - Already migrated records are found by natural key and skipped.
        - A run report is written to the output directory unless
          `--export-only` is given. Exit code 1 when a stage fails.
    """
    load_environment()
    settings = MigrationSettings.from_env()
    overrides: dict = {"dry_run": settings.dry_run or dry_run}
    if db_dsn:
        overrides["db_dsn"] = db_dsn
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    if batch_size is not None:
        if batch_size <= 0:
            raise click.BadParameter("must be positive", param_hint="--batch-size")
        overrides["batch_size"] = batch_size
    settings = replace(settings, **overrides)
    _configure_logging(settings.log_level)

    preview = settings.dry_run or export_only
    missing = settings.missing_settings(destination=not preview)
    if missing:
        raise click.ClickException(f"Missing required settings: {', '.join(missing)}")
    try:
        stages = select_stages(step=step, start=start)
    except ConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc

    mode_text = "EXPORT-ONLY" if export_only else ("DRY-RUN" if settings.dry_run else "LIVE")
    click.echo(f"Starting GPS Dental migration ({mode_text})")
    click.echo(f"Stages: {', '.join(stage.name for stage in stages)}")

    mappings = IdMappingStore(settings.output_dir)
    if reset_mappings:
        mappings.reset()
        click.echo("Mapping table reset")
    else:
        loaded = mappings.load()
        click.echo(f"Loaded {loaded} id mappings from {mappings.path}")

    started = time.monotonic()
    store: TransactionalWriter | None = None
    with WordPressSource(settings.source) as source:
        if not preview:
            try:
                store = TransactionalWriter.connect(settings.db_dsn or "")
            except psycopg.OperationalError as exc:
                click.echo(f"Migration failed: {exc}", err=True)
                raise click.Abort() from exc
        try:
            identity = None
            if settings.clerk_secret_key:
                identity = ClerkClient(
                    settings.clerk_secret_key,
                    base_url=settings.clerk_api_url,
                    timeout=settings.http_timeout,
                )
            ctx = StageContext(
                source=source,
                mappings=mappings,
                output_dir=settings.output_dir,
                store=store,
                content=StrapiClient(settings.strapi_url, settings.strapi_token, timeout=settings.http_timeout),
                identity=identity,
                dry_run=settings.dry_run,
                export_only=export_only,
                since=since.strftime("%Y-%m-%d") if since else None,
                table_prefix=settings.source.table_prefix,
                batch_size=settings.batch_size,
            )
            outcomes = run_stages(ctx, stages)
        finally:
            if store is not None:
                store.close()

    if not export_only:
        report = write_report(settings.output_dir, outcomes, dry_run=settings.dry_run)
        click.echo(f"Report saved to {report}")
    _print_summary(outcomes, time.monotonic() - started)

    if any(not outcome.success for outcome in outcomes):
        raise SystemExit(1)
    if preview:
        click.echo("Dry-run complete; no destination writes were made.")
    else:
        click.echo("Migration finished successfully.")


if __name__ == "__main__":  # pragma: no cover
    cli()
