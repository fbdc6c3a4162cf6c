"""Stage graph and sequential runner.

Intent:
    Declare the migration stages in dependency order and execute a selection
    of them one after another on a single thread.

Behavior:
    - `select_stages()` returns all stages, a single stage (`step`) or a stage
      and everything declared after it (`start`).
    - `run_stages()` stops at the first stage that raises. Record-level
      failures do not stop a stage; they are reported in its results.
    - Mappings are checkpointed after every stage and on failure so a later
      `--from` run can pick them up.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from gps_migration.pipeline.context import StageContext
from gps_migration.pipeline.errors import ConfigurationError
from gps_migration.pipeline.results import MigrationResult, StageOutcome
from gps_migration.pipeline.stages import credits, event_schedules, events, orders, seminars, users


logger = logging.getLogger("gps_migration.pipeline.orchestrator")


@dataclass(frozen=True)
class StageDefinition:
    name: str
    description: str
    depends_on: tuple[str, ...]
    run: Callable[[StageContext], list[MigrationResult]]


STAGES: tuple[StageDefinition, ...] = (
    StageDefinition("users", "Migrate WordPress users to the identity provider and users table", (), users.run),
    StageDefinition("events", "Migrate speakers, events and ticket types", ("users",), events.run),
    StageDefinition("event-schedules", "Migrate per-day event schedules", ("events",), event_schedules.run),
    StageDefinition("seminars", "Migrate seminars, sessions, registrations and attendance", ("users",), seminars.run),
    StageDefinition("orders", "Migrate orders, line items, tickets and attendance", ("users", "events"), orders.run),
    StageDefinition("credits", "Migrate CE credits, certificates and waitlists", ("users", "events", "orders"), credits.run),
)


def validate_stages(stages: Sequence[StageDefinition]) -> None:
    """Reject duplicate names and dependencies that are unknown or declared later."""
    seen: set[str] = set()
    for stage in stages:
        if stage.name in seen:
            raise ConfigurationError(f"duplicate stage name: {stage.name}")
        for dependency in stage.depends_on:
            if dependency not in seen:
                raise ConfigurationError(
                    f"stage {stage.name} depends on {dependency}, which is not declared before it"
                )
        seen.add(stage.name)


validate_stages(STAGES)
STAGE_NAMES: tuple[str, ...] = tuple(stage.name for stage in STAGES)


def select_stages(
    stages: Sequence[StageDefinition] = STAGES,
    *,
    step: str | None = None,
    start: str | None = None,
) -> list[StageDefinition]:
    if step and start:
        raise ConfigurationError("--step and --from are mutually exclusive")
    names = [stage.name for stage in stages]
    target = step or start
    if target is not None and target not in names:
        raise ConfigurationError(f"unknown stage: {target}")
    if step:
        return [stage for stage in stages if stage.name == step]
    if start:
        return list(stages[names.index(start):])
    return list(stages)


def run_stages(ctx: StageContext, stages: Sequence[StageDefinition]) -> list[StageOutcome]:
    """Run `stages` in order and return one outcome per stage that was started."""
    outcomes: list[StageOutcome] = []
    for stage in stages:
        ctx.echo(f"\n=== Stage: {stage.name} ===")
        ctx.echo(stage.description)
        logger.info("Stage %s started", stage.name)
        started = time.monotonic()
        try:
            results = stage.run(ctx)
        except Exception as exc:
            duration = time.monotonic() - started
            logger.exception("Stage %s failed", stage.name)
            outcomes.append(StageOutcome(name=stage.name, success=False, duration=duration, error=str(exc)))
            if not ctx.preview:
                ctx.mappings.save()
            ctx.echo(f"Stage {stage.name} failed: {exc}")
            ctx.echo(f"Resume with --from={stage.name}")
            break
        duration = time.monotonic() - started
        outcomes.append(StageOutcome(name=stage.name, success=True, duration=duration, results=list(results)))
        if not ctx.preview:
            ctx.mappings.save()
        logger.info("Stage %s finished in %.1fs", stage.name, duration)
    return outcomes


__all__ = ["STAGES", "STAGE_NAMES", "StageDefinition", "run_stages", "select_stages", "validate_stages"]
