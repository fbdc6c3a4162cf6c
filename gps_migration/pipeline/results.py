"""Per-entity migration counters and the run report.

A stage creates one `MigrationResult` per entity family it migrates and hands
the finished results back to the orchestrator; nothing here is global.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence


MAX_DISPLAYED_ERRORS = 10


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class MigrationResult:
    entity: str
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    start_time: str = field(default_factory=_now)
    end_time: str | None = None

    def record_migrated(self) -> None:
        self.migrated += 1

    def record_skipped(self) -> None:
        self.skipped += 1

    def record_failed(self, legacy_id: object, error: str) -> None:
        self.failed += 1
        self.errors.append({"id": legacy_id, "error": error})

    def finish(self) -> "MigrationResult":
        self.end_time = _now()
        return self

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped + self.failed

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "total": self.total,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


def format_result(result: MigrationResult, *, max_errors: int = MAX_DISPLAYED_ERRORS) -> list[str]:
    """Render a result for the console; errors beyond `max_errors` are summarized."""
    lines = [
        f"{result.entity}: total={result.total} migrated={result.migrated} "
        f"skipped={result.skipped} failed={result.failed}"
    ]
    for error in result.errors[:max_errors]:
        lines.append(f"    - {error['id']}: {error['error']}")
    hidden = len(result.errors) - max_errors
    if hidden > 0:
        lines.append(f"    ... and {hidden} more")
    return lines


@dataclass
class StageOutcome:
    """What happened to one stage during a run."""

    name: str
    success: bool
    duration: float = 0.0
    results: list[MigrationResult] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "success": self.success,
            "duration": round(self.duration, 3),
            "error": self.error,
        }


def summarize(results: Iterable[MigrationResult]) -> dict:
    totals = {"totalMigrated": 0, "totalSkipped": 0, "totalFailed": 0}
    for result in results:
        totals["totalMigrated"] += result.migrated
        totals["totalSkipped"] += result.skipped
        totals["totalFailed"] += result.failed
    return totals


def write_report(
    output_dir: Path,
    outcomes: Sequence[StageOutcome],
    *,
    dry_run: bool,
    now: datetime | None = None,
) -> Path:
    """Persist `migration-report-<timestamp>.json` and return its path."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    results = [result for outcome in outcomes for result in outcome.results]
    payload = {
        "timestamp": stamp,
        "dryRun": dry_run,
        "stages": [outcome.to_dict() for outcome in outcomes],
        "results": [result.to_dict() for result in results],
        "summary": summarize(results),
    }
    output_dir.mkdir(parents=True, exist_ok=True)
    safe_stamp = stamp.replace(":", "-").replace(".", "-").replace("+", "_")
    path = output_dir / f"migration-report-{safe_stamp}.json"
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path


__all__ = [
    "MAX_DISPLAYED_ERRORS",
    "MigrationResult",
    "StageOutcome",
    "format_result",
    "summarize",
    "write_report",
]
