"""Per-run state handed to every stage.

The context carries the collaborators (legacy source, mapping table, writers)
and the run flags. It also owns the small helpers every stage repeats:
dependency lookups that turn a missing parent into a skip, the per-record
write wrapper that turns `RecordWriteError` into a failure, progress output
with periodic mapping checkpoints, and preview exports.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import click

from gps_migration.pipeline.errors import RecordWriteError
from gps_migration.pipeline.mappings import EntityType, IdMappingStore
from gps_migration.pipeline.records import to_export
from gps_migration.pipeline.results import MigrationResult
from gps_migration.pipeline.schedules import SpeakerDirectory
from gps_migration.pipeline.writers.content import StrapiClient
from gps_migration.pipeline.writers.identity import ClerkClient
from gps_migration.pipeline.writers.transactional import TransactionalWriter, WriteResult


logger = logging.getLogger("gps_migration.pipeline.context")


@dataclass
class StageContext:
    source: Any
    mappings: IdMappingStore
    output_dir: Path
    store: TransactionalWriter | None = None
    content: StrapiClient | None = None
    identity: ClerkClient | None = None
    dry_run: bool = False
    export_only: bool = False
    since: str | None = None
    table_prefix: str = "wpiy_"
    batch_size: int = 100
    echo: Callable[[str], None] = click.echo
    _speakers: SpeakerDirectory | None = field(default=None, repr=False)

    @property
    def preview(self) -> bool:
        """True when the run must not touch the destination stores."""
        return self.dry_run or self.export_only

    def writer(self) -> TransactionalWriter:
        if self.store is None:
            raise RuntimeError("transactional store is not connected")
        return self.store

    # --- shared lookups ---------------------------------------------------------------

    def speaker_directory(self) -> SpeakerDirectory:
        """Speaker names for schedule resolution, fetched once per run."""
        if self._speakers is None:
            self._speakers = SpeakerDirectory.from_rows(self.source.fetch_speakers())
            logger.info("Loaded %d speaker names for schedule resolution", len(self._speakers))
        return self._speakers

    def remember_speakers(self, directory: SpeakerDirectory) -> None:
        if self._speakers is None:
            self._speakers = directory

    def resolve(
        self,
        result: MigrationResult,
        legacy_id: object,
        required: Mapping[str, tuple[EntityType, int | None]],
    ) -> dict[str, str] | None:
        """Translate required parent references; a missing parent skips the record."""
        resolved: dict[str, str] = {}
        for name, (entity_type, parent_legacy_id) in required.items():
            new_id = self.mappings.get(entity_type, parent_legacy_id)
            if new_id is None:
                logger.warning(
                    "Skip %s %s – %s %s has not been migrated",
                    result.entity,
                    legacy_id,
                    entity_type.value,
                    parent_legacy_id,
                )
                result.record_skipped()
                return None
            resolved[name] = new_id
        return resolved

    def optional(self, entity_type: EntityType, legacy_id: int | None) -> str | None:
        return self.mappings.get(entity_type, legacy_id)

    # --- writes --------------------------------------------------------------------------

    def apply(
        self,
        result: MigrationResult,
        legacy_id: object,
        write: Callable[[], WriteResult],
    ) -> WriteResult | None:
        """Run one record write and count it as migrated, skipped (present) or failed."""
        try:
            outcome = write()
        except RecordWriteError as exc:
            logger.error("%s %s failed: %s", result.entity, legacy_id, exc)
            result.record_failed(legacy_id, str(exc))
            return None
        if outcome.created:
            result.record_migrated()
        else:
            result.record_skipped()
        return outcome

    # --- output ------------------------------------------------------------------------------

    def progress(self, label: str, idx: int, total: int) -> None:
        self.echo(f"  … {label} {idx}/{total}")
        if not self.preview and self.batch_size and idx % self.batch_size == 0:
            self.mappings.save()

    def export(self, name: str, payload: Any) -> Path:
        """Write `<name>-export.json` into the output directory."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{name}-export.json"
        path.write_text(json.dumps(to_export(payload), indent=2, default=str), encoding="utf-8")
        logger.info("Data exported to %s", path)
        return path


def preview_results(**totals: int) -> list[MigrationResult]:
    """Finished results that only carry totals (dry runs and exports)."""
    results = []
    for entity, total in totals.items():
        result = MigrationResult(entity=entity, total=total)
        results.append(result.finish())
    return results


__all__ = ["StageContext", "preview_results"]
