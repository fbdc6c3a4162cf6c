from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from gps_migration.pipeline.mappings import EntityType, IdMappingStore
from gps_migration.pipeline.results import MigrationResult, StageOutcome, format_result, summarize, write_report


def test_missing_mapping_file_means_empty_table(tmp_path: Path) -> None:
    store = IdMappingStore(tmp_path)
    assert store.load() == 0
    assert len(store) == 0
    assert store.get(EntityType.USER, 1) is None
    assert store.get(EntityType.USER, None) is None


def test_save_and_load_round_trip_with_stable_format(tmp_path: Path) -> None:
    store = IdMappingStore(tmp_path)
    store.put(EntityType.USER, 12, "uuid-12")
    store.put(EntityType.EVENT, 3, "uuid-e3")
    path = store.save()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == [
        {"legacyId": 3, "newId": "uuid-e3", "entityType": "event"},
        {"legacyId": 12, "newId": "uuid-12", "entityType": "user"},
    ]

    fresh = IdMappingStore(tmp_path)
    assert fresh.load() == 2
    assert fresh.get(EntityType.USER, 12) == "uuid-12"
    assert fresh.count(EntityType.EVENT) == 1


def test_loading_is_additive_and_save_merges_disk_entries(tmp_path: Path) -> None:
    first = IdMappingStore(tmp_path)
    first.put(EntityType.USER, 1, "u1")
    first.save()

    second = IdMappingStore(tmp_path)
    second.put(EntityType.USER, 2, "u2")
    second.load()
    assert second.get(EntityType.USER, 2) == "u2"
    assert second.get(EntityType.USER, 1) == "u1"

    # a third process that never loaded must not evict entries on save
    third = IdMappingStore(tmp_path)
    third.put(EntityType.ORDER, 9, "o9")
    third.save()
    reloaded = IdMappingStore(tmp_path)
    reloaded.load()
    assert {entry["entityType"] for entry in reloaded} == {"user", "order"}


def test_conflicting_put_keeps_first_value(tmp_path: Path, caplog) -> None:
    store = IdMappingStore(tmp_path)
    store.put(EntityType.TICKET, 4, "first")
    store.put(EntityType.TICKET, 4, "first")
    store.put(EntityType.TICKET, 4, "second")

    assert store.get(EntityType.TICKET, 4) == "first"
    assert store.added_since_load == 1
    assert "Mapping conflict" in caplog.text


def test_reset_removes_file(tmp_path: Path) -> None:
    store = IdMappingStore(tmp_path)
    store.put(EntityType.USER, 1, "u1")
    store.save()
    store.reset()
    assert not store.path.exists()
    assert len(store) == 0


def test_format_result_truncates_error_list() -> None:
    result = MigrationResult(entity="orders", total=12)
    for idx in range(12):
        result.record_failed(idx, "boom")
    lines = format_result(result)

    assert lines[0] == "orders: total=12 migrated=0 skipped=0 failed=12"
    assert len(lines) == 12
    assert lines[-1] == "    ... and 2 more"


def test_report_contains_stages_results_and_summary(tmp_path: Path) -> None:
    users = MigrationResult(entity="users", total=3)
    users.record_migrated()
    users.record_migrated()
    users.record_skipped()
    orders = MigrationResult(entity="orders", total=1)
    orders.record_failed(10, "bad total")
    outcomes = [
        StageOutcome(name="users", success=True, duration=1.25, results=[users.finish()]),
        StageOutcome(name="orders", success=True, duration=0.5, results=[orders.finish()]),
    ]
    now = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    path = write_report(tmp_path, outcomes, dry_run=False, now=now)
    data = json.loads(path.read_text(encoding="utf-8"))

    assert path.name == "migration-report-2025-01-02T03-04-05_00-00.json"
    assert data["dryRun"] is False
    assert [stage["name"] for stage in data["stages"]] == ["users", "orders"]
    assert data["results"][1]["errors"] == [{"id": 10, "error": "bad total"}]
    assert data["summary"] == {"totalMigrated": 2, "totalSkipped": 1, "totalFailed": 1}
    assert summarize([users, orders]) == data["summary"]
