"""Stage `event-schedules`: per-day event agendas.

Intent:
    Collect schedule days from `gps_schedule` posts (grouped format). Events
    without any schedule post fall back to the schedule encoded in their own
    `_gps_schedule_topics` meta, whichever of the two formats it uses.

Behavior:
    Days are ordered by event and date and `display_order` is re-sequenced per
    event from 1. A day whose event has no mapping is skipped.
"""
from __future__ import annotations

import logging
from dataclasses import replace

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.records import ScheduleDayRecord
from gps_migration.pipeline.results import MigrationResult
from gps_migration.pipeline.schedules import normalize_event_schedule, normalize_schedule_post


logger = logging.getLogger("gps_migration.pipeline.stages.event_schedules")


def collect_schedule_days(ctx: StageContext) -> list[ScheduleDayRecord]:
    directory = ctx.speaker_directory()
    days: list[ScheduleDayRecord] = []
    for position, row in enumerate(ctx.source.fetch_schedules()):
        day = normalize_schedule_post(row, directory, position=position)
        if day is not None:
            days.append(day)
    covered = {day.event_legacy_id for day in days}

    for row in ctx.source.fetch_events():
        if row.id in covered:
            continue
        raw = row.meta.get("_gps_schedule_topics")
        if not raw:
            continue
        days.extend(
            normalize_event_schedule(
                raw,
                event_legacy_id=row.id,
                event_start_date=row.meta.get("_gps_start_date"),
                directory=directory,
            )
        )
    return sequence_days(days)


def sequence_days(days: list[ScheduleDayRecord]) -> list[ScheduleDayRecord]:
    """Sort by (event, date) and number each event's days 1..n; duplicate dates keep the first."""
    ordered: list[ScheduleDayRecord] = []
    seen: set[tuple[int, str]] = set()
    counters: dict[int, int] = {}
    for day in sorted(days, key=lambda d: (d.event_legacy_id, d.schedule_date, d.display_order)):
        key = (day.event_legacy_id, day.schedule_date)
        if key in seen:
            logger.warning("Duplicate schedule day %s for event %s; keeping the first", day.schedule_date, day.event_legacy_id)
            continue
        seen.add(key)
        counters[day.event_legacy_id] = counters.get(day.event_legacy_id, 0) + 1
        ordered.append(replace(day, display_order=counters[day.event_legacy_id]))
    return ordered


def run(ctx: StageContext) -> list[MigrationResult]:
    days = collect_schedule_days(ctx)

    if ctx.preview:
        ctx.export("event-schedules", {"schedules": days})
        return preview_results(event_schedules=len(days))

    result = MigrationResult(entity="event_schedules", total=len(days))
    for idx, day in enumerate(days, start=1):
        ctx.progress("event_schedules", idx, len(days))
        label = day.legacy_id if day.legacy_id is not None else f"{day.event_legacy_id}@{day.schedule_date}"
        refs = ctx.resolve(result, label, {"event_id": (EntityType.EVENT, day.event_legacy_id)})
        if refs is None:
            continue
        values = {
            "event_id": refs["event_id"],
            "schedule_date": day.schedule_date,
            "tab_label": day.tab_label,
            "display_order": day.display_order,
            "topics": [topic.to_json() for topic in day.topics],
        }
        ctx.apply(result, label, lambda: ctx.writer().write("event_schedules", values))
    return [result.finish()]
