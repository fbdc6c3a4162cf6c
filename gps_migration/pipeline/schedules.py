"""Event schedule normalization across the two legacy encodings.

Old events store a flat list of `{day, time, topic, description}` entries in
the event's `_gps_schedule_topics` meta. Newer data is grouped per day:
`{date, tab_label, topics: [{name, start_time, end_time, speakers, location,
description}]}`, either as `gps_schedule` posts (one post per day) or as a
`{"schedules": [...]}` object. `detect_schedule_format` classifies a value and
each variant has its own parser; both produce `ScheduleDayRecord`s.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import date, timedelta
from enum import Enum
from typing import Any, Iterable, Sequence

from gps_migration.pipeline.parsing import (
    format_day,
    parse_end_time,
    parse_serialized,
    parse_time_to_hhmm,
    to_int,
)
from gps_migration.pipeline.records import LegacyRow, ScheduleDayRecord, ScheduleTopic


logger = logging.getLogger("gps_migration.pipeline.schedules")


class ScheduleFormat(str, Enum):
    OLD = "old"
    NEW = "new"
    NONE = "none"


def _decode(value: Any) -> Any:
    if isinstance(value, str):
        return parse_serialized(value)
    return value


def detect_schedule_format(value: Any) -> ScheduleFormat:
    """Classify a schedule value (raw meta string or decoded structure)."""
    data = _decode(value)
    if isinstance(data, dict):
        schedules = data.get("schedules")
        if isinstance(schedules, list) and schedules:
            return ScheduleFormat.NEW
        if isinstance(data.get("topics"), list) and (data.get("date") or data.get("schedule_date")):
            return ScheduleFormat.NEW
        return ScheduleFormat.NONE
    if isinstance(data, list):
        entries = [item for item in data if isinstance(item, dict)]
        if any(isinstance(item.get("topics"), list) for item in entries):
            return ScheduleFormat.NEW
        if any(item.get("topic") or item.get("time") for item in entries):
            return ScheduleFormat.OLD
    return ScheduleFormat.NONE


# --- speaker names -----------------------------------------------------------------


def _name_key(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip().casefold()


class SpeakerDirectory:
    """Resolves schedule speaker references by legacy id or display name.

    Built once per run from the published speaker posts.
    """

    def __init__(self, speakers: Iterable[tuple[int, str]] = ()) -> None:
        self._names: dict[int, str] = {}
        self._ids: dict[str, int] = {}
        for legacy_id, name in speakers:
            self._names[int(legacy_id)] = name
            self._ids.setdefault(_name_key(name), int(legacy_id))

    @classmethod
    def from_rows(cls, rows: Iterable[LegacyRow]) -> "SpeakerDirectory":
        return cls((row.id, str(row.fields.get("post_title") or "")) for row in rows)

    def __len__(self) -> int:
        return len(self._names)

    def resolve(self, reference: Any) -> tuple[int | None, str | None]:
        """Return `(legacy_id, name)` for an id or a name; unknown parts are `None`."""
        if reference is None or reference == "":
            return None, None
        if isinstance(reference, str) and not reference.strip().isdigit():
            numeric = None
        else:
            numeric = to_int(reference)
        if numeric is not None:
            name = self._names.get(numeric)
            if name is None:
                logger.warning("Speaker id %s not found among legacy speakers", numeric)
                return None, None
            return numeric, name
        name = str(reference).strip()
        legacy_id = self._ids.get(_name_key(name))
        if legacy_id is None:
            logger.warning("Speaker %r not found among legacy speakers; keeping the name", name)
            return None, name
        return legacy_id, self._names[legacy_id]

    def resolve_many(self, references: Any) -> tuple[tuple[str, ...], tuple[int, ...]]:
        if references is None:
            return (), ()
        if not isinstance(references, (list, tuple)):
            references = [references]
        names: list[str] = []
        ids: list[int] = []
        for reference in references:
            legacy_id, name = self.resolve(reference)
            if name:
                names.append(name)
            if legacy_id is not None:
                ids.append(legacy_id)
        return tuple(names), tuple(ids)


# --- parsers ---------------------------------------------------------------------------


def _topic_from_grouped(raw: dict, directory: SpeakerDirectory) -> ScheduleTopic:
    start_raw = raw.get("start_time") or raw.get("time") or ""
    end_time = parse_time_to_hhmm(raw.get("end_time")) if raw.get("end_time") else parse_end_time(start_raw)
    names, ids = directory.resolve_many(raw.get("speakers"))
    return ScheduleTopic(
        name=str(raw.get("name") or raw.get("topic") or raw.get("title") or "").strip(),
        start_time=parse_time_to_hhmm(start_raw),
        end_time=end_time,
        speakers=names,
        speaker_legacy_ids=ids,
        location=str(raw.get("location") or ""),
        description=str(raw.get("description") or ""),
    )


def _topic_from_flat(raw: dict, directory: SpeakerDirectory) -> ScheduleTopic:
    time_text = raw.get("time") or ""
    names, ids = directory.resolve_many(raw.get("speakers") or raw.get("speaker"))
    return ScheduleTopic(
        name=str(raw.get("topic") or raw.get("title") or "").strip(),
        start_time=parse_time_to_hhmm(time_text),
        end_time=parse_end_time(time_text),
        speakers=names,
        speaker_legacy_ids=ids,
        location="",
        description=str(raw.get("description") or ""),
    )


def parse_old_schedule(
    entries: Sequence[Any],
    *,
    event_legacy_id: int,
    event_start_date: str | None,
    directory: SpeakerDirectory,
) -> list[ScheduleDayRecord]:
    """Group flat `{day, time, topic}` entries into dated schedule days.

    Day N is dated `event_start_date + (N - 1)`; entries without a day belong to
    day 1. Multi-day schedules are labelled `Day N`.
    """
    start = format_day(event_start_date)
    if not start:
        logger.warning("Event %s has a flat schedule but no start date; schedule skipped", event_legacy_id)
        return []
    by_day: dict[int, list[ScheduleTopic]] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        day = to_int(entry.get("day")) or 1
        by_day.setdefault(max(day, 1), []).append(_topic_from_flat(entry, directory))
    multi_day = len(by_day) > 1
    first = date.fromisoformat(start)
    days: list[ScheduleDayRecord] = []
    for order, day in enumerate(sorted(by_day)):
        days.append(
            ScheduleDayRecord(
                event_legacy_id=event_legacy_id,
                schedule_date=(first + timedelta(days=day - 1)).isoformat(),
                tab_label=f"Day {day}" if multi_day else None,
                display_order=order,
                topics=tuple(by_day[day]),
            )
        )
    return days


def parse_grouped_schedule(
    groups: Sequence[Any],
    *,
    event_legacy_id: int,
    directory: SpeakerDirectory,
    legacy_id: int | None = None,
    first_display_order: int = 0,
) -> list[ScheduleDayRecord]:
    """Parse `{date, tab_label, topics}` groups; groups without a usable date are dropped."""
    days: list[ScheduleDayRecord] = []
    for group in groups:
        if not isinstance(group, dict):
            continue
        schedule_date = format_day(group.get("date") or group.get("schedule_date"))
        if not schedule_date:
            logger.warning("Schedule group for event %s has no date; skipped", event_legacy_id)
            continue
        topics = group.get("topics")
        if isinstance(topics, str):
            topics = parse_serialized(topics)
        topic_records = tuple(
            _topic_from_grouped(topic, directory) for topic in (topics or []) if isinstance(topic, dict)
        )
        label = str(group.get("tab_label") or "").strip() or None
        days.append(
            ScheduleDayRecord(
                event_legacy_id=event_legacy_id,
                schedule_date=schedule_date,
                tab_label=label,
                display_order=to_int(group.get("display_order"), first_display_order + len(days)),
                topics=topic_records,
                legacy_id=legacy_id,
            )
        )
    if len(days) > 1:
        days = [
            day if day.tab_label else replace(day, tab_label=f"Day {index}")
            for index, day in enumerate(days, start=1)
        ]
    return days


def normalize_event_schedule(
    value: Any,
    *,
    event_legacy_id: int,
    event_start_date: str | None,
    directory: SpeakerDirectory,
) -> list[ScheduleDayRecord]:
    """Dispatch an event's schedule meta to the parser of its detected format."""
    data = _decode(value)
    kind = detect_schedule_format(data)
    if kind is ScheduleFormat.OLD:
        return parse_old_schedule(
            data,
            event_legacy_id=event_legacy_id,
            event_start_date=event_start_date,
            directory=directory,
        )
    if kind is ScheduleFormat.NEW:
        if isinstance(data, dict):
            groups = data["schedules"] if isinstance(data.get("schedules"), list) else [data]
        else:
            groups = data
        return parse_grouped_schedule(groups, event_legacy_id=event_legacy_id, directory=directory)
    return []


def normalize_schedule_post(row: LegacyRow, directory: SpeakerDirectory, *, position: int = 0) -> ScheduleDayRecord | None:
    """Turn one `gps_schedule` post (a single grouped day) into a schedule day."""
    event_legacy_id = to_int(row.meta.get("_gps_event_id"))
    if not event_legacy_id:
        logger.warning("Schedule post %s has no event id; skipped", row.id)
        return None
    group = {
        "date": row.meta.get("_gps_schedule_date"),
        "tab_label": row.meta.get("_gps_tab_label"),
        "topics": parse_serialized(row.meta.get("_gps_schedule_topics")) or [],
        "display_order": to_int(row.fields.get("menu_order")) or position,
    }
    days = parse_grouped_schedule([group], event_legacy_id=event_legacy_id, directory=directory, legacy_id=row.id)
    if not days:
        logger.warning("Schedule post %s has no schedule date; skipped", row.id)
        return None
    return days[0]


__all__ = [
    "ScheduleFormat",
    "SpeakerDirectory",
    "detect_schedule_format",
    "normalize_event_schedule",
    "normalize_schedule_post",
    "parse_grouped_schedule",
    "parse_old_schedule",
]
