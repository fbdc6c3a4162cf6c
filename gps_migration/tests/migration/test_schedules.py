from __future__ import annotations

import json

import pytest

from gps_migration.pipeline.schedules import (
    ScheduleFormat,
    SpeakerDirectory,
    detect_schedule_format,
    normalize_event_schedule,
    normalize_schedule_post,
    parse_old_schedule,
)
from gps_migration.tests.utils.fakes import row


DIRECTORY = SpeakerDirectory([(7, "Dr. Jane Smith"), (8, "Dr. Omar Lee")])


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ('[{"day": 1, "time": "9:00 AM", "topic": "Intro"}]', ScheduleFormat.OLD),
        ('[{"date": "2025-03-01", "topics": []}]', ScheduleFormat.NEW),
        ('{"schedules": [{"date": "2025-03-01", "topics": []}]}', ScheduleFormat.NEW),
        ('{"date": "2025-03-01", "topics": [{"name": "Intro"}]}', ScheduleFormat.NEW),
        ("[]", ScheduleFormat.NONE),
        ("{}", ScheduleFormat.NONE),
        ("garbage", ScheduleFormat.NONE),
        (None, ScheduleFormat.NONE),
        ("", ScheduleFormat.NONE),
        ("[1, 2, 3]", ScheduleFormat.NONE),
    ],
)
def test_detect_schedule_format_never_raises(value, expected) -> None:
    assert detect_schedule_format(value) is expected


def test_flat_and_grouped_encodings_yield_the_same_day() -> None:
    flat = json.dumps([{"day": 1, "time": "9:00 AM - 10:30 AM", "topic": "Implant planning"}])
    grouped = json.dumps(
        [
            {
                "date": "2025-03-01",
                "topics": [{"name": "Implant planning", "start_time": "9:00 AM", "end_time": "10:30 AM"}],
            }
        ]
    )

    old_days = normalize_event_schedule(flat, event_legacy_id=5, event_start_date="2025-03-01", directory=DIRECTORY)
    new_days = normalize_event_schedule(grouped, event_legacy_id=5, event_start_date=None, directory=DIRECTORY)

    assert old_days == new_days
    assert len(old_days[0].topics) == 1
    topic = old_days[0].topics[0]
    assert (topic.start_time, topic.end_time) == ("09:00", "10:30")


def test_old_schedule_groups_days_and_labels_them() -> None:
    entries = [
        {"day": 2, "time": "1:00 PM - 2:00 PM", "topic": "Hands-on"},
        {"day": 1, "time": "9:00 AM - 10:00 AM", "topic": "Lecture"},
        {"time": "10:00 AM - 11:00 AM", "topic": "Q&A"},
    ]
    days = parse_old_schedule(entries, event_legacy_id=5, event_start_date="2025-03-01", directory=DIRECTORY)

    assert [d.schedule_date for d in days] == ["2025-03-01", "2025-03-02"]
    assert [d.tab_label for d in days] == ["Day 1", "Day 2"]
    assert [len(d.topics) for d in days] == [2, 1]


def test_old_schedule_without_start_date_is_dropped() -> None:
    days = parse_old_schedule([{"day": 1, "topic": "Lecture"}], event_legacy_id=5, event_start_date=None, directory=DIRECTORY)
    assert days == []


def test_speakers_resolve_by_id_and_by_name() -> None:
    grouped = {
        "schedules": [
            {"date": "2025-03-01", "topics": [{"name": "A", "start_time": "09:00", "speakers": ["7", "dr. omar  lee", "Guest"]}]},
            {"date": "2025-03-02", "topics": [{"name": "B", "start_time": "09:00", "speakers": [99]}]},
        ]
    }
    days = normalize_event_schedule(grouped, event_legacy_id=5, event_start_date=None, directory=DIRECTORY)

    first = days[0].topics[0]
    assert first.speakers == ("Dr. Jane Smith", "Dr. Omar Lee", "Guest")
    assert first.speaker_legacy_ids == (7, 8)
    assert days[1].topics[0].speakers == ()
    assert [d.tab_label for d in days] == ["Day 1", "Day 2"]


def test_schedule_post_becomes_one_day() -> None:
    post = row(
        40,
        meta={
            "_gps_event_id": "5",
            "_gps_schedule_date": "2025-03-02",
            "_gps_tab_label": "Workshop",
            "_gps_schedule_topics": json.dumps([{"name": "Suturing", "start_time": "13:00", "end_time": "15:00"}]),
        },
        menu_order=2,
    )
    day = normalize_schedule_post(post, DIRECTORY)

    assert day is not None
    assert (day.event_legacy_id, day.schedule_date, day.tab_label, day.display_order) == (5, "2025-03-02", "Workshop", 2)
    assert day.legacy_id == 40
    assert day.topics[0].to_json()["end_time"] == "15:00"


def test_schedule_post_without_event_or_date_is_skipped() -> None:
    assert normalize_schedule_post(row(41, meta={"_gps_schedule_date": "2025-03-02"}), DIRECTORY) is None
    assert normalize_schedule_post(row(42, meta={"_gps_event_id": "5"}), DIRECTORY) is None
