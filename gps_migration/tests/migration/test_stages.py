from __future__ import annotations

import csv
import json
from pathlib import Path

import psycopg
import pytest

from gps_migration.pipeline.mappings import EntityType, IdMappingStore
from gps_migration.pipeline.stages import credits, event_schedules, events, orders, seminars, users
from gps_migration.tests.utils.fakes import FakeContent, FakeIdentity, FakeSource, InMemoryStore, make_context, row


def _seeded(tmp_path: Path, **entries: dict[int, str]) -> IdMappingStore:
    """Mapping table that already holds `entries` as if loaded from disk."""
    mappings = IdMappingStore(tmp_path)
    for entity, values in entries.items():
        for legacy_id, new_id in values.items():
            mappings.put(EntityType(entity), legacy_id, new_id)
    mappings.save()
    mappings.load()
    return mappings


def _by_entity(results) -> dict:
    return {result.entity: result for result in results}


def _counts(result) -> tuple[int, int, int, int]:
    return (result.total, result.migrated, result.skipped, result.failed)


USER_ROWS = [
    row(5, meta={"first_name": "Ana", "wpiy_capabilities": 'a:1:{s:8:"customer";b:1;}'}, user_email="Ana@Example.com", user_pass="$P$a"),
    row(6, meta={"wpiy_capabilities": 'a:1:{s:13:"administrator";b:1;}'}, user_email="admin@example.com"),
]


# --- users ----------------------------------------------------------------------------------


def test_users_are_provisioned_and_mapped(tmp_path: Path) -> None:
    store = InMemoryStore()
    ctx = make_context(FakeSource(users=USER_ROWS), tmp_path, store=store, identity=FakeIdentity())

    [result] = users.run(ctx)

    assert _counts(result) == (2, 2, 0, 0)
    rows = store.rows("users")
    assert [(r["email"], r["role"], r["clerk_id"]) for r in rows] == [
        ("ana@example.com", "customer", "user_clerk_5"),
        ("admin@example.com", "admin", "user_clerk_6"),
    ]
    assert ctx.mappings.get(EntityType.USER, 5) == rows[0]["id"]
    assert [r["wp_user_id"] for r in store.rows("user_migration_map")] == [5, 6]


def test_rerunning_users_skips_existing_rows(tmp_path: Path) -> None:
    store = InMemoryStore()
    first = make_context(FakeSource(users=USER_ROWS), tmp_path, store=store)
    users.run(first)
    first.mappings.save()

    second = make_context(FakeSource(users=USER_ROWS), tmp_path, store=store)
    second.mappings.load()
    [result] = users.run(second)

    assert _counts(result) == (2, 0, 2, 0)
    assert len(store.rows("users")) == 2
    assert second.mappings.added_since_load == 0


def test_interrupted_users_stage_resumes_without_duplicates(tmp_path: Path) -> None:
    source_rows = [row(uid, user_email=f"user{uid}@example.com") for uid in (11, 12, 13, 14)]
    store = InMemoryStore()
    # Each user costs two inserts (users + user_migration_map); stop after two users.
    store.fail_after = 4
    first = make_context(FakeSource(users=source_rows), tmp_path, store=store)

    with pytest.raises(psycopg.OperationalError):
        users.run(first)
    first.mappings.save()
    assert len(store.rows("users")) == 2

    store.fail_after = None
    second = make_context(FakeSource(users=source_rows), tmp_path, store=store)
    second.mappings.load()
    [result] = users.run(second)

    assert _counts(result) == (4, 2, 2, 0)
    assert sorted(r["email"] for r in store.rows("users")) == [f"user{uid}@example.com" for uid in (11, 12, 13, 14)]
    assert [r["wp_user_id"] for r in store.rows("user_migration_map")] == [11, 12, 13, 14]
    assert len(second.mappings) == 4


def test_users_preview_writes_import_bundle_only(tmp_path: Path) -> None:
    ctx = make_context(FakeSource(users=USER_ROWS), tmp_path, dry_run=True)

    [result] = users.run(ctx)

    assert _counts(result) == (2, 0, 0, 0)
    bundle = json.loads((tmp_path / "clerk-import.json").read_text(encoding="utf-8"))
    assert bundle[0]["external_id"] == "wp_5"
    assert bundle[0]["password_hasher"] == "phpass"
    assert "password_hasher" not in bundle[1]
    with (tmp_path / "users-review.csv").open(encoding="utf-8", newline="") as fh:
        sheet = list(csv.reader(fh))
    assert sheet[0] == users.REVIEW_HEADER
    assert sheet[1][:2] == ["5", "ana@example.com"]
    assert (tmp_path / "users-export.json").exists()
    assert len(ctx.mappings) == 0


# --- events ---------------------------------------------------------------------------------


def _event_source() -> FakeSource:
    return FakeSource(
        speakers=[row(7, post_title="Dr. Jane Smith", post_name="jane-smith", post_content="Bio")],
        events=[
            row(
                9,
                meta={"_gps_speaker_ids": "[7, 99]", "_gps_objectives": "Plan\nPlace", "_gps_start_date": "20250301"},
                post_title="Implant Course",
                post_status="publish",
            ),
            row(10, post_title="Broken", post_name="broken", post_status="draft"),
        ],
        ticket_types=[
            row(30, meta={"_gps_event_id": "9", "_gps_ticket_status": "active"}, post_title="General"),
            row(31, meta={"_gps_event_id": "10"}, post_title="General"),
        ],
    )


def test_events_stage_writes_content_links_and_ticket_types(tmp_path: Path) -> None:
    store = InMemoryStore()
    store.reject["events"] = lambda values: values["slug"] == "broken"
    content = FakeContent()
    ctx = make_context(_event_source(), tmp_path, store=store, content=content)

    results = _by_entity(events.run(ctx))

    assert _counts(results["speakers"]) == (1, 1, 0, 0)
    assert _counts(results["events"]) == (2, 1, 0, 1)
    assert results["events"].errors[0]["id"] == 10
    assert _counts(results["ticket_types"]) == (2, 1, 1, 0)

    [event] = store.rows("events")
    assert event["strapi_id"] == 2
    assert event["learning_objectives"] == ["Plan", "Place"]
    assert event["start_date"] == "2025-03-01"
    assert [collection for collection, _ in content.created] == ["speakers", "events", "events"]
    assert store.rows("event_speakers") == [{"event_id": event["id"], "speaker_id": "speakers-1", "display_order": 0}]
    [ticket_type] = store.rows("ticket_types")
    assert (ticket_type["event_id"], ticket_type["status"]) == (event["id"], "active")
    assert ctx.mappings.get(EntityType.TICKET_TYPE, 31) is None


# --- event schedules ------------------------------------------------------------------------------


def test_schedules_come_from_posts_then_event_meta(tmp_path: Path) -> None:
    topics = json.dumps([{"name": "Lecture", "start_time": "09:00", "end_time": "10:00"}])
    flat = json.dumps([{"day": 1, "time": "9:00 AM - 10:00 AM", "topic": "Intro"}])
    source = FakeSource(
        schedules=[
            row(40, meta={"_gps_event_id": "9", "_gps_schedule_date": "2025-03-02", "_gps_schedule_topics": topics}, menu_order=5),
            row(41, meta={"_gps_event_id": "9", "_gps_schedule_date": "2025-03-01", "_gps_schedule_topics": topics}, menu_order=1),
        ],
        events=[
            row(9, meta={"_gps_schedule_topics": flat, "_gps_start_date": "20250301"}),
            row(10, meta={"_gps_schedule_topics": flat, "_gps_start_date": "20250310"}),
            row(11, meta={"_gps_schedule_topics": flat, "_gps_start_date": "20250401"}),
        ],
    )
    store = InMemoryStore()
    mappings = _seeded(tmp_path, event={9: "event-9", 11: "event-11"})
    ctx = make_context(source, tmp_path, store=store, mappings=mappings)

    [result] = event_schedules.run(ctx)

    assert _counts(result) == (4, 3, 1, 0)
    written = [(r["event_id"], r["schedule_date"], r["display_order"]) for r in store.rows("event_schedules")]
    assert written == [
        ("event-9", "2025-03-01", 1),
        ("event-9", "2025-03-02", 2),
        ("event-11", "2025-04-01", 1),
    ]
    assert store.rows("event_schedules")[2]["topics"][0]["name"] == "Intro"


# --- seminars ----------------------------------------------------------------------------------------


def test_seminar_stage_links_sessions_registrations_and_attendance(tmp_path: Path) -> None:
    source = FakeSource(
        seminars=[row(50, meta={"_gps_seminar_year": "2025"}, post_title="Monthly Seminar 2025", post_status="publish")],
        seminar_sessions=[
            row(60, seminar_id=50, session_number=1, session_date="2025-01-15", session_time_start="18:00:00"),
            row(61, seminar_id=50, session_number=2, session_date=None),
            row(62, seminar_id=99, session_number=1, session_date="2025-01-15"),
        ],
        seminar_registrations=[
            row(70, user_id=5, seminar_id=50, registration_date="2025-01-02 10:00:00", status="active"),
            row(71, user_id=6, seminar_id=50),
        ],
        seminar_attendance=[
            row(80, registration_id=70, session_id=60, user_id=5, seminar_id=50, attended=1),
            row(81, registration_id=70, session_id=61, user_id=5, seminar_id=50, attended=1),
        ],
    )
    store = InMemoryStore()
    mappings = _seeded(tmp_path, user={5: "user-5"})
    ctx = make_context(source, tmp_path, store=store, mappings=mappings, content=FakeContent())

    results = _by_entity(seminars.run(ctx))

    assert _counts(results["seminars"]) == (1, 1, 0, 0)
    assert _counts(results["seminar_sessions"]) == (3, 1, 1, 1)
    assert results["seminar_sessions"].errors == [{"id": 61, "error": "session date missing"}]
    assert _counts(results["seminar_registrations"]) == (2, 1, 1, 0)
    assert _counts(results["seminar_attendance"]) == (2, 1, 1, 0)

    [seminar] = store.rows("seminars")
    assert (seminar["price"], seminar["total_sessions"], seminar["status"]) == (750.0, 10, "active")
    [registration] = store.rows("seminar_registrations")
    assert registration["registration_date"] == "2025-01-02"
    assert registration["order_id"] is None
    [attendance] = store.rows("seminar_attendance")
    assert attendance["credits_awarded"] == 2
    assert attendance["session_id"] == store.rows("seminar_sessions")[0]["id"]


# --- orders ---------------------------------------------------------------------------------------------


def _order_source() -> FakeSource:
    source = FakeSource(
        orders=[
            row(100, meta={"_customer_user": "5", "_order_total": "250", "_billing_email": "ana@example.com"}, post_status="wc-completed"),
            row(101, meta={"_customer_user": "0", "_order_total": "750", "_billing_address_1": "1 Main St"}, post_status="wc-processing"),
            row(102, meta={"_customer_user": "5", "_order_total": "99"}, post_status="wc-completed"),
        ],
        tickets=[
            row(400, ticket_code="GPS-1", ticket_type_id=30, event_id=9, user_id=5, order_id=100, order_item_id=300),
            row(401, ticket_code="", ticket_type_id=31, event_id=9, order_id=102),
        ],
        attendance=[
            row(500, ticket_id=400, event_id=9, user_id=5, check_in_method="qr_scan"),
            row(501, ticket_id=401, event_id=9),
        ],
    )
    source.order_items = {
        100: [row(300, meta={"_gps_event_id": "9", "_gps_ticket_type_id": "30", "_line_subtotal": "250"}, order_id=100)],
        101: [row(301, meta={"_gps_seminar_id": "50", "_line_subtotal": "750"}, order_id=101)],
        102: [row(302, meta={"_gps_event_id": "9", "_gps_ticket_type_id": "31", "_line_subtotal": "99"}, order_id=102)],
    }
    return source


def _order_mappings(tmp_path: Path) -> IdMappingStore:
    return _seeded(
        tmp_path,
        user={5: "user-5"},
        event={9: "event-9"},
        ticket_type={30: "tt-30"},
        seminar={50: "seminar-50"},
    )


def test_order_with_unmapped_product_is_skipped_with_its_lines(tmp_path: Path) -> None:
    store = InMemoryStore()
    mappings = _order_mappings(tmp_path)
    ctx = make_context(_order_source(), tmp_path, store=store, mappings=mappings, since="2024-01-01")

    order_result, line_result, item_ids = orders.migrate_orders(ctx, orders.load_orders(ctx))

    assert _counts(order_result) == (3, 2, 1, 0)
    assert _counts(line_result) == (3, 2, 1, 0)
    assert mappings.added_since_load == 2
    assert ("orders_since", "2024-01-01") in ctx.source.calls
    assert [r["order_number"] for r in store.rows("orders")] == ["WC-100", "WC-101"]
    guest = store.rows("orders")[1]
    assert guest["user_id"] is None
    assert guest["billing_address"]["country"] == "US"
    assert sorted(item_ids) == [300, 301]
    seminar_line = store.rows("order_items")[1]
    assert (seminar_line["item_type"], seminar_line["seminar_id"], seminar_line["ticket_type_id"]) == ("seminar", "seminar-50", None)


def test_orders_stage_writes_tickets_and_attendance(tmp_path: Path) -> None:
    store = InMemoryStore()
    ctx = make_context(_order_source(), tmp_path, store=store, mappings=_order_mappings(tmp_path))

    results = _by_entity(orders.run(ctx))

    assert _counts(results["tickets"]) == (2, 1, 1, 0)
    assert _counts(results["attendance"]) == (2, 1, 1, 0)
    [ticket] = store.rows("tickets")
    assert ticket["order_item_id"] == store.rows("order_items")[0]["id"]
    assert ticket["attendee_name"] == "Unknown Attendee"
    assert ticket["qr_code_data"] == {"ticket_code": "GPS-1", "event_id": "event-9", "migrated_from_wp": True}
    [attendance] = store.rows("attendance")
    assert (attendance["ticket_id"], attendance["check_in_method"]) == (ticket["id"], "qr_scan")


def test_rerunning_orders_creates_nothing_new(tmp_path: Path) -> None:
    store = InMemoryStore()
    orders.run(make_context(_order_source(), tmp_path, store=store, mappings=_order_mappings(tmp_path)))
    inserted = store.inserts

    results = _by_entity(orders.run(make_context(_order_source(), tmp_path, store=store, mappings=_order_mappings(tmp_path))))

    assert store.inserts == inserted
    assert all(result.migrated == 0 for result in results.values())
    assert results["order_items"].skipped == 3


def test_lines_with_the_same_product_stay_separate_rows(tmp_path: Path) -> None:
    ticket_meta = {"_gps_event_id": "10", "_gps_ticket_type_id": "20", "_line_subtotal": "100"}
    source = FakeSource(orders=[row(100, meta={"_customer_user": "0"}, post_status="wc-completed")])
    source.order_items = {
        100: [
            row(1001, meta=ticket_meta, order_id=100),
            row(1002, meta=ticket_meta, order_id=100),
            row(1003, meta={"_line_subtotal": "15"}, order_id=100, order_item_name="Parking"),
            row(1004, meta={"_line_subtotal": "15"}, order_id=100, order_item_name="Parking"),
        ]
    }
    store = InMemoryStore()
    mappings = _seeded(tmp_path, event={10: "event-10"}, ticket_type={20: "tt-20"})

    first = make_context(source, tmp_path, store=store, mappings=mappings)
    _, line_result, item_ids = orders.migrate_orders(first, orders.load_orders(first))

    assert _counts(line_result) == (4, 4, 0, 0)
    assert len(store.rows("order_items")) == 4
    assert len(set(item_ids.values())) == 4

    second = make_context(source, tmp_path, store=store, mappings=mappings)
    _, rerun, rerun_ids = orders.migrate_orders(second, orders.load_orders(second))

    assert _counts(rerun) == (4, 0, 4, 0)
    assert len(store.rows("order_items")) == 4
    assert rerun_ids == item_ids


@pytest.mark.parametrize("stage", [orders, credits], ids=["orders", "credits"])
def test_child_stage_without_parent_mappings_skips_everything(tmp_path: Path, stage) -> None:
    source = _order_source()
    source.rows.update(
        ce_ledger=[row(600, user_id=5, event_id=9, credits="2")],
        certificates=[row(700, user_id=5, event_id=9)],
        waitlist=[row(800, event_id=9, email="w@example.com")],
        seminar_waitlist=[row(900, seminar_id=50, email="s@example.com")],
    )
    store = InMemoryStore()
    ctx = make_context(source, tmp_path, store=store)

    results = stage.run(ctx)

    assert results
    for result in results:
        assert result.total > 0
        assert (result.migrated, result.failed) == (0, 0)
        assert result.skipped == result.total
    assert store.inserts == 0
    assert len(ctx.mappings) == 0


# --- credits ---------------------------------------------------------------------------------------------


def test_credits_stage_ledger_certificates_and_waitlists(tmp_path: Path) -> None:
    source = FakeSource(
        ce_ledger=[
            row(600, user_id=5, event_id=9, credits="12", source="auto", transaction_type="earned", awarded_at="2024-05-01 09:00:00"),
            row(601, user_id=99, event_id=9, credits="3"),
        ],
        certificates=[row(700, user_id=5, event_id=9, ticket_id=400, generated_at="2024-05-02 09:00:00")],
        waitlist=[row(800, event_id=9, email="Wait@Example.com"), row(801, event_id=12, email="x@y.z")],
        seminar_waitlist=[row(900, seminar_id=50, email="s@example.com", position=4)],
    )
    source.display_names = {5: "Ana Silva"}
    store = InMemoryStore()
    mappings = _seeded(tmp_path, user={5: "user-5"}, event={9: "event-9"}, seminar={50: "seminar-50"}, ticket={400: "ticket-400"})
    ctx = make_context(source, tmp_path, store=store, mappings=mappings)

    results = _by_entity(credits.run(ctx))

    assert _counts(results["ce_ledger"]) == (2, 1, 1, 0)
    assert _counts(results["certificates"]) == (1, 1, 0, 0)
    assert _counts(results["waitlist"]) == (3, 2, 1, 0)

    [entry] = store.rows("ce_ledger")
    assert (entry["credits"], entry["source"], entry["event_id"]) == (12.0, "course_attendance", "event-9")
    [certificate] = store.rows("certificates")
    assert certificate["attendee_name"] == "Ana Silva"
    assert certificate["ticket_id"] == "ticket-400"
    assert certificate["certificate_code"].startswith("CERT-2024-")
    [waiting] = store.rows("waitlist")
    assert (waiting["email"], waiting["position"]) == ("wait@example.com", 1)
    [seminar_waiting] = store.rows("seminar_waitlist")
    assert (seminar_waiting["seminar_id"], seminar_waiting["position"]) == ("seminar-50", 4)


def test_rerunning_credits_keeps_one_ledger_row_without_award_time(tmp_path: Path) -> None:
    source = FakeSource(ce_ledger=[row(1, user_id=5, event_id=10, credits=2, source="auto", transaction_type="earned")])
    store = InMemoryStore()
    mappings = _seeded(tmp_path, user={5: "user-5"})

    credits.run(make_context(source, tmp_path, store=store, mappings=mappings))
    results = _by_entity(credits.run(make_context(source, tmp_path, store=store, mappings=mappings)))

    assert _counts(results["ce_ledger"]) == (1, 0, 1, 0)
    [entry] = store.rows("ce_ledger")
    assert entry["awarded_at"] is None


def test_unknown_transaction_type_is_written_as_earned(tmp_path: Path) -> None:
    source = FakeSource(ce_ledger=[row(601, user_id=5, credits="3", transaction_type="bonus", awarded_at="2024-05-01 09:00:00")])
    store = InMemoryStore()
    ctx = make_context(source, tmp_path, store=store, mappings=_seeded(tmp_path, user={5: "user-5"}))

    results = _by_entity(credits.run(ctx))

    assert _counts(results["ce_ledger"]) == (1, 1, 0, 0)
    [entry] = store.rows("ce_ledger")
    assert (entry["user_id"], entry["transaction_type"], entry["event_id"]) == ("user-5", "earned", None)


# --- previews ---------------------------------------------------------------------------------------------


@pytest.mark.parametrize("flag", ["export_only", "dry_run"])
def test_preview_stages_export_without_touching_the_store(tmp_path: Path, flag: str) -> None:
    source = _order_source()
    source.rows.update(_event_source().rows)
    source.rows["users"] = USER_ROWS
    store = InMemoryStore()
    ctx = make_context(source, tmp_path, store=store, **{flag: True})

    for stage in (users, events, event_schedules, seminars, orders, credits):
        stage.run(ctx)

    assert store.inserts == 0
    assert len(ctx.mappings) == 0
    for name in ("users", "events", "event-schedules", "seminars", "orders", "credits"):
        assert (tmp_path / f"{name}-export.json").exists()
    exported = json.loads((tmp_path / "orders-export.json").read_text(encoding="utf-8"))
    assert [order["order_number"] for order in exported["orders"]] == ["WC-100", "WC-101", "WC-102"]
    assert len(exported["orders"][0]["lines"]) == 1
