"""Legacy rows → canonical records.

One `normalize_*` function per entity. They never raise on malformed legacy
values: defaults mirror what the WordPress plugin assumed when a meta key was
missing (venue, seminar tuition, session counts, ...).
"""
from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone
from typing import Any, Sequence

from gps_migration.pipeline.parsing import (
    as_id_list,
    blank_to_none,
    format_day,
    format_time,
    format_wp_date,
    parse_serialized,
    slugify,
    split_lines,
    to_flag,
    to_float,
    to_int,
)
from gps_migration.pipeline.records import (
    AttendanceRecord,
    CertificateRecord,
    CreditEntryRecord,
    EventRecord,
    LegacyRow,
    OrderLineRecord,
    OrderRecord,
    SeminarAttendanceRecord,
    SeminarRecord,
    SeminarRegistrationRecord,
    SeminarSessionRecord,
    SeminarWaitlistRecord,
    SpeakerRecord,
    TicketRecord,
    TicketTypeRecord,
    UserRecord,
    WaitlistRecord,
)
from gps_migration.pipeline.schedules import ScheduleFormat, detect_schedule_format
from gps_migration.pipeline.vocab import (
    map_check_in_method,
    map_credit_source,
    map_event_status,
    map_order_status,
    map_registration_status,
    map_seminar_status,
    map_ticket_status,
    map_ticket_type_status,
    map_transaction_type,
    map_user_role,
    map_waitlist_status,
)


DEFAULT_VENUE = "GPS Dental Training Center"
DEFAULT_ADDRESS = "6320 Sugarloaf Parkway"
DEFAULT_CITY = "Duluth"
DEFAULT_STATE = "GA"
DEFAULT_ZIP = "30097"

DEFAULT_SEMINAR_PRICE = 750.0
DEFAULT_SEMINAR_CAPACITY = 50
SEMINAR_TOTAL_SESSIONS = 10
SEMINAR_CREDITS_PER_SESSION = 2
DEFAULT_SESSION_CAPACITY = 50
DEFAULT_SESSIONS_REMAINING = 10
DEFAULT_SESSION_CREDITS = 2

DEFAULT_ATTENDEE_NAME = "Unknown Attendee"
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# --- users & content ---------------------------------------------------------------


def normalize_user(row: LegacyRow, *, table_prefix: str) -> UserRecord:
    meta = row.meta
    capabilities = meta.get(f"{table_prefix}capabilities") or meta.get("wp_capabilities")
    return UserRecord(
        legacy_id=row.id,
        email=_text(row.fields.get("user_email")).strip().lower(),
        username=_text(row.fields.get("user_login")),
        first_name=blank_to_none(meta.get("first_name") or meta.get("billing_first_name")),
        last_name=blank_to_none(meta.get("last_name") or meta.get("billing_last_name")),
        display_name=blank_to_none(row.fields.get("display_name")),
        phone=blank_to_none(meta.get("billing_phone") or meta.get("shipping_phone")),
        role=map_user_role(capabilities),
        password_hash=blank_to_none(row.fields.get("user_pass")),
        registered_at=format_wp_date(row.fields.get("user_registered")),
    )


def normalize_speaker(row: LegacyRow) -> SpeakerRecord:
    title = _text(row.fields.get("post_title")).strip()
    socials = {
        network: row.meta[f"_gps_social_{network}"]
        for network in ("twitter", "linkedin", "facebook")
        if row.meta.get(f"_gps_social_{network}")
    }
    return SpeakerRecord(
        legacy_id=row.id,
        name=title,
        slug=_text(row.fields.get("post_name")) or slugify(title),
        title=_text(row.meta.get("_gps_designation")),
        bio=_text(row.fields.get("post_content")),
        photo_url=blank_to_none(row.fields.get("thumbnail_url")),
        social_links=socials,
    )


def _flat_schedule_topics(value: Any) -> tuple[dict, ...]:
    data = parse_serialized(value)
    if detect_schedule_format(data) is not ScheduleFormat.OLD:
        return ()
    topics = []
    for index, item in enumerate(data, start=1):
        if not isinstance(item, dict):
            continue
        topics.append(
            {
                "day": to_int(item.get("day")) or index,
                "time": _text(item.get("time")),
                "topic": _text(item.get("topic") or item.get("title")),
                "description": item.get("description"),
            }
        )
    return tuple(topics)


def normalize_event(row: LegacyRow) -> EventRecord:
    meta = row.meta
    title = _text(row.fields.get("post_title")).strip()
    return EventRecord(
        legacy_id=row.id,
        title=title,
        slug=_text(row.fields.get("post_name")) or slugify(title),
        description=_text(meta.get("_gps_description") or row.fields.get("post_content")),
        excerpt=_text(row.fields.get("post_excerpt")),
        start_date=format_day(meta.get("_gps_start_date")),
        end_date=format_day(meta.get("_gps_end_date")),
        start_time=format_time(meta.get("_gps_start_time")),
        end_time=format_time(meta.get("_gps_end_time")),
        venue=meta.get("_gps_venue") or DEFAULT_VENUE,
        address=meta.get("_gps_address") or DEFAULT_ADDRESS,
        city=meta.get("_gps_city") or DEFAULT_CITY,
        state=meta.get("_gps_state") or DEFAULT_STATE,
        zip=meta.get("_gps_zip") or DEFAULT_ZIP,
        ce_credits=to_int(meta.get("_gps_ce_credits"), 0) or 0,
        course_description=blank_to_none(meta.get("_gps_course_description")),
        objectives=tuple(split_lines(meta.get("_gps_objectives"))),
        speaker_legacy_ids=tuple(as_id_list(meta.get("_gps_speaker_ids"))),
        featured_image_url=blank_to_none(row.fields.get("thumbnail_url")),
        status=map_event_status(row.fields.get("post_status")),
        schedule_topics=_flat_schedule_topics(meta.get("_gps_schedule_topics")),
        created_at=format_wp_date(row.fields.get("post_date")) or _now_iso(),
        updated_at=format_wp_date(row.fields.get("post_modified")) or _now_iso(),
    )


def normalize_ticket_type(row: LegacyRow) -> TicketTypeRecord:
    meta = row.meta
    raw_type = meta.get("_gps_ticket_type") or "general"
    return TicketTypeRecord(
        legacy_id=row.id,
        event_legacy_id=to_int(meta.get("_gps_event_id")) or None,
        name=_text(row.fields.get("post_title")).strip(),
        ticket_type="_".join(raw_type.lower().split()),
        price=to_float(meta.get("_gps_ticket_price"), 0.0) or 0.0,
        quantity=to_int(meta.get("_gps_ticket_quantity")),
        sale_start=format_wp_date(meta.get("_gps_ticket_start_date")),
        sale_end=format_wp_date(meta.get("_gps_ticket_end_date")),
        wc_product_id=to_int(meta.get("_gps_wc_product_id")),
        status=map_ticket_type_status(meta.get("_gps_ticket_status")),
        features=tuple(split_lines(meta.get("_gps_ticket_features"))),
    )


# --- seminars ------------------------------------------------------------------------


def normalize_seminar(row: LegacyRow, *, current_year: int | None = None) -> SeminarRecord:
    meta = row.meta
    title = _text(row.fields.get("post_title")).strip()
    year = to_int(meta.get("_gps_seminar_year")) or current_year or datetime.now(timezone.utc).year
    return SeminarRecord(
        legacy_id=row.id,
        title=title,
        slug=_text(row.fields.get("post_name")) or slugify(title),
        description=_text(row.fields.get("post_content")),
        year=year,
        price=to_float(meta.get("_gps_seminar_tuition"), DEFAULT_SEMINAR_PRICE),
        capacity=to_int(meta.get("_gps_seminar_capacity")) or DEFAULT_SEMINAR_CAPACITY,
        total_sessions=SEMINAR_TOTAL_SESSIONS,
        credits_per_session=SEMINAR_CREDITS_PER_SESSION,
        wc_product_id=to_int(meta.get("_gps_seminar_product_id")),
        status=map_seminar_status(meta.get("_gps_seminar_status"), row.fields.get("post_status")),
        created_at=format_wp_date(row.fields.get("post_date")) or _now_iso(),
    )


def normalize_seminar_session(row: LegacyRow) -> SeminarSessionRecord:
    f = row.fields
    return SeminarSessionRecord(
        legacy_id=row.id,
        seminar_legacy_id=to_int(f.get("seminar_id"), 0) or 0,
        session_number=to_int(f.get("session_number"), 0) or 0,
        session_date=format_day(f.get("session_date")),
        time_start=format_time(f.get("session_time_start")),
        time_end=format_time(f.get("session_time_end")),
        topic=blank_to_none(f.get("topic")),
        description=blank_to_none(f.get("description")),
        capacity=to_int(f.get("capacity")) or DEFAULT_SESSION_CAPACITY,
        registered_count=to_int(f.get("registered_count")) or 0,
    )


def normalize_seminar_registration(row: LegacyRow) -> SeminarRegistrationRecord:
    f = row.fields
    registered = format_wp_date(f.get("registration_date"))
    return SeminarRegistrationRecord(
        legacy_id=row.id,
        user_legacy_id=to_int(f.get("user_id")) or None,
        seminar_legacy_id=to_int(f.get("seminar_id"), 0) or 0,
        order_legacy_id=to_int(f.get("order_id")) or None,
        registration_date=registered,
        start_session_date=format_day(f.get("start_session_date")),
        sessions_completed=to_int(f.get("sessions_completed")) or 0,
        sessions_remaining=to_int(f.get("sessions_remaining")) or DEFAULT_SESSIONS_REMAINING,
        makeup_used=to_flag(f.get("makeup_used")),
        status=map_registration_status(f.get("status")),
        qr_code=blank_to_none(f.get("qr_code")),
        notes=blank_to_none(f.get("notes")),
        created_at=registered or _now_iso(),
    )


def normalize_seminar_attendance(row: LegacyRow) -> SeminarAttendanceRecord:
    f = row.fields
    return SeminarAttendanceRecord(
        legacy_id=row.id,
        registration_legacy_id=to_int(f.get("registration_id"), 0) or 0,
        session_legacy_id=to_int(f.get("session_id"), 0) or 0,
        user_legacy_id=to_int(f.get("user_id")) or None,
        seminar_legacy_id=to_int(f.get("seminar_id"), 0) or 0,
        attended=to_flag(f.get("attended")),
        checked_in_at=format_wp_date(f.get("checked_in_at")) or _now_iso(),
        checked_in_by_legacy_id=to_int(f.get("checked_in_by")) or None,
        is_makeup=to_flag(f.get("is_makeup")),
        credits_awarded=to_int(f.get("credits_awarded")) or DEFAULT_SESSION_CREDITS,
        notes=blank_to_none(f.get("notes")),
    )


# --- orders ---------------------------------------------------------------------------


def normalize_order_line(row: LegacyRow) -> OrderLineRecord:
    meta = row.meta
    quantity = to_int(meta.get("_qty")) or 1
    subtotal = to_float(meta.get("_line_subtotal"), 0.0) or 0.0
    seminar_id = to_int(meta.get("_gps_seminar_id")) or None
    return OrderLineRecord(
        legacy_id=row.id,
        order_legacy_id=to_int(row.fields.get("order_id"), 0) or 0,
        name=_text(row.fields.get("order_item_name")),
        product_id=to_int(meta.get("_product_id")) or None,
        quantity=quantity,
        unit_price=round(subtotal / quantity, 2),
        subtotal=subtotal,
        total=to_float(meta.get("_line_total"), subtotal) or 0.0,
        event_legacy_id=to_int(meta.get("_gps_event_id")) or None,
        seminar_legacy_id=seminar_id,
        ticket_type_legacy_id=to_int(meta.get("_gps_ticket_type_id")) or None,
        item_type="seminar" if seminar_id else "ticket",
    )


def _billing_address(meta: dict) -> dict | None:
    line1 = blank_to_none(meta.get("_billing_address_1"))
    if not line1:
        return None
    return {
        "line1": line1,
        "line2": blank_to_none(meta.get("_billing_address_2")),
        "city": blank_to_none(meta.get("_billing_city")),
        "state": blank_to_none(meta.get("_billing_state")),
        "postal_code": blank_to_none(meta.get("_billing_postcode")),
        "country": blank_to_none(meta.get("_billing_country")) or "US",
    }


def normalize_order(row: LegacyRow, lines: Sequence[OrderLineRecord] = ()) -> OrderRecord:
    meta = row.meta
    status, payment_status = map_order_status(row.fields.get("post_status"))
    name_parts = [part.strip() for part in (meta.get("_billing_first_name"), meta.get("_billing_last_name")) if part and part.strip()]
    total = to_float(meta.get("_order_total"), 0.0) or 0.0
    return OrderRecord(
        legacy_id=row.id,
        order_number=f"WC-{row.id}",
        customer_legacy_id=to_int(meta.get("_customer_user")) or None,
        billing_email=blank_to_none(meta.get("_billing_email")),
        billing_name=" ".join(name_parts) or None,
        billing_phone=blank_to_none(meta.get("_billing_phone")),
        billing_address=_billing_address(meta),
        subtotal=to_float(meta.get("_order_subtotal"), total) or 0.0,
        discount=to_float(meta.get("_cart_discount"), 0.0) or 0.0,
        total=total,
        currency=blank_to_none(meta.get("_order_currency")) or "USD",
        status=status,
        payment_status=payment_status,
        payment_method=blank_to_none(meta.get("_payment_method")),
        transaction_id=blank_to_none(meta.get("_transaction_id")),
        completed_at=format_wp_date(meta.get("_date_completed")),
        created_at=format_wp_date(row.fields.get("post_date")) or _now_iso(),
        lines=tuple(lines),
    )


def normalize_ticket(row: LegacyRow) -> TicketRecord:
    f = row.fields
    return TicketRecord(
        legacy_id=row.id,
        ticket_code=blank_to_none(f.get("ticket_code")) or f"WP-TICKET-{row.id}",
        ticket_type_legacy_id=to_int(f.get("ticket_type_id")) or None,
        event_legacy_id=to_int(f.get("event_id")) or None,
        user_legacy_id=to_int(f.get("user_id")) or None,
        order_legacy_id=to_int(f.get("order_id")) or None,
        order_item_legacy_id=to_int(f.get("order_item_id")) or None,
        attendee_name=blank_to_none(f.get("attendee_name")),
        attendee_email=blank_to_none(f.get("attendee_email")),
        status=map_ticket_status(f.get("status")),
        created_at=format_wp_date(f.get("created_at")) or _now_iso(),
    )


def normalize_attendance(row: LegacyRow) -> AttendanceRecord:
    f = row.fields
    return AttendanceRecord(
        legacy_id=row.id,
        ticket_legacy_id=to_int(f.get("ticket_id")) or None,
        event_legacy_id=to_int(f.get("event_id")) or None,
        user_legacy_id=to_int(f.get("user_id")) or None,
        checked_in_at=format_wp_date(f.get("checked_in_at")) or _now_iso(),
        checked_in_by_legacy_id=to_int(f.get("checked_in_by")) or None,
        check_in_method=map_check_in_method(f.get("check_in_method")),
        notes=blank_to_none(f.get("notes")),
    )


# --- credits, certificates, waitlists -------------------------------------------------------


def normalize_credit_entry(row: LegacyRow) -> CreditEntryRecord:
    f = row.fields
    return CreditEntryRecord(
        legacy_id=row.id,
        user_legacy_id=to_int(f.get("user_id")) or None,
        event_legacy_id=to_int(f.get("event_id")) or None,
        credits=to_float(f.get("credits"), 0.0) or 0.0,
        source=map_credit_source(f.get("source")),
        transaction_type=map_transaction_type(f.get("transaction_type")),
        notes=blank_to_none(f.get("notes")),
        # Part of the ledger key; stays empty rather than taking the run time.
        awarded_at=format_wp_date(f.get("awarded_at")),
    )


def certificate_code(year: int, *, length: int = 6) -> str:
    """Return a `CERT-<year>-XXXXXX` code with an upper-case alphanumeric suffix."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
    return f"CERT-{year}-{suffix}"


def normalize_certificate(row: LegacyRow, *, attendee_name: str | None) -> CertificateRecord:
    f = row.fields
    generated_at = format_wp_date(f.get("generated_at"))
    year = int(generated_at[:4]) if generated_at else datetime.now(timezone.utc).year
    return CertificateRecord(
        legacy_id=row.id,
        ticket_legacy_id=to_int(f.get("ticket_id")) or None,
        user_legacy_id=to_int(f.get("user_id")) or None,
        event_legacy_id=to_int(f.get("event_id")) or None,
        certificate_code=certificate_code(year),
        attendee_name=blank_to_none(attendee_name) or DEFAULT_ATTENDEE_NAME,
        pdf_url=blank_to_none(f.get("certificate_url")),
        generated_at=generated_at,
        sent_at=format_wp_date(f.get("certificate_sent_at")),
    )


def normalize_waitlist_entry(row: LegacyRow) -> WaitlistRecord:
    f = row.fields
    return WaitlistRecord(
        legacy_id=row.id,
        ticket_type_legacy_id=to_int(f.get("ticket_type_id")) or None,
        event_legacy_id=to_int(f.get("event_id")) or None,
        user_legacy_id=to_int(f.get("user_id")) or None,
        email=_text(f.get("email")).strip().lower(),
        first_name=blank_to_none(f.get("first_name")),
        last_name=blank_to_none(f.get("last_name")),
        phone=blank_to_none(f.get("phone")),
        position=to_int(f.get("position")),
        status=map_waitlist_status(f.get("status")),
        notified_at=format_wp_date(f.get("notified_at")),
        expires_at=format_wp_date(f.get("expires_at")),
        created_at=format_wp_date(f.get("created_at")) or _now_iso(),
    )


def normalize_seminar_waitlist_entry(row: LegacyRow) -> SeminarWaitlistRecord:
    f = row.fields
    return SeminarWaitlistRecord(
        legacy_id=row.id,
        seminar_legacy_id=to_int(f.get("seminar_id")) or None,
        user_legacy_id=to_int(f.get("user_id")) or None,
        email=_text(f.get("email")).strip().lower(),
        first_name=blank_to_none(f.get("first_name")),
        last_name=blank_to_none(f.get("last_name")),
        phone=blank_to_none(f.get("phone")),
        position=to_int(f.get("position")),
        status=map_waitlist_status(f.get("status"), seminar=True),
        notified_at=format_wp_date(f.get("notified_at")),
        expires_at=format_wp_date(f.get("expires_at")),
        notes=blank_to_none(f.get("notes")),
        created_at=format_wp_date(f.get("created_at")) or _now_iso(),
    )
