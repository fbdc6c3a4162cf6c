"""Canonical records produced by the normalizers.

One frozen dataclass per entity type. Foreign references are still legacy
ids (`*_legacy_id`); the stages translate them through the mapping table at
write time.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from typing import Any


@dataclass(frozen=True)
class LegacyRow:
    """A legacy row plus its attribute side-table values grouped by key."""

    id: int
    fields: dict[str, Any]
    meta: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UserRecord:
    legacy_id: int
    email: str
    username: str
    first_name: str | None
    last_name: str | None
    display_name: str | None
    phone: str | None
    role: str
    password_hash: str | None
    registered_at: str | None


@dataclass(frozen=True)
class SpeakerRecord:
    legacy_id: int
    name: str
    slug: str
    title: str
    bio: str
    photo_url: str | None
    social_links: dict[str, str]


@dataclass(frozen=True)
class EventRecord:
    legacy_id: int
    title: str
    slug: str
    description: str
    excerpt: str
    start_date: str | None
    end_date: str | None
    start_time: str | None
    end_time: str | None
    venue: str
    address: str
    city: str
    state: str
    zip: str
    ce_credits: int
    course_description: str | None
    objectives: tuple[str, ...]
    speaker_legacy_ids: tuple[int, ...]
    featured_image_url: str | None
    status: str
    schedule_topics: tuple[dict, ...]
    created_at: str
    updated_at: str

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.state} {self.zip}"

    @property
    def start_datetime(self) -> str | None:
        return _combine(self.start_date, self.start_time)

    @property
    def end_datetime(self) -> str | None:
        return _combine(self.end_date, self.end_time)


def _combine(day: str | None, clock: str | None) -> str | None:
    if not day:
        return None
    if not clock:
        return day
    return f"{day}T{clock[:5]}:00"


@dataclass(frozen=True)
class TicketTypeRecord:
    legacy_id: int
    event_legacy_id: int | None
    name: str
    ticket_type: str
    price: float
    quantity: int | None
    sale_start: str | None
    sale_end: str | None
    wc_product_id: int | None
    status: str
    features: tuple[str, ...]


@dataclass(frozen=True)
class ScheduleTopic:
    name: str
    start_time: str
    end_time: str
    speakers: tuple[str, ...] = ()
    speaker_legacy_ids: tuple[int, ...] = ()
    location: str = ""
    description: str = ""

    def to_json(self) -> dict:
        return {
            "name": self.name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "speakers": list(self.speakers),
            "location": self.location,
            "description": self.description,
        }


@dataclass(frozen=True)
class ScheduleDayRecord:
    event_legacy_id: int
    schedule_date: str
    tab_label: str | None
    display_order: int
    topics: tuple[ScheduleTopic, ...]
    legacy_id: int | None = None


@dataclass(frozen=True)
class SeminarRecord:
    legacy_id: int
    title: str
    slug: str
    description: str
    year: int
    price: float
    capacity: int
    total_sessions: int
    credits_per_session: int
    wc_product_id: int | None
    status: str
    created_at: str


@dataclass(frozen=True)
class SeminarSessionRecord:
    legacy_id: int
    seminar_legacy_id: int
    session_number: int
    session_date: str | None
    time_start: str | None
    time_end: str | None
    topic: str | None
    description: str | None
    capacity: int
    registered_count: int


@dataclass(frozen=True)
class SeminarRegistrationRecord:
    legacy_id: int
    user_legacy_id: int | None
    seminar_legacy_id: int
    order_legacy_id: int | None
    registration_date: str | None
    start_session_date: str | None
    sessions_completed: int
    sessions_remaining: int
    makeup_used: bool
    status: str
    qr_code: str | None
    notes: str | None
    created_at: str


@dataclass(frozen=True)
class SeminarAttendanceRecord:
    legacy_id: int
    registration_legacy_id: int
    session_legacy_id: int
    user_legacy_id: int | None
    seminar_legacy_id: int
    attended: bool
    checked_in_at: str | None
    checked_in_by_legacy_id: int | None
    is_makeup: bool
    credits_awarded: int
    notes: str | None


@dataclass(frozen=True)
class OrderLineRecord:
    legacy_id: int
    order_legacy_id: int
    name: str
    product_id: int | None
    quantity: int
    unit_price: float
    subtotal: float
    total: float
    event_legacy_id: int | None
    seminar_legacy_id: int | None
    ticket_type_legacy_id: int | None
    item_type: str


@dataclass(frozen=True)
class OrderRecord:
    legacy_id: int
    order_number: str
    customer_legacy_id: int | None
    billing_email: str | None
    billing_name: str | None
    billing_phone: str | None
    billing_address: dict | None
    subtotal: float
    discount: float
    total: float
    currency: str
    status: str
    payment_status: str
    payment_method: str | None
    transaction_id: str | None
    completed_at: str | None
    created_at: str
    lines: tuple[OrderLineRecord, ...] = ()


@dataclass(frozen=True)
class TicketRecord:
    legacy_id: int
    ticket_code: str
    ticket_type_legacy_id: int | None
    event_legacy_id: int | None
    user_legacy_id: int | None
    order_legacy_id: int | None
    order_item_legacy_id: int | None
    attendee_name: str | None
    attendee_email: str | None
    status: str
    created_at: str


@dataclass(frozen=True)
class AttendanceRecord:
    legacy_id: int
    ticket_legacy_id: int | None
    event_legacy_id: int | None
    user_legacy_id: int | None
    checked_in_at: str | None
    checked_in_by_legacy_id: int | None
    check_in_method: str
    notes: str | None


@dataclass(frozen=True)
class CreditEntryRecord:
    legacy_id: int
    user_legacy_id: int | None
    event_legacy_id: int | None
    credits: float
    source: str
    transaction_type: str
    notes: str | None
    awarded_at: str | None


@dataclass(frozen=True)
class CertificateRecord:
    legacy_id: int
    ticket_legacy_id: int | None
    user_legacy_id: int | None
    event_legacy_id: int | None
    certificate_code: str
    attendee_name: str
    pdf_url: str | None
    generated_at: str | None
    sent_at: str | None


@dataclass(frozen=True)
class WaitlistRecord:
    legacy_id: int
    ticket_type_legacy_id: int | None
    event_legacy_id: int | None
    user_legacy_id: int | None
    email: str
    first_name: str | None
    last_name: str | None
    phone: str | None
    position: int | None
    status: str
    notified_at: str | None
    expires_at: str | None
    created_at: str


@dataclass(frozen=True)
class SeminarWaitlistRecord:
    legacy_id: int
    seminar_legacy_id: int | None
    user_legacy_id: int | None
    email: str
    first_name: str | None
    last_name: str | None
    phone: str | None
    position: int | None
    status: str
    notified_at: str | None
    expires_at: str | None
    notes: str | None
    created_at: str


def to_export(value: Any) -> Any:
    """Convert records (and containers of records) into JSON-ready structures."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_export(asdict(value))
    if isinstance(value, dict):
        return {key: to_export(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_export(item) for item in value]
    return value
