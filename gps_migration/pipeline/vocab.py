"""Legacy → destination vocabulary remaps.

Each function is total: input is compared case-insensitively after trimming,
and anything unknown falls back to a documented default instead of raising.
"""
from __future__ import annotations

from typing import Any, Mapping


def _key(raw: Any) -> str:
    return str(raw or "").strip().lower()


def _remap(table: Mapping[str, str], raw: Any, default: str) -> str:
    return table.get(_key(raw), default)


_ORDER_STATUS = {
    "completed": ("completed", "paid"),
    "processing": ("completed", "paid"),
    "cancelled": ("cancelled", "unpaid"),
    "refunded": ("refunded", "refunded"),
}

_TRANSACTION_TYPES = {
    "earned": "earned",
    "attendance": "earned",
    "course_attendance": "earned",
    "seminar_session": "earned",
    "manual": "adjustment",
    "adjustment": "adjustment",
    "revoked": "revoked",
}

_CREDIT_SOURCES = {
    "auto": "course_attendance",
    "attendance": "course_attendance",
    "seminar": "seminar_session",
    "adjustment": "adjustment",
}

_CHECK_IN_METHODS = {name: name for name in ("qr_scan", "manual", "search")}
_TICKET_STATUSES = {name: name for name in ("valid", "used", "cancelled")}
_REGISTRATION_STATUSES = {name: name for name in ("active", "completed", "cancelled", "on_hold")}
_WAITLIST_STATUSES = {name: name for name in ("waiting", "notified", "converted", "expired", "removed")}
_SEMINAR_WAITLIST_STATUSES = {name: name for name in ("waiting", "notified", "converted", "expired", "cancelled")}


def map_order_status(raw: Any) -> tuple[str, str]:
    """Return `(status, payment_status)` for a WooCommerce order status."""
    key = _key(raw)
    if key.startswith("wc-"):
        key = key[3:]
    return _ORDER_STATUS.get(key, ("pending", "unpaid"))


def map_transaction_type(raw: Any) -> str:
    return _remap(_TRANSACTION_TYPES, raw, "earned")


def map_credit_source(raw: Any) -> str:
    return _remap(_CREDIT_SOURCES, raw, "manual")


def map_check_in_method(raw: Any) -> str:
    return _remap(_CHECK_IN_METHODS, raw, "manual")


def map_ticket_status(raw: Any) -> str:
    return _remap(_TICKET_STATUSES, raw, "valid")


def map_registration_status(raw: Any) -> str:
    return _remap(_REGISTRATION_STATUSES, raw, "active")


def map_waitlist_status(raw: Any, *, seminar: bool = False) -> str:
    table = _SEMINAR_WAITLIST_STATUSES if seminar else _WAITLIST_STATUSES
    return _remap(table, raw, "waiting")


def map_user_role(capabilities: Any) -> str:
    """Derive the application role from a WordPress capabilities blob.

    The blob is usually a serialized array such as
    `a:1:{s:13:"administrator";b:1;}`; a substring check is enough and keeps
    working when the serialization is truncated.
    """
    text = _key(capabilities)
    if "administrator" in text:
        return "admin"
    if "shop_manager" in text or "editor" in text:
        return "staff"
    return "customer"


def map_event_status(post_status: Any) -> str:
    return "published" if _key(post_status) == "publish" else "draft"


def map_seminar_status(meta_status: Any, post_status: Any) -> str:
    meta = _key(meta_status)
    if meta == "active" or _key(post_status) == "publish":
        return "active"
    if meta == "completed":
        return "completed"
    return "draft"


def map_ticket_type_status(raw: Any) -> str:
    return "active" if _key(raw) == "active" else "inactive"


__all__ = [
    "map_check_in_method",
    "map_credit_source",
    "map_event_status",
    "map_order_status",
    "map_registration_status",
    "map_seminar_status",
    "map_ticket_status",
    "map_ticket_type_status",
    "map_transaction_type",
    "map_user_role",
    "map_waitlist_status",
]
