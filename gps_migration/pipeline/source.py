"""Read access to the legacy WordPress/WooCommerce MySQL database.

One connection (PyMySQL, dict cursors) is opened lazily and kept for the whole
run; use the source as a context manager so it is released on every exit
path. Fetchers return `LegacyRow`s whose `meta` holds the attribute side-table
values grouped by parent id. Serialized meta values are passed through raw;
decoding happens in the normalizers.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Sequence

import pymysql
import pymysql.cursors

from gps_migration.pipeline.config import SourceSettings
from gps_migration.pipeline.records import LegacyRow


logger = logging.getLogger("gps_migration.pipeline.source")

CONTENT_STATUSES = ("publish", "draft", "pending")
ORDER_STATUSES = ("wc-completed", "wc-processing", "wc-on-hold", "wc-cancelled", "wc-refunded")

USER_META_KEYS = (
    "first_name",
    "last_name",
    "billing_phone",
    "shipping_phone",
    "billing_first_name",
    "billing_last_name",
)
SPEAKER_META_KEYS = (
    "_gps_designation",
    "_gps_company",
    "_gps_email",
    "_gps_phone",
    "_gps_social_twitter",
    "_gps_social_linkedin",
    "_gps_social_facebook",
    "_thumbnail_id",
)
EVENT_META_KEYS = (
    "_gps_start_date",
    "_gps_end_date",
    "_gps_start_time",
    "_gps_end_time",
    "_gps_venue",
    "_gps_address",
    "_gps_city",
    "_gps_state",
    "_gps_zip",
    "_gps_ce_credits",
    "_gps_description",
    "_gps_course_description",
    "_gps_objectives",
    "_gps_speaker_ids",
    "_gps_schedule_topics",
    "_thumbnail_id",
)
TICKET_TYPE_META_KEYS = (
    "_gps_event_id",
    "_gps_ticket_type",
    "_gps_ticket_price",
    "_gps_ticket_quantity",
    "_gps_ticket_start_date",
    "_gps_ticket_end_date",
    "_gps_wc_product_id",
    "_gps_ticket_status",
    "_gps_ticket_features",
)
SCHEDULE_META_KEYS = ("_gps_event_id", "_gps_schedule_date", "_gps_tab_label", "_gps_schedule_topics")
SEMINAR_META_KEYS = (
    "_gps_seminar_year",
    "_gps_seminar_capacity",
    "_gps_seminar_product_id",
    "_gps_seminar_status",
    "_gps_seminar_tuition",
)
ORDER_META_KEYS = (
    "_customer_user",
    "_order_total",
    "_order_subtotal",
    "_cart_discount",
    "_order_currency",
    "_payment_method",
    "_transaction_id",
    "_date_completed",
)
BILLING_FIELDS = (
    "email",
    "first_name",
    "last_name",
    "phone",
    "address_1",
    "address_2",
    "city",
    "state",
    "postcode",
    "country",
)
ORDER_ITEM_META_KEYS = (
    "_product_id",
    "_qty",
    "_line_subtotal",
    "_line_total",
    "_gps_event_id",
    "_gps_seminar_id",
    "_gps_ticket_type_id",
)

SEMINAR_SESSION_COLUMNS = (
    "id, seminar_id, session_number, session_date, session_time_start, "
    "session_time_end, topic, description, capacity, registered_count"
)
SEMINAR_REGISTRATION_COLUMNS = (
    "id, user_id, seminar_id, order_id, registration_date, start_session_date, "
    "sessions_completed, sessions_remaining, makeup_used, status, qr_code, "
    "qr_code_path, qr_scan_count, notes"
)
SEMINAR_ATTENDANCE_COLUMNS = (
    "id, registration_id, session_id, user_id, seminar_id, attended, "
    "checked_in_at, checked_in_by, is_makeup, credits_awarded, notes"
)
TICKET_COLUMNS = (
    "id, ticket_code, ticket_type_id, event_id, user_id, order_id, order_item_id, "
    "attendee_name, attendee_email, qr_code_path, status, created_at"
)
ATTENDANCE_COLUMNS = "id, ticket_id, event_id, user_id, checked_in_at, checked_in_by, check_in_method, notes"
CE_LEDGER_COLUMNS = "id, user_id, event_id, credits, source, transaction_type, notes, awarded_at"
CERTIFICATE_COLUMNS = (
    "id, ticket_id, user_id, event_id, certificate_path, certificate_url, "
    "generated_at, certificate_sent_at"
)
WAITLIST_COLUMNS = (
    "id, ticket_type_id, event_id, user_id, email, first_name, last_name, phone, "
    "position, status, notified_at, expires_at, created_at"
)
SEMINAR_WAITLIST_COLUMNS = (
    "id, seminar_id, user_id, email, first_name, last_name, phone, position, "
    "status, notified_at, expires_at, notes, created_at"
)


class WordPressSource:
    """Legacy database reader scoped to one migration run."""

    def __init__(self, settings: SourceSettings, *, connect: Callable[..., Any] | None = None) -> None:
        self.settings = settings
        self.prefix = settings.table_prefix
        self._connect = connect or pymysql.connect
        self._conn: Any = None

    # --- connection lifecycle -------------------------------------------------------

    def _connection(self) -> Any:
        if self._conn is None:
            logger.info(
                "Connecting to legacy MySQL %s:%s/%s",
                self.settings.host,
                self.settings.port,
                self.settings.database,
            )
            self._conn = self._connect(
                cursorclass=pymysql.cursors.DictCursor,
                **self.settings.to_connection_params(),
            )
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None
                logger.info("Legacy MySQL connection closed")

    def __enter__(self) -> "WordPressSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- query helpers ------------------------------------------------------------------

    def table(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict]:
        with self._connection().cursor() as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def _grouped_meta(
        self,
        table: str,
        parent_column: str,
        parent_ids: Sequence[int],
        keys: Sequence[str],
    ) -> dict[int, dict[str, Any]]:
        if not parent_ids:
            return {}
        rows = self.query(
            f"SELECT {parent_column} AS parent_id, meta_key, meta_value "
            f"FROM {self.table(table)} WHERE {parent_column} IN %s AND meta_key IN %s",
            (tuple(parent_ids), tuple(keys)),
        )
        grouped: dict[int, dict[str, Any]] = {}
        for row in rows:
            grouped.setdefault(int(row["parent_id"]), {})[row["meta_key"]] = row["meta_value"]
        return grouped

    def _attachment_urls(self, meta_by_id: dict[int, dict[str, Any]]) -> dict[int, str]:
        thumbnail_ids = set()
        for meta in meta_by_id.values():
            raw = str(meta.get("_thumbnail_id") or "").strip()
            if raw.isdigit():
                thumbnail_ids.add(int(raw))
        if not thumbnail_ids:
            return {}
        rows = self.query(
            f"SELECT ID, guid FROM {self.table('posts')} WHERE ID IN %s",
            (tuple(sorted(thumbnail_ids)),),
        )
        return {int(row["ID"]): row["guid"] for row in rows}

    def _posts(
        self,
        post_type: str,
        meta_keys: Sequence[str],
        *,
        statuses: Sequence[str] | None = None,
        columns: str = "ID, post_title, post_content, post_excerpt, post_name, post_status, post_date, post_modified",
    ) -> list[LegacyRow]:
        sql = f"SELECT {columns} FROM {self.table('posts')} WHERE post_type = %s"
        params: list[Any] = [post_type]
        if statuses:
            sql += " AND post_status IN %s"
            params.append(tuple(statuses))
        sql += " ORDER BY ID ASC"
        posts = self.query(sql, params)
        ids = [int(post["ID"]) for post in posts]
        meta_by_id = self._grouped_meta("postmeta", "post_id", ids, meta_keys)
        urls = self._attachment_urls(meta_by_id) if "_thumbnail_id" in meta_keys else {}
        rows: list[LegacyRow] = []
        for post in posts:
            meta = meta_by_id.get(int(post["ID"]), {})
            fields = dict(post)
            thumb = str(meta.get("_thumbnail_id") or "").strip()
            if thumb.isdigit() and int(thumb) in urls:
                fields["thumbnail_url"] = urls[int(thumb)]
            rows.append(LegacyRow(id=int(post["ID"]), fields=fields, meta=meta))
        logger.info("Fetched %d %s posts", len(rows), post_type)
        return rows

    def _table_rows(self, table: str, columns: str, order_by: str = "id ASC") -> list[LegacyRow]:
        records = self.query(f"SELECT {columns} FROM {self.table(table)} ORDER BY {order_by}")
        logger.info("Fetched %d rows from %s", len(records), self.table(table))
        return [LegacyRow(id=int(record["id"]), fields=dict(record)) for record in records]

    # --- users & content -----------------------------------------------------------------

    def fetch_users(self) -> list[LegacyRow]:
        users = self.query(
            "SELECT ID, user_login, user_pass, user_nicename, user_email, user_url, "
            f"user_registered, user_status, display_name FROM {self.table('users')} "
            "WHERE user_email != '' ORDER BY ID ASC"
        )
        ids = [int(user["ID"]) for user in users]
        keys = USER_META_KEYS + (f"{self.prefix}capabilities", "wp_capabilities")
        meta_by_id = self._grouped_meta("usermeta", "user_id", ids, keys)
        logger.info("Fetched %d users", len(users))
        return [LegacyRow(id=int(user["ID"]), fields=dict(user), meta=meta_by_id.get(int(user["ID"]), {})) for user in users]

    def fetch_user_display_names(self, user_ids: Iterable[int]) -> dict[int, str]:
        ids = sorted({int(user_id) for user_id in user_ids if user_id})
        if not ids:
            return {}
        rows = self.query(f"SELECT ID, display_name FROM {self.table('users')} WHERE ID IN %s", (tuple(ids),))
        return {int(row["ID"]): row["display_name"] for row in rows if row.get("display_name")}

    def fetch_speakers(self) -> list[LegacyRow]:
        return self._posts("gps_speaker", SPEAKER_META_KEYS, statuses=("publish",))

    def fetch_events(self) -> list[LegacyRow]:
        return self._posts("gps_event", EVENT_META_KEYS, statuses=CONTENT_STATUSES)

    def fetch_ticket_types(self) -> list[LegacyRow]:
        return self._posts("gps_ticket", TICKET_TYPE_META_KEYS)

    def fetch_schedules(self) -> list[LegacyRow]:
        return self._posts(
            "gps_schedule",
            SCHEDULE_META_KEYS,
            statuses=CONTENT_STATUSES,
            columns="ID, post_title, post_status, menu_order",
        )

    def fetch_seminars(self) -> list[LegacyRow]:
        return self._posts("gps_seminar", SEMINAR_META_KEYS, statuses=CONTENT_STATUSES)

    # --- seminar tables -------------------------------------------------------------------

    def fetch_seminar_sessions(self) -> list[LegacyRow]:
        return self._table_rows("gps_seminar_sessions", SEMINAR_SESSION_COLUMNS, "seminar_id ASC, session_number ASC")

    def fetch_seminar_registrations(self) -> list[LegacyRow]:
        return self._table_rows("gps_seminar_registrations", SEMINAR_REGISTRATION_COLUMNS)

    def fetch_seminar_attendance(self) -> list[LegacyRow]:
        return self._table_rows("gps_seminar_attendance", SEMINAR_ATTENDANCE_COLUMNS)

    # --- orders ------------------------------------------------------------------------------

    def fetch_orders(self, since: str | None = None) -> list[LegacyRow]:
        """Return WooCommerce orders, preferring HPOS tables over `shop_order` posts."""
        try:
            rows = self._fetch_hpos_orders(since)
        except pymysql.err.ProgrammingError as exc:
            logger.info("HPOS order tables unavailable (%s); reading shop_order posts", exc)
            rows = self._fetch_post_orders(since)
        logger.info("Fetched %d orders", len(rows))
        return rows

    def _fetch_hpos_orders(self, since: str | None) -> list[LegacyRow]:
        sql = (
            "SELECT id AS ID, status AS post_status, date_created_gmt AS post_date, "
            "date_updated_gmt AS post_modified, customer_id, currency, total_amount "
            f"FROM {self.table('wc_orders')} WHERE status IN %s"
        )
        params: list[Any] = [ORDER_STATUSES]
        if since:
            sql += " AND date_created_gmt >= %s"
            params.append(since)
        orders = self.query(sql + " ORDER BY id ASC", params)
        ids = [int(order["ID"]) for order in orders]
        meta_by_id = self._grouped_meta("wc_orders_meta", "order_id", ids, ORDER_META_KEYS)
        addresses: dict[int, dict] = {}
        if ids:
            for address in self.query(
                f"SELECT order_id, {', '.join(BILLING_FIELDS)} FROM {self.table('wc_order_addresses')} "
                "WHERE order_id IN %s AND address_type = 'billing'",
                (tuple(ids),),
            ):
                addresses[int(address["order_id"])] = address
        rows: list[LegacyRow] = []
        for order in orders:
            order_id = int(order["ID"])
            meta = dict(meta_by_id.get(order_id, {}))
            if order.get("customer_id"):
                meta.setdefault("_customer_user", str(order["customer_id"]))
            if order.get("currency"):
                meta.setdefault("_order_currency", order["currency"])
            if order.get("total_amount") is not None:
                meta.setdefault("_order_total", str(order["total_amount"]))
            for name in BILLING_FIELDS:
                value = addresses.get(order_id, {}).get(name)
                if value not in (None, ""):
                    meta[f"_billing_{name}"] = value
            rows.append(LegacyRow(id=order_id, fields=dict(order), meta=meta))
        return rows

    def _fetch_post_orders(self, since: str | None) -> list[LegacyRow]:
        sql = (
            f"SELECT ID, post_status, post_date, post_modified FROM {self.table('posts')} "
            "WHERE post_type = 'shop_order' AND post_status IN %s"
        )
        params: list[Any] = [ORDER_STATUSES]
        if since:
            sql += " AND post_date >= %s"
            params.append(since)
        orders = self.query(sql + " ORDER BY ID ASC", params)
        ids = [int(order["ID"]) for order in orders]
        keys = ORDER_META_KEYS + tuple(f"_billing_{name}" for name in BILLING_FIELDS)
        meta_by_id = self._grouped_meta("postmeta", "post_id", ids, keys)
        return [LegacyRow(id=int(order["ID"]), fields=dict(order), meta=meta_by_id.get(int(order["ID"]), {})) for order in orders]

    def fetch_order_items(self, order_ids: Sequence[int]) -> dict[int, list[LegacyRow]]:
        """Return `line_item` rows grouped by order id."""
        if not order_ids:
            return {}
        items = self.query(
            "SELECT order_item_id, order_id, order_item_name, order_item_type "
            f"FROM {self.table('woocommerce_order_items')} "
            "WHERE order_id IN %s AND order_item_type = 'line_item' ORDER BY order_item_id ASC",
            (tuple(order_ids),),
        )
        item_ids = [int(item["order_item_id"]) for item in items]
        meta_by_id = self._grouped_meta("woocommerce_order_itemmeta", "order_item_id", item_ids, ORDER_ITEM_META_KEYS)
        grouped: dict[int, list[LegacyRow]] = {}
        for item in items:
            item_id = int(item["order_item_id"])
            row = LegacyRow(id=item_id, fields=dict(item), meta=meta_by_id.get(item_id, {}))
            grouped.setdefault(int(item["order_id"]), []).append(row)
        return grouped

    def fetch_tickets(self) -> list[LegacyRow]:
        return self._table_rows("gps_tickets", TICKET_COLUMNS)

    def fetch_attendance(self) -> list[LegacyRow]:
        return self._table_rows("gps_attendance", ATTENDANCE_COLUMNS)

    # --- credits & waitlists -------------------------------------------------------------------

    def fetch_ce_ledger(self) -> list[LegacyRow]:
        return self._table_rows("gps_ce_ledger", CE_LEDGER_COLUMNS)

    def fetch_certificates(self) -> list[LegacyRow]:
        return self._table_rows("gps_certificates", CERTIFICATE_COLUMNS)

    def fetch_waitlist(self) -> list[LegacyRow]:
        return self._table_rows("gps_waitlist", WAITLIST_COLUMNS)

    def fetch_seminar_waitlist(self) -> list[LegacyRow]:
        return self._table_rows("gps_seminar_waitlist", SEMINAR_WAITLIST_COLUMNS)


__all__ = ["WordPressSource", "ORDER_STATUSES"]
