"""Stage `orders`: WooCommerce orders with their line items, tickets and attendance.

Intent:
    Orders are written only once every product they reference (ticket type,
    event, seminar) has a mapping; an order that cannot be linked completely
    is skipped together with its lines. Guest orders carry no user.

Behavior:
    Line items are written for every order that exists in the destination,
    including orders found by natural key on a re-run, so an interrupted run
    does not leave an order without its lines.
"""
from __future__ import annotations

import logging

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.normalize import (
    DEFAULT_ATTENDEE_NAME,
    normalize_attendance,
    normalize_order,
    normalize_order_line,
    normalize_ticket,
)
from gps_migration.pipeline.records import AttendanceRecord, OrderLineRecord, OrderRecord, TicketRecord
from gps_migration.pipeline.results import MigrationResult


logger = logging.getLogger("gps_migration.pipeline.stages.orders")


def load_orders(ctx: StageContext) -> list[OrderRecord]:
    rows = ctx.source.fetch_orders(ctx.since)
    items = ctx.source.fetch_order_items([row.id for row in rows])
    return [
        normalize_order(row, [normalize_order_line(item) for item in items.get(row.id, [])])
        for row in rows
    ]


def _line_refs(line: OrderLineRecord) -> dict[str, tuple[EntityType, int | None]]:
    refs: dict[str, tuple[EntityType, int | None]] = {}
    if line.ticket_type_legacy_id:
        refs["ticket_type_id"] = (EntityType.TICKET_TYPE, line.ticket_type_legacy_id)
    if line.event_legacy_id:
        refs["event_id"] = (EntityType.EVENT, line.event_legacy_id)
    if line.seminar_legacy_id:
        refs["seminar_id"] = (EntityType.SEMINAR, line.seminar_legacy_id)
    return refs


def _order_refs(order: OrderRecord) -> dict[str, tuple[EntityType, int | None]]:
    required: dict[str, tuple[EntityType, int | None]] = {}
    if order.customer_legacy_id:
        required["user_id"] = (EntityType.USER, order.customer_legacy_id)
    for line in order.lines:
        for name, ref in _line_refs(line).items():
            required[f"{name}:{line.legacy_id}"] = ref
    return required


def _write_lines(
    ctx: StageContext,
    order: OrderRecord,
    order_id: str,
    result: MigrationResult,
    item_ids: dict[int, str],
) -> None:
    seen: dict[tuple, int] = {}
    for line in order.lines:
        refs = {name: ctx.optional(entity, legacy_id) for name, (entity, legacy_id) in _line_refs(line).items()}
        # Lines sharing product refs within one order are distinct rows.
        same = (refs.get("event_id"), refs.get("seminar_id"), refs.get("ticket_type_id"), line.item_type)
        occurrence = seen.get(same, 0)
        seen[same] = occurrence + 1
        values = {
            "order_id": order_id,
            "ticket_type_id": refs.get("ticket_type_id"),
            "event_id": refs.get("event_id"),
            "seminar_id": refs.get("seminar_id"),
            "item_type": line.item_type,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "total": line.total,
        }
        outcome = ctx.apply(
            result,
            line.legacy_id,
            lambda: ctx.writer().write("order_items", values, occurrence=occurrence),
        )
        if outcome is not None:
            item_ids[line.legacy_id] = outcome.id


def migrate_orders(
    ctx: StageContext,
    orders: list[OrderRecord],
) -> tuple[MigrationResult, MigrationResult, dict[int, str]]:
    result = MigrationResult(entity="orders", total=len(orders))
    line_result = MigrationResult(entity="order_items", total=sum(len(order.lines) for order in orders))
    item_ids: dict[int, str] = {}
    for idx, order in enumerate(orders, start=1):
        ctx.progress("orders", idx, len(orders))
        refs = ctx.resolve(result, order.legacy_id, _order_refs(order))
        if refs is None:
            for _ in order.lines:
                line_result.record_skipped()
            continue
        values = {
            "order_number": order.order_number,
            "user_id": refs.get("user_id"),
            "billing_email": order.billing_email,
            "billing_name": order.billing_name,
            "billing_phone": order.billing_phone,
            "billing_address": order.billing_address,
            "subtotal": order.subtotal,
            "discount": order.discount,
            "total": order.total,
            "currency": order.currency,
            "status": order.status,
            "payment_status": order.payment_status,
            "completed_at": order.completed_at,
            "created_at": order.created_at,
        }
        outcome = ctx.apply(result, order.legacy_id, lambda: ctx.writer().write("orders", values))
        if outcome is None:
            for line in order.lines:
                line_result.record_failed(line.legacy_id, f"order {order.legacy_id} was not written")
            continue
        ctx.mappings.put(EntityType.ORDER, order.legacy_id, outcome.id)
        _write_lines(ctx, order, outcome.id, line_result, item_ids)
    return result.finish(), line_result.finish(), item_ids


def migrate_tickets(ctx: StageContext, tickets: list[TicketRecord], item_ids: dict[int, str]) -> MigrationResult:
    result = MigrationResult(entity="tickets", total=len(tickets))
    for idx, ticket in enumerate(tickets, start=1):
        ctx.progress("tickets", idx, len(tickets))
        refs = ctx.resolve(
            result,
            ticket.legacy_id,
            {
                "ticket_type_id": (EntityType.TICKET_TYPE, ticket.ticket_type_legacy_id),
                "event_id": (EntityType.EVENT, ticket.event_legacy_id),
                "order_id": (EntityType.ORDER, ticket.order_legacy_id),
            },
        )
        if refs is None:
            continue
        values = {
            "ticket_code": ticket.ticket_code,
            **refs,
            "order_item_id": item_ids.get(ticket.order_item_legacy_id) if ticket.order_item_legacy_id else None,
            "user_id": ctx.optional(EntityType.USER, ticket.user_legacy_id),
            "attendee_name": ticket.attendee_name or DEFAULT_ATTENDEE_NAME,
            "attendee_email": ticket.attendee_email,
            "qr_code_data": {
                "ticket_code": ticket.ticket_code,
                "event_id": refs["event_id"],
                "migrated_from_wp": True,
            },
            "status": ticket.status,
            "created_at": ticket.created_at,
        }
        outcome = ctx.apply(result, ticket.legacy_id, lambda: ctx.writer().write("tickets", values))
        if outcome is not None:
            ctx.mappings.put(EntityType.TICKET, ticket.legacy_id, outcome.id)
    return result.finish()


def migrate_attendance(ctx: StageContext, attendance: list[AttendanceRecord]) -> MigrationResult:
    result = MigrationResult(entity="attendance", total=len(attendance))
    for idx, record in enumerate(attendance, start=1):
        ctx.progress("attendance", idx, len(attendance))
        refs = ctx.resolve(
            result,
            record.legacy_id,
            {
                "ticket_id": (EntityType.TICKET, record.ticket_legacy_id),
                "event_id": (EntityType.EVENT, record.event_legacy_id),
            },
        )
        if refs is None:
            continue
        values = {
            **refs,
            "user_id": ctx.optional(EntityType.USER, record.user_legacy_id),
            "checked_in_at": record.checked_in_at,
            "check_in_method": record.check_in_method,
            "checked_in_by": ctx.optional(EntityType.USER, record.checked_in_by_legacy_id),
            "notes": record.notes,
        }
        ctx.apply(result, record.legacy_id, lambda: ctx.writer().write("attendance", values))
    return result.finish()


def run(ctx: StageContext) -> list[MigrationResult]:
    orders = load_orders(ctx)
    tickets = [normalize_ticket(row) for row in ctx.source.fetch_tickets()]
    attendance = [normalize_attendance(row) for row in ctx.source.fetch_attendance()]
    if ctx.since:
        logger.info("Orders limited to those created on or after %s", ctx.since)

    if ctx.preview:
        ctx.export("orders", {"orders": orders, "tickets": tickets, "attendance": attendance})
        return preview_results(
            orders=len(orders),
            order_items=sum(len(order.lines) for order in orders),
            tickets=len(tickets),
            attendance=len(attendance),
        )

    order_result, line_result, item_ids = migrate_orders(ctx, orders)
    return [
        order_result,
        line_result,
        migrate_tickets(ctx, tickets, item_ids),
        migrate_attendance(ctx, attendance),
    ]
