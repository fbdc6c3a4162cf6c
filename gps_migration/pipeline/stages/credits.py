"""Stage `credits`: CE credit ledger, certificates and waitlists.

The ledger is append-only in the destination; an entry is identified by
user, event, transaction type and award time. Event and seminar waitlist
entries are reported together under `waitlist`.
"""
from __future__ import annotations

import logging

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.normalize import (
    normalize_certificate,
    normalize_credit_entry,
    normalize_seminar_waitlist_entry,
    normalize_waitlist_entry,
)
from gps_migration.pipeline.parsing import to_int
from gps_migration.pipeline.records import (
    CertificateRecord,
    CreditEntryRecord,
    SeminarWaitlistRecord,
    WaitlistRecord,
)
from gps_migration.pipeline.results import MigrationResult


logger = logging.getLogger("gps_migration.pipeline.stages.credits")


def load_certificates(ctx: StageContext) -> list[CertificateRecord]:
    rows = ctx.source.fetch_certificates()
    user_ids = {to_int(row.fields.get("user_id")) for row in rows}
    names = ctx.source.fetch_user_display_names(sorted(uid for uid in user_ids if uid))
    return [
        normalize_certificate(row, attendee_name=names.get(to_int(row.fields.get("user_id")) or 0))
        for row in rows
    ]


def migrate_ledger(ctx: StageContext, entries: list[CreditEntryRecord]) -> MigrationResult:
    result = MigrationResult(entity="ce_ledger", total=len(entries))
    for idx, entry in enumerate(entries, start=1):
        ctx.progress("ce_ledger", idx, len(entries))
        refs = ctx.resolve(result, entry.legacy_id, {"user_id": (EntityType.USER, entry.user_legacy_id)})
        if refs is None:
            continue
        values = {
            "user_id": refs["user_id"],
            "event_id": ctx.optional(EntityType.EVENT, entry.event_legacy_id),
            "credits": entry.credits,
            "source": entry.source,
            "transaction_type": entry.transaction_type,
            "notes": entry.notes,
            "awarded_at": entry.awarded_at,
        }
        ctx.apply(result, entry.legacy_id, lambda: ctx.writer().write("ce_ledger", values))
    return result.finish()


def migrate_certificates(ctx: StageContext, certificates: list[CertificateRecord]) -> MigrationResult:
    result = MigrationResult(entity="certificates", total=len(certificates))
    for idx, certificate in enumerate(certificates, start=1):
        ctx.progress("certificates", idx, len(certificates))
        refs = ctx.resolve(
            result,
            certificate.legacy_id,
            {
                "user_id": (EntityType.USER, certificate.user_legacy_id),
                "event_id": (EntityType.EVENT, certificate.event_legacy_id),
            },
        )
        if refs is None:
            continue
        values = {
            "certificate_code": certificate.certificate_code,
            "ticket_id": ctx.optional(EntityType.TICKET, certificate.ticket_legacy_id),
            **refs,
            "attendee_name": certificate.attendee_name,
            "pdf_url": certificate.pdf_url,
            "generated_at": certificate.generated_at,
            "sent_at": certificate.sent_at,
        }
        ctx.apply(result, certificate.legacy_id, lambda: ctx.writer().write("certificates", values))
    return result.finish()


def migrate_waitlists(
    ctx: StageContext,
    entries: list[WaitlistRecord],
    seminar_entries: list[SeminarWaitlistRecord],
) -> MigrationResult:
    result = MigrationResult(entity="waitlist", total=len(entries) + len(seminar_entries))
    for idx, entry in enumerate(entries, start=1):
        ctx.progress("waitlist", idx, len(entries))
        refs = ctx.resolve(result, entry.legacy_id, {"event_id": (EntityType.EVENT, entry.event_legacy_id)})
        if refs is None:
            continue
        values = {
            "ticket_type_id": ctx.optional(EntityType.TICKET_TYPE, entry.ticket_type_legacy_id),
            "event_id": refs["event_id"],
            "user_id": ctx.optional(EntityType.USER, entry.user_legacy_id),
            "email": entry.email,
            "first_name": entry.first_name,
            "last_name": entry.last_name,
            "phone": entry.phone,
            "position": entry.position if entry.position is not None else idx,
            "status": entry.status,
            "notified_at": entry.notified_at,
            "expires_at": entry.expires_at,
            "created_at": entry.created_at,
        }
        ctx.apply(result, entry.legacy_id, lambda: ctx.writer().write("waitlist", values))

    for idx, entry in enumerate(seminar_entries, start=1):
        ctx.progress("seminar_waitlist", idx, len(seminar_entries))
        refs = ctx.resolve(result, entry.legacy_id, {"seminar_id": (EntityType.SEMINAR, entry.seminar_legacy_id)})
        if refs is None:
            continue
        values = {
            "seminar_id": refs["seminar_id"],
            "user_id": ctx.optional(EntityType.USER, entry.user_legacy_id),
            "email": entry.email,
            "first_name": entry.first_name,
            "last_name": entry.last_name,
            "phone": entry.phone,
            "position": entry.position if entry.position is not None else idx,
            "status": entry.status,
            "notified_at": entry.notified_at,
            "expires_at": entry.expires_at,
            "notes": entry.notes,
            "created_at": entry.created_at,
        }
        ctx.apply(result, entry.legacy_id, lambda: ctx.writer().write("seminar_waitlist", values))
    return result.finish()


def run(ctx: StageContext) -> list[MigrationResult]:
    ledger = [normalize_credit_entry(row) for row in ctx.source.fetch_ce_ledger()]
    certificates = load_certificates(ctx)
    waitlist = [normalize_waitlist_entry(row) for row in ctx.source.fetch_waitlist()]
    seminar_waitlist = [normalize_seminar_waitlist_entry(row) for row in ctx.source.fetch_seminar_waitlist()]

    if ctx.preview:
        ctx.export(
            "credits",
            {
                "ceLedger": ledger,
                "certificates": certificates,
                "eventWaitlist": waitlist,
                "seminarWaitlist": seminar_waitlist,
            },
        )
        return preview_results(
            ce_ledger=len(ledger),
            certificates=len(certificates),
            waitlist=len(waitlist) + len(seminar_waitlist),
        )

    return [
        migrate_ledger(ctx, ledger),
        migrate_certificates(ctx, certificates),
        migrate_waitlists(ctx, waitlist, seminar_waitlist),
    ]
