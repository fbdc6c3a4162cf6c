"""Stage `seminars`: seminar programs, their sessions, registrations and attendance."""
from __future__ import annotations

import logging

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.normalize import (
    normalize_seminar,
    normalize_seminar_attendance,
    normalize_seminar_registration,
    normalize_seminar_session,
)
from gps_migration.pipeline.records import (
    SeminarAttendanceRecord,
    SeminarRecord,
    SeminarRegistrationRecord,
    SeminarSessionRecord,
)
from gps_migration.pipeline.results import MigrationResult
from gps_migration.pipeline.writers.transactional import WriteResult


logger = logging.getLogger("gps_migration.pipeline.stages.seminars")


def _write_seminar(ctx: StageContext, seminar: SeminarRecord) -> WriteResult:
    strapi_id = None
    if ctx.content is not None:
        strapi_id = ctx.content.write(
            "seminars",
            {
                "title": seminar.title,
                "slug": seminar.slug,
                "description": seminar.description,
                "year": seminar.year,
                "price": seminar.price,
                "capacity": seminar.capacity,
                "totalSessions": seminar.total_sessions,
                "creditsPerSession": seminar.credits_per_session,
            },
        )
    return ctx.writer().write(
        "seminars",
        {
            "strapi_id": strapi_id,
            "title": seminar.title,
            "slug": seminar.slug,
            "year": seminar.year,
            "description": seminar.description,
            "price": seminar.price,
            "capacity": seminar.capacity,
            "total_sessions": seminar.total_sessions,
            "status": seminar.status,
            "created_at": seminar.created_at,
        },
    )


def migrate_seminars(ctx: StageContext, seminars: list[SeminarRecord]) -> MigrationResult:
    result = MigrationResult(entity="seminars", total=len(seminars))
    for idx, seminar in enumerate(seminars, start=1):
        ctx.progress("seminars", idx, len(seminars))
        outcome = ctx.apply(result, seminar.legacy_id, lambda: _write_seminar(ctx, seminar))
        if outcome is not None:
            ctx.mappings.put(EntityType.SEMINAR, seminar.legacy_id, outcome.id)
    return result.finish()


def migrate_sessions(ctx: StageContext, sessions: list[SeminarSessionRecord]) -> MigrationResult:
    result = MigrationResult(entity="seminar_sessions", total=len(sessions))
    for idx, session in enumerate(sessions, start=1):
        ctx.progress("seminar_sessions", idx, len(sessions))
        refs = ctx.resolve(result, session.legacy_id, {"seminar_id": (EntityType.SEMINAR, session.seminar_legacy_id)})
        if refs is None:
            continue
        if not session.session_date:
            logger.warning("Seminar session %s has no date", session.legacy_id)
            result.record_failed(session.legacy_id, "session date missing")
            continue
        values = {
            "seminar_id": refs["seminar_id"],
            "session_number": session.session_number,
            "session_date": session.session_date,
            "session_time_start": session.time_start,
            "session_time_end": session.time_end,
            "topic": session.topic,
            "description": session.description,
            "capacity": session.capacity,
        }
        outcome = ctx.apply(result, session.legacy_id, lambda: ctx.writer().write("seminar_sessions", values))
        if outcome is not None:
            ctx.mappings.put(EntityType.SEMINAR_SESSION, session.legacy_id, outcome.id)
    return result.finish()


def migrate_registrations(ctx: StageContext, registrations: list[SeminarRegistrationRecord]) -> MigrationResult:
    result = MigrationResult(entity="seminar_registrations", total=len(registrations))
    for idx, registration in enumerate(registrations, start=1):
        ctx.progress("seminar_registrations", idx, len(registrations))
        refs = ctx.resolve(
            result,
            registration.legacy_id,
            {
                "seminar_id": (EntityType.SEMINAR, registration.seminar_legacy_id),
                "user_id": (EntityType.USER, registration.user_legacy_id),
            },
        )
        if refs is None:
            continue
        values = {
            "user_id": refs["user_id"],
            "seminar_id": refs["seminar_id"],
            "order_id": ctx.optional(EntityType.ORDER, registration.order_legacy_id),
            "registration_date": (registration.registration_date or "")[:10] or None,
            "start_session_date": registration.start_session_date,
            "sessions_completed": registration.sessions_completed,
            "sessions_remaining": registration.sessions_remaining,
            "makeup_used": registration.makeup_used,
            "status": registration.status,
            "qr_code": registration.qr_code,
            "notes": registration.notes,
            "created_at": registration.created_at,
        }
        outcome = ctx.apply(result, registration.legacy_id, lambda: ctx.writer().write("seminar_registrations", values))
        if outcome is not None:
            ctx.mappings.put(EntityType.SEMINAR_REGISTRATION, registration.legacy_id, outcome.id)
    return result.finish()


def migrate_attendance(ctx: StageContext, attendance: list[SeminarAttendanceRecord]) -> MigrationResult:
    result = MigrationResult(entity="seminar_attendance", total=len(attendance))
    for idx, record in enumerate(attendance, start=1):
        ctx.progress("seminar_attendance", idx, len(attendance))
        refs = ctx.resolve(
            result,
            record.legacy_id,
            {
                "registration_id": (EntityType.SEMINAR_REGISTRATION, record.registration_legacy_id),
                "session_id": (EntityType.SEMINAR_SESSION, record.session_legacy_id),
                "user_id": (EntityType.USER, record.user_legacy_id),
                "seminar_id": (EntityType.SEMINAR, record.seminar_legacy_id),
            },
        )
        if refs is None:
            continue
        values = {
            **refs,
            "is_makeup": record.is_makeup,
            "credits_awarded": record.credits_awarded,
            "checked_in_at": record.checked_in_at,
            "checked_in_by": ctx.optional(EntityType.USER, record.checked_in_by_legacy_id),
            "notes": record.notes,
        }
        ctx.apply(result, record.legacy_id, lambda: ctx.writer().write("seminar_attendance", values))
    return result.finish()


def run(ctx: StageContext) -> list[MigrationResult]:
    seminars = [normalize_seminar(row) for row in ctx.source.fetch_seminars()]
    sessions = [normalize_seminar_session(row) for row in ctx.source.fetch_seminar_sessions()]
    registrations = [normalize_seminar_registration(row) for row in ctx.source.fetch_seminar_registrations()]
    attendance = [normalize_seminar_attendance(row) for row in ctx.source.fetch_seminar_attendance()]

    if ctx.preview:
        ctx.export(
            "seminars",
            {"seminars": seminars, "sessions": sessions, "registrations": registrations, "attendance": attendance},
        )
        return preview_results(
            seminars=len(seminars),
            seminar_sessions=len(sessions),
            seminar_registrations=len(registrations),
            seminar_attendance=len(attendance),
        )

    return [
        migrate_seminars(ctx, seminars),
        migrate_sessions(ctx, sessions),
        migrate_registrations(ctx, registrations),
        migrate_attendance(ctx, attendance),
    ]
