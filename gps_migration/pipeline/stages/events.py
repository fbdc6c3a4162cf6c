"""Stage `events`: speakers, events (with speaker links) and ticket types.

Speakers and events are written to Strapi first; the transactional rows keep
the Strapi id in `strapi_id`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.normalize import normalize_event, normalize_speaker, normalize_ticket_type
from gps_migration.pipeline.records import EventRecord, SpeakerRecord, TicketTypeRecord
from gps_migration.pipeline.results import MigrationResult
from gps_migration.pipeline.schedules import SpeakerDirectory
from gps_migration.pipeline.writers.transactional import WriteResult


logger = logging.getLogger("gps_migration.pipeline.stages.events")


def _strapi_id(ctx: StageContext, collection: str, data: dict) -> int | None:
    if ctx.content is None:
        return None
    return ctx.content.write(collection, data)


# --- speakers ---------------------------------------------------------------------------


def _write_speaker(ctx: StageContext, speaker: SpeakerRecord) -> WriteResult:
    strapi_id = _strapi_id(
        ctx,
        "speakers",
        {
            "name": speaker.name,
            "slug": speaker.slug,
            "title": speaker.title,
            "bio": speaker.bio,
            "shortBio": speaker.bio[:200],
            "publishedAt": datetime.now(timezone.utc).isoformat(),
        },
    )
    return ctx.writer().write(
        "speakers",
        {
            "strapi_id": strapi_id,
            "name": speaker.name,
            "slug": speaker.slug,
            "title": speaker.title,
            "bio": speaker.bio,
            "photo_url": speaker.photo_url,
            "social_links": speaker.social_links,
        },
    )


def migrate_speakers(ctx: StageContext, speakers: list[SpeakerRecord]) -> MigrationResult:
    result = MigrationResult(entity="speakers", total=len(speakers))
    for idx, speaker in enumerate(speakers, start=1):
        ctx.progress("speakers", idx, len(speakers))
        outcome = ctx.apply(result, speaker.legacy_id, lambda: _write_speaker(ctx, speaker))
        if outcome is not None:
            ctx.mappings.put(EntityType.SPEAKER, speaker.legacy_id, outcome.id)
    return result.finish()


# --- events -------------------------------------------------------------------------------


def _write_event(ctx: StageContext, event: EventRecord) -> WriteResult:
    strapi_id = _strapi_id(
        ctx,
        "events",
        {
            "title": event.title,
            "slug": event.slug,
            "description": event.description,
            "shortDescription": event.excerpt,
            "courseDescription": event.course_description,
            "startDate": event.start_date,
            "endDate": event.end_date,
            "venue": event.venue,
            "address": event.full_address,
            "ceCredits": event.ce_credits,
            "learningObjectives": list(event.objectives),
            "publishedAt": datetime.now(timezone.utc).isoformat() if event.status == "published" else None,
        },
    )
    store = ctx.writer()
    outcome = store.write(
        "events",
        {
            "strapi_id": strapi_id,
            "title": event.title,
            "slug": event.slug,
            "description": event.description,
            "excerpt": event.excerpt,
            "start_date": event.start_datetime,
            "end_date": event.end_datetime,
            "venue": event.venue,
            "address": event.full_address,
            "ce_credits": event.ce_credits,
            "learning_objectives": list(event.objectives) or None,
            "schedule_topics": list(event.schedule_topics) or None,
            "featured_image_url": event.featured_image_url,
            "status": event.status,
            "created_at": event.created_at,
            "updated_at": event.updated_at,
        },
    )
    for position, speaker_legacy_id in enumerate(event.speaker_legacy_ids):
        speaker_id = ctx.optional(EntityType.SPEAKER, speaker_legacy_id)
        if speaker_id is None:
            logger.warning("Event %s references speaker %s which has not been migrated", event.legacy_id, speaker_legacy_id)
            continue
        store.link("event_speakers", {"event_id": outcome.id, "speaker_id": speaker_id, "display_order": position})
    return outcome


def migrate_events(ctx: StageContext, events: list[EventRecord]) -> MigrationResult:
    result = MigrationResult(entity="events", total=len(events))
    for idx, event in enumerate(events, start=1):
        ctx.progress("events", idx, len(events))
        outcome = ctx.apply(result, event.legacy_id, lambda: _write_event(ctx, event))
        if outcome is not None:
            ctx.mappings.put(EntityType.EVENT, event.legacy_id, outcome.id)
    return result.finish()


# --- ticket types ------------------------------------------------------------------------------


def migrate_ticket_types(ctx: StageContext, ticket_types: list[TicketTypeRecord]) -> MigrationResult:
    result = MigrationResult(entity="ticket_types", total=len(ticket_types))
    for idx, ticket in enumerate(ticket_types, start=1):
        ctx.progress("ticket_types", idx, len(ticket_types))
        refs = ctx.resolve(result, ticket.legacy_id, {"event_id": (EntityType.EVENT, ticket.event_legacy_id)})
        if refs is None:
            continue
        values = {
            "event_id": refs["event_id"],
            "name": ticket.name,
            "ticket_type": ticket.ticket_type,
            "price": ticket.price,
            "quantity": ticket.quantity,
            "sale_start": ticket.sale_start,
            "sale_end": ticket.sale_end,
            "status": ticket.status,
            "features": list(ticket.features) or None,
        }
        outcome = ctx.apply(result, ticket.legacy_id, lambda: ctx.writer().write("ticket_types", values))
        if outcome is not None:
            ctx.mappings.put(EntityType.TICKET_TYPE, ticket.legacy_id, outcome.id)
    return result.finish()


def run(ctx: StageContext) -> list[MigrationResult]:
    speaker_rows = ctx.source.fetch_speakers()
    ctx.remember_speakers(SpeakerDirectory.from_rows(speaker_rows))
    speakers = [normalize_speaker(row) for row in speaker_rows]
    events = [normalize_event(row) for row in ctx.source.fetch_events()]
    ticket_types = [normalize_ticket_type(row) for row in ctx.source.fetch_ticket_types()]

    if ctx.preview:
        ctx.export("events", {"speakers": speakers, "events": events, "ticketTypes": ticket_types})
        return preview_results(speakers=len(speakers), events=len(events), ticket_types=len(ticket_types))

    return [
        migrate_speakers(ctx, speakers),
        migrate_events(ctx, events),
        migrate_ticket_types(ctx, ticket_types),
    ]
