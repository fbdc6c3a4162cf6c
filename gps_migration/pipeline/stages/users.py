"""Stage `users`: WordPress users → identity provider + transactional `users`."""
from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Sequence

from gps_migration.pipeline.context import StageContext, preview_results
from gps_migration.pipeline.mappings import EntityType
from gps_migration.pipeline.normalize import normalize_user
from gps_migration.pipeline.records import UserRecord
from gps_migration.pipeline.results import MigrationResult
from gps_migration.pipeline.writers.identity import build_clerk_import, mask_email
from gps_migration.pipeline.writers.transactional import WriteResult


logger = logging.getLogger("gps_migration.pipeline.stages.users")

REVIEW_HEADER = ["WP_ID", "Email", "First Name", "Last Name", "Phone", "Role", "Registered At"]


def write_import_bundle(output_dir: Path, users: Sequence[UserRecord]) -> tuple[Path, Path]:
    """Write `clerk-import.json` and `users-review.csv` for offline review/import."""
    output_dir.mkdir(parents=True, exist_ok=True)
    bundle = output_dir / "clerk-import.json"
    bundle.write_text(json.dumps([build_clerk_import(user) for user in users], indent=2), encoding="utf-8")
    review = output_dir / "users-review.csv"
    with review.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(REVIEW_HEADER)
        for user in users:
            writer.writerow([
                user.legacy_id,
                user.email,
                user.first_name or "",
                user.last_name or "",
                user.phone or "",
                user.role,
                user.registered_at or "",
            ])
    logger.info("Clerk import bundle saved to %s (review sheet %s)", bundle, review)
    return bundle, review


def _write_user(ctx: StageContext, user: UserRecord) -> WriteResult:
    store = ctx.writer()
    clerk_id = ctx.identity.ensure_user(user) if ctx.identity else None
    outcome = store.write(
        "users",
        {
            "clerk_id": clerk_id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "phone": user.phone,
            "role": user.role,
            "created_at": user.registered_at,
        },
    )
    store.link(
        "user_migration_map",
        {
            "wp_user_id": user.legacy_id,
            "clerk_user_id": clerk_id,
            "supabase_user_id": outcome.id,
            "email": user.email,
        },
    )
    return outcome


def run(ctx: StageContext) -> list[MigrationResult]:
    users = []
    for row in ctx.source.fetch_users():
        user = normalize_user(row, table_prefix=ctx.table_prefix)
        if not user.email:
            logger.warning("Skip user %s – no email address", row.id)
            continue
        users.append(user)

    if ctx.preview:
        write_import_bundle(ctx.output_dir, users)
        ctx.export("users", {"users": users})
        return preview_results(users=len(users))

    result = MigrationResult(entity="users", total=len(users))
    for idx, user in enumerate(users, start=1):
        ctx.progress("users", idx, len(users))
        outcome = ctx.apply(result, user.legacy_id, lambda: _write_user(ctx, user))
        if outcome is not None:
            ctx.mappings.put(EntityType.USER, user.legacy_id, outcome.id)
            logger.debug("User %s -> %s", mask_email(user.email), outcome.id)
    return [result.finish()]
