"""Clerk user provisioning for migrated WordPress accounts.

Also builds the offline bulk-import bundle (`clerk-import.json`) written by
dry runs and `--export-only`, which keeps the phpass password digests so
users can sign in with their WordPress password after the switch. Accounts
created live through the API skip the password requirement instead; those
users go through the password reset flow.
"""
from __future__ import annotations

import logging
from datetime import datetime

import requests

from gps_migration.pipeline.errors import RecordWriteError
from gps_migration.pipeline.records import UserRecord


logger = logging.getLogger("gps_migration.pipeline.writers.identity")


def public_metadata(user: UserRecord) -> dict:
    return {
        "role": user.role,
        "wp_user_id": user.legacy_id,
        "migrated_from_wordpress": True,
    }


def build_clerk_import(user: UserRecord) -> dict:
    """Bulk-import representation of a user (one entry of `clerk-import.json`)."""
    created_ms = None
    if user.registered_at:
        created_ms = int(datetime.fromisoformat(user.registered_at).timestamp() * 1000)
    entry = {
        "external_id": f"wp_{user.legacy_id}",
        "email_addresses": [user.email],
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone_numbers": [user.phone] if user.phone else [],
        "public_metadata": public_metadata(user),
        "created_at": created_ms,
    }
    if user.password_hash:
        entry["password_hasher"] = "phpass"
        entry["password_digest"] = user.password_hash
    return entry


def mask_email(email: str) -> str:
    """Mask email for logs to reduce PII exposure."""
    local, _, domain = (email or "").partition("@")
    if not domain:
        return "***"
    return f"{local[:2]}***@{domain}"


class ClerkClient:
    """Minimal Clerk backend API client (sync, requests-based)."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = "https://api.clerk.com/v1",
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.session.headers.update({
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        })

    def _check(self, resp: requests.Response, email: str) -> None:
        if 400 <= resp.status_code < 500:
            raise RecordWriteError(f"HTTP {resp.status_code} for {mask_email(email)}: {resp.text[:300]}", target="clerk")
        resp.raise_for_status()

    def find_user_id(self, email: str) -> str | None:
        resp = self.session.get(
            f"{self.base_url}/users",
            params={"email_address": email},
            timeout=self.timeout,
        )
        self._check(resp, email)
        data = resp.json()
        if not data:
            return None
        return data[0]["id"]

    def update_metadata(self, user_id: str, metadata: dict, *, email: str = "") -> None:
        resp = self.session.patch(
            f"{self.base_url}/users/{user_id}/metadata",
            json={"public_metadata": metadata},
            timeout=self.timeout,
        )
        self._check(resp, email)

    def create_user(self, payload: dict) -> str:
        email = (payload.get("email_address") or [""])[0]
        resp = self.session.post(f"{self.base_url}/users", json=payload, timeout=self.timeout)
        self._check(resp, email)
        return resp.json()["id"]

    def ensure_user(self, user: UserRecord) -> str:
        """Return the Clerk id for `user`, creating the account when missing."""
        existing = self.find_user_id(user.email)
        if existing:
            self.update_metadata(existing, public_metadata(user), email=user.email)
            logger.info("Clerk user %s already exists (%s); metadata updated", mask_email(user.email), existing)
            return existing
        payload = {
            "email_address": [user.email],
            "external_id": f"wp_{user.legacy_id}",
            "first_name": user.first_name,
            "last_name": user.last_name,
            "public_metadata": public_metadata(user),
            "skip_password_requirement": True,
        }
        user_id = self.create_user(payload)
        logger.info("Created Clerk user %s -> %s", mask_email(user.email), user_id)
        return user_id


__all__ = ["ClerkClient", "build_clerk_import", "mask_email", "public_metadata"]
