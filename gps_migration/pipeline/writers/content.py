"""Strapi REST writer for editorial content (speakers, events, seminars)."""
from __future__ import annotations

import logging

import requests

from gps_migration.pipeline.errors import RecordWriteError


logger = logging.getLogger("gps_migration.pipeline.writers.content")


class StrapiClient:
    """Minimal Strapi v4 client (sync, requests-based).

    Records are keyed by `slug`: an entry already present in the collection
    is reused instead of being created twice. Without an API token the client
    is disabled and every write returns `None`.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.enabled = bool(token)
        self.session = session or requests.Session()
        self.timeout = timeout
        if self.enabled:
            self.session.headers.update({
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            })
        else:
            logger.warning("STRAPI_API_TOKEN not set; content repository writes are disabled")

    def find_id(self, collection: str, slug: str) -> int | None:
        resp = self.session.get(
            f"{self.base_url}/api/{collection}",
            params={"filters[slug][$eq]": slug},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json().get("data") or []
        if not data:
            return None
        return int(data[0]["id"])

    def create(self, collection: str, data: dict) -> int:
        resp = self.session.post(
            f"{self.base_url}/api/{collection}",
            json={"data": data},
            timeout=self.timeout,
        )
        if 400 <= resp.status_code < 500:
            raise RecordWriteError(f"HTTP {resp.status_code}: {resp.text[:300]}", target=f"strapi:{collection}")
        resp.raise_for_status()
        return int(resp.json()["data"]["id"])

    def write(self, collection: str, data: dict) -> int | None:
        """Return the Strapi id for `data` (existing or created), or None when disabled."""
        if not self.enabled:
            return None
        slug = data.get("slug")
        if slug:
            existing = self.find_id(collection, slug)
            if existing is not None:
                logger.debug("Strapi %s %s already present as %s", collection, slug, existing)
                return existing
        new_id = self.create(collection, data)
        logger.debug("Created Strapi %s %s -> %s", collection, slug, new_id)
        return new_id


__all__ = ["StrapiClient"]
