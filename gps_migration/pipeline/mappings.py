"""Persisted legacy → destination identifier mapping table.

Every record the pipeline writes is registered here under its entity type and
legacy id so later stages can translate foreign keys. The table lives in
`<output_dir>/id-mappings.json` as a flat JSON array of
`{"legacyId", "newId", "entityType"}` objects and only ever grows: loading merges
into memory, saving merges with what is already on disk.
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Iterator


logger = logging.getLogger("gps_migration.pipeline.mappings")

MAPPINGS_FILENAME = "id-mappings.json"


class EntityType(str, Enum):
    USER = "user"
    SPEAKER = "speaker"
    EVENT = "event"
    TICKET_TYPE = "ticket_type"
    SEMINAR = "seminar"
    SEMINAR_SESSION = "seminar_session"
    SEMINAR_REGISTRATION = "seminar_registration"
    ORDER = "order"
    TICKET = "ticket"


class IdMappingStore:
    """In-memory mapping table backed by a JSON file."""

    def __init__(self, output_dir: Path | str) -> None:
        self.path = Path(output_dir) / MAPPINGS_FILENAME
        self._entries: dict[tuple[EntityType, int], str] = {}
        self.added_since_load = 0

    # --- lookups ------------------------------------------------------------

    def get(self, entity_type: EntityType, legacy_id: int | None) -> str | None:
        if legacy_id is None:
            return None
        return self._entries.get((EntityType(entity_type), int(legacy_id)))

    def put(self, entity_type: EntityType, legacy_id: int, new_id: str) -> None:
        """Register a mapping; existing mappings are never replaced."""
        key = (EntityType(entity_type), int(legacy_id))
        current = self._entries.get(key)
        if current is not None:
            if current != str(new_id):
                logger.warning(
                    "Mapping conflict for %s %s: keeping %s, ignoring %s",
                    key[0].value,
                    key[1],
                    current,
                    new_id,
                )
            return
        self._entries[key] = str(new_id)
        self.added_since_load += 1

    def count(self, entity_type: EntityType | None = None) -> int:
        if entity_type is None:
            return len(self._entries)
        wanted = EntityType(entity_type)
        return sum(1 for kind, _ in self._entries if kind is wanted)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[dict]:
        for (kind, legacy_id), new_id in sorted(self._entries.items(), key=lambda item: (item[0][0].value, item[0][1])):
            yield {"legacyId": legacy_id, "newId": new_id, "entityType": kind.value}

    # --- persistence --------------------------------------------------------

    def _read_file(self) -> list[dict]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"{self.path} does not contain a JSON array")
        return data

    def load(self) -> int:
        """Merge the persisted table into memory and return the number of entries read.

        A missing file is not an error: the run simply starts without mappings.
        """
        if not self.path.exists():
            logger.warning("No mapping file at %s; starting with an empty mapping table", self.path)
            return 0
        entries = self._read_file()
        for entry in entries:
            key = (EntityType(entry["entityType"]), int(entry["legacyId"]))
            self._entries.setdefault(key, str(entry["newId"]))
        self.added_since_load = 0
        logger.info("Loaded %d id mappings from %s", len(entries), self.path)
        return len(entries)

    def save(self) -> Path:
        """Write the table, keeping entries already on disk that are unknown in memory."""
        for entry in self._read_file():
            key = (EntityType(entry["entityType"]), int(entry["legacyId"]))
            self._entries.setdefault(key, str(entry["newId"]))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(list(self), indent=2), encoding="utf-8")
        tmp.replace(self.path)
        logger.debug("Saved %d id mappings to %s", len(self._entries), self.path)
        return self.path

    def reset(self) -> None:
        """Forget every mapping, on disk and in memory."""
        self._entries.clear()
        self.added_since_load = 0
        if self.path.exists():
            self.path.unlink()
        logger.warning("Mapping table reset (%s removed)", self.path)


__all__ = ["EntityType", "IdMappingStore", "MAPPINGS_FILENAME"]
