from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Protocol

from ingestor.schemas.candidates import BlacklistEntry, NormalizedRecord
from ingestor.services.dedupe import content_fingerprint


class RecordStore(Protocol):
    async def insert_record(self, record: NormalizedRecord) -> bool: ...

    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> bool: ...

    async def is_blacklisted(self, author_id: str) -> bool: ...

    async def list_blacklisted_authors(self) -> set[str]: ...

    async def load_dedup_seed(self) -> tuple[list[str], list[str]]: ...

    async def purge_expired(self, now: datetime) -> int: ...

    async def trim_records(self, keep: int) -> int: ...

    async def list_unprocessed(self, limit: int = 100) -> list[dict[str, Any]]: ...

    async def mark_processed(self, ids: list[str]) -> int: ...

    async def close(self) -> None: ...


class InMemoryStore:
    """Process-local store with the same conditional-insert semantics as Postgres."""

    def __init__(self, retention_days: int = 0) -> None:
        self.retention_days = max(0, retention_days)
        self.records: dict[str, dict[str, Any]] = {}
        self.blacklist: dict[str, BlacklistEntry] = {}

    async def insert_record(self, record: NormalizedRecord) -> bool:
        if record.id in self.records:
            return False
        row = record.model_dump()
        row["expires_at"] = (
            record.captured_at + timedelta(days=self.retention_days) if self.retention_days else None
        )
        self.records[record.id] = row
        return True

    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> bool:
        if entry.author_id in self.blacklist:
            return False
        self.blacklist[entry.author_id] = entry
        return True

    async def is_blacklisted(self, author_id: str) -> bool:
        return author_id in self.blacklist

    async def list_blacklisted_authors(self) -> set[str]:
        return set(self.blacklist)

    async def load_dedup_seed(self) -> tuple[list[str], list[str]]:
        rows = list(self.records.values())
        return [row["id"] for row in rows], [content_fingerprint(row["text"]) for row in rows]

    async def purge_expired(self, now: datetime) -> int:
        expired = [
            key
            for key, row in self.records.items()
            if row["expires_at"] is not None and row["expires_at"] <= now
        ]
        for key in expired:
            del self.records[key]
        return len(expired)

    async def trim_records(self, keep: int) -> int:
        ranked = sorted(
            self.records.values(),
            key=lambda row: (row["captured_at"], row["id"]),
            reverse=True,
        )
        dropped = ranked[max(0, keep) :]
        for row in dropped:
            del self.records[row["id"]]
        return len(dropped)

    async def list_unprocessed(self, limit: int = 100) -> list[dict[str, Any]]:
        rows = [row for row in self.records.values() if not row["processed"]]
        rows.sort(key=lambda row: (row["captured_at"], row["id"]))
        return [dict(row) for row in rows[:limit]]

    async def mark_processed(self, ids: list[str]) -> int:
        updated = 0
        for key in ids:
            row = self.records.get(key)
            if row is not None and not row["processed"]:
                row["processed"] = True
                updated += 1
        return updated

    async def close(self) -> None:
        return None
