from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ingestor.schemas.candidates import BlacklistEntry, NormalizedRecord
from ingestor.services.dedupe import DedupState
from ingestor.services.repository import RepositoryError
from ingestor.services.store import RecordStore

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """A store error other than a key collision."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{message} (key={key})")
        self.key = key


@dataclass(frozen=True, slots=True)
class PutResult:
    inserted: bool


@dataclass(slots=True)
class RetentionResult:
    expired: int
    trimmed: int


class PersistenceGateway:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def put_if_absent(self, record: NormalizedRecord) -> PutResult:
        try:
            inserted = await self.store.insert_record(record)
        except RepositoryError as exc:
            raise PersistenceError(record.id, "post write failed") from exc
        return PutResult(inserted=inserted)

    async def put_blacklist_entry(self, entry: BlacklistEntry) -> PutResult:
        try:
            inserted = await self.store.insert_blacklist_entry(entry)
        except RepositoryError as exc:
            raise PersistenceError(entry.author_id, "blacklist write failed") from exc
        return PutResult(inserted=inserted)

    async def load_moderation_blacklist(self) -> set[str]:
        """Startup read; a failure here is fatal for the run."""
        return await self.store.list_blacklisted_authors()

    async def load_dedup_state(self) -> DedupState:
        ids, texts = await self.store.load_dedup_seed()
        return DedupState.seeded(ids, texts)

    async def apply_retention(self, *, now: datetime, max_records: int) -> RetentionResult | None:
        try:
            expired = await self.store.purge_expired(now)
            trimmed = await self.store.trim_records(max_records) if max_records > 0 else 0
        except RepositoryError:
            logger.exception("retention pass failed; stored posts left untouched")
            return None
        if expired or trimmed:
            logger.info("retention pass expired=%s trimmed=%s", expired, trimmed)
        return RetentionResult(expired=expired, trimmed=trimmed)
