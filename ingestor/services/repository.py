from __future__ import annotations

import json
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from ingestor.core.config import get_settings
from ingestor.schemas.candidates import BlacklistEntry, NormalizedRecord
from ingestor.services.dedupe import FINGERPRINT_LENGTH


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)

SCHEMA_SQL = """
create table if not exists scraped_posts (
  id text primary key,
  author_id text not null,
  text text not null,
  permalink text,
  raw_time_text text,
  media jsonb not null default '[]'::jsonb,
  links jsonb not null default '[]'::jsonb,
  hashtags jsonb not null default '[]'::jsonb,
  query text,
  batch_id text,
  captured_at timestamptz not null,
  posted_at timestamptz not null,
  processed boolean not null default false,
  expires_at timestamptz,
  created_at timestamptz not null default now()
);

create index if not exists scraped_posts_unprocessed_idx
  on scraped_posts (captured_at) where processed = false;

create table if not exists author_blacklist (
  author_id text primary key,
  reason text not null,
  banned_at timestamptz not null
);
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        retention_days: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.retention_days = max(0, retention_days)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(SCHEMA_SQL)
        except _STORE_ERRORS as exc:
            raise RepositoryError("failed to apply schema") from exc

    async def insert_record(self, record: NormalizedRecord) -> bool:
        """Insert `record` unless its id is already stored; True when a row was written."""
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into scraped_posts (
                  id,
                  author_id,
                  text,
                  permalink,
                  raw_time_text,
                  media,
                  links,
                  hashtags,
                  query,
                  batch_id,
                  captured_at,
                  posted_at,
                  processed,
                  expires_at
                )
                values ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, $8::jsonb, $9, $10, $11, $12, $13, $14)
                on conflict (id) do nothing
                returning id
                """,
                record.id,
                record.author_id,
                record.text,
                record.permalink,
                record.raw_time_text,
                json.dumps(record.media),
                json.dumps(record.links),
                json.dumps(sorted(record.hashtags), ensure_ascii=False),
                record.query,
                record.batch_id,
                record.captured_at,
                record.posted_at,
                record.processed,
                self._expires_at(record.captured_at),
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError(f"insert failed for post id={record.id}") from exc
        return row is not None

    async def insert_blacklist_entry(self, entry: BlacklistEntry) -> bool:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                """
                insert into author_blacklist (author_id, reason, banned_at)
                values ($1, $2, $3)
                on conflict (author_id) do nothing
                returning author_id
                """,
                entry.author_id,
                entry.reason,
                entry.banned_at,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError(f"insert failed for blacklist author_id={entry.author_id}") from exc
        return row is not None

    async def is_blacklisted(self, author_id: str) -> bool:
        pool = await self._get_pool()
        try:
            value = await pool.fetchval(
                "select exists(select 1 from author_blacklist where author_id = $1)",
                author_id,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("blacklist lookup failed") from exc
        return bool(value)

    async def list_blacklisted_authors(self) -> set[str]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch("select author_id from author_blacklist")
        except _STORE_ERRORS as exc:
            raise RepositoryError("blacklist listing failed") from exc
        return {row["author_id"] for row in rows}

    async def load_dedup_seed(self) -> tuple[list[str], list[str]]:
        """Return stored post ids and the fingerprint-length prefix of their text."""
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                "select id, left(text, $1) as prefix from scraped_posts",
                FINGERPRINT_LENGTH,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("dedup seed query failed") from exc
        return [row["id"] for row in rows], [row["prefix"] for row in rows]

    async def purge_expired(self, now: datetime) -> int:
        pool = await self._get_pool()
        try:
            status = await pool.execute(
                "delete from scraped_posts where expires_at is not null and expires_at <= $1",
                now,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("expired post purge failed") from exc
        return _affected_rows(status)

    async def trim_records(self, keep: int) -> int:
        """Delete everything but the `keep` most recently captured posts."""
        pool = await self._get_pool()
        try:
            status = await pool.execute(
                """
                delete from scraped_posts
                where id in (
                  select id
                  from scraped_posts
                  order by captured_at desc, id desc
                  offset $1
                )
                """,
                max(0, keep),
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("post trim failed") from exc
        return _affected_rows(status)

    async def list_unprocessed(self, limit: int = 100) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id,
                  author_id,
                  text,
                  permalink,
                  raw_time_text,
                  media,
                  links,
                  hashtags,
                  query,
                  batch_id,
                  captured_at,
                  posted_at,
                  processed
                from scraped_posts
                where processed = false
                order by captured_at asc, id asc
                limit $1
                """,
                limit,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("unprocessed post listing failed") from exc
        return [self._post_row_to_dict(row) for row in rows]

    async def mark_processed(self, ids: list[str]) -> int:
        if not ids:
            return 0
        pool = await self._get_pool()
        try:
            status = await pool.execute(
                "update scraped_posts set processed = true where id = any($1::text[]) and processed = false",
                ids,
            )
        except _STORE_ERRORS as exc:
            raise RepositoryError("mark processed failed") from exc
        return _affected_rows(status)

    def _expires_at(self, captured_at: datetime) -> datetime | None:
        if self.retention_days <= 0:
            return None
        return captured_at + timedelta(days=self.retention_days)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("SI_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _post_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        data = dict(row)
        for key in ("media", "links", "hashtags"):
            value = data.get(key)
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    value = []
            data[key] = value or []
        return data


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 12"
    try:
        return int(status.rsplit(" ", maxsplit=1)[-1])
    except (AttributeError, ValueError):
        return 0


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        retention_days=settings.retention_days,
    )
