from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ingestor.core.urls import extract_hashtags, is_post_url, parse_permalink
from ingestor.schemas.candidates import CandidatePayload, RawCandidate

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when candidates for a query cannot be fetched."""


class Extractor(Protocol):
    async def fetch_candidates(self, query: str) -> list[RawCandidate]: ...


def candidate_from_payload(
    payload: CandidatePayload,
    *,
    index: int,
    captured_at: datetime,
) -> RawCandidate:
    """Build a RawCandidate, synthesizing id and author when the page omitted them.

    The permalink is the preferred source for both. Otherwise the id is
    derived from the capture instant and result position, and the author
    becomes a per-position placeholder flagged as `author_synthesized`.
    """
    captured = payload.captured_at or captured_at
    if captured.tzinfo is None:
        captured = captured.replace(tzinfo=timezone.utc)
    parts = parse_permalink(payload.permalink)
    text = payload.text.strip()

    post_id = payload.id or (parts.post_id if parts else None)
    if not post_id:
        post_id = f"yahoo_{int(captured.timestamp() * 1000)}_{index}"
    author_id = payload.author_id or (parts.author_id if parts else None)
    author_synthesized = not author_id
    if author_synthesized:
        author_id = f"unknown_{index}"

    return RawCandidate(
        id=post_id,
        author_id=author_id.lstrip("@"),
        text=text,
        permalink=payload.permalink or None,
        raw_time_text=payload.raw_time_text,
        media=list(payload.media),
        links=[link for link in payload.links if link.startswith("http") and not is_post_url(link)],
        hashtags=set(payload.hashtags or extract_hashtags(text)),
        captured_at=captured,
        author_synthesized=author_synthesized,
    )


def candidates_from_payloads(raw_items: Any, *, query: str, captured_at: datetime) -> list[RawCandidate]:
    if isinstance(raw_items, dict):
        raw_items = raw_items.get("candidates")
    if not isinstance(raw_items, list):
        raise ExtractionError(f"unexpected candidate payload for query={query!r}")

    candidates: list[RawCandidate] = []
    for index, item in enumerate(raw_items):
        if isinstance(item, RawCandidate):
            candidates.append(item)
            continue
        try:
            payload = CandidatePayload.model_validate(item)
        except ValidationError:
            logger.warning("skipping unparseable candidate query=%r index=%s", query, index)
            continue
        candidates.append(candidate_from_payload(payload, index=index, captured_at=captured_at))
    return candidates


class HttpExtractor:
    """Client for the browser-automation sidecar that renders search pages."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 45.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def fetch_candidates(self, query: str) -> list[RawCandidate]:
        captured_at = datetime.now(timezone.utc)
        if self._client is not None:
            payload = await self._search(self._client, query)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                payload = await self._search(client, query)
        return candidates_from_payloads(payload, query=query, captured_at=captured_at)

    async def _search(self, client: httpx.AsyncClient, query: str) -> Any:
        try:
            response = await client.get(f"{self.base_url}/search", params={"q": query})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExtractionError(f"search failed for query={query!r}: {exc}") from exc


class StaticExtractor:
    """Replays pre-captured payloads, keyed by query."""

    def __init__(
        self,
        payloads_by_query: Mapping[str, Sequence[Any]],
        *,
        captured_at: datetime | None = None,
    ) -> None:
        self.payloads_by_query = payloads_by_query
        self.captured_at = captured_at

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticExtractor":
        try:
            decoded = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ExtractionError(f"cannot load candidates file {path}") from exc
        if not isinstance(decoded, dict):
            raise ExtractionError(f"{path}: expected an object keyed by query")
        return cls(decoded)

    async def fetch_candidates(self, query: str) -> list[RawCandidate]:
        items = self.payloads_by_query.get(query, [])
        captured_at = self.captured_at or datetime.now(timezone.utc)
        return candidates_from_payloads(list(items), query=query, captured_at=captured_at)
