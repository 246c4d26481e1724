from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from opentelemetry import trace

from ingestor.schemas.candidates import NormalizedRecord, RawCandidate, RunSummary
from ingestor.services.dedupe import DedupState, duplicate_reason, register
from ingestor.services.extractor import Extractor
from ingestor.services.moderation import ModerationContext, moderate
from ingestor.services.persistence import PersistenceError, PersistenceGateway
from ingestor.services.relative_time import normalize_relative_time

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class CandidateOutcome:
    accepted: bool
    reason: str | None = None
    record: NormalizedRecord | None = None


def new_batch_id(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionCoordinator:
    """Runs the allow-list, source, moderation, dedup and persistence steps for every query."""

    def __init__(
        self,
        *,
        extractor: Extractor,
        gateway: PersistenceGateway,
        moderation: ModerationContext,
        dedup: DedupState,
        allow_list: frozenset[str] | None = None,
        query_delay_seconds: float = 0.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.extractor = extractor
        self.gateway = gateway
        self.moderation = moderation
        self.dedup = dedup
        self.allow_list = allow_list
        self.query_delay_seconds = max(0.0, query_delay_seconds)
        self._clock = clock
        self._sleep = sleep

    async def run(self, queries: Sequence[str]) -> RunSummary:
        started_at = self._clock()
        summary = RunSummary(batch_id=new_batch_id(started_at), started_at=started_at)
        with tracer.start_as_current_span("ingest.run") as span:
            span.set_attribute("ingest.batch_id", summary.batch_id)
            span.set_attribute("ingest.query_count", len(queries))
            for position, query in enumerate(queries):
                if position and self.query_delay_seconds:
                    await self._sleep(self.query_delay_seconds)
                await self._run_query(query, summary)
            span.set_attribute("ingest.accepted", summary.accepted)
            span.set_attribute("ingest.discarded", summary.discarded)

        summary.finished_at = self._clock()
        logger.info(
            "ingest run finished batch_id=%s scraped=%s accepted=%s discarded=%s auto_banned=%s failed=%s",
            summary.batch_id,
            summary.scraped,
            summary.accepted,
            summary.discarded,
            summary.auto_banned,
            summary.failed,
        )
        return summary

    async def _run_query(self, query: str, summary: RunSummary) -> None:
        with tracer.start_as_current_span("ingest.query") as span:
            span.set_attribute("ingest.query", query)
            try:
                candidates = await self.extractor.fetch_candidates(query)
            except Exception:
                logger.exception("extraction failed query=%r; continuing with next query", query)
                return

            summary.scraped += len(candidates)
            span.set_attribute("ingest.candidates", len(candidates))
            logger.info("fetched candidates query=%r count=%s", query, len(candidates))

            for position, candidate in enumerate(candidates):
                try:
                    await self.process_candidate(candidate, query=query, summary=summary)
                except Exception:
                    remaining = len(candidates) - position
                    logger.exception(
                        "query aborted query=%r candidate_id=%s remaining=%s",
                        query,
                        candidate.id,
                        remaining,
                    )
                    for _ in range(remaining):
                        summary.discard("aborted")
                    return

    async def process_candidate(
        self,
        candidate: RawCandidate,
        *,
        query: str | None,
        summary: RunSummary,
    ) -> CandidateOutcome:
        if not candidate.id or not candidate.text:
            return self._discard(candidate, "malformed", summary)
        if self.allow_list is not None and candidate.author_id not in self.allow_list:
            return self._discard(candidate, "not-allow-listed", summary)
        # nothing downstream could cite
        if not candidate.has_source():
            return self._discard(candidate, "no-source", summary)

        decision = await moderate(candidate, self.moderation, self.gateway, now=self._clock())
        if not decision.passed:
            if decision.banned:
                summary.auto_banned += 1
            return self._discard(candidate, decision.reason or "moderated", summary)

        duplicate = duplicate_reason(candidate, self.dedup)
        if duplicate is not None:
            return self._discard(candidate, duplicate, summary)
        register(candidate, self.dedup)

        record = NormalizedRecord(
            **candidate.model_dump(),
            posted_at=normalize_relative_time(candidate.raw_time_text, candidate.captured_at),
            query=query,
            batch_id=summary.batch_id,
        )
        try:
            result = await self.gateway.put_if_absent(record)
        except PersistenceError as exc:
            logger.error("dropping post after store failure key=%s error=%s", exc.key, exc.__cause__)
            summary.failed += 1
            return self._discard(candidate, "persistence-failed", summary)
        if not result.inserted:
            return self._discard(candidate, "already-stored", summary)

        summary.accepted += 1
        return CandidateOutcome(accepted=True, record=record)

    @staticmethod
    def _discard(candidate: RawCandidate, reason: str, summary: RunSummary) -> CandidateOutcome:
        summary.discard(reason)
        logger.debug("discarded candidate_id=%s author_id=%s reason=%s", candidate.id, candidate.author_id, reason)
        return CandidateOutcome(accepted=False, reason=reason)
