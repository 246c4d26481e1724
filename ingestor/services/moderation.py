from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

from ingestor.core.urls import extract_urls
from ingestor.schemas.candidates import BlacklistEntry, ModerationConfig, RawCandidate
from ingestor.services.persistence import PersistenceError, PersistenceGateway

logger = logging.getLogger(__name__)

Decision = Literal["pass", "reject"]

BLACKLISTED = "blacklisted"
BANNED_PHRASE_PREFIX = "banned-phrase:"
BANNED_URL_PREFIX = "banned-url:"


@dataclass(slots=True)
class ModerationContext:
    """Blacklist and moderation lists owned by one ingestion run."""

    config: ModerationConfig
    blacklist: set[str] = field(default_factory=set)


@dataclass(frozen=True, slots=True)
class ModerationDecision:
    decision: Decision
    reason: str | None = None
    auto_ban: bool = False
    # set by `moderate` once a new durable blacklist entry exists
    banned: bool = False

    @property
    def passed(self) -> bool:
        return self.decision == "pass"


PASS = ModerationDecision(decision="pass")


def evaluate_candidate(candidate: RawCandidate, context: ModerationContext) -> ModerationDecision:
    """Decide on `candidate` without touching any state.

    Placeholder authors are never looked up in or added to the blacklist: the
    post itself is still rejected on a rule hit.
    """
    known_author = not candidate.author_synthesized
    if known_author and candidate.author_id in context.blacklist:
        return ModerationDecision(decision="reject", reason=BLACKLISTED)

    for phrase in context.config.banned_phrases:
        if phrase in candidate.text:
            return ModerationDecision(
                decision="reject", reason=f"{BANNED_PHRASE_PREFIX}{phrase}", auto_ban=known_author
            )

    for url in candidate_urls(candidate):
        for fragment in context.config.banned_url_fragments:
            if fragment in url:
                return ModerationDecision(
                    decision="reject", reason=f"{BANNED_URL_PREFIX}{fragment}", auto_ban=known_author
                )

    return PASS


def candidate_urls(candidate: RawCandidate) -> list[str]:
    """URLs subject to the fragment list: body links first, then media and links.

    The permalink is excluded since it always carries the author handle.
    """
    return [*extract_urls(candidate.text), *candidate.media, *candidate.links]


async def ban_author(
    author_id: str,
    reason: str,
    *,
    context: ModerationContext,
    gateway: PersistenceGateway,
    banned_at: datetime,
) -> bool:
    """Blacklist `author_id` durably and for the rest of the run.

    Returns True when a new blacklist entry was written. Re-banning is a no-op.
    """
    entry = BlacklistEntry(author_id=author_id, reason=reason, banned_at=banned_at)
    inserted = False
    try:
        inserted = (await gateway.put_blacklist_entry(entry)).inserted
    except PersistenceError:
        logger.exception("auto-ban write failed author_id=%s; banned for this run only", author_id)
    context.blacklist.add(author_id)
    if inserted:
        logger.info("auto-ban author_id=%s reason=%s", author_id, reason)
    return inserted


async def moderate(
    candidate: RawCandidate,
    context: ModerationContext,
    gateway: PersistenceGateway,
    *,
    now: datetime,
) -> ModerationDecision:
    decision = evaluate_candidate(candidate, context)
    if decision.auto_ban and decision.reason is not None:
        inserted = await ban_author(
            candidate.author_id, decision.reason, context=context, gateway=gateway, banned_at=now
        )
        return replace(decision, banned=inserted)
    return decision
