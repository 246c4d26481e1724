from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from ingestor.schemas.candidates import RawCandidate

FINGERPRINT_LENGTH = 100

DuplicateReason = Literal["duplicate-id", "duplicate-content"]


@dataclass(slots=True)
class DedupState:
    known_ids: set[str] = field(default_factory=set)
    known_fingerprints: set[str] = field(default_factory=set)

    @classmethod
    def seeded(cls, ids: Iterable[str], texts: Iterable[str]) -> "DedupState":
        return cls(
            known_ids=set(ids),
            known_fingerprints={content_fingerprint(text) for text in texts},
        )


def content_fingerprint(text: str) -> str:
    """First 100 characters of the post body, exact and unnormalized."""
    return text[:FINGERPRINT_LENGTH]


def duplicate_reason(candidate: RawCandidate, state: DedupState) -> DuplicateReason | None:
    if candidate.id in state.known_ids:
        return "duplicate-id"
    if content_fingerprint(candidate.text) in state.known_fingerprints:
        return "duplicate-content"
    return None


def is_duplicate(candidate: RawCandidate, state: DedupState) -> bool:
    return duplicate_reason(candidate, state) is not None


def register(candidate: RawCandidate, state: DedupState) -> None:
    state.known_ids.add(candidate.id)
    state.known_fingerprints.add(content_fingerprint(candidate.text))
