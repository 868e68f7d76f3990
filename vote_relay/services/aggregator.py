from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from vote_relay.schemas.votes import VoteEntry


@dataclass(frozen=True, slots=True)
class VoteDelta:
    target_id: str
    count: int


def sanitize_votes(raw_votes: Any) -> list[VoteEntry]:
    if not isinstance(raw_votes, list):
        return []

    sanitized: list[VoteEntry] = []
    for raw in raw_votes:
        if not isinstance(raw, dict):
            continue
        target_id = raw.get("id")
        count = _as_count(raw.get("count"))
        if isinstance(target_id, str) and target_id and count > 0:
            sanitized.append(VoteEntry(id=target_id, count=count))
    return sanitized


def aggregate_votes(votes: Iterable[VoteEntry]) -> list[VoteDelta]:
    """Sum counts per target, keeping targets in first-seen order."""
    totals: dict[str, int] = {}
    for vote in votes:
        totals[vote.id] = totals.get(vote.id, 0) + vote.count
    return [VoteDelta(target_id=target_id, count=count) for target_id, count in totals.items()]


def _as_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return 0
