"""Match identity hashing and duplicate detection."""

from __future__ import annotations

import hashlib
import logging
from typing import Optional, Protocol, Set

from .models import MatchRecord

logger = logging.getLogger(__name__)

DUPLICATE = "duplicate"
NEW = "new"


class HashLookup(Protocol):
    def audit_hash_exists(self, match_hash: str) -> bool: ...


def compute_match_hash(record: MatchRecord) -> str:
    """MD5 over winner/loser names, weight class, result type and match date."""
    d = record.event_date.isoformat() if record.event_date else "unknown"
    key = "|".join([
        record.winner.first_name,
        record.winner.last_name,
        record.loser.first_name,
        record.loser.last_name,
        record.weight_class,
        record.result.type,
        d,
    ])
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class EventDedupCache:
    """Hashes reserved while processing a single event. Cleared at each event start."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def clear(self) -> None:
        self._seen.clear()

    def add(self, match_hash: str) -> None:
        self._seen.add(match_hash)

    def __contains__(self, match_hash: object) -> bool:
        return match_hash in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def check_and_reserve(store: Optional[HashLookup], match_hash: str, cache: EventDedupCache) -> str:
    """Return 'duplicate' if the hash was seen in this event or is already audited, else reserve it."""
    if match_hash in cache:
        logger.debug("[dedup] %s seen earlier in this event", match_hash)
        return DUPLICATE
    if store is not None and store.audit_hash_exists(match_hash):
        logger.debug("[dedup] %s already has audit rows", match_hash)
        return DUPLICATE
    cache.add(match_hash)
    return NEW
