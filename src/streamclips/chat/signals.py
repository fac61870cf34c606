"""Bucket raw chat events into fixed-width windows with per-window statistics.

Each bucket records message volume, the set of speakers, summed lexicon
sentiment and token frequencies (emotes included). The VOD duration is
authoritative: messages that land past the last bucket are dropped, and an
empty log still produces the full run of zeroed buckets.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .lexicon import DEFAULT_LEXICON, ChatLexicon, tokenize

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatEvent:
    timestamp_ms: int
    user_id: str
    text: str
    # Platform-supplied emote names (e.g. from IRC tags); counted like inline emotes.
    emotes: tuple[str, ...] = ()


@dataclass
class TimeBucket:
    index: int
    start_ms: int
    end_ms: int
    message_count: int = 0
    users: Set[str] = field(default_factory=set)
    sentiment_sum: float = 0.0
    keyword_counts: Dict[str, int] = field(default_factory=dict)
    emote_token_count: int = 0
    emote_message_count: int = 0
    emote_category_counts: Counter = field(default_factory=Counter)

    @property
    def unique_users(self) -> int:
        return len(self.users)

    @property
    def sentiment(self) -> float:
        if self.message_count == 0:
            return 0.0
        return self.sentiment_sum / self.message_count

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def is_empty(self) -> bool:
        return self.message_count == 0


def bucket_count(total_duration_ms: int, bucket_width_ms: int) -> int:
    if bucket_width_ms <= 0:
        raise ValueError("bucket_width_ms must be > 0")
    if total_duration_ms < 0:
        raise ValueError("total_duration_ms must be >= 0")
    return int(math.ceil(total_duration_ms / bucket_width_ms))


def _add_event(bucket: TimeBucket, event: ChatEvent, lexicon: ChatLexicon) -> None:
    tokens = tokenize(event.text)
    tokens.extend(tok for tok in tokenize(" ".join(event.emotes)) if lexicon.is_emote(tok))

    bucket.message_count += 1
    bucket.users.add(event.user_id)
    bucket.sentiment_sum += lexicon.sentiment(tokens)

    emote_hits = 0
    for tok in tokens:
        bucket.keyword_counts[tok] = bucket.keyword_counts.get(tok, 0) + 1
        if lexicon.is_emote(tok):
            emote_hits += 1
            category = lexicon.category(tok)
            if category:
                bucket.emote_category_counts[category] += 1
    if emote_hits:
        bucket.emote_token_count += emote_hits
        bucket.emote_message_count += 1


def bucketize(
    events: Iterable[ChatEvent],
    total_duration_ms: int,
    bucket_width_ms: int,
    *,
    lexicon: Optional[ChatLexicon] = None,
) -> List[TimeBucket]:
    """Assign chat events to ceil(duration / width) buckets.

    Events need not arrive in order; they are stably sorted by timestamp so
    first-seen token order is reproducible.
    """
    n = bucket_count(total_duration_ms, bucket_width_ms)
    lexicon = lexicon or DEFAULT_LEXICON

    buckets = [
        TimeBucket(
            index=i,
            start_ms=i * bucket_width_ms,
            end_ms=min((i + 1) * bucket_width_ms, total_duration_ms),
        )
        for i in range(n)
    ]

    dropped = 0
    ordered: Sequence[ChatEvent] = sorted(events, key=lambda e: e.timestamp_ms)
    for event in ordered:
        if event.timestamp_ms < 0:
            dropped += 1
            continue
        idx = event.timestamp_ms // bucket_width_ms
        if idx >= n:
            dropped += 1
            continue
        _add_event(buckets[idx], event, lexicon)

    if dropped:
        log.debug("bucketize: dropped %d of %d events outside [0, %d ms)", dropped, len(ordered), total_duration_ms)
    return buckets
