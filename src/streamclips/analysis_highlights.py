"""Chat-driven highlight detection.

Pipeline (per VOD):
  1. bucketize chat into fixed windows (see chat.signals)
  2. baseline = mean message count over non-empty buckets
  3. flag spike candidates: count > max(baseline * spike_multiplier, min_absolute_count),
     plus emote bursts (most messages carry a tracked emote)
  4. merge candidates whose gap is <= merge_gap_ms into clusters
  5. aggregate each cluster into a HighlightMoment and score it

Detection is a pure function of the bucket sequence: the same buckets always
produce the same highlights.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .chat.lexicon import DEFAULT_LEXICON, ChatLexicon
from .chat.signals import ChatEvent, TimeBucket, bucketize
from .utils import clamp

log = logging.getLogger(__name__)


REASON_ACTIVITY_SPIKE = "activity spike"
REASON_EMOTE_SPAM = "emote spam"
REASON_CROWD_REACTION = "crowd reaction"

PATTERN_SPIKE = "spike"
PATTERN_SUSTAINED = "sustained"
PATTERN_GRADUAL = "gradual"


@dataclass(frozen=True)
class HighlightWeights:
    rate: float = 0.5
    emotes: float = 0.3
    users: float = 0.2

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HighlightWeights":
        base = cls()
        return cls(
            rate=float(d.get("rate", base.rate)),
            emotes=float(d.get("emotes", base.emotes)),
            users=float(d.get("users", base.users)),
        )


@dataclass(frozen=True)
class HighlightConfig:
    bucket_ms: int = 5_000
    spike_multiplier: float = 1.25
    min_absolute_count: int = 3
    merge_gap_ms: int = 30_000
    top_n: int = 5
    emote_burst_ratio: float = 0.4
    # peak/baseline ratio that maps to a full rate score
    rate_ratio_cap: float = 3.0
    min_confidence: float = 0.0
    weights: HighlightWeights = field(default_factory=HighlightWeights)

    def __post_init__(self) -> None:
        if self.bucket_ms <= 0:
            raise ValueError("bucket_ms must be > 0")
        if self.merge_gap_ms < 0:
            raise ValueError("merge_gap_ms must be >= 0")
        if self.rate_ratio_cap <= 1.0:
            raise ValueError("rate_ratio_cap must be > 1")
        if self.top_n <= 0:
            raise ValueError("top_n must be > 0")

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "HighlightConfig":
        """Build from a full profile dict (uses the 'chat' and 'highlights' sections)."""
        chat_cfg = profile.get("chat", {}) or {}
        hl = profile.get("highlights", {}) or {}
        base = cls()
        return cls(
            bucket_ms=int(round(float(chat_cfg.get("bucket_seconds", base.bucket_ms / 1000.0)) * 1000)),
            spike_multiplier=float(hl.get("spike_multiplier", base.spike_multiplier)),
            min_absolute_count=int(hl.get("min_absolute_count", base.min_absolute_count)),
            merge_gap_ms=int(round(float(hl.get("merge_gap_seconds", base.merge_gap_ms / 1000.0)) * 1000)),
            top_n=int(hl.get("top_n", base.top_n)),
            emote_burst_ratio=float(hl.get("emote_burst_ratio", base.emote_burst_ratio)),
            rate_ratio_cap=float(hl.get("rate_ratio_cap", base.rate_ratio_cap)),
            min_confidence=float(hl.get("min_confidence", base.min_confidence)),
            weights=HighlightWeights.from_dict(hl.get("weights", {}) or {}),
        )


@dataclass(frozen=True)
class HighlightMoment:
    start_ms: int
    end_ms: int
    confidence: float
    reason: str
    sentiment: float
    message_count: int
    unique_users: int
    peak_rate: float  # messages/second in the busiest bucket
    keywords: Tuple[str, ...] = ()
    emotes: Tuple[str, ...] = ()
    activity_pattern: str = PATTERN_SPIKE
    breakdown: Dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "confidence": self.confidence,
            "reason": self.reason,
            "sentiment": self.sentiment,
            "message_count": self.message_count,
            "unique_users": self.unique_users,
            "peak_rate": self.peak_rate,
            "keywords": list(self.keywords),
            "emotes": list(self.emotes),
            "activity_pattern": self.activity_pattern,
            "breakdown": dict(self.breakdown),
        }


def baseline_rate(buckets: Sequence[TimeBucket]) -> float:
    counts = np.array([b.message_count for b in buckets], dtype=np.float64)
    active = counts[counts > 0]
    if active.size == 0:
        return 0.0
    return float(active.mean())


def find_spike_candidates(
    buckets: Sequence[TimeBucket],
    baseline: float,
    cfg: HighlightConfig,
) -> List[int]:
    """Indices of buckets that exceed the rate threshold or form an emote burst."""
    if not buckets:
        return []
    counts = np.array([b.message_count for b in buckets], dtype=np.float64)
    emote_msgs = np.array([b.emote_message_count for b in buckets], dtype=np.float64)

    threshold = max(baseline * cfg.spike_multiplier, float(cfg.min_absolute_count))
    rate_mask = counts > threshold

    ratio = np.divide(emote_msgs, counts, out=np.zeros_like(counts), where=counts > 0)
    burst_mask = (counts >= cfg.min_absolute_count) & (counts > baseline) & (ratio >= cfg.emote_burst_ratio)

    return [int(i) for i in np.flatnonzero(rate_mask | burst_mask)]


def merge_candidates(
    buckets: Sequence[TimeBucket],
    candidates: Iterable[int],
    merge_gap_ms: int,
) -> List[Tuple[int, int]]:
    """Group candidate bucket indices into (first, last) clusters.

    A candidate joins the open cluster when the silence between the cluster's
    end and the candidate's start is at most merge_gap_ms.
    """
    clusters: List[Tuple[int, int]] = []
    first: Optional[int] = None
    last: Optional[int] = None
    for idx in sorted(candidates):
        if first is None or last is None:
            first = last = idx
            continue
        gap = buckets[idx].start_ms - buckets[last].end_ms
        if gap <= merge_gap_ms:
            last = idx
        else:
            clusters.append((first, last))
            first = last = idx
    if first is not None and last is not None:
        clusters.append((first, last))
    return clusters


def classify_activity_pattern(counts: Sequence[int]) -> str:
    """spike: one third dominates; sustained: flat start vs end; gradual otherwise."""
    arr = np.asarray(counts, dtype=np.float64)
    if arr.size < 3:
        return PATTERN_SPIKE
    thirds = np.array([part.sum() for part in np.array_split(arr, 3)], dtype=np.float64)
    avg = float(thirds.mean())
    if thirds.max() > avg * 2:
        return PATTERN_SPIKE
    if abs(thirds[0] - thirds[-1]) < avg * 0.3:
        return PATTERN_SUSTAINED
    return PATTERN_GRADUAL


def _rank_tokens(span: Sequence[TimeBucket]) -> List[Tuple[str, int]]:
    totals: Dict[str, int] = {}
    for b in span:
        for tok, count in b.keyword_counts.items():
            totals[tok] = totals.get(tok, 0) + count
    # sorted() is stable, so equal counts keep first-seen order
    return sorted(totals.items(), key=lambda kv: -kv[1])


def _pick_reason(components: Dict[str, float]) -> str:
    order = (
        ("rate", REASON_ACTIVITY_SPIKE),
        ("emotes", REASON_EMOTE_SPAM),
        ("users", REASON_CROWD_REACTION),
    )
    best_reason = REASON_ACTIVITY_SPIKE
    best = -1.0
    for key, reason in order:
        if components[key] > best:
            best = components[key]
            best_reason = reason
    return best_reason


def _build_moment(
    span: Sequence[TimeBucket],
    baseline: float,
    cfg: HighlightConfig,
    lexicon: ChatLexicon,
) -> HighlightMoment:
    counts = [b.message_count for b in span]
    message_count = int(sum(counts))
    unique_users = int(sum(b.unique_users for b in span))
    emote_tokens = int(sum(b.emote_token_count for b in span))

    active = [b for b in span if not b.is_empty]
    sentiment = float(np.mean([b.sentiment for b in active])) if active else 0.0

    peak_count = max(counts) if counts else 0
    peak_rate = max(
        (b.message_count / (b.duration_ms / 1000.0) for b in span if b.duration_ms > 0),
        default=0.0,
    )

    ranked = _rank_tokens(span)
    keywords = tuple(tok for tok, _ in ranked[: cfg.top_n])
    emotes = tuple(lexicon.canonical(tok) for tok, _ in ranked if lexicon.is_emote(tok))[: cfg.top_n]

    msgs = max(message_count, 1)
    rate_score = clamp((peak_count / baseline - 1.0) / (cfg.rate_ratio_cap - 1.0)) if baseline > 0 else 0.0
    scores = {
        "rate": rate_score,
        "emotes": clamp(emote_tokens / msgs),
        "users": clamp(unique_users / msgs),
    }
    w = cfg.weights
    weighted = {
        "rate": w.rate * scores["rate"],
        "emotes": w.emotes * scores["emotes"],
        "users": w.users * scores["users"],
    }
    confidence = clamp(sum(weighted.values()))

    return HighlightMoment(
        start_ms=span[0].start_ms,
        end_ms=span[-1].end_ms,
        confidence=round(confidence, 4),
        reason=_pick_reason(weighted),
        sentiment=round(clamp(sentiment, -1.0, 1.0), 4),
        message_count=message_count,
        unique_users=unique_users,
        peak_rate=round(float(peak_rate), 4),
        keywords=keywords,
        emotes=emotes,
        activity_pattern=classify_activity_pattern(counts),
        breakdown={k: round(v, 4) for k, v in scores.items()},
    )


def detect_highlights(
    buckets: Sequence[TimeBucket],
    cfg: Optional[HighlightConfig] = None,
    *,
    lexicon: Optional[ChatLexicon] = None,
) -> List[HighlightMoment]:
    """Turn a bucket sequence into non-overlapping highlights ordered by start."""
    cfg = cfg or HighlightConfig()
    lexicon = lexicon or DEFAULT_LEXICON
    if not buckets:
        return []

    baseline = baseline_rate(buckets)
    if baseline <= 0:
        return []

    candidates = find_spike_candidates(buckets, baseline, cfg)
    clusters = merge_candidates(buckets, candidates, cfg.merge_gap_ms)

    moments: List[HighlightMoment] = []
    for first, last in clusters:
        moment = _build_moment(buckets[first : last + 1], baseline, cfg, lexicon)
        if moment.start_ms >= moment.end_ms:
            continue
        if moment.confidence < cfg.min_confidence:
            continue
        moments.append(moment)

    log.debug(
        "detect_highlights: baseline=%.2f candidates=%d clusters=%d kept=%d",
        baseline,
        len(candidates),
        len(clusters),
        len(moments),
    )
    return moments


def analyze_chat(
    events: Iterable[ChatEvent],
    total_duration_ms: int,
    cfg: Optional[HighlightConfig] = None,
    *,
    lexicon: Optional[ChatLexicon] = None,
) -> List[HighlightMoment]:
    """bucketize + detect_highlights in one call."""
    cfg = cfg or HighlightConfig()
    buckets = bucketize(events, total_duration_ms, cfg.bucket_ms, lexicon=lexicon)
    moments = detect_highlights(buckets, cfg, lexicon=lexicon)
    log.info(
        "Chat analysis: %d buckets of %d ms, %d highlights",
        len(buckets),
        cfg.bucket_ms,
        len(moments),
    )
    return moments
