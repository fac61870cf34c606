from __future__ import annotations

from typing import List

import pytest

from streamclips.analysis_highlights import (
    PATTERN_GRADUAL,
    PATTERN_SPIKE,
    PATTERN_SUSTAINED,
    REASON_ACTIVITY_SPIKE,
    REASON_EMOTE_SPAM,
    HighlightConfig,
    analyze_chat,
    baseline_rate,
    classify_activity_pattern,
    detect_highlights,
    find_spike_candidates,
    merge_candidates,
)
from streamclips.chat import ChatEvent, bucketize
from streamclips.profile import default_profile


def _burst(start_ms: int, n: int, text: str = "what a play", step_ms: int = 50, prefix: str = "u") -> List[ChatEvent]:
    return [ChatEvent(timestamp_ms=start_ms + i * step_ms, user_id=f"{prefix}{start_ms}_{i}", text=text) for i in range(n)]


def _separated_spikes() -> List[ChatEvent]:
    # Two 6-message spikes 120s apart over a 180s VOD, with light chatter between.
    events = _burst(0, 6) + _burst(120_000, 6)
    for ts in (30_000, 60_000, 90_000, 150_000):
        events.append(ChatEvent(timestamp_ms=ts, user_id=f"lurker{ts}", text="hello there"))
    return events


def test_empty_log_yields_no_highlights() -> None:
    assert analyze_chat([], 180_000) == []
    assert detect_highlights([]) == []


def test_baseline_ignores_silent_buckets() -> None:
    buckets = bucketize(_separated_spikes(), 180_000, 5_000)
    assert baseline_rate(buckets) == pytest.approx(16 / 6)


def test_spikes_within_merge_gap_collapse_into_one_highlight() -> None:
    events = _burst(10_000, 4, step_ms=100) + _burst(35_000, 4, step_ms=100)
    events.append(ChatEvent(timestamp_ms=20_000, user_id="lurker", text="hello there"))

    highlights = analyze_chat(events, 60_000, HighlightConfig(merge_gap_ms=30_000))

    assert len(highlights) == 1
    h = highlights[0]
    assert h.start_ms == 10_000
    assert h.end_ms == 40_000
    assert h.duration_ms >= 20_000
    assert h.message_count == 9


def test_spikes_beyond_merge_gap_stay_separate() -> None:
    highlights = analyze_chat(_separated_spikes(), 180_000)

    assert [(h.start_ms, h.end_ms) for h in highlights] == [(0, 5_000), (120_000, 125_000)]
    for h in highlights:
        assert h.reason == REASON_ACTIVITY_SPIKE
        assert h.message_count == 6
        assert h.unique_users == 6
        assert 0.0 <= h.confidence <= 1.0


def test_highlights_sorted_and_non_overlapping() -> None:
    events = _separated_spikes() + _burst(60_000, 7) + _burst(61_000, 2)
    highlights = analyze_chat(events, 180_000)
    assert len(highlights) >= 2
    for prev, nxt in zip(highlights, highlights[1:]):
        assert prev.start_ms < nxt.start_ms
        assert prev.end_ms <= nxt.start_ms


def test_detection_is_idempotent() -> None:
    buckets = bucketize(_separated_spikes(), 180_000, 5_000)
    assert detect_highlights(buckets) == detect_highlights(buckets)


def test_unsorted_events_give_same_result() -> None:
    events = _separated_spikes()
    assert analyze_chat(list(reversed(events)), 180_000) == analyze_chat(events, 180_000)


def test_emote_burst_without_rate_spike() -> None:
    events: List[ChatEvent] = []
    for bucket in range(12):
        start = bucket * 5_000
        if bucket == 6:
            events += _burst(start, 5, text="PogChamp PogChamp", prefix="fan")
        else:
            events += _burst(start, 4, text="hello there", prefix="bg")

    buckets = bucketize(events, 60_000, 5_000)
    cfg = HighlightConfig()
    baseline = baseline_rate(buckets)
    # 5 messages stays under the rate threshold; only the emote share flags it.
    assert 5 <= baseline * cfg.spike_multiplier

    highlights = detect_highlights(buckets, cfg)
    assert len(highlights) == 1
    h = highlights[0]
    assert (h.start_ms, h.end_ms) == (30_000, 35_000)
    assert h.reason == REASON_EMOTE_SPAM
    assert h.keywords[0] == "pogchamp"
    assert h.emotes[0] == "PogChamp"


def test_quiet_stream_has_no_candidates() -> None:
    events = [ChatEvent(timestamp_ms=i * 5_000, user_id="u", text="hello there") for i in range(12)]
    buckets = bucketize(events, 60_000, 5_000)
    assert find_spike_candidates(buckets, baseline_rate(buckets), HighlightConfig()) == []
    assert detect_highlights(buckets) == []


def test_merge_candidates_respects_gap() -> None:
    buckets = bucketize([], 100_000, 5_000)
    # bucket 1 ends at 10s; bucket 7 starts at 35s (25s gap); bucket 19 starts at 95s
    assert merge_candidates(buckets, [1, 7, 19], 30_000) == [(1, 7), (19, 19)]
    assert merge_candidates(buckets, [1, 7], 20_000) == [(1, 1), (7, 7)]
    assert merge_candidates(buckets, [], 30_000) == []


def test_min_confidence_filters_weak_highlights() -> None:
    cfg = HighlightConfig(min_confidence=0.99)
    assert analyze_chat(_separated_spikes(), 180_000, cfg) == []


@pytest.mark.parametrize(
    "counts,expected",
    [
        ([1, 9, 1], PATTERN_SPIKE),
        ([4, 4, 4, 4, 4, 4], PATTERN_SUSTAINED),
        ([1, 2, 3, 4, 5, 6], PATTERN_GRADUAL),
        ([5], PATTERN_SPIKE),
    ],
)
def test_classify_activity_pattern(counts: List[int], expected: str) -> None:
    assert classify_activity_pattern(counts) == expected


def test_config_from_profile_reads_sections() -> None:
    profile = default_profile()
    profile["chat"]["bucket_seconds"] = 10
    profile["highlights"]["merge_gap_seconds"] = 45
    profile["highlights"]["weights"] = {"rate": 1.0}

    cfg = HighlightConfig.from_profile(profile)
    assert cfg.bucket_ms == 10_000
    assert cfg.merge_gap_ms == 45_000
    assert cfg.weights.rate == 1.0
    assert cfg.weights.emotes == 0.3


def test_to_dict_is_json_shaped() -> None:
    (first, _second) = analyze_chat(_separated_spikes(), 180_000)
    d = first.to_dict()
    assert d["start_ms"] == 0
    assert isinstance(d["keywords"], list)
    assert set(d["breakdown"]) == {"rate", "emotes", "users"}
