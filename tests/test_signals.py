from __future__ import annotations

import pytest

from streamclips.chat import ChatEvent, ChatLexicon, bucket_count, bucketize, tokenize


def _ev(ts: int, user: str = "u1", text: str = "hello there") -> ChatEvent:
    return ChatEvent(timestamp_ms=ts, user_id=user, text=text)


@pytest.mark.parametrize(
    "duration_ms,width_ms,expected",
    [(180_000, 5_000, 36), (61_000, 5_000, 13), (4_999, 5_000, 1), (0, 5_000, 0)],
)
def test_bucket_count_is_ceil(duration_ms: int, width_ms: int, expected: int) -> None:
    assert bucket_count(duration_ms, width_ms) == expected
    assert len(bucketize([], duration_ms, width_ms)) == expected


def test_bucket_count_rejects_bad_width() -> None:
    with pytest.raises(ValueError):
        bucket_count(10_000, 0)


def test_last_bucket_is_truncated_to_duration() -> None:
    buckets = bucketize([], 61_000, 5_000)
    assert buckets[-1].start_ms == 60_000
    assert buckets[-1].end_ms == 61_000
    assert all(b.is_empty for b in buckets)


def test_events_out_of_range_are_dropped() -> None:
    events = [_ev(-5), _ev(0), _ev(9_999), _ev(10_000), _ev(50_000)]
    buckets = bucketize(events, 10_000, 5_000)
    assert [b.message_count for b in buckets] == [1, 1]


def test_bucket_statistics() -> None:
    events = [
        _ev(100, "alice", "PogChamp that was insane"),
        _ev(200, "bob", "KEKW KEKW"),
        _ev(300, "alice", "rip"),
    ]
    (bucket,) = bucketize(events, 5_000, 5_000)

    assert bucket.message_count == 3
    assert bucket.unique_users == 2
    assert bucket.keyword_counts["kekw"] == 2
    assert bucket.keyword_counts["pogchamp"] == 1
    assert bucket.emote_token_count == 3
    assert bucket.emote_message_count == 2
    assert bucket.emote_category_counts["laugh"] == 2
    # +1 (pogchamp, insane), 0 (no lexicon hit), -1 (rip)
    assert bucket.sentiment == pytest.approx(0.0)


def test_platform_emotes_are_counted() -> None:
    events = [ChatEvent(timestamp_ms=0, user_id="u", text="", emotes=("LUL",))]
    (bucket,) = bucketize(events, 5_000, 5_000)
    assert bucket.keyword_counts == {"lul": 1}
    assert bucket.emote_message_count == 1


def test_unsorted_input_matches_sorted_input() -> None:
    events = [_ev(4_000, "a", "first"), _ev(1_000, "b", "second"), _ev(2_000, "c", "third")]
    a = bucketize(events, 5_000, 5_000)
    b = bucketize(sorted(events, key=lambda e: e.timestamp_ms), 5_000, 5_000)
    assert list(a[0].keyword_counts) == list(b[0].keyword_counts) == ["second", "third", "first"]


def test_tokenize_strips_punctuation_and_stopwords() -> None:
    assert tokenize("What a PLAY!!! it's so clutch") == ["play", "clutch"]
    assert tokenize("") == []


def test_extra_emotes_extend_lexicon() -> None:
    lex = ChatLexicon(extra_emotes=("streamerHype",))
    assert lex.is_emote("streamerhype")
    assert lex.canonical("STREAMERHYPE") == "streamerHype"
    assert lex.category("streamerhype") is None
    assert lex.category("kekw") == "laugh"
