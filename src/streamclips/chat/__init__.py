"""Chat log ingestion and per-window signal extraction."""

from .lexicon import ChatLexicon, DEFAULT_LEXICON, EMOTE_CATEGORIES, tokenize
from .normalize import load_chat_log, normalize_chat_messages
from .signals import ChatEvent, TimeBucket, bucket_count, bucketize

__all__ = [
    "ChatLexicon",
    "DEFAULT_LEXICON",
    "EMOTE_CATEGORIES",
    "tokenize",
    "load_chat_log",
    "normalize_chat_messages",
    "ChatEvent",
    "TimeBucket",
    "bucket_count",
    "bucketize",
]
