"""Token-level vocabulary for Twitch-style chat.

Holds the tracked emote table (grouped by the kind of reaction it signals),
the positive/negative sentiment word lists and the tokenizer used by the
signal extractor. Everything is matched case-insensitively; emotes keep their
canonical spelling for display.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set


EMOTE_CATEGORIES: Dict[str, tuple[str, ...]] = {
    "hype": (
        "PogChamp", "Pog", "POGGERS", "PogU", "POGGIES", "HYPERS",
        "EZ", "Clap", "LETSGOOOO", "5Head", "GIGACHAD", "BASED",
    ),
    "laugh": (
        "KEKW", "LUL", "LULW", "OMEGALUL", "LMAO", "pepeLaugh",
        "KEKL", "EleGiggle", "forsenKEK", "ICANT",
    ),
    "surprise": (
        "monkaS", "monkaW", "WutFace", "gachiHYPER",
        "WAYTOODANK", "WeirdChamp", "PauseChamp", "DansGame",
    ),
    "celebration": (
        "PepoDance", "pepeD", "dancePls", "PartyParrot", "pepeJAM",
        "catJAM", "vibeCheck", "ratJAM", "RAVE",
    ),
}

POSITIVE_WORDS = frozenset({
    "pog", "poggers", "pogchamp", "hype", "letsgo", "letsgoo", "letsgoooo",
    "nice", "amazing", "incredible", "insane", "crazy", "god", "goat", "king",
    "queen", "clutch", "sick", "nasty", "fire", "lit", "banger", "ez", "easy",
    "clap", "dub", "best", "love", "wow", "great",
})

NEGATIVE_WORDS = frozenset({
    "rip", "oof", "yikes", "bruh", "pepehands", "sadge", "notlikethis",
    "fail", "throw", "int", "grief", "bad", "terrible", "awful", "trash",
    "loss", "worst", "cringe", "sad",
})

STOPWORDS = frozenset({
    "the", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "is", "are", "was", "were", "been", "be", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "can", "this", "that", "these", "those", "you", "he",
    "she", "it", "we", "they", "what", "which", "who", "when", "where", "why",
    "how", "im", "its", "so", "my", "me", "your", "just", "not", "no",
})

_WORD_RE = re.compile(r"\S+")
_STRIP_RE = re.compile(r"[^\w]+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Lower-case, punctuation-stripped tokens minus stop-words and 1-char tokens."""
    if not text:
        return []
    out: List[str] = []
    for raw in _WORD_RE.findall(text.lower()):
        tok = _STRIP_RE.sub("", raw).replace("_", "")
        if len(tok) < 2 or tok in STOPWORDS:
            continue
        out.append(tok)
    return out


@dataclass
class ChatLexicon:
    """Emote and sentiment vocabulary, optionally extended per channel."""

    extra_emotes: Iterable[str] = ()
    _canonical: Dict[str, str] = field(init=False, default_factory=dict)
    _category: Dict[str, str] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        for category, names in EMOTE_CATEGORIES.items():
            for name in names:
                key = name.lower()
                self._canonical.setdefault(key, name)
                self._category.setdefault(key, category)
        for name in self.extra_emotes:
            name = str(name).strip()
            if name:
                self._canonical.setdefault(name.lower(), name)

    @property
    def emote_tokens(self) -> Set[str]:
        return set(self._canonical)

    def is_emote(self, token: str) -> bool:
        return token.lower() in self._canonical

    def canonical(self, token: str) -> str:
        return self._canonical.get(token.lower(), token)

    def category(self, token: str) -> Optional[str]:
        return self._category.get(token.lower())

    def sentiment(self, tokens: Iterable[str]) -> float:
        """(pos - neg) / (pos + neg) over lexicon hits; 0.0 when nothing matches."""
        pos = 0
        neg = 0
        for tok in tokens:
            if tok in POSITIVE_WORDS:
                pos += 1
            elif tok in NEGATIVE_WORDS:
                neg += 1
        total = pos + neg
        if total == 0:
            return 0.0
        return (pos - neg) / total


DEFAULT_LEXICON = ChatLexicon()
