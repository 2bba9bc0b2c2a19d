"""
Heuristic extraction for semantic memories.

Decides what part of a message is worth remembering, which keywords index
it, which category it belongs to and how confident we are in it. The
strategy is pluggable; RegexExtractionStrategy is the default and uses
only pattern matching, so it needs no model call.
"""

import re
from typing import List, Optional, Protocol, Tuple

from recall.models.schemas import Message


class ExtractionStrategy(Protocol):
    """Interface the semantic store and writeback use to analyse text."""

    def extract_content(self, message: Message) -> str:
        """Memory-worthy content of a message, or "" to skip it."""
        ...

    def extract_keywords(self, text: str) -> List[str]:
        ...

    def categorize(self, text: str) -> str:
        ...

    def confidence(self, message: Message, content: str) -> float:
        ...

    def is_salient(self, text: str) -> bool:
        """Whether a user prompt carries information worth persisting."""
        ...


class RegexExtractionStrategy:
    """
    Regex-based extraction.

    Content rules, in order:
    - shorter than MIN_CONTENT_LENGTH characters: skipped
    - a bare filler phrase ("ok", "thanks", "lol"): skipped
    - the first structured pattern that matches wins; all of its matches
      are joined with ". "
    - otherwise the raw text if longer than RAW_CONTENT_LENGTH characters
    """

    MIN_CONTENT_LENGTH = 10
    RAW_CONTENT_LENGTH = 50
    MAX_KEYWORDS = 10
    MIN_KEYWORD_LENGTH = 4

    FILLER_PATTERNS = [
        r"^(ok|okay|yes|no|thanks|thank you|hi|hello|hey)\.?$",
        r"^(lol|haha|hmm|uh|um|ah)\.?$",
    ]

    # Each captures up to the next sentence terminator
    STRUCTURED_PATTERNS = [
        r"\bi (like|love|enjoy|prefer|hate|dislike|need|want) ([^.!?]+)",
        r"\bmy (name|favorite|job|work|hobby|interest) is ([^.!?]+)",
        r"\bi am (a|an|working as|studying|learning) ([^.!?]+)",
        r"\bremember that ([^.!?]+)",
        r"\bimportant: ([^.!?]+)",
        r"\bnote: ([^.!?]+)",
    ]

    STOPWORDS = frozenset({
        "this", "that", "with", "have", "will", "from", "they", "know",
        "want", "been", "good", "much", "some", "time", "very", "when",
        "come", "here", "just", "like", "long", "make", "many", "over",
        "such", "take", "than", "them", "well", "your",
    })

    # First match wins
    CATEGORY_PATTERNS: List[Tuple[str, str]] = [
        ("preference", r"\bi (like|love|enjoy|prefer|hate|dislike)\b"),
        ("fact", r"\b(my name|i am|i work|i study|i live)\b"),
        ("skill", r"\b(i can|i know how|i learned|i studied)\b"),
        ("goal", r"\b(i want|i need|i plan|my goal)\b"),
        ("problem", r"(problem|issue|error|wrong|fix|help)"),
        ("creative", r"(create|design|art|music|write|story)"),
        ("technical", r"(code|program|software|api|database|algorithm)"),
        ("personal", r"(family|friend|relationship|feeling|emotion)"),
    ]

    CERTAINTY_PATTERNS = [
        r"\b(definitely|certainly|absolutely|sure|positive)\b",
        r"\b(always|never|every time|usually)\b",
        r"\bmy (name|job|hobby) is\b",
    ]

    HEDGING_PATTERNS = [
        r"\b(maybe|perhaps|might|probably|possibly)\b",
        r"\b(i think|i believe|i guess|not sure)\b",
    ]

    SALIENCE_PATTERNS = [
        r"\b(my name is|i am|i work|i live)\b",
        r"\b(i like|i prefer|i enjoy|i love)\b",
        r"\b(remember|important|note)\b",
    ]

    def __init__(self, extra_salience_patterns: Optional[List[str]] = None) -> None:
        flags = re.IGNORECASE
        self._filler = [re.compile(p, flags) for p in self.FILLER_PATTERNS]
        self._structured = [re.compile(p, flags) for p in self.STRUCTURED_PATTERNS]
        self._categories = [(name, re.compile(p, flags)) for name, p in self.CATEGORY_PATTERNS]
        self._certainty = [re.compile(p, flags) for p in self.CERTAINTY_PATTERNS]
        self._hedging = [re.compile(p, flags) for p in self.HEDGING_PATTERNS]
        self._salience = [
            re.compile(p, flags)
            for p in self.SALIENCE_PATTERNS + list(extra_salience_patterns or [])
        ]

    def extract_content(self, message: Message) -> str:
        content = message.content.strip()

        if len(content) < self.MIN_CONTENT_LENGTH:
            return ""

        if any(p.match(content) for p in self._filler):
            return ""

        for pattern in self._structured:
            matches = [m.group(0).strip() for m in pattern.finditer(content)]
            if matches:
                return ". ".join(matches)

        if len(content) > self.RAW_CONTENT_LENGTH:
            return content

        return ""

    def extract_keywords(self, text: str) -> List[str]:
        words = re.sub(r"[^\w\s]", " ", text.lower()).split()

        keywords: List[str] = []
        for word in words:
            if len(word) < self.MIN_KEYWORD_LENGTH or word in self.STOPWORDS:
                continue
            if word not in keywords:
                keywords.append(word)
            if len(keywords) >= self.MAX_KEYWORDS:
                break
        return keywords

    def categorize(self, text: str) -> str:
        for name, pattern in self._categories:
            if pattern.search(text):
                return name
        return "general"

    def confidence(self, message: Message, content: str) -> float:
        score = 0.5

        # User statements about themselves are the most reliable source
        if message.role == "user":
            score += 0.2

        if any(p.search(content) for p in self._certainty):
            score += 0.1

        if any(p.search(content) for p in self._hedging):
            score -= 0.2

        return max(0.1, min(1.0, round(score, 4)))

    def is_salient(self, text: str) -> bool:
        return any(p.search(text) for p in self._salience)
