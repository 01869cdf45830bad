"""
Heuristic logic layer: memory extraction, relevance scoring, and
conversation summaries.

These utilities sit underneath the memory manager to provide:
  - Keyword-rule extraction of categorized memory entries from a message
  - A transparent lexical relevance score with importance and time decay
  - Topic extraction and templated summaries for conversation sessions

Every vocabulary and trigger list lives in an ordered table so that rules
can be enumerated, tested on their own, or replaced wholesale by another
:class:`ContentClassifier`.
"""

from __future__ import annotations

import random
import re
import string
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from .models import Category, ConversationMessage, MemoryEntry, Role, Source

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Entries lose relevance linearly over this many days.
DECAY_WINDOW_DAYS: float = 30.0

#: Lowest multiplier the decay can reach; old entries stay retrievable.
DECAY_FLOOR: float = 0.1

EXACT_PHRASE_BONUS: float = 10.0
TERM_CONTENT_BONUS: float = 2.0
TERM_TAG_BONUS: float = 3.0

#: Query terms of this length or shorter are ignored.
MIN_TERM_LENGTH: int = 2

#: A session summary is recomputed every time the message count hits a
#: multiple of this value.
SUMMARY_INTERVAL: int = 10

SPECIALTY_TAGS: tuple[str, ...] = (
    "cardiology",
    "neurology",
    "oncology",
    "endocrinology",
    "gastroenterology",
    "pulmonology",
    "nephrology",
    "infectious",
    "emergency",
)
CLINICAL_TERM_TAGS: tuple[str, ...] = (
    "diagnosis",
    "treatment",
    "medication",
    "symptom",
    "syndrome",
    "disease",
    "therapy",
    "surgery",
    "procedure",
)
AGE_GROUP_TAGS: tuple[str, ...] = (
    "newborn",
    "infant",
    "toddler",
    "child",
    "adolescent",
    "pediatric",
)
TAG_VOCABULARIES: tuple[tuple[str, ...], ...] = (
    SPECIALTY_TAGS,
    CLINICAL_TERM_TAGS,
    AGE_GROUP_TAGS,
)

#: Ordered (keywords, specialty) pairs.  The first matching row wins.
SPECIALTY_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("heart", "cardiac"), "cardiology"),
    (("brain", "neuro"), "neurology"),
    (("cancer", "tumor"), "oncology"),
    (("diabetes", "hormone"), "endocrinology"),
    (("stomach", "intestin"), "gastroenterology"),
    (("lung", "respiratory"), "pulmonology"),
    (("kidney", "renal"), "nephrology"),
    (("infection", "bacteria"), "infectious disease"),
    (("emergency", "urgent"), "emergency medicine"),
)
DEFAULT_SPECIALTY: str = "general pediatrics"

AGE_TERMS: tuple[str, ...] = (
    "newborn",
    "infant",
    "toddler",
    "preschooler",
    "school-age",
    "adolescent",
)
_AGE_PATTERN = re.compile(r"(\d+)\s*(year|month|week|day)s?\s*old", re.IGNORECASE)

TOPIC_VOCABULARY: tuple[str, ...] = (
    "fever",
    "cough",
    "asthma",
    "diabetes",
    "seizure",
    "infection",
    "rash",
    "pain",
)


# ---------------------------------------------------------------------------
# Keyword helpers
# ---------------------------------------------------------------------------


def extract_tags(content: str) -> list[str]:
    """
    Return every vocabulary keyword found in *content* (case-insensitive
    substring match), in vocabulary order, without duplicates.
    """
    lowered = content.lower()
    found = [term for vocab in TAG_VOCABULARIES for term in vocab if term in lowered]
    return list(dict.fromkeys(found))


def infer_specialty(content: str) -> str:
    """Map *content* to a pediatric specialty; the first matching rule wins."""
    lowered = content.lower()
    for keywords, specialty in SPECIALTY_RULES:
        if any(k in lowered for k in keywords):
            return specialty
    return DEFAULT_SPECIALTY


def extract_age(content: str) -> str | None:
    """
    Find a patient age phrase in *content*.

    ``"a 5 year old with fever"`` gives ``"5 years old"``; a bare age-group
    word such as ``"toddler"`` is returned as-is.  Returns ``None`` when
    nothing matches.
    """
    match = _AGE_PATTERN.search(content)
    if match:
        number, unit = match.group(1), match.group(2).lower()
        plural = "s" if number != "1" else ""
        return f"{number} {unit}{plural} old"

    lowered = content.lower()
    for term in AGE_TERMS:
        if term in lowered:
            return term
    return None


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------


def _specialty_metadata(content: str) -> dict[str, str]:
    return {"medical_specialty": infer_specialty(content)}


def _age_metadata(content: str) -> dict[str, str]:
    age = extract_age(content)
    return {"patient_age": age} if age else {}


@dataclass(frozen=True)
class ExtractionRule:
    """
    One trigger for producing a memory entry.

    ``role`` restricts the rule to messages from that speaker; ``None``
    matches both.
    """

    category: Category
    importance: float
    triggers: tuple[str, ...]
    source: Source
    role: Role | None = None
    enrich: Callable[[str], dict[str, str]] | None = None

    def matches(self, lowered: str, role: str) -> bool:
        if self.role is not None and role != self.role:
            return False
        return any(t in lowered for t in self.triggers)


EXTRACTION_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule(
        category="medical_fact",
        importance=0.8,
        triggers=("diagnosis", "treatment", "medication"),
        source="conversation",
        role="assistant",
        enrich=_specialty_metadata,
    ),
    ExtractionRule(
        category="user_preference",
        importance=0.9,
        triggers=("prefer", "always", "never"),
        source="user_input",
        role="user",
    ),
    ExtractionRule(
        category="case_context",
        importance=0.7,
        triggers=("patient", "case", "year old"),
        source="conversation",
        enrich=_age_metadata,
    ),
)


@runtime_checkable
class ContentClassifier(Protocol):
    """Anything that turns one chat message into memory entries."""

    def extract(self, content: str, role: str) -> list[MemoryEntry]: ...


class KeywordExtractor:
    """
    Rule-table extractor.

    Each rule is checked independently, so one message can yield several
    entries of different categories.  The only impurity is the clock used
    for ids and timestamps.
    """

    def __init__(
        self,
        rules: Sequence[ExtractionRule] = EXTRACTION_RULES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.rules = tuple(rules)
        self._clock = clock or _utcnow

    def extract(self, content: str, role: str) -> list[MemoryEntry]:
        if not isinstance(content, str) or not content:
            return []

        lowered = content.lower()
        matched = [rule for rule in self.rules if rule.matches(lowered, role)]
        if not matched:
            return []

        now = self._clock()
        tags = tuple(extract_tags(content))
        entries: list[MemoryEntry] = []
        for rule in matched:
            metadata = {"source": rule.source}
            if rule.enrich is not None:
                metadata.update(rule.enrich(content))
            entries.append(
                MemoryEntry(
                    id=generate_id("memory", now),
                    content=content,
                    category=rule.category,
                    importance=rule.importance,
                    timestamp=now,
                    tags=tags,
                    metadata=metadata,
                )
            )
        return entries


# ---------------------------------------------------------------------------
# Relevance scoring
# ---------------------------------------------------------------------------


def query_terms(query: str) -> list[str]:
    """Lowercase whitespace-split terms longer than :data:`MIN_TERM_LENGTH`."""
    return [t for t in query.lower().split() if len(t) > MIN_TERM_LENGTH]


def decay_factor(timestamp: datetime, now: datetime) -> float:
    """Linear decay over :data:`DECAY_WINDOW_DAYS`, floored at :data:`DECAY_FLOOR`."""
    age_days = (now - timestamp).total_seconds() / 86400.0
    return max(DECAY_FLOOR, 1.0 - age_days / DECAY_WINDOW_DAYS)


def score_entry(entry: MemoryEntry, query: str, now: datetime) -> float:
    """
    Score *entry* against *query*.

    Heuristics:
      - Exact phrase: +10 when the whole lowercased query is in the content
      - Per term: +2 if the content contains it, +3 if any tag contains it
      - Multiplied by the entry's importance and by :func:`decay_factor`
    """
    lowered_query = query.lower()
    lowered_content = entry.content.lower()
    tags = [t.lower() for t in entry.tags]

    score = 0.0
    if lowered_query in lowered_content:
        score += EXACT_PHRASE_BONUS

    for term in query_terms(query):
        if term in lowered_content:
            score += TERM_CONTENT_BONUS
        if any(term in tag for tag in tags):
            score += TERM_TAG_BONUS

    score *= entry.importance
    score *= decay_factor(entry.timestamp, now)
    return score


def rank_entries(
    entries: Iterable[MemoryEntry],
    query: str,
    now: datetime,
    limit: int = 10,
) -> list[MemoryEntry]:
    """
    Return up to *limit* entries with a positive score, best first.

    The sort is stable, so equal scores keep the iteration order of
    *entries*.
    """
    scored = [(score_entry(e, query, now), e) for e in entries]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [e for _, e in scored[: max(limit, 0)]]


# ---------------------------------------------------------------------------
# Conversation summaries
# ---------------------------------------------------------------------------


def extract_key_topics(messages: Iterable[ConversationMessage]) -> list[str]:
    """Return the clinical topics mentioned anywhere in *messages*."""
    combined = " ".join(m.content for m in messages).lower()
    return [topic for topic in TOPIC_VOCABULARY if topic in combined]


def summarise_messages(messages: Sequence[ConversationMessage]) -> str:
    """Templated one-line summary of the last :data:`SUMMARY_INTERVAL` messages."""
    topics = extract_key_topics(messages[-SUMMARY_INTERVAL:])
    if not topics:
        return "Recent discussion about general topics"
    return f"Recent discussion about {', '.join(topics)}"


# ---------------------------------------------------------------------------
# ID generation
# ---------------------------------------------------------------------------

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(prefix: str = "memory", now: datetime | None = None) -> str:
    """Return a new unique id such as ``memory_1718000000000_k3j9x0a1b``."""
    moment = now or _utcnow()
    millis = int(moment.timestamp() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{millis}_{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
