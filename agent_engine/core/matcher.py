"""Knowledge matcher: scores an inbound turn against a company's QA corpus.

Scoring per entry (all inputs lower-cased, punctuation stripped):

* exact phrase: the normalised question equals the text → 1.0
* near-exact phrase: one contains the other as a whole-word phrase → 0.9
* otherwise lexical overlap:
    - ``text_similarity``: share of the question's content words (len > 2)
      present in the text
    - ``keyword_match``: share of the entry's keywords present in the text
    - with keywords: 0.4 × text_similarity + 0.6 × keyword_match
    - without keywords: text_similarity

Ties are broken by the length of the matched question (more specific wins)
and then by declaration order, so results are deterministic.  The router
only depends on ``match(config, text)``; any object with that method can
replace this implementation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from agent_engine.models import CompanyConfig, QAEntry

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]+", flags=re.UNICODE)
_SPACES = re.compile(r"\s+")

EXACT_SCORE = 1.0
PHRASE_SCORE = 0.9
TEXT_WEIGHT = 0.4
KEYWORD_WEIGHT = 0.6


@dataclass(frozen=True)
class KnowledgeMatch:
    entry: QAEntry
    score: float
    position: int

    @property
    def specificity(self) -> int:
        return len(normalize(self.entry.question))


class Matcher(Protocol):
    def match(self, config: CompanyConfig, text: str) -> list[KnowledgeMatch]: ...


def normalize(text: str) -> str:
    return _SPACES.sub(" ", _NON_WORD.sub(" ", text.lower())).strip()


def _contains_phrase(haystack: str, needle: str) -> bool:
    if not needle:
        return False
    return f" {needle} " in f" {haystack} "


def text_similarity(text: str, question: str) -> float:
    """Share of the question's content words that appear in *text*."""
    question_words = [w for w in question.split() if len(w) > 2]
    if not question_words:
        return 0.0
    text_words = set(text.split())
    hits = sum(1 for w in question_words if w in text_words)
    return hits / len(question_words)


def keyword_match(text: str, keywords: tuple[str, ...]) -> float:
    normalized = [normalize(k) for k in keywords]
    normalized = [k for k in normalized if k]
    if not normalized:
        return 0.0
    hits = sum(1 for k in normalized if _contains_phrase(text, k))
    return hits / len(normalized)


class KnowledgeMatcher:
    """Lexical phrase + keyword matcher (the default ``Matcher``)."""

    def score(self, entry: QAEntry, text: str) -> float:
        normalized_text = normalize(text)
        question = normalize(entry.question)
        if not normalized_text or not question:
            return 0.0
        if normalized_text == question:
            return EXACT_SCORE
        if _contains_phrase(normalized_text, question) or (
            len(normalized_text.split()) > 1 and _contains_phrase(question, normalized_text)
        ):
            return PHRASE_SCORE

        similarity = text_similarity(normalized_text, question)
        if entry.keywords:
            score = TEXT_WEIGHT * similarity + KEYWORD_WEIGHT * keyword_match(
                normalized_text, entry.keywords
            )
        else:
            score = similarity
        return round(min(score, 1.0), 6)

    def match(self, config: CompanyConfig, text: str) -> list[KnowledgeMatch]:
        matches = [
            KnowledgeMatch(entry=entry, score=score, position=position)
            for position, entry in enumerate(config.qa_entries)
            if (score := self.score(entry, text)) > 0.0
        ]
        matches.sort(key=lambda m: (-m.score, -m.specificity, m.position))
        logger.debug(
            "Matcher: %s %d/%d entries scored (top=%s)",
            config.company_id,
            len(matches),
            len(config.qa_entries),
            f"{matches[0].entry.id}:{matches[0].score:.3f}" if matches else "none",
        )
        return matches
