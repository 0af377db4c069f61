"""Duplicate Detector — cheap pre-filter that keeps the generator off topics we already cover.

Advisory only: a false positive costs one skipped idea, so the heuristics are
deliberately simple. The corpus is always passed in by the caller.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from perdia.models import Article, ContentIdea

log = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class DuplicateContentError(Exception):
    """An idea overlaps existing content closely enough to be skipped."""

    def __init__(self, check: "DuplicateCheck", title: str = ""):
        self.check = check
        self.title = title
        super().__init__(f"Duplicate idea '{title}': {check.reason}")


@dataclass
class Corpus:
    """Titles of every known article/idea plus the union of their keyword sets."""

    titles: list[str] = field(default_factory=list)
    keywords: set[str] = field(default_factory=set)

    def __post_init__(self):
        self.keywords = {k.strip().lower() for k in self.keywords if k and k.strip()}

    @classmethod
    def from_records(cls, articles=(), ideas=(), exclude_idea_id: str | None = None) -> "Corpus":
        titles = []
        keywords = set()
        for article in articles:
            if article.title:
                titles.append(article.title)
            keywords.update(article.target_keywords)
        for idea in ideas:
            if exclude_idea_id and idea.id == exclude_idea_id:
                continue
            if idea.title:
                titles.append(idea.title)
            keywords.update(idea.keywords)
        return cls(titles=titles, keywords=keywords)


@dataclass
class DuplicateCheck:
    duplicate: bool
    reason: str = ""
    matched_title: str | None = None
    score: float = 0.0


def title_tokens(title: str) -> set[str]:
    return set(_TOKEN_RE.findall((title or "").lower()))


def jaccard(a: set, b: set) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class DuplicateDetector:
    """Title-prefix, keyword-overlap and title-similarity duplicate checks."""

    def __init__(self, prefix_length: int = 20, keyword_overlap_threshold: float = 0.6,
                 title_similarity_threshold: float = 0.8):
        if prefix_length < 1:
            raise ValueError(f"prefix_length must be positive, got {prefix_length}")
        self.prefix_length = prefix_length
        self.keyword_overlap_threshold = keyword_overlap_threshold
        self.title_similarity_threshold = title_similarity_threshold

    def check(self, title: str, keywords, corpus: Corpus) -> DuplicateCheck:
        """Compare a candidate title and keyword set against the corpus.

        Rules, first match wins:
            1. The first ``prefix_length`` characters of the title (lowercased)
               appear inside an existing title.
            2. More than ``keyword_overlap_threshold`` of the candidate's
               keywords are already in the corpus.
            3. Title token Jaccard similarity reaches ``title_similarity_threshold``.
        """
        title = (title or "").strip()
        prefix = title[: self.prefix_length].lower()

        if prefix:
            for existing in corpus.titles:
                if prefix in existing.lower():
                    return DuplicateCheck(True, f"title prefix '{prefix}' matches existing title",
                                          matched_title=existing, score=1.0)

        candidate = {k.strip().lower() for k in keywords or [] if k and k.strip()}
        if candidate:
            overlap = len(candidate & corpus.keywords) / len(candidate)
            if overlap > self.keyword_overlap_threshold:
                return DuplicateCheck(True, f"keyword overlap {overlap:.0%} exceeds "
                                            f"{self.keyword_overlap_threshold:.0%}", score=overlap)

        tokens = title_tokens(title)
        best_title, best_score = None, 0.0
        for existing in corpus.titles:
            score = jaccard(tokens, title_tokens(existing))
            if score > best_score:
                best_title, best_score = existing, score
        if best_score >= self.title_similarity_threshold:
            return DuplicateCheck(True, f"title similarity {best_score:.2f}",
                                  matched_title=best_title, score=best_score)

        return DuplicateCheck(False, score=best_score)

    def is_duplicate(self, idea: ContentIdea | Article, corpus: Corpus) -> bool:
        title, keywords = _title_and_keywords(idea)
        result = self.check(title, keywords, corpus)
        if result.duplicate:
            log.info(f"Duplicate candidate '{title}': {result.reason}")
        return result.duplicate

    def ensure_unique(self, idea: ContentIdea | Article, corpus: Corpus):
        """Raise DuplicateContentError if the idea is a duplicate."""
        title, keywords = _title_and_keywords(idea)
        result = self.check(title, keywords, corpus)
        if result.duplicate:
            raise DuplicateContentError(result, title)


def _title_and_keywords(item) -> tuple[str, set[str]]:
    if isinstance(item, Article):
        return item.title, set(item.target_keywords)
    return item.title, set(item.keywords)


def classify_duplicate(idea: ContentIdea, corpus: Corpus, detector: DuplicateDetector | None = None) -> bool:
    return (detector or DuplicateDetector()).is_duplicate(idea, corpus)
