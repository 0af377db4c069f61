"""Text metrics — word, sentence and syllable counts, readability and keyword density.

Everything here is a pure function of its input so it can run on any thread.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

# Shortcode open/close tags ([ge_internal_link url="..."] / [/ge_internal_link]);
# the inner text between them is kept.
_SHORTCODE_TAG_RE = re.compile(r"\[/?ge_\w+?_link\b[^\]]*\]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")
_WHITESPACE_RE = re.compile(r"\s+")

# Lower bound of each Flesch band, highest first
READABILITY_BANDS = [
    (90, "Very Easy (5th grade)"),
    (80, "Easy (6th grade)"),
    (70, "Fairly Easy (7th grade)"),
    (60, "Standard (8th-9th grade)"),
    (50, "Fairly Difficult (High School)"),
    (30, "Difficult (College)"),
    (0, "Very Difficult (Graduate)"),
]

SPARSE_DENSITY = 0.5
STUFFING_DENSITY = 3.0


@dataclass
class TextStats:
    word_count: int
    sentence_count: int
    syllable_count: int
    character_count: int
    readability_score: float
    readability_grade: str


def strip_markup(content: str) -> str:
    """Return the plain text of HTML/shortcode content, whitespace collapsed."""
    if not content:
        return ""
    without_shortcodes = _SHORTCODE_TAG_RE.sub(" ", content)
    text = BeautifulSoup(without_shortcodes, "html.parser").get_text(" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def words_of(text: str) -> list[str]:
    return text.split()


def count_words(text: str) -> int:
    return len(words_of(text))


def count_sentences(text: str) -> int:
    """Number of non-empty segments delimited by . ! or ? (minimum 1)."""
    segments = [s for s in _SENTENCE_SPLIT_RE.split(text or "") if s.strip()]
    return max(1, len(segments))


def count_syllables(word: str) -> int:
    """Vowel-group approximation, minimum 1 per word."""
    return max(1, len(_VOWEL_GROUP_RE.findall(word.lower())))


def flesch_reading_ease(words: int, sentences: int, syllables: int) -> float:
    """Flesch Reading Ease, clamped to [0, 100]."""
    words = max(1, words)
    sentences = max(1, sentences)
    syllables = max(1, syllables)
    score = 206.835 - 1.015 * (words / sentences) - 84.6 * (syllables / words)
    return max(0.0, min(100.0, score))


def readability_grade(score: float) -> str:
    for floor, label in READABILITY_BANDS:
        if score >= floor:
            return label
    return READABILITY_BANDS[-1][1]


def analyze_text(content: str, plain: bool = False) -> TextStats:
    """Compute all text metrics for a piece of content.

    Args:
        content: HTML/shortcode body, or plain text when ``plain`` is True.
        plain: Skip markup stripping.
    """
    text = content if plain else strip_markup(content)
    words = words_of(text)
    sentences = count_sentences(text)
    syllables = sum(count_syllables(w) for w in words)
    score = flesch_reading_ease(len(words), sentences, syllables)
    return TextStats(
        word_count=len(words),
        sentence_count=sentences,
        syllable_count=max(1, syllables),
        character_count=len(text),
        readability_score=round(score, 1),
        readability_grade=readability_grade(score),
    )


# ---------------------------------------------------------------------------
# Keyword density
# ---------------------------------------------------------------------------

def _keyword_pattern(keyword: str) -> re.Pattern:
    parts = [re.escape(p) for p in keyword.lower().split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(parts) + r"(?!\w)", re.IGNORECASE)


def count_occurrences(text: str, keyword: str) -> int:
    if not keyword or not keyword.strip():
        return 0
    return len(_keyword_pattern(keyword).findall(text))


def keyword_density(text: str, keywords) -> dict[str, float]:
    """Per-keyword (occurrences / total words) x 100, rounded to 2 places."""
    total = count_words(text)
    density = {}
    for keyword in keywords or []:
        if not keyword or not keyword.strip():
            continue
        hits = count_occurrences(text, keyword)
        density[keyword] = round(hits / total * 100, 2) if total else 0.0
    return density


def mean_density(densities: dict[str, float]) -> float:
    if not densities:
        return 0.0
    return sum(densities.values()) / len(densities)


def density_flag(mean: float) -> str | None:
    """'sparse' below 0.5%, 'stuffing' above 3%, otherwise None."""
    if mean < SPARSE_DENSITY:
        return "sparse"
    if mean > STUFFING_DENSITY:
        return "stuffing"
    return None
