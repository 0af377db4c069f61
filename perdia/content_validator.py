"""Content Validator — length, readability, keyword density and link-syntax checks.

Produces a ValidationReport: a pass/fail verdict (the hard gate), an SEO score
and a list of recommendations. The validator reads an Article and never
mutates it; copying summary fields onto the Article is the lifecycle engine's
job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from perdia.models import Article, ErrorRecord
from perdia.shortcode_codec import ShortcodeCodec, TransformStats
from perdia.text_metrics import analyze_text, density_flag, keyword_density, mean_density, strip_markup

log = logging.getLogger(__name__)

AFFIRMATIVE_MESSAGE = "Content looks good! All SEO basics are covered."
PLACEHOLDER_MARKERS = ["[INSERT", "[TODO", "[TBD", "PLACEHOLDER", "Lorem ipsum"]

META_MIN_LENGTH = 120
META_MAX_LENGTH = 160
TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 70

MAX_WORD_COUNT = 5000
MIN_H2_HEADINGS = 3
MIN_PARAGRAPHS = 5
MIN_INTERNAL_LINKS = 3
MAX_INTERNAL_LINKS = 10

CITATION_NEEDED_MARKER = "[CITATION NEEDED]"
UNVERIFIED_MARKER = "[UNVERIFIED"

_H2_RE = re.compile(r"<h2\b[^>]*>", re.IGNORECASE)
_PARAGRAPH_RE = re.compile(r"<p\b[^>]*>", re.IGNORECASE)
_EMPTY_HEADING_RE = re.compile(r"<h([1-6])\b[^>]*>\s*</h\1\s*>", re.IGNORECASE)


class ValidationError(Exception):
    """Raised when a caller demands valid content and the hard gate failed."""

    def __init__(self, errors: list[ErrorRecord]):
        self.errors = list(errors)
        super().__init__("; ".join(e.message for e in self.errors) or "Validation failed")


@dataclass
class ValidationReport:
    word_count: int
    readability_score: float
    readability_grade: str
    keyword_density: dict[str, float]
    seo_score: int
    recommendations: list[str]
    valid: bool
    sentence_count: int = 0
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    link_stats: TransformStats = field(default_factory=TransformStats)
    risk_flags: set[str] = field(default_factory=set)

    @property
    def mean_keyword_density(self) -> float:
        return mean_density(self.keyword_density)

    def raise_for_errors(self):
        if not self.valid:
            raise ValidationError(self.errors)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "word_count": self.word_count,
            "sentence_count": self.sentence_count,
            "readability_score": self.readability_score,
            "readability_grade": self.readability_grade,
            "keyword_density": dict(self.keyword_density),
            "seo_score": self.seo_score,
            "recommendations": list(self.recommendations),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "link_stats": self.link_stats.as_dict(),
            "risk_flags": sorted(self.risk_flags),
        }


def compute_seo_score(word_count: int, readability: float, mean_kw_density: float,
                      meta_description: str, title: str) -> int:
    """Composite 0-100 score: start at 100 and subtract fixed penalties."""
    score = 100
    if word_count < 300:
        score -= 20
    elif word_count < 600:
        score -= 10

    if readability < 50:
        score -= 15
    elif readability < 60:
        score -= 5

    if density_flag(mean_kw_density) is not None:
        score -= 15

    if not meta_description or len(meta_description) < META_MIN_LENGTH:
        score -= 10

    if not title or len(title) < TITLE_MIN_LENGTH or len(title) > TITLE_MAX_LENGTH:
        score -= 10

    return max(0, min(100, score))


class ContentValidator:
    """Runs every content check and assembles a ValidationReport."""

    def __init__(self, codec: ShortcodeCodec | None = None, min_word_count: int = 1000,
                 min_word_count_by_type: dict[str, int] | None = None, max_word_count: int = MAX_WORD_COUNT):
        self.codec = codec or ShortcodeCodec()
        self.min_word_count = min_word_count
        self.max_word_count = max_word_count
        self.min_word_count_by_type = dict(min_word_count_by_type or {})

    def minimum_for(self, content_type: str) -> int:
        return self.min_word_count_by_type.get(content_type, self.min_word_count)

    @staticmethod
    def _check_structure(body: str, warn):
        """H2 sections, paragraph count and empty headings."""
        h2_count = len(_H2_RE.findall(body))
        if h2_count < MIN_H2_HEADINGS:
            warn("structure", f"Insufficient structure: {h2_count} H2 headings (minimum {MIN_H2_HEADINGS})",
                 f"Break the article into at least {MIN_H2_HEADINGS} H2 sections.", h2_count=h2_count)

        paragraphs = len(_PARAGRAPH_RE.findall(body))
        if paragraphs < MIN_PARAGRAPHS:
            warn("structure", f"Insufficient paragraphs: {paragraphs} paragraphs (minimum {MIN_PARAGRAPHS})",
                 f"Use at least {MIN_PARAGRAPHS} paragraphs.", paragraphs=paragraphs)

        empty = len(_EMPTY_HEADING_RE.findall(body))
        if empty:
            warn("empty_heading", f"Found {empty} empty headings",
                 "Remove or fill in empty headings.", count=empty)

    def validate(self, article: Article, min_word_count: int | None = None) -> ValidationReport:
        """Validate an article's title, body, keywords and link syntax.

        Args:
            article: The article to check. Not modified.
            min_word_count: Override for the hard word-count minimum; defaults
                to the per-type or global configured minimum.
        """
        title = (article.title or "").strip()
        body = article.body or ""
        meta = (article.meta_description or "").strip()
        minimum = min_word_count if min_word_count is not None else self.minimum_for(article.content_type)

        text = strip_markup(body)
        stats = analyze_text(text, plain=True)
        densities = keyword_density(text, article.target_keywords)
        avg_density = mean_density(densities)
        link_errors = self.codec.validate(body)
        link_stats = self.codec.stats(body)

        errors: list[ErrorRecord] = []
        warnings: list[ErrorRecord] = []
        recommendations: list[str] = []
        risk_flags: set[str] = set()

        def warn(code, message, recommendation, field_name="body", **details):
            warnings.append(ErrorRecord(code, message, field=field_name, severity="warning", details=details))
            recommendations.append(recommendation)

        # --- Advisory: length ---
        if stats.word_count < 300:
            risk_flags.add("thin_content")
            warn("word_count_low", f"Only {stats.word_count} words",
                 "Content is too short. Aim for at least 300 words for better SEO.",
                 word_count=stats.word_count)
        elif stats.word_count < 600:
            warn("word_count_low", f"Only {stats.word_count} words",
                 "Consider adding more content. Articles with 600+ words typically rank better.",
                 word_count=stats.word_count)
        elif stats.word_count > self.max_word_count:
            warn("word_count_high", f"Article is long ({stats.word_count} words, maximum {self.max_word_count})",
                 f"Consider splitting or trimming the article to under {self.max_word_count} words.",
                 word_count=stats.word_count, maximum=self.max_word_count)

        # --- Advisory: readability ---
        if stats.readability_score < 50:
            risk_flags.add("low_readability")
            warn("readability", f"Readability score is low ({stats.readability_score:.0f})",
                 "Content readability is low. Simplify sentences for better engagement.",
                 score=stats.readability_score)
        elif stats.readability_score < 60:
            warn("readability", f"Readability score is borderline ({stats.readability_score:.0f})",
                 "Readability is borderline. Shorter sentences and simpler words would help.",
                 score=stats.readability_score)

        # --- Advisory: keyword density ---
        flag = density_flag(avg_density)
        if flag == "sparse":
            risk_flags.add("keyword_sparse")
            warn("keyword_density", f"Mean keyword density {avg_density:.2f}% is below 0.5%",
                 "Target keyword density is low. Include keywords more naturally in content.",
                 mean=round(avg_density, 2))
        elif flag == "stuffing":
            risk_flags.add("keyword_stuffing")
            warn("keyword_density", f"Mean keyword density {avg_density:.2f}% is above 3%",
                 "Target keyword density is too high. Risk of keyword stuffing - reduce usage.",
                 mean=round(avg_density, 2))

        # --- Advisory: metadata ---
        if not meta or len(meta) < META_MIN_LENGTH:
            warn("meta_description", f"Meta description is missing or short ({len(meta)} chars)",
                 "Meta description is missing or too short. Aim for 120-160 characters.",
                 field_name="meta_description", length=len(meta))
        elif len(meta) > META_MAX_LENGTH:
            warn("meta_description", f"Meta description is long ({len(meta)} chars)",
                 "Meta description is too long and will be truncated. Keep it under 160 characters.",
                 field_name="meta_description", length=len(meta))

        if not title or len(title) < TITLE_MIN_LENGTH:
            warn("title_length", f"Title is missing or short ({len(title)} chars)",
                 "Title is too short. Use descriptive titles with 30-60 characters.",
                 field_name="title", length=len(title))
        elif len(title) > TITLE_MAX_LENGTH:
            warn("title_length", f"Title is long ({len(title)} chars)",
                 "Title is too long. It may be truncated in search results.",
                 field_name="title", length=len(title))

        # --- Advisory: content hygiene ---
        found = [p for p in PLACEHOLDER_MARKERS if p in body]
        if found:
            risk_flags.add("placeholder_text")
            warn("placeholder_text", f"Placeholder text found: {', '.join(found)}",
                 "Replace placeholder text before publishing.", markers=found)

        if body.strip():
            self._check_structure(body, warn)
            if link_stats.internal == 0:
                warn("no_internal_links", "No internal links found",
                     "No internal links found. Consider adding 2-4 internal links.")
            elif link_stats.internal < MIN_INTERNAL_LINKS:
                warn("internal_links_low", f"Only {link_stats.internal} internal links",
                     f"Add more internal links (minimum {MIN_INTERNAL_LINKS}).", count=link_stats.internal)
            elif link_stats.internal > MAX_INTERNAL_LINKS:
                warn("internal_links_high", f"Many internal links ({link_stats.internal})",
                     "Consider reducing internal links for better UX.", count=link_stats.internal)

        uncited = body.count(CITATION_NEEDED_MARKER)
        if uncited:
            risk_flags.add("uncited_claims")
            warn("citation_needed", f"{uncited} claims still need citations",
                 "Add sources for every claim marked [CITATION NEEDED].", count=uncited)

        # --- Hard gate ---
        if not title:
            errors.append(ErrorRecord("required", "Title is required", field="title"))
            recommendations.append("Add a title before approval.")
        if not body.strip():
            errors.append(ErrorRecord("required", "Body is required", field="body"))
            recommendations.append("Add body content before approval.")
        if stats.word_count < minimum:
            errors.append(ErrorRecord(
                "word_count",
                f"Article too short ({stats.word_count} words, minimum {minimum})",
                field="body",
                details={"word_count": stats.word_count, "minimum": minimum},
            ))
            recommendations.append(
                f"Expand the article to at least {minimum} words (currently {stats.word_count})."
            )
        unverified = body.count(UNVERIFIED_MARKER)
        if unverified:
            risk_flags.add("unverified_claims")
            errors.append(ErrorRecord(
                "unverified_claim",
                f"{unverified} unverified claims must be removed",
                field="body",
                details={"count": unverified},
            ))
            recommendations.append("Verify or remove every claim marked [UNVERIFIED].")
        if link_errors:
            risk_flags.add("shortcode_syntax")
            if any(e.code == "raw_link" for e in link_errors):
                risk_flags.add("raw_links")
            errors.extend(link_errors)
            recommendations.extend(f"Fix link markup: {e.message}" for e in link_errors)

        if not recommendations:
            recommendations.append(AFFIRMATIVE_MESSAGE)

        report = ValidationReport(
            word_count=stats.word_count,
            sentence_count=stats.sentence_count,
            readability_score=stats.readability_score,
            readability_grade=stats.readability_grade,
            keyword_density=densities,
            seo_score=compute_seo_score(stats.word_count, stats.readability_score, avg_density, meta, title),
            recommendations=recommendations,
            valid=not errors,
            errors=errors,
            warnings=warnings,
            link_stats=link_stats,
            risk_flags=risk_flags,
        )

        log.info(
            f"Validated article {article.id}: valid={report.valid} seo={report.seo_score} "
            f"words={report.word_count} errors={len(errors)} warnings={len(warnings)}",
            extra={"article_id": article.id},
        )
        return report
