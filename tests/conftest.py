"""Shared fixtures: a publish-ready article and builders for weaker variants."""

from datetime import datetime, timezone

import pytest

from perdia.config import LifecycleConfig
from perdia.models import Article, ArticleStatus

SITE_DOMAIN = "geteducated.com"
AFFILIATE_DOMAINS = ["partner-lms.org"]

GOOD_TITLE = "How an Online Degree Can Fit Your Busy Life"
GOOD_META = (
    "Learn how an online degree can fit around work and family, with simple tips "
    "on pacing, picking a program and staying on track each week."
)
KEYWORDS = ["online degree"]

# 44 words, one keyword hit, short monosyllabic sentences
BLOCK = (
    "An online degree helps you learn at your own pace. "
    "Kids can learn math and read books in class. "
    "We think this plan is good for you and it is fun. "
    "Each day you can work a bit more and get a lot done."
)
INTERNAL_LINK = '[ge_internal_link url="https://geteducated.com/online-degrees/"]degree guide[/ge_internal_link]'
MORE_LINKS = (
    '[ge_internal_link url="https://geteducated.com/tuition/"]tuition costs[/ge_internal_link]',
    '[ge_internal_link url="https://geteducated.com/rankings/"]school rankings[/ge_internal_link]',
)
HEADINGS = ("Why it works", "How to start", "What comes next")

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_body(blocks: int = 25, link: bool = True) -> str:
    """Paragraphs of BLOCK in three H2 sections, closing with three internal links."""
    starts = {i * blocks // len(HEADINGS): h for i, h in enumerate(HEADINGS)} if blocks >= len(HEADINGS) else {}
    parts = []
    for i in range(blocks):
        if i in starts:
            parts.append(f"<h2>{starts[i]}</h2>")
        parts.append(f"<p>{BLOCK}</p>")
    if link:
        parts.append(f"<p>Start with our {INTERNAL_LINK}, check {MORE_LINKS[0]} and see {MORE_LINKS[1]}.</p>")
    return "\n".join(parts)


def make_article(article_id: str = "art_1", **overrides) -> Article:
    values = {
        "id": article_id,
        "title": GOOD_TITLE,
        "body": make_body(),
        "target_keywords": list(KEYWORDS),
        "meta_description": GOOD_META,
    }
    values.update(overrides)
    return Article(**values)


@pytest.fixture
def config():
    return LifecycleConfig(
        sla_days=5,
        site_domain=SITE_DOMAIN,
        affiliate_domains=list(AFFILIATE_DOMAINS),
    )


@pytest.fixture
def good_article():
    return make_article()


@pytest.fixture
def pending_article():
    return make_article(status=ArticleStatus.PENDING_REVIEW)
