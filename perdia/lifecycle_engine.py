"""Lifecycle Engine — article state machine, review actions and the SLA auto-approval sweep.

    idea -> generating -> draft -> pending_review -> approved -> published
                                         |  ^
                                         v  |
                               needs_revision    rejected

Every status change is a compare-and-set against the store, so a reviewer and
the hourly sweep can act on the same article without double-approving or
double-publishing it. Approval, human or automatic, always runs the
validator first; content that fails the hard gate is rejected with its
errors attached instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import markdown as md_lib
from slugify import slugify

from perdia.article_store import ArticleStore, StateConflictError, new_id
from perdia.config import LifecycleConfig
from perdia.content_validator import ContentValidator, ValidationReport
from perdia.duplicate_detector import Corpus, DuplicateContentError, DuplicateDetector
from perdia.link_classifier import LinkClassifier
from perdia.models import (
    Article,
    ArticleStatus,
    ContentIdea,
    IdeaStatus,
    ValidationStatus,
    utcnow,
)
from perdia.shortcode_codec import DecodeOptions, ShortcodeCodec, TransformStats
from perdia.text_metrics import count_words, strip_markup
from perdia.wp_publisher import PublishResult, WordPressPublisher

log = logging.getLogger(__name__)

TRANSITIONS: dict[ArticleStatus, set[ArticleStatus]] = {
    ArticleStatus.IDEA: {ArticleStatus.GENERATING},
    ArticleStatus.GENERATING: {ArticleStatus.DRAFT},
    ArticleStatus.DRAFT: {ArticleStatus.PENDING_REVIEW},
    ArticleStatus.PENDING_REVIEW: {
        ArticleStatus.APPROVED,
        ArticleStatus.NEEDS_REVISION,
        ArticleStatus.REJECTED,
    },
    ArticleStatus.NEEDS_REVISION: {ArticleStatus.DRAFT, ArticleStatus.PENDING_REVIEW},
    ArticleStatus.APPROVED: {ArticleStatus.PUBLISHED},
    ArticleStatus.REJECTED: set(),
    ArticleStatus.PUBLISHED: set(),
}

METHOD_MANUAL = "manual"
METHOD_AUTO = "auto_approve"

# A publish claim older than this is assumed to belong to a crashed run
PUBLISH_LEASE = timedelta(minutes=15)


class InvalidTransitionError(Exception):
    """Requested a status change the state machine does not allow."""

    def __init__(self, article_id: str, from_status: ArticleStatus, to_status: ArticleStatus):
        self.article_id = article_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move article {article_id} from {from_status.value} to {to_status.value}"
        )


def can_transition(from_status: ArticleStatus | str, to_status: ArticleStatus | str) -> bool:
    return ArticleStatus(to_status) in TRANSITIONS[ArticleStatus(from_status)]


@dataclass
class SweepResult:
    approved: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    skipped: int = 0
    published: int = 0
    publish_failed: int = 0

    def as_dict(self) -> dict:
        return {
            "approved": self.approved,
            "failed": self.failed,
            "skipped": self.skipped,
            "published": self.published,
            "publish_failed": self.publish_failed,
            "errors": list(self.errors),
        }


@dataclass
class SlaStatus:
    article_id: str
    status: ArticleStatus
    pending: bool
    days_pending: float | None = None
    days_remaining: float | None = None
    eligible: bool = False


def _item_error(article: Article, stage: str, messages: list[str]) -> dict:
    return {"article_id": article.id, "title": article.title, "stage": stage, "errors": messages}


class LifecycleEngine:
    """Drives articles through review and publishing."""

    def __init__(self, store: ArticleStore, validator: ContentValidator | None = None,
                 codec: ShortcodeCodec | None = None, publisher: WordPressPublisher | None = None,
                 config: LifecycleConfig | None = None, detector: DuplicateDetector | None = None):
        self.store = store
        self.config = config or LifecycleConfig()
        self.codec = codec or ShortcodeCodec(
            LinkClassifier(self.config.site_domain, self.config.affiliate_domains),
            DecodeOptions(
                open_in_new_tab=self.config.open_external_in_new_tab,
                nofollow=self.config.nofollow_external,
            ),
        )
        self.validator = validator or ContentValidator(
            self.codec,
            min_word_count=self.config.min_word_count,
            min_word_count_by_type=self.config.min_word_count_by_type,
            max_word_count=self.config.max_word_count,
        )
        self.detector = detector or DuplicateDetector(
            prefix_length=self.config.duplicate_prefix_length,
            keyword_overlap_threshold=self.config.duplicate_keyword_threshold,
            title_similarity_threshold=self.config.duplicate_title_similarity,
        )
        self.publisher = publisher

    @classmethod
    def from_config(cls, config: LifecycleConfig, publisher: WordPressPublisher | None = None) -> "LifecycleEngine":
        return cls(ArticleStore(config.state_path), publisher=publisher, config=config)

    # ------------------------------------------------------------------
    # Core transition
    # ------------------------------------------------------------------

    def _transition(self, article: Article, to_status: ArticleStatus,
                    expected_version: int | None = None, **changes) -> Article:
        """Move an article to to_status if it is still where the caller saw it."""
        if not can_transition(article.status, to_status):
            raise InvalidTransitionError(article.id, article.status, to_status)
        if to_status != ArticleStatus.PENDING_REVIEW:
            changes.setdefault("auto_approve_at", None)

        updated = self.store.compare_and_set(
            article.id, article.status, expected_version, status=to_status, **changes
        )
        log.info(
            f"Article {article.id}: {article.status.value} -> {to_status.value}",
            extra={"article_id": article.id, "status": to_status.value},
        )
        return updated

    def _sla_deadline(self, now: datetime) -> datetime:
        return now + timedelta(days=self.config.sla_days)

    def _prepare_body(self, body: str, body_format: str) -> str:
        if body_format == "markdown":
            body = md_lib.markdown(body or "", extensions=["tables", "fenced_code"])
        elif body_format != "html":
            raise ValueError(f"Unsupported body format: {body_format}")
        encoded, stats = self.codec.encode(body or "")
        log.debug(f"Encoded links: {stats.as_dict()}")
        return encoded

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def create_article_from_idea(self, idea_id: str, content_type: str = "new_article") -> Article:
        """Consume an idea into a new article in the ``idea`` state."""
        idea = self.store.get_idea(idea_id)
        article_id = new_id("art_")
        self.store.claim_idea(idea_id, article_id)
        article = Article(
            id=article_id,
            title=idea.title,
            status=ArticleStatus.IDEA,
            content_type=content_type,
            target_keywords=sorted(idea.keywords),
            idea_id=idea.id,
        )
        stored = self.store.add_article(article)
        log.info(f"Created article {article_id} from idea {idea_id}: {idea.title}",
                 extra={"article_id": article_id, "status": stored.status.value})
        return stored

    def start_generation(self, article_id: str) -> Article:
        article = self.store.get_article(article_id)
        return self._transition(article, ArticleStatus.GENERATING)

    def complete_generation(self, article_id: str, title: str | None = None, body: str = "",
                            body_format: str = "html", meta_description: str | None = None,
                            target_keywords: list[str] | None = None,
                            featured_image_url: str | None = None,
                            now: datetime | None = None) -> Article:
        """Store generated content and queue the article for review.

        Markdown bodies are converted to HTML, then every link is encoded as a
        shortcode. The article goes generating -> draft -> pending_review and
        gets its auto-approval deadline.
        """
        article = self.store.get_article(article_id)
        if not can_transition(article.status, ArticleStatus.DRAFT):
            raise InvalidTransitionError(article.id, article.status, ArticleStatus.DRAFT)

        title = (title or article.title).strip()
        encoded = self._prepare_body(body, body_format)
        changes = {
            "title": title,
            "body": encoded,
            "slug": slugify(title, max_length=60),
            "word_count": count_words(strip_markup(encoded)),
            "validation_status": ValidationStatus.UNCHECKED,
            "validation_errors": [],
        }
        if meta_description is not None:
            changes["meta_description"] = meta_description.strip()
        if target_keywords is not None:
            changes["target_keywords"] = list(target_keywords)
        if featured_image_url is not None:
            changes["featured_image_url"] = featured_image_url

        draft = self._transition(article, ArticleStatus.DRAFT, **changes)
        if draft.idea_id:
            self.store.update_idea_status(draft.idea_id, IdeaStatus.COMPLETED)
        return self.submit_for_review(draft.id, now=now)

    def submit_for_review(self, article_id: str, now: datetime | None = None) -> Article:
        now = now or utcnow()
        article = self.store.get_article(article_id)
        deadline = self._sla_deadline(now)
        updated = self._transition(article, ArticleStatus.PENDING_REVIEW, auto_approve_at=deadline)
        log.info(f"Article {article_id} auto-approves at {deadline.isoformat()}",
                 extra={"article_id": article_id, "status": updated.status.value})
        return updated

    def revise_draft(self, article_id: str, title: str | None = None, body: str | None = None,
                     body_format: str = "html", meta_description: str | None = None) -> Article:
        """Bring a needs_revision article back to draft with new content."""
        article = self.store.get_article(article_id)
        changes = {
            "validation_status": ValidationStatus.UNCHECKED,
            "validation_errors": [],
        }
        if title is not None:
            changes["title"] = title.strip()
        if body is not None:
            encoded = self._prepare_body(body, body_format)
            changes["body"] = encoded
            changes["word_count"] = count_words(strip_markup(encoded))
        if meta_description is not None:
            changes["meta_description"] = meta_description.strip()
        return self._transition(article, ArticleStatus.DRAFT, **changes)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    @staticmethod
    def _summary_fields(report: ValidationReport) -> dict:
        return {
            "word_count": report.word_count,
            "editor_score": report.seo_score,
            "risk_flags": set(report.risk_flags),
        }

    def _approve(self, article: Article, now: datetime, method: str,
                 reviewer: str = "", notes: str = "") -> Article:
        """Validate then approve, or reject with the validation errors attached.

        Both outcomes are conditional on the article being unchanged since it
        was read, so content edited mid-review is never approved unseen.
        """
        report = self.validator.validate(article)
        summary = self._summary_fields(report)

        if not report.valid:
            rejected = self._transition(
                article,
                ArticleStatus.REJECTED,
                expected_version=article.version,
                validation_status=ValidationStatus.INVALID,
                validation_errors=report.errors,
                **summary,
            )
            self.store.record_feedback(article.id, "validation_rejected", {
                "method": method,
                "reviewer": reviewer,
                "errors": [e.message for e in report.errors],
            })
            log.warning(
                f"Article {article.id} failed validation and was rejected: "
                f"{'; '.join(e.message for e in report.errors)}",
                extra={"article_id": article.id, "status": rejected.status.value},
            )
            return rejected

        changes = {
            "validation_status": ValidationStatus.VALID,
            "validation_errors": [],
            "approved_at": now,
            "auto_approved": method == METHOD_AUTO,
            **summary,
        }
        if notes:
            changes["reviewer_notes"] = notes
        approved = self._transition(
            article, ArticleStatus.APPROVED, expected_version=article.version, **changes
        )
        self.store.record_feedback(article.id, "approved", {
            "method": method,
            "reviewer": reviewer,
            "notes": notes,
            "seo_score": report.seo_score,
        })
        return approved

    def approve(self, article_id: str, reviewer: str = "", notes: str = "",
                now: datetime | None = None) -> Article:
        """Human approval. Publishes immediately when a publisher is configured.

        Returns the article in its resulting state: rejected if validation
        failed, approved if publishing failed (with publish_error set), or
        published.
        """
        now = now or utcnow()
        article = self.store.get_article(article_id)
        if article.status != ArticleStatus.PENDING_REVIEW:
            raise InvalidTransitionError(article.id, article.status, ArticleStatus.APPROVED)

        approved = self._approve(article, now, METHOD_MANUAL, reviewer=reviewer, notes=notes)
        if approved.status == ArticleStatus.APPROVED and self.publisher:
            self.publish(approved.id, now=now)
        return self.store.get_article(article_id)

    def request_revision(self, article_id: str, notes: str, reviewer: str = "") -> Article:
        article = self.store.get_article(article_id)
        updated = self._transition(article, ArticleStatus.NEEDS_REVISION, reviewer_notes=notes)
        self.store.record_feedback(article_id, "revision_requested", {
            "method": METHOD_MANUAL, "reviewer": reviewer, "notes": notes,
        })
        return updated

    def reject(self, article_id: str, reason: str, reviewer: str = "") -> Article:
        article = self.store.get_article(article_id)
        updated = self._transition(article, ArticleStatus.REJECTED, reviewer_notes=reason)
        self.store.record_feedback(article_id, "rejected", {
            "method": METHOD_MANUAL, "reviewer": reviewer, "reason": reason,
        })
        return updated

    # ------------------------------------------------------------------
    # Exposed helpers
    # ------------------------------------------------------------------

    def validate(self, article_or_id: Article | str) -> ValidationReport:
        """Run the validator without changing anything."""
        article = article_or_id
        if not isinstance(article_or_id, Article):
            article = self.store.get_article(article_or_id)
        return self.validator.validate(article)

    def transform_links(self, html: str, preserve_existing: bool = False) -> tuple[str, TransformStats]:
        return self.codec.encode(html, preserve_existing=preserve_existing)

    def classify_duplicate(self, idea: ContentIdea, corpus: Corpus) -> bool:
        return self.detector.is_duplicate(idea, corpus)

    def next_generation_candidate(self, corpus: Corpus | None = None) -> ContentIdea | None:
        """Oldest unconsumed pending/approved idea that isn't a duplicate.

        Duplicates are skipped, not failed; they stay in the queue. Without a
        corpus, each idea is compared against every article, every idea that
        has left the queue and the queued ideas ahead of it, so of two
        near-identical queued ideas the older one is still picked.
        """
        ideas = self.store.list_ideas()
        articles = self.store.list_articles() if corpus is None else []

        def queued(idea: ContentIdea) -> bool:
            return idea.status in (IdeaStatus.PENDING, IdeaStatus.APPROVED) and not idea.article_id

        for position, idea in enumerate(ideas):
            if not queued(idea):
                continue
            against = corpus
            if against is None:
                known = ideas[:position] + [other for other in ideas[position + 1:] if not queued(other)]
                against = Corpus.from_records(articles, known)
            try:
                self.detector.ensure_unique(idea, against)
            except DuplicateContentError as e:
                log.info(f"Skipping idea {idea.id}: {e}")
                continue
            return idea
        return None

    def sla_status(self, article_id: str, now: datetime | None = None) -> SlaStatus:
        now = now or utcnow()
        article = self.store.get_article(article_id)
        if article.status != ArticleStatus.PENDING_REVIEW or article.auto_approve_at is None:
            return SlaStatus(article.id, article.status, pending=False)

        submitted = article.auto_approve_at - timedelta(days=self.config.sla_days)
        days_pending = (now - submitted).total_seconds() / 86400
        days_remaining = (article.auto_approve_at - now).total_seconds() / 86400
        return SlaStatus(
            article.id,
            article.status,
            pending=True,
            days_pending=round(max(0.0, days_pending), 2),
            days_remaining=round(max(0.0, days_remaining), 2),
            eligible=article.auto_approve_at <= now,
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, article_id: str, now: datetime | None = None) -> PublishResult:
        """Publish an approved article.

        The attempt is claimed with a versioned compare-and-set that stamps
        publish_claimed_at, so only one caller can be publishing an article
        at a time; a claim older than PUBLISH_LEASE is treated as abandoned.
        On failure the article stays approved with the error recorded for
        the next sweep to retry.
        """
        if self.publisher is None:
            raise RuntimeError("No publisher configured")
        now = now or utcnow()
        article = self.store.get_article(article_id)
        if article.status != ArticleStatus.APPROVED:
            raise InvalidTransitionError(article.id, article.status, ArticleStatus.PUBLISHED)
        if article.publish_claimed_at and utcnow() - article.publish_claimed_at < PUBLISH_LEASE:
            raise StateConflictError(article.id, f"Article {article.id} is already being published")

        claimed = self.store.compare_and_set(
            article.id,
            ArticleStatus.APPROVED,
            expected_version=article.version,
            publish_attempts=article.publish_attempts + 1,
            publish_error=None,
            publish_claimed_at=utcnow(),
        )

        result = self.publisher.create_post(claimed)
        if result.ok:
            self._transition(
                claimed,
                ArticleStatus.PUBLISHED,
                expected_version=claimed.version,
                published_post_id=result.post.id,
                published_url=result.post.url,
                published_at=now,
                publish_error=None,
                publish_claimed_at=None,
            )
            self.store.record_feedback(article.id, "published", {
                "post_id": result.post.id, "url": result.post.url,
            })
        else:
            self.store.compare_and_set(
                article.id,
                ArticleStatus.APPROVED,
                expected_version=claimed.version,
                publish_error=result.error.to_error_record(),
                publish_claimed_at=None,
            )
            log.warning(
                f"Article {article.id} stays approved, publish attempt "
                f"{claimed.publish_attempts} failed: {result.error}",
                extra={"article_id": article.id, "status": ArticleStatus.APPROVED.value},
            )
        return result

    # ------------------------------------------------------------------
    # SLA sweep
    # ------------------------------------------------------------------

    def run_sla_sweep(self, now: datetime | None = None) -> SweepResult:
        """Auto-approve (or reject) every overdue pending_review article in one bounded batch.

        Each article is handled on its own: a validation or publish failure is
        recorded in the result and the batch carries on. Articles another
        actor already moved are skipped. Approved articles whose earlier
        publish failed are retried afterwards; the retries only affect the
        published / publish_failed counts.
        """
        now = now or utcnow()
        result = SweepResult()
        attempted: set[str] = set()

        due = self.store.due_for_auto_approval(now, self.config.sweep_batch_size)
        log.info(f"SLA sweep: {len(due)} article(s) past their review deadline")

        for article in due:
            try:
                updated = self._approve(article, now, METHOD_AUTO)
            except (StateConflictError, InvalidTransitionError) as e:
                result.skipped += 1
                log.info(f"Skipping article {article.id}: {e}", extra={"article_id": article.id})
                continue
            except Exception as e:
                log.exception(f"Auto-approval failed for article {article.id}: {e}",
                              extra={"article_id": article.id})
                result.errors.append(_item_error(article, "approve", [str(e)]))
                continue

            if updated.status == ArticleStatus.REJECTED:
                result.failed += 1
                result.errors.append(
                    _item_error(updated, "validation", [e.message for e in updated.validation_errors])
                )
                continue

            result.approved += 1
            if self.publisher:
                attempted.add(updated.id)
                self._sweep_publish(updated, now, result)

        if self.publisher:
            for article in self.store.awaiting_publish_retry(self.config.sweep_batch_size):
                if article.id in attempted:
                    continue
                self._sweep_publish(article, now, result)

        self.store.record_run(now)
        log.info(
            f"SLA sweep done: approved={result.approved} failed={result.failed} "
            f"skipped={result.skipped} published={result.published} "
            f"publish_failed={result.publish_failed}"
        )
        return result

    def _sweep_publish(self, article: Article, now: datetime, result: SweepResult):
        try:
            outcome = self.publish(article.id, now=now)
        except (StateConflictError, InvalidTransitionError) as e:
            log.info(f"Publish of article {article.id} skipped: {e}", extra={"article_id": article.id})
            return
        except Exception as e:
            log.exception(f"Publish crashed for article {article.id}: {e}", extra={"article_id": article.id})
            result.publish_failed += 1
            result.errors.append(_item_error(article, "publish", [str(e)]))
            return

        if outcome.ok:
            result.published += 1
        else:
            result.publish_failed += 1
            result.errors.append(_item_error(article, "publish", [str(outcome.error)]))
