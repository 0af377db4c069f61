"""Tests for the lifecycle state machine, review actions and the SLA sweep."""

from datetime import timedelta
from unittest.mock import patch

import pytest
import responses

from perdia.article_store import ArticleStore, StateConflictError
from perdia.config import LifecycleConfig
from perdia.duplicate_detector import Corpus
from perdia.lifecycle_engine import (
    TRANSITIONS,
    InvalidTransitionError,
    LifecycleEngine,
    can_transition,
)
from perdia.models import ArticleStatus, ContentIdea, IdeaStatus, ValidationStatus
from perdia.wp_publisher import WordPressPublisher

from conftest import NOW, SITE_DOMAIN, make_article, make_body

BASE_URL = "https://test.geteducated.com"
POSTS_URL = f"{BASE_URL}/wp-json/wp/v2/posts"


@pytest.fixture
def store(tmp_path):
    return ArticleStore(str(tmp_path / "state.yaml"))


@pytest.fixture
def engine(store, config):
    return LifecycleEngine(store, config=config)


@pytest.fixture
def publishing_engine(store, config):
    publisher = WordPressPublisher(BASE_URL, "testuser", "test-pass")
    return LifecycleEngine(store, config=config, publisher=publisher)


def add_pending(store, article_id="art_1", due=NOW - timedelta(hours=1), **overrides):
    return store.add_article(make_article(
        article_id, status=ArticleStatus.PENDING_REVIEW, auto_approve_at=due, **overrides,
    ))


def add_short_pending(store, article_id="short", **overrides):
    # 11 blocks + link sentence: roughly 500 words, half the minimum
    return add_pending(store, article_id, body=make_body(blocks=11), **overrides)


class TestTransitionTable:
    @pytest.mark.parametrize("src,dst", [
        ("idea", "generating"),
        ("generating", "draft"),
        ("draft", "pending_review"),
        ("pending_review", "approved"),
        ("pending_review", "needs_revision"),
        ("pending_review", "rejected"),
        ("needs_revision", "draft"),
        ("needs_revision", "pending_review"),
        ("approved", "published"),
    ])
    def test_allowed(self, src, dst):
        assert can_transition(src, dst)

    @pytest.mark.parametrize("src,dst", [
        ("idea", "draft"),
        ("draft", "approved"),
        ("approved", "rejected"),
        ("pending_review", "published"),
    ])
    def test_not_allowed(self, src, dst):
        assert not can_transition(src, dst)

    def test_terminal_states(self):
        assert TRANSITIONS[ArticleStatus.REJECTED] == set()
        assert TRANSITIONS[ArticleStatus.PUBLISHED] == set()
        assert all(status in TRANSITIONS for status in ArticleStatus)


class TestGeneration:
    def test_idea_to_pending_review(self, engine, store):
        store.add_idea(ContentIdea(id="idea_1", title="Online MBA Guide", keywords={"online mba"}))
        article = engine.create_article_from_idea("idea_1")
        assert article.status == ArticleStatus.IDEA
        assert article.target_keywords == ["online mba"]

        engine.start_generation(article.id)
        markdown_body = (
            "# Online MBA Guide\n\n"
            "Compare the [MBA programs](/courses/mba) and the "
            "[federal data](https://nces.gov/data).\n"
        )
        pending = engine.complete_generation(
            article.id, title="Online MBA Guide", body=markdown_body, body_format="markdown", now=NOW,
        )

        assert pending.status == ArticleStatus.PENDING_REVIEW
        assert pending.auto_approve_at == NOW + timedelta(days=5)
        assert "<h1>Online MBA Guide</h1>" in pending.body
        assert '[ge_internal_link url="https://geteducated.com/courses/mba"]MBA programs[/ge_internal_link]' in pending.body
        assert '[ge_external_link url="https://nces.gov/data"]federal data[/ge_external_link]' in pending.body
        assert "<a " not in pending.body
        assert pending.slug == "online-mba-guide"
        assert store.get_idea("idea_1").status == IdeaStatus.COMPLETED

    def test_idea_consumed_once(self, engine, store):
        store.add_idea(ContentIdea(id="idea_1", title="Online MBA Guide"))
        engine.create_article_from_idea("idea_1")
        with pytest.raises(StateConflictError):
            engine.create_article_from_idea("idea_1")

    def test_complete_generation_requires_generating(self, engine, store):
        store.add_article(make_article(status=ArticleStatus.IDEA))
        with pytest.raises(InvalidTransitionError):
            engine.complete_generation("art_1", body="<p>x</p>")

    def test_unknown_body_format(self, engine, store):
        store.add_article(make_article(status=ArticleStatus.GENERATING))
        with pytest.raises(ValueError):
            engine.complete_generation("art_1", body="x", body_format="rtf")


class TestReviewActions:
    def test_approve_valid_article(self, engine, store):
        add_pending(store, due=NOW + timedelta(days=3))
        article = engine.approve("art_1", reviewer="tony", notes="Great", now=NOW)

        assert article.status == ArticleStatus.APPROVED
        assert article.validation_status == ValidationStatus.VALID
        assert article.validation_errors == []
        assert article.auto_approve_at is None
        assert article.auto_approved is False
        assert article.approved_at == NOW
        assert article.editor_score == 100
        feedback = store.feedback_for("art_1")
        assert feedback[-1]["kind"] == "approved"
        assert feedback[-1]["payload"]["method"] == "manual"

    def test_approve_invalid_article_rejects(self, engine, store):
        add_short_pending(store)
        article = engine.approve("short", now=NOW)

        assert article.status == ArticleStatus.REJECTED
        assert article.validation_status == ValidationStatus.INVALID
        assert [e.code for e in article.validation_errors] == ["word_count"]
        assert article.auto_approve_at is None

    def test_approve_requires_pending_review(self, engine, store):
        store.add_article(make_article(status=ArticleStatus.DRAFT))
        with pytest.raises(InvalidTransitionError):
            engine.approve("art_1")

    def test_revision_cycle(self, engine, store):
        add_pending(store)
        revised = engine.request_revision("art_1", "Add tuition data", reviewer="tony")
        assert revised.status == ArticleStatus.NEEDS_REVISION
        assert revised.reviewer_notes == "Add tuition data"
        assert revised.auto_approve_at is None

        draft = engine.revise_draft("art_1", body=make_body() + '<p><a href="/tuition">tuition</a></p>')
        assert draft.status == ArticleStatus.DRAFT
        assert "[ge_internal_link url=\"https://geteducated.com/tuition\"]" in draft.body

        pending = engine.submit_for_review("art_1", now=NOW)
        assert pending.status == ArticleStatus.PENDING_REVIEW
        assert pending.auto_approve_at == NOW + timedelta(days=5)

    def test_reject_keeps_reason_out_of_validation_errors(self, engine, store):
        add_pending(store)
        article = engine.reject("art_1", "Off topic")
        assert article.status == ArticleStatus.REJECTED
        assert article.reviewer_notes == "Off topic"
        assert article.validation_errors == []

    def test_terminal_states_are_final(self, engine, store):
        add_pending(store)
        engine.reject("art_1", "Off topic")
        with pytest.raises(InvalidTransitionError):
            engine.request_revision("art_1", "again")

    @responses.activate
    def test_approve_publishes_immediately(self, publishing_engine, store):
        responses.add(responses.POST, POSTS_URL, json={"id": 77, "link": f"{BASE_URL}/p77/"}, status=201)
        add_pending(store)
        article = publishing_engine.approve("art_1", now=NOW)

        assert article.status == ArticleStatus.PUBLISHED
        assert article.published_post_id == 77
        assert article.published_url == f"{BASE_URL}/p77/"
        assert article.published_at == NOW
        assert article.publish_claimed_at is None

    @responses.activate
    def test_approve_publish_failure_stays_approved(self, publishing_engine, store):
        responses.add(responses.POST, POSTS_URL, json={"message": "boom"}, status=500)
        add_pending(store)
        article = publishing_engine.approve("art_1", now=NOW)

        assert article.status == ArticleStatus.APPROVED
        assert article.publish_error.code == "publish_remote"
        assert article.publish_error.details["status_code"] == 500
        assert article.published_post_id is None
        assert article.publish_claimed_at is None


class TestSlaSweep:
    def test_approves_and_rejects_due_articles(self, engine, store):
        add_pending(store, "good")
        add_short_pending(store)
        add_pending(store, "future", due=NOW + timedelta(hours=2))

        result = engine.run_sla_sweep(NOW)

        assert (result.approved, result.failed) == (1, 1)
        assert store.get_article("good").status == ArticleStatus.APPROVED
        assert store.get_article("good").auto_approved is True
        assert store.get_article("future").status == ArticleStatus.PENDING_REVIEW
        assert [e["article_id"] for e in result.errors] == ["short"]
        assert result.errors[0]["stage"] == "validation"

    def test_short_article_never_auto_approved(self, engine, store):
        add_short_pending(store, due=NOW - timedelta(days=10))
        engine.run_sla_sweep(NOW)

        article = store.get_article("short")
        assert article.status == ArticleStatus.REJECTED
        assert article.validation_errors[0].code == "word_count"
        assert "too short" in article.validation_errors[0].message

    def test_second_run_is_a_no_op(self, engine, store):
        add_pending(store, "good")
        add_short_pending(store)
        engine.run_sla_sweep(NOW)

        again = engine.run_sla_sweep(NOW)
        assert (again.approved, again.failed) == (0, 0)
        assert again.errors == []

    def test_batch_is_bounded(self, store):
        engine = LifecycleEngine(store, config=LifecycleConfig(site_domain=SITE_DOMAIN, sweep_batch_size=2))
        for i in range(3):
            add_pending(store, f"art_{i}", due=NOW - timedelta(hours=3 - i))

        assert engine.run_sla_sweep(NOW).approved == 2
        assert store.get_article("art_2").status == ArticleStatus.PENDING_REVIEW

    def test_batch_size_capped_at_fifty(self):
        assert LifecycleConfig(sweep_batch_size=500).sweep_batch_size == 50

    def test_concurrent_review_is_skipped(self, engine, store, monkeypatch):
        add_pending(store)
        stale = store.due_for_auto_approval(NOW, 50)
        engine.reject("art_1", "Reviewer got there first")
        monkeypatch.setattr(store, "due_for_auto_approval", lambda now, limit: stale)

        result = engine.run_sla_sweep(NOW)

        assert (result.approved, result.failed, result.skipped) == (0, 0, 1)
        assert result.errors == []
        assert store.get_article("art_1").status == ArticleStatus.REJECTED

    def test_one_failure_does_not_abort_batch(self, engine, store):
        add_pending(store, "boom", due=NOW - timedelta(hours=2))
        add_pending(store, "fine")
        real_validate = engine.validator.validate

        def flaky(article, min_word_count=None):
            if article.id == "boom":
                raise RuntimeError("validator crashed")
            return real_validate(article, min_word_count)

        with patch.object(engine.validator, "validate", side_effect=flaky):
            result = engine.run_sla_sweep(NOW)

        assert result.approved == 1
        assert result.errors[0]["article_id"] == "boom"
        assert "validator crashed" in result.errors[0]["errors"][0]
        assert store.get_article("boom").status == ArticleStatus.PENDING_REVIEW

    def test_records_run(self, engine, store):
        engine.run_sla_sweep(NOW)
        assert store.get_last_run() == NOW.isoformat()

    @responses.activate
    def test_publish_500_retried_next_sweep(self, publishing_engine, store):
        responses.add(responses.POST, POSTS_URL, json={"message": "Internal error"}, status=500)
        add_pending(store)

        first = publishing_engine.run_sla_sweep(NOW)
        article = store.get_article("art_1")
        assert (first.approved, first.published, first.publish_failed) == (1, 0, 1)
        assert article.status == ArticleStatus.APPROVED
        assert article.publish_error.code == "publish_remote"
        assert first.errors[0]["stage"] == "publish"
        # Not retried within the same sweep
        assert len(responses.calls) == 1

        responses.replace(responses.POST, POSTS_URL, json={"id": 9, "link": f"{BASE_URL}/p9/"}, status=201)
        second = publishing_engine.run_sla_sweep(NOW + timedelta(hours=1))
        article = store.get_article("art_1")
        assert (second.approved, second.failed, second.published) == (0, 0, 1)
        assert article.status == ArticleStatus.PUBLISHED
        assert article.publish_error is None
        assert article.publish_attempts == 2

    @responses.activate
    def test_publish_in_progress_not_claimed_twice(self, publishing_engine, store):
        responses.add(responses.POST, POSTS_URL, json={"id": 5, "link": "x"}, status=201)
        store.add_article(make_article(status=ArticleStatus.APPROVED))
        real_create = publishing_engine.publisher.create_post

        def create_and_race(article, status=None):
            with pytest.raises(StateConflictError):
                publishing_engine.publish("art_1", now=NOW)
            return real_create(article, status)

        with patch.object(publishing_engine.publisher, "create_post", side_effect=create_and_race):
            result = publishing_engine.publish("art_1", now=NOW)

        assert result.ok
        assert len(responses.calls) == 1
        assert store.get_article("art_1").status == ArticleStatus.PUBLISHED

    def test_sla_status(self, engine, store):
        add_pending(store, due=NOW + timedelta(days=2))
        status = engine.sla_status("art_1", now=NOW)
        assert status.pending is True
        assert status.days_pending == 3
        assert status.days_remaining == 2
        assert status.eligible is False

        assert engine.sla_status("art_1", now=NOW + timedelta(days=3)).eligible is True

    def test_sla_status_not_pending(self, engine, store):
        store.add_article(make_article(status=ArticleStatus.DRAFT))
        assert engine.sla_status("art_1", now=NOW).pending is False


class TestExposedHelpers:
    def test_validate_is_read_only(self, engine, store):
        add_pending(store)
        before = store.get_article("art_1").version
        report = engine.validate("art_1")
        assert report.valid
        assert store.get_article("art_1").version == before

    def test_transform_links(self, engine):
        content, stats = engine.transform_links('<a href="https://partner-lms.org/course">c</a>')
        assert content.startswith("[ge_affiliate_link")
        assert stats.affiliate == 1

    def test_classify_duplicate(self, engine):
        idea = ContentIdea(id="i1", title="Best Online MBA Programs 2026")
        assert engine.classify_duplicate(idea, Corpus(titles=["Best Online MBA Programs Ranked"])) is True
        assert engine.classify_duplicate(idea, Corpus()) is False

    def test_next_candidate_skips_duplicates(self, engine, store):
        store.add_article(make_article("existing", title="Best Online MBA Programs Ranked"))
        store.add_idea(ContentIdea(id="dup", title="Best Online MBA Programs for 2026"))
        store.add_idea(ContentIdea(id="fresh", title="Financial Aid for Adult Learners"))

        assert engine.next_generation_candidate().id == "fresh"
        assert store.get_idea("dup").status == IdeaStatus.PENDING

    def test_older_of_two_similar_queued_ideas_is_picked(self, engine, store):
        store.add_idea(ContentIdea(id="first", title="Cheapest Online Nursing Degrees",
                                   created_at=NOW - timedelta(days=2)))
        store.add_idea(ContentIdea(id="second", title="Cheapest Online Nursing Degrees Ranked",
                                   created_at=NOW - timedelta(days=1)))

        assert engine.next_generation_candidate().id == "first"

        store.claim_idea("first", "art_first")
        assert engine.next_generation_candidate() is None

    def test_next_candidate_none_left(self, engine, store):
        store.add_idea(ContentIdea(id="done", title="Done", status=IdeaStatus.COMPLETED))
        assert engine.next_generation_candidate() is None
