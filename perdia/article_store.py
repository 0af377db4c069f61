"""Article Store — persists articles, ideas and review feedback to YAML.

Every status change goes through compare_and_set so the SLA sweep and a
reviewer acting at the same moment cannot both move the same article.
Reads always return copies; the only way to change a record is through the
store. File-backed stores serialize every reload-check-write on
``<state_path>.lock`` so separate processes sharing one file (the hourly
sweep and a reviewer script) cannot interleave.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime

import yaml
from filelock import FileLock

from perdia.models import Article, ArticleStatus, ContentIdea, IdeaStatus, utcnow

log = logging.getLogger(__name__)

_ARTICLE_FIELDS = {f.name for f in fields(Article)}
# Only the lifecycle engine moves these, and only via compare_and_set
_GUARDED_FIELDS = {"status", "auto_approve_at"}
# Maintained by the store itself
_MANAGED_FIELDS = {"id", "version", "updated_at"}


class StateConflictError(Exception):
    """The record was changed by someone else since the caller last read it."""

    def __init__(self, record_id: str, message: str):
        self.record_id = record_id
        super().__init__(message)


class ArticleNotFoundError(KeyError):
    pass


class IdeaNotFoundError(KeyError):
    pass


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


class ArticleStore:
    """YAML-backed store for articles and ideas. In-memory only when no path is given."""

    def __init__(self, state_path: str | None = "data/lifecycle_state.yaml"):
        self.state_path = state_path
        self._lock = threading.RLock()
        self._file_lock = None
        if state_path:
            os.makedirs(os.path.dirname(state_path) or ".", exist_ok=True)
            self._file_lock = FileLock(f"{state_path}.lock")
        self._articles: dict[str, Article] = {}
        self._ideas: dict[str, ContentIdea] = {}
        self._feedback: list[dict] = []
        self._last_run: str | None = None
        with self._locked():
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self):
        if not self.state_path or not os.path.exists(self.state_path):
            return
        with open(self.state_path) as f:
            state = yaml.safe_load(f) or {}
        self._articles = {
            article_id: Article.from_dict(data)
            for article_id, data in (state.get("articles") or {}).items()
        }
        self._ideas = {
            idea_id: ContentIdea.from_dict(data)
            for idea_id, data in (state.get("ideas") or {}).items()
        }
        self._feedback = list(state.get("feedback") or [])
        self._last_run = state.get("last_run")

    @contextmanager
    def _locked(self):
        """Hold the thread lock and, for file-backed stores, the cross-process file lock."""
        with self._lock:
            if self._file_lock is None:
                yield
                return
            with self._file_lock:
                yield

    def _save(self):
        if not self.state_path:
            return
        state = {
            "articles": {a.id: a.to_dict() for a in self._articles.values()},
            "ideas": {i.id: i.to_dict() for i in self._ideas.values()},
            "feedback": self._feedback,
            "last_run": self._last_run,
        }
        os.makedirs(os.path.dirname(self.state_path) or ".", exist_ok=True)
        tmp_path = f"{self.state_path}.tmp"
        with open(tmp_path, "w") as f:
            yaml.safe_dump(state, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        os.replace(tmp_path, self.state_path)

    def reload(self):
        """Re-read state written by other processes (e.g. a reviewer script during a sweep)."""
        with self._locked():
            self._load()

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    def _require_article(self, article_id: str) -> Article:
        try:
            return self._articles[article_id]
        except KeyError:
            raise ArticleNotFoundError(article_id) from None

    def add_article(self, article: Article) -> Article:
        with self._locked():
            self._load()
            if article.id in self._articles:
                raise ValueError(f"Article {article.id} already exists")
            stored = copy.deepcopy(article)
            stored.version = 1
            stored.updated_at = utcnow()
            self._articles[stored.id] = stored
            self._save()
            log.info(f"Stored article {stored.id}", extra={"article_id": stored.id, "status": stored.status.value})
            return copy.deepcopy(stored)

    def get_article(self, article_id: str) -> Article:
        with self._locked():
            return copy.deepcopy(self._require_article(article_id))

    def list_articles(self, status: ArticleStatus | str | None = None) -> list[Article]:
        with self._locked():
            articles = list(self._articles.values())
            if status is not None:
                wanted = ArticleStatus(status)
                articles = [a for a in articles if a.status == wanted]
            return [copy.deepcopy(a) for a in sorted(articles, key=lambda a: a.created_at)]

    def due_for_auto_approval(self, now: datetime, limit: int) -> list[Article]:
        """pending_review articles whose deadline has passed, oldest deadline first."""
        with self._locked():
            self._load()
            due = [
                a for a in self._articles.values()
                if a.status == ArticleStatus.PENDING_REVIEW
                and a.auto_approve_at is not None
                and a.auto_approve_at <= now
            ]
            due.sort(key=lambda a: a.auto_approve_at)
            return [copy.deepcopy(a) for a in due[:limit]]

    def awaiting_publish_retry(self, limit: int) -> list[Article]:
        """Approved articles whose last publish attempt failed or never finished."""
        with self._locked():
            self._load()
            waiting = [
                a for a in self._articles.values()
                if a.status == ArticleStatus.APPROVED
                and (a.publish_error is not None or a.publish_claimed_at is not None)
            ]
            waiting.sort(key=lambda a: a.approved_at or a.updated_at)
            return [copy.deepcopy(a) for a in waiting[:limit]]

    def compare_and_set(self, article_id: str, expected_status: ArticleStatus | str,
                        expected_version: int | None = None, **changes) -> Article:
        """Apply changes only if the article is still in expected_status (and version).

        Raises StateConflictError when another actor got there first. The
        version counter is bumped on every successful write.
        """
        expected_status = ArticleStatus(expected_status)
        with self._locked():
            self._load()
            current = self._require_article(article_id)
            if current.status != expected_status:
                raise StateConflictError(
                    article_id,
                    f"Article {article_id} is {current.status.value}, expected {expected_status.value}",
                )
            if expected_version is not None and current.version != expected_version:
                raise StateConflictError(
                    article_id,
                    f"Article {article_id} is at version {current.version}, expected {expected_version}",
                )
            self._apply(current, changes)
            self._save()
            return copy.deepcopy(current)

    def update_article(self, article_id: str, **changes) -> Article:
        """Update non-status fields (content, metadata, validation summary)."""
        guarded = _GUARDED_FIELDS & set(changes)
        if guarded:
            raise ValueError(f"Use compare_and_set to change {', '.join(sorted(guarded))}")
        with self._locked():
            self._load()
            current = self._require_article(article_id)
            self._apply(current, changes)
            self._save()
            return copy.deepcopy(current)

    @staticmethod
    def _apply(article: Article, changes: dict):
        unknown = set(changes) - _ARTICLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown article fields: {', '.join(sorted(unknown))}")
        managed = set(changes) & _MANAGED_FIELDS
        if managed:
            raise ValueError(f"Fields managed by the store: {', '.join(sorted(managed))}")
        for key, value in changes.items():
            if key == "status":
                value = ArticleStatus(value)
            setattr(article, key, copy.deepcopy(value))
        article.version += 1
        article.updated_at = utcnow()

    # ------------------------------------------------------------------
    # Ideas
    # ------------------------------------------------------------------

    def _require_idea(self, idea_id: str) -> ContentIdea:
        try:
            return self._ideas[idea_id]
        except KeyError:
            raise IdeaNotFoundError(idea_id) from None

    def add_idea(self, idea: ContentIdea) -> ContentIdea:
        with self._locked():
            self._load()
            if idea.id in self._ideas:
                raise ValueError(f"Idea {idea.id} already exists")
            self._ideas[idea.id] = copy.deepcopy(idea)
            self._save()
            log.info(f"Stored idea {idea.id}: {idea.title}")
            return copy.deepcopy(idea)

    def get_idea(self, idea_id: str) -> ContentIdea:
        with self._locked():
            return copy.deepcopy(self._require_idea(idea_id))

    def list_ideas(self, status: IdeaStatus | str | None = None) -> list[ContentIdea]:
        with self._locked():
            ideas = list(self._ideas.values())
            if status is not None:
                wanted = IdeaStatus(status)
                ideas = [i for i in ideas if i.status == wanted]
            return [copy.deepcopy(i) for i in sorted(ideas, key=lambda i: i.created_at)]

    def claim_idea(self, idea_id: str, article_id: str) -> ContentIdea:
        """Link an idea to the article generated from it. An idea is consumed once."""
        with self._locked():
            self._load()
            idea = self._require_idea(idea_id)
            if idea.article_id:
                raise StateConflictError(idea_id, f"Idea {idea_id} already produced article {idea.article_id}")
            if idea.status in (IdeaStatus.COMPLETED, IdeaStatus.REJECTED):
                raise StateConflictError(idea_id, f"Idea {idea_id} is {idea.status.value}")
            idea.article_id = article_id
            self._save()
            return copy.deepcopy(idea)

    def update_idea_status(self, idea_id: str, status: IdeaStatus | str) -> ContentIdea:
        with self._locked():
            self._load()
            idea = self._require_idea(idea_id)
            idea.status = IdeaStatus(status)
            self._save()
            return copy.deepcopy(idea)

    # ------------------------------------------------------------------
    # Feedback / run history
    # ------------------------------------------------------------------

    def record_feedback(self, article_id: str, kind: str, payload: dict | None = None) -> dict:
        """Append an audit record for a review action."""
        entry = {
            "article_id": article_id,
            "kind": kind,
            "payload": dict(payload or {}),
            "recorded_at": utcnow().isoformat(),
        }
        with self._locked():
            self._load()
            self._feedback.append(entry)
            self._save()
        return dict(entry)

    def feedback_for(self, article_id: str) -> list[dict]:
        with self._locked():
            return [copy.deepcopy(e) for e in self._feedback if e["article_id"] == article_id]

    def record_run(self, when: datetime | None = None):
        """Record that the SLA sweep ran (even if nothing was due)."""
        with self._locked():
            self._load()
            self._last_run = (when or utcnow()).isoformat()
            self._save()

    def get_last_run(self) -> str | None:
        """Return ISO timestamp of the last sweep, or None."""
        with self._locked():
            return self._last_run
