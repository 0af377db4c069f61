"""Domain records for the content lifecycle: articles, ideas and error records."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum


class ArticleStatus(str, Enum):
    IDEA = "idea"
    GENERATING = "generating"
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    REJECTED = "rejected"
    PUBLISHED = "published"

    @property
    def is_terminal(self) -> bool:
        return self in (ArticleStatus.REJECTED, ArticleStatus.PUBLISHED)


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNCHECKED = "unchecked"


class IdeaStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ErrorRecord:
    """A structured, human-readable problem attached to an article."""

    code: str
    message: str
    field: str | None = None
    severity: str = "error"
    details: dict = dataclasses.field(default_factory=dict)

    @property
    def is_blocking(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message, "severity": self.severity}
        if self.field:
            data["field"] = self.field
        if self.details:
            data["details"] = dict(self.details)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorRecord":
        return cls(
            code=data.get("code", "unknown"),
            message=data.get("message", ""),
            field=data.get("field"),
            severity=data.get("severity", "error"),
            details=dict(data.get("details") or {}),
        )

    def __str__(self) -> str:
        return self.message


_DATETIME_FIELDS = (
    "auto_approve_at", "publish_claimed_at", "created_at", "updated_at", "approved_at", "published_at",
)


@dataclass
class Article:
    id: str
    title: str = ""
    body: str = ""
    status: ArticleStatus = ArticleStatus.IDEA
    content_type: str = "new_article"
    target_keywords: list[str] = field(default_factory=list)
    meta_description: str = ""
    featured_image_url: str = ""
    slug: str = ""
    idea_id: str | None = None
    word_count: int = 0
    editor_score: int = 0
    risk_flags: set[str] = field(default_factory=set)
    validation_status: ValidationStatus = ValidationStatus.UNCHECKED
    validation_errors: list[ErrorRecord] = field(default_factory=list)
    auto_approve_at: datetime | None = None
    auto_approved: bool = False
    reviewer_notes: str = ""
    published_post_id: int | None = None
    published_url: str | None = None
    publish_error: ErrorRecord | None = None
    publish_attempts: int = 0
    publish_claimed_at: datetime | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    approved_at: datetime | None = None
    published_at: datetime | None = None

    def to_dict(self) -> dict:
        """Plain-data form used by the YAML store."""
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "status": self.status.value,
            "content_type": self.content_type,
            "target_keywords": list(self.target_keywords),
            "meta_description": self.meta_description,
            "featured_image_url": self.featured_image_url,
            "slug": self.slug,
            "idea_id": self.idea_id,
            "word_count": self.word_count,
            "editor_score": self.editor_score,
            "risk_flags": sorted(self.risk_flags),
            "validation_status": self.validation_status.value,
            "validation_errors": [e.to_dict() for e in self.validation_errors],
            "auto_approve_at": _to_iso(self.auto_approve_at),
            "auto_approved": self.auto_approved,
            "reviewer_notes": self.reviewer_notes,
            "published_post_id": self.published_post_id,
            "published_url": self.published_url,
            "publish_error": self.publish_error.to_dict() if self.publish_error else None,
            "publish_attempts": self.publish_attempts,
            "publish_claimed_at": _to_iso(self.publish_claimed_at),
            "version": self.version,
            "created_at": _to_iso(self.created_at),
            "updated_at": _to_iso(self.updated_at),
            "approved_at": _to_iso(self.approved_at),
            "published_at": _to_iso(self.published_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Article":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["status"] = ArticleStatus(values.get("status", ArticleStatus.IDEA.value))
        values["validation_status"] = ValidationStatus(
            values.get("validation_status", ValidationStatus.UNCHECKED.value)
        )
        values["target_keywords"] = list(values.get("target_keywords") or [])
        values["risk_flags"] = set(values.get("risk_flags") or [])
        values["validation_errors"] = [
            ErrorRecord.from_dict(e) for e in values.get("validation_errors") or []
        ]
        if values.get("publish_error"):
            values["publish_error"] = ErrorRecord.from_dict(values["publish_error"])
        for key in _DATETIME_FIELDS:
            if key in values:
                values[key] = _from_iso(values[key])
        return cls(**values)


@dataclass
class ContentIdea:
    id: str
    title: str
    keywords: set[str] = field(default_factory=set)
    status: IdeaStatus = IdeaStatus.PENDING
    article_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "keywords": sorted(self.keywords),
            "status": self.status.value,
            "article_id": self.article_id,
            "created_at": _to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContentIdea":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            keywords=set(data.get("keywords") or []),
            status=IdeaStatus(data.get("status", IdeaStatus.PENDING.value)),
            article_id=data.get("article_id"),
            created_at=_from_iso(data.get("created_at")) or utcnow(),
        )
