"""WordPress REST API publisher for approved articles."""

from __future__ import annotations

import base64
import logging
import mimetypes
import os
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import urlparse

import requests
from dotenv import load_dotenv
from slugify import slugify

from perdia.models import Article, ErrorRecord

load_dotenv(override=True)

log = logging.getLogger(__name__)


# Custom exceptions
class PublishError(Exception):
    """Post creation failed. ``kind`` is one of network, auth or remote."""

    def __init__(self, message: str, status_code: int | None = None, kind: str = "remote"):
        self.message = message
        self.status_code = status_code
        self.kind = kind
        super().__init__(message)

    def to_error_record(self) -> ErrorRecord:
        details = {"kind": self.kind}
        if self.status_code is not None:
            details["status_code"] = self.status_code
        return ErrorRecord(code=f"publish_{self.kind}", message=self.message, details=details)


class AuthenticationError(PublishError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, status_code=status_code, kind="auth")


@dataclass
class PublishedPost:
    id: int
    url: str
    featured_media_id: int | None = None


@dataclass
class PublishResult:
    """Either ``post`` (success) or ``error`` (failure), never both."""

    post: PublishedPost | None = None
    error: PublishError | None = None

    @property
    def ok(self) -> bool:
        return self.post is not None and self.error is None

    @classmethod
    def success(cls, post: PublishedPost) -> "PublishResult":
        return cls(post=post)

    @classmethod
    def failure(cls, error: PublishError) -> "PublishResult":
        return cls(error=error)


class WordPressPublisher:
    """Handles all WordPress REST API interactions."""

    def __init__(self, base_url=None, username=None, app_password=None, timeout=30, post_status="publish"):
        self.base_url = (base_url or os.getenv("WP_URL", "")).rstrip("/")
        self.username = username or os.getenv("WP_USERNAME", "")
        self.app_password = app_password or os.getenv("WP_APP_PASSWORD", "")
        self.api_base = f"{self.base_url}/wp-json/wp/v2"
        self.timeout = timeout
        self.post_status = post_status

        # Build auth header
        credentials = f"{self.username}:{self.app_password}"
        token = base64.b64encode(credentials.encode()).decode()
        self.headers = {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
        }

    def verify_connection(self) -> bool:
        """Verify WP REST API is reachable and authenticated. Raises PublishError otherwise."""
        resp = self._request("GET", f"{self.api_base}/")
        self._raise_for_status(resp)
        log.info("WordPress connection verified", extra={"endpoint": "/wp-json/wp/v2/"})
        return True

    def _request(self, method, url, timeout=None, headers=None, **kwargs):
        """Make one HTTP request. Network failures become PublishError(kind="network")."""
        start = time.time()
        try:
            resp = requests.request(
                method, url, headers=headers or self.headers, timeout=timeout or self.timeout, **kwargs
            )
        except requests.exceptions.Timeout as e:
            log.warning(f"Timeout on {method} {url}")
            raise PublishError(f"Timeout contacting WordPress: {e}", kind="network") from e
        except requests.exceptions.RequestException as e:
            log.warning(f"Connection error on {method} {url}: {e}")
            raise PublishError(f"Cannot reach WordPress at {self.base_url}: {e}", kind="network") from e
        elapsed = time.time() - start

        log.info(
            f"{method} {url} -> {resp.status_code}",
            extra={
                "endpoint": url,
                "method": method,
                "status_code": resp.status_code,
                "response_time": round(elapsed, 3),
            },
        )
        return resp

    @staticmethod
    def _remote_message(resp) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text[:500]
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return resp.text[:500]

    def _raise_for_status(self, resp):
        if resp.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed ({resp.status_code}): {self._remote_message(resp)}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise PublishError(
                f"WordPress returned {resp.status_code}: {self._remote_message(resp)}",
                status_code=resp.status_code,
            )

    def _json(self, resp) -> dict:
        try:
            return resp.json()
        except ValueError as e:
            raise PublishError(
                f"WordPress returned invalid JSON ({resp.status_code})", status_code=resp.status_code
            ) from e

    def create_post(self, article: Article, status: str | None = None) -> PublishResult:
        """Create a WordPress post for an article.

        Featured-image problems are logged and the post is created without
        one. Any failure creating the post itself is returned as a
        PublishResult carrying the PublishError; nothing is retried here.
        """
        featured_media_id = None
        if article.featured_image_url:
            media = self.upload_featured_image(article.featured_image_url, article.title)
            if media:
                featured_media_id = media["id"]

        payload = {
            "title": article.title,
            "content": article.body,
            "status": status or self.post_status,
            "slug": article.slug or slugify(article.title, max_length=60),
        }
        if article.meta_description:
            payload["meta"] = {"description": article.meta_description}
        if featured_media_id:
            payload["featured_media"] = featured_media_id

        try:
            resp = self._request("POST", f"{self.api_base}/posts", json=payload)
            self._raise_for_status(resp)
            post = self._json(resp)
            if not isinstance(post, dict) or "id" not in post:
                raise PublishError(
                    f"WordPress response has no post id ({resp.status_code})", status_code=resp.status_code
                )
        except PublishError as e:
            log.warning(f"Publish failed for article {article.id}: {e}", extra={"article_id": article.id})
            return PublishResult.failure(e)

        published = PublishedPost(
            id=post["id"],
            url=post.get("link", ""),
            featured_media_id=featured_media_id,
        )
        log.info(
            f"Created post: {published.id} - {article.title}",
            extra={"article_id": article.id},
        )
        return PublishResult.success(published)

    def upload_featured_image(self, image_url: str, title: str = "") -> dict | None:
        """Fetch an image by URL and upload it to the media library.

        Returns the media dict, or None on any failure so publishing can
        proceed without the image.
        """
        try:
            resp = requests.get(image_url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            log.warning(f"Could not fetch featured image {image_url}: {e}")
            return None

        path = PurePosixPath(urlparse(image_url).path)
        mime_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        extension = path.suffix.lower() or mimetypes.guess_extension(mime_type) or ".jpg"
        filename = f"{slugify(title or path.stem) or 'featured-image'}{extension}"

        try:
            return self.upload_media(resp.content, filename, mime_type, alt_text=title, title=title)
        except PublishError as e:
            log.warning(f"Featured image upload failed, publishing without it: {e}")
            return None

    def upload_media(self, data: bytes, filename: str, mime_type: str, alt_text: str = "",
                     title: str = "") -> dict:
        """Upload binary data to the media library and return {"id", "url"}."""
        if not data:
            raise PublishError(f"Refusing to upload empty media file {filename}", kind="remote")

        log.info(f"Uploading media: {filename} ({len(data):,} bytes, {mime_type})")
        headers = {
            **self.headers,
            "Content-Type": mime_type,
            "Content-Disposition": f'attachment; filename="{filename}"',
        }
        resp = self._request("POST", f"{self.api_base}/media", headers=headers, data=data,
                             timeout=max(self.timeout, 60))
        self._raise_for_status(resp)
        media = self._json(resp)
        media_id = media["id"]

        # Alt text and title are best-effort
        if alt_text or title:
            try:
                meta_resp = self._request(
                    "POST",
                    f"{self.api_base}/media/{media_id}",
                    json={"alt_text": alt_text, "title": title},
                )
                self._raise_for_status(meta_resp)
            except PublishError as e:
                log.warning(f"Could not set alt text on media {media_id}: {e}")

        log.info(f"Uploaded media: {media_id} - {filename}")
        return {"id": media_id, "url": media.get("source_url", "")}

    def delete_post(self, post_id, force=True) -> bool:
        """Delete a post (used by the verification script)."""
        resp = self._request(
            "DELETE",
            f"{self.api_base}/posts/{post_id}?force={'true' if force else 'false'}",
        )
        return 200 <= resp.status_code < 300
