"""Link Classifier — decides whether a URL is internal, affiliate or external."""

from __future__ import annotations

import logging
from enum import Enum
from urllib.parse import urljoin, urlparse

log = logging.getLogger(__name__)


class LinkType(str, Enum):
    INTERNAL = "internal"
    AFFILIATE = "affiliate"
    EXTERNAL = "external"


def normalize_host(host: str) -> str:
    host = (host or "").strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


class LinkClassifier:
    """Classifies links against the site domain and the configured affiliate domains."""

    def __init__(self, site_domain: str = "", affiliate_domains=None):
        site = (site_domain or "").strip()
        if "//" in site:
            site = urlparse(site).hostname or ""
        self.site_domain = normalize_host(site)
        self.affiliate_domains = [
            normalize_host(d) for d in (affiliate_domains or []) if d and d.strip()
        ]

    @property
    def site_base(self) -> str:
        return f"https://{self.site_domain}/" if self.site_domain else ""

    def resolve(self, url: str) -> str | None:
        """Return an absolute URL, or None for links that should be left alone.

        Fragment-only anchors (``#section``) and empty hrefs resolve to None.
        Relative URLs are resolved against the site domain.
        """
        url = (url or "").strip()
        if not url or url.startswith("#"):
            return None
        if url.startswith("//"):
            return "https:" + url
        parsed = urlparse(url)
        if parsed.scheme or parsed.netloc:
            return url
        if not self.site_base:
            log.debug(f"Relative URL with no site domain configured: {url}")
            return url
        return urljoin(self.site_base, url)

    def classify(self, url: str) -> LinkType:
        """Internal if the host is the site domain, affiliate if it matches a partner, else external."""
        resolved = self.resolve(url) or url
        parsed = urlparse(resolved)
        host = normalize_host(parsed.hostname or "")

        if not host:
            # Still relative: no site domain to resolve against
            if not parsed.scheme and resolved.startswith("/"):
                return LinkType.INTERNAL
            return LinkType.EXTERNAL

        if self.site_domain and host == self.site_domain:
            return LinkType.INTERNAL
        if any(domain in host for domain in self.affiliate_domains):
            return LinkType.AFFILIATE
        return LinkType.EXTERNAL


def classify_link(url: str, site_domain: str, affiliate_domains=None) -> LinkType:
    return LinkClassifier(site_domain, affiliate_domains).classify(url)
