"""Shortcode Codec — converts <a> links to classified site shortcodes and back.

Every outbound link in published content must be a shortcode so the CMS can
track monetization:

    [ge_internal_link url="https://example.com/page"]text[/ge_internal_link]
    [ge_affiliate_link url="https://partner.com/x" rel="sponsored"]text[/ge_affiliate_link]
    [ge_external_link url="https://nces.gov/data"]text[/ge_external_link]

The codec owns that taxonomy so the validator and the publish step agree on
what "publish-ready" means.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from perdia.link_classifier import LinkClassifier, LinkType
from perdia.models import ErrorRecord

log = logging.getLogger(__name__)

TOKEN_TYPES = tuple(t.value for t in LinkType)
PRESERVED_ATTRIBUTES = ("class", "id", "title", "target", "rel")

_ANCHOR_RE = re.compile(r"<a\b([^>]*)>(.*?)</a\s*>", re.IGNORECASE | re.DOTALL)
_ATTR_RE = re.compile(r"""([\w:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>\]]+))""")
_TOKEN_RE = re.compile(r"\[ge_(\w+?)_link\b([^\]]*)\](.*?)\[/ge_\1_link\]", re.DOTALL)
_OPEN_TAG_RE = re.compile(r"\[ge_(\w+?)_link\b([^\]]*)\]")
_CLOSE_TAG_RE = re.compile(r"\[/ge_(\w+?)_link\]")
_RAW_LINK_RE = re.compile(r"""<a\s[^>]*?\bhref\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""", re.IGNORECASE)


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse ``key="value"`` pairs (double, single or unquoted) into a dict."""
    attrs = {}
    for match in _ATTR_RE.finditer(raw or ""):
        key = match.group(1).lower()
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attrs[key] = html_lib.unescape(value)
    return attrs


def _shortcode_attr(value: str) -> str:
    # Brackets would end the shortcode header early
    return value.replace('"', "&quot;").replace("[", "&#91;").replace("]", "&#93;")


@dataclass
class ShortcodeToken:
    type: str
    url: str
    text: str
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def link_type(self) -> LinkType | None:
        try:
            return LinkType(self.type)
        except ValueError:
            return None

    @property
    def tag(self) -> str:
        return f"ge_{self.type}_link"

    def render(self) -> str:
        """Canonical shortcode form."""
        parts = [f'url="{_shortcode_attr(self.url)}"']
        for key in PRESERVED_ATTRIBUTES:
            if self.attributes.get(key):
                parts.append(f'{key}="{_shortcode_attr(self.attributes[key])}"')
        return f"[{self.tag} {' '.join(parts)}]{self.text}[/{self.tag}]"

    def to_html(self, options: "DecodeOptions | None" = None) -> str:
        options = options or DecodeOptions()
        attrs = {k: v for k, v in self.attributes.items() if k in PRESERVED_ATTRIBUTES and v}

        if self.type == LinkType.AFFILIATE.value:
            if options.open_in_new_tab:
                attrs.setdefault("target", "_blank")
            if options.nofollow:
                attrs.setdefault("rel", options.affiliate_rel)
        elif self.type == LinkType.EXTERNAL.value:
            if options.open_in_new_tab:
                attrs.setdefault("target", "_blank")
            if options.nofollow:
                attrs.setdefault("rel", options.external_rel)

        rendered = [f'href="{html_lib.escape(self.url, quote=True)}"']
        for key in PRESERVED_ATTRIBUTES:
            if key in attrs:
                rendered.append(f'{key}="{html_lib.escape(attrs[key], quote=True)}"')
        return f"<a {' '.join(rendered)}>{self.text}</a>"


@dataclass
class DecodeOptions:
    """How external and affiliate tokens are rendered back to HTML."""

    open_in_new_tab: bool = True
    nofollow: bool = True
    external_rel: str = "nofollow noopener"
    affiliate_rel: str = "sponsored nofollow noopener"


@dataclass
class TransformStats:
    internal: int = 0
    affiliate: int = 0
    external: int = 0
    skipped: int = 0
    preserved: int = 0

    @property
    def total(self) -> int:
        return self.internal + self.affiliate + self.external

    def count(self, link_type: str | LinkType):
        value = link_type.value if isinstance(link_type, LinkType) else link_type
        if value in TOKEN_TYPES:
            setattr(self, value, getattr(self, value) + 1)

    def classification(self) -> dict[str, int]:
        return {"internal": self.internal, "affiliate": self.affiliate, "external": self.external}

    def as_dict(self) -> dict[str, int]:
        return {
            **self.classification(),
            "total": self.total,
            "skipped": self.skipped,
            "preserved": self.preserved,
        }


class ShortcodeCodec:
    """Bidirectional transform between <a> markup and shortcode tokens."""

    def __init__(self, classifier: LinkClassifier | None = None, decode_options: DecodeOptions | None = None):
        self.classifier = classifier or LinkClassifier()
        self.decode_options = decode_options or DecodeOptions()

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, content: str) -> list[ShortcodeToken]:
        """All well-formed tokens in content, in document order."""
        tokens = []
        for match in _TOKEN_RE.finditer(content or ""):
            attrs = parse_attributes(match.group(2))
            url = attrs.pop("url", "")
            tokens.append(ShortcodeToken(type=match.group(1), url=url, text=match.group(3), attributes=attrs))
        return tokens

    def stats(self, content: str) -> TransformStats:
        stats = TransformStats()
        for token in self.parse(content):
            stats.count(token.type)
        return stats

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def encode(self, html: str, preserve_existing: bool = False) -> tuple[str, TransformStats]:
        """Replace every <a> link with a classified shortcode.

        Existing tokens are counted and left untouched when
        ``preserve_existing`` is set; otherwise they are re-classified against
        the current domain configuration. Fragment-only anchors stay as HTML.
        """
        stats = TransformStats()
        if not html:
            return html or "", stats

        if preserve_existing:
            for token in self.parse(html):
                stats.count(token.type)
                stats.preserved += 1
            content = html
        else:
            content = _TOKEN_RE.sub(lambda m: self._reclassify_token(m, stats), html)

        content = _ANCHOR_RE.sub(lambda m: self._encode_anchor(m, stats), content)

        log.debug(f"Link transform: {stats.as_dict()}")
        return content, stats

    def _reclassify_token(self, match: re.Match, stats: TransformStats) -> str:
        attrs = parse_attributes(match.group(2))
        url = attrs.pop("url", "")
        if not url:
            # Left for validate() to report
            return match.group(0)
        link_type = self.classifier.classify(url)
        stats.count(link_type)
        kept = {k: v for k, v in attrs.items() if k in PRESERVED_ATTRIBUTES}
        return ShortcodeToken(link_type.value, url, match.group(3), kept).render()

    def _encode_anchor(self, match: re.Match, stats: TransformStats) -> str:
        attrs = parse_attributes(match.group(1))
        url = self.classifier.resolve(attrs.get("href", ""))
        if url is None:
            stats.skipped += 1
            return match.group(0)

        link_type = self.classifier.classify(url)
        stats.count(link_type)
        kept = {k: attrs[k] for k in PRESERVED_ATTRIBUTES if attrs.get(k)}
        return ShortcodeToken(link_type.value, url, match.group(2), kept).render()

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, content: str, options: DecodeOptions | None = None) -> str:
        """Render tokens back to <a> markup. Malformed tokens are left as-is."""
        if not content:
            return content or ""
        options = options or self.decode_options

        def _render(match: re.Match) -> str:
            attrs = parse_attributes(match.group(2))
            url = attrs.pop("url", "")
            token = ShortcodeToken(match.group(1), url, match.group(3), attrs)
            if token.link_type is None or not url:
                return match.group(0)
            return token.to_html(options)

        return _TOKEN_RE.sub(_render, content)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, content: str) -> list[ErrorRecord]:
        """Syntax errors that block publishing. Empty list means publish-ready links."""
        errors = []
        content = content or ""

        opens = _OPEN_TAG_RE.findall(content)
        closes = _CLOSE_TAG_RE.findall(content)
        open_counts = Counter(t for t, _ in opens)
        close_counts = Counter(closes)
        if open_counts != close_counts:
            errors.append(ErrorRecord(
                code="shortcode_unbalanced",
                message=f"Unclosed shortcode tags detected ({len(opens)} open, {len(closes)} close)",
                field="body",
                details={"open": dict(open_counts), "close": dict(close_counts)},
            ))

        for token_type, raw_attrs in opens:
            if token_type not in TOKEN_TYPES:
                errors.append(ErrorRecord(
                    code="shortcode_unknown_type",
                    message=f"Unknown shortcode type 'ge_{token_type}_link' (allowed: {', '.join(TOKEN_TYPES)})",
                    field="body",
                    details={"type": token_type},
                ))
            if not parse_attributes(raw_attrs).get("url", "").strip():
                errors.append(ErrorRecord(
                    code="shortcode_missing_url",
                    message=f"Shortcode ge_{token_type}_link is missing its url attribute",
                    field="body",
                    details={"type": token_type},
                ))

        raw_links = self.raw_link_count(content)
        if raw_links:
            errors.append(ErrorRecord(
                code="raw_link",
                message=f"Raw HTML links found ({raw_links}). All links must use shortcodes.",
                field="body",
                details={"count": raw_links},
            ))
        return errors

    @staticmethod
    def raw_link_count(content: str) -> int:
        """Raw <a href> links left in content, not counting in-page #anchors or empty hrefs."""
        count = 0
        for match in _RAW_LINK_RE.finditer(content or ""):
            href = next((g for g in match.groups() if g is not None), "").strip()
            if not href or href.startswith("#"):
                continue
            count += 1
        return count


def transform_links(html: str, site_domain: str, affiliate_domains=None,
                    preserve_existing: bool = False) -> tuple[str, TransformStats]:
    """One-shot encode for callers that don't hold a codec."""
    codec = ShortcodeCodec(LinkClassifier(site_domain, affiliate_domains))
    return codec.encode(html, preserve_existing=preserve_existing)
