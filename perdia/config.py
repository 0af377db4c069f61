"""Configuration loading for the content lifecycle (config.yaml + environment)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

import yaml
from dotenv import load_dotenv

load_dotenv(override=True)

log = logging.getLogger(__name__)

# Hard ceiling on one sweep invocation, whatever the config says
MAX_SWEEP_BATCH = 50


@dataclass
class LifecycleConfig:
    sla_days: float = 5
    sweep_batch_size: int = MAX_SWEEP_BATCH
    min_word_count: int = 1000
    min_word_count_by_type: dict[str, int] = field(default_factory=dict)
    max_word_count: int = 5000
    site_domain: str = ""
    affiliate_domains: list[str] = field(default_factory=list)
    nofollow_external: bool = True
    open_external_in_new_tab: bool = True
    duplicate_prefix_length: int = 20
    duplicate_keyword_threshold: float = 0.6
    duplicate_title_similarity: float = 0.8
    wp_post_status: str = "publish"
    request_timeout: float = 30
    state_path: str = "data/lifecycle_state.yaml"

    def __post_init__(self):
        if self.sla_days < 0:
            raise ValueError(f"sla_days must be non-negative, got {self.sla_days}")
        if self.min_word_count < 0:
            raise ValueError(f"min_word_count must be non-negative, got {self.min_word_count}")
        self.sweep_batch_size = max(1, min(int(self.sweep_batch_size), MAX_SWEEP_BATCH))
        self.site_domain = self.site_domain.strip().lower()
        self.affiliate_domains = [d.strip().lower() for d in self.affiliate_domains if d and d.strip()]


def _env_list(name: str) -> list[str] | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def load_config(path: str = "config.yaml") -> LifecycleConfig:
    """Build a LifecycleConfig from a YAML file, then apply environment overrides.

    Missing file or missing keys fall back to defaults. Environment variables
    (optionally from .env) win over the file.
    """
    raw = {}
    if path and os.path.exists(path):
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        log.info(f"No config file at {path}, using defaults")

    lifecycle = raw.get("lifecycle", {}) or {}
    validation = raw.get("validation", {}) or {}
    links = raw.get("links", {}) or {}
    duplicates = raw.get("duplicates", {}) or {}
    wordpress = raw.get("wordpress", {}) or {}
    storage = raw.get("storage", {}) or {}

    defaults = LifecycleConfig()
    settings = {
        "sla_days": lifecycle.get("sla_days", defaults.sla_days),
        "sweep_batch_size": lifecycle.get("sweep_batch_size", defaults.sweep_batch_size),
        "min_word_count": validation.get("min_word_count", defaults.min_word_count),
        "min_word_count_by_type": dict(validation.get("min_word_count_by_type") or {}),
        "max_word_count": validation.get("max_word_count", defaults.max_word_count),
        "site_domain": links.get("site_domain", defaults.site_domain) or "",
        "affiliate_domains": list(links.get("affiliate_domains") or []),
        "nofollow_external": links.get("nofollow_external", defaults.nofollow_external),
        "open_external_in_new_tab": links.get(
            "open_external_in_new_tab", defaults.open_external_in_new_tab
        ),
        "duplicate_prefix_length": duplicates.get("prefix_length", defaults.duplicate_prefix_length),
        "duplicate_keyword_threshold": duplicates.get(
            "keyword_overlap_threshold", defaults.duplicate_keyword_threshold
        ),
        "duplicate_title_similarity": duplicates.get(
            "title_similarity_threshold", defaults.duplicate_title_similarity
        ),
        "wp_post_status": wordpress.get("post_status", defaults.wp_post_status),
        "request_timeout": wordpress.get("request_timeout", defaults.request_timeout),
        "state_path": storage.get("state_path", defaults.state_path),
    }

    # Environment overrides
    if os.getenv("PERDIA_SLA_DAYS"):
        settings["sla_days"] = float(os.environ["PERDIA_SLA_DAYS"])
    if os.getenv("PERDIA_SWEEP_BATCH_SIZE"):
        settings["sweep_batch_size"] = int(os.environ["PERDIA_SWEEP_BATCH_SIZE"])
    if os.getenv("PERDIA_MIN_WORD_COUNT"):
        settings["min_word_count"] = int(os.environ["PERDIA_MIN_WORD_COUNT"])
    if os.getenv("PERDIA_SITE_DOMAIN"):
        settings["site_domain"] = os.environ["PERDIA_SITE_DOMAIN"]
    affiliates = _env_list("PERDIA_AFFILIATE_DOMAINS")
    if affiliates is not None:
        settings["affiliate_domains"] = affiliates
    if os.getenv("WP_POST_STATUS"):
        settings["wp_post_status"] = os.environ["WP_POST_STATUS"]
    if os.getenv("PERDIA_STATE_PATH"):
        settings["state_path"] = os.environ["PERDIA_STATE_PATH"]

    config = LifecycleConfig(**settings)
    if not config.site_domain:
        log.warning("links.site_domain is not configured; relative links cannot be resolved")
    return config
