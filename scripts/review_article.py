#!/usr/bin/env python3
"""Reviewer actions from the command line.

Usage:
    review_article.py approve <article_id> [notes]
    review_article.py revise  <article_id> <notes>
    review_article.py reject  <article_id> <reason>
    review_article.py status  <article_id>
"""

import getpass
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from perdia.article_store import ArticleNotFoundError, StateConflictError
from perdia.config import load_config
from perdia.lifecycle_engine import InvalidTransitionError, LifecycleEngine
from perdia.utils.logger import setup_logging
from perdia.wp_publisher import WordPressPublisher

ACTIONS = ("approve", "revise", "reject", "status")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 2 or argv[0] not in ACTIONS:
        print(__doc__)
        return 2

    action, article_id = argv[0], argv[1]
    notes = " ".join(argv[2:]).strip()
    if action in ("revise", "reject") and not notes:
        print(f"'{action}' needs a reason for the writer.")
        return 2

    setup_logging()
    config = load_config()
    publisher = None
    if os.getenv("WP_URL"):
        publisher = WordPressPublisher(timeout=config.request_timeout, post_status=config.wp_post_status)
    engine = LifecycleEngine.from_config(config, publisher=publisher)
    reviewer = os.getenv("PERDIA_REVIEWER") or getpass.getuser()

    try:
        if action == "status":
            sla = engine.sla_status(article_id)
            print(f"{article_id}: {sla.status.value}")
            if sla.pending:
                print(f"   Pending {sla.days_pending} days, auto-approves in {sla.days_remaining} days"
                      f"{' (overdue)' if sla.eligible else ''}")
            report = engine.validate(article_id)
            print(f"   SEO score {report.seo_score}, {report.word_count} words, "
                  f"{'valid' if report.valid else 'INVALID'}")
            for rec in report.recommendations:
                print(f"   - {rec}")
            return 0

        if action == "approve":
            article = engine.approve(article_id, reviewer=reviewer, notes=notes)
        elif action == "revise":
            article = engine.request_revision(article_id, notes, reviewer=reviewer)
        else:
            article = engine.reject(article_id, notes, reviewer=reviewer)
    except ArticleNotFoundError:
        print(f"No article with id {article_id}")
        return 1
    except (InvalidTransitionError, StateConflictError) as e:
        print(f"Cannot {action}: {e}")
        return 1

    print(f"{article_id}: {article.status.value}")
    for err in article.validation_errors:
        print(f"   - {err.message}")
    if article.publish_error:
        print(f"   Publish failed, will retry on next sweep: {article.publish_error.message}")
    if article.published_url:
        print(f"   Live: {article.published_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
