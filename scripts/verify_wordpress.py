#!/usr/bin/env python3
"""Verify WordPress API connection and permissions.

Runs the same create_post call the lifecycle uses, as a draft, then deletes
it. Exit code 0 means approved articles can be published.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from perdia.models import Article
from perdia.utils.logger import setup_logging
from perdia.wp_publisher import PublishError, WordPressPublisher

SMOKE_POST = Article(
    id="verify-wordpress",
    title="[TEST] Perdia Publish Verification",
    body="<p>Automated publish check from Perdia. Deleted right after creation.</p>",
)

HINTS = {
    "network": [
        "WP_URL in .env points at the site root (no /wp-json suffix)",
        "the site is up and reachable from this machine",
    ],
    "auth": [
        "WP_USERNAME matches the user that owns the application password",
        "WP_APP_PASSWORD is a current WordPress Application Password",
        "that user can create and delete posts",
    ],
    "remote": [
        "the REST API is enabled at {WP_URL}/wp-json/wp/v2/",
        "no security plugin is blocking POST /posts",
    ],
}


def publish_and_delete_smoke_post(wp: WordPressPublisher) -> int:
    result = wp.create_post(SMOKE_POST, status="draft")
    if not result.ok:
        raise result.error
    print(f"  Draft created: #{result.post.id}")
    if not wp.delete_post(result.post.id):
        print(f"  WARNING: could not delete draft #{result.post.id}, remove it by hand")
    else:
        print("  Test draft deleted")
    return result.post.id


def main():
    setup_logging()
    wp = WordPressPublisher()
    print(f"Verifying WordPress at {wp.base_url or '(WP_URL not set)'}...")

    try:
        wp.verify_connection()
        print("  REST API reachable, credentials accepted")
        publish_and_delete_smoke_post(wp)
    except PublishError as e:
        print(f"\nVerification FAILED ({e.kind}): {e}")
        print("\nPlease check:")
        for i, hint in enumerate(HINTS.get(e.kind, HINTS["remote"]), 1):
            print(f"  {i}. {hint}")
        return 1

    print("\nWordPress publishing verified.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
