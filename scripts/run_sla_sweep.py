#!/usr/bin/env python3
"""Hourly SLA sweep entry point: auto-approves overdue articles and retries failed publishes."""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from perdia.config import load_config
from perdia.lifecycle_engine import LifecycleEngine
from perdia.utils.logger import setup_logging
from perdia.wp_publisher import WordPressPublisher


def write_last_run(project_root: Path, success: bool, message: str = ""):
    """Write a last_run.txt for health check monitoring."""
    last_run_path = project_root / "logs" / "last_run.txt"
    last_run_path.parent.mkdir(parents=True, exist_ok=True)
    status = "SUCCESS" if success else "FAILURE"
    timestamp = datetime.now(timezone.utc).isoformat()
    last_run_path.write_text(f"{status}\n{timestamp}\n{message}\n")


def build_engine(config_path: str = "config.yaml") -> LifecycleEngine:
    config = load_config(config_path)
    publisher = None
    # Sweep still approves/rejects without WordPress; publishing waits for credentials
    if os.getenv("WP_URL"):
        publisher = WordPressPublisher(timeout=config.request_timeout, post_status=config.wp_post_status)
    return LifecycleEngine.from_config(config, publisher=publisher)


def main():
    setup_logging()

    try:
        engine = build_engine()
        result = engine.run_sla_sweep()

        summary = (
            f"approved={result.approved} failed={result.failed} skipped={result.skipped} "
            f"published={result.published} publish_failed={result.publish_failed}"
        )
        print(f"SLA sweep: {summary}")
        for item in result.errors:
            print(f"   [{item['stage']}] {item['article_id']} {item['title']}: {'; '.join(item['errors'])}")
        write_last_run(PROJECT_ROOT, success=True, message=summary)
    except Exception as e:
        print(f"FAILED: {e}", file=sys.stderr)
        write_last_run(PROJECT_ROOT, success=False, message=str(e))
        raise


if __name__ == "__main__":
    main()
