#!/usr/bin/env python3
"""System health check — run hourly via cron, after the SLA sweep."""

import os
import smtplib
import sys
from datetime import datetime, timezone, timedelta
from email.mime.text import MIMEText
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from perdia.article_store import ArticleStore
from perdia.config import load_config

# The sweep runs hourly; two missed runs is an outage
MAX_SWEEP_AGE = timedelta(hours=2)
OVERDUE_GRACE = timedelta(hours=2)
MAX_FAILED_PUBLISHES = 3
LAST_RUN_FILE = Path("logs/last_run.txt")


def _open_store(store=None) -> ArticleStore:
    return store if store is not None else ArticleStore(load_config().state_path)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600


def _read_last_run(path: Path) -> tuple[str, datetime, str] | None:
    """Parse the STATUS / timestamp / summary lines written by run_sla_sweep.py."""
    if not path.exists():
        return None
    status, _, rest = path.read_text().strip().partition("\n")
    timestamp, _, summary = rest.partition("\n")
    return status.strip(), datetime.fromisoformat(timestamp.strip()), summary.strip()


def check_last_run(last_run_file: Path = LAST_RUN_FILE, store=None, now=None) -> tuple[bool, str]:
    """Verify the SLA sweep ran (and succeeded) within MAX_SWEEP_AGE.

    Falls back to the sweep time recorded in the article store when the
    script's marker file is missing, e.g. when the engine is driven from
    somewhere other than run_sla_sweep.py.
    """
    now = now or datetime.now(timezone.utc)
    try:
        marker = _read_last_run(last_run_file)
    except ValueError:
        return False, f"{last_run_file} is malformed"

    if marker is None:
        recorded = _open_store(store).get_last_run()
        if not recorded:
            return False, "No sweep has been recorded"
        age = now - datetime.fromisoformat(recorded)
        if age > MAX_SWEEP_AGE:
            return False, f"Store last saw a sweep {_hours(age):.1f} hours ago"
        return True, f"OK (from store), last sweep {_hours(age):.1f}h ago"

    status, ran_at, summary = marker
    age = now - ran_at
    if status == "FAILURE":
        return False, f"Last sweep FAILED {_hours(age):.1f}h ago: {summary}"
    if age > MAX_SWEEP_AGE:
        return False, f"Last successful sweep was {_hours(age):.1f} hours ago"
    return True, f"OK, last sweep {_hours(age):.1f}h ago ({summary})"


def check_review_backlog(store=None, now=None) -> tuple[bool, str]:
    """Alert if articles sit in pending_review well past their auto-approval deadline."""
    now = now or datetime.now(timezone.utc)
    overdue = _open_store(store).due_for_auto_approval(now - OVERDUE_GRACE, limit=1000)
    if overdue:
        oldest = overdue[0]
        hours = _hours(now - oldest.auto_approve_at)
        return False, f"{len(overdue)} article(s) overdue for auto-approval (oldest {hours:.1f}h: {oldest.title})"
    return True, "No overdue articles"


def check_failed_publishes(store=None) -> tuple[bool, str]:
    """Alert if approved articles keep failing to publish."""
    waiting = _open_store(store).awaiting_publish_retry(limit=1000)
    stuck = [a.id for a in waiting if a.publish_attempts >= MAX_FAILED_PUBLISHES]
    if stuck:
        return False, f"{len(stuck)} article(s) failed to publish {MAX_FAILED_PUBLISHES}+ times: {', '.join(stuck)}"
    return True, "No stuck publishes"


def check_wordpress_api() -> tuple[bool, str]:
    """Verify WP REST API is accessible and the credentials work."""
    from perdia.wp_publisher import PublishError, WordPressPublisher

    try:
        WordPressPublisher(timeout=10).verify_connection()
    except PublishError as e:
        return False, f"WordPress check failed: {e}"
    return True, "OK"


def send_alert(message: str):
    """Email the alert, or print it when SMTP is not configured."""
    sender = os.getenv("SMTP_USER", "")
    recipient = os.getenv("NOTIFICATION_EMAIL", "")
    if not sender or not recipient:
        print(f"ALERT: {message}")
        return

    email = MIMEText(message)
    email["Subject"] = "Perdia content pipeline ALERT"
    email["From"] = sender
    email["To"] = recipient
    try:
        with smtplib.SMTP(os.getenv("SMTP_HOST", "smtp.gmail.com"), int(os.getenv("SMTP_PORT", "587"))) as smtp:
            smtp.starttls()
            smtp.login(sender, os.getenv("SMTP_PASSWORD", ""))
            smtp.send_message(email)
    except (smtplib.SMTPException, OSError) as e:
        print(f"Alert email not sent ({e}). ALERT: {message}")


def run_checks(checks) -> list[str]:
    """Run (name, check) pairs, print each result and return the failures."""
    failures = []
    for name, check in checks:
        ok, detail = check()
        print(f"  [{'OK' if ok else 'FAIL'}] {name}: {detail}")
        if not ok:
            failures.append(f"{name}: {detail}")
    return failures


def main():
    print(f"Health check: {datetime.now(timezone.utc).isoformat()}")
    checks = [
        ("Last Sweep", check_last_run),
        ("Review Backlog", check_review_backlog),
        ("Failed Publishes", check_failed_publishes),
    ]
    # WordPress is optional until credentials exist
    if os.getenv("WP_URL"):
        checks.append(("WordPress API", check_wordpress_api))

    failures = run_checks(checks)
    if failures:
        send_alert("Health check failures:\n\n" + "\n".join(failures))
        return 1
    print("All checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
