"""Tests for the monitoring checks run by scripts/health_check.py."""

from datetime import datetime, timedelta, timezone

from perdia.article_store import ArticleStore
from perdia.models import ArticleStatus, ErrorRecord
from scripts.health_check import check_failed_publishes, check_last_run, check_review_backlog, run_checks

from conftest import make_article


class TestLastRun:
    def test_recent_success(self, tmp_path):
        path = tmp_path / "last_run.txt"
        path.write_text(f"SUCCESS\n{datetime.now(timezone.utc).isoformat()}\napproved=1\n")
        ok, _ = check_last_run(path)
        assert ok

    def test_stale(self, tmp_path):
        path = tmp_path / "last_run.txt"
        path.write_text(f"SUCCESS\n{(datetime.now(timezone.utc) - timedelta(hours=3)).isoformat()}\n")
        ok, msg = check_last_run(path)
        assert not ok
        assert "hours ago" in msg

    def test_failure(self, tmp_path):
        path = tmp_path / "last_run.txt"
        path.write_text(f"FAILURE\n{datetime.now(timezone.utc).isoformat()}\nboom\n")
        ok, msg = check_last_run(path)
        assert not ok
        assert "boom" in msg

    def test_missing_everywhere(self, tmp_path):
        ok, msg = check_last_run(tmp_path / "last_run.txt", store=ArticleStore(None))
        assert not ok
        assert "No sweep" in msg

    def test_falls_back_to_store(self, tmp_path):
        now = datetime.now(timezone.utc)
        store = ArticleStore(None)
        store.record_run(now - timedelta(minutes=20))
        ok, msg = check_last_run(tmp_path / "last_run.txt", store=store, now=now)
        assert ok
        assert "from store" in msg

    def test_stale_store_run(self, tmp_path):
        now = datetime.now(timezone.utc)
        store = ArticleStore(None)
        store.record_run(now - timedelta(hours=5))
        ok, _ = check_last_run(tmp_path / "last_run.txt", store=store, now=now)
        assert not ok

    def test_malformed(self, tmp_path):
        path = tmp_path / "last_run.txt"
        path.write_text("SUCCESS\n")
        ok, msg = check_last_run(path)
        assert not ok
        assert "malformed" in msg


class TestBacklog:
    def test_overdue_article_alerts(self):
        now = datetime.now(timezone.utc)
        store = ArticleStore(None)
        store.add_article(make_article(status=ArticleStatus.PENDING_REVIEW, auto_approve_at=now - timedelta(hours=5)))
        ok, msg = check_review_backlog(store, now=now)
        assert not ok
        assert "1 article(s)" in msg

    def test_just_due_is_fine(self):
        now = datetime.now(timezone.utc)
        store = ArticleStore(None)
        store.add_article(make_article(status=ArticleStatus.PENDING_REVIEW, auto_approve_at=now - timedelta(minutes=30)))
        ok, _ = check_review_backlog(store, now=now)
        assert ok

    def test_repeated_publish_failures(self):
        store = ArticleStore(None)
        store.add_article(make_article(
            status=ArticleStatus.APPROVED, publish_attempts=3, publish_error=ErrorRecord("publish_remote", "500"),
        ))
        ok, msg = check_failed_publishes(store)
        assert not ok
        assert "art_1" in msg


class TestRunChecks:
    def test_collects_failures_only(self, capsys):
        failures = run_checks([
            ("Good", lambda: (True, "fine")),
            ("Bad", lambda: (False, "broken")),
        ])
        assert failures == ["Bad: broken"]
        out = capsys.readouterr().out
        assert "[OK] Good: fine" in out
        assert "[FAIL] Bad: broken" in out
