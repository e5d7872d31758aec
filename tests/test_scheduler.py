"""Tests for the background retention scheduler."""

import time

from strongbox.backup.scheduler import RetentionScheduler


# ── RetentionScheduler ──────────────────────────────────────────────


class TestRetentionScheduler:

    def test_run_once(self, manager, clock):
        manager.create_backup(b"data", "SchedulerPass123")
        clock.advance(days=31)
        scheduler = RetentionScheduler(manager, interval=60)

        result = scheduler.run_once()

        assert result.expired == 1
        assert scheduler.runs == 1
        assert scheduler.last_result is result

    def test_default_interval_from_config(self, manager):
        scheduler = RetentionScheduler(manager)
        assert scheduler._interval == manager.config.retention_interval_seconds

    def test_start_stop(self, manager):
        scheduler = RetentionScheduler(manager, interval=0.01)
        scheduler.start()
        assert scheduler.running
        deadline = time.monotonic() + 2
        while scheduler.runs == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        scheduler.stop()
        assert not scheduler.running
        assert scheduler.runs >= 1

    def test_loop_survives_failures(self, manager, monkeypatch):
        calls = []

        def failing():
            calls.append(1)
            raise RuntimeError("sweep failed")

        monkeypatch.setattr(manager, "run_retention", failing)
        scheduler = RetentionScheduler(manager, interval=0.01)
        scheduler.start()
        deadline = time.monotonic() + 2
        while len(calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        scheduler.stop()
        assert len(calls) >= 2
