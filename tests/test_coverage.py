"""Tests for snapshot cadence coverage."""

from datetime import datetime, timedelta, timezone

from tao_dashboard.services.coverage import last_n_utc_days, snapshot_coverage, utc_day_key

NOW = datetime(2026, 3, 31, 12, tzinfo=timezone.utc)


class TestDayKeys:
    def test_utc_day_key_converts_offsets(self):
        ts = datetime(2026, 3, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert utc_day_key(ts) == "2026-04-01"

    def test_last_n_days_oldest_first(self):
        assert last_n_utc_days(NOW, 3) == ["2026-03-29", "2026-03-30", "2026-03-31"]


class TestSnapshotCoverage:
    def test_streak_and_missing(self):
        captured = [
            datetime(2026, 3, 31, 6, tzinfo=timezone.utc),
            datetime(2026, 3, 30, 6, tzinfo=timezone.utc),
            datetime(2026, 3, 29, 6, tzinfo=timezone.utc),
            datetime(2026, 3, 20, 6, tzinfo=timezone.utc),
        ]
        out = snapshot_coverage(captured, NOW)
        assert out["streakDays"] == 3
        assert out["coverageLast30"] == {"expected": 30, "present": 4, "missing": 26}
        assert len(out["missingDatesUtc"]) == 14
        assert out["missingDatesUtc"][0] == "2026-03-14"
        assert out["missingDatesUtc"][-1] == "2026-03-28"
        assert "2026-03-20" not in out["missingDatesUtc"]

    def test_fresh_snapshot(self):
        out = snapshot_coverage([datetime(2026, 3, 31, 6, tzinfo=timezone.utc)], NOW)
        assert out["lastSnapshotAt"] == "2026-03-31T06:00:00+00:00"
        assert out["snapshotAgeDays"] == "0.25"
        assert out["snapshotStale"] is False

    def test_stale_snapshot(self):
        out = snapshot_coverage([NOW - timedelta(days=2)], NOW)
        assert out["snapshotStale"] is True
        assert out["streakDays"] == 0

    def test_no_snapshots(self):
        out = snapshot_coverage([], NOW)
        assert out["lastSnapshotAt"] is None
        assert out["snapshotAgeDays"] is None
        assert out["snapshotStale"] is True
        assert out["coverageLast30"]["missing"] == 30
        assert out["expectedCadence"] == "daily"
