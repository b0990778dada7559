"""Snapshot cadence health: which recent UTC days have a snapshot."""

from datetime import datetime, timezone
from typing import Iterable

import pandas as pd

from tao_dashboard.services.numeric import fixed_str
from tao_dashboard.utils.constants import COVERAGE_DAYS, STALE_AFTER_DAYS

MISSING_LIST_CAP = 14


def utc_day_key(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).date().isoformat()


def last_n_utc_days(now: datetime, n: int) -> list[str]:
    """Day keys for the last `n` UTC days, oldest first, ending today."""
    end = pd.Timestamp(utc_day_key(now))
    return [d.date().isoformat() for d in pd.date_range(end=end, periods=n, freq="D")]


def snapshot_coverage(
    captured_ats: Iterable[datetime],
    now: datetime,
    expected_days: int = COVERAGE_DAYS,
) -> dict:
    captured = list(captured_ats)
    expected = last_n_utc_days(now, expected_days)
    present = {utc_day_key(ts) for ts in captured}

    missing = [k for k in expected if k not in present]

    streak = 0
    for key in reversed(expected):
        if key not in present:
            break
        streak += 1

    last = max(captured) if captured else None
    age_days = (now - last).total_seconds() / 86400 if last else None

    return {
        "expectedCadence": "daily",
        "lastSnapshotAt": last.isoformat() if last else None,
        "snapshotAgeDays": fixed_str(age_days, places=2),
        "snapshotStale": age_days > STALE_AFTER_DAYS if age_days is not None else True,
        "coverageLast30": {
            "expected": expected_days,
            "present": expected_days - len(missing),
            "missing": len(missing),
        },
        "missingDatesUtc": missing[-MISSING_LIST_CAP:],
        "streakDays": streak,
    }
