"""Shared constants and defaults."""

# 10^9 RAO = 1 TAO
RAO_DECIMALS = 9

SNAPSHOT_JOB = "snapshot"

# Trailing realized-APY windows, in days
APY_WINDOWS_DAYS = (1, 7, 30)

# Query windows accepted by the HTTP layer
DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 365
DEFAULT_DELTA_HOURS = 48
MIN_DELTA_HOURS = 2
MAX_DELTA_HOURS = 24 * 30

# Upper bound on snapshots loaded per analytics request
MAX_SNAPSHOT_ROWS = 800

# Snapshot coverage view
COVERAGE_DAYS = 30
STALE_AFTER_DAYS = 1.75

# Interval to hours mapping for APScheduler
INTERVAL_HOURS: dict[str, float] = {
    "15m": 0.25,
    "30m": 0.5,
    "1h": 1.0,
    "2h": 2.0,
    "4h": 4.0,
    "8h": 8.0,
    "12h": 12.0,
    "1d": 24.0,
}
