"""Database models."""

from tao_dashboard.models.portfolio_snapshot import PortfolioSnapshot
from tao_dashboard.models.position_snapshot import PositionSnapshot, PositionType
from tao_dashboard.models.subnet_metric_snapshot import SubnetMetricSnapshot
from tao_dashboard.models.cron_run import CronRun

__all__ = [
    "PortfolioSnapshot",
    "PositionSnapshot",
    "PositionType",
    "SubnetMetricSnapshot",
    "CronRun",
]
