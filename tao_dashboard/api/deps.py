"""Shared API dependencies."""

import secrets

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from tao_dashboard.config import settings
from tao_dashboard.schemas.window import DeltaQuery, WindowQuery

bearer_scheme = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Accept the cron secret as `Authorization: Bearer <secret>` or `x-cron-secret`."""
    expected = settings.cron_secret
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron secret is not configured",
        )

    got = credentials.credentials.strip() if credentials else (x_cron_secret or "").strip()
    if not got or not secrets.compare_digest(got.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def window_days(days: str | None = None) -> int:
    return WindowQuery(days=days).days


def delta_hours(hours: str | None = None) -> int:
    return DeltaQuery(hours=hours).hours


def tracked_address() -> str:
    """The configured coldkey; analytics endpoints are meaningless without it."""
    if not settings.coldkey_address:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="coldkey_address is not configured",
        )
    return settings.coldkey_address
