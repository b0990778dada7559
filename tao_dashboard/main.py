"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tao_dashboard.config import settings
from tao_dashboard.database import create_db_and_tables
from tao_dashboard.utils.logging import setup_logging
from tao_dashboard.api import dashboard, portfolio, system


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from tao_dashboard.engine.scheduler import start_scheduler, stop_scheduler
    if settings.scheduler_enabled:
        start_scheduler()

    yield

    stop_scheduler()


app = FastAPI(
    title="TAO Dashboard",
    description="Read-only Bittensor wallet analytics: snapshots, returns, attribution and risk signals",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(portfolio.router)
app.include_router(dashboard.router)
app.include_router(system.router)
