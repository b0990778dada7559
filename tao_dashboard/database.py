"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect, text
from sqlmodel import SQLModel, create_engine, Session

from tao_dashboard.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _decimal_column_type(bind) -> str:
    # Mirrors ExactDecimal: NUMERIC on PostgreSQL, plain text elsewhere
    return "NUMERIC(36, 18)" if bind.dialect.name == "postgresql" else "VARCHAR(64)"


def _run_migrations(bind=None):
    """Run lightweight schema migrations for databases created by older releases."""
    bind = bind or engine
    inspector = inspect(bind)

    if "portfolio_snapshot" in inspector.get_table_names():
        columns = {col["name"] for col in inspector.get_columns("portfolio_snapshot")}
        # Totals were first kept only inside a raw payload column
        for column in ("total_value_tao", "total_value_usd"):
            if column not in columns:
                logger.info(f"Migrating: adding portfolio_snapshot.{column}")
                with bind.connect() as conn:
                    conn.execute(text(
                        f"ALTER TABLE portfolio_snapshot ADD COLUMN {column} {_decimal_column_type(bind)}"
                    ))
                    conn.commit()

    if "position_snapshot" in inspector.get_table_names():
        columns = {col["name"] for col in inspector.get_columns("position_snapshot")}
        if "subnet_name" not in columns:
            logger.info("Migrating: adding position_snapshot.subnet_name")
            with bind.connect() as conn:
                conn.execute(text("ALTER TABLE position_snapshot ADD COLUMN subnet_name VARCHAR"))
                conn.commit()

    if "cron_run" in inspector.get_table_names():
        columns = {col["name"] for col in inspector.get_columns("cron_run")}
        if "metrics_inserted" not in columns:
            logger.info("Migrating: adding cron_run.metrics_inserted")
            with bind.connect() as conn:
                conn.execute(text("ALTER TABLE cron_run ADD COLUMN metrics_inserted INTEGER"))
                conn.commit()


def create_db_and_tables(bind=None):
    """Create all tables. Called on startup."""
    import tao_dashboard.models  # noqa: F401  (populates metadata)

    SQLModel.metadata.create_all(bind or engine)
    _run_migrations(bind)


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
