"""Shared fixtures: in-memory database, seed helpers and an API client."""

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from tao_dashboard.config import settings
from tao_dashboard.database import create_db_and_tables, get_session
from tao_dashboard.models import PortfolioSnapshot, PositionSnapshot, PositionType, SubnetMetricSnapshot

TEST_ADDRESS = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
CRON_SECRET = "test-cron-secret"


def _dec(value):
    return None if value is None else Decimal(str(value))


@pytest.fixture
def address() -> str:
    return TEST_ADDRESS


@pytest.fixture
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(test_engine):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def seed(test_engine):
    """Insert one portfolio snapshot with a root row and subnet rows.

    `subnets` items are (netuid, hotkey, alpha, value_tao, value_usd).
    """
    def _seed(
        captured_at: datetime,
        total_tao,
        total_usd=None,
        tao_usd=None,
        root_tao=0,
        subnets=(),
        address: str = TEST_ADDRESS,
    ) -> int:
        with Session(test_engine) as s:
            snap = PortfolioSnapshot(
                address=address,
                captured_at=captured_at,
                tao_usd=_dec(tao_usd),
                total_value_tao=_dec(total_tao),
                total_value_usd=_dec(total_usd),
            )
            s.add(snap)
            s.flush()
            snapshot_id = snap.id

            s.add(PositionSnapshot(
                snapshot_id=snapshot_id,
                position_type=PositionType.root,
                netuid=0,
                value_tao=_dec(root_tao),
                value_usd=Decimal(0),
            ))
            for netuid, hotkey, alpha, value_tao, value_usd in subnets:
                s.add(PositionSnapshot(
                    snapshot_id=snapshot_id,
                    position_type=PositionType.subnet,
                    netuid=netuid,
                    hotkey=hotkey,
                    alpha_balance=_dec(alpha),
                    value_tao=_dec(value_tao),
                    value_usd=_dec(value_usd),
                ))
            s.commit()
            return snapshot_id

    return _seed


@pytest.fixture
def seed_metric(test_engine):
    def _seed_metric(day: str, netuid: int, **values):
        with Session(test_engine) as s:
            s.add(SubnetMetricSnapshot(
                day=day,
                netuid=netuid,
                captured_at=datetime.fromisoformat(f"{day}T12:00:00+00:00"),
                **{k: _dec(v) for k, v in values.items()},
            ))
            s.commit()

    return _seed_metric


@pytest.fixture
def configured(monkeypatch):
    """Settings for a tracked wallet with the scheduler off."""
    monkeypatch.setattr(settings, "coldkey_address", TEST_ADDRESS)
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "taostats_api_key", "test-key")
    monkeypatch.setattr(settings, "scheduler_enabled", False)
    return settings


@pytest.fixture
def client(test_engine, configured):
    # No context manager: lifespan (scheduler, file-backed DB) stays off
    from tao_dashboard.main import app

    def _get_session():
        with Session(test_engine) as s:
            yield s

    app.dependency_overrides[get_session] = _get_session
    yield TestClient(app)
    app.dependency_overrides.clear()