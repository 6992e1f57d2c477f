"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import AsyncGenerator
from core.config import settings
from core.database import build_engine, build_session_maker
from models import Base, SkuMaster


CATALOG = [
    "IPHONE13-128GB-BLACK",
    "IPHONE13-128GB-BLUE-VERIZON",
    "IPHONE13-256GB-BLACK",
    "IPHONE14PRO-256GB-SILVER",
    "GALAXYS21-128GB-BLACK-T-MOBILE",
    "WATCH-SERIES7-45-BLACK",
    "TAB-IPADAIR-64GB-GRAY-WIFI",
]


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite database per test (several sessions share it)"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seeded_catalog(db_session):
    """Master catalog used by matching tests"""
    db_session.add_all([SkuMaster(sku_code=code) for code in CATALOG])
    await db_session.commit()
    return list(CATALOG)


@pytest.fixture
def fast_settings(monkeypatch):
    """Settings tuned so worker loops and retries do not wait"""
    monkeypatch.setattr(settings, "QUEUE_POLL_INTERVAL", 0.01)
    monkeypatch.setattr(settings, "PHONECHECK_RETRY_DELAY", 0.0)
    monkeypatch.setattr(settings, "CATALOG_REFRESH_SECONDS", 0.0)
    return settings


@pytest.fixture
def phone_payload():
    """Raw inspection payload as posted by a bulk upload"""
    return {
        "imei": "356789012345678",
        "make": "Apple",
        "model": "iPhone 13",
        "storage": "128GB",
        "color": "Black",
        "carrier": "Unlocked",
        "batteryHealth": "91%",
        "working": "Yes",
        "grade": "A",
    }


@pytest.fixture
def watch_payload():
    return {
        "IMEI": "352000000000001",
        "brand": "Apple",
        "deviceName": "Apple Watch Series 7",
        "model": "Series 7",
        "caseSize": "45mm",
        "color": "Black",
        "status": "PASS",
    }


@pytest.fixture
def make_payloads():
    """Factory for n distinct phone payloads"""
    def _make(n, start=0, **overrides):
        payloads = []
        for i in range(start, start + n):
            payload = {
                "imei": f"35000000000{i:04d}",
                "model": "iPhone 13",
                "storage": "128GB",
                "color": "Black",
                "working": "yes",
            }
            payload.update(overrides)
            payloads.append(payload)
        return payloads
    return _make
