"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import date
from unittest.mock import patch
from typing import List

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("IPL_BASE_AMOUNT", "200000,250000")

from ipl_recon.config import ReconSettings
from ipl_recon.database import (
    Base,
    Payment,
    Resident,
    UnitOfWork,
    create_async_engine,
    get_async_session_factory,
)
from ipl_recon.reconciliation.models import PaymentSnapshot, ResidentSnapshot
from ipl_recon.reconciliation.service import ReconciliationService

STATEMENT_HEADER = "Tanggal,Keterangan,Cabang,Jumlah,CR/DB,Saldo"

MARCH_STATEMENT = "\n".join([
    STATEMENT_HEADER,
    "'05/03,TRSF E-BANKING CR 0503/FTSCY/WS95051 250087.00 IPL MARET AGUSTINUS ERWIN,0998,250087.00,CR,1250087.00",
    "'06/03,BIAYA ADMIN,0000,15000.00,DB,1235087.00",
    "'07/03,TRANSFER DARI BUDI SANTOSO,0998,300000.00,CR,1535087.00",
    "'08/03,SETORAN TUNAI C11/10,0998,123456.00,CR,1658543.00",
    "'09/03,KIRIMAN QWERTY,0998,150000.00,CR,1808543.00",
    "bad,row",
    "'32/03,KIRIMAN,0998,1000.00,CR,1809543.00",
])


@pytest.fixture
def mock_api_key():
    """Set up mock API key for authentication."""
    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {mock_api_key}"}


@pytest.fixture
def settings() -> ReconSettings:
    return ReconSettings(base_amounts=[200000, 250000])


@pytest.fixture
def resident_snapshots() -> List[ResidentSnapshot]:
    """Directory snapshot used by the pure matching tests."""
    return [
        ResidentSnapshot(id="r-agus", name="AGUSTINUS ERWIN", payment_index=87, block="C11", house_number="10"),
        ResidentSnapshot(id="r-budi", name="BUDI SANTOSO", payment_index=12, block="A2", house_number="5"),
        ResidentSnapshot(id="r-siti", name="SITI AMINAH / ANDI PRATAMA", block="B3", house_number="7"),
        ResidentSnapshot(id="r-dewi", name="DEWI LESTARI", payment_index=45),
    ]


@pytest.fixture
def payment_snapshots() -> List[PaymentSnapshot]:
    return [
        PaymentSnapshot(id="p-agus-mar", resident_id="r-agus", amount=250087, payment_date=date(2024, 3, 5)),
    ]


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(db_engine):
    """Session factory bound to the test engine, with the resident directory seeded."""
    factory = get_async_session_factory(db_engine)
    async with factory() as session:
        session.add_all([
            Resident(id="r-agus", name="AGUSTINUS ERWIN", payment_index=87, block="C11", house_number="10", rt=3),
            Resident(id="r-budi", name="BUDI SANTOSO", payment_index=12, block="A2", house_number="5", rt=3),
            Resident(id="r-siti", name="SITI AMINAH / ANDI PRATAMA", block="B3", house_number="7", rt=4),
            Resident(id="r-dewi", name="DEWI LESTARI", payment_index=45),
            Resident(id="r-gone", name="MOVED OUT", payment_index=99, block="D1", house_number="1", is_active=False),
        ])
        await session.flush()
        session.add_all([
            Payment(id="p-agus-mar", resident_id="r-agus", amount=250087, payment_date=date(2024, 3, 5)),
            Payment(id="p-budi-mar", resident_id="r-budi", amount=200012, payment_date=date(2024, 3, 1)),
        ])
        await session.commit()
    return factory


@pytest.fixture
def uow_factory(session_factory):
    return lambda: UnitOfWork(session_factory)


@pytest.fixture
def service(uow_factory, settings) -> ReconciliationService:
    return ReconciliationService(uow_factory, settings=settings)
