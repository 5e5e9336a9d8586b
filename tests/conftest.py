"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database with no disk I/O.
External clients (notification bot, payment gateway) are replaced by
AsyncMocks for every test.
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.schemas.documents import PaymentDoc, PaymentStatus, TransactionDoc, TransactionStatus
from app.services import change_feed, rate, store


# ---------------------------------------------------------------------------
# In-memory database engine shared across all fixtures in a test session.
# StaticPool forces all SQLAlchemy connections to reuse the same underlying
# sqlite3 connection, which is required for in-memory SQLite.
# ---------------------------------------------------------------------------
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)

# 2024-01-15 10:00 facility time (Asia/Bangkok, UTC+7)
BASE_TIME = datetime(2024, 1, 15, 3, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture(autouse=True)
def reset_rate_cache():
    rate.rate_cache.invalidate()
    yield
    rate.rate_cache.invalidate()


@pytest.fixture(autouse=True)
def clients():
    """Mock notifier and gateway in the change feed's client map."""
    notifier = AsyncMock()
    notifier.send = AsyncMock(return_value=True)
    gateway = AsyncMock()
    gateway.create_intent = AsyncMock(return_value={"id": "pi_new", "client_secret": "pi_new_secret"})
    gateway.update_intent = AsyncMock(return_value=None)
    gateway.cancel_intent = AsyncMock(return_value=None)
    mocks = {"notifier": notifier, "gateway": gateway}
    with patch.dict(change_feed.CLIENTS, mocks):
        yield mocks


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """
    FastAPI TestClient with the real DB dependency overridden to use
    the in-memory test session.  The TestClient is NOT used as a context
    manager so the lifespan hook (which creates the on-disk tables) is skipped.
    """
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers (not fixtures) so any test file can import and call them directly.
# ---------------------------------------------------------------------------
def transaction_doc(
    tid: Optional[str] = "T1",
    license_number: str = "ABC-123",
    timestamp_in: datetime = BASE_TIME,
    timestamp_out: Optional[datetime] = None,
    fee: float = 50.0,
    paid: float = 0.0,
    status: Optional[TransactionStatus] = TransactionStatus.UNPAID,
    is_cancel: Optional[bool] = None,
    remark: Optional[str] = "",
    image_in: Optional[str] = None,
    image_out: Optional[str] = None,
) -> TransactionDoc:
    """A processed (tid-stamped) transaction value."""
    return TransactionDoc(
        tid=tid,
        license_number=license_number,
        timestamp_in=timestamp_in,
        timestamp_out=timestamp_out,
        fee=fee,
        paid=paid,
        status=status,
        is_cancel=is_cancel,
        remark=remark,
        image_in=image_in,
        image_out=image_out,
    )


def edit(previous, **changes):
    """The value a client writes when it edits `previous`: changes + fresh marker."""
    return previous.model_copy(update={**changes, "is_edit": True})


def make_transaction(db, tid: str = "T1", **fields) -> TransactionDoc:
    doc = transaction_doc(tid=tid, **fields)
    store.put_transaction(db, tid, doc)
    db.commit()
    return doc


def make_payment(
    db,
    tid: str,
    pid: str,
    amount: float = 50.0,
    status: PaymentStatus = PaymentStatus.PENDING,
    paid_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> PaymentDoc:
    doc = PaymentDoc(
        pid=pid,
        amount=amount,
        timestamp=timestamp or BASE_TIME + timedelta(hours=1),
        status=status,
        paid_by=paid_by,
    )
    store.put_payment(db, tid, pid, doc)
    db.commit()
    return doc


def set_rate(db, value: Optional[float] = 50.0):
    store.write_rate(db, value)
    db.commit()
    rate.rate_cache.invalidate()


def add_owners(db, license_number: str, *owner_ids: str):
    for owner_id in owner_ids:
        store.add_owner(db, license_number, owner_id)
    db.commit()
