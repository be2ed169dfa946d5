"""Shared fixtures: a fresh SQLite file database per test and seeded batches."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import verifier.models  # noqa: F401  registers tables on Base.metadata
from verifier.db.base import Base
from verifier.services import workflow
from verifier.services.batch_store import RawTransaction, StaticBatchStore
from verifier.services.locks import session_locks

# Fixed clock for deterministic deadline and retry-window checks.
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
DEADLINE = NOW + timedelta(days=3)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'verifier.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def batch_store():
    return StaticBatchStore()


@pytest.fixture(autouse=True)
def _no_leaked_locks():
    yield
    assert session_locks.active_count() == 0


def make_batch(n: int, risk: float | None = None) -> list[RawTransaction]:
    return [
        RawTransaction(
            external_transaction_id=f"TX-{i:04d}",
            amount=Decimal("10.00") + i,
            store_reference=f"STORE-{i % 3}",
            risk_score=risk,
        )
        for i in range(n)
    ]


@pytest.fixture
def make_session(session_factory, batch_store):
    """Create a verification session over a fresh n-transaction batch."""
    def _make(n: int = 5, business_id: uuid.UUID | None = None, deadline: datetime = DEADLINE, risk=None):
        batch_id = uuid.uuid4()
        batch_store.add_batch(batch_id, make_batch(n, risk))
        with session_factory() as db:
            return workflow.create_session(
                db, batch_store, business_id or uuid.uuid4(), batch_id, deadline=deadline, now=NOW
            )
    return _make


def transaction_ids(db, session_id) -> list[uuid.UUID]:
    from verifier.services import decision_store
    return [tx.id for tx in decision_store.list_transactions(db, session_id)]
