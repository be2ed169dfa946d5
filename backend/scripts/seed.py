"""Seed script: creates demo verification sessions and prints dev tokens.

Idempotent: batches use fixed ids, so re-running skips sessions that exist.
Run: python scripts/seed.py   (from backend/, after `alembic upgrade head`)
"""
import os
import random
import sys
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select

from verifier.core.deps import ADMIN, AUDITOR, BUSINESS_USER
from verifier.core.security import create_access_token
from verifier.db.session import SessionLocal
from verifier.models.verification import VerificationSession
from verifier.services import workflow
from verifier.services.batch_store import RawTransaction, StaticBatchStore

NOW = datetime.now(timezone.utc)
SEED_NAMESPACE = uuid.UUID("6f1c2b1e-3f7d-4c55-9a1e-1f2d3c4b5a69")

BUSINESSES = {
    "Corner Coffee": uuid.uuid5(SEED_NAMESPACE, "corner-coffee"),
    "Harbor Books": uuid.uuid5(SEED_NAMESPACE, "harbor-books"),
}

# (business, week label, transaction count, deadline offset)
DEMO_BATCHES = [
    ("Corner Coffee", "2026-W09", 25, timedelta(days=5)),
    ("Corner Coffee", "2026-W08", 12, timedelta(hours=4)),
    ("Harbor Books", "2026-W09", 40, timedelta(days=2)),
    ("Harbor Books", "2026-W07", 8, -timedelta(hours=2)),
]


def _transactions(label: str, count: int) -> list[RawTransaction]:
    rng = random.Random(label)
    return [
        RawTransaction(
            external_transaction_id=f"{label}-{i:04d}",
            amount=Decimal(rng.randint(300, 25000)) / 100,
            store_reference=f"POS-{rng.randint(1, 4)}",
            risk_score=round(rng.uniform(0, 100), 2),
        )
        for i in range(count)
    ]


def seed() -> None:
    store = StaticBatchStore()
    with SessionLocal() as db:
        for business, label, count, offset in DEMO_BATCHES:
            business_id = BUSINESSES[business]
            batch_id = uuid.uuid5(SEED_NAMESPACE, f"{business}:{label}")
            exists = db.execute(
                select(VerificationSession.id).where(VerificationSession.batch_id == batch_id)
            ).scalar()
            if exists:
                print(f"  [skip] {business} {label}")
                continue
            store.add_batch(batch_id, _transactions(label, count))
            session = workflow.create_session(db, store, business_id, batch_id, deadline=NOW + offset)
            print(f"  [new]  {business} {label}: session {session.id} ({count} transactions)")

    print("\nDev tokens:")
    for business, business_id in BUSINESSES.items():
        token = create_access_token(f"reviewer@{business.lower().replace(' ', '-')}", BUSINESS_USER, business_id=business_id)
        print(f"  {business:14s} {token}")
    print(f"  {'admin':14s} {create_access_token('admin', ADMIN)}")
    print(f"  {'auditor':14s} {create_access_token('auditor', AUDITOR)}")


if __name__ == "__main__":
    print("Seeding verification sessions...")
    seed()
    print("Done.")
