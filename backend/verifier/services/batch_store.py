"""Batch Store collaborator contract.

The engine reads a batch's transactions exactly once, when the session is
created. Where they come from (uploads, the payments system) is outside
this package.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence


@dataclass(frozen=True)
class RawTransaction:
    external_transaction_id: str
    amount: Decimal
    store_reference: str | None = None
    risk_score: float | None = None


class BatchStore(Protocol):
    def get_transactions_for_batch(self, batch_id: uuid.UUID) -> Sequence[RawTransaction]:
        """Return the batch's transactions in review order."""
        ...


class StaticBatchStore:
    """Dict-backed BatchStore for fixtures, seeding and local runs."""

    def __init__(self, batches: dict[uuid.UUID, Sequence[RawTransaction]] | None = None):
        self._batches = dict(batches or {})

    def add_batch(self, batch_id: uuid.UUID, transactions: Sequence[RawTransaction]) -> None:
        self._batches[batch_id] = tuple(transactions)

    def get_transactions_for_batch(self, batch_id: uuid.UUID) -> Sequence[RawTransaction]:
        try:
            return tuple(self._batches[batch_id])
        except KeyError:
            raise LookupError(f"Batch {batch_id} is not available.") from None
