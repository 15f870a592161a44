"""Transaction ledger — one immutable row per processed event.

Learn: Idempotency comes from the database, not from a read-then-write.
A "check if request_id exists, then insert" sequence has a window where two
deliveries of the same webhook both see "not found". Instead we insert
straight away and let the UNIQUE constraint on request_id arbitrate:

  insert + commit succeeds      → inserted=True (first delivery)
  IntegrityError, key now found → inserted=False, existing row (replay)
  IntegrityError, key not found → some other constraint broke → PersistenceError

Storage failures are reported to the caller, never retried here.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.db.models import TRANSACTION_COMPLETED, Transaction

logger = structlog.get_logger()


class PersistenceError(Exception):
    """The ledger could not durably record a transaction."""


@dataclass
class LedgerResult:
    inserted: bool
    record: Transaction


class TransactionLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_transaction(
        self,
        account_id: uuid.UUID,
        device_id: str,
        amount: Decimal,
        request_id: str,
    ) -> LedgerResult:
        """Insert a completed transaction keyed by request_id (idempotent)."""
        record = Transaction(
            account_id=account_id,
            device_serial=device_id,
            amount=amount,
            request_id=request_id,
            status=TRANSACTION_COMPLETED,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            existing = await self._get_by_request_id(request_id)
            if existing is None:
                logger.error(
                    "ledger.constraint_violation",
                    request_id=request_id,
                    error=str(e.orig),
                )
                raise PersistenceError(f"Constraint violation: {e.orig}") from e
            return LedgerResult(inserted=False, record=existing)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("ledger.write_failed", request_id=request_id, error=str(e))
            raise PersistenceError(f"Storage unavailable: {e}") from e

        # Sessions use expire_on_commit=False: id and created_at stay loaded.
        return LedgerResult(inserted=True, record=record)

    async def list_for_account(
        self, account_id: uuid.UUID, limit: int = 50
    ) -> list[Transaction]:
        """Newest-first transaction history for the dashboard's refresh path."""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get_by_request_id(self, request_id: str) -> Optional[Transaction]:
        try:
            result = await self.db.execute(
                select(Transaction).where(Transaction.request_id == request_id)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Storage unavailable: {e}") from e
        return result.scalars().first()
