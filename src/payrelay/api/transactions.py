"""Transaction history — what the dashboard loads on refresh.

Live updates are best-effort; this endpoint reads the ledger, which is the
source of truth, so a missed push is fixed by reloading the page.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.auth.dependencies import CurrentAccount, get_current_account
from payrelay.db.engine import get_db
from payrelay.schemas.transaction import TransactionRead
from payrelay.services.ledger import TransactionLedger

router = APIRouter(prefix="/transactions")


@router.get("", response_model=list[TransactionRead])
async def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    current: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    return await TransactionLedger(db).list_for_account(current.uuid, limit=limit)
