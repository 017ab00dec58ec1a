"""API routes for credit balances.

This module provides REST endpoints for:
- GET /api/v1/credits/balance - Get current balance
- GET /api/v1/credits/history - Get transaction history
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_account, get_db
from app.models.account import Account
from app.models.credit_transaction import TransactionStatus
from app.schemas.credits import (
    CreditBalanceResponse,
    TransactionHistoryResponse,
    TransactionResponse,
)
from app.services.ledger import LOW_BALANCE_THRESHOLD, get_credit_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get(
    "/balance",
    response_model=CreditBalanceResponse,
    summary="Get credit balance",
    description="Get the current credit balance for the authenticated account",
)
async def get_balance(
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> CreditBalanceResponse:
    """Get the current account's credit balance.

    The balance is re-read from the database rather than taken from the
    account loaded for authentication.
    """
    balance = await get_credit_ledger(db).get_balance(current_account.id)

    return CreditBalanceResponse(
        credits_balance=balance,
        is_premium=current_account.is_premium,
        is_low_balance=balance < LOW_BALANCE_THRESHOLD,
    )


@router.get(
    "/history",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history",
    description="Get paginated credit transaction history for the authenticated account",
)
async def get_history(
    transaction_status: Optional[TransactionStatus] = Query(
        default=None,
        alias="status",
        description="Filter by transaction status",
    ),
    limit: int = Query(
        default=20,
        ge=1,
        le=100,
        description="Maximum number of transactions to return",
    ),
    offset: int = Query(
        default=0,
        ge=0,
        description="Offset for pagination",
    ),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
) -> TransactionHistoryResponse:
    """Get transaction history for the current account.

    Args:
        transaction_status: Optional filter by status
        limit: Maximum transactions to return (1-100)
        offset: Pagination offset
        current_account: Authenticated account
        db: Database session

    Returns:
        TransactionHistoryResponse with paginated transactions
    """
    transactions, total = await get_credit_ledger(db).get_transaction_history(
        account_id=current_account.id,
        limit=limit,
        offset=offset,
        status=transaction_status,
    )

    return TransactionHistoryResponse(
        transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )
