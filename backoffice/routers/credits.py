from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.schemas.auth import TokenData
from backoffice.schemas.billing import (
    CreditBalanceResponse,
    CreditTransactionResponse,
    CreditTransactionsResponse,
    ExpiringCreditsResponse,
)
from backoffice.core.auth import get_current_user
from backoffice.core.database import get_db
from backoffice.core.exceptions import handle_database_errors
from backoffice.services.credit_service import credit_service

router = APIRouter()


@router.get("/balance", response_model=CreditBalanceResponse)
@handle_database_errors
async def get_credit_balance(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    balance = await credit_service.get_balance(db, current_user.user_id)
    return CreditBalanceResponse(success=True, balance=balance)


@router.get("/transactions", response_model=CreditTransactionsResponse)
@handle_database_errors
async def get_credit_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger entries of the current user, newest first"""
    transactions, total = await credit_service.list_transactions(db, current_user.user_id, skip=skip, limit=limit)
    return CreditTransactionsResponse(
        success=True,
        transactions=[CreditTransactionResponse.model_validate(tx) for tx in transactions],
        total_count=total
    )


@router.get("/expiring", response_model=ExpiringCreditsResponse)
@handle_database_errors
async def get_expiring_credits(
    days: int = Query(7, ge=1, le=365),
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Grants that expire within the next `days` days"""
    transactions = await credit_service.list_expiring_soon(db, current_user.user_id, within_days=days)
    return ExpiringCreditsResponse(
        success=True,
        within_days=days,
        total_expiring=sum(tx.amount for tx in transactions),
        transactions=[CreditTransactionResponse.model_validate(tx) for tx in transactions]
    )
