"""
Top-up, ledger and payment reconciliation endpoints
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.api.deps import get_transaction_ledger
from parkgo.core.database import get_session
from parkgo.core.redis import RateLimiter
from parkgo.core.security import get_current_user
from parkgo.models.transaction import TransactionType, TransactionStatus
from parkgo.models.user import User
from parkgo.schemas.transaction import (
    ReconciliationResponse,
    TopUpCreate,
    TopUpResponse,
    TransactionResponse,
)
from parkgo.schemas.user import BalanceResponse
from parkgo.services.transaction_ledger import TransactionLedger

router = APIRouter()

top_up_rate_limit = RateLimiter("topups", "RATE_LIMIT_TOPUP_PER_MINUTE")


def _reconciliation(result) -> ReconciliationResponse:
    return ReconciliationResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        applied=result.applied,
        gateway_unavailable=result.gateway_unavailable
    )


@router.post("/top-up", response_model=TopUpResponse, status_code=status.HTTP_201_CREATED)
async def create_top_up(
    top_up: TopUpCreate,
    current_user: User = Depends(top_up_rate_limit),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    """
    Open a top-up with the payment gateway
    """
    result = await ledger.create_top_up(db, current_user, top_up.amount, top_up.payment_method)
    return TopUpResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        simulated=result.simulated
    )


@router.post("/webhook")
async def gateway_notification(
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    """
    Payment gateway push notification, authenticated by its signature
    """
    result = await ledger.handle_notification(db, payload)
    return {
        "status": "OK",
        "correlation_id": result.transaction.correlation_id,
        "transaction_status": TransactionStatus(result.transaction.status).value,
        "applied": result.applied
    }


@router.get("/", response_model=List[TransactionResponse])
async def list_transactions(
    type_filter: Optional[TransactionType] = None,
    status_filter: Optional[TransactionStatus] = None,
    limit: int = 50,
    offset: int = 0,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    return await ledger.list_transactions(
        db, current_user.id, type_filter, status_filter, limit=min(limit, 200), offset=offset
    )


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    return BalanceResponse(balance=await ledger.get_balance(db, current_user.id))


@router.get("/{correlation_id}", response_model=TransactionResponse)
async def get_transaction(
    correlation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    return await ledger.get_transaction(db, correlation_id, current_user.id)


@router.post("/{correlation_id}/check-status", response_model=ReconciliationResponse)
async def check_transaction_status(
    correlation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    """
    Ask the gateway for the latest status and reconcile it
    """
    return _reconciliation(await ledger.check_status(db, correlation_id, current_user.id))


@router.post("/{correlation_id}/simulate-success", response_model=ReconciliationResponse)
async def simulate_payment_success(
    correlation_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: TransactionLedger = Depends(get_transaction_ledger)
) -> Any:
    """
    Settle a pending transaction without the gateway (sandbox only)
    """
    return _reconciliation(await ledger.simulate_success(db, correlation_id, current_user.id))
