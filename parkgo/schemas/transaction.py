"""
Transaction and top-up schemas
"""

from pydantic import Field
from typing import Optional
from uuid import UUID
from datetime import datetime

from parkgo.schemas.base import BaseSchema, IDSchema, TimestampSchema
from parkgo.models.transaction import (
    TransactionType,
    TransactionStatus,
    PaymentMethod,
    ReconciliationSource,
)


class TopUpCreate(BaseSchema):
    """Top-up request"""
    amount: int = Field(..., gt=0)
    payment_method: PaymentMethod


class TransactionResponse(IDSchema, TimestampSchema):
    """Ledger entry"""
    user_id: UUID
    booking_id: Optional[UUID] = None
    correlation_id: str
    type: TransactionType
    amount: int
    payment_method: PaymentMethod
    status: TransactionStatus
    va_number: Optional[str] = None
    bank_code: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_payload: Optional[str] = None
    description: Optional[str] = None
    reconciled_by: Optional[ReconciliationSource] = None
    completed_at: Optional[datetime] = None


class TopUpResponse(BaseSchema):
    transaction: TransactionResponse
    simulated: bool = False


class ReconciliationResponse(BaseSchema):
    transaction: TransactionResponse
    applied: bool
    gateway_unavailable: bool = False
