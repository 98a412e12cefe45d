from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from backoffice.models.payment import PaymentType, PaymentStatus, PlanInterval
from backoffice.models.credit_transaction import CreditTransactionType

# Payment Record Schemas
class PaymentBase(BaseModel):
    user_id: str
    customer_id: str
    type: PaymentType
    price_id: str
    status: PaymentStatus
    interval: PlanInterval = PlanInterval.NONE
    subscription_id: Optional[str] = None
    session_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None

class PaymentCreate(PaymentBase):
    pass

class PaymentUpdate(BaseModel):
    price_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    interval: Optional[PlanInterval] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None

class PaymentResponse(PaymentBase):
    id: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

class GetPaymentsResponse(BaseModel):
    success: bool
    payments: List[PaymentResponse]

# Credit Ledger Schemas
class CreditTransactionCreate(BaseModel):
    user_id: str
    amount: int = Field(..., description="Positive = grant, negative = consumption")
    type: CreditTransactionType
    description: Optional[str] = None
    payment_id: Optional[str] = None
    grant_key: Optional[str] = Field(None, description="Deduplication key for retried grants")
    expire_at: Optional[datetime] = None

class CreditTransactionResponse(BaseModel):
    id: str
    user_id: str
    amount: int
    type: str
    description: Optional[str] = None
    payment_id: Optional[str] = None
    expire_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

class CreditBalanceResponse(BaseModel):
    success: bool
    balance: int

class CreditTransactionsResponse(BaseModel):
    success: bool
    transactions: List[CreditTransactionResponse]
    total_count: int

class ExpiringCreditsResponse(BaseModel):
    success: bool
    within_days: int
    total_expiring: int
    transactions: List[CreditTransactionResponse]
