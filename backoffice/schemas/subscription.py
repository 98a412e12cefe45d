from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime

from backoffice.models.payment import PaymentStatus, PaymentType, PlanInterval

class CreateCheckoutRequest(BaseModel):
    plan_id: str
    price_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    locale: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

class CreateCreditCheckoutRequest(BaseModel):
    package_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    locale: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

class CheckoutResponse(BaseModel):
    success: bool
    checkout_url: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[str] = None

class BillingPortalRequest(BaseModel):
    return_url: Optional[str] = None
    locale: Optional[str] = None

class BillingPortalResponse(BaseModel):
    success: bool
    portal_url: Optional[str] = None
    error: Optional[str] = None

class SubscriptionInfo(BaseModel):
    id: str
    customer_id: str
    price_id: str
    status: PaymentStatus
    type: PaymentType
    interval: PlanInterval
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    created_at: datetime

class ActiveSubscriptionResponse(BaseModel):
    success: bool
    subscription: Optional[SubscriptionInfo] = None

class PriceResponse(BaseModel):
    price_id: str
    type: PaymentType
    amount: int
    currency: str
    interval: PlanInterval
    trial_period_days: int = 0

class PricePlanResponse(BaseModel):
    id: str
    name: str
    is_free: bool
    is_lifetime: bool
    credits: Optional[int] = None
    prices: List[PriceResponse]

class CreditPackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    expire_days: Optional[int] = None
    popular: bool = False
    price: PriceResponse

class PlansResponse(BaseModel):
    success: bool
    plans: List[PricePlanResponse]
    credit_packages: List[CreditPackageResponse]
