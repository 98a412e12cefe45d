from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, List
from datetime import datetime
from enum import Enum

from backoffice.models.payment import PlanInterval

# Bumped whenever the keys written by the checkout builder change
METADATA_VERSION = "1"

CREDIT_PURCHASE_TYPE = "credit_purchase"


class EventType(str, Enum):
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class CheckoutMetadata(BaseModel):
    """Correlation data written at checkout and read back from webhook events"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: Optional[str] = Field(None, alias="metadataVersion")
    user_id: Optional[str] = Field(None, alias="userId")
    user_name: Optional[str] = Field(None, alias="userName")
    plan_id: Optional[str] = Field(None, alias="planId")
    package_id: Optional[str] = Field(None, alias="packageId")
    price_id: Optional[str] = Field(None, alias="priceId")
    credits: Optional[str] = None
    type: Optional[str] = None

    def missing(self, *fields: str) -> List[str]:
        """Names of required fields that are absent or empty"""
        return [name for name in fields if not getattr(self, name)]

    def to_provider(self) -> Dict[str, str]:
        """Flatten to the string map stored on provider objects"""
        data = self.model_dump(by_alias=True, exclude_none=True)
        return {key: str(value) for key, value in data.items()}


class ProviderSubscription(BaseModel):
    id: str
    customer_id: str
    status: str
    price_id: Optional[str] = None
    interval: PlanInterval = PlanInterval.MONTH
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    metadata: CheckoutMetadata = Field(default_factory=CheckoutMetadata)


class ProviderCheckoutSession(BaseModel):
    id: str
    customer_id: Optional[str] = None
    mode: str
    amount_total: Optional[int] = None
    metadata: CheckoutMetadata = Field(default_factory=CheckoutMetadata)

    @property
    def is_credit_purchase(self) -> bool:
        return self.metadata.type == CREDIT_PURCHASE_TYPE


class WebhookEvent(BaseModel):
    """Provider-neutral event envelope handed to the reconciliation engine"""
    id: str
    type: EventType
    created: Optional[int] = None
    subscription: Optional[ProviderSubscription] = None
    session: Optional[ProviderCheckoutSession] = None
