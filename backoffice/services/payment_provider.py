from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.schemas.subscription import SubscriptionInfo
from backoffice.schemas.webhook import WebhookEvent


@dataclass(frozen=True)
class CheckoutResult:
    id: str
    url: str


class PaymentProvider(ABC):
    """Capabilities the rest of the service needs from a payment provider"""

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> Optional[str]:
        ...

    @abstractmethod
    async def create_customer(self, email: str, name: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def create_checkout(
        self,
        db: AsyncSession,
        *,
        plan_id: str,
        price_id: str,
        customer_email: str,
        user_id: str,
        user_name: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        locale: Optional[str] = None
    ) -> CheckoutResult:
        ...

    @abstractmethod
    async def create_credit_checkout(
        self,
        db: AsyncSession,
        *,
        package_id: str,
        customer_email: str,
        user_id: str,
        user_name: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        locale: Optional[str] = None
    ) -> CheckoutResult:
        ...

    @abstractmethod
    async def create_portal(self, customer_id: str, return_url: Optional[str] = None, locale: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def list_subscriptions(self, db: AsyncSession, user_id: str) -> List[SubscriptionInfo]:
        ...

    @abstractmethod
    def verify_and_parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Raise WebhookVerificationError, MalformedEventError or UnsupportedEventError, else return the event"""
        ...
