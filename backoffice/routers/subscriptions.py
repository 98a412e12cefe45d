from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
import logging

from backoffice.schemas.subscription import (
    ActiveSubscriptionResponse,
    BillingPortalRequest,
    BillingPortalResponse,
    CheckoutResponse,
    CreateCheckoutRequest,
    CreateCreditCheckoutRequest,
    CreditPackageResponse,
    PlansResponse,
    PricePlanResponse,
    PriceResponse,
    SubscriptionInfo,
)
from backoffice.schemas.auth import TokenData
from backoffice.core.auth import get_current_user
from backoffice.core.database import get_db
from backoffice.core.exceptions import PaymentProviderError, UnknownPriceError
from backoffice.core.price_plans import Price, plan_catalog
from backoffice.models.payment import PaymentStatus
from backoffice.services.customer_service import CustomerService
from backoffice.services.payment_provider import PaymentProvider
from backoffice.services.stripe_service import get_payment_provider

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIVE_STATUSES = (PaymentStatus.ACTIVE, PaymentStatus.TRIALING)


def _require_email(current_user: TokenData) -> str:
    if not current_user.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An email address is required for checkout"
        )
    return current_user.email


@router.post("/create-checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    checkout_request: CreateCheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Create a Stripe checkout session for a subscription or lifetime plan"""
    try:
        result = await provider.create_checkout(
            db,
            plan_id=checkout_request.plan_id,
            price_id=checkout_request.price_id,
            customer_email=_require_email(current_user),
            user_id=current_user.user_id,
            user_name=current_user.name,
            success_url=checkout_request.success_url,
            cancel_url=checkout_request.cancel_url,
            metadata=checkout_request.metadata,
            locale=checkout_request.locale or current_user.locale
        )
        return CheckoutResponse(success=True, checkout_url=result.url, session_id=result.id)
    except HTTPException:
        raise
    except UnknownPriceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to create checkout session: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}"
        )


@router.post("/create-credit-checkout", response_model=CheckoutResponse)
async def create_credit_checkout_session(
    checkout_request: CreateCreditCheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Create a Stripe checkout session for a credit package"""
    try:
        result = await provider.create_credit_checkout(
            db,
            package_id=checkout_request.package_id,
            customer_email=_require_email(current_user),
            user_id=current_user.user_id,
            user_name=current_user.name,
            success_url=checkout_request.success_url,
            cancel_url=checkout_request.cancel_url,
            metadata=checkout_request.metadata,
            locale=checkout_request.locale or current_user.locale
        )
        return CheckoutResponse(success=True, checkout_url=result.url, session_id=result.id)
    except HTTPException:
        raise
    except UnknownPriceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to create credit checkout session: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}"
        )


@router.post("/billing-portal", response_model=BillingPortalResponse)
async def create_billing_portal_session(
    portal_request: BillingPortalRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Create a Stripe billing portal session for subscription management"""
    try:
        customer_id = await CustomerService(provider).resolve_or_create_customer(
            db, _require_email(current_user), current_user.name
        )
        portal_url = await provider.create_portal(
            customer_id,
            return_url=portal_request.return_url,
            locale=portal_request.locale or current_user.locale
        )
        return BillingPortalResponse(success=True, portal_url=portal_url)
    except HTTPException:
        raise
    except PaymentProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Failed to create billing portal session: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Internal server error: {str(e)}"
        )


@router.get("/active", response_model=ActiveSubscriptionResponse)
async def get_active_subscription(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Newest active or trialing subscription of the current user, if any"""
    try:
        subscriptions: List[SubscriptionInfo] = await provider.list_subscriptions(db, current_user.user_id)
        active: Optional[SubscriptionInfo] = next(
            (sub for sub in subscriptions if sub.status in ACTIVE_STATUSES), None
        )
        return ActiveSubscriptionResponse(success=True, subscription=active)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get active subscription: {str(e)}"
        )


def _price_response(price: Price) -> PriceResponse:
    return PriceResponse(
        price_id=price.price_id,
        type=price.type,
        amount=price.amount,
        currency=price.currency,
        interval=price.interval,
        trial_period_days=price.trial_period_days
    )


@router.get("/plans", response_model=PlansResponse)
async def get_subscription_plans():
    """Available plans and credit packages"""
    plans = [
        PricePlanResponse(
            id=plan.id,
            name=plan.name,
            is_free=plan.is_free,
            is_lifetime=plan.is_lifetime,
            credits=plan.credits.amount if plan.credits else None,
            prices=[_price_response(price) for price in plan.prices]
        )
        for plan in plan_catalog.get_all_price_plans()
    ]
    packages = [
        CreditPackageResponse(
            id=package.id,
            name=package.name,
            credits=package.credits,
            expire_days=package.expire_days,
            popular=package.popular,
            price=_price_response(package.price)
        )
        for package in plan_catalog.credit_packages
    ]
    return PlansResponse(success=True, plans=plans, credit_packages=packages)
