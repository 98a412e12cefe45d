from fastapi import APIRouter, HTTPException, Depends, status, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from backoffice.schemas.auth import TokenData
from backoffice.schemas.billing import GetPaymentsResponse, PaymentResponse
from backoffice.core.auth import get_current_user
from backoffice.core.database import get_db
from backoffice.core.exceptions import MalformedEventError, UnsupportedEventError, WebhookVerificationError
from backoffice.crud import payment_crud
from backoffice.services.payment_provider import PaymentProvider
from backoffice.services.reconciliation_service import reconciliation_service
from backoffice.services.stripe_service import get_payment_provider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """
    Webhook Ingress.

    2xx once the event is applied or safely skipped; 400 when the signature or
    payload is bad (nothing is written); 500 when processing failed so Stripe retries.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    logger.info(f"🔔 Received Stripe webhook: {len(payload)} bytes")

    try:
        event = provider.verify_and_parse_webhook(payload, sig_header)
    except WebhookVerificationError as e:
        logger.warning(f"❌ Webhook rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature"
        )
    except MalformedEventError as e:
        logger.warning(f"❌ Malformed webhook payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Malformed webhook payload: {str(e)}"
        )
    except UnsupportedEventError as e:
        # Acknowledged with 2xx so Stripe stops redelivering event types we never handle
        logger.info(f"Ignoring unsupported event type {e.event_type}")
        return JSONResponse(content={"success": False, "ignored": True, "event_type": e.event_type})

    try:
        result = await reconciliation_service.handle_event(db, event)
    except MalformedEventError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Malformed webhook payload: {str(e)}"
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Webhook processing failed: {str(e)}"
        )

    return JSONResponse(content={
        "success": True,
        "received": True,
        "event_id": event.id,
        "action": result.action,
        "applied": result.applied
    })


@router.get("/payments", response_model=GetPaymentsResponse)
async def get_payments(
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Payment records of the current user, newest first"""
    try:
        payments = await payment_crud.list_by_user(db, current_user.user_id)
        return GetPaymentsResponse(
            success=True,
            payments=[PaymentResponse.model_validate(payment) for payment in payments]
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get payments: {str(e)}"
        )
