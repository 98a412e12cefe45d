import httpx
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.config import settings
from backoffice.services.settings_service import NOTIFICATION_WEBHOOK_URL, get_setting

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.notification_timeout

    async def send_payment_notification(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        customer_id: Optional[str],
        user_id: str,
        amount: float
    ) -> bool:
        """
        Fire-and-forget notice of a completed one-time payment.
        Never raises: the payment is already committed when this runs.
        """
        try:
            url = await get_setting(db, NOTIFICATION_WEBHOOK_URL)
            if not url:
                logger.info("No notification webhook configured, skipping payment notification")
                return False

            payload = {
                "sessionId": session_id,
                "customerId": customer_id,
                "userId": user_id,
                "amount": amount,
            }
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()

            logger.info(f"🔔 Sent payment notification for session {session_id}")
            return True
        except httpx.TimeoutException:
            logger.error(f"❌ Timeout sending payment notification for session {session_id}")
            return False
        except Exception as e:
            logger.error(f"❌ Failed to send payment notification for session {session_id}: {e}")
            return False


notification_service = NotificationService()
