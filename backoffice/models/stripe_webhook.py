from sqlalchemy import Column, String, DateTime
import uuid
from .base import Base, TimestampMixin


class StripeWebhook(Base, TimestampMixin):
    __tablename__ = "stripe_webhooks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    # Stripe event id for idempotency
    event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(100), nullable=False)

    # Core identifiers
    customer_id = Column(String(255), nullable=True, index=True)
    subscription_id = Column(String(255), nullable=True)
    session_id = Column(String(255), nullable=True)

    # Audit of webhook handling
    action = Column(String(100), nullable=True)  # outcome from the reconciliation engine
    processed_at = Column(DateTime(timezone=True), nullable=True)
