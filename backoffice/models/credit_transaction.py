from sqlalchemy import Column, String, Integer, DateTime, Text
import uuid
import enum
from .base import Base, utcnow


class CreditTransactionType(str, enum.Enum):
    SUBSCRIPTION_GRANT = "subscription_grant"
    LIFETIME_GRANT = "lifetime_grant"
    MONTHLY_GRANT = "monthly_grant"
    PURCHASE_PACKAGE = "purchase_package"
    USAGE = "usage"


class CreditTransaction(Base):
    """Append-only credit ledger entry. Balance is derived, never stored."""
    __tablename__ = "credit_transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id = Column(String(255), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # positive = grant, negative = consumption
    type = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    payment_id = Column(String(255), nullable=True, index=True)  # back-reference to payments.id
    # Stable derived key; a retried grant for the same cycle collides here
    grant_key = Column(String(255), nullable=True, unique=True)
    expire_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
