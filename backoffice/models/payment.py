from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum, CheckConstraint
import uuid
import enum
from .base import Base, TimestampMixin


class PaymentType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    ONE_TIME = "one_time"


class PaymentStatus(str, enum.Enum):
    """Local payment status, narrowed from the provider's subscription status"""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanInterval(str, enum.Enum):
    MONTH = "month"
    YEAR = "year"
    NONE = "none"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Payment(Base, TimestampMixin):
    """A subscription or one-time purchase as reported by the payment provider.

    Rows are never deleted: cancellation is a status transition.
    """
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "period_end IS NULL OR period_start IS NULL OR period_end >= period_start",
            name="ck_payments_period_order",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    user_id = Column(String(255), nullable=False, index=True)
    customer_id = Column(String(255), nullable=False, index=True)
    type = Column(SQLEnum(PaymentType, values_callable=_enum_values, name="paymenttype"), nullable=False)
    price_id = Column(String(255), nullable=False)

    # Provider identifiers double as idempotency keys
    subscription_id = Column(String(255), nullable=True, unique=True)
    session_id = Column(String(255), nullable=True, unique=True)

    status = Column(SQLEnum(PaymentStatus, values_callable=_enum_values, name="paymentstatus"), nullable=False)
    interval = Column(
        SQLEnum(PlanInterval, values_callable=_enum_values, name="planinterval"),
        nullable=False,
        default=PlanInterval.NONE,
    )
    period_start = Column(DateTime(timezone=True), nullable=True)
    period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
