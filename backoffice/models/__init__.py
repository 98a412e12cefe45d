# Database models package

from .base import Base
from .user import User
from .payment import Payment, PaymentType, PaymentStatus, PlanInterval
from .credit_transaction import CreditTransaction, CreditTransactionType
from .stripe_webhook import StripeWebhook
from .setting import Setting

__all__ = [
    'Base',
    'User',
    'Payment',
    'PaymentType',
    'PaymentStatus',
    'PlanInterval',
    'CreditTransaction',
    'CreditTransactionType',
    'StripeWebhook',
    'Setting'
]
