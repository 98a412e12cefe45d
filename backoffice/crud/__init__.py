# CRUD operations package

from .payment import payment_crud
from .credit_transaction import credit_transaction_crud
from .user import user_crud
from .stripe_webhook import stripe_webhook_crud
from .setting import setting_crud

__all__ = [
    'payment_crud',
    'credit_transaction_crud',
    'user_crud',
    'stripe_webhook_crud',
    'setting_crud'
]
