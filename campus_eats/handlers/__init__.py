"""HTTP handlers"""
from .base_handler import BaseHandler, error_middleware
from .discount_handlers import DiscountHandler
from .invoice_handlers import InvoiceHandler
from .menu_handlers import MenuHandler
from .order_handlers import OrderHandler
from .payment_handlers import PaymentHandler

__all__ = [
    'BaseHandler',
    'error_middleware',
    'DiscountHandler',
    'InvoiceHandler',
    'MenuHandler',
    'OrderHandler',
    'PaymentHandler',
]
